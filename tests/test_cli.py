"""Tests for the typer CLI with the serial link replaced by simulators."""

from contextlib import contextmanager

import pytest
from typer.testing import CliRunner

from fc_calibrate import cli
from fc_calibrate.core.interface import autodetect

from fc_calibrate.protocol import msp

from conftest import SilentFC, make_transport

runner = CliRunner()


@pytest.fixture
def board(monkeypatch):
    """Route cli.connect() to a simulator; returns a setter for the board."""
    current = {}

    @contextmanager
    def fake_connect(port, baudrate=None, timeout=None, dialect=None, probe_retries=1):
        transport = make_transport(current["sim"])
        with autodetect(transport, dialect=dialect) as fc:
            yield fc

    monkeypatch.setattr(cli, "connect", fake_connect)

    def use(sim):
        current["sim"] = sim
        return sim

    return use


def test_dialects_lists_probe_order() -> None:
    result = runner.invoke(cli.app, ["dialects"])
    assert result.exit_code == 0
    assert result.output.index("betaflight") < result.output.index("inav")


def test_version() -> None:
    result = runner.invoke(cli.app, ["version"])
    assert result.exit_code == 0
    assert "fc-calibrate" in result.output


def test_detect_reads_port_from_environment(board, betaflight) -> None:
    board(betaflight)
    result = runner.invoke(cli.app, ["detect"], env={"FC_CALIBRATE_PORT": "/dev/ttyACM0"})
    assert result.exit_code == 0
    assert "Betaflight detected on /dev/ttyACM0" in result.output


def test_detect_unknown_firmware_exits_2(board) -> None:
    board(SilentFC())
    result = runner.invoke(cli.app, ["detect", "--port", "/dev/ttyACM0"])
    assert result.exit_code == 2
    assert "H_FIRMWARE_UNKNOWN" in result.output


def test_status_shows_both_sensors(board, inav) -> None:
    board(inav)
    result = runner.invoke(cli.app, ["status", "--port", "/dev/ttyACM0"])
    assert result.exit_code == 0
    assert "voltage" in result.output
    assert "current" in result.output


def test_calibrate_voltage_writes_and_reboots(board, betaflight) -> None:
    board(betaflight).voltage = 11.1
    result = runner.invoke(
        cli.app,
        ["calibrate", "voltage", "--port", "/dev/ttyACM0", "--duration", "1", "--min-samples", "5", "--yes"],
        input="12.0\n",
    )

    assert result.exit_code == 0, result.output
    assert betaflight.vbatscale == 119
    assert betaflight.saves == 1
    assert betaflight.reboots == 1
    assert "SUCCESS" in result.output


def test_calibrate_declined_exits_1(board, betaflight) -> None:
    board(betaflight)
    result = runner.invoke(
        cli.app,
        ["calibrate", "voltage", "--port", "/dev/ttyACM0"],
        input="n\n",
    )
    assert result.exit_code == 1
    assert betaflight.vbatscale == 110
    assert "Nothing was written" in result.output


def test_cancel_after_first_sensor_still_offers_save(board, betaflight) -> None:
    board(betaflight).voltage = 11.1
    betaflight.current_source = 0
    result = runner.invoke(
        cli.app,
        ["calibrate", "both", "--port", "/dev/ttyACM0", "--duration", "1", "--min-samples", "5"],
        # sample voltage, reference, leave current disabled, save and reboot
        input="y\n12.0\nn\ny\n",
    )

    assert result.exit_code == 1, result.output
    assert betaflight.vbatscale == 119
    assert betaflight.saves == 1
    assert betaflight.reboots == 1
    assert "current sensor left disabled" in result.output
    assert "Nothing was written" not in result.output
    assert "were saved" in result.output


def test_cancel_after_first_sensor_warns_when_not_saved(board, betaflight) -> None:
    board(betaflight).voltage = 11.1
    betaflight.current_source = 0
    result = runner.invoke(
        cli.app,
        ["calibrate", "both", "--port", "/dev/ttyACM0", "--duration", "1", "--min-samples", "5"],
        input="y\n12.0\nn\nn\n",
    )

    assert result.exit_code == 1, result.output
    assert betaflight.saves == 0
    assert "Nothing was written" not in result.output
    assert "were not saved" in result.output


def test_failed_save_marks_reports_failed(board, betaflight) -> None:
    board(betaflight).voltage = 11.1
    betaflight.rejected.add(msp.MSP_EEPROM_WRITE)
    result = runner.invoke(
        cli.app,
        [
            "calibrate", "voltage", "--port", "/dev/ttyACM0",
            "--duration", "1", "--min-samples", "5", "--yes", "--json",
        ],
        input="12.0\n",
    )

    assert result.exit_code == 2, result.output
    assert betaflight.saves == 0
    assert betaflight.reboots == 0
    assert '"ok": false' in result.output
    assert "Save and reboot failed" in result.output
    assert "H_PROTOCOL" in result.output


def test_calibrate_missing_sensor_exits_2(board, betaflight) -> None:
    board(betaflight).has_current_meter = False
    result = runner.invoke(
        cli.app,
        ["calibrate", "current", "--port", "/dev/ttyACM0", "--yes"],
    )
    assert result.exit_code == 2
    assert "H_SENSOR_MISSING" in result.output
    assert betaflight.saves == 0


def test_calibrate_json_report(board, inav) -> None:
    board(inav).voltage = 12.0
    result = runner.invoke(
        cli.app,
        [
            "calibrate", "voltage", "--port", "/dev/ttyACM0",
            "--duration", "1", "--min-samples", "5", "--yes", "--json",
        ],
        input="12.6\n",
    )
    assert result.exit_code == 0, result.output
    assert '"new_scale"' in result.output
    assert '"rebooted": true' in result.output
    assert inav.settings["vbat_scale"] == 1155


def test_invalid_threshold_is_usage_error(board, betaflight) -> None:
    board(betaflight)
    result = runner.invoke(
        cli.app,
        ["calibrate", "voltage", "--port", "/dev/ttyACM0", "--noise-threshold", "0"],
    )
    assert result.exit_code != 0
    assert betaflight.commands == []


def test_main_maps_bad_dialect_to_exit_1(monkeypatch) -> None:
    monkeypatch.setattr(
        "sys.argv", ["fc-calibrate", "detect", "--port", "/dev/ttyACM0", "--dialect", "px4"]
    )
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    assert excinfo.value.code == 1
