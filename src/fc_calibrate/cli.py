"""
fc-calibrate CLI

Command-line interface for flight controller voltage/current calibration.

Exit codes:
    0  success
    1  user interrupt, cancelled step or bad usage
    2  operational failure (autodetection, invalid results, I/O errors)
"""

import json
import logging
import sys
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, List, Optional

import click
import typer
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from fc_calibrate import __version__
from fc_calibrate.config import (
    DEFAULT_BAUDRATE,
    DEFAULT_DURATION,
    DEFAULT_TIMEOUT,
    PORT_ENVVAR,
    CalibrationConfig,
)
from fc_calibrate.core.calibration import Calibrator
from fc_calibrate.core.interface import FCHandle, apply_pending_changes, connect
from fc_calibrate.core.messages import MessageLevel, hint_for_exception
from fc_calibrate.core.results import CalibrationReport
from fc_calibrate.core.sampling import Sample, collect
from fc_calibrate.errors import (
    Cancelled,
    FCCalibrateError,
    InvalidResults,
    ProtocolViolation,
    SensorMissing,
    TransportError,
)
from fc_calibrate.protocol.base import SensorKind
from fc_calibrate.protocol.registry import dialect_names, get_dialect, list_dialects

EXIT_OK = 0
EXIT_INTERRUPTED = 1
EXIT_FAILURE = 2

# Setup Rich consoles (messages go to stderr when --json owns stdout)
console = Console()
err_console = Console(stderr=True)

app = typer.Typer(help="Flight controller voltage/current sensor calibration")

_state = {"debug": False}


class SensorChoice(str, Enum):
    voltage = "voltage"
    current = "current"
    both = "both"

    def kinds(self) -> List[SensorKind]:
        if self is SensorChoice.both:
            return [SensorKind.VOLTAGE, SensorKind.CURRENT]
        return [SensorKind(self.value)]


def print_header(text: str) -> None:
    """Print fancy header."""
    err_console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str, out: Console = console) -> None:
    out.print(f"✓ {text}", style="green")


def print_warning(text: str, out: Console = console) -> None:
    out.print(f"⚠️  {text}", style="yellow")


def print_error(text: str, out: Console = console) -> None:
    out.print(f"❌ {text}", style="red")


def print_hint(
    exc: BaseException,
    out: Console = err_console,
    remediation: Optional[str] = None,
) -> None:
    """Print an error with its remediation hint (or an override)."""
    hint = hint_for_exception(exc)
    if remediation is not None:
        hint.remediation = remediation
    style = "red" if hint.level == MessageLevel.ERROR else "yellow"
    out.print(hint.to_cli_string(verbose=True), style=style, markup=False, highlight=False)


def _validate_dialect(value: Optional[str]) -> Optional[str]:
    if value is not None and get_dialect(value) is None:
        raise typer.BadParameter(
            f"Unknown dialect '{value}'. Choose from: {', '.join(dialect_names())}"
        )
    return value


@contextmanager
def handle_errors() -> Iterator[None]:
    """Map core exceptions to exit codes and readable messages."""
    try:
        yield
    except Cancelled as e:
        print_hint(e)
        raise typer.Exit(EXIT_INTERRUPTED)
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Operation cancelled by user[/yellow]")
        raise typer.Exit(EXIT_INTERRUPTED)
    except FCCalibrateError as e:
        if _state["debug"]:
            raise
        print_hint(e)
        raise typer.Exit(EXIT_FAILURE)


class ConsolePrompt:
    """Interactive prompt used by calibration runs."""

    def __init__(self, assume_yes: bool = False, out: Console = console):
        self.assume_yes = assume_yes
        self.out = out

    def ask_yes_no(self, prompt: str, default: bool) -> bool:
        if self.assume_yes:
            self.out.print(f"{prompt} [dim](--yes)[/dim]")
            return True
        return typer.confirm(prompt, default=default, err=True)

    def ask_reference(self, kind: SensorKind, observed: float) -> float:
        self.out.print(f"FC reads an average of [cyan]{observed:.3f} {kind.unit}[/cyan]")
        return typer.prompt(
            f"Measured {kind.value} ({kind.unit})",
            type=float,
            err=True,
        )

    def report_live_sample(self, sample: Sample) -> None:
        self.out.print(
            f"  {sample.voltage:7.2f} V  {sample.current:7.2f} A",
            style="dim",
            highlight=False,
        )


# ----------------------------------------------------------------------------
# Shared options
# ----------------------------------------------------------------------------

PortOption = typer.Option(..., "--port", "-p", envvar=PORT_ENVVAR, help="Serial port")
BaudOption = typer.Option(DEFAULT_BAUDRATE, "--baud", "-b", help="Baud rate")
TimeoutOption = typer.Option(DEFAULT_TIMEOUT, "--timeout", help="Response timeout (s)")
DialectOption = typer.Option(
    None,
    "--dialect",
    callback=_validate_dialect,
    help="Skip autodetection and force a firmware dialect",
)


@app.callback()
def main_callback(
    debug: bool = typer.Option(False, "--debug", help="Verbose logging and full tracebacks"),
) -> None:
    """Calibrate battery voltage and current sensing of Betaflight/INAV boards."""
    _state["debug"] = debug
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
        force=True,
    )


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"fc-calibrate {__version__}")


@app.command()
def ports() -> None:
    """List available serial ports."""
    import serial.tools.list_ports

    ports_list = list(serial.tools.list_ports.comports())
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Description", style="green")
    table.add_column("HWID", style="dim")

    for port in ports_list:
        table.add_row(port.device, port.description or "-", port.hwid or "-")

    console.print(table)


@app.command()
def dialects() -> None:
    """List supported firmware dialects in probe order."""
    table = Table(title="Supported Firmware")
    table.add_column("#", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Firmware", style="green")
    table.add_column("Framing")
    table.add_column("Notes", style="dim")

    for i, config in enumerate(list_dialects(), 1):
        table.add_row(str(i), config.name, config.display_name, config.framing, " ".join(config.notes))

    console.print(table)


@app.command()
def detect(
    port: str = PortOption,
    baud: int = BaudOption,
    timeout: float = TimeoutOption,
    dialect: Optional[str] = DialectOption,
) -> None:
    """Identify the firmware dialect of the flight controller."""
    with handle_errors():
        with connect(port, baud, timeout, dialect=dialect) as fc:
            config = get_dialect(fc.dialect)
            print_success(f"{config.display_name} detected on {port}")


def _state_table(fc: FCHandle) -> Table:
    table = Table(title=f"Battery Sensors ({fc.dialect})")
    table.add_column("Sensor", style="cyan")
    table.add_column("Present")
    table.add_column("Enabled")
    table.add_column("Scale", justify="right")
    table.add_column("Offset", justify="right")

    for kind in SensorKind:
        state = fc.sensor_state(kind)
        table.add_row(
            kind.value,
            "yes" if state.present else "[red]no[/red]",
            "yes" if state.enabled else "[yellow]no[/yellow]",
            f"{state.scale:g}",
            "-" if state.offset is None else f"{state.offset:g}",
        )
    return table


@app.command()
def status(
    port: str = PortOption,
    baud: int = BaudOption,
    timeout: float = TimeoutOption,
    dialect: Optional[str] = DialectOption,
) -> None:
    """Show presence, state and calibration of the battery sensors."""
    with handle_errors():
        with connect(port, baud, timeout, dialect=dialect) as fc:
            console.print(_state_table(fc))


@app.command()
def live(
    port: str = PortOption,
    baud: int = BaudOption,
    timeout: float = TimeoutOption,
    dialect: Optional[str] = DialectOption,
    duration: int = typer.Option(30, "--duration", "-d", min=1, help="Seconds to display"),
) -> None:
    """Display live voltage and current readings."""
    with handle_errors():
        with connect(port, baud, timeout, dialect=dialect) as fc:
            with Live(console=console, auto_refresh=False) as display:
                def show(sample: Sample) -> None:
                    display.update(
                        f"[cyan]{sample.voltage:7.2f} V[/cyan]   "
                        f"[magenta]{sample.current:7.2f} A[/magenta]",
                        refresh=True,
                    )

                try:
                    collect(fc, duration, on_sample=show)
                except Cancelled:
                    pass


def _print_report(report: CalibrationReport, out: Console) -> None:
    style = "green" if report.ok else "red"
    out.print(report.to_summary(), style=style, markup=False, highlight=False)


@app.command()
def calibrate(
    sensor: SensorChoice = typer.Argument(..., help="Sensor to calibrate"),
    port: str = PortOption,
    baud: int = BaudOption,
    timeout: float = TimeoutOption,
    dialect: Optional[str] = DialectOption,
    duration: int = typer.Option(
        DEFAULT_DURATION, "--duration", "-d", min=1, help="Acquisition window (s)"
    ),
    min_samples: Optional[int] = typer.Option(
        None, "--min-samples", min=1, help="Minimum samples required"
    ),
    noise_threshold: Optional[float] = typer.Option(
        None, "--noise-threshold", help="Max relative spread (e.g. 0.05 = 5%)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Answer yes to every question"),
    json_output: bool = typer.Option(False, "--json", help="Print results as JSON"),
) -> None:
    """
    Calibrate the voltage and/or current sensor against a multimeter reading.

    Example:
        fc-calibrate calibrate voltage --port /dev/ttyACM0 --duration 10
    """
    out = err_console if json_output else console
    try:
        config = CalibrationConfig().with_overrides(
            min_samples=min_samples,
            noise_threshold=noise_threshold,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))

    prompt = ConsolePrompt(assume_yes=yes, out=out)
    reports: List[CalibrationReport] = []
    cancelled: Optional[Cancelled] = None

    with handle_errors():
        with connect(port, baud, timeout, dialect=dialect) as fc:
            out.print(f"Firmware: [cyan]{fc.dialect}[/cyan]")

            for kind in sensor.kinds():
                print_header(f"Calibrate {kind.value}")
                try:
                    report = Calibrator(
                        fc, kind, duration, prompt, config=config, persist=False
                    ).run()
                except (InvalidResults, SensorMissing) as e:
                    print_hint(e, out)
                    report = CalibrationReport.failure(
                        "calibrate", str(e), sensor=kind.value, dialect=fc.dialect,
                    )
                except Cancelled as e:
                    # sensors done before the cancel may already be written
                    cancelled = e
                    reports.append(CalibrationReport.failure(
                        "calibrate", str(e), sensor=kind.value, dialect=fc.dialect,
                        state="cancelled",
                    ))
                    break
                reports.append(report)
                _print_report(report, out)

            changed = fc.needs_reboot()
            try:
                rebooted = apply_pending_changes(fc, prompt.ask_yes_no)
            except (TransportError, ProtocolViolation) as e:
                print_hint(e, out)
                rebooted = False
                for report in reports:
                    if report.ok:
                        report.add_error(f"Save and reboot failed: {e}")

            for report in reports:
                report.metadata["rebooted"] = rebooted
            if rebooted:
                print_success("Settings saved, flight controller rebooting", out)
            elif changed:
                print_warning("New settings not saved to EEPROM", out)

            if cancelled is not None:
                remediation = None
                if changed:
                    saved = "were saved" if rebooted else "were not saved"
                    remediation = f"Changes made before cancelling {saved}."
                print_hint(cancelled, out, remediation=remediation)

    if json_output:
        console.print_json(json.dumps([report.to_dict() for report in reports]))

    if cancelled is not None:
        raise typer.Exit(EXIT_INTERRUPTED)

    failed = [report.sensor for report in reports if not report.ok]
    if failed:
        print_error(f"Calibration failed: {', '.join(failed)}", err_console)
        raise typer.Exit(EXIT_FAILURE)


def main() -> None:
    """Main entry point."""
    try:
        code = app(standalone_mode=False)
    except (KeyboardInterrupt, click.exceptions.Abort):
        err_console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(EXIT_INTERRUPTED)
    except click.exceptions.ClickException as e:
        e.show()
        sys.exit(EXIT_INTERRUPTED)
    except FCCalibrateError:
        # only reached with --debug; handle_errors() maps it otherwise
        err_console.print_exception()
        sys.exit(EXIT_FAILURE)
    sys.exit(code if isinstance(code, int) else EXIT_OK)


if __name__ == "__main__":
    main()
