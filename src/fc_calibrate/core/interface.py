"""
Flight controller facade and firmware autodetection.

FCHandle is the single capability surface used by calibration and CLI
code. It forwards every call to the dialect driver selected at connection
time and tracks whether the FC holds configuration changes that have not
been saved yet.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Tuple

from fc_calibrate.errors import (
    FirmwareAutodetectionFailed,
    ProtocolViolation,
    TransportTimeout,
)
from fc_calibrate.protocol.base import DialectDriver, SensorKind, SensorState
from fc_calibrate.protocol.registry import dialect_names, get_dialect, list_dialects
from fc_calibrate.protocol.transport import (
    DEFAULT_BAUDRATE,
    DEFAULT_TIMEOUT,
    SerialTransport,
)

logger = logging.getLogger(__name__)

AskYesNo = Callable[[str, bool], bool]


class FCHandle:
    """
    Uniform handle to a connected flight controller.

    The dialect driver is fixed for the lifetime of the handle. Mutating
    calls (enable_sensor, write_scale) mark the handle dirty; a successful
    save_settings clears it.

    Example:
        with connect("/dev/ttyACM0") as fc:
            if not fc.sensor_enabled(SensorKind.VOLTAGE):
                fc.enable_sensor(SensorKind.VOLTAGE)
            if fc.needs_reboot():
                fc.save_settings()
                fc.reboot()
    """

    def __init__(self, transport: SerialTransport, driver: DialectDriver):
        self.transport = transport
        self._driver = driver
        self._dirty = False

    def __enter__(self) -> "FCHandle":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"FCHandle(dialect={self.dialect!r}, dirty={self._dirty})"

    @property
    def dialect(self) -> str:
        """Name of the selected firmware dialect."""
        return self._driver.name

    @property
    def driver(self) -> DialectDriver:
        return self._driver

    @property
    def dirty(self) -> bool:
        return self._dirty

    def close(self) -> None:
        """Release the serial link."""
        self.transport.close()

    # --- read-only capabilities ---

    def sensor_present(self, kind: SensorKind) -> bool:
        return self._driver.sensor_present(kind)

    def sensor_enabled(self, kind: SensorKind) -> bool:
        return self._driver.sensor_enabled(kind)

    def sample(self) -> Tuple[float, float]:
        return self._driver.sample()

    def read_scale(self, kind: SensorKind) -> float:
        return self._driver.read_scale(kind)

    def read_offset(self, kind: SensorKind) -> Optional[float]:
        return self._driver.read_offset(kind)

    def scale_is_inverse(self, kind: SensorKind) -> bool:
        return self._driver.scale_is_inverse(kind)

    def sensor_state(self, kind: SensorKind) -> SensorState:
        return self._driver.sensor_state(kind)

    # --- mutating capabilities ---

    def enable_sensor(self, kind: SensorKind) -> None:
        self._driver.enable_sensor(kind)
        self._dirty = True

    def write_scale(self, kind: SensorKind, scale: float) -> None:
        self._driver.write_scale(kind, scale)
        self._dirty = True

    def save_settings(self) -> None:
        self._driver.save_settings()
        self._dirty = False

    def needs_reboot(self) -> bool:
        """True if settings changed since the last successful save."""
        return self._dirty

    def reboot(self) -> None:
        self._driver.reboot()


def _probe(driver: DialectDriver, retries: int) -> bool:
    """Run one dialect probe with bounded retries on timeout."""
    for attempt in range(retries + 1):
        try:
            return driver.probe()
        except TransportTimeout as e:
            logger.debug(
                f"Probe {driver.name} timed out "
                f"(attempt {attempt + 1}/{retries + 1}): {e}"
            )
        except ProtocolViolation as e:
            logger.debug(f"Probe {driver.name} got unexpected response: {e}")
            return False
    return False


def autodetect(
    transport: SerialTransport,
    dialect: Optional[str] = None,
    probe_retries: int = 1,
) -> FCHandle:
    """
    Select the firmware dialect spoken on the link.

    Probes every registered dialect in priority order and picks the first
    one whose probe succeeds. An explicit ``dialect`` bypasses probing.

    Args:
        transport: Open SerialTransport
        dialect: Optional dialect name override
        probe_retries: Extra probe attempts per dialect after a timeout

    Returns:
        FCHandle bound to the selected driver

    Raises:
        ValueError: If the override names an unknown dialect
        FirmwareAutodetectionFailed: If no dialect probe succeeds
    """
    if dialect is not None:
        config = get_dialect(dialect)
        if config is None:
            raise ValueError(
                f"Unknown dialect '{dialect}'. Known: {', '.join(dialect_names())}"
            )
        logger.info(f"Using {config.display_name} dialect (override)")
        return FCHandle(transport, config.create_driver(transport))

    tried = []
    for config in list_dialects():
        tried.append(config.name)
        logger.info(f"Probing for {config.display_name}...")
        driver = config.create_driver(transport)
        if _probe(driver, probe_retries):
            logger.info(f"Detected {config.display_name} firmware")
            return FCHandle(transport, driver)

    raise FirmwareAutodetectionFailed(
        f"No supported firmware answered on {transport.port} "
        f"(tried: {', '.join(tried)})",
        tried=tried,
    )


@contextmanager
def connect(
    port: str,
    baudrate: int = DEFAULT_BAUDRATE,
    timeout: float = DEFAULT_TIMEOUT,
    dialect: Optional[str] = None,
    probe_retries: int = 1,
) -> Iterator[FCHandle]:
    """
    Open the serial link, detect the firmware and yield a handle.

    The link is closed on every exit path, including errors raised during
    autodetection.
    """
    with SerialTransport(port, baudrate, timeout) as transport:
        yield autodetect(transport, dialect=dialect, probe_retries=probe_retries)


def apply_pending_changes(handle: FCHandle, ask_yes_no: AskYesNo) -> bool:
    """
    Offer to persist unsaved changes and reboot the FC.

    Args:
        handle: Connected FCHandle
        ask_yes_no: Prompt callback ``(question, default) -> bool``

    Returns:
        True if settings were saved and the FC rebooted.
    """
    if not handle.needs_reboot():
        return False

    if not ask_yes_no("Save settings and reboot the flight controller?", True):
        logger.warning("Changes were not saved and will be lost on power cycle")
        return False

    handle.save_settings()
    handle.reboot()
    return True
