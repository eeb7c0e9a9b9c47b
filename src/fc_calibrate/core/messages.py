"""
Standardized user-facing messages for fc-calibrate.

Maps errors to structured hints with stable codes and a remediation
suggestion, so the CLI can explain a failure consistently.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from fc_calibrate.errors import (
    Cancelled,
    DeviceBusy,
    FirmwareAutodetectionFailed,
    InvalidResults,
    PortPermissionDenied,
    ProtocolViolation,
    SensorMissing,
    TransportIOError,
    TransportTimeout,
)


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class HintCode(Enum):
    """Stable codes for known failure conditions."""
    # Connection
    H_SERIAL_TIMEOUT = "H_SERIAL_TIMEOUT"
    H_SERIAL_ERROR = "H_SERIAL_ERROR"
    H_DEVICE_BUSY = "H_DEVICE_BUSY"
    H_PORT_PERMISSION = "H_PORT_PERMISSION"

    # Firmware
    H_FIRMWARE_UNKNOWN = "H_FIRMWARE_UNKNOWN"
    H_PROTOCOL = "H_PROTOCOL"

    # Calibration
    H_SENSOR_MISSING = "H_SENSOR_MISSING"
    H_TOO_FEW_SAMPLES = "H_TOO_FEW_SAMPLES"
    H_WINDOW_INCOMPLETE = "H_WINDOW_INCOMPLETE"
    H_NOISY = "H_NOISY"
    H_ZERO_READING = "H_ZERO_READING"
    H_BAD_REFERENCE = "H_BAD_REFERENCE"
    H_SCALE_RANGE = "H_SCALE_RANGE"
    H_CANCELLED = "H_CANCELLED"

    # Generic
    H_UNKNOWN = "H_UNKNOWN"


# Default remediation hints for each code
REMEDIATIONS: Dict[HintCode, str] = {
    HintCode.H_SERIAL_TIMEOUT:
        "Check the USB cable and that the FC is powered and not in DFU mode.",
    HintCode.H_SERIAL_ERROR:
        "Check the port name with 'ports'. The FC may have been unplugged.",
    HintCode.H_DEVICE_BUSY:
        "Close other serial apps (configurator, CLI terminals) and retry.",
    HintCode.H_PORT_PERMISSION:
        "Add your user to the dialout (or uucp) group and log in again, or fix the udev rule.",
    HintCode.H_FIRMWARE_UNKNOWN:
        "Only Betaflight and INAV are supported. Try --dialect to force one.",
    HintCode.H_PROTOCOL:
        "The FC answered unexpectedly. Check the firmware version or --dialect.",
    HintCode.H_SENSOR_MISSING:
        "The board has no ADC for this sensor. Nothing to calibrate.",
    HintCode.H_TOO_FEW_SAMPLES:
        "Increase --duration or lower --min-samples.",
    HintCode.H_WINDOW_INCOMPLETE:
        "Sampling stopped early. Re-run the acquisition.",
    HintCode.H_NOISY:
        "Readings were unstable. Use a steady load/supply and re-run.",
    HintCode.H_ZERO_READING:
        "The sensor reads zero. Connect a battery (or load) and reboot after enabling.",
    HintCode.H_BAD_REFERENCE:
        "Enter the value measured with your multimeter, in V or A.",
    HintCode.H_SCALE_RANGE:
        "The derived scale does not fit the firmware register. Check the wiring and reference.",
    HintCode.H_CANCELLED:
        "Nothing was written to the flight controller.",
    HintCode.H_UNKNOWN:
        "Re-run with --debug for details.",
}

_REASON_CODES = {
    "too_few_samples": HintCode.H_TOO_FEW_SAMPLES,
    "window_incomplete": HintCode.H_WINDOW_INCOMPLETE,
    "too_noisy": HintCode.H_NOISY,
    "zero_mean": HintCode.H_ZERO_READING,
    "reference_out_of_range": HintCode.H_BAD_REFERENCE,
    "scale_out_of_range": HintCode.H_SCALE_RANGE,
}


@dataclass
class Hint:
    """
    Structured message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable code for programmatic handling
        title: Short, user-facing title
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: HintCode
    title: str
    remediation: str = ""

    def __post_init__(self):
        if not self.remediation and self.code in REMEDIATIONS:
            self.remediation = REMEDIATIONS[self.code]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "remediation": self.remediation,
        }

    def to_cli_string(self, verbose: bool = False) -> str:
        """Format for CLI output."""
        if not verbose:
            return self.title
        text = f"[{self.code.value}] {self.title}"
        if self.remediation:
            text += f"\n   → {self.remediation}"
        return text


def hint_for_exception(exc: BaseException) -> Hint:
    """Build a Hint describing an exception raised by the core."""
    level = MessageLevel.ERROR
    if isinstance(exc, TransportTimeout):
        code = HintCode.H_SERIAL_TIMEOUT
    elif isinstance(exc, DeviceBusy):
        code = HintCode.H_DEVICE_BUSY
    elif isinstance(exc, PortPermissionDenied):
        code = HintCode.H_PORT_PERMISSION
    elif isinstance(exc, TransportIOError):
        code = HintCode.H_SERIAL_ERROR
    elif isinstance(exc, FirmwareAutodetectionFailed):
        code = HintCode.H_FIRMWARE_UNKNOWN
    elif isinstance(exc, ProtocolViolation):
        code = HintCode.H_PROTOCOL
    elif isinstance(exc, SensorMissing):
        code = HintCode.H_SENSOR_MISSING
    elif isinstance(exc, InvalidResults):
        code = _REASON_CODES.get(exc.reason, HintCode.H_UNKNOWN)
    elif isinstance(exc, Cancelled):
        code = HintCode.H_CANCELLED
        level = MessageLevel.WARN
    else:
        code = HintCode.H_UNKNOWN
    return Hint(level=level, code=code, title=str(exc))
