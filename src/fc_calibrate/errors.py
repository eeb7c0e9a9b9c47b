"""
Exception hierarchy for fc-calibrate.

Every error raised by the transport, the dialect drivers and the calibration
engine derives from FCCalibrateError so the CLI can map failures to exit
codes in one place.
"""

from typing import Any, Dict, Iterable, Optional


class FCCalibrateError(Exception):
    """Base exception for all fc-calibrate errors"""
    pass


# --- Transport -------------------------------------------------------------

class TransportError(FCCalibrateError):
    """Base exception for serial transport errors"""
    pass


class TransportTimeout(TransportError):
    """Flight controller did not answer within the configured timeout"""
    pass


class TransportIOError(TransportError):
    """Serial link is broken, closed or unreadable"""
    pass


class DeviceBusy(TransportError):
    """Serial device is already claimed by another process"""
    pass


class PortPermissionDenied(TransportIOError):
    """User lacks permission to open the serial device"""
    pass


# --- Protocol --------------------------------------------------------------

class ProtocolViolation(FCCalibrateError):
    """Response did not match the shape or range expected by the dialect"""
    pass


class FramingError(ProtocolViolation):
    """Response frame was malformed (header, length or checksum)"""
    pass


class FirmwareAutodetectionFailed(FCCalibrateError):
    """
    No known firmware dialect answered the identity probe.

    Attributes:
        tried: Names of the dialects that were probed, in order
    """
    def __init__(self, message: str, tried: Iterable[str] = ()):
        self.tried = list(tried)
        super().__init__(message)


# --- Calibration -----------------------------------------------------------

class SensorMissing(FCCalibrateError):
    """The requested sensor is not physically present on the board"""
    pass


class InvalidResults(FCCalibrateError):
    """
    Calibration data failed the sanity or fit-quality checks.

    Attributes:
        reason: Stable machine-readable reason (e.g. "too_few_samples")
        details: Values that led to the rejection
    """
    def __init__(self, reason: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(message)


class Cancelled(FCCalibrateError):
    """User aborted the operation"""
    pass
