"""Flight controller protocol layer - serial transport and firmware dialects."""

from .transport import (
    SerialTransport,
    open_serial,
    DEFAULT_BAUDRATE,
    DEFAULT_TIMEOUT,
)
from .msp import ProtocolFrame, MSPv1Frame, MSPv2Frame
from .base import DialectDriver, SensorKind, SensorState
from .betaflight import BetaflightDriver
from .inav import INAVDriver
from .registry import DialectConfig, list_dialects, dialect_names, get_dialect

__all__ = [
    # Transport
    "SerialTransport",
    "open_serial",
    "DEFAULT_BAUDRATE",
    "DEFAULT_TIMEOUT",
    # Frames
    "ProtocolFrame",
    "MSPv1Frame",
    "MSPv2Frame",
    # Drivers
    "DialectDriver",
    "SensorKind",
    "SensorState",
    "BetaflightDriver",
    "INAVDriver",
    # Registry
    "DialectConfig",
    "list_dialects",
    "dialect_names",
    "get_dialect",
]
