"""
Dialect driver contract.

Every supported firmware implements the same capability set on top of its
own MSP command layout. Calibration and CLI code only ever talk to this
interface (through FCHandle), never to a concrete dialect.
"""

import logging
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Tuple, Type

from fc_calibrate.errors import ProtocolViolation, TransportTimeout
from fc_calibrate.protocol.msp import MSP_FC_VARIANT, ProtocolFrame

if TYPE_CHECKING:
    from fc_calibrate.protocol.transport import SerialTransport

logger = logging.getLogger(__name__)

# Plausible physical limits for a live sample
VOLTAGE_LIMITS = (0.0, 100.0)
CURRENT_LIMITS = (-100.0, 1000.0)


class SensorKind(str, Enum):
    """Battery sensor being calibrated."""
    VOLTAGE = "voltage"
    CURRENT = "current"

    @property
    def unit(self) -> str:
        return "V" if self is SensorKind.VOLTAGE else "A"


@dataclass(frozen=True)
class SensorState:
    """Snapshot of one sensor's configuration as reported by the FC."""
    kind: SensorKind
    present: bool
    enabled: bool
    scale: float
    offset: Optional[float] = None


class DialectDriver(ABC):
    """
    Base class for firmware dialect drivers.

    Subclasses set ``name``, ``variant`` (the 4-character MSP_FC_VARIANT
    identifier) and ``frame_type``, and implement the capability methods.

    Scales are exchanged in the firmware's own register units. Registers
    listed in ``INVERSE_SCALE_KINDS`` divide the raw reading (mV per amp)
    instead of multiplying it.
    """

    name: str = ""
    variant: bytes = b""
    frame_type: Type[ProtocolFrame] = ProtocolFrame
    INVERSE_SCALE_KINDS = frozenset({SensorKind.CURRENT})

    def __init__(self, transport: "SerialTransport", read_retries: int = 1):
        """
        Args:
            transport: Open SerialTransport
            read_retries: Extra attempts for idempotent reads that time out
        """
        self.transport = transport
        self.read_retries = read_retries

    def __repr__(self) -> str:
        return f"{type(self).__name__}(port={getattr(self.transport, 'port', None)!r})"

    # ------------------------------------------------------------------
    # Frame exchange
    # ------------------------------------------------------------------

    def request(self, command: int, payload: bytes = b"", retries: int = 0) -> bytes:
        """
        Exchange one frame and return the response payload.

        Args:
            command: MSP command identifier
            payload: Request payload
            retries: Extra attempts after a timeout. Only pass a non-zero
                value for commands that are safe to repeat.

        Raises:
            ProtocolViolation: If the FC rejected the command
        """
        frame = self.frame_type(command, payload)
        for attempt in range(retries + 1):
            try:
                response = self.transport.send_and_receive(frame)
                break
            except TransportTimeout as e:
                if attempt >= retries:
                    raise
                logger.warning(
                    f"{self.name}: command {command} timed out "
                    f"(attempt {attempt + 1}/{retries + 1}): {e}, retrying..."
                )

        if response.error:
            raise ProtocolViolation(f"{self.name}: FC rejected command {command}")
        return response.payload

    def read(self, command: int, payload: bytes = b"") -> bytes:
        """Idempotent request, retried on timeout up to ``read_retries``."""
        return self.request(command, payload, retries=self.read_retries)

    def unpack(self, fmt: str, payload: bytes, what: str, offset: int = 0) -> tuple:
        """struct.unpack_from that reports short payloads as ProtocolViolation."""
        try:
            return struct.unpack_from(fmt, payload, offset)
        except struct.error as e:
            raise ProtocolViolation(
                f"{self.name}: malformed {what} response "
                f"({len(payload)} bytes): {e}"
            ) from e

    def fc_variant(self) -> bytes:
        """Read the 4-character firmware identifier."""
        payload = self.read(MSP_FC_VARIANT)
        if len(payload) != 4:
            raise ProtocolViolation(
                f"{self.name}: FC variant must be 4 bytes, got {len(payload)}"
            )
        return payload

    def check_sample(self, voltage: float, current: float) -> Tuple[float, float]:
        """Reject physically impossible readings."""
        if not VOLTAGE_LIMITS[0] <= voltage <= VOLTAGE_LIMITS[1]:
            raise ProtocolViolation(f"{self.name}: voltage out of range: {voltage:.2f} V")
        if not CURRENT_LIMITS[0] <= current <= CURRENT_LIMITS[1]:
            raise ProtocolViolation(f"{self.name}: current out of range: {current:.2f} A")
        return voltage, current

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def probe(self) -> bool:
        """
        Non-destructive identity check.

        Returns True if the firmware on the wire reports this dialect's
        variant identifier.
        """
        variant = self.fc_variant()
        logger.debug(f"{self.name}: FC variant {variant!r}")
        return variant == self.variant

    @abstractmethod
    def sensor_present(self, kind: SensorKind) -> bool:
        """Whether the board has a physical sensor of this kind."""

    @abstractmethod
    def sensor_enabled(self, kind: SensorKind) -> bool:
        """Whether the firmware currently uses the sensor."""

    @abstractmethod
    def enable_sensor(self, kind: SensorKind) -> None:
        """Turn the sensor on (not persisted until save_settings)."""

    @abstractmethod
    def sample(self) -> Tuple[float, float]:
        """Read one live (voltage [V], current [A]) pair."""

    @abstractmethod
    def read_scale(self, kind: SensorKind) -> float:
        """Read the calibration scale register."""

    @abstractmethod
    def write_scale(self, kind: SensorKind, scale: float) -> None:
        """Write the calibration scale register (not persisted)."""

    def read_offset(self, kind: SensorKind) -> Optional[float]:
        """Read the calibration offset, or None if the sensor has none."""
        return None

    @abstractmethod
    def save_settings(self) -> None:
        """Persist the configuration to the FC's EEPROM."""

    @abstractmethod
    def reboot(self) -> None:
        """Reboot the FC."""

    def scale_is_inverse(self, kind: SensorKind) -> bool:
        """True if the scale register divides the raw reading."""
        return kind in self.INVERSE_SCALE_KINDS

    def sensor_state(self, kind: SensorKind) -> SensorState:
        """Read present/enabled/scale/offset for one sensor."""
        present = self.sensor_present(kind)
        return SensorState(
            kind=kind,
            present=present,
            enabled=self.sensor_enabled(kind),
            scale=self.read_scale(kind),
            offset=self.read_offset(kind),
        )


def register_value(scale: float, low: int, high: int, what: str) -> int:
    """Round a scale to an integer register value, checking its range."""
    value = int(round(scale))
    if not low <= value <= high:
        raise ValueError(f"{what} {scale:.2f} outside register range [{low}, {high}]")
    return value
