"""
MultiWii Serial Protocol (MSP) frames.

Both supported firmwares speak MSP, but with different framing:

MSP v1 (Betaflight):
    REQUEST:  [ '$' 'M' '<' | size (u8) | cmd (u8) | payload | xor ]
    RESPONSE: [ '$' 'M' '>' | size (u8) | cmd (u8) | payload | xor ]
    The checksum is the XOR of size, cmd and every payload byte.

MSP v2 (INAV):
    REQUEST:  [ '$' 'X' '<' | flag (u8) | cmd (u16 LE) | size (u16 LE) | payload | crc8 ]
    RESPONSE: [ '$' 'X' '>' | flag (u8) | cmd (u16 LE) | size (u16 LE) | payload | crc8 ]
    The checksum is CRC-8/DVB-S2 (poly 0xD5) over flag..payload.

In both variants the FC answers with '!' instead of '>' when it rejects
a command.
"""

import struct
from dataclasses import dataclass
from typing import Callable

from fc_calibrate.errors import FramingError

# Command identifiers shared by both firmwares
MSP_API_VERSION = 1
MSP_FC_VARIANT = 2
MSP_FC_VERSION = 3
MSP_BATTERY_CONFIG = 32
MSP_SET_BATTERY_CONFIG = 33
MSP_FEATURE = 36
MSP_SET_FEATURE = 37
MSP_CURRENT_METER_CONFIG = 40
MSP_SET_CURRENT_METER_CONFIG = 41
MSP_VOLTAGE_METER_CONFIG = 56
MSP_SET_VOLTAGE_METER_CONFIG = 57
MSP_REBOOT = 68
MSP_ANALOG = 110
MSP_EEPROM_WRITE = 250

# MSP v2 only
MSP2_COMMON_SETTING = 0x1003
MSP2_COMMON_SET_SETTING = 0x1004
MSP2_INAV_ANALOG = 0x2002

# Bytes of garbage tolerated before the '$' preamble of a response
MAX_LEADING_JUNK = 64

ReadFn = Callable[[int], bytes]


def _build_crc8_table() -> bytes:
    """Build CRC-8 lookup table using DVB-S2 polynomial (0xD5)."""
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            if crc & 0x80:
                crc = ((crc << 1) ^ 0xD5) & 0xFF
            else:
                crc = (crc << 1) & 0xFF
        table.append(crc)
    return bytes(table)


_CRC8_TABLE = _build_crc8_table()


def crc8_dvb_s2(data: bytes) -> int:
    """Compute CRC-8 DVB-S2 over a bytes-like object."""
    crc = 0
    for b in data:
        crc = _CRC8_TABLE[crc ^ b]
    return crc


def xor_checksum(data: bytes) -> int:
    """XOR of every byte (MSP v1 checksum)."""
    checksum = 0
    for b in data:
        checksum ^= b
    return checksum


def _sync(read: ReadFn, marker: bytes) -> bytes:
    """
    Consume bytes until the 3-byte response header is found.

    Args:
        read: Function returning exactly n bytes (raises on timeout)
        marker: Protocol marker byte following '$' (b"M" or b"X")

    Returns:
        The direction byte (b">" or b"!")

    Raises:
        FramingError: If no preamble shows up or the header is malformed
    """
    for _ in range(MAX_LEADING_JUNK + 1):
        if read(1) == b"$":
            break
    else:
        raise FramingError(f"No '$' preamble within {MAX_LEADING_JUNK} bytes")

    proto = read(1)
    if proto != marker:
        raise FramingError(
            f"Unexpected protocol marker {proto!r} (expected {marker!r})"
        )

    direction = read(1)
    if direction not in (b">", b"!"):
        raise FramingError(f"Invalid response direction {direction!r}")
    return direction


@dataclass(frozen=True)
class ProtocolFrame:
    """
    Logical MSP request or response.

    Attributes:
        command: MSP command identifier
        payload: Raw payload bytes (dialect-specific layout)
        error: True if the FC answered with the error direction ('!')
    """
    command: int
    payload: bytes = b""
    error: bool = False

    def encode(self) -> bytes:
        """Serialize this frame as a request."""
        raise NotImplementedError

    @classmethod
    def read_response(cls, read: ReadFn) -> "ProtocolFrame":
        """Read and decode one response frame using ``read``."""
        raise NotImplementedError


@dataclass(frozen=True)
class MSPv1Frame(ProtocolFrame):
    """MSP v1 frame ($M) with 8-bit command and length."""

    def encode(self) -> bytes:
        if not 0 <= self.command <= 0xFF:
            raise ValueError(f"MSP v1 command out of range: {self.command}")
        if len(self.payload) > 0xFF:
            raise ValueError(f"MSP v1 payload too large: {len(self.payload)} bytes")

        body = bytes([len(self.payload), self.command]) + self.payload
        return b"$M<" + body + bytes([xor_checksum(body)])

    @classmethod
    def read_response(cls, read: ReadFn) -> "MSPv1Frame":
        direction = _sync(read, b"M")
        size, command = read(2)
        payload = read(size) if size else b""
        checksum = read(1)[0]

        body = bytes([size, command]) + payload
        expected = xor_checksum(body)
        if checksum != expected:
            raise FramingError(
                f"MSP v1 checksum mismatch for cmd {command} "
                f"(expected 0x{expected:02X}, got 0x{checksum:02X})"
            )
        return cls(command, payload, error=(direction == b"!"))


@dataclass(frozen=True)
class MSPv2Frame(ProtocolFrame):
    """MSP v2 frame ($X) with 16-bit command and length."""

    flag: int = 0

    def encode(self) -> bytes:
        if not 0 <= self.command <= 0xFFFF:
            raise ValueError(f"MSP v2 command out of range: {self.command}")
        if len(self.payload) > 0xFFFF:
            raise ValueError(f"MSP v2 payload too large: {len(self.payload)} bytes")

        body = struct.pack("<BHH", self.flag, self.command, len(self.payload)) + self.payload
        return b"$X<" + body + bytes([crc8_dvb_s2(body)])

    @classmethod
    def read_response(cls, read: ReadFn) -> "MSPv2Frame":
        direction = _sync(read, b"X")
        header = read(5)
        flag, command, size = struct.unpack("<BHH", header)
        payload = read(size) if size else b""
        crc = read(1)[0]

        expected = crc8_dvb_s2(header + payload)
        if crc != expected:
            raise FramingError(
                f"MSP v2 CRC mismatch for cmd 0x{command:04X} "
                f"(expected 0x{expected:02X}, got 0x{crc:02X})"
            )
        return cls(command, payload, error=(direction == b"!"), flag=flag)
