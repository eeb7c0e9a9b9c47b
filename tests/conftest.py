"""Shared fixtures: an in-memory serial port and byte-level FC simulators."""

import struct
from collections import deque
from typing import Dict, List, Optional, Set, Tuple

import pytest

from fc_calibrate.protocol import msp
from fc_calibrate.protocol.transport import SerialTransport


class Reject(Exception):
    """Raised by a simulator handler to answer with the error direction."""


def v1_response(command: int, payload: bytes = b"", error: bool = False) -> bytes:
    body = bytes([len(payload), command]) + payload
    return b"$M" + (b"!" if error else b">") + body + bytes([msp.xor_checksum(body)])


def v2_response(command: int, payload: bytes = b"", error: bool = False) -> bytes:
    body = struct.pack("<BHH", 0, command, len(payload)) + payload
    return b"$X" + (b"!" if error else b">") + body + bytes([msp.crc8_dvb_s2(body)])


class FakeSerial:
    """Stand-in for serial.Serial that answers writes through a responder."""

    def __init__(self, responder=None):
        self.responder = responder
        self.written: List[bytes] = []
        self.rx = bytearray()
        self.is_open = True
        self.timeout = 1.0

    def write(self, data: bytes) -> int:
        self.written.append(bytes(data))
        if self.responder is not None:
            self.rx.extend(self.responder(bytes(data)))
        return len(data)

    def read(self, size: int) -> bytes:
        chunk = bytes(self.rx[:size])
        del self.rx[:size]
        return chunk

    def reset_input_buffer(self) -> None:
        self.rx.clear()

    def reset_output_buffer(self) -> None:
        pass

    def close(self) -> None:
        self.is_open = False


class SimulatedFC:
    """
    Parses MSP v1/v2 requests and answers with the same framing.

    Subclasses implement handle(command, payload); returning None means the
    FC stays silent (the transport then times out).
    """

    variant = b"\x00\x00\x00\x00"

    def __init__(self):
        self.commands: List[Tuple[int, bytes]] = []
        self.readings: deque = deque()
        self.voltage = 12.0
        self.current = 5.0
        self.saves = 0
        self.reboots = 0
        self.junk = b""
        self.rejected: Set[int] = set()

    def next_reading(self) -> Tuple[float, float]:
        if self.readings:
            return self.readings.popleft()
        return self.voltage, self.current

    def __call__(self, data: bytes) -> bytes:
        if data[:3] == b"$M<":
            size, command = data[3], data[4]
            payload = data[5:5 + size]
            respond = v1_response
        elif data[:3] == b"$X<":
            _flag, command, size = struct.unpack_from("<BHH", data, 3)
            payload = data[8:8 + size]
            respond = v2_response
        else:
            return b""

        self.commands.append((command, payload))
        if command in self.rejected:
            return self.junk + respond(command, error=True)
        try:
            answer = self.handle(command, payload)
        except Reject:
            return self.junk + respond(command, error=True)
        if answer is None:
            return b""
        return self.junk + respond(command, answer)

    def command_ids(self) -> List[int]:
        return [command for command, _payload in self.commands]

    def handle(self, command: int, payload: bytes) -> Optional[bytes]:
        raise NotImplementedError


class SimulatedBetaflight(SimulatedFC):
    """Betaflight board with one ADC voltage meter and one ADC current meter."""

    variant = b"BTFL"

    def __init__(self):
        super().__init__()
        self.has_voltage_meter = True
        self.has_current_meter = True
        self.vbatscale = 110
        self.resdivval = 10
        self.resdivmultiplier = 1
        self.current_scale = 400
        self.current_offset = 0
        self.voltage_source = 1
        self.current_source = 1

    def battery_config(self) -> bytes:
        return (
            bytes([33, 43, 35])
            + struct.pack("<H", 1500)
            + bytes([self.voltage_source, self.current_source])
            + struct.pack("<HHH", 330, 430, 350)
        )

    def handle(self, command: int, payload: bytes) -> Optional[bytes]:
        if command == msp.MSP_FC_VARIANT:
            return self.variant
        if command == msp.MSP_VOLTAGE_METER_CONFIG:
            entries = []
            if self.has_voltage_meter:
                entries.append(bytes([5, 10, 0, self.vbatscale, self.resdivval, self.resdivmultiplier]))
            return bytes([len(entries)]) + b"".join(entries)
        if command == msp.MSP_CURRENT_METER_CONFIG:
            entries = []
            if self.has_current_meter:
                entries.append(bytes([6]) + struct.pack("<BBhh", 10, 1, self.current_scale, self.current_offset))
            # virtual meter, never picked as the ADC sensor
            entries.append(bytes([6]) + struct.pack("<BBhh", 80, 2, 0, 0))
            return bytes([len(entries)]) + b"".join(entries)
        if command == msp.MSP_SET_VOLTAGE_METER_CONFIG:
            _id, self.vbatscale, self.resdivval, self.resdivmultiplier = struct.unpack("<BBBB", payload)
            return b""
        if command == msp.MSP_SET_CURRENT_METER_CONFIG:
            _id, self.current_scale, self.current_offset = struct.unpack("<Bhh", payload)
            return b""
        if command == msp.MSP_BATTERY_CONFIG:
            return self.battery_config()
        if command == msp.MSP_SET_BATTERY_CONFIG:
            self.voltage_source = payload[5]
            self.current_source = payload[6]
            return b""
        if command == msp.MSP_ANALOG:
            voltage, current = self.next_reading()
            centivolts = int(round(voltage * 100))
            return struct.pack(
                "<BHHhH",
                min(centivolts // 10, 255),
                0,
                0,
                int(round(current * 100)),
                centivolts,
            )
        if command == msp.MSP_EEPROM_WRITE:
            self.saves += 1
            return b""
        if command == msp.MSP_REBOOT:
            self.reboots += 1
            return b""
        raise Reject()


class SimulatedINAV(SimulatedFC):
    """INAV board; answers the variant query in MSP v1 too, like real INAV."""

    variant = b"INAV"

    SETTING_FORMATS = {
        "vbat_meter_type": "<B",
        "current_meter_type": "<B",
        "vbat_scale": "<H",
        "current_meter_scale": "<h",
        "current_meter_offset": "<h",
    }

    def __init__(self):
        super().__init__()
        self.settings: Dict[str, int] = {
            "vbat_meter_type": 1,
            "current_meter_type": 1,
            "vbat_scale": 1100,
            "current_meter_scale": 250,
            "current_meter_offset": 0,
        }
        self.features = (1 << 1) | (1 << 11)

    def handle(self, command: int, payload: bytes) -> Optional[bytes]:
        if command == msp.MSP_FC_VARIANT:
            return self.variant
        if command == msp.MSP2_COMMON_SETTING:
            name = payload.rstrip(b"\x00").decode("ascii")
            if name not in self.settings:
                raise Reject()
            return struct.pack(self.SETTING_FORMATS[name], self.settings[name])
        if command == msp.MSP2_COMMON_SET_SETTING:
            raw_name, _, raw_value = payload.partition(b"\x00")
            name = raw_name.decode("ascii")
            (self.settings[name],) = struct.unpack(self.SETTING_FORMATS[name], raw_value)
            return b""
        if command == msp.MSP_FEATURE:
            return struct.pack("<I", self.features)
        if command == msp.MSP_SET_FEATURE:
            (self.features,) = struct.unpack("<I", payload)
            return b""
        if command == msp.MSP2_INAV_ANALOG:
            voltage, current = self.next_reading()
            # flags, vbat, amperage, then power and mAh drawn
            return struct.pack(
                "<BHhII", 0, int(round(voltage * 100)), int(round(current * 100)), 0, 0
            )
        if command == msp.MSP_EEPROM_WRITE:
            self.saves += 1
            return b""
        if command == msp.MSP_REBOOT:
            self.reboots += 1
            return b""
        raise Reject()


class SilentFC(SimulatedFC):
    """Connected device that never answers."""

    def handle(self, command: int, payload: bytes) -> Optional[bytes]:
        return None


class FakeClock:
    """Deterministic monotonic clock whose sleep() advances time."""

    def __init__(self, start: float = 100.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_transport(simulator) -> SerialTransport:
    transport = SerialTransport("/dev/ttyFAKE0", timeout=0.01)
    transport.ser = FakeSerial(simulator)
    return transport


@pytest.fixture
def betaflight():
    return SimulatedBetaflight()


@pytest.fixture
def inav():
    return SimulatedINAV()


@pytest.fixture
def clock():
    return FakeClock()
