"""Tests for the serial transport using an in-memory port."""

import errno

import pytest
import serial

from fc_calibrate.errors import (
    DeviceBusy,
    FramingError,
    PortPermissionDenied,
    TransportIOError,
    TransportTimeout,
)
from fc_calibrate.protocol import transport as transport_mod
from fc_calibrate.protocol.msp import MSP_API_VERSION, MSP_FC_VARIANT, MSPv1Frame, MSPv2Frame
from fc_calibrate.protocol.transport import SerialTransport

from conftest import FakeSerial, SilentFC, make_transport, v1_response


class TestSendAndReceive:
    """Request/response exchange."""

    def test_roundtrip_with_simulator(self, betaflight):
        transport = make_transport(betaflight)
        response = transport.send_and_receive(MSPv1Frame(MSP_FC_VARIANT))

        assert response.payload == b"BTFL"
        assert transport.ser.written == [b"$M<\x00\x02\x02"]

    def test_v2_request_gets_v2_response(self, inav):
        transport = make_transport(inav)
        response = transport.send_and_receive(MSPv2Frame(MSP_FC_VARIANT))

        assert isinstance(response, MSPv2Frame)
        assert response.payload == b"INAV"

    def test_junk_before_response_is_skipped(self, betaflight):
        betaflight.junk = b"\r\n# CLI\r\n"
        transport = make_transport(betaflight)
        assert transport.send_and_receive(MSPv1Frame(MSP_FC_VARIANT)).payload == b"BTFL"

    def test_stale_bytes_are_drained_before_sending(self, betaflight):
        transport = make_transport(betaflight)
        transport.ser.rx.extend(v1_response(MSP_API_VERSION, b"\x00\x01\x2e"))

        assert transport.send_and_receive(MSPv1Frame(MSP_FC_VARIANT)).payload == b"BTFL"

    def test_silent_device_times_out(self):
        transport = make_transport(SilentFC())
        with pytest.raises(TransportTimeout):
            transport.send_and_receive(MSPv1Frame(MSP_FC_VARIANT))

    def test_truncated_response_times_out(self):
        frame = v1_response(MSP_FC_VARIANT, b"BTFL")
        transport = make_transport(lambda data: frame[:-2])
        with pytest.raises(TransportTimeout):
            transport.send_and_receive(MSPv1Frame(MSP_FC_VARIANT))

    def test_response_to_other_command_is_framing_error(self):
        transport = make_transport(lambda data: v1_response(MSP_API_VERSION, b"\x00\x01\x2e"))
        with pytest.raises(FramingError):
            transport.send_and_receive(MSPv1Frame(MSP_FC_VARIANT))

    def test_closed_port_raises_io_error(self):
        transport = SerialTransport("/dev/ttyFAKE0")
        with pytest.raises(TransportIOError):
            transport.send_and_receive(MSPv1Frame(MSP_FC_VARIANT))

    def test_read_failure_is_io_error(self):
        class Unplugged(FakeSerial):
            def read(self, size):
                raise serial.SerialException("device reports readiness to read but returned no data")

        transport = SerialTransport("/dev/ttyFAKE0")
        transport.ser = Unplugged()
        with pytest.raises(TransportIOError):
            transport.recv_exact(1)

    def test_write_timeout(self):
        class Stuck(FakeSerial):
            def write(self, data):
                raise serial.SerialTimeoutException("Write timeout")

        transport = SerialTransport("/dev/ttyFAKE0")
        transport.ser = Stuck()
        with pytest.raises(TransportTimeout):
            transport.send_raw(b"$M<\x00\x02\x02")


class TestOpen:
    """Port opening and exclusive access."""

    def test_busy_port_raises_device_busy(self, monkeypatch):
        def busy(**kwargs):
            raise serial.SerialException(errno.EBUSY, "could not open port: Device or resource busy")

        monkeypatch.setattr(transport_mod.serial, "Serial", busy)
        with pytest.raises(DeviceBusy):
            SerialTransport("/dev/ttyACM0").open()

    def test_exclusive_lock_failure_raises_device_busy(self, monkeypatch):
        def locked(**kwargs):
            raise serial.SerialException(
                "Could not exclusively lock port /dev/ttyACM0: [Errno 11] Resource temporarily unavailable"
            )

        monkeypatch.setattr(transport_mod.serial, "Serial", locked)
        with pytest.raises(DeviceBusy):
            SerialTransport("/dev/ttyACM0").open()

    def test_missing_port_raises_io_error(self, monkeypatch):
        def missing(**kwargs):
            raise serial.SerialException(errno.ENOENT, "could not open port /dev/ttyACM9")

        monkeypatch.setattr(transport_mod.serial, "Serial", missing)
        with pytest.raises(TransportIOError) as excinfo:
            SerialTransport("/dev/ttyACM9").open()
        assert not isinstance(excinfo.value, DeviceBusy)

    def test_permission_denied_is_not_reported_as_busy(self, monkeypatch):
        def denied(**kwargs):
            raise serial.SerialException(
                errno.EACCES,
                "could not open port /dev/ttyACM0: [Errno 13] Permission denied: '/dev/ttyACM0'",
            )

        monkeypatch.setattr(transport_mod.serial, "Serial", denied)
        with pytest.raises(PortPermissionDenied) as excinfo:
            SerialTransport("/dev/ttyACM0").open()
        assert isinstance(excinfo.value, TransportIOError)
        assert not isinstance(excinfo.value, DeviceBusy)

    def test_windows_access_denied_means_busy(self, monkeypatch):
        def in_use(**kwargs):
            raise serial.SerialException(
                "could not open port 'COM3': PermissionError(13, 'Access is denied.', None, 5)"
            )

        monkeypatch.setattr(transport_mod.serial, "Serial", in_use)
        with pytest.raises(DeviceBusy):
            SerialTransport("COM3").open()

    def test_open_requests_exclusive_access(self, monkeypatch):
        opened = {}

        def fake_serial(**kwargs):
            opened.update(kwargs)
            return FakeSerial()

        monkeypatch.setattr(transport_mod.serial, "Serial", fake_serial)
        with SerialTransport("/dev/ttyACM0", baudrate=57600, timeout=0.5) as transport:
            assert transport.is_open
            ser = transport.ser

        assert opened["exclusive"] is True
        assert opened["baudrate"] == 57600
        assert opened["timeout"] == 0.5
        assert not ser.is_open
        assert transport.ser is None
