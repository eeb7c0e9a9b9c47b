"""
Flight Controller Serial Transport Layer

Handles low-level serial communication with flight controllers.

This module provides:
- Serial port initialization with exclusive access
- Request/response exchange of protocol frames
- Timeout and framing error detection

No retries at this layer. Callers decide which commands are safe to re-issue.
"""

import errno
import logging
from typing import Optional

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

from fc_calibrate.errors import (
    DeviceBusy,
    FramingError,
    PortPermissionDenied,
    TransportIOError,
    TransportTimeout,
)
from fc_calibrate.protocol.msp import ProtocolFrame

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 115200
DEFAULT_TIMEOUT = 1.0

_BUSY_ERRNOS = {errno.EBUSY, errno.EAGAIN, errno.EWOULDBLOCK}
# Windows reports a COM port held by another process as "Access is denied"
_BUSY_MARKERS = ("busy", "exclusively lock", "access is denied")
_PERMISSION_ERRNOS = {errno.EACCES, errno.EPERM}


def _is_busy(exc: Exception) -> bool:
    """Check whether a pyserial open failure means the port is claimed."""
    if getattr(exc, "errno", None) in _BUSY_ERRNOS:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _BUSY_MARKERS)


def _is_permission_denied(exc: Exception) -> bool:
    if getattr(exc, "errno", None) in _PERMISSION_ERRNOS:
        return True
    return "permission denied" in str(exc).lower()


class SerialTransport:
    """
    Low-level serial transport for flight controllers.

    Handles:
    - Serial port management
    - Frame-level request/response
    - Timeout and error handling

    Example:
        with SerialTransport(port="/dev/ttyACM0") as transport:
            response = transport.send_and_receive(MSPv1Frame(MSP_FC_VARIANT))
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize transport layer.

        Args:
            port: Serial port (e.g., "/dev/ttyACM0", "COM3")
            baudrate: Serial baud rate (default 115200)
            timeout: Read/write timeout in seconds (default 1.0)
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.ser: Optional[serial.Serial] = None

    def __enter__(self) -> "SerialTransport":
        if not self.is_open:
            self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def open(self) -> None:
        """
        Open serial port with exclusive access.

        Raises:
            DeviceBusy: If another process holds the port
            PortPermissionDenied: If the user may not access the device node
            TransportIOError: If the port cannot be opened for any other reason
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout,
                write_timeout=self.timeout,
                exclusive=True,
            )
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()

            logger.debug(
                f"Opened {self.port} at {self.baudrate} bps "
                f"(timeout={self.timeout}s)"
            )
        except (serial.SerialException, OSError) as e:
            if _is_busy(e):
                raise DeviceBusy(f"Port {self.port} is in use: {e}") from e
            if _is_permission_denied(e):
                raise PortPermissionDenied(f"No permission to open {self.port}: {e}") from e
            raise TransportIOError(f"Cannot open port {self.port}: {e}") from e

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")
        self.ser = None

    def _require_open(self) -> "serial.Serial":
        if not self.is_open:
            raise TransportIOError("Serial port not open")
        return self.ser

    def send_raw(self, data: bytes) -> None:
        """
        Send raw bytes to the flight controller.

        Raises:
            TransportTimeout: If the write does not complete in time
            TransportIOError: If the write fails
        """
        ser = self._require_open()
        try:
            written = ser.write(data)
        except serial.SerialTimeoutException as e:
            raise TransportTimeout(f"Write timeout on {self.port}") from e
        except (serial.SerialException, OSError) as e:
            raise TransportIOError(f"Write error: {e}") from e

        if written is not None and written != len(data):
            raise TransportIOError(
                f"Incomplete write: sent {written}/{len(data)} bytes"
            )
        logger.debug(f">>> {data.hex().upper()}")

    def recv_exact(self, length: int) -> bytes:
        """
        Receive exactly ``length`` bytes.

        Raises:
            TransportTimeout: If fewer bytes arrive before the timeout
            TransportIOError: If the read fails
        """
        ser = self._require_open()
        try:
            data = ser.read(length)
        except (serial.SerialException, OSError) as e:
            raise TransportIOError(f"Read error: {e}") from e

        if len(data) < length:
            raise TransportTimeout(
                f"Flight controller did not respond in {self.timeout}s "
                f"(expected {length} bytes, got {len(data)})"
            )
        logger.debug(f"<<< {data.hex().upper()}")
        return data

    def _drain_junk(self) -> None:
        """Discard stale bytes left over from a previous exchange."""
        ser = self._require_open()
        try:
            ser.reset_input_buffer()
        except (serial.SerialException, OSError) as e:
            raise TransportIOError(f"Cannot flush input buffer: {e}") from e

    def send_and_receive(self, frame: ProtocolFrame) -> ProtocolFrame:
        """
        Send one request frame and read its response.

        The response is decoded with the request's frame class, so the
        framing of the request defines the framing expected back.

        Args:
            frame: Request frame

        Returns:
            Decoded response frame

        Raises:
            TransportTimeout: No (complete) response within the timeout
            TransportIOError: Broken or closed link
            FramingError: Malformed response or response to another command
        """
        self._drain_junk()
        self.send_raw(frame.encode())

        response = type(frame).read_response(self.recv_exact)
        if response.command != frame.command:
            raise FramingError(
                f"Response for command {response.command} "
                f"while waiting for {frame.command}"
            )
        return response


def open_serial(
    port: str,
    baudrate: int = DEFAULT_BAUDRATE,
    timeout: float = DEFAULT_TIMEOUT,
) -> SerialTransport:
    """
    Open a flight controller transport connection.

    Args:
        port: Serial port name
        baudrate: Baud rate (default 115200)
        timeout: Timeout in seconds (default 1.0)

    Returns:
        SerialTransport instance (already open)
    """
    transport = SerialTransport(port, baudrate, timeout)
    transport.open()
    return transport
