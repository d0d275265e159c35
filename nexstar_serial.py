# File: nexstar_serial.py
"""
Serial transport and frame codec for NexStar hand controllers.

This module owns the serial channel and implements the two wire formats the
hand controller understands: plain ASCII direct commands answered with a
fixed number of bytes, and 8-byte binary passthrough frames forwarded to an
individual axis motor controller.

Example:
    Basic usage with context manager:

    >>> with SerialManager(logger) as serial_mgr:
    ...     serial_mgr.connect('/dev/ttyUSB0')
    ...     echo = serial_mgr.send_command('Kx', 2)
    ...     firmware = serial_mgr.send_passthrough(AxisDevice.RA, 0xFE, b'', 2)
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Union

import serial

from nexstar_types import AxisDevice


# Constants
DEFAULT_BAUDRATE = 9600
DEFAULT_READ_TIMEOUT = 0.5
COMMAND_TIMEOUT = 5.0
MAX_RESPONSE_SIZE = 20
MAX_PASSTHROUGH_PAYLOAD = 3
PASSTHROUGH_FRAME_SIZE = 8
PASSTHROUGH_OPCODE = 0x50


class NexStarSerialError(Exception):
    """Base exception for NexStar serial communication errors."""
    pass


class ConnectionError(NexStarSerialError):
    """Serial port could not be opened or is already open."""
    pass


class FramingError(NexStarSerialError):
    """Response byte count differs from what the command expects."""
    pass


class UnsupportedResponseError(NexStarSerialError):
    """Device answered with a response shape the driver does not know."""
    pass


@dataclass(frozen=True)
class PassthroughFrame:
    """Immutable 8-byte passthrough command addressed to an axis controller.

    Wire layout: [0x50][len+1][dest][cmd][p0][p1][p2][response_len]
    """
    device: int
    command_id: int
    payload: bytes = b''
    response_len: int = 0

    def __post_init__(self) -> None:
        """Validate field ranges after initialization."""
        if len(self.payload) > MAX_PASSTHROUGH_PAYLOAD:
            raise ValueError(
                f"Passthrough payload is {len(self.payload)} bytes, "
                f"maximum is {MAX_PASSTHROUGH_PAYLOAD}"
            )
        for name in ('device', 'command_id', 'response_len'):
            value = getattr(self, name)
            if not 0 <= value <= 0xFF:
                raise ValueError(f"Passthrough {name} must fit in one byte, got {value}")

    def to_bytes(self) -> bytes:
        """Encode the frame for transmission."""
        padded = self.payload.ljust(MAX_PASSTHROUGH_PAYLOAD, b'\x00')
        return bytes([
            PASSTHROUGH_OPCODE,
            len(self.payload) + 1,
            self.device,
            self.command_id,
        ]) + padded + bytes([self.response_len])


class SerialManager:
    """
    Thread-safe serial channel owner for a NexStar hand controller.

    Provides bounded-timeout reads, complete writes and the direct/passthrough
    command framing. Commands are single-shot: a response of the wrong length
    raises FramingError and is never retried here.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        command_timeout: float = COMMAND_TIMEOUT
    ):
        """
        Initialize serial manager with optional logger.

        Args:
            logger: Optional logger instance. If None, creates module logger.
            command_timeout: Seconds allowed for a complete response.
        """
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._serial: Optional[serial.Serial] = None
        self._port: Optional[str] = None
        self._command_timeout = command_timeout

    def __enter__(self) -> 'SerialManager':
        """Context manager entry - connection must be established separately."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - close the channel."""
        self.cleanup()

    @property
    def is_connected(self) -> bool:
        """Check if serial connection is active."""
        with self._lock:
            return self._serial is not None and self._serial.is_open

    @property
    def port(self) -> Optional[str]:
        return self._port

    @property
    def command_timeout(self) -> float:
        return self._command_timeout

    def connect(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        read_timeout: float = DEFAULT_READ_TIMEOUT
    ) -> None:
        """
        Open and configure the serial channel.

        Args:
            port: Serial port path (e.g., '/dev/ttyUSB0' or 'COM3')
            baudrate: Communication baud rate
            read_timeout: Per-read timeout in seconds

        Raises:
            ValueError: If parameters are invalid
            ConnectionError: If a channel is already open or opening fails
        """
        if not port or not isinstance(port, str):
            raise ValueError("Port must be a non-empty string")

        if not isinstance(baudrate, int) or baudrate <= 0:
            raise ValueError("Baudrate must be a positive integer")

        with self._lock:
            if self.is_connected:
                raise ConnectionError(f"Serial channel already open on {self._port}")

            try:
                self._serial = serial.Serial(
                    port=port,
                    baudrate=baudrate,
                    bytesize=serial.EIGHTBITS,
                    parity=serial.PARITY_NONE,
                    stopbits=serial.STOPBITS_ONE,
                    timeout=read_timeout,
                    xonxoff=False,
                    rtscts=False,
                    dsrdtr=False
                )

                if not self._serial.is_open:
                    self._serial.open()

            except (serial.SerialException, OSError, ValueError) as ex:
                self._serial = None
                self._logger.error(f"Failed to open serial connection on {port}: {ex}")
                raise ConnectionError(f"Serial connection failed: {ex}") from ex

            self._port = port
            self._logger.info(f"Serial connection opened: {port} @ {baudrate} baud")

    def disconnect(self) -> None:
        """Close the channel if it is open. Safe to call repeatedly."""
        with self._lock:
            self._close_connection()

    def cleanup(self) -> None:
        """Force immediate connection cleanup."""
        with self._lock:
            self._close_connection()
            self._logger.debug("Serial connection cleaned up")

    def flush_input(self) -> None:
        """Discard stale bytes so the next response starts a fresh frame."""
        with self._lock:
            self._require_open()
            self._serial.reset_input_buffer()
            self._serial.reset_output_buffer()

    def write_all(self, data: bytes) -> int:
        """
        Write the whole buffer, looping over partial writes.

        Stops early when the port accepts nothing; the short count is
        returned to the caller rather than retried.

        Args:
            data: Bytes to transmit

        Returns:
            Number of bytes actually written
        """
        with self._lock:
            self._require_open()
            written = 0
            while written < len(data):
                count = self._serial.write(data[written:])
                if not count or count <= 0:
                    break
                written += count
            self._serial.flush()
            return written

    def read_with_timeout(self, max_bytes: int, timeout: float) -> bytes:
        """
        Read up to max_bytes, giving each read attempt `timeout` seconds.

        Each attempt returns whatever arrived within the timeout; an empty
        attempt means the device went quiet and ends the read. The call never
        blocks indefinitely and may return fewer bytes than requested.

        Args:
            max_bytes: Maximum number of bytes to read
            timeout: Per-attempt timeout in seconds

        Returns:
            Bytes read, possibly fewer than max_bytes
        """
        with self._lock:
            self._require_open()
            buffer = b''
            if max_bytes <= 0:
                return buffer

            original_timeout = self._serial.timeout
            self._serial.timeout = timeout
            try:
                while len(buffer) < max_bytes:
                    chunk = self._serial.read(max_bytes - len(buffer))
                    if not chunk:
                        break
                    buffer += chunk
            finally:
                self._serial.timeout = original_timeout

            return buffer

    def send_command(
        self,
        command: Union[str, bytes],
        response_len: int,
        min_response_len: Optional[int] = None
    ) -> bytes:
        """
        Send a direct command and read its fixed-length response.

        Args:
            command: Command bytes, or ASCII text (e.g., 'Kx' or 'e')
            response_len: Exact number of response bytes expected
            min_response_len: Accept shorter responses down to this length.
                Used by queries whose answer length depends on firmware.

        Returns:
            Raw response bytes, including any '#' terminator

        Raises:
            ValueError: If command or lengths are invalid
            FramingError: If the channel is closed, the write is short,
                I/O fails, or the response length is wrong
        """
        if isinstance(command, str):
            command = command.encode('ascii')

        if not command or not isinstance(command, bytes):
            raise ValueError("Command must be non-empty bytes or ASCII string")

        if not 0 <= response_len <= MAX_RESPONSE_SIZE:
            raise ValueError(
                f"Response length {response_len} outside 0-{MAX_RESPONSE_SIZE}"
            )

        if min_response_len is None:
            min_response_len = response_len

        with self._lock:
            if not self.is_connected:
                raise FramingError("Serial port not connected")

            try:
                self.flush_input()

                self._logger.debug(f"Sending command: {command!r} ({command.hex(' ')})")
                written = self.write_all(command)
                if written != len(command):
                    self._logger.warning(
                        f"Partial write of {command!r}: {written}/{len(command)} bytes"
                    )
                    raise FramingError(
                        f"Wrote {written} of {len(command)} command bytes"
                    )

                response = self.read_with_timeout(response_len, self._command_timeout)

            except (serial.SerialException, OSError) as ex:
                self._logger.error(f"Serial I/O error on command {command!r}: {ex}")
                raise FramingError(f"Serial communication error: {ex}") from ex

        if not min_response_len <= len(response) <= response_len:
            self._logger.error(
                f"Command {command!r} expected {response_len} bytes, "
                f"got {len(response)}: {response!r}"
            )
            raise FramingError(
                f"Expected {response_len} response bytes, got {len(response)}"
            )

        self._logger.debug(f"Response: {response!r}")
        return response

    def send_passthrough(
        self,
        device: Union[AxisDevice, int],
        command_id: int,
        payload: bytes = b'',
        response_len: int = 0,
        min_response_len: Optional[int] = None
    ) -> bytes:
        """
        Send a passthrough command to an axis motor controller.

        The device appends one status byte, so response_len + 1 bytes are
        read and returned.

        Args:
            device: Destination axis controller id
            command_id: Motor controller sub-command
            payload: Up to 3 argument bytes
            response_len: Data bytes expected from the motor controller
            min_response_len: Shortest acceptable total response, if shorter
                answers are valid for this sub-command

        Returns:
            Response bytes including the trailing status byte

        Raises:
            ValueError: If the frame fields are out of range
            FramingError: If the response length is wrong
        """
        frame = PassthroughFrame(int(device), command_id, bytes(payload), response_len)
        self._logger.debug(
            f"Passthrough to 0x{frame.device:02X} cmd 0x{frame.command_id:02X} "
            f"payload {frame.payload.hex(' ') or '-'}"
        )
        return self.send_command(frame.to_bytes(), response_len + 1, min_response_len)

    def _require_open(self) -> None:
        if not self.is_connected:
            raise FramingError("Serial port not connected")

    def _close_connection(self) -> None:
        """Close the physical serial connection."""
        if self._serial:
            try:
                if self._serial.is_open:
                    self._serial.close()
                    self._logger.info(f"Serial connection closed: {self._port}")
            except (serial.SerialException, OSError) as ex:
                self._logger.warning(f"Error closing serial connection: {ex}")
            finally:
                self._serial = None
                self._port = None
