"""
Shared pytest fixtures for NexStar driver tests.

This module provides common fixtures used across unit and integration tests,
including mock loggers, serial ports and a simulated hand controller that
answers the NexStar protocol.
"""

import pytest
from unittest.mock import Mock, MagicMock, patch
import threading
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

FAKE_PORT = '/dev/ttyFAKE'


class FakeMount:
    """Stand-in for a serial port wired to a NexStar hand controller.

    write() records the command and queues the controller's answer, read()
    hands the answer back in pieces no larger than requested. Responses can
    be overridden per command with script(); a scripted b'' means the
    controller stays silent.

    Slews take `slew_polls` status queries to finish. Set it to None for a
    mount that never arrives.
    """

    def __init__(self):
        self.is_open = True
        self.timeout = 0.5
        self.written = []
        self.silent = False
        self._pending = b''
        self._scripted = {}
        self._lock = threading.Lock()

        # Controller identity
        self.version = bytes([4, 21])
        self.variant = 0x11
        self.model = 5
        self.firmware = {0x10: bytes([7, 11]), 0x11: bytes([7, 11])}
        self.aligned = 1

        # Mount state, 32-bit raw angles
        self.ra_raw = 0
        self.dec_raw = 0
        self.az_raw = 0
        self.alt_raw = 0
        self.track_mode = 1
        self.pulse_active = {}
        self.slew_polls = 2
        self.pointing_error_raw = 0
        self._slew_remaining = 0
        self._slew_target = None

    def script(self, command, *responses):
        """Queue one-shot responses for a command, used before the defaults."""
        self._scripted.setdefault(bytes(command), []).extend(responses)

    def commands(self, prefix=b''):
        """Written commands starting with prefix."""
        return [c for c in self.written if c.startswith(prefix)]

    # pyserial interface

    def write(self, data):
        data = bytes(data)
        with self._lock:
            self.written.append(data)
            self._pending = self._respond(data)
        return len(data)

    def read(self, size=1):
        with self._lock:
            chunk, self._pending = self._pending[:size], self._pending[size:]
        return chunk

    def reset_input_buffer(self):
        with self._lock:
            self._pending = b''

    def reset_output_buffer(self):
        pass

    def flush(self):
        pass

    def open(self):
        self.is_open = True

    def close(self):
        self.is_open = False

    # protocol simulation

    def _respond(self, data):
        if self.silent:
            return b''

        queued = self._scripted.get(data)
        if queued:
            return queued.pop(0)

        if data[0] == 0x50 and len(data) == 8:
            return self._respond_passthrough(data[2], data[3])

        command = data[:1]
        if command == b'K':
            return data[1:2] + b'#'
        if command == b'V':
            return self.version + b'#'
        if command == b'v':
            return bytes([self.variant]) + b'#'
        if command == b'm':
            return bytes([self.model]) + b'#'
        if command == b'J':
            return bytes([self.aligned]) + b'#'
        if command == b't':
            return bytes([self.track_mode]) + b'#'
        if command == b'T':
            self.track_mode = data[1]
        elif command == b'e':
            return f"{self.ra_raw:08X},{self.dec_raw:08X}#".encode('ascii')
        elif command == b'z':
            return f"{self.az_raw:08X},{self.alt_raw:08X}#".encode('ascii')
        elif command in (b'r', b'b'):
            first, second = (int(field, 16) for field in data[1:].decode('ascii').split(','))
            self._slew_target = (command, first, second)
            self._slew_remaining = self.slew_polls
        elif command == b's':
            first, second = (int(field, 16) for field in data[1:].decode('ascii').split(','))
            self.ra_raw, self.dec_raw = first, second
        elif command == b'L':
            return self._slew_status()
        elif command == b'M':
            self._slew_target = None
            self._slew_remaining = 0
        return b'#'

    def _respond_passthrough(self, device, command_id):
        if command_id == 0xFE:
            return self.firmware.get(device, b'') + b'#'
        if command_id == 0x27:
            return bytes([self.pulse_active.get(device, 0)]) + b'#'
        return b'#'

    def _slew_status(self):
        if self._slew_target is None:
            return b'0#'
        if self._slew_remaining is None:
            return b'1#'
        if self._slew_remaining > 0:
            self._slew_remaining -= 1
            return b'1#'

        command, first, second = self._slew_target
        first = (first + self.pointing_error_raw) & 0xFFFFFFFF
        if command == b'r':
            self.ra_raw, self.dec_raw = first, second
        else:
            self.az_raw, self.alt_raw = first, second
        self._slew_target = None
        return b'0#'


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Returns:
        Mock logger with standard logging methods.
    """
    logger = Mock()
    logger.debug = Mock()
    logger.info = Mock()
    logger.warning = Mock()
    logger.error = Mock()
    logger.critical = Mock()
    return logger


@pytest.fixture
def mock_serial_port():
    """Mock serial port for testing without hardware.

    Yields:
        MagicMock serial port instance.
    """
    with patch('serial.Serial') as mock:
        instance = MagicMock()
        instance.is_open = True
        instance.timeout = 0.5
        instance.read = Mock(return_value=b'')
        instance.write = Mock(side_effect=lambda data: len(data))
        instance.reset_input_buffer = Mock()
        instance.reset_output_buffer = Mock()
        instance.flush = Mock()
        instance.close = Mock()
        mock.return_value = instance
        yield instance


@pytest.fixture
def fake_mount():
    """Simulated hand controller returned by serial.Serial().

    Yields:
        FakeMount instance.
    """
    mount = FakeMount()
    with patch('serial.Serial', return_value=mount):
        yield mount


@pytest.fixture
def serial_manager(fake_mount, mock_logger):
    """SerialManager connected to the simulated mount."""
    from nexstar_serial import SerialManager
    manager = SerialManager(mock_logger, command_timeout=0.01)
    manager.connect(FAKE_PORT)
    yield manager
    manager.disconnect()


@pytest.fixture
def device(fake_mount, mock_logger):
    """NexStarDevice connected to the simulated mount."""
    from NexStarDevice import NexStarDevice
    mount_device = NexStarDevice(mock_logger)
    assert mount_device.connect(FAKE_PORT)
    yield mount_device
    mount_device.disconnect()


@pytest.fixture
def mock_config():
    """Create mock configuration object.

    Returns:
        Mock config with the NexStarConfig properties.
    """
    config = Mock()
    config.dev_port = FAKE_PORT
    config.baudrate = 9600
    config.read_timeout = 0.5
    config.command_timeout = 0.01
    config.goto_poll_interval = 0.001
    config.goto_tolerance = 0.01
    config.goto_timeout = 0.0
    config.log_level = 10  # DEBUG
    config.log_to_stdout = False
    config.max_size_mb = 5
    config.num_keep_logs = 10
    return config


@pytest.fixture
def temp_toml_file(tmp_path):
    """Write a complete nexstar.toml to a temporary directory.

    Returns:
        Path to the file.
    """
    config_file = tmp_path / 'nexstar.toml'
    config_file.write_text("""
[device]
dev_port = 'COM7'
baudrate = 9600
read_timeout = 0.25
command_timeout = 3.0

[goto]
poll_interval = 0.05
tolerance = 0.1
timeout = 120

[logging]
log_level = 'DEBUG'
log_to_stdout = true
max_size_mb = 2
num_keep_logs = 3
""")
    return config_file

