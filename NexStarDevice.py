# File: NexStarDevice.py
"""NexStar mount session: identification, slewing, tracking and guiding."""

import logging
import struct
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from logging import Logger
from typing import Optional, Tuple, Union

from dateutil import parser

from nexstar_angles import (
    angular_distance,
    degrees_to_hours,
    format_coordinate_pair,
    hours_to_degrees,
    normalize_folded_angle,
    parse_coordinate_pair,
    to_sexagesimal,
    wrap_degrees,
)
from nexstar_serial import (
    COMMAND_TIMEOUT,
    DEFAULT_BAUDRATE,
    DEFAULT_READ_TIMEOUT,
    ConnectionError,
    FramingError,
    NexStarSerialError,
    SerialManager,
    UnsupportedResponseError,
)
from nexstar_types import (
    AxisDevice,
    ControllerVariant,
    Direction,
    MountIdentity,
    SlewRate,
    TrackMode,
    UNKNOWN_MODEL,
    is_gem_model,
    lookup_model,
)


# Connection check
ECHO_ATTEMPTS = 2
ECHO_RETRY_DELAY = 0.05

# Hand controllers that can report the mount model
MIN_STARSENSE_MODEL_VERSION = 1.18
MIN_NEXSTAR_MODEL_VERSION = 2.2

# Motor controller passthrough commands
MC_GET_VERSION = 0xFE
MC_MOVE_POSITIVE = 0x24
MC_MOVE_NEGATIVE = 0x25
MC_PULSE_GUIDE = 0x26
MC_PULSE_STATUS = 0x27

MAX_GUIDE_RATE = 100
MAX_PULSE_DURATION_CS = 255

# Goto completion
DEFAULT_GOTO_POLL_INTERVAL = 0.001
DEFAULT_GOTO_TOLERANCE = 0.01

POSITION_RESPONSE_LEN = 18


class GotoTimeoutError(NexStarSerialError):
    """Mount was still slewing when the goto deadline passed."""
    pass


class GotoCancelledError(NexStarSerialError):
    """Goto polling was cancelled by the caller."""
    pass


class NexStarDevice:
    """
    Protocol-level session with one NexStar hand controller.

    Owns a single SerialManager. All operations are synchronous and
    single-shot: a malformed or short response raises FramingError and leaves
    the mount state unknown, so callers should re-query position or status
    before carrying on. The only built-in retry is the echo check performed
    by connect().

    Example:
        >>> with NexStarDevice(logger) as mount:
        ...     if mount.connect('/dev/ttyUSB0'):
        ...         print(mount.identify().model_name)
        ...         mount.goto_equatorial(5.5, -5.4, tolerance=0.05)
    """

    def __init__(
        self,
        logger: Optional[Logger] = None,
        config=None,
        serial_manager: Optional[SerialManager] = None
    ) -> None:
        """
        Initialize a disconnected mount session.

        Args:
            logger: Logger for device operations. If None, creates module logger.
            config: Optional NexStarConfig supplying port, timeouts and goto
                settings. Built-in defaults are used without one.
            serial_manager: Optional pre-built SerialManager, mainly for tests.
        """
        self._logger = logger or logging.getLogger(__name__)
        self._config = config
        self._lock = threading.RLock()

        command_timeout = config.command_timeout if config is not None else COMMAND_TIMEOUT
        self._serial_manager = serial_manager or SerialManager(self._logger, command_timeout)

        self._connected = False
        self._connecting = False
        self._executor: Optional[ThreadPoolExecutor] = None

        self._logger.debug("NexStarDevice initialized")

    def __enter__(self) -> 'NexStarDevice':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    # ----------
    # Connection
    # ----------

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._connected

    @property
    def connecting(self) -> bool:
        with self._lock:
            return self._connecting

    def connect(self, port: Optional[str] = None) -> bool:
        """
        Open the serial port and verify the hand controller answers.

        The port is opened at 9600-8-N-1 with no flow control, then the echo
        command is tried up to twice, 50 ms apart.

        Args:
            port: Serial port path. Defaults to the configured dev_port.

        Returns:
            True if the mount echoed correctly, False otherwise (the port is
            closed again in that case)

        Raises:
            ConnectionError: If already connected or the port cannot be opened
            ValueError: If no port is given and there is no configuration
        """
        with self._lock:
            if self._connected or self._connecting:
                self._logger.error("Connect called while already connected")
                raise ConnectionError("Mount session already connected")
            self._connecting = True

        try:
            if port is None:
                if self._config is None:
                    raise ValueError("No serial port given and no configuration available")
                port = self._config.dev_port

            baudrate = self._config.baudrate if self._config is not None else DEFAULT_BAUDRATE
            read_timeout = (
                self._config.read_timeout if self._config is not None else DEFAULT_READ_TIMEOUT
            )

            self._logger.info(f"Connecting to mount on {port}")
            self._serial_manager.connect(port, baudrate, read_timeout)

            if not self.check_connection():
                self._logger.error(f"Mount on {port} did not answer the echo check")
                self._serial_manager.disconnect()
                return False

            with self._lock:
                self._connected = True
            self._logger.info(f"Mount connected on {port}")
            return True

        finally:
            with self._lock:
                self._connecting = False

    def disconnect(self) -> None:
        """Close the serial port if connected. Safe to call repeatedly."""
        with self._lock:
            if not self._connected:
                self._logger.debug("Disconnect called when already disconnected")
                return
            self._connected = False
            executor, self._executor = self._executor, None

        self._serial_manager.disconnect()
        if executor is not None:
            executor.shutdown(wait=False)
        self._logger.info("Mount disconnected")

    def echo(self, char: bytes = b'x') -> bool:
        """Send the echo command and check the mount returns the same byte."""
        try:
            response = self._serial_manager.send_command(b'K' + char, 2)
        except FramingError as ex:
            self._logger.warning(f"Echo failed: {ex}")
            return False
        return response == char + b'#'

    def check_connection(self) -> bool:
        """Echo up to ECHO_ATTEMPTS times, pausing ECHO_RETRY_DELAY between tries."""
        for attempt in range(ECHO_ATTEMPTS):
            if self.echo():
                return True
            if attempt < ECHO_ATTEMPTS - 1:
                self._logger.warning(f"Echo attempt {attempt + 1} failed, retrying")
                time.sleep(ECHO_RETRY_DELAY)
        return False

    def check_aligned(self) -> bool:
        """True if the hand controller reports a completed alignment."""
        response = self._serial_manager.send_command('J', 2)
        return response[0] == 0x01

    def hibernate(self) -> None:
        self._logger.info("Hibernating mount")
        self._serial_manager.send_command('x#', 1)

    def wakeup(self) -> None:
        self._logger.info("Waking mount from hibernation")
        self._serial_manager.send_command('y#', 1)

    # --------------
    # Identification
    # --------------

    def get_version(self) -> str:
        """Hand controller firmware version as "major.minor"."""
        response = self._serial_manager.send_command('V', 3)
        version = f"{response[0]}.{response[1]:02d}"
        self._logger.info(f"Controller version: {version}")
        return version

    def get_variant(self) -> int:
        """Hand controller variant byte (NexStar or StarSense)."""
        response = self._serial_manager.send_command('v', 2)
        try:
            return ControllerVariant(response[0])
        except ValueError:
            self._logger.warning(f"Unrecognized controller variant 0x{response[0]:02X}")
            return response[0]

    def get_model(self) -> Tuple[int, str, bool]:
        """
        Query the mount model.

        Returns:
            Tuple of (model id, model name, is German equatorial). Ids missing
            from the model table resolve to "Unknown".
        """
        response = self._serial_manager.send_command('m', 2)
        model_id = response[0]
        model_name = lookup_model(model_id)

        if model_name == UNKNOWN_MODEL:
            self._logger.warning(f"Unrecognized model id {model_id}")
        else:
            self._logger.info(f"Mount model: {model_name}")

        return model_id, model_name, is_gem_model(model_id)

    def get_device_firmware(self, device: Union[AxisDevice, int]) -> str:
        """
        Firmware version of an axis motor controller.

        Older motor controllers answer with one version byte, newer ones with
        major and minor bytes, each followed by the status byte.

        Raises:
            UnsupportedResponseError: If the response is neither 2 nor 3 bytes
        """
        response = self._serial_manager.send_passthrough(
            device, MC_GET_VERSION, b'', 2, min_response_len=0
        )

        if len(response) == 2:
            return f"{response[0]}.0"
        if len(response) == 3:
            return f"{response[0]}.{response[1]:02d}"

        self._logger.error(
            f"Firmware query to 0x{int(device):02X} returned {len(response)} bytes"
        )
        raise UnsupportedResponseError(
            f"Unexpected firmware response length {len(response)} from device 0x{int(device):02X}"
        )

    def identify(self) -> MountIdentity:
        """
        Gather controller version, variant, model and motor firmware.

        The model is only queried on controllers new enough to report it:
        StarSense from 1.18 or any controller from 2.2.

        Returns:
            MountIdentity for the connected mount
        """
        self._logger.debug("Getting controller version")
        version = self.get_version()
        controller_version = float(version)

        self._logger.debug("Getting controller variant")
        try:
            variant = self.get_variant()
        except FramingError as ex:
            self._logger.warning(f"Variant query failed, assuming NexStar: {ex}")
            variant = ControllerVariant.NEXSTAR

        model_id = None
        model_name = None
        is_gem = False
        if ((variant == ControllerVariant.STARSENSE
                and controller_version >= MIN_STARSENSE_MODEL_VERSION)
                or controller_version >= MIN_NEXSTAR_MODEL_VERSION):
            self._logger.debug("Getting controller model")
            model_id, model_name, is_gem = self.get_model()

        self._logger.debug("Getting RA firmware version")
        ra_firmware = self.get_device_firmware(AxisDevice.RA)

        self._logger.debug("Getting DEC firmware version")
        dec_firmware = self.get_device_firmware(AxisDevice.DEC)

        identity = MountIdentity(
            version=version,
            variant=variant,
            model_id=model_id,
            model_name=model_name,
            is_gem=is_gem,
            ra_firmware=ra_firmware,
            dec_firmware=dec_firmware,
        )
        self._logger.info(self.firmware_report(identity))
        return identity

    def firmware_report(self, identity: Optional[MountIdentity] = None) -> str:
        """One-line summary of the mount identification."""
        if identity is None:
            identity = self.identify()
        return (
            f"Firmware Info HC Ver {identity.version} "
            f"model {identity.model_name or UNKNOWN_MODEL} "
            f"{identity.controller_name} {identity.mount_type} mount, "
            f"HW Ver RA {identity.ra_firmware} DEC {identity.dec_firmware}"
        )

    # -----------
    # Positioning
    # -----------

    def slew_equatorial(self, right_ascension: float, declination: float) -> None:
        """
        Start a slew to RA (hours) / Dec (degrees). Does not wait for arrival.
        """
        self._logger.info(f"Slewing to RA {right_ascension:.6f}h Dec {declination:.6f}")
        command = 'r' + format_coordinate_pair(hours_to_degrees(right_ascension), declination)
        self._serial_manager.send_command(command, 1)

    def slew_horizontal(self, azimuth: float, altitude: float) -> None:
        """Start a slew to azimuth / altitude in degrees. Does not wait for arrival."""
        self._logger.info(f"Slewing to Az {azimuth:.6f} Alt {altitude:.6f}")
        command = 'b' + format_coordinate_pair(azimuth, altitude)
        self._serial_manager.send_command(command, 1)

    def sync(self, right_ascension: float, declination: float) -> None:
        """Tell the mount it is pointing at RA (hours) / Dec (degrees). No motion."""
        self._logger.info(f"Syncing to RA {right_ascension:.6f}h Dec {declination:.6f}")
        command = 's' + format_coordinate_pair(hours_to_degrees(right_ascension), declination)
        self._serial_manager.send_command(command, 1)

    def is_slewing(self) -> bool:
        response = self._serial_manager.send_command('L', 2)
        return response[0:1] != b'0'

    def get_equatorial(self) -> Tuple[float, float]:
        """Current position as (RA hours, Dec degrees in [-90, 90])."""
        ra, dec = self._get_position('e')
        return degrees_to_hours(ra), normalize_folded_angle(dec)

    def get_horizontal(self) -> Tuple[float, float]:
        """Current position as (azimuth, altitude) in degrees [0, 360)."""
        return self._get_position('z')

    def goto_equatorial(
        self,
        right_ascension: float,
        declination: float,
        tolerance: Optional[float] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: Optional[float] = None
    ) -> bool:
        """
        Slew to RA/Dec and wait until the mount stops.

        Args:
            right_ascension: Target RA in hours
            declination: Target Dec in degrees
            tolerance: Accepted arrival error per axis in degrees. 0 demands
                an exact match. Defaults to the configured goto tolerance.
            timeout: Seconds to wait for the slew, None or 0 for no limit
            cancel_event: Set from another thread to stop waiting
            poll_interval: Seconds between slew status polls

        Returns:
            True if the read-back position is within tolerance of the target

        Raises:
            GotoCancelledError: If cancel_event was set (the slew is aborted)
            GotoTimeoutError: If the deadline passed (the slew is aborted)
            FramingError: If any command fails
        """
        self.slew_equatorial(right_ascension, declination)
        self._wait_for_slew(timeout, cancel_event, poll_interval)

        ra, dec = self.get_equatorial()
        ra_error = angular_distance(hours_to_degrees(ra), hours_to_degrees(right_ascension))
        dec_error = angular_distance(dec, normalize_folded_angle(declination))
        return self._goto_arrived(ra_error, dec_error, tolerance)

    def goto_horizontal(
        self,
        azimuth: float,
        altitude: float,
        tolerance: Optional[float] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: Optional[float] = None
    ) -> bool:
        """Slew to azimuth/altitude and wait; see goto_equatorial()."""
        self.slew_horizontal(azimuth, altitude)
        self._wait_for_slew(timeout, cancel_event, poll_interval)

        az, alt = self.get_horizontal()
        az_error = angular_distance(az, azimuth)
        alt_error = angular_distance(alt, altitude)
        return self._goto_arrived(az_error, alt_error, tolerance)

    def start_goto_equatorial(self, right_ascension: float, declination: float, **kwargs) -> Future:
        """Run goto_equatorial() on the session's worker thread."""
        return self._get_executor().submit(
            self.goto_equatorial, right_ascension, declination, **kwargs
        )

    def start_goto_horizontal(self, azimuth: float, altitude: float, **kwargs) -> Future:
        """Run goto_horizontal() on the session's worker thread."""
        return self._get_executor().submit(self.goto_horizontal, azimuth, altitude, **kwargs)

    # --------------
    # Motion control
    # --------------

    def move(self, direction: Direction, rate: Union[SlewRate, int]) -> None:
        """
        Drive one axis at a fixed rate until stop() is called.

        Args:
            direction: Direction of motion, selects axis and sense
            rate: Fixed slew rate 1-9, 0 stops the axis

        Raises:
            ValueError: If direction or rate is invalid
        """
        direction = Direction(direction)
        rate = SlewRate(rate)
        command_id = MC_MOVE_POSITIVE if direction.is_positive else MC_MOVE_NEGATIVE
        self._logger.debug(f"Moving {direction.name} at rate {int(rate)}")
        self._serial_manager.send_passthrough(direction.axis, command_id, bytes([rate]), 0)

    def stop(self, direction: Direction) -> None:
        """Stop the axis that moves in the given direction."""
        direction = Direction(direction)
        self._logger.debug(f"Stopping {direction.axis.name} axis")
        self._serial_manager.send_passthrough(
            direction.axis, MC_MOVE_POSITIVE, bytes([SlewRate.STOP]), 0
        )

    def abort(self) -> None:
        """Stop all motion, including a goto in progress."""
        self._logger.info("Abort command initiated")
        self._serial_manager.send_command('M', 1)

    def get_track_mode(self) -> Union[TrackMode, int]:
        """Current tracking mode. Unknown mode bytes are returned as int."""
        response = self._serial_manager.send_command('t', 2)
        try:
            return TrackMode(response[0])
        except ValueError:
            self._logger.warning(f"Unrecognized tracking mode {response[0]}")
            return response[0]

    def set_track_mode(self, mode: Union[TrackMode, int]) -> None:
        mode = int(mode)
        if not 0 <= mode <= 0xFF:
            raise ValueError(f"Tracking mode must fit in one byte, got {mode}")
        self._logger.info(f"Setting tracking mode {mode}")
        self._serial_manager.send_command(b'T' + bytes([mode]), 1)

    # -------------
    # Pulse guiding
    # -------------

    def send_pulse(self, direction: Direction, rate: int, duration_cs: int) -> None:
        """
        Send a guiding pulse.

        Args:
            direction: Guide direction
            rate: Pulse velocity in percent of sidereal, -100 to 100. Negated
                for South and East.
            duration_cs: Pulse length in centiseconds, 0-255 (max 2.55 s)

        Raises:
            ValueError: If direction, rate or duration is out of range
        """
        direction = Direction(direction)
        if not -MAX_GUIDE_RATE <= rate <= MAX_GUIDE_RATE:
            raise ValueError(f"Guide rate {rate} outside -{MAX_GUIDE_RATE}..{MAX_GUIDE_RATE}")
        if not 0 <= duration_cs <= MAX_PULSE_DURATION_CS:
            raise ValueError(f"Pulse duration {duration_cs} outside 0..{MAX_PULSE_DURATION_CS} cs")

        signed_rate = rate if direction.is_positive else -rate
        payload = struct.pack('bB', signed_rate, duration_cs)
        self._logger.debug(f"Pulse {direction.name} rate {signed_rate} for {duration_cs} cs")
        self._serial_manager.send_passthrough(direction.axis, MC_PULSE_GUIDE, payload, 0)

    def get_pulse_status(self, direction: Direction) -> bool:
        """True while a guiding pulse is running on the direction's axis."""
        direction = Direction(direction)
        response = self._serial_manager.send_passthrough(
            direction.axis, MC_PULSE_STATUS, b'\x00\x00', 1
        )
        return bool(response[0])

    # ----------
    # Site setup
    # ----------

    def set_location(self, longitude: float, latitude: float) -> None:
        """
        Send the observing site to the hand controller.

        Args:
            longitude: Degrees east, either -180..180 or 0..360
            latitude: Degrees north
        """
        self._logger.info(f"Setting location ({longitude:.3f},{latitude:.3f})")

        longitude = wrap_degrees(longitude)
        if longitude > 180:
            longitude -= 360

        lat_d, lat_m, lat_s = to_sexagesimal(latitude)
        long_d, long_m, long_s = to_sexagesimal(longitude)

        command = bytes([
            ord('W'),
            abs(lat_d), lat_m, lat_s, 1 if latitude < 0 else 0,
            abs(long_d), long_m, long_s, 1 if longitude < 0 else 0,
        ])
        self._serial_manager.send_command(command, 1)

    def set_datetime(self, value: Union[datetime, str], utc_offset_hours: float = 0.0) -> None:
        """
        Set the hand controller clock.

        The controller keeps local standard time, so the UTC value is shifted
        by utc_offset_hours before sending.

        Args:
            value: UTC datetime or ISO 8601 string. Naive values are UTC.
            utc_offset_hours: Local time zone offset from UTC in hours

        Raises:
            ValueError: If the string is not ISO 8601 or the year is out of range
            TypeError: If value is neither datetime nor string
        """
        if isinstance(value, str):
            try:
                value = parser.isoparse(value)
            except ValueError:
                raise ValueError(f"Invalid ISO 8601 format: {value}")
        elif not isinstance(value, datetime):
            raise TypeError(f"Error: {value} is not a datetime object or string.")

        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)

        local_dt = value + timedelta(hours=utc_offset_hours)
        if not 2000 <= local_dt.year <= 2255:
            raise ValueError(f"Year {local_dt.year} cannot be sent to the mount")

        offset_hours = int(abs(utc_offset_hours))
        offset_byte = (256 - offset_hours) % 256 if utc_offset_hours < 0 else offset_hours

        self._logger.info(f"Setting mount time to: {local_dt} (UTC offset {utc_offset_hours})")
        command = bytes([
            ord('H'),
            local_dt.hour, local_dt.minute, local_dt.second,
            local_dt.month, local_dt.day, local_dt.year - 2000,
            offset_byte,
            0,  # standard time
        ])
        self._serial_manager.send_command(command, 1)

    # ---------
    # Internals
    # ---------

    def _get_position(self, command: str) -> Tuple[float, float]:
        response = self._serial_manager.send_command(command, POSITION_RESPONSE_LEN)
        try:
            return parse_coordinate_pair(response)
        except ValueError as ex:
            self._logger.error(f"Bad position response to '{command}': {response!r}")
            raise FramingError(f"Malformed position response: {response!r}") from ex

    def _wait_for_slew(
        self,
        timeout: Optional[float],
        cancel_event: Optional[threading.Event],
        poll_interval: Optional[float]
    ) -> None:
        """Poll the slew status until idle, honouring cancellation and deadline."""
        if cancel_event is None:
            cancel_event = threading.Event()
        if poll_interval is None:
            poll_interval = (
                self._config.goto_poll_interval if self._config is not None
                else DEFAULT_GOTO_POLL_INTERVAL
            )
        if timeout is None and self._config is not None:
            timeout = self._config.goto_timeout

        deadline = time.monotonic() + timeout if timeout else None

        while self.is_slewing():
            if cancel_event.wait(poll_interval):
                self._abandon_goto(GotoCancelledError, "Goto cancelled")
            if deadline is not None and time.monotonic() >= deadline:
                self._abandon_goto(GotoTimeoutError, f"Goto did not finish within {timeout}s")

        self._logger.debug("Slew finished")

    def _abandon_goto(self, error_class, message: str) -> None:
        self._logger.warning(f"{message}, aborting slew")
        try:
            self.abort()
        except FramingError as ex:
            raise error_class(f"{message}; abort failed: {ex}") from ex
        raise error_class(message)

    def _goto_arrived(self, first_error: float, second_error: float,
                      tolerance: Optional[float]) -> bool:
        if tolerance is None:
            tolerance = (
                self._config.goto_tolerance if self._config is not None
                else DEFAULT_GOTO_TOLERANCE
            )

        arrived = first_error <= tolerance and second_error <= tolerance
        if arrived:
            self._logger.info("Goto completed on target")
        else:
            self._logger.warning(
                f"Goto ended off target: errors {first_error:.6f}, "
                f"{second_error:.6f} deg exceed {tolerance} deg"
            )
        return arrived

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="NexStarGoto")
            return self._executor
