# -*- coding: utf-8 -*-
"""
Angle conversions for the NexStar serial protocol.

The hand controller represents every angle as an unsigned 32-bit fraction of
a full turn, written as 8 upper-case hex digits in text commands:

- raw = degrees / 360 * 2**32
- degrees = raw / 2**32 * 360

Declination comes back from the mount as a 0-360 value and has to be folded
into the signed +/-90 range. Site coordinates are sent as whole degrees,
minutes and seconds.

All functions here are pure and accept any finite angle; inputs are reduced
modulo 360 rather than rejected.
"""

import math
import re
from typing import Tuple, Union

FULL_TURN = 360.0
RAW_SCALE = 0x100000000  # 2**32
RAW_MASK = 0xFFFFFFFF
DEGREES_PER_HOUR = 15.0

# "XXXXXXXX,YYYYYYYY#" position responses
_COORDINATE_PAIR = re.compile(r'^([0-9A-Fa-f]{1,8}),([0-9A-Fa-f]{1,8})#?$')


def wrap_degrees(angle: float) -> float:
    """Reduce an angle into [0, 360) using a floored modulo."""
    angle = angle - FULL_TURN * math.floor(angle / FULL_TURN)
    # Floating point can land exactly on 360 for tiny negative inputs
    if angle >= FULL_TURN:
        angle -= FULL_TURN
    if angle < 0:
        angle += FULL_TURN
    return angle


def degrees_to_raw(angle: float) -> int:
    """Convert decimal degrees to the mount's 32-bit fixed-point angle.

    Args:
        angle: Angle in degrees, any finite value.

    Returns:
        Unsigned 32-bit integer. Values that round up to a full turn wrap to 0.
    """
    return int(round(wrap_degrees(angle) * RAW_SCALE / FULL_TURN)) & RAW_MASK


def raw_to_degrees(raw: int) -> float:
    """Convert a 32-bit fixed-point angle to degrees in [0, 360)."""
    return FULL_TURN * ((raw & RAW_MASK) / RAW_SCALE)


def normalize_folded_angle(angle: float) -> float:
    """Fold a 0-360 declination-like value into [-90, 90].

    Values in (90, 270] are reflected to 180 - angle, values in (270, 360)
    are shifted down by a full turn. The transform is idempotent.
    """
    angle = wrap_degrees(angle)

    if 90.0 < angle <= 270.0:
        angle = 180.0 - angle
    elif 270.0 < angle <= FULL_TURN:
        angle = angle - FULL_TURN

    return angle


def to_sexagesimal(angle: float) -> Tuple[int, int, int]:
    """Split an angle into whole degrees, minutes and rounded seconds.

    Seconds that round to 60 carry into the minutes, and 60 minutes carry
    into the degrees. The sign of the input is applied to the degrees only.

    Args:
        angle: Angle in decimal degrees.

    Returns:
        Tuple of (degrees, minutes, seconds).

    Example:
        >>> to_sexagesimal(10.9999)
        (11, 0, 0)
        >>> to_sexagesimal(-33.5)
        (-33, 30, 0)
    """
    value = abs(angle)
    degrees = int(value)
    minutes = int((value - degrees) * 60.0)
    seconds = int(round(((value - degrees) * 60.0 - minutes) * 60.0))

    if seconds == 60:
        seconds = 0
        minutes += 1
    if minutes == 60:
        minutes = 0
        degrees += 1

    if angle < 0:
        degrees = -degrees

    return degrees, minutes, seconds


def hours_to_degrees(hours: float) -> float:
    return hours * DEGREES_PER_HOUR


def degrees_to_hours(degrees: float) -> float:
    return degrees / DEGREES_PER_HOUR


def angular_distance(first: float, second: float) -> float:
    """Smallest absolute separation between two angles in degrees (0-180)."""
    diff = wrap_degrees(first - second)
    return FULL_TURN - diff if diff > 180.0 else diff


def format_coordinate_pair(first: float, second: float) -> str:
    """Encode two angles as the "XXXXXXXX,YYYYYYYY" command argument."""
    return f"{degrees_to_raw(first):08X},{degrees_to_raw(second):08X}"


def parse_coordinate_pair(response: Union[str, bytes]) -> Tuple[float, float]:
    """Decode a "XXXXXXXX,YYYYYYYY#" position response into degrees.

    Args:
        response: Response text or bytes, with or without the '#' terminator.

    Returns:
        Tuple of both angles in [0, 360).

    Raises:
        ValueError: If the response is not a pair of hex fields.
    """
    if isinstance(response, bytes):
        try:
            response = response.decode('ascii')
        except UnicodeDecodeError as ex:
            raise ValueError(f"Non-ASCII coordinate response: {response!r}") from ex

    match = _COORDINATE_PAIR.match(response.strip())
    if not match:
        raise ValueError(f"Malformed coordinate response: {response!r}")

    first, second = (int(field, 16) for field in match.groups())
    return raw_to_degrees(first), raw_to_degrees(second)
