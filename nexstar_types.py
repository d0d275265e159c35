# File: nexstar_types.py
"""Type definitions and static lookup tables for the NexStar driver."""

from dataclasses import dataclass
from enum import IntEnum
from types import MappingProxyType
from typing import Optional


class AxisDevice(IntEnum):
    """Passthrough destination ids of the axis motor controllers."""
    RA = 0x10    # Azimuth / right ascension motor
    DEC = 0x11   # Altitude / declination motor


class Direction(IntEnum):
    """Slew and pulse guide directions."""
    NORTH = 0
    SOUTH = 1
    EAST = 2
    WEST = 3

    @property
    def axis(self) -> AxisDevice:
        """Motor controller that moves the mount in this direction."""
        if self in (Direction.NORTH, Direction.SOUTH):
            return AxisDevice.DEC
        return AxisDevice.RA

    @property
    def is_positive(self) -> bool:
        """North and West drive their axis in the positive sense."""
        return self in (Direction.NORTH, Direction.WEST)


class TrackMode(IntEnum):
    """Tracking modes reported by the hand controller."""
    OFF = 0
    ALT_AZ = 1
    EQ_NORTH = 2
    EQ_SOUTH = 3


class ControllerVariant(IntEnum):
    """Hand controller variant byte."""
    NEXSTAR = 0x11
    STARSENSE = 0x13


class SlewRate(IntEnum):
    """Fixed manual slew rates; STOP halts the axis."""
    STOP = 0
    RATE_1 = 1
    RATE_2 = 2
    RATE_3 = 3
    RATE_4 = 4
    RATE_5 = 5
    RATE_6 = 6
    RATE_7 = 7
    RATE_8 = 8
    RATE_9 = 9


UNKNOWN_MODEL = "Unknown"

# Model ids reported by the 'm' command
MOUNT_MODELS = MappingProxyType({
    1: "GPS Series",
    3: "i-Series",
    4: "i-Series SE",
    5: "CGE",
    6: "Advanced GT",
    7: "SLT",
    9: "CPC",
    10: "GT",
    11: "4/5 SE",
    12: "6/8 SE",
    13: "CGE Pro",
    14: "CGEM DX",
    15: "LCM",
    16: "Sky Prodigy",
    17: "CPC Deluxe",
    18: "GT 16",
    19: "StarSeeker",
    20: "AVX",
    21: "Cosmos",
    22: "Evolution",
    23: "CGX",
    24: "CGXL",
    25: "Astrofi",
    26: "SkyWatcher",
})

# Only German equatorial mounts can report the pier side
GEM_MODELS = frozenset({
    5,     # CGE
    6,     # Advanced GT
    13,    # CGE Pro
    14,    # CGEM DX
    20,    # AVX
    0x17,  # CGX
    0x18,  # CGXL
})


def lookup_model(model_id: int) -> str:
    """Resolve a model id to its name, or UNKNOWN_MODEL."""
    return MOUNT_MODELS.get(model_id, UNKNOWN_MODEL)


def is_gem_model(model_id: int) -> bool:
    """True if the model id belongs to a German equatorial mount."""
    return model_id in GEM_MODELS


@dataclass(frozen=True)
class MountIdentity:
    """Read-only facts gathered by NexStarDevice.identify().

    Attributes:
        version: Hand controller firmware as "major.minor"
        variant: Hand controller variant byte
        model_id: Raw model byte, None if the controller cannot report it
        model_name: Resolved model name, None if the model was not queried
        is_gem: True for German equatorial mounts, False for forks
        ra_firmware: RA motor controller firmware version
        dec_firmware: DEC motor controller firmware version
    """
    version: str
    variant: int
    model_id: Optional[int]
    model_name: Optional[str]
    is_gem: bool
    ra_firmware: str
    dec_firmware: str

    @property
    def is_starsense(self) -> bool:
        return self.variant == ControllerVariant.STARSENSE

    @property
    def controller_name(self) -> str:
        return "StarSense" if self.is_starsense else "NexStar"

    @property
    def mount_type(self) -> str:
        return "GEM" if self.is_gem else "Fork"
