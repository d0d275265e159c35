"""
Unit tests for the NexStar angle conversions.

Covers the 32-bit fixed-point encoding, declination folding, sexagesimal
splitting and the hex coordinate pair text format.
"""

import pytest

# Import module under test
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from nexstar_angles import (
    RAW_SCALE,
    angular_distance,
    degrees_to_hours,
    degrees_to_raw,
    format_coordinate_pair,
    hours_to_degrees,
    normalize_folded_angle,
    parse_coordinate_pair,
    raw_to_degrees,
    to_sexagesimal,
    wrap_degrees,
)

RAW_STEP = 360.0 / RAW_SCALE


class TestRawConversion:
    """Test degrees <-> 32-bit fixed-point conversion."""

    @pytest.mark.unit
    @pytest.mark.parametrize("angle,expected", [
        (0.0, 0x00000000),
        (90.0, 0x40000000),
        (180.0, 0x80000000),
        (270.0, 0xC0000000),
        (360.0, 0x00000000),
        (-90.0, 0xC0000000),
        (450.0, 0x40000000),
    ])
    def test_degrees_to_raw_known_values(self, angle, expected):
        """Quarter turns should map to exact fixed-point values."""
        assert degrees_to_raw(angle) == expected

    @pytest.mark.unit
    def test_value_rounding_to_full_turn_wraps_to_zero(self):
        """An angle just below 360 that rounds up must not overflow 32 bits."""
        assert degrees_to_raw(360.0 - 1e-11) == 0

    @pytest.mark.unit
    def test_raw_to_degrees_known_values(self):
        """Raw values should decode to the matching angle."""
        assert raw_to_degrees(0x40000000) == 90.0
        assert raw_to_degrees(0x80000000) == 180.0
        assert raw_to_degrees(0) == 0.0

    @pytest.mark.unit
    @pytest.mark.parametrize("angle", [0.0, 12.345678, 123.456, 359.9999, -45.5, 720.25, -0.001])
    def test_round_trip_within_one_step(self, angle):
        """Decoding an encoded angle should land within one raw step of it."""
        decoded = raw_to_degrees(degrees_to_raw(angle))
        assert angular_distance(decoded, wrap_degrees(angle)) <= RAW_STEP

    @pytest.mark.unit
    def test_wrap_degrees_range(self):
        """wrap_degrees should always return a value in [0, 360)."""
        for angle in (-720.0, -360.0, -1e-15, 0.0, 359.999, 360.0, 1080.5):
            wrapped = wrap_degrees(angle)
            assert 0.0 <= wrapped < 360.0


class TestFoldedAngle:
    """Test declination folding into [-90, 90]."""

    @pytest.mark.unit
    @pytest.mark.parametrize("angle,expected", [
        (0.0, 0.0),
        (45.0, 45.0),
        (90.0, 90.0),
        (100.0, 80.0),
        (180.0, 0.0),
        (270.0, -90.0),
        (300.0, -60.0),
        (-30.0, -30.0),
    ])
    def test_fold_values(self, angle, expected):
        """Values beyond the pole should reflect back into range."""
        assert normalize_folded_angle(angle) == pytest.approx(expected)

    @pytest.mark.unit
    @pytest.mark.parametrize("angle", [12.5, 95.0, 200.0, 271.0, 359.5, -45.0])
    def test_fold_is_idempotent(self, angle):
        """Folding an already folded value should not change it."""
        once = normalize_folded_angle(angle)
        assert -90.0 <= once <= 90.0
        assert normalize_folded_angle(once) == pytest.approx(once)


class TestSexagesimal:
    """Test degrees/minutes/seconds splitting."""

    @pytest.mark.unit
    def test_simple_split(self):
        """Exact fractions should split cleanly."""
        assert to_sexagesimal(45.25) == (45, 15, 0)
        assert to_sexagesimal(37.7625) == (37, 45, 45)

    @pytest.mark.unit
    def test_negative_sign_on_degrees_only(self):
        """Negative angles should carry the sign on the degrees component."""
        assert to_sexagesimal(-33.5) == (-33, 30, 0)

    @pytest.mark.unit
    def test_seconds_carry_into_degrees(self):
        """Seconds rounding to 60 should carry through minutes into degrees."""
        assert to_sexagesimal(10.9999) == (11, 0, 0)
        assert to_sexagesimal(29.99999) == (30, 0, 0)

    @pytest.mark.unit
    def test_seconds_below_half_do_not_carry(self):
        """59.4996 seconds rounds down and leaves the minutes alone."""
        assert to_sexagesimal(10.999861) == (10, 59, 59)


class TestHelpers:
    """Test hour conversion and angular distance."""

    @pytest.mark.unit
    def test_hours_degrees(self):
        """One hour of RA should equal 15 degrees."""
        assert hours_to_degrees(6.0) == 90.0
        assert degrees_to_hours(180.0) == 12.0

    @pytest.mark.unit
    @pytest.mark.parametrize("first,second,expected", [
        (10.0, 10.0, 0.0),
        (359.0, 1.0, 2.0),
        (10.0, 350.0, 20.0),
        (0.0, 180.0, 180.0),
        (-5.0, 5.0, 10.0),
    ])
    def test_angular_distance_wraps(self, first, second, expected):
        """Distance should take the short way around the circle."""
        assert angular_distance(first, second) == pytest.approx(expected)


class TestCoordinatePair:
    """Test the XXXXXXXX,YYYYYYYY text format."""

    @pytest.mark.unit
    def test_format_pair(self):
        """Angles should encode as 8 upper-case hex digits each."""
        assert format_coordinate_pair(180.0, 90.0) == "80000000,40000000"
        assert format_coordinate_pair(0.0, -45.0) == "00000000,E0000000"

    @pytest.mark.unit
    def test_parse_pair_bytes(self):
        """A mount response should decode to two angles."""
        assert parse_coordinate_pair(b"80000000,40000000#") == (180.0, 90.0)

    @pytest.mark.unit
    def test_parse_pair_lowercase_without_terminator(self):
        """Lower-case hex and a missing terminator should be accepted."""
        assert parse_coordinate_pair("c0000000,20000000") == (270.0, 45.0)

    @pytest.mark.unit
    @pytest.mark.parametrize("response", [
        b"",
        b"80000000#",
        b"8000000G,00000000#",
        b"80000000;40000000#",
        b"\xff0000000,40000000#",
    ])
    def test_parse_malformed_raises(self, response):
        """Anything other than two hex fields should raise ValueError."""
        with pytest.raises(ValueError):
            parse_coordinate_pair(response)
