import math

import pytest

from studiopass.core.geo import EARTH_RADIUS_KM, distance_km, format_distance


def test_distance_between_identical_points_is_zero():
    for lat, lng in [(0.0, 0.0), (33.5138, 36.2765), (-89.9, 179.9), (52.52, -13.405)]:
        assert distance_km(lat, lng, lat, lng) == 0.0


def test_distance_between_antipodal_points_is_half_circumference():
    d = distance_km(0.0, 0.0, 0.0, 180.0)
    assert d == pytest.approx(math.pi * EARTH_RADIUS_KM, rel=1e-9)


def test_distance_is_symmetric_and_realistic():
    # Damascus -> Berlin is roughly 2,790 km.
    a = distance_km(33.5138, 36.2765, 52.5200, 13.4050)
    b = distance_km(52.5200, 13.4050, 33.5138, 36.2765)
    assert a == pytest.approx(b)
    assert a == pytest.approx(2790.6, abs=1)


@pytest.mark.parametrize(
    "km, expected",
    [
        (0.476, "476 m"),
        (0.999, "999 m"),
        (1.0, "1.0 km"),
        (1.234, "1.2 km"),
        (42.06, "42.1 km"),
        (0.9996, "1.0 km"),
    ],
)
def test_format_distance(km, expected):
    assert format_distance(km) == expected


def test_format_distance_never_raises_on_missing_input():
    assert format_distance(None) == "0 m"
    assert format_distance(0) == "0 m"
    assert format_distance(float("nan")) == "0 m"
    assert format_distance(float("inf")) == "∞ km"
