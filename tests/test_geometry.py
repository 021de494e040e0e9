import math

import pytest

from routegen.geometry import (
    average_radius,
    bounding_rectangle,
    construct_region,
    distance,
    intermediate_point,
    is_too_far_away,
)
from routegen.schemas import Coordinate

ISTANBUL = Coordinate(latitude=41.0082, longitude=28.9784)
IZMIR = Coordinate(latitude=38.403371, longitude=27.163761)
COPENHAGEN = Coordinate(latitude=55.6761, longitude=12.5683)


def test_distance_zero_and_symmetric():
    assert distance(ISTANBUL, ISTANBUL) == 0
    assert distance(ISTANBUL, IZMIR) == pytest.approx(distance(IZMIR, ISTANBUL))


def test_one_degree_of_longitude_on_equator():
    km = distance(Coordinate(latitude=0, longitude=0), Coordinate(latitude=0, longitude=1))
    assert km == pytest.approx(111.19, abs=0.5)


def test_distance_triangle_inequality():
    ab = distance(ISTANBUL, IZMIR)
    ac = distance(ISTANBUL, COPENHAGEN)
    cb = distance(COPENHAGEN, IZMIR)
    assert ab <= ac + cb + 1e-9


def test_intermediate_point_lies_on_the_arc():
    total = distance(ISTANBUL, IZMIR)
    point = intermediate_point(ISTANBUL, IZMIR, 100.0)

    assert distance(ISTANBUL, point) == pytest.approx(100.0, rel=1e-6)
    assert distance(point, IZMIR) == pytest.approx(total - 100.0, rel=1e-6)


def test_intermediate_point_clamps_past_destination():
    point = intermediate_point(ISTANBUL, IZMIR, 10_000.0)
    assert distance(point, IZMIR) == pytest.approx(0.0, abs=1e-6)


def test_intermediate_point_identical_endpoints_returns_start():
    assert intermediate_point(ISTANBUL, ISTANBUL, 5.0) == ISTANBUL


def test_intermediate_point_normalizes_across_antimeridian():
    west = Coordinate(latitude=0, longitude=179.5)
    east = Coordinate(latitude=0, longitude=-179.5)
    point = intermediate_point(west, east, distance(west, east) / 2)

    assert -180 < point.longitude <= 180
    assert abs(point.longitude) == pytest.approx(180.0, abs=1e-6)


def test_construct_region_uses_average_radius():
    start = Coordinate(latitude=0, longitude=0)
    end = Coordinate(latitude=0, longitude=2)
    sub_goal, radius = construct_region(start, end, 3)

    assert radius == pytest.approx(average_radius(start, end, 3))
    assert distance(start, sub_goal) == pytest.approx(radius, rel=1e-6)


def test_construct_region_degenerate_when_start_equals_end():
    sub_goal, radius = construct_region(ISTANBUL, ISTANBUL, 2)
    assert sub_goal == ISTANBUL
    assert radius == 0


@pytest.mark.parametrize("center", [COPENHAGEN, ISTANBUL, Coordinate(latitude=-33.9, longitude=18.4)])
@pytest.mark.parametrize("radius", [2.0, 15.0, 40.0])
def test_bounding_rectangle_corners_sit_at_radius(center, radius):
    rect = bounding_rectangle(center, radius)

    assert distance(center, rect.low) == pytest.approx(radius, rel=0.02)
    assert distance(center, rect.high) == pytest.approx(radius, rel=0.02)
    assert rect.low.latitude < center.latitude < rect.high.latitude


def test_bounding_rectangle_clamps_latitude_and_wraps_longitude():
    near_pole = bounding_rectangle(Coordinate(latitude=89.99, longitude=0), 50.0)
    assert near_pole.high.latitude == 90.0

    dateline = bounding_rectangle(Coordinate(latitude=0, longitude=179.99), 10.0)
    assert -180 <= dateline.high.longitude < 180
    assert dateline.high.longitude < 0


def test_bounding_rectangle_negative_radius_collapses_to_center():
    rect = bounding_rectangle(COPENHAGEN, -0.5)
    assert math.isclose(rect.low.latitude, COPENHAGEN.latitude)
    assert math.isclose(rect.high.longitude, COPENHAGEN.longitude)


def test_is_too_far_away_threshold():
    end = Coordinate(latitude=0, longitude=0)
    point = Coordinate(latitude=0, longitude=1)
    km = distance(point, end)

    assert is_too_far_away(point, end, km / 2)
    assert not is_too_far_away(point, end, km)
