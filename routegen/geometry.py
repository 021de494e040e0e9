"""Great-circle helpers used to place search regions between two points."""

from __future__ import annotations

import math
from typing import Tuple

from routegen.schemas import BoundingRectangle, Coordinate

EARTH_RADIUS_KM = 6371.0088
KM_PER_DEG_LAT = 111.32
# Floor for |cos(lat)| so the longitude span stays finite near the poles.
_MIN_COS_LAT = 1e-12
_SQRT2 = math.sqrt(2)


def distance(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in kilometres."""

    phi1, phi2 = math.radians(a.latitude), math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points.
    c = 2 * math.asin(math.sqrt(min(1.0, h)))
    return EARTH_RADIUS_KM * c


def average_radius(a: Coordinate, b: Coordinate, stops: int) -> float:
    """Remaining distance split evenly over ``2 * stops`` half-legs."""

    return distance(a, b) / (2 * stops)


def is_too_far_away(point: Coordinate, end: Coordinate, avg_radius: float) -> bool:
    return distance(point, end) >= 2 * avg_radius


def _normalize_lon_half_open_top(lon: float) -> float:
    """Map longitude into (-180, 180]."""
    wrapped = ((lon + 180.0) % 360.0) - 180.0
    return 180.0 if wrapped == -180.0 else wrapped


def _normalize_lon_half_open_bottom(lon: float) -> float:
    """Map longitude into [-180, 180)."""
    return ((lon + 180.0) % 360.0 + 360.0) % 360.0 - 180.0


def intermediate_point(a: Coordinate, b: Coordinate, distance_from_a_km: float) -> Coordinate:
    """Point ``distance_from_a_km`` along the great circle from ``a`` toward ``b``.

    The travelled fraction is clamped to [0, 1], so asking for more than the
    full arc returns ``b``. When ``a`` and ``b`` coincide the arc is zero and
    ``a`` is returned unchanged.
    """

    phi1, lambda1 = math.radians(a.latitude), math.radians(a.longitude)
    phi2, lambda2 = math.radians(b.latitude), math.radians(b.longitude)

    h = (
        math.sin((phi2 - phi1) / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin((lambda2 - lambda1) / 2) ** 2
    )
    delta = 2 * math.asin(math.sqrt(min(1.0, h)))
    if delta == 0:
        return a

    total_km = EARTH_RADIUS_KM * delta
    f = max(0.0, min(1.0, distance_from_a_km / total_km))

    weight_a = math.sin((1 - f) * delta) / math.sin(delta)
    weight_b = math.sin(f * delta) / math.sin(delta)

    x = weight_a * math.cos(phi1) * math.cos(lambda1) + weight_b * math.cos(phi2) * math.cos(lambda2)
    y = weight_a * math.cos(phi1) * math.sin(lambda1) + weight_b * math.cos(phi2) * math.sin(lambda2)
    z = weight_a * math.sin(phi1) + weight_b * math.sin(phi2)

    lat = math.degrees(math.atan2(z, math.hypot(x, y)))
    lon = _normalize_lon_half_open_top(math.degrees(math.atan2(y, x)))
    return Coordinate(latitude=max(-90.0, min(90.0, lat)), longitude=lon)


def construct_region(
    current: Coordinate, end: Coordinate, remaining_stops: int
) -> Tuple[Coordinate, float]:
    """Return the next sub-goal and the radius used to reach it.

    The sub-goal sits ``average_radius(current, end, remaining_stops)`` km
    from ``current`` toward ``end``. With ``current == end`` it degenerates to
    ``current`` and a zero radius.
    """

    radius = average_radius(current, end, remaining_stops)
    return intermediate_point(current, end, radius), radius


def bounding_rectangle(center: Coordinate, corner_radius_km: float) -> BoundingRectangle:
    """Rectangle around ``center`` whose corners sit ``corner_radius_km`` away."""

    half_side_km = max(0.0, corner_radius_km) / _SQRT2
    cos_lat = math.cos(math.radians(center.latitude))
    km_per_deg_lon = KM_PER_DEG_LAT * max(_MIN_COS_LAT, abs(cos_lat))

    d_lat = half_side_km / KM_PER_DEG_LAT
    d_lon = half_side_km / km_per_deg_lon

    def clamp_lat(value: float) -> float:
        return max(-90.0, min(90.0, value))

    return BoundingRectangle(
        low=Coordinate(
            latitude=clamp_lat(center.latitude - d_lat),
            longitude=_normalize_lon_half_open_bottom(center.longitude - d_lon),
        ),
        high=Coordinate(
            latitude=clamp_lat(center.latitude + d_lat),
            longitude=_normalize_lon_half_open_bottom(center.longitude + d_lon),
        ),
    )
