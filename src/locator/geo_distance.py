# This module computes great-circle distances for proximity queries.
# Stores use the bounding box to prefilter candidate rows in SQL, then rank the survivors exactly here.
# Distances are vectorized with numpy so a candidate batch is ranked in one pass.

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TypeVar

import numpy as np

from src.accounts.account_models import GeoPoint

EARTH_RADIUS_M = 6_371_008.8
METERS_PER_DEGREE_LAT = math.pi * EARTH_RADIUS_M / 180.0

RowT = TypeVar("RowT")


@dataclass(frozen=True)
class BoundingBox:
    min_latitude: float
    max_latitude: float
    min_longitude: float | None
    max_longitude: float | None

    @property
    def spans_all_longitudes(self) -> bool:
        return self.min_longitude is None or self.max_longitude is None


def haversine_meters(
    origin: GeoPoint,
    latitudes: Sequence[float] | np.ndarray,
    longitudes: Sequence[float] | np.ndarray,
) -> np.ndarray:
    lat1 = math.radians(origin.latitude)
    lon1 = math.radians(origin.longitude)
    lat2 = np.radians(np.asarray(latitudes, dtype=float))
    lon2 = np.radians(np.asarray(longitudes, dtype=float))

    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = np.sin(dlat / 2.0) ** 2 + math.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2.0) ** 2
    return 2.0 * EARTH_RADIUS_M * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def distance_meters(origin: GeoPoint, target: GeoPoint) -> float:
    return float(haversine_meters(origin, [target.latitude], [target.longitude])[0])


def distance_km(origin: GeoPoint, target: GeoPoint) -> float:
    return round(distance_meters(origin, target) / 1000.0, 2)


def bounding_box(point: GeoPoint, radius_m: float) -> BoundingBox:
    """Rectangle that contains every point within `radius_m` of `point`."""

    if radius_m < 0:
        raise ValueError("radius_m must be nonnegative")

    lat_delta = radius_m / METERS_PER_DEGREE_LAT
    min_lat = max(-90.0, point.latitude - lat_delta)
    max_lat = min(90.0, point.latitude + lat_delta)

    # Near the poles or across the antimeridian the longitude span is not a simple interval.
    cos_lat = math.cos(math.radians(point.latitude))
    if cos_lat <= 1e-9 or min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(min_lat, max_lat, None, None)
    lon_delta = radius_m / (METERS_PER_DEGREE_LAT * cos_lat)
    if lon_delta >= 180.0:
        return BoundingBox(min_lat, max_lat, None, None)
    min_lon = point.longitude - lon_delta
    max_lon = point.longitude + lon_delta
    if min_lon < -180.0 or max_lon > 180.0:
        return BoundingBox(min_lat, max_lat, None, None)
    return BoundingBox(min_lat, max_lat, min_lon, max_lon)


def rank_by_distance(
    *,
    origin: GeoPoint,
    rows: Sequence[RowT],
    latitudes: Sequence[float],
    longitudes: Sequence[float],
    max_distance_m: float,
) -> list[tuple[RowT, float]]:
    """Keep rows within `max_distance_m` and order them nearest-first."""

    if not rows:
        return []

    distances = haversine_meters(origin, latitudes, longitudes)
    within = np.flatnonzero(distances <= max_distance_m)
    ordered = within[np.argsort(distances[within], kind="stable")]
    return [(rows[index], float(distances[index])) for index in ordered]
