"""Spherical-earth geometry helpers.

Pure functions over west-positive longitudes. Distances use a sphere of
3959 statute miles; forward stepping along a great circle uses pyproj's
``Geod`` configured with the same sphere so that whole paths are computed
in one vectorized call.
"""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import NDArray
from pyproj import Geod

from domain.terrain.value_objects import Site
from shared.constants import DEG2RAD, EARTH_RADIUS_MILES, METERS_PER_MILE

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
_SPHERE_RADIUS_M = EARTH_RADIUS_MILES * METERS_PER_MILE

# Spherical "ellipsoid" matching the distance formula below
_sphere = Geod(a=_SPHERE_RADIUS_M, b=_SPHERE_RADIUS_M)


# ---------------------------------------------------------------------------
# Angle helpers
# ---------------------------------------------------------------------------
def lon_diff(lon1: float, lon2: float) -> float:
    """Signed shortest difference ``lon1 - lon2`` in degrees, in [-180, 180].

    Handles the 0/360 wrap so that e.g. ``lon_diff(359, 1) == -2``. Points
    exactly half a turn apart give +180 when ``lon1 < lon2`` and -180
    otherwise, so ``lon_diff(a, b) == -lon_diff(b, a)`` always holds.
    """
    diff = lon1 - lon2
    if diff < -180.0:
        diff += 360.0
    elif diff >= 180.0:
        diff -= 360.0
    if diff == -180.0 and lon1 < lon2:
        diff = 180.0
    return diff


def lon_diff_array(
    lon1: NDArray[np.float64] | float, lon2: NDArray[np.float64] | float
) -> NDArray[np.float64]:
    """Vectorized ``lon_diff``; either argument may be an array."""
    lon1 = np.asarray(lon1, dtype=np.float64)
    lon2 = np.asarray(lon2, dtype=np.float64)
    diff = lon1 - lon2
    diff = np.where(diff < -180.0, diff + 360.0, diff)
    diff = np.where(diff >= 180.0, diff - 360.0, diff)
    return np.where((diff == -180.0) & (lon1 < lon2), 180.0, diff)


def reduce_angle(angle: float) -> int:
    """Normalize an angle in degrees to an integer in [0, 180]."""
    return int(np.rint(math.acos(math.cos(angle * DEG2RAD)) / DEG2RAD))


def _clamp_unit(value: float) -> float:
    return max(-1.0, min(1.0, value))


# ---------------------------------------------------------------------------
# Distance and bearing
# ---------------------------------------------------------------------------
def distance_miles(site1: Site, site2: Site) -> float:
    """Great-circle distance between two sites in statute miles.

    Spherical law of cosines; the cosine is clamped so coincident points
    return exactly 0 instead of NaN.
    """
    lat1 = site1.latitude * DEG2RAD
    lon1 = site1.longitude * DEG2RAD
    lat2 = site2.latitude * DEG2RAD
    lon2 = site2.longitude * DEG2RAD
    cos_beta = math.sin(lat1) * math.sin(lat2) + math.cos(lat1) * math.cos(
        lat2
    ) * math.cos(lon1 - lon2)
    return EARTH_RADIUS_MILES * math.acos(_clamp_unit(cos_beta))


def azimuth_degrees(source: Site, destination: Site) -> float:
    """Azimuth from ``source`` to ``destination``, degrees clockwise from north.

    Returns a value in [0, 360). Coincident sites return 0.
    """
    dest_lat = destination.latitude * DEG2RAD
    dest_lon = destination.longitude * DEG2RAD
    src_lat = source.latitude * DEG2RAD
    src_lon = source.longitude * DEG2RAD

    beta = math.acos(
        _clamp_unit(
            math.sin(src_lat) * math.sin(dest_lat)
            + math.cos(src_lat) * math.cos(dest_lat) * math.cos(src_lon - dest_lon)
        )
    )
    den = math.cos(src_lat) * math.sin(beta)
    if den == 0.0:
        return 0.0

    num = math.sin(dest_lat) - math.sin(src_lat) * math.cos(beta)
    azimuth = math.acos(_clamp_unit(num / den))

    # West-positive longitudes: a destination further west lies on the
    # left-hand half of the compass.
    diff = dest_lon - src_lon
    if diff <= -math.pi:
        diff += 2.0 * math.pi
    if diff >= math.pi:
        diff -= 2.0 * math.pi
    if diff > 0.0:
        azimuth = 2.0 * math.pi - azimuth

    return (azimuth / DEG2RAD) % 360.0


# ---------------------------------------------------------------------------
# Forward stepping
# ---------------------------------------------------------------------------
def step_along(
    source: Site, azimuth_deg: float, distances: NDArray[np.float64]
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Points at the given distances (miles) from ``source`` along an azimuth.

    Args:
        source: Starting site
        azimuth_deg: Initial bearing, degrees clockwise from north
        distances: 1D array of distances in miles

    Returns:
        Tuple of (latitudes, west-positive longitudes) in degrees
    """
    n = len(distances)
    lons_east, lats, _ = _sphere.fwd(
        np.full(n, source.east_longitude),
        np.full(n, source.latitude),
        np.full(n, azimuth_deg),
        np.asarray(distances, dtype=np.float64) * METERS_PER_MILE,
    )
    lats = np.asarray(lats, dtype=np.float64)
    lons_west = np.mod(-np.asarray(lons_east, dtype=np.float64), 360.0)
    return lats, lons_west


def samples_per_radian(resolution: int) -> float:
    """Terrain samples per radian of arc for a tile resolution (samples/degree)."""
    return resolution * 180.0 / math.pi
