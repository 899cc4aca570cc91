"""Terrain Bounded Context - Domain Services.

Great-circle path sampling over the tile store.
NO I/O operations - tiles come from infrastructure adapters through the
``TileRepository`` port held by the store.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from domain.terrain.errors import InvalidPathError
from domain.terrain.geodesy import (
    azimuth_degrees,
    distance_miles,
    samples_per_radian,
    step_along,
)
from domain.terrain.tiles import TileStore
from domain.terrain.value_objects import Site, TerrainPath
from shared.constants import DEFAULT_MAX_PATH_SAMPLES, DEG2RAD

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
# Below this many pixel widths (in miles per sample-per-degree) a path
# collapses to a single sample.
DEGENERATE_PIXEL_MILES = 30.0


def _page_points(store: TileStore, lats: np.ndarray, lons: np.ndarray) -> None:
    """Load every tile touched by the given points."""
    keys = {store.key_for(float(lat), float(lon)) for lat, lon in zip(lats, lons)}
    for key in sorted(keys, key=lambda k: (k.min_north, k.min_west)):
        store.load_tile(key)


# ---------------------------------------------------------------------------
# Main Service: sample_path
# ---------------------------------------------------------------------------
def sample_path(
    store: TileStore,
    source: Site,
    destination: Site,
    max_samples: int = DEFAULT_MAX_PATH_SAMPLES,
    page: bool = False,
) -> TerrainPath:
    """Sample terrain along the great circle from ``source`` to ``destination``.

    Steps are spaced so that the path visits roughly one sample per terrain
    pixel (the step count is the pixel distance between the endpoints).
    The destination's exact coordinates and elevation are appended as the
    final sample whenever the sample budget has room.

    Args:
        store: Tile store providing elevations
        source: Starting site (transmitter)
        destination: End point (receiver or sweep edge)
        max_samples: Maximum number of samples, destination included
        page: Load missing tiles touched by the path before lookup

    Returns:
        TerrainPath; a single sample at distance 0 holding the destination
        when the endpoints are closer than half a pixel. ``truncated`` is set
        when the budget was reached before the destination.

    Raises:
        InvalidPathError: If ``max_samples`` is below 2
    """
    if max_samples < 2:
        raise InvalidPathError(f"max_samples must be >= 2, got {max_samples}")

    ppd = store.resolution
    total = distance_miles(source, destination)

    if total <= DEGENERATE_PIXEL_MILES / ppd:
        lats = np.array([destination.latitude])
        lons = np.array([destination.longitude])
        if page:
            _page_points(store, lats, lons)
        return TerrainPath(
            latitude=lats,
            longitude=lons,
            distance=np.zeros(1),
            elevation=store.elevations(lats, lons),
        )

    spr = samples_per_radian(ppd)
    dx = spr * math.acos(
        math.cos((source.longitude - destination.longitude) * DEG2RAD)
    )
    dy = spr * math.acos(math.cos((source.latitude - destination.latitude) * DEG2RAD))
    miles_per_sample = total / math.hypot(dx, dy)

    # Steps at c * miles_per_sample for as long as they stay on the path.
    upper = min(int(math.floor(total / miles_per_sample)) + 2, max_samples)
    distances = miles_per_sample * np.arange(upper, dtype=np.float64)
    distances = distances[distances <= total]

    lats, lons = step_along(source, azimuth_degrees(source, destination), distances)

    count = len(distances)
    if count < max_samples:
        lats = np.append(lats, destination.latitude)
        lons = np.append(lons, destination.longitude)
        distances = np.append(distances, total)
        count += 1

    truncated = count >= max_samples
    if truncated:
        count = max_samples - 1
        lats, lons, distances = lats[:count], lons[:count], distances[:count]
        logger.warning(
            "Path of %.2f mi truncated to %d samples (%.2f mi)",
            total,
            count,
            distances[-1],
        )

    if page:
        _page_points(store, lats, lons)

    return TerrainPath(
        latitude=lats,
        longitude=lons,
        distance=distances,
        elevation=store.elevations(lats, lons),
        truncated=truncated,
    )
