"""Terrain Bounded Context - Line-of-Sight Analyzer.

Spherical-earth visibility tests over a sampled ``TerrainPath``.

All geometry works on the triangle formed by the earth's center, the
observer and a target, using the law of cosines. Angles are never
computed in the hot path: the cosine of the angle from the observer to
the far antenna is compared with the cosine of the angle to each
intermediate terrain point. Angles are measured from the direction of
the earth's center and cosine decreases as the angle grows, so the test
is inverted with respect to angles: terrain blocks the ray when
``cos_xmtr >= cos_test``, meaning the terrain appears at least as high as
the far antenna.

Terrain at exactly sea level (0 ft) is never raised by clutter. Samples
without elevation data (NaN) never block.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable

import numpy as np
from numpy.typing import NDArray

from domain.terrain.geodesy import distance_miles
from domain.terrain.tiles import TileStore
from domain.terrain.value_objects import (
    ObstructionPoint,
    ObstructionReport,
    Site,
    TerrainPath,
)
from shared.constants import DEG2RAD, EARTH_RADIUS_FT, FEET_PER_MILE

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
# Upper bound on the (targets x samples) matrix evaluated at once
_CHUNK_ELEMENTS = 2_000_000

# Wavelength numerator in feet * Hz
_LIGHT_FT_HZ = 9.8425e8


def _terrain_heights(
    elevation: NDArray[np.float64], clutter_ft: float, earth_radius_ft: float
) -> NDArray[np.float64]:
    """Terrain radius at each sample, clutter added to non-sea-level points."""
    raised = np.where(elevation == 0.0, elevation, elevation + clutter_ft)
    return earth_radius_ft + raised


def _cos_angle(
    observer: NDArray[np.float64] | float,
    distance: NDArray[np.float64] | float,
    target: NDArray[np.float64] | float,
) -> NDArray[np.float64]:
    """Cosine of the angle at ``observer`` between the earth's center and the
    target, given both radii and the straight-line ground distance."""
    with np.errstate(divide="ignore", invalid="ignore"):
        return (observer * observer + distance * distance - target * target) / (
            2.0 * observer * distance
        )


# ---------------------------------------------------------------------------
# Receiver-perspective visibility
# ---------------------------------------------------------------------------
def visible_samples(
    path: TerrainPath,
    source_alt_ft: float,
    receiver_alt_ft: float,
    targets: NDArray[np.intp],
    clutter_ft: float = 0.0,
    earth_radius_ft: float = EARTH_RADIUS_FT,
) -> NDArray[np.bool_]:
    """Visibility of each target sample from the transmitter at ``path[0]``.

    For target ``y`` a receiver ``receiver_alt_ft`` above the terrain looks
    back toward the transmitter; every sample ``x <= y`` is tested. A sample
    at zero distance from the receiver blocks only if it stands higher than
    the receiving antenna.

    Args:
        path: Sampled path; sample 0 is the transmitter location
        source_alt_ft: Transmitter antenna height AGL
        receiver_alt_ft: Receiver antenna height AGL
        targets: Indices of the samples to evaluate
        clutter_ft: Ground clutter height
        earth_radius_ft: Sphere radius (scaled for refraction if desired)

    Returns:
        Boolean array aligned with ``targets``
    """
    targets = np.asarray(targets, dtype=np.intp)
    result = np.zeros(targets.shape, dtype=bool)
    if targets.size == 0:
        return result

    elevation = np.asarray(path.elevation, dtype=np.float64)
    dist_ft = FEET_PER_MILE * np.asarray(path.distance, dtype=np.float64)
    n = len(elevation)

    e0 = 0.0 if math.isnan(elevation[0]) else float(elevation[0])
    tx_alt = earth_radius_ft + source_alt_ft + e0
    test_alt = _terrain_heights(elevation, clutter_ft, earth_radius_ft)
    columns = np.arange(n)

    chunk = max(1, _CHUNK_ELEMENTS // n)
    for start in range(0, targets.size, chunk):
        ys = targets[start : start + chunk]
        rx_alt = (earth_radius_ft + receiver_alt_ft + elevation[ys])[:, None]
        d_rx = dist_ft[ys][:, None]
        d = d_rx - dist_ft[None, :]

        cos_xmtr = _cos_angle(rx_alt, d_rx, tx_alt)
        cos_test = _cos_angle(rx_alt, d, test_alt[None, :])

        # Inverted sense: a larger-or-equal transmitter cosine means the
        # terrain point rises above the ray.
        with np.errstate(invalid="ignore"):
            blocked = np.where(
                d > 0.0, cos_xmtr >= cos_test, test_alt[None, :] > rx_alt
            )
        blocked &= columns[None, :] <= ys[:, None]

        visible = ~blocked.any(axis=1) & ~np.isnan(rx_alt[:, 0])
        result[start : start + ys.size] = visible
    return result


def is_visible(
    source: Site,
    destination: Site,
    path: TerrainPath,
    clutter_ft: float = 0.0,
    earth_radius_ft: float = EARTH_RADIUS_FT,
) -> bool:
    """True when the last sample of ``path`` can see the transmitter.

    Args:
        source: Transmitter (its altitude_ft is the antenna height AGL)
        destination: Receiver (its altitude_ft is the antenna height AGL)
        path: Path sampled from ``source`` to ``destination``
        clutter_ft: Ground clutter height added to intermediate terrain
        earth_radius_ft: Sphere radius used for curvature
    """
    last = np.array([len(path) - 1], dtype=np.intp)
    return bool(
        visible_samples(
            path,
            source.altitude_ft,
            destination.altitude_ft,
            last,
            clutter_ft,
            earth_radius_ft,
        )[0]
    )


def mark_visibility(
    store: TileStore,
    source: Site,
    destination: Site,
    path: TerrainPath,
    mask_bit: int,
    clutter_ft: float = 0.0,
    earth_radius_ft: float = EARTH_RADIUS_FT,
) -> int:
    """OR ``mask_bit`` into every path sample visible from the transmitter.

    Samples already carrying ``mask_bit`` are skipped, as are samples with no
    resident tile.

    Returns:
        Number of samples newly marked
    """
    masks, found = store.masks(path.latitude, path.longitude)
    pending = np.nonzero(found & ((masks & mask_bit) == 0))[0]
    if pending.size == 0:
        return 0
    visible = visible_samples(
        path,
        source.altitude_ft,
        destination.altitude_ft,
        pending,
        clutter_ft,
        earth_radius_ft,
    )
    hits = pending[visible]
    if hits.size == 0:
        return 0
    return store.or_masks(path.latitude[hits], path.longitude[hits], mask_bit)


# ---------------------------------------------------------------------------
# Transmitter-perspective angles
# ---------------------------------------------------------------------------
def elevation_angle(
    source: Site,
    destination: Site,
    path: TerrainPath,
    earth_radius_ft: float = EARTH_RADIUS_FT,
) -> float:
    """Elevation angle (degrees) of ``destination`` seen from ``source``.

    Positive values are uptilt, negative values downtilt, referenced to the
    local horizontal. Endpoint elevations come from the path's first and
    last samples.
    """
    e = np.nan_to_num(np.asarray(path.elevation, dtype=np.float64), nan=0.0)
    a = float(e[-1]) + destination.altitude_ft + earth_radius_ft
    b = float(e[0]) + source.altitude_ft + earth_radius_ft
    dx = FEET_PER_MILE * distance_miles(source, destination)
    if dx == 0.0:
        return 0.0
    cos_angle = (b * b + dx * dx - a * a) / (2.0 * b * dx)
    return math.acos(max(-1.0, min(1.0, cos_angle))) / DEG2RAD - 90.0


def first_obstruction_angle(
    source: Site,
    destination: Site,
    path: TerrainPath,
    earth_radius_ft: float = EARTH_RADIUS_FT,
    clutter_ft: float = 0.0,
) -> float:
    """Elevation angle from ``source`` to the first terrain obstruction.

    Scans outward from the transmitter (starting at the third sample) and
    returns the angle to the first sample that rises above the ray toward
    the destination; when nothing blocks, the angle to the destination.
    Used to index the antenna's elevation pattern.
    """
    e = np.asarray(path.elevation, dtype=np.float64)
    e_src = 0.0 if math.isnan(e[0]) else float(e[0])
    e_dst = 0.0 if math.isnan(e[-1]) else float(e[-1])
    distance = FEET_PER_MILE * distance_miles(source, destination)
    if distance == 0.0:
        return 0.0

    source_alt = earth_radius_ft + source.altitude_ft + e_src
    destination_alt = earth_radius_ft + destination.altitude_ft + e_dst
    cos_xmtr = float(_cos_angle(source_alt, distance, destination_alt))

    if len(path) > 2:
        d = FEET_PER_MILE * np.asarray(path.distance[2:], dtype=np.float64)
        test_alt = _terrain_heights(e[2:], clutter_ft, earth_radius_ft)
        cos_test = _cos_angle(source_alt, d, test_alt)
        with np.errstate(invalid="ignore"):
            blocked = np.nonzero((d > 0.0) & (cos_xmtr >= cos_test))[0]
        if blocked.size:
            cos_first = float(cos_test[blocked[0]])
            return math.acos(max(-1.0, min(1.0, cos_first))) / DEG2RAD - 90.0

    return math.acos(max(-1.0, min(1.0, cos_xmtr))) / DEG2RAD - 90.0


# ---------------------------------------------------------------------------
# Obstruction analysis
# ---------------------------------------------------------------------------
def _raise_until_clear(blocked: Callable[[float], bool], height: float) -> float:
    """Smallest ``height + k`` (k a whole number of feet) that is not blocked.

    Equivalent to stepping a foot at a time for a monotone ``blocked``, but
    grows the step geometrically first so tall obstructions stay cheap.
    """
    if not blocked(height):
        return height
    low, step = 0, 1
    while blocked(height + step):
        low, step = step, step * 2
    high = step
    while high - low > 1:
        mid = (low + high) // 2
        if blocked(height + mid):
            low = mid
        else:
            high = mid
    return height + high


def _fresnel_clear_height(
    h_r: float,
    h_t: float,
    h_x: float,
    d_x: float,
    d_tx: float,
    wavelength_ft: float,
    fraction: float,
) -> float:
    """Raise ``h_r`` until ``fraction`` of the first Fresnel zone clears ``h_x``."""
    radius = math.sqrt(max(0.0, wavelength_ft * d_x * (d_tx - d_x) / d_tx))

    def zone_blocked(h: float) -> bool:
        cos_tx = (h * h + d_tx * d_tx - h_t * h_t) / (2.0 * h * d_tx)
        h_los = math.sqrt(max(0.0, h * h + d_x * d_x - 2.0 * h * d_x * cos_tx))
        return h_los - fraction * radius < h_x

    return _raise_until_clear(zone_blocked, h_r)


def obstruction_report(
    source: Site,
    destination: Site,
    path: TerrainPath,
    frequency_mhz: float | None = None,
    fresnel_clearance: float = 0.6,
    clutter_ft: float = 0.0,
    earth_radius_ft: float = EARTH_RADIUS_FT,
) -> ObstructionReport:
    """List terrain obstructions seen from the receiver and the antenna
    heights needed to clear them.

    Walks the path from the receiver (last sample) back toward the
    transmitter. For every point rising above the current ray the point is
    recorded and the receiver antenna is raised a foot at a time until the
    ray clears it. With a frequency, the same is done for the first Fresnel
    zone and for ``fresnel_clearance`` of it.

    Args:
        source: Transmitter site
        destination: Receiver site
        path: Path sampled from ``source`` to ``destination``
        frequency_mhz: Carrier frequency; enables Fresnel clearance
        fresnel_clearance: Required fraction of the first Fresnel zone
        clutter_ft: Height added to every terrain sample
        earth_radius_ft: Sphere radius

    Returns:
        ObstructionReport with heights AGL in feet (None when already clear)
    """
    e = np.asarray(path.elevation, dtype=np.float64)
    rx_ground = 0.0 if math.isnan(e[-1]) else float(e[-1])
    tx_ground = 0.0 if math.isnan(e[0]) else float(e[0])

    h_r = rx_ground + destination.altitude_ft + earth_radius_ft
    h_r_orig = h_r
    h_r_f1 = h_r
    h_r_frac = h_r
    h_t = tx_ground + source.altitude_ft + earth_radius_ft
    d_tx = FEET_PER_MILE * distance_miles(destination, source)

    wavelength_ft = _LIGHT_FT_HZ / (frequency_mhz * 1e6) if frequency_mhz else 0.0
    obstructions: list[ObstructionPoint] = []

    if d_tx > 0.0:
        for x in range(len(path) - 1, 0, -1):
            if math.isnan(e[x]):
                continue
            point = Site(latitude=path.latitude[x], longitude=path.longitude[x])
            h_x = float(e[x]) + earth_radius_ft + clutter_ft
            d_x = FEET_PER_MILE * distance_miles(destination, point)

            def ray_blocked(h: float, d_x: float = d_x, h_x: float = h_x) -> bool:
                if d_x == 0.0:
                    return h_x > h
                return float(_cos_angle(h, d_tx, h_t)) > float(_cos_angle(h, d_x, h_x))

            if ray_blocked(h_r):
                obstructions.append(
                    ObstructionPoint(
                        latitude=point.latitude,
                        longitude=point.longitude,
                        distance_miles=d_x / FEET_PER_MILE,
                        height_ft=h_x - earth_radius_ft,
                    )
                )
                h_r = _raise_until_clear(ray_blocked, h_r)

            if wavelength_ft and d_x <= d_tx:
                h_r_f1 = _fresnel_clear_height(
                    h_r_f1, h_t, h_x, d_x, d_tx, wavelength_ft, 1.0
                )
                h_r_frac = _fresnel_clear_height(
                    h_r_frac, h_t, h_x, d_x, d_tx, wavelength_ft, fresnel_clearance
                )

    def needed(height: float) -> float | None:
        if height > h_r_orig:
            return height - rx_ground - earth_radius_ft
        return None

    if obstructions:
        logger.debug(
            "%d obstructions between %s and %s",
            len(obstructions),
            destination.name or "receiver",
            source.name or "transmitter",
        )

    return ObstructionReport(
        obstructions=tuple(obstructions),
        clear_los_height_ft=needed(h_r),
        clear_fresnel_height_ft=needed(h_r_f1) if wavelength_ft else None,
        clear_fresnel_fraction_height_ft=needed(h_r_frac) if wavelength_ft else None,
        fresnel_fraction=fresnel_clearance,
        frequency_mhz=frequency_mhz,
    )
