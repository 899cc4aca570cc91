"""Coverage Bounded Context - Radial Sweep Orchestrator.

Drives path sampling, line-of-sight marking and incremental loss
evaluation for one transmitter at a time. Rays are cast from the
transmitter to every sample along the four edges of the loaded region
(north edge west to east, east edge north to south, south edge, then the
west edge), so the whole grid is covered while staying aligned with it.

Per-transmitter state lives on the ``CoverageSweep`` instance: the next
line-of-sight mask bit (1, 8, 16, 32) and the loss-mode pass counter kept
in mask bits 3..7 so a cell is evaluated once per transmitter.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from typing import NamedTuple, Protocol

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, Field

from domain.coverage.errors import RequestValidationError
from domain.coverage.propagation import FreeSpaceKnifeEdgeModel, PropagationModel
from domain.coverage.value_objects import (
    AntennaPattern,
    CoverageKind,
    CoverageRequest,
    PropagationParameters,
    RunDiagnostics,
    SignalMode,
)
from domain.terrain.geodesy import azimuth_degrees, lon_diff
from domain.terrain.los import mark_visibility
from domain.terrain.services import sample_path
from domain.terrain.tiles import TileStore
from domain.terrain.value_objects import Site, TerrainPath
from shared.constants import (
    DEFAULT_MAX_PATH_SAMPLES,
    DEG2RAD,
    EARTH_RADIUS_FT,
    FEET_PER_METER,
    FEET_PER_MILE,
    FOUR_THIRDS,
    KM_PER_MILE,
    LOS_MASK_BITS,
    MASK_COUNTER,
    MAX_FREQUENCY_MHZ,
    MAX_FRESNEL_PERCENT,
    MAX_LOSS_TRANSMITTERS,
    MAX_RANGE_MILES,
    METERS_PER_FOOT,
    METERS_PER_MILE,
    MIN_FREQUENCY_MHZ,
)

logger = logging.getLogger(__name__)

MAX_TRANSMITTERS = len(LOS_MASK_BITS)


class TextSink(Protocol):
    """Anything with a ``write(str)`` method, e.g. an open text file."""

    def write(self, text: str, /) -> object: ...


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------
class CancelToken:
    """Cooperative cancellation flag, checked once per azimuth step."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
class SweepSettings(BaseModel):
    """Request values after clamping and conversion to feet and miles."""

    receiver_height_ft: float = Field(default=0.0, ge=0)
    max_range_miles: float = Field(default=0.0, ge=0)  # 0: radio horizon
    clutter_ft: float = Field(default=0.0, ge=0)
    start_angle: float = Field(default=0.0, ge=0, le=360)
    end_angle: float = Field(default=360.0, ge=0, le=360)
    fresnel_fraction: float = Field(default=0.6, ge=0, le=1)
    earth_radius_multiplier: float = Field(default=1.0, gt=0)
    mode: SignalMode = SignalMode.PATH_LOSS
    params: PropagationParameters = Field(default_factory=PropagationParameters)
    pattern: AntennaPattern | None = None
    max_path_samples: int = Field(default=DEFAULT_MAX_PATH_SAMPLES, ge=2)
    timeout_s: float | None = Field(default=None, gt=0)

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def in_window(self, azimuth: float) -> bool:
        return self.start_angle <= azimuth <= self.end_angle


def _clamped(
    value: float, low: float, high: float, label: str, warnings: list[str]
) -> float:
    clamped = min(max(value, low), high)
    if clamped != value:
        message = f"{label} {value:g} clamped to {clamped:g}"
        logger.warning(message)
        warnings.append(message)
    return clamped


def normalize_request(
    request: CoverageRequest,
    params: PropagationParameters,
    pattern: AntennaPattern | None = None,
    max_path_samples: int = DEFAULT_MAX_PATH_SAMPLES,
    timeout_s: float | None = None,
) -> tuple[SweepSettings, list[str]]:
    """Validate a request and convert it into sweep settings.

    Structural problems are rejected; numeric values outside their valid
    range are clamped and reported in the returned warning list.

    Raises:
        RequestValidationError: No transmitter, too many transmitters, an
            unnamed transmitter or a start angle above the end angle
    """
    if not request.transmitters:
        raise RequestValidationError("transmitters", "at least one site is required")
    if len(request.transmitters) > MAX_TRANSMITTERS:
        raise RequestValidationError(
            "transmitters",
            f"at most {MAX_TRANSMITTERS} sites, got {len(request.transmitters)}",
        )
    for site in request.transmitters:
        if not site.name.strip():
            raise RequestValidationError("transmitters", "every site needs a name")
    if request.start_angle > request.end_angle:
        raise RequestValidationError(
            "start_angle",
            f"start {request.start_angle:g} exceeds end {request.end_angle:g}",
        )

    warnings: list[str] = []
    to_ft = FEET_PER_METER if request.metric else 1.0
    to_miles = 1.0 / KM_PER_MILE if request.metric else 1.0

    start = _clamped(request.start_angle, 0.0, 360.0, "start_angle", warnings)
    end = _clamped(request.end_angle, 0.0, 360.0, "end_angle", warnings)
    receiver = _clamped(
        request.receiver_height, 0.0, math.inf, "receiver_height", warnings
    )
    clutter = _clamped(
        request.clutter_height, 0.0, math.inf, "clutter_height", warnings
    )
    max_range = _clamped(
        request.max_range * to_miles, 0.0, MAX_RANGE_MILES, "max_range (mi)", warnings
    )
    fresnel = _clamped(
        request.fresnel_clearance_percent,
        0.0,
        MAX_FRESNEL_PERCENT,
        "fresnel_clearance_percent",
        warnings,
    )

    # Multipliers below 0.1 fall back to a plain earth.
    multiplier = request.earth_radius_multiplier
    low, high = (1.0, 1.0) if multiplier < 0.1 else (0.1, 1.0e6)
    multiplier = _clamped(multiplier, low, high, "earth_radius_multiplier", warnings)

    updates: dict[str, float] = {}
    if request.frequency_mhz is not None:
        updates["frequency_mhz"] = _clamped(
            request.frequency_mhz,
            MIN_FREQUENCY_MHZ,
            MAX_FREQUENCY_MHZ,
            "frequency_mhz",
            warnings,
        )
    if request.erp_watts is not None:
        updates["erp_watts"] = _clamped(
            request.erp_watts, 0.0, math.inf, "erp_watts", warnings
        )
    if updates:
        params = params.model_copy(update=updates)

    if request.kind is CoverageKind.LOS:
        mode = SignalMode.LOS
    elif params.erp_watts == 0.0:
        mode = SignalMode.PATH_LOSS
    elif request.dbm:
        mode = SignalMode.POWER_DBM
    else:
        mode = SignalMode.FIELD_STRENGTH

    settings = SweepSettings(
        receiver_height_ft=receiver * to_ft,
        max_range_miles=max_range,
        clutter_ft=clutter * to_ft,
        start_angle=start,
        end_angle=end,
        fresnel_fraction=fresnel / 100.0,
        earth_radius_multiplier=multiplier,
        mode=mode,
        params=params,
        pattern=pattern,
        max_path_samples=max_path_samples,
        timeout_s=timeout_s,
    )
    return settings, warnings


# ---------------------------------------------------------------------------
# Region planning
# ---------------------------------------------------------------------------
class RegionPlan(NamedTuple):
    """Integer degree limits of the tiles a run needs, plus per-site radii."""

    min_north: int
    max_north: int
    min_west: int
    max_west: int
    ranges_miles: tuple[float, ...]


def degree_limit(max_pages: int) -> float:
    """Largest half-width in degrees a sweep may request for a page budget.

    1, 2 and 4 pages allow an eighth of a degree per page; larger square
    budgets allow ``(sqrt(pages) - 1) / 2`` degrees (9 pages: 1.0,
    64 pages: 3.5).
    """
    side = math.isqrt(max_pages)
    if side >= 3:
        return (side - 1) / 2.0
    return max_pages / 8.0


def horizon_range_miles(antenna_ft: float, ground_ft: float = 0.0) -> float:
    """Rough radio horizon in miles for an antenna height above sea level."""
    return math.sqrt(1.5 * max(antenna_ft + ground_ft, 0.0))


def plan_region(
    store: TileStore,
    transmitters: Sequence[Site],
    receiver_height_ft: float,
    max_range_miles: float = 0.0,
    include: Sequence[Site] = (),
) -> RegionPlan:
    """Page in the transmitters' own tiles and size the full analysis region.

    Each site's radius is ``max_range_miles`` or, when that is 0, the sum of
    the transmitter's and receiver's radio horizons. The radius becomes a
    degree range (1 degree ~ 57 miles) widened in longitude by
    ``1/cos(lat)`` (latitude capped at 70) and capped by ``degree_limit``.

    Args:
        store: Tile store to page the transmitter tiles into
        transmitters: Transmitter sites
        receiver_height_ft: Receiver antenna height AGL
        max_range_miles: Requested radius; 0 selects the radio horizon
        include: Extra sites whose tiles must be part of the region

    Returns:
        RegionPlan for ``TileStore.ensure_region``
    """
    sites = list(transmitters) + list(include)
    min_lat, max_lat = 90, -90
    min_lon = max_lon = int(math.floor(sites[0].longitude))
    for site in sites:
        lat = int(math.floor(site.latitude))
        lon = int(math.floor(site.longitude))
        min_lat = min(min_lat, lat)
        max_lat = max(max_lat, lat)
        if lon_diff(lon, min_lon) < 0.0:
            min_lon = lon
        if lon_diff(lon, max_lon) >= 0.0:
            max_lon = lon

    store.ensure_region(min_lat, max_lat, min_lon, max_lon)

    limit = degree_limit(store.max_pages)
    ranges: list[float] = []
    for site in transmitters:
        if max_range_miles > 0.0:
            radius = max_range_miles
        else:
            ground = store.elevation_at(site.latitude, site.longitude, page=True) or 0.0
            tx_range = horizon_range_miles(site.altitude_ft, ground)
            radius = tx_range + horizon_range_miles(receiver_height_ft)
        ranges.append(radius)

        deg_range = radius / 57.0
        cap_lat = site.latitude if abs(site.latitude) < 70.0 else 70.0
        deg_range_lon = min(deg_range / math.cos(DEG2RAD * cap_lat), limit)
        deg_range = min(deg_range, limit)

        north_min = int(math.floor(site.latitude - deg_range))
        north_max = int(math.floor(site.latitude + deg_range))
        west_min = int(math.floor(site.longitude - deg_range_lon)) % 360
        west_max = int(math.floor(site.longitude + deg_range_lon)) % 360

        min_lat = min(min_lat, north_min)
        max_lat = max(max_lat, north_max)
        if lon_diff(west_min, min_lon) < 0.0:
            min_lon = west_min
        if lon_diff(west_max, max_lon) >= 0.0:
            max_lon = west_max

    min_lat = max(min_lat, -90)
    max_lat = min(max_lat, 89)
    logger.debug(
        "Region %d..%dN %d..%dW for %d transmitters",
        min_lat,
        max_lat,
        min_lon,
        max_lon,
        len(transmitters),
    )
    return RegionPlan(min_lat, max_lat, min_lon, max_lon, tuple(ranges))


# ---------------------------------------------------------------------------
# Signal conversion
# ---------------------------------------------------------------------------
def signal_value(
    mode: SignalMode, loss_db: float, params: PropagationParameters
) -> tuple[int, float]:
    """Convert a path loss into the stored byte and its physical value.

    Returns:
        (byte, value) where value is dB of loss, dBuV/m or dBm
    """
    if mode is SignalMode.POWER_DBM:
        # Received power from EIRP (ERP + 2.14 dB)
        rxp = params.erp_watts / (10.0 ** ((loss_db - 2.14) / 10.0))
        dbm = 10.0 * math.log10(rxp * 1000.0)
        return max(0, min(255, 200 + int(np.rint(dbm)))), dbm
    if mode is SignalMode.FIELD_STRENGTH:
        field = (
            139.4
            + 20.0 * math.log10(params.frequency_mhz)
            - loss_db
            + 10.0 * math.log10(params.erp_watts / 1000.0)
        )
        return max(0, min(255, 100 + int(np.rint(field)))), field
    return max(0, min(255, int(np.rint(loss_db)))), loss_db


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class CoverageSweep:
    """Radial sweep over the store's loaded region for one session.

    Args:
        store: Tile store already holding the analysis region
        model: Point-to-point loss model
        diagnostics: Run counters updated in place
        cancel: Cooperative cancellation token
        clock: Monotonic time source used for the per-transmitter timeout
    """

    def __init__(
        self,
        store: TileStore,
        model: PropagationModel | None = None,
        diagnostics: RunDiagnostics | None = None,
        cancel: CancelToken | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.model: PropagationModel = model or FreeSpaceKnifeEdgeModel()
        self.diagnostics = diagnostics or RunDiagnostics()
        self.cancel = cancel or CancelToken()
        self._clock = clock
        self._los_index = 0
        self._loss_pass = 1

    # -- edge walk ----------------------------------------------------------
    def _west_steps(self) -> list[float]:
        store = self.store
        dpp = store.dpp
        start = dpp + store.min_west
        limit = int(360 * store.resolution) + 1
        steps: list[float] = []
        lon = start
        while lon_diff(lon, store.max_west) <= 0.0 and len(steps) <= limit:
            steps.append(lon - 360.0 if lon >= 360.0 else lon)
            lon = start + dpp * len(steps)
        return steps

    def edge_targets(self) -> Iterator[tuple[float, float]]:
        """(lat, west lon) of every ray end point, in sweep order."""
        store = self.store
        dpp = store.dpp
        max_north = float(store.max_north)
        min_north = float(store.min_north)
        west_steps = self._west_steps()

        for lon in west_steps:
            yield max_north, lon

        top = max_north - dpp
        step = 0
        lat = top
        while lat >= min_north:
            yield lat, float(store.min_west)
            step += 1
            lat = top - dpp * step

        for lon in west_steps:
            yield min_north, lon

        step = 0
        lat = min_north
        while lat < max_north:
            yield lat, float(store.max_west)
            step += 1
            lat = min_north + dpp * step

    def _rays(
        self, site: Site, settings: SweepSettings
    ) -> Iterator[tuple[Site, TerrainPath]]:
        """Sample each in-window ray, stopping on cancel or timeout."""
        deadline = None
        if settings.timeout_s is not None:
            deadline = self._clock() + settings.timeout_s
        for lat, lon in self.edge_targets():
            if self.cancel.cancelled:
                self.diagnostics.cancelled = True
                logger.info("Sweep of %s cancelled", site.name)
                return
            if deadline is not None and self._clock() > deadline:
                self.diagnostics.timed_out = True
                message = f"Sweep of {site.name} stopped after {settings.timeout_s:g} s"
                logger.warning(message)
                self.diagnostics.warn(message)
                return

            edge = Site(
                latitude=lat, longitude=lon, altitude_ft=settings.receiver_height_ft
            )
            if not settings.in_window(azimuth_degrees(site, edge)):
                self.diagnostics.rays_skipped += 1
                continue

            path = sample_path(self.store, site, edge, settings.max_path_samples)
            self.diagnostics.rays_traced += 1
            if path.truncated:
                self.diagnostics.truncated_paths += 1
            self.diagnostics.nodata_samples += int(np.isnan(path.elevation).sum())
            yield edge, path

    # -- line of sight ------------------------------------------------------
    def plot_los(self, site: Site, settings: SweepSettings) -> int:
        """Mark every cell visible from ``site`` with the next transmitter bit.

        Returns:
            The mask bit used for this transmitter
        """
        bit = LOS_MASK_BITS[min(self._los_index, len(LOS_MASK_BITS) - 1)]
        radius = EARTH_RADIUS_FT * settings.earth_radius_multiplier
        logger.info(
            "Line-of-sight sweep of %s (bit %d, rx %.1f ft AGL)",
            site.name,
            bit,
            settings.receiver_height_ft,
        )
        marked = 0
        for edge, path in self._rays(site, settings):
            marked += mark_visibility(
                self.store, site, edge, path, bit, settings.clutter_ft, radius
            )
        if self._los_index < len(LOS_MASK_BITS) - 1:
            self._los_index += 1
        logger.debug("%d cells marked visible from %s", marked, site.name)
        return bit

    # -- path loss ----------------------------------------------------------
    def plot_loss(
        self,
        site: Site,
        settings: SweepSettings,
        max_range_miles: float,
        sink: TextSink | None = None,
    ) -> int:
        """Accumulate loss-derived signal for ``site`` out to ``max_range_miles``.

        Args:
            site: Transmitter
            settings: Normalized sweep settings
            max_range_miles: Radius beyond which samples are not evaluated
            sink: Optional text sink receiving one line per evaluated cell

        Returns:
            The pass counter stored in mask bits 3..7 for this transmitter
        """
        pass_id = self._loss_pass
        store = self.store
        if sink is not None:
            sink.write(
                f"{store.max_west}, {store.min_west}\t; max_west, min_west\n"
                f"{store.max_north}, {store.min_north}\t; max_north, min_north\n"
            )
        logger.info(
            "%s sweep of %s out to %.2f mi (rx %.1f ft AGL)",
            settings.mode.value,
            site.name,
            max_range_miles,
            settings.receiver_height_ft,
        )
        for _edge, path in self._rays(site, settings):
            self._trace_loss_ray(site, path, pass_id, settings, max_range_miles, sink)
        if self._loss_pass < MAX_LOSS_TRANSMITTERS:
            self._loss_pass += 1
        return pass_id

    def _trace_loss_ray(
        self,
        site: Site,
        path: TerrainPath,
        pass_id: int,
        settings: SweepSettings,
        max_range_miles: float,
        sink: TextSink | None,
    ) -> None:
        n = len(path)
        if n < 4:
            return
        store = self.store
        params = settings.params
        mode = settings.mode
        stamp = pass_id << 3

        # No-data samples count as sea level along the loss profile.
        elevation = np.asarray(path.elevation, dtype=np.float64)
        elevation = np.nan_to_num(elevation, nan=0.0)
        clutter = settings.clutter_ft
        profile_m = METERS_PER_FOOT * np.where(
            elevation == 0.0, elevation, elevation + clutter
        )
        raw_m = METERS_PER_FOOT * elevation

        angles: NDArray[np.float64] | None = None
        blocked: NDArray[np.bool_] | None = None
        if settings.pattern is not None or sink is not None:
            angles, blocked = first_obstruction_angles(
                path,
                elevation,
                site.altitude_ft,
                settings.receiver_height_ft,
                settings.clutter_ft,
            )

        tx_height_m = site.altitude_ft * METERS_PER_FOOT
        rx_height_m = settings.receiver_height_ft * METERS_PER_FOOT

        for y in range(2, n - 1):
            if path.distance[y] > max_range_miles:
                break
            lat = float(path.latitude[y])
            lon = float(path.longitude[y])
            mask = store.get_mask(lat, lon)
            if mask is None or (mask & MASK_COUNTER) == stamp:
                continue

            profile = profile_m[: y + 1].copy()
            profile[0] = raw_m[0]
            profile[y] = raw_m[y]
            spacing = METERS_PER_MILE * float(path.distance[y] - path.distance[y - 1])

            result = self.model.point_to_point(
                profile, spacing, tx_height_m, rx_height_m, params
            )
            self.diagnostics.record_loss(result)
            self.diagnostics.points_evaluated += 1
            loss = result.loss_db

            azimuth = azimuth_degrees(site, Site(latitude=lat, longitude=lon))
            angle = float(angles[y]) if angles is not None else 0.0
            line = ""
            if sink is not None:
                line = f"{lat:.7f}, {lon:.7f}, {azimuth:.3f}, {angle:.3f}, "
                if mode is SignalMode.PATH_LOSS:
                    line += f"{loss:.2f}"

            if settings.pattern is not None:
                loss -= settings.pattern.gain_db(azimuth, angle)

            byte, value = signal_value(mode, loss, params)
            store.accumulate(lat, lon, byte, mode.rule)

            if sink is not None:
                if mode is not SignalMode.PATH_LOSS:
                    line += f"{value:.3f}"
                if blocked is not None and blocked[y]:
                    line += " *"
                sink.write(line + "\n")

            store.put_mask(lat, lon, (mask & 7) + stamp)


# ---------------------------------------------------------------------------
# Obstruction angles along a loss ray
# ---------------------------------------------------------------------------
def first_obstruction_angles(
    path: TerrainPath,
    elevation_ft: NDArray[np.float64],
    source_alt_ft: float,
    receiver_alt_ft: float,
    clutter_ft: float = 0.0,
) -> tuple[NDArray[np.float64], NDArray[np.bool_]]:
    """Elevation angle from the transmitter toward each sample's receiver.

    For every sample ``y`` the angle is taken to the first terrain point in
    ``2..y-1`` that rises above the ray to a receiver at ``y`` (or to the
    receiver itself when none does), over a 4/3 earth. Cosines stand in for
    angles, so a point blocks when ``cos_rcvr >= cos_test``.

    Returns:
        (angles in degrees, blocked flags), both aligned with the path
    """
    radius = FOUR_THIRDS * EARTH_RADIUS_FT
    n = len(path)
    d = FEET_PER_MILE * np.asarray(path.distance, dtype=np.float64)
    tx_alt = radius + source_alt_ft + float(elevation_ft[0])
    dest_alt = radius + receiver_alt_ft + elevation_ft
    terrain = np.where(elevation_ft == 0.0, elevation_ft, elevation_ft + clutter_ft)
    test_alt = radius + terrain

    with np.errstate(divide="ignore", invalid="ignore"):
        cos_rcvr = (tx_alt * tx_alt + d * d - dest_alt * dest_alt) / (2.0 * tx_alt * d)
        cos_test = (tx_alt * tx_alt + d * d - test_alt * test_alt) / (2.0 * tx_alt * d)
    cos_rcvr = np.clip(np.nan_to_num(cos_rcvr, nan=1.0), -1.0, 1.0)
    cos_test = np.clip(np.nan_to_num(cos_test, nan=1.0), -1.0, 1.0)

    angles = np.arccos(cos_rcvr) / DEG2RAD - 90.0
    blocked = np.zeros(n, dtype=bool)
    if n <= 3:
        return angles, blocked

    # Running minimum of cos_test from x=2: the first x with
    # cos_test[x] <= cos_rcvr[y] is where that minimum first drops below it.
    running = np.minimum.accumulate(cos_test[2:])
    ys = np.arange(3, n)
    first = 2 + np.searchsorted(-running, -cos_rcvr[ys], side="left")
    hit = first < ys
    blocked[ys[hit]] = True
    angles[ys[hit]] = np.arccos(cos_test[first[hit]]) / DEG2RAD - 90.0
    return angles, blocked
