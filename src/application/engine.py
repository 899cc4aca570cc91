"""Coverage engine session.

``CoverageEngine`` owns one tile store and runs coverage requests against
it. Results accumulate across runs in the same session (a later
transmitter only improves a cell), so switching between line-of-sight and
loss analysis, or between loss and signal output, needs ``reset()``.

Typical use:

    engine = CoverageEngine(EngineSettings(tile_dirs=(Path("sdf"),)))
    result = engine.run_coverage(request)
    engine.save_outputs(result, Path("out"), "site1")
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

import numpy as np

from domain.coverage.colors import COLOR_FILE_SUFFIX, default_table
from domain.coverage.errors import OutputWriteError, RequestValidationError
from domain.coverage.propagation import FreeSpaceKnifeEdgeModel, PropagationModel
from domain.coverage.rendering import RenderOptions, color_key, render
from domain.coverage.sweep import (
    CancelToken,
    CoverageSweep,
    SweepSettings,
    TextSink,
    normalize_request,
    plan_region,
    signal_value,
)
from domain.coverage.value_objects import (
    ColorTable,
    CoverageRequest,
    CoverageResult,
    PathTrace,
    RunDiagnostics,
    SignalMode,
)
from domain.terrain.geodesy import azimuth_degrees, distance_miles
from domain.terrain.los import (
    elevation_angle,
    first_obstruction_angle,
    is_visible,
    obstruction_report,
)
from domain.terrain.repositories import TileRepository
from domain.terrain.services import sample_path
from domain.terrain.tiles import TileStore
from domain.terrain.value_objects import Site
from infrastructure.coverage.parameter_files import (
    ParameterSet,
    load_parameters,
    read_color_file,
)
from infrastructure.raster.writers import (
    write_bounds,
    write_color_key,
    write_geotiff,
    write_png,
)
from infrastructure.terrain.geotiff_adapter import GeoTiffTileRepository
from infrastructure.terrain.sdf_adapter import SdfTileRepository
from shared.constants import EARTH_RADIUS_FT, METERS_PER_FOOT, METERS_PER_MILE

from .settings import EngineSettings

logger = logging.getLogger(__name__)


def build_repository(settings: EngineSettings) -> TileRepository | None:
    """Tile repository for the configured format; None without directories."""
    if not settings.tile_dirs:
        return None
    if settings.tile_format == "geotiff":
        return GeoTiffTileRepository(settings.tile_dirs)
    return SdfTileRepository(settings.tile_dirs)


class CoverageEngine:
    """One analysis session over a paged terrain store.

    Args:
        settings: Session configuration; ``EngineSettings()`` when None
        repository: Tile source overriding the one built from ``settings``
        model: Point-to-point loss model
        clock: Monotonic time source for timeouts and run timing
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        repository: TileRepository | None = None,
        model: PropagationModel | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.store = TileStore(
            repository or build_repository(self.settings),
            resolution=self.settings.resolution,
            max_pages=self.settings.max_pages,
        )
        self.model: PropagationModel = model or FreeSpaceKnifeEdgeModel()
        self._clock = clock
        self._sweep: CoverageSweep | None = None
        self._mode: SignalMode | None = None

    # -- parameters ---------------------------------------------------------
    def load_parameters(self) -> ParameterSet:
        s = self.settings
        return load_parameters(
            s.lrp_file,
            forced_frequency_mhz=s.forced_frequency_mhz,
            forced_erp_watts=s.forced_erp_watts,
            strict=s.strict_parameters,
            defaults=s.ground_defaults,
        )

    def _color_table(
        self, request: CoverageRequest, mode: SignalMode
    ) -> ColorTable | None:
        if mode is SignalMode.LOS:
            return None
        if request.color_table is not None:
            return request.color_table
        if self.settings.color_dir is not None:
            name = request.transmitters[0].name
            path = self.settings.color_dir / f"{name}{COLOR_FILE_SUFFIX[mode]}"
            table = read_color_file(path, mode)
            if table is not None:
                return table
        return default_table(mode)

    def _prepare(
        self, request: CoverageRequest
    ) -> tuple[SweepSettings, RunDiagnostics]:
        param_set = self.load_parameters()
        settings, warnings = normalize_request(
            request,
            param_set.params,
            pattern=param_set.pattern,
            max_path_samples=self.settings.max_path_samples,
            timeout_s=self.settings.sweep_timeout_s,
        )
        if self._mode is not None and settings.mode is not self._mode:
            raise RequestValidationError(
                "kind",
                f"session holds {self._mode.value} results; "
                f"call reset() before a {settings.mode.value} run",
            )
        return settings, RunDiagnostics(warnings=param_set.warnings + warnings)

    # -- coverage -----------------------------------------------------------
    def run_coverage(
        self,
        request: CoverageRequest,
        sink: TextSink | None = None,
        cancel: CancelToken | None = None,
    ) -> CoverageResult:
        """Sweep every transmitter in ``request`` and render the result.

        Args:
            request: Sites and analysis options
            sink: Optional text sink for per-cell loss output
            cancel: Cooperative cancellation token

        Returns:
            CoverageResult; partial when cancelled or timed out

        Raises:
            RequestValidationError: Structurally invalid request or a mode
                change without ``reset()``
            ConfigurationError: Unusable parameter file in strict mode
        """
        started = self._clock()
        settings, diagnostics = self._prepare(request)

        if self._sweep is None:
            self._sweep = CoverageSweep(self.store, self.model, clock=self._clock)
        sweep = self._sweep
        sweep.diagnostics = diagnostics
        sweep.cancel = cancel or CancelToken()

        plan = plan_region(
            self.store,
            request.transmitters,
            settings.receiver_height_ft,
            settings.max_range_miles,
        )
        self.store.ensure_region(
            plan.min_north, plan.max_north, plan.min_west, plan.max_west
        )
        self._mode = settings.mode

        for site, radius in zip(request.transmitters, plan.ranges_miles):
            if sweep.cancel.cancelled:
                diagnostics.cancelled = True
                break
            if settings.mode is SignalMode.LOS:
                sweep.plot_los(site, settings)
            else:
                sweep.plot_loss(site, settings, radius, sink)

        table = self._color_table(request, settings.mode)
        raster = render(
            self.store, settings.mode, table, RenderOptions.from_request(request)
        )
        key = color_key(table, settings.mode) if table is not None else None
        diagnostics.elapsed_s = self._clock() - started
        logger.info(
            "Coverage run: %d transmitters, %d rays, %d points in %.2f s",
            len(request.transmitters),
            diagnostics.rays_traced,
            diagnostics.points_evaluated,
            diagnostics.elapsed_s,
        )
        return CoverageResult(
            raster=raster, color_table=table, color_key=key, diagnostics=diagnostics
        )

    def save_outputs(
        self, result: CoverageResult, directory: Path | str, stem: str
    ) -> dict[str, Path]:
        """Write the PNG, GeoTIFF, bounds sidecar and color key.

        A failing artifact is logged and listed in
        ``result.diagnostics.failed_outputs``; the others are still written.

        Returns:
            Artifact kind -> path for every file written
        """
        directory = Path(directory)
        jobs: list[tuple[str, Callable[[Path], Path], Path]] = [
            ("png", lambda p: write_png(result.raster, p), directory / f"{stem}.png"),
            (
                "geotiff",
                lambda p: write_geotiff(result.raster, p),
                directory / f"{stem}.tif",
            ),
            (
                "bounds",
                lambda p: write_bounds(result.bounds, p),
                directory / f"{stem}.json",
            ),
        ]
        if result.color_key is not None:
            key = result.color_key
            jobs.append(
                (
                    "color_key",
                    lambda p: write_color_key(key, p),
                    directory / f"{stem}-ck.png",
                )
            )

        written: dict[str, Path] = {}
        for kind, write, path in jobs:
            try:
                written[kind] = write(path)
            except OutputWriteError as e:
                result.diagnostics.failed_outputs.append(e.artifact)
                result.diagnostics.warn(str(e))
        return written

    # -- point to point -----------------------------------------------------
    def trace_path(
        self,
        source: Site,
        destination: Site,
        clutter_height: float = 0.0,
        fresnel_clearance_percent: float = 60.0,
        earth_radius_multiplier: float = 1.0,
        metric: bool = False,
    ) -> PathTrace:
        """Analyze one transmitter to receiver path.

        Tiles along the path are paged in as needed. The loss is evaluated
        over the whole profile; field strength and received power are
        reported when the parameters carry a non-zero ERP.

        Args:
            source: Transmitter, antenna height AGL in feet
            destination: Receiver, antenna height AGL in feet
            clutter_height: Ground clutter, meters when ``metric`` else feet
            fresnel_clearance_percent: Fresnel zone fraction to clear (0..100)
            earth_radius_multiplier: Applied to the earth radius for LOS tests
            metric: Interpret ``clutter_height`` as meters
        """
        params, pattern, _ = self.load_parameters()
        clutter_ft = clutter_height / METERS_PER_FOOT if metric else clutter_height
        fresnel = min(max(fresnel_clearance_percent, 0.0), 100.0) / 100.0
        radius = EARTH_RADIUS_FT * max(earth_radius_multiplier, 0.1)

        path = sample_path(
            self.store, source, destination, self.settings.max_path_samples, page=True
        )
        distance = distance_miles(source, destination)
        azimuth = azimuth_degrees(source, destination)
        angle = first_obstruction_angle(source, destination, path, radius, clutter_ft)

        elevation = np.nan_to_num(np.asarray(path.elevation, dtype=np.float64), nan=0.0)
        profile = elevation.copy()
        if len(profile) > 2:
            interior = profile[1:-1]
            profile[1:-1] = np.where(interior == 0.0, interior, interior + clutter_ft)
        spacing = METERS_PER_MILE * distance / max(len(profile) - 1, 1)
        result = self.model.point_to_point(
            METERS_PER_FOOT * profile,
            spacing,
            source.altitude_ft * METERS_PER_FOOT,
            destination.altitude_ft * METERS_PER_FOOT,
            params,
        )
        loss = result.loss_db
        if pattern is not None:
            loss -= pattern.gain_db(azimuth, angle)

        field = power = None
        if params.erp_watts > 0.0:
            _, field = signal_value(SignalMode.FIELD_STRENGTH, loss, params)
            _, power = signal_value(SignalMode.POWER_DBM, loss, params)

        report = obstruction_report(
            source,
            destination,
            path,
            frequency_mhz=params.frequency_mhz,
            fresnel_clearance=fresnel,
            clutter_ft=clutter_ft,
            earth_radius_ft=radius,
        )
        logger.info(
            "Path %s -> %s: %.2f mi, %.2f dB (%s)",
            source.name,
            destination.name,
            distance,
            result.loss_db,
            result.mode,
        )
        return PathTrace(
            source=source,
            destination=destination,
            path=path,
            distance_miles=distance,
            azimuth_deg=azimuth,
            elevation_angle_deg=elevation_angle(source, destination, path, radius),
            obstruction_angle_deg=angle,
            visible=is_visible(source, destination, path, clutter_ft, radius),
            path_loss_db=result.loss_db,
            mode=result.mode,
            error_code=result.error_code,
            field_strength_dbuv_m=field,
            received_power_dbm=power,
            obstruction_report=report,
        )

    # -- session ------------------------------------------------------------
    def add_terrain_feature(
        self, latitude: float, longitude: float, height: float, metric: bool = False
    ) -> bool:
        """Raise the terrain at one sample (a building, tower or tree line).

        Args:
            latitude: Degrees north
            longitude: Degrees west (0-360)
            height: Height to add, meters when ``metric`` else feet

        Returns:
            False when the point's tile could not be paged in
        """
        self.store.load_tile(self.store.key_for(latitude, longitude))
        meters = height if metric else height * METERS_PER_FOOT
        added = self.store.add_elevation(latitude, longitude, meters)
        if added:
            logger.debug(
                "Terrain raised %.1f m at %.5fN %.5fW", meters, latitude, longitude
            )
        return added

    def reset(self) -> None:
        """Drop all terrain and results; the next run starts fresh."""
        self.store.reset()
        self._sweep = None
        self._mode = None
        logger.info("Coverage session reset")

    @property
    def mode(self) -> SignalMode | None:
        """Signal mode of the results currently held, or None."""
        return self._mode
