"""Tests for the CoverageEngine session.

The engine runs at 20 samples per degree over the flat plains tile with a
5 mile radius, so each run stays inside one tile.
"""

from __future__ import annotations

import itertools

import numpy as np
import pytest

from application.engine import CoverageEngine, build_repository
from application.settings import EngineSettings
from domain.coverage.colors import LOSS_COLORS, SIGNAL_COLORS
from domain.coverage.errors import ConfigurationError, RequestValidationError
from domain.coverage.rendering import SEA_COLOR
from domain.coverage.sweep import CancelToken
from domain.coverage.value_objects import (
    ColorTable,
    CoverageKind,
    CoverageRequest,
    SignalMode,
)
from domain.terrain.value_objects import Site
from infrastructure.coverage.parameter_files import write_color_file
from infrastructure.terrain.geotiff_adapter import GeoTiffTileRepository
from infrastructure.terrain.sdf_adapter import SdfTileRepository
from shared.constants import LEGEND_HEIGHT

SETTINGS = EngineSettings(resolution=20, max_pages=16)


@pytest.fixture
def engine(plains_store, memory_repository):
    return CoverageEngine(SETTINGS, repository=memory_repository)


@pytest.fixture
def receiver() -> Site:
    return Site(name="rx", latitude=40.7, longitude=100.5, altitude_ft=30.0)


def _request(tower: Site, **kwargs) -> CoverageRequest:
    kwargs.setdefault("receiver_height", 30.0)
    kwargs.setdefault("max_range", 5.0)
    return CoverageRequest(transmitters=(tower,), **kwargs)


# ===========================================================================
# Construction
# ===========================================================================
def test_build_repository_by_format(tmp_path):
    assert build_repository(EngineSettings()) is None
    sdf = build_repository(EngineSettings(tile_dirs=(tmp_path,)))
    tif = build_repository(EngineSettings(tile_dirs=(tmp_path,), tile_format="geotiff"))

    assert isinstance(sdf, SdfTileRepository)
    assert isinstance(tif, GeoTiffTileRepository)


def test_strict_missing_parameter_file_raises(tmp_path, tower):
    settings = SETTINGS.model_copy(
        update={"lrp_file": tmp_path / "absent.lrp", "strict_parameters": True}
    )
    engine = CoverageEngine(settings)

    with pytest.raises(ConfigurationError):
        engine.run_coverage(_request(tower))


# ===========================================================================
# Coverage runs
# ===========================================================================
def test_path_loss_run(engine, tower):
    result = engine.run_coverage(_request(tower))

    assert engine.mode is SignalMode.PATH_LOSS
    assert result.raster.mode is SignalMode.PATH_LOSS
    assert result.raster.legend_rows == LEGEND_HEIGHT
    assert result.color_table == LOSS_COLORS
    assert result.color_key is not None
    assert result.diagnostics.rays_traced > 0
    assert result.diagnostics.elapsed_s >= 0.0
    assert result.bounds.west == -101.0


def test_field_strength_run_when_erp_given(engine, tower):
    result = engine.run_coverage(_request(tower, erp_watts=100.0))

    assert engine.mode is SignalMode.FIELD_STRENGTH
    assert result.color_table == SIGNAL_COLORS


def test_los_run_marks_visible_cells(engine, tower):
    result = engine.run_coverage(_request(tower, kind=CoverageKind.LOS))

    pixels = result.raster.pixels
    assert result.color_table is None
    assert result.color_key is None
    assert result.raster.legend_rows == 0
    assert np.any(np.all(pixels[..., :3] == (0, 255, 0), axis=-1))


def test_run_without_tiles_assumes_sea_level(memory_repository, tower):
    engine = CoverageEngine(SETTINGS, repository=memory_repository)

    result = engine.run_coverage(_request(tower))

    assert result.diagnostics.rays_traced > 0
    assert engine.store.elevation_at(40.5, 100.5) == 0.0
    pixels = result.raster.pixels
    assert np.any(np.all(pixels[..., :3] == SEA_COLOR, axis=-1))


def test_mode_change_requires_reset(engine, tower):
    engine.run_coverage(_request(tower))

    with pytest.raises(RequestValidationError) as exc:
        engine.run_coverage(_request(tower, kind=CoverageKind.LOS))
    assert exc.value.field == "kind"

    engine.reset()
    assert engine.mode is None
    engine.run_coverage(_request(tower, kind=CoverageKind.LOS))
    assert engine.mode is SignalMode.LOS


def test_invalid_request_rejected(engine):
    with pytest.raises(RequestValidationError):
        engine.run_coverage(CoverageRequest(transmitters=()))


def test_cancelled_run_returns_partial_result(engine, tower):
    cancel = CancelToken()
    cancel.cancel()

    result = engine.run_coverage(_request(tower), cancel=cancel)

    assert result.diagnostics.cancelled
    assert result.diagnostics.rays_traced == 0
    assert result.raster.pixels.size > 0


def test_timeout_stops_sweep(plains_store, memory_repository, tower):
    clock = itertools.count(0.0, 10.0)
    settings = SETTINGS.model_copy(update={"sweep_timeout_s": 0.5})
    engine = CoverageEngine(
        settings, repository=memory_repository, clock=lambda: next(clock)
    )

    result = engine.run_coverage(_request(tower))

    assert result.diagnostics.timed_out


def test_request_color_table_wins(engine, tower):
    table = ColorTable.from_rows([(100, 1, 2, 3)])

    result = engine.run_coverage(_request(tower, color_table=table))

    assert result.color_table == table


def test_color_dir_override(tmp_path, plains_store, memory_repository, tower):
    table = ColorTable.from_rows([(90, 10, 20, 30), (150, 40, 50, 60)])
    write_color_file(tmp_path / "tower.lcf", table, SignalMode.PATH_LOSS)
    settings = SETTINGS.model_copy(update={"color_dir": tmp_path})
    engine = CoverageEngine(settings, repository=memory_repository)

    result = engine.run_coverage(_request(tower))

    assert result.color_table == table


# ===========================================================================
# Outputs
# ===========================================================================
def test_save_outputs_writes_every_artifact(tmp_path, engine, tower):
    result = engine.run_coverage(_request(tower))

    written = engine.save_outputs(result, tmp_path, "tower")

    assert set(written) == {"png", "geotiff", "bounds", "color_key"}
    assert written["color_key"].name == "tower-ck.png"
    assert all(path.is_file() for path in written.values())
    assert result.diagnostics.failed_outputs == []


def test_save_outputs_reports_failures(tmp_path, engine, tower):
    result = engine.run_coverage(_request(tower, kind=CoverageKind.LOS))

    written = engine.save_outputs(result, tmp_path / "absent", "tower")

    assert written == {}
    assert sorted(result.diagnostics.failed_outputs) == [
        "tower.json",
        "tower.png",
        "tower.tif",
    ]
    assert any("tower.png" in w for w in result.diagnostics.warnings)


# ===========================================================================
# Point to point
# ===========================================================================
def test_trace_path_over_flat_ground(engine, tower, receiver):
    trace = engine.trace_path(tower, receiver)

    assert trace.visible
    assert "Line-Of-Sight" in trace.mode
    assert trace.distance_miles == pytest.approx(13.8, abs=0.1)
    assert trace.azimuth_deg == pytest.approx(0.0, abs=1e-6)
    assert trace.path_loss_db > 0.0
    assert trace.field_strength_dbuv_m is None
    assert trace.received_power_dbm is None
    assert trace.obstruction_report.is_clear


def test_trace_path_reports_signal_with_erp(plains_store, memory_repository, tower):
    settings = SETTINGS.model_copy(update={"forced_erp_watts": 100.0})
    engine = CoverageEngine(settings, repository=memory_repository)
    rx = Site(name="rx", latitude=40.7, longitude=100.5, altitude_ft=30.0)

    trace = engine.trace_path(tower, rx)

    assert trace.field_strength_dbuv_m is not None
    assert trace.received_power_dbm is not None
    assert trace.received_power_dbm < 0.0


def test_terrain_feature_blocks_path(engine, tower, receiver):
    assert engine.add_terrain_feature(40.6, 100.5, 2000.0)

    trace = engine.trace_path(tower, receiver)

    assert not trace.visible
    assert not trace.obstruction_report.is_clear
