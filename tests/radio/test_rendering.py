"""Tests for the contour renderer, legend and bitmap font.

The plains store holds one tile (40..41N, 100..101W) at 20 samples per
degree, so the map is 20 x 20 pixels. Pixel (row 9, col 10) is the sample
at 40.5N 100.5W.
"""

from __future__ import annotations

import numpy as np
import pytest

from domain.coverage.colors import DBM_COLORS, LOSS_COLORS, SIGNAL_COLORS
from domain.coverage.errors import CoverageError
from domain.coverage.font import GLYPH_HEIGHT, GLYPH_WIDTH, MICRO, glyph, has_glyph
from domain.coverage.rendering import (
    LOS_BOUNDARY_COLOR,
    SEA_COLOR,
    TEXT_COLOR,
    RenderOptions,
    color_key,
    compute_bounds,
    grid_coordinates,
    interpolate,
    legend_band,
    render,
)
from domain.coverage.value_objects import ColorTable, SignalMode
from domain.terrain.tiles import AccumulationRule
from domain.terrain.value_objects import TileKey
from shared.constants import LEGEND_HEIGHT, MASK_BOUNDARY, MASK_TEXT

ROW, COL = 9, 10
LAT, LON = 40.5, 100.5


@pytest.fixture
def region(plains_store, plains_key):
    plains_store.load_tile(plains_key)
    return plains_store


def _store_signal(store, value: int, rule=AccumulationRule.LOWER) -> None:
    store.accumulate(LAT, LON, value, rule)


# ===========================================================================
# Helpers
# ===========================================================================
def test_interpolate_scalar_and_clamps():
    assert interpolate(0, 100, 0, 10, 5) == 50
    assert interpolate(0, 100, 0, 10, -3) == 0
    assert interpolate(0, 100, 0, 10, 12) == 100
    assert isinstance(interpolate(0, 100, 0, 10, 5), int)


def test_interpolate_vectorized():
    out = interpolate([0, 200], [100, 0], [0, 0], [10, 10], [5, 5])

    assert out.tolist() == [50, 100]


def test_grid_coordinates_one_tile(region):
    lats, lons = grid_coordinates(region)

    assert lats.shape == (20,) and lons.shape == (20,)
    assert lats[0] == pytest.approx(40.95)
    assert lats[ROW] == pytest.approx(LAT)
    assert lons[0] == pytest.approx(101.0)
    assert lons[COL] == pytest.approx(LON)


def test_compute_bounds_east_positive(region):
    bounds = compute_bounds(region)

    assert bounds.north == pytest.approx(40.95)
    assert bounds.south == 40.0
    assert bounds.west == -101.0
    assert bounds.east == pytest.approx(-100.05)


def test_compute_bounds_extends_south_for_legend(region):
    bounds = compute_bounds(region, legend=True)

    assert bounds.south == pytest.approx(40.0 - LEGEND_HEIGHT / 20)


# ===========================================================================
# Line-of-sight rendering
# ===========================================================================
def test_render_requires_region(store):
    with pytest.raises(CoverageError):
        render(store, SignalMode.LOS)


def test_render_los_colors_and_terrain(region):
    region.or_mask(LAT, LON, 1)
    region.or_mask(40.6, LON, 1 | 8)

    raster = render(region, SignalMode.LOS)

    assert raster.pixels.shape == (20, 20, 4)
    assert raster.legend_rows == 0
    assert tuple(raster.pixels[ROW, COL]) == (0, 255, 0, 255)
    assert tuple(raster.pixels[ROW - 2, COL, :3]) == (255, 255, 0)
    # Flat terrain has no relief span and renders white
    assert tuple(raster.pixels[0, 0]) == (255, 255, 255, 255)


def test_render_los_text_and_boundary(region):
    region.or_mask(LAT, LON, MASK_TEXT | 1)
    region.or_mask(40.6, LON, MASK_BOUNDARY)

    pixels = render(region, SignalMode.LOS).pixels

    assert tuple(pixels[ROW, COL, :3]) == TEXT_COLOR
    assert tuple(pixels[ROW - 2, COL, :3]) == LOS_BOUNDARY_COLOR


def test_render_sea_level_tile_is_blue(store):
    store.load_tile(TileKey(min_north=0, min_west=0))

    pixels = render(store, SignalMode.LOS).pixels

    assert tuple(pixels[5, 5, :3]) == SEA_COLOR


def test_render_relief_is_grey_scale(make_store, plains_key):
    grid = np.full((20, 20), 100, dtype=np.int16)
    grid[0, :] = 1100
    store = make_store({plains_key: grid})
    store.load_tile(plains_key)

    pixels = render(store, SignalMode.LOS).pixels

    # Row 19 holds the southernmost samples (x = 0)
    assert tuple(pixels[19, 5, :3]) == (255, 255, 255)
    assert tuple(pixels[0, 5, :3]) == (0, 0, 0)


def test_render_without_shading_is_white(make_store, plains_key):
    grid = np.full((20, 20), 100, dtype=np.int16)
    grid[0, :] = 1100
    store = make_store({plains_key: grid})
    store.load_tile(plains_key)

    pixels = render(store, SignalMode.LOS, options=RenderOptions(terrain_shading=False))

    assert np.all(pixels[..., :3] == 255)


# ===========================================================================
# Signal rendering
# ===========================================================================
def test_render_path_loss_contour_and_legend(region):
    _store_signal(region, 85)

    raster = render(region, SignalMode.PATH_LOSS)

    assert raster.pixels.shape == (20 + LEGEND_HEIGHT, 20, 4)
    assert raster.legend_rows == LEGEND_HEIGHT
    assert raster.map_pixels.shape == (20, 20, 4)
    # 80 <= 85 < 90 selects the second level
    assert tuple(raster.pixels[ROW, COL, :3]) == LOSS_COLORS.levels[1].rgb
    # Unset cells show terrain
    assert tuple(raster.pixels[0, 0, :3]) == (255, 255, 255)


def test_render_path_loss_threshold_hides_weak_cells(region):
    _store_signal(region, 85)

    options = RenderOptions(contour_threshold=80, show_legend=False)
    raster = render(region, SignalMode.PATH_LOSS, options=options)

    assert raster.legend_rows == 0
    assert tuple(raster.pixels[ROW, COL, :3]) == (255, 255, 255)


def test_render_field_strength_uses_offset(region):
    _store_signal(region, 160, AccumulationRule.HIGHER)

    pixels = render(region, SignalMode.FIELD_STRENGTH).pixels

    # 160 - 100 = 60 dBuV/m, between 68 and 58
    assert tuple(pixels[ROW, COL, :3]) == SIGNAL_COLORS.levels[7].rgb


def test_render_field_strength_threshold(region):
    _store_signal(region, 160, AccumulationRule.HIGHER)

    options = RenderOptions(contour_threshold=70)
    pixels = render(region, SignalMode.FIELD_STRENGTH, options=options).pixels

    assert tuple(pixels[ROW, COL, :3]) == (255, 255, 255)


def test_render_dbm_contour(region):
    _store_signal(region, 145, AccumulationRule.HIGHER)

    pixels = render(region, SignalMode.POWER_DBM).pixels

    # 145 - 200 = -55 dBm, between -50 and -60
    assert tuple(pixels[ROW, COL, :3]) == DBM_COLORS.levels[6].rgb


def test_render_smooth_contours_blend_levels(region):
    table = ColorTable.from_rows([(0, 0, 0, 0), (100, 200, 100, 0)])
    _store_signal(region, 50)

    options = RenderOptions(smooth_contours=True)
    pixels = render(region, SignalMode.PATH_LOSS, table, options).pixels

    assert tuple(pixels[ROW, COL, :3]) == (100, 50, 0)


def test_render_text_over_red_contour_is_inverted(region):
    _store_signal(region, 75)
    region.or_mask(LAT, LON, MASK_TEXT)

    pixels = render(region, SignalMode.PATH_LOSS).pixels

    # Level 80 is pure red; its inverse is cyan
    assert tuple(pixels[ROW, COL, :3]) == (0, 255, 255)


def test_render_boundary_is_black_in_signal_modes(region):
    _store_signal(region, 85)
    region.or_mask(LAT, LON, MASK_BOUNDARY)

    pixels = render(region, SignalMode.PATH_LOSS).pixels

    assert tuple(pixels[ROW, COL, :3]) == (0, 0, 0)


def test_render_transparent_background(region):
    _store_signal(region, 85)

    options = RenderOptions(transparent_background=True, show_legend=False)
    pixels = render(region, SignalMode.PATH_LOSS, options=options).pixels

    assert pixels[0, 0, 3] == 0
    assert pixels[ROW, COL, 3] == 255


# ===========================================================================
# Legend and color key
# ===========================================================================
def test_legend_band_blocks_and_labels():
    band = legend_band(LOSS_COLORS, SignalMode.PATH_LOSS, 800)

    assert band.shape == (LEGEND_HEIGHT, 800, 3)
    # Rows above the glyphs carry the level color
    assert tuple(band[0, 0]) == LOSS_COLORS.levels[0].rgb
    assert tuple(band[0, 50]) == LOSS_COLORS.levels[1].rgb
    # Label glyphs are drawn in black
    assert np.any(np.all(band[:, :50] == 0, axis=-1))


def test_legend_band_pads_with_black():
    table = ColorTable.from_rows([(10, 255, 0, 0), (20, 0, 255, 0), (30, 0, 0, 255)])

    band = legend_band(table, SignalMode.PATH_LOSS, 100)

    # rint(100 / 3) = 33 pixel blocks leave one black column
    assert tuple(band[0, 98]) == (0, 0, 255)
    assert tuple(band[0, 99]) == (0, 0, 0)


def test_color_key_one_block_per_level():
    key = color_key(SIGNAL_COLORS, SignalMode.FIELD_STRENGTH)

    assert key.shape == (LEGEND_HEIGHT * len(SIGNAL_COLORS), 100, 3)
    assert tuple(key[0, 0]) == SIGNAL_COLORS.levels[0].rgb
    assert tuple(key[LEGEND_HEIGHT, 0]) == SIGNAL_COLORS.levels[1].rgb


def test_dbm_legend_draws_minus_sign():
    table = ColorTable.from_rows([(-90, 255, 255, 255)])

    key = color_key(table, SignalMode.POWER_DBM)

    # The minus glyph's bar sits on glyph row 7, starting at column 3
    assert np.all(key[8 + 7, 3:10] == 0)


def test_font_glyphs():
    assert glyph("0").shape == (GLYPH_HEIGHT, GLYPH_WIDTH)
    assert has_glyph(MICRO)
    assert not has_glyph("x")
    minus = glyph("-")
    assert minus[7].tolist() == [True] * 7 + [False]
    assert not minus[0].any()
    with pytest.raises(KeyError):
        glyph("x")
