"""Tests for the paged tile store (lookup, paging budget, signal layers)."""

from __future__ import annotations

import numpy as np
import pytest

from domain.terrain.errors import InvalidTileError, TileBudgetExceededError
from domain.terrain.tiles import AccumulationRule, ElevationTile, TileStore
from domain.terrain.value_objects import TileKey
from shared.constants import FEET_PER_METER, HD_RESOLUTION


# ===========================================================================
# TileKey naming
# ===========================================================================
def test_tile_key_name_standard_and_hd():
    key = TileKey(min_north=40, min_west=73)

    assert key.name() == "40_41_73_74"
    assert key.name(1200) == "40_41_73_74"
    assert key.name(HD_RESOLUTION) == "40_41_73_74-hd"


def test_tile_key_wraps_at_360():
    key = TileKey(min_north=-1, min_west=359)

    assert key.max_west == 0
    assert key.name() == "-1_0_359_0"


# ===========================================================================
# Nearest-sample indexing
# ===========================================================================
def test_tile_index_corners():
    tile = ElevationTile.sea_level(TileKey(min_north=40, min_west=100), 20)

    # South-west corner sits on the east edge of the west-positive tile
    assert tile.index(40.0, 100.05) == (0, 0)
    assert tile.index(40.95, 101.0) == (19, 19)
    assert tile.index(40.5, 100.5) == (10, 9)


def test_tile_index_outside_returns_none():
    tile = ElevationTile.sea_level(TileKey(min_north=40, min_west=100), 20)

    assert tile.index(41.5, 100.5) is None
    assert tile.index(40.5, 102.0) is None


def test_tile_rejects_non_square_grid():
    with pytest.raises(InvalidTileError):
        ElevationTile(TileKey(min_north=0, min_west=0), np.zeros((4, 5), np.int16))


# ===========================================================================
# Paging
# ===========================================================================
def test_key_for_floors_coordinates(store):
    assert store.key_for(40.5, 100.5) == TileKey(min_north=40, min_west=100)
    assert store.key_for(-0.5, 359.9) == TileKey(min_north=-1, min_west=359)


def test_elevation_at_pages_tile_in_feet(plains_store):
    assert plains_store.elevation_at(40.5, 100.5) is None

    feet = plains_store.elevation_at(40.5, 100.5, page=True)

    assert feet == pytest.approx(300 * FEET_PER_METER)
    assert plains_store.page_count == 1


def test_missing_tile_becomes_sea_level(store):
    tile = store.load_tile(TileKey(min_north=10, min_west=10))

    assert tile is not None
    assert tile.synthetic
    assert store.elevation_at(10.5, 10.5) == 0.0


def test_load_tile_is_cached(plains_store, memory_repository, plains_key):
    first = plains_store.load_tile(plains_key)
    second = plains_store.load_tile(plains_key)

    assert first is second
    assert memory_repository.requests == [plains_key]


def test_page_budget_skips_further_loads(make_store):
    store = make_store(max_pages=1)
    store.load_tile(TileKey(min_north=0, min_west=0))

    assert store.load_tile(TileKey(min_north=1, min_west=0)) is None
    assert store.page_count == 1


def test_page_budget_strict_raises(make_store):
    store = make_store(max_pages=1)
    store.load_tile(TileKey(min_north=0, min_west=0))

    with pytest.raises(TileBudgetExceededError) as exc:
        store.load_tile(TileKey(min_north=1, min_west=0), strict=True)
    assert exc.value.max_pages == 1


def test_repository_grid_of_wrong_size_rejected(make_store):
    key = TileKey(min_north=0, min_west=0)
    store = make_store({key: np.zeros((10, 10), np.int16)})

    with pytest.raises(InvalidTileError):
        store.load_tile(key)


def test_ensure_region_loads_every_tile_and_sets_bounds(store):
    store.ensure_region(40, 41, 100, 101)

    assert store.page_count == 4
    assert store.has_region
    assert (store.min_north, store.max_north) == (40, 42)
    assert (store.min_west, store.max_west) == (100, 102)


def test_ensure_region_across_prime_meridian(store):
    store.ensure_region(10, 10, 359, 0)

    keys = {tile.key for tile in store.tiles}
    assert keys == {
        TileKey(min_north=10, min_west=359),
        TileKey(min_north=10, min_west=0),
    }
    assert store.min_west == 359
    assert store.max_west == 1


def test_elevation_range_ignores_synthetic_maximum(make_store):
    key = TileKey(min_north=40, min_west=100)
    grid = np.full((20, 20), 100, dtype=np.int16)
    grid[5, 5] = 900
    store = make_store({key: grid})
    store.ensure_region(40, 40, 100, 101)

    # The sea-level neighbour lowers the minimum but never raises the maximum
    assert store.elevation_range == (0, 900)


def test_elevations_vectorized_nan_outside(plains_store, plains_key):
    plains_store.load_tile(plains_key)

    feet = plains_store.elevations(np.array([40.5, 45.0]), np.array([100.5, 100.5]))

    assert feet[0] == pytest.approx(300 * FEET_PER_METER)
    assert np.isnan(feet[1])


def test_sample_grid_marks_found_cells(plains_store, plains_key):
    plains_store.load_tile(plains_key)

    sample = plains_store.sample_grid(np.array([40.5, 41.5]), np.array([100.5]))

    assert sample.found.tolist() == [[True], [False]]
    assert sample.elevation[0, 0] == 300


# ===========================================================================
# Signal and mask layers
# ===========================================================================
def test_accumulate_lower_keeps_smallest_loss(plains_store, plains_key):
    plains_store.load_tile(plains_key)
    lower = AccumulationRule.LOWER

    assert plains_store.accumulate(40.5, 100.5, 120, lower)
    assert not plains_store.accumulate(40.5, 100.5, 130, lower)
    assert plains_store.accumulate(40.5, 100.5, 110, lower)
    assert plains_store.get_signal(40.5, 100.5) == 110


def test_accumulate_higher_keeps_strongest_signal(plains_store, plains_key):
    plains_store.load_tile(plains_key)
    higher = AccumulationRule.HIGHER

    plains_store.accumulate(40.5, 100.5, 140, higher)
    plains_store.accumulate(40.5, 100.5, 120, higher)

    assert plains_store.get_signal(40.5, 100.5) == 140


@pytest.mark.parametrize(
    "rule, values, expected",
    [
        (AccumulationRule.LOWER, (120, 110), 110),
        (AccumulationRule.LOWER, (0, 120), 120),
        (AccumulationRule.HIGHER, (140, 120), 140),
        (AccumulationRule.HIGHER, (0, 120), 120),
    ],
)
@pytest.mark.parametrize("reverse", [False, True])
def test_accumulation_ignores_write_order(
    plains_store, plains_key, rule, values, expected, reverse
):
    plains_store.load_tile(plains_key)
    ordered = values[::-1] if reverse else values

    for value in ordered:
        plains_store.accumulate(40.5, 100.5, value, rule)

    assert plains_store.get_signal(40.5, 100.5) == expected


def test_zero_loss_leaves_cell_unset(plains_store, plains_key):
    plains_store.load_tile(plains_key)

    assert not plains_store.accumulate(40.5, 100.5, 0, AccumulationRule.LOWER)
    assert plains_store.get_signal(40.5, 100.5) == 0


def test_accumulation_rule_is_locked_until_reset(plains_store, plains_key):
    plains_store.load_tile(plains_key)
    plains_store.accumulate(40.5, 100.5, 120, AccumulationRule.LOWER)

    with pytest.raises(ValueError):
        plains_store.accumulate(40.5, 100.5, 120, AccumulationRule.HIGHER)

    plains_store.reset()
    assert plains_store.accumulation_rule is None
    assert not plains_store.has_region


def test_accumulate_outside_region_is_ignored(plains_store):
    assert not plains_store.accumulate(0.5, 0.5, 100, AccumulationRule.LOWER)


def test_mask_put_or_get(plains_store, plains_key):
    plains_store.load_tile(plains_key)

    assert plains_store.put_mask(40.5, 100.5, 8) == 8
    assert plains_store.or_mask(40.5, 100.5, 1) == 9
    assert plains_store.get_mask(40.5, 100.5) == 9
    assert plains_store.get_mask(0.5, 0.5) is None


def test_or_masks_counts_written_points(plains_store, plains_key):
    plains_store.load_tile(plains_key)
    lats = np.array([40.5, 40.6, 45.0])
    lons = np.array([100.5, 100.5, 100.5])

    assert plains_store.or_masks(lats, lons, 16) == 2
    masks, found = plains_store.masks(lats, lons)
    assert found.tolist() == [True, True, False]
    assert masks[:2].tolist() == [16, 16]


def test_clear_layers_keeps_terrain(plains_store, plains_key):
    plains_store.load_tile(plains_key)
    plains_store.accumulate(40.5, 100.5, 99, AccumulationRule.HIGHER)
    plains_store.put_mask(40.5, 100.5, 4)

    plains_store.clear_layers()

    assert plains_store.get_signal(40.5, 100.5) == 0
    assert plains_store.get_mask(40.5, 100.5) == 0
    assert plains_store.page_count == 1
    assert plains_store.accumulation_rule is None


def test_add_elevation_raises_one_sample(plains_store, plains_key):
    plains_store.load_tile(plains_key)

    assert plains_store.add_elevation(40.5, 100.5, 50.0)

    assert plains_store.elevation_at(40.5, 100.5) == pytest.approx(
        350 * FEET_PER_METER
    )
    assert plains_store.elevation_range == (300, 350)
    assert not plains_store.add_elevation(0.5, 0.5, 10.0)


def test_store_rejects_bad_construction():
    with pytest.raises(ValueError):
        TileStore(resolution=1)
    with pytest.raises(ValueError):
        TileStore(max_pages=0)
