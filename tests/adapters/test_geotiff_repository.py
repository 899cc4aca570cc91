"""Tests for the GeoTIFF tile repository (real rasterio round trips)."""

from __future__ import annotations

import numpy as np
import pytest

from domain.terrain.errors import (
    InsufficientMemoryError,
    InvalidBoundsError,
    InvalidRasterError,
)
from domain.terrain.value_objects import TileKey
from infrastructure.terrain.geotiff_adapter import (
    GeoTiffTileRepository,
    tile_transform,
    write_tile,
)

KEY = TileKey(min_north=40, min_west=100)


@pytest.fixture
def repo(tmp_path) -> GeoTiffTileRepository:
    return GeoTiffTileRepository([tmp_path])


def test_tile_transform_centers_pixels_on_samples():
    transform = tile_transform(KEY, 4)

    # Pixel (0, 0) centre: northernmost row, westernmost column
    x, y = transform * (0.5, 0.5)
    assert x == pytest.approx(-101.0)
    assert y == pytest.approx(40.75)
    assert transform.a == pytest.approx(0.25)


def test_aligned_tile_reads_back_unchanged(tmp_path, repo):
    grid = (np.arange(16, dtype=np.int16) * 7).reshape(4, 4)
    write_tile(tmp_path, KEY, grid)

    loaded = repo.load_tile(KEY, 4)

    assert loaded.dtype == np.int16
    np.testing.assert_array_equal(loaded, grid)


def test_missing_tile_returns_none(repo):
    assert repo.load_tile(KEY, 4) is None


def test_nodata_becomes_sea_level(tmp_path, repo):
    grid = np.full((4, 4), 120, dtype=np.int16)
    grid[1, 2] = -32768
    write_tile(tmp_path, KEY, grid, nodata=-32768)

    loaded = repo.load_tile(KEY, 4)

    assert loaded[1, 2] == 0
    assert loaded[0, 0] == 120


def test_finer_raster_is_resampled(tmp_path, repo):
    source = tmp_path / "source"
    source.mkdir()
    path = write_tile(source, KEY, np.full((8, 8), 250, dtype=np.int16))

    loaded = repo.read_tile(path, KEY, 4)

    assert loaded.shape == (4, 4)
    assert np.all(loaded[1:3, 1:3] == 250)


def test_raster_elsewhere_does_not_cover_tile(tmp_path, repo):
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    path = write_tile(elsewhere, TileKey(min_north=10, min_west=10), np.ones((4, 4)))

    with pytest.raises(InvalidBoundsError):
        repo.read_tile(path, KEY, 4)


def test_missing_file_raises(tmp_path, repo):
    with pytest.raises(FileNotFoundError):
        repo.read_tile(tmp_path / "absent.tif", KEY, 4)


def test_empty_file_is_invalid(tmp_path, repo):
    path = tmp_path / "40_41_100_101.tif"
    path.write_bytes(b"")

    with pytest.raises(InvalidRasterError, match="Empty"):
        repo.load_tile(KEY, 4)


def test_garbage_file_is_invalid(tmp_path, repo):
    (tmp_path / "40_41_100_101.tif").write_bytes(b"definitely not a tiff")

    with pytest.raises(InvalidRasterError):
        repo.load_tile(KEY, 4)


def test_memory_budget(tmp_path):
    write_tile(tmp_path, KEY, np.zeros((4, 4), dtype=np.int16))
    repo = GeoTiffTileRepository([tmp_path], max_bytes=16)

    with pytest.raises(InsufficientMemoryError):
        repo.load_tile(KEY, 4)
