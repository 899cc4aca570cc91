"""Tests for the SDF text-tile repository."""

from __future__ import annotations

import numpy as np
import pytest

from domain.terrain.errors import InvalidTileError
from domain.terrain.value_objects import TileKey
from infrastructure.terrain.sdf_adapter import SdfTileRepository, parse_sdf, write_sdf

KEY = TileKey(min_north=40, min_west=100)


@pytest.fixture
def gradient() -> np.ndarray:
    return np.arange(16, dtype=np.int16).reshape(4, 4) * 10 - 20


@pytest.mark.parametrize("compress", [False, True])
def test_write_then_load(tmp_path, gradient, compress):
    path = write_sdf(tmp_path, KEY, gradient, compress=compress)

    grid = SdfTileRepository([tmp_path]).load_tile(KEY, 4)

    assert path.name.startswith("40_41_100_101")
    assert grid.dtype == np.int16
    np.testing.assert_array_equal(grid, gradient)


def test_first_directory_wins(tmp_path, gradient):
    first, second = tmp_path / "a", tmp_path / "b"
    first.mkdir()
    second.mkdir()
    write_sdf(first, KEY, gradient)
    write_sdf(second, KEY, np.zeros((4, 4), dtype=np.int16))

    grid = SdfTileRepository([first, second]).load_tile(KEY, 4)

    np.testing.assert_array_equal(grid, gradient)


def test_missing_tile_returns_none(tmp_path):
    assert SdfTileRepository([tmp_path]).load_tile(KEY, 4) is None


def test_high_definition_file_name(tmp_path):
    repo = SdfTileRepository([tmp_path])
    (tmp_path / "40_41_100_101-hd.sdf").write_text("placeholder")

    assert repo.locate(KEY, 3600).name == "40_41_100_101-hd.sdf"
    assert repo.locate(KEY, 1200) is None


def test_header_mismatch_rejected():
    text = "\n".join(["1", "40", "0", "41"] + ["0"] * 4)

    with pytest.raises(InvalidTileError, match="header"):
        parse_sdf(text, KEY, 2)


def test_wrong_sample_count_rejected():
    text = "\n".join(["101", "40", "100", "41"] + ["0"] * 3)

    with pytest.raises(InvalidTileError, match="expected 4 samples"):
        parse_sdf(text, KEY, 2)


def test_non_integer_sample_rejected():
    text = "\n".join(["101", "40", "100", "41", "0", "x", "0", "0"])

    with pytest.raises(InvalidTileError):
        parse_sdf(text, KEY, 2)


def test_corrupt_archive_is_invalid_tile(tmp_path):
    (tmp_path / "40_41_100_101.sdf.bz2").write_bytes(b"not bzip2")

    with pytest.raises(InvalidTileError):
        SdfTileRepository([tmp_path]).load_tile(KEY, 2)


def test_write_rejects_non_square(tmp_path):
    with pytest.raises(ValueError):
        write_sdf(tmp_path, KEY, np.zeros((2, 3)))
