"""Root pytest configuration for all tests.

Tests run against small synthetic tiles (20 samples per degree unless a
test needs finer terrain) held in an in-memory repository, so most suites
need no files on disk.
"""

from __future__ import annotations

import numpy as np
import pytest

from domain.terrain.tiles import TileStore
from domain.terrain.value_objects import Site, TileKey

TEST_RESOLUTION = 20


class MemoryTileRepository:
    """TileRepository over a dict of ``TileKey -> [x, y]`` grids."""

    def __init__(self, tiles: dict[TileKey, np.ndarray] | None = None) -> None:
        self.tiles = dict(tiles or {})
        self.requests: list[TileKey] = []

    def load_tile(self, key: TileKey, resolution: int) -> np.ndarray | None:
        self.requests.append(key)
        grid = self.tiles.get(key)
        if grid is None:
            return None
        return np.asarray(grid, dtype=np.int16)


def flat_grid(meters: int, resolution: int = TEST_RESOLUTION) -> np.ndarray:
    return np.full((resolution, resolution), meters, dtype=np.int16)


@pytest.fixture
def memory_repository() -> MemoryTileRepository:
    """Empty in-memory repository; tests add tiles to ``.tiles``."""
    return MemoryTileRepository()


@pytest.fixture
def store(memory_repository: MemoryTileRepository) -> TileStore:
    return TileStore(memory_repository, resolution=TEST_RESOLUTION, max_pages=16)


@pytest.fixture
def make_store():
    """Factory: ``make_store({key: grid}, resolution=20, max_pages=16)``."""

    def _make(
        tiles: dict[TileKey, np.ndarray] | None = None,
        resolution: int = TEST_RESOLUTION,
        max_pages: int = 16,
    ) -> TileStore:
        return TileStore(
            MemoryTileRepository(tiles), resolution=resolution, max_pages=max_pages
        )

    return _make


@pytest.fixture
def plains_key() -> TileKey:
    """Tile 40..41N 100..101W."""
    return TileKey(min_north=40, min_west=100)


@pytest.fixture
def plains_store(
    memory_repository: MemoryTileRepository, plains_key: TileKey
) -> TileStore:
    """Store whose 40N 100W tile is flat ground at 300 m."""
    memory_repository.tiles[plains_key] = flat_grid(300)
    return TileStore(memory_repository, resolution=TEST_RESOLUTION, max_pages=16)


@pytest.fixture
def tower() -> Site:
    """Transmitter in the middle of the plains tile, 100 ft AGL."""
    return Site(name="tower", latitude=40.5, longitude=100.5, altitude_ft=100.0)
