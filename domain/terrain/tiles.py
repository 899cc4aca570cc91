"""Terrain Bounded Context - Elevation Tile Store.

Holds a bounded number of one-degree tiles in memory. Each tile carries an
elevation grid (meters, int16) plus two parallel uint8 grids: the
accumulated signal byte and the mask flags.

Point lookup is nearest-sample: a coordinate maps to
``x = rint(R * (lat - min_north))`` and
``y = (R - 1) - rint(R * lon_diff(max_west, lon))``; only indices in
``[0, R-1]`` are "present". The page budget is fixed: once exhausted,
further loads are skipped and the affected samples read as "no data".
"""

from __future__ import annotations

import logging
import math
import threading
from enum import Enum
from typing import NamedTuple

import numpy as np
from numpy.typing import NDArray

from domain.terrain.errors import InvalidTileError, TileBudgetExceededError
from domain.terrain.geodesy import lon_diff, lon_diff_array, reduce_angle
from domain.terrain.repositories import EmptyTileRepository, TileRepository
from domain.terrain.value_objects import TileKey
from shared.constants import DEFAULT_MAX_PAGES, FEET_PER_METER, STANDARD_RESOLUTION

logger = logging.getLogger(__name__)


class AccumulationRule(str, Enum):
    """Ordering used when a signal byte is written over an existing one."""

    LOWER = "lower"  # Path loss: smaller dB is better
    HIGHER = "higher"  # Field strength / received power: larger is better


class GridSample(NamedTuple):
    """Store contents resampled onto an output grid (rows x cols)."""

    found: NDArray[np.bool_]
    elevation: NDArray[np.int16]  # Meters
    signal: NDArray[np.uint8]
    mask: NDArray[np.uint8]


# ---------------------------------------------------------------------------
# ElevationTile
# ---------------------------------------------------------------------------
class ElevationTile:
    """One-degree terrain page with its signal and mask layers."""

    __slots__ = ("key", "data", "signal", "mask", "synthetic")

    def __init__(
        self, key: TileKey, data: NDArray[np.int16], synthetic: bool = False
    ) -> None:
        if data.ndim != 2 or data.shape[0] != data.shape[1]:
            raise InvalidTileError(key.name(), f"grid must be square, got {data.shape}")
        self.key = key
        self.data = np.array(data, dtype=np.int16, copy=True)
        self.signal = np.zeros(data.shape, dtype=np.uint8)
        self.mask = np.zeros(data.shape, dtype=np.uint8)
        self.synthetic = synthetic

    @classmethod
    def sea_level(cls, key: TileKey, resolution: int) -> "ElevationTile":
        return cls(key, np.zeros((resolution, resolution), dtype=np.int16), True)

    @property
    def resolution(self) -> int:
        return int(self.data.shape[0])

    def index(self, lat: float, lon: float) -> tuple[int, int] | None:
        """Nearest-sample grid index for a point, or None if outside this tile."""
        ppd = self.resolution
        mpi = ppd - 1
        x = int(np.rint(ppd * (lat - self.key.min_north)))
        y = mpi - int(np.rint(ppd * lon_diff(self.key.max_west, lon)))
        if 0 <= x <= mpi and 0 <= y <= mpi:
            return x, y
        return None

    def indices(
        self, lats: NDArray[np.float64], lons: NDArray[np.float64]
    ) -> tuple[NDArray[np.intp], NDArray[np.intp], NDArray[np.bool_]]:
        """Vectorized ``index``: returns (x, y, inside) arrays."""
        mpi = self.resolution - 1
        x = self.rows(lats)
        y = self.cols(lons)
        inside = (x >= 0) & (x <= mpi) & (y >= 0) & (y <= mpi)
        return x, y, inside

    def rows(self, lats: NDArray[np.float64]) -> NDArray[np.intp]:
        """Unchecked x indices for latitudes."""
        return np.rint(
            self.resolution * (np.asarray(lats) - self.key.min_north)
        ).astype(np.intp)

    def cols(self, lons: NDArray[np.float64]) -> NDArray[np.intp]:
        """Unchecked y indices for west longitudes."""
        mpi = self.resolution - 1
        return mpi - np.rint(
            self.resolution * lon_diff_array(self.key.max_west, lons)
        ).astype(np.intp)


# ---------------------------------------------------------------------------
# TileStore
# ---------------------------------------------------------------------------
class TileStore:
    """Paged in-memory terrain database for one engine session.

    Args:
        repository: Source of real tile data; defaults to an all-sea source
        resolution: Samples per degree (1200, 3600, or smaller for tests)
        max_pages: Maximum number of resident tiles
    """

    def __init__(
        self,
        repository: TileRepository | None = None,
        resolution: int = STANDARD_RESOLUTION,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> None:
        if resolution < 2:
            raise ValueError(f"resolution must be >= 2, got {resolution}")
        if max_pages < 1:
            raise ValueError(f"max_pages must be >= 1, got {max_pages}")
        self.repository: TileRepository = repository or EmptyTileRepository()
        self.resolution = resolution
        self.max_pages = max_pages
        self._lock = threading.Lock()
        self._tiles: dict[TileKey, ElevationTile] = {}
        self._rule: AccumulationRule | None = None
        self._budget_warned = False
        self._clear_bounds()

    def _clear_bounds(self) -> None:
        self.min_north = 90
        self.max_north = -90
        self.min_west = 360
        self.max_west = -1
        self._min_el: int | None = None
        self._max_el: int | None = None

    # -- properties ---------------------------------------------------------
    @property
    def dpp(self) -> float:
        """Degrees per sample."""
        return 1.0 / self.resolution

    @property
    def tiles(self) -> tuple[ElevationTile, ...]:
        return tuple(self._tiles.values())

    @property
    def page_count(self) -> int:
        return len(self._tiles)

    @property
    def has_region(self) -> bool:
        return bool(self._tiles)

    @property
    def accumulation_rule(self) -> AccumulationRule | None:
        return self._rule

    @property
    def elevation_range(self) -> tuple[int, int] | None:
        """(min, max) elevation in meters over resident tiles."""
        if self._min_el is None:
            return None
        max_el = self._max_el if self._max_el is not None else self._min_el
        return self._min_el, max(max_el, self._min_el)

    # -- paging -------------------------------------------------------------
    def load_tile(self, key: TileKey, strict: bool = False) -> ElevationTile | None:
        """Return the resident tile for ``key``, paging it in if needed.

        A key the repository has no data for becomes a sea-level tile.
        When the page budget is exhausted the load is skipped and None is
        returned, unless ``strict`` is set.

        Raises:
            TileBudgetExceededError: Budget exhausted and ``strict`` is True
            InvalidTileError: Repository returned a grid of the wrong size
        """
        with self._lock:
            tile = self._tiles.get(key)
            if tile is not None:
                return tile
            if len(self._tiles) >= self.max_pages:
                if strict:
                    raise TileBudgetExceededError(key, self.max_pages)
                if not self._budget_warned:
                    logger.warning(
                        "Page budget of %d tiles exhausted; skipping %s onwards",
                        self.max_pages,
                        key.name(self.resolution),
                    )
                    self._budget_warned = True
                return None

            data = self.repository.load_tile(key, self.resolution)
            if data is None:
                tile = ElevationTile.sea_level(key, self.resolution)
                logger.debug(
                    "Tile %s assumed sea level (page %d)",
                    key.name(self.resolution),
                    len(self._tiles) + 1,
                )
            else:
                if data.shape != (self.resolution, self.resolution):
                    raise InvalidTileError(
                        key.name(self.resolution),
                        f"expected {self.resolution} square, got {data.shape}",
                    )
                tile = ElevationTile(key, data)
                logger.debug(
                    "Tile %s loaded into page %d",
                    key.name(self.resolution),
                    len(self._tiles) + 1,
                )
            self._tiles[key] = tile
            self._register(tile)
            return tile

    def _register(self, tile: ElevationTile) -> None:
        """Fold a new tile into the elevation extremes and region bounds."""
        tile_min = int(tile.data.min())
        self._min_el = tile_min if self._min_el is None else min(self._min_el, tile_min)
        if not tile.synthetic:
            tile_max = int(tile.data.max())
            self._max_el = (
                tile_max if self._max_el is None else max(self._max_el, tile_max)
            )

        key = tile.key
        self.max_north = max(self.max_north, key.max_north)
        self.min_north = min(self.min_north, key.min_north)

        # West edges compare along the short way round the 0/360 seam.
        if self.max_west == -1:
            self.max_west = key.max_west
        elif abs(key.max_west - self.max_west) < 180:
            if key.max_west > self.max_west:
                self.max_west = key.max_west
        elif key.max_west < self.max_west:
            self.max_west = key.max_west

        if self.min_west == 360:
            self.min_west = key.min_west
        elif abs(key.min_west - self.min_west) < 180:
            if key.min_west < self.min_west:
                self.min_west = key.min_west
        elif key.min_west > self.min_west:
            self.min_west = key.min_west

    def ensure_region(
        self, min_north: int, max_north: int, min_west: int, max_west: int
    ) -> None:
        """Page in every tile between the given integer degree limits.

        Latitudes are the floors of the southern- and northern-most tiles;
        west longitudes may straddle the 0/360 seam.
        """
        width = reduce_angle(max_west - min_west)
        start = min_west if (max_west - min_west) <= 180 else max_west
        for step in range(width + 1):
            west = int(start + step) % 360
            for lat in range(min_north, max_north + 1):
                if -90 <= lat <= 89:
                    self.load_tile(TileKey(min_north=lat, min_west=west))

    def key_for(self, lat: float, lon: float) -> TileKey:
        """Key of the tile whose floor-degree cell contains the point."""
        return TileKey(
            min_north=min(max(math.floor(lat), -90), 89),
            min_west=int(math.floor(lon)) % 360,
        )

    # -- lookup -------------------------------------------------------------
    def find(self, lat: float, lon: float) -> tuple[ElevationTile, int, int] | None:
        """Locate the resident tile and grid index for a point."""
        for tile in self._tiles.values():
            idx = tile.index(lat, lon)
            if idx is not None:
                return tile, idx[0], idx[1]
        return None

    def elevation_at(self, lat: float, lon: float, page: bool = False) -> float | None:
        """Elevation in feet at the nearest sample, or None for no data.

        Args:
            lat: Degrees north
            lon: Degrees west (0-360)
            page: Load the owning tile when it is not resident
        """
        hit = self.find(lat, lon)
        if hit is None and page:
            self.load_tile(self.key_for(lat, lon))
            hit = self.find(lat, lon)
        if hit is None:
            return None
        tile, x, y = hit
        return FEET_PER_METER * float(tile.data[x, y])

    def elevations(
        self, lats: NDArray[np.float64], lons: NDArray[np.float64]
    ) -> NDArray[np.float64]:
        """Vectorized elevation lookup in feet; NaN where no tile holds the point."""
        lats = np.asarray(lats, dtype=np.float64)
        lons = np.asarray(lons, dtype=np.float64)
        out = np.full(lats.shape, np.nan, dtype=np.float64)
        pending = np.ones(lats.shape, dtype=bool)
        for tile in self._tiles.values():
            x, y, inside = tile.indices(lats, lons)
            hit = inside & pending
            if hit.any():
                out[hit] = FEET_PER_METER * tile.data[x[hit], y[hit]].astype(np.float64)
                pending &= ~hit
                if not pending.any():
                    break
        return out

    def sample_grid(
        self, lats: NDArray[np.float64], lons: NDArray[np.float64]
    ) -> GridSample:
        """Resample the store onto the grid ``lats`` (rows) x ``lons`` (cols).

        Rows and columns are separable, so each tile contributes one
        rectangular block selected by its in-range rows and columns.
        """
        lats = np.asarray(lats, dtype=np.float64)
        lons = np.asarray(lons, dtype=np.float64)
        shape = (len(lats), len(lons))
        found = np.zeros(shape, dtype=bool)
        elevation = np.zeros(shape, dtype=np.int16)
        signal = np.zeros(shape, dtype=np.uint8)
        mask = np.zeros(shape, dtype=np.uint8)
        for tile in self._tiles.values():
            mpi = tile.resolution - 1
            x = tile.rows(lats)
            y = tile.cols(lons)
            rows = np.nonzero((x >= 0) & (x <= mpi))[0]
            cols = np.nonzero((y >= 0) & (y <= mpi))[0]
            if rows.size == 0 or cols.size == 0:
                continue
            block = np.ix_(rows, cols)
            src = np.ix_(x[rows], y[cols])
            found[block] = True
            elevation[block] = tile.data[src]
            signal[block] = tile.signal[src]
            mask[block] = tile.mask[src]
        return GridSample(found, elevation, signal, mask)

    # -- signal and mask ----------------------------------------------------
    def accumulate(
        self, lat: float, lon: float, value: int, rule: AccumulationRule
    ) -> bool:
        """Write ``value`` if it beats the stored byte under ``rule``.

        A stored 0 means "unset" and is always replaced. The rule is locked
        by the first call and stays fixed until ``reset``.

        Returns:
            True if the cell was written

        Raises:
            ValueError: ``rule`` differs from the rule already in force
        """
        if self._rule is None:
            self._rule = rule
        elif rule is not self._rule:
            raise ValueError(
                f"Accumulation rule is locked to {self._rule.value}, got {rule.value}"
            )
        hit = self.find(lat, lon)
        if hit is None:
            return False
        tile, x, y = hit
        value = max(0, min(255, int(value)))
        current = int(tile.signal[x, y])
        if rule is AccumulationRule.LOWER:
            # 0 is "unset" and never displaces a stored loss
            better = value != 0 and (current == 0 or value < current)
        else:
            better = value > current
        if better:
            tile.signal[x, y] = value
        return better

    def get_signal(self, lat: float, lon: float) -> int | None:
        hit = self.find(lat, lon)
        if hit is None:
            return None
        tile, x, y = hit
        return int(tile.signal[x, y])

    def put_mask(self, lat: float, lon: float, value: int) -> int | None:
        """Overwrite the mask byte; returns the new value or None if absent."""
        hit = self.find(lat, lon)
        if hit is None:
            return None
        tile, x, y = hit
        tile.mask[x, y] = value & 0xFF
        return int(tile.mask[x, y])

    def or_mask(self, lat: float, lon: float, value: int) -> int | None:
        """OR bits into the mask byte; returns the new value or None if absent."""
        hit = self.find(lat, lon)
        if hit is None:
            return None
        tile, x, y = hit
        tile.mask[x, y] |= value & 0xFF
        return int(tile.mask[x, y])

    def get_mask(self, lat: float, lon: float) -> int | None:
        hit = self.find(lat, lon)
        if hit is None:
            return None
        tile, x, y = hit
        return int(tile.mask[x, y])

    def masks(
        self, lats: NDArray[np.float64], lons: NDArray[np.float64]
    ) -> tuple[NDArray[np.uint8], NDArray[np.bool_]]:
        """Vectorized ``get_mask``: returns (mask bytes, found flags)."""
        lats = np.asarray(lats, dtype=np.float64)
        lons = np.asarray(lons, dtype=np.float64)
        out = np.zeros(lats.shape, dtype=np.uint8)
        found = np.zeros(lats.shape, dtype=bool)
        for tile in self._tiles.values():
            x, y, inside = tile.indices(lats, lons)
            hit = inside & ~found
            if hit.any():
                out[hit] = tile.mask[x[hit], y[hit]]
                found |= hit
        return out, found

    def or_masks(
        self,
        lats: NDArray[np.float64],
        lons: NDArray[np.float64],
        value: int,
    ) -> int:
        """Vectorized ``or_mask``; returns the number of points written."""
        lats = np.asarray(lats, dtype=np.float64)
        lons = np.asarray(lons, dtype=np.float64)
        done = np.zeros(lats.shape, dtype=bool)
        for tile in self._tiles.values():
            x, y, inside = tile.indices(lats, lons)
            hit = inside & ~done
            if hit.any():
                tile.mask[x[hit], y[hit]] |= np.uint8(value & 0xFF)
                done |= hit
        return int(done.sum())

    def add_elevation(self, lat: float, lon: float, meters: float) -> bool:
        """Raise terrain at one sample by ``meters`` (user-defined feature).

        Returns:
            False when no resident tile holds the point
        """
        hit = self.find(lat, lon)
        if hit is None:
            return False
        tile, x, y = hit
        raised = int(tile.data[x, y]) + int(np.rint(meters))
        tile.data[x, y] = max(-32768, min(32767, raised))
        if self._max_el is None or raised > self._max_el:
            self._max_el = raised
        return True

    # -- lifecycle ----------------------------------------------------------
    def clear_layers(self) -> None:
        """Zero every signal and mask byte but keep the terrain resident."""
        for tile in self._tiles.values():
            tile.signal.fill(0)
            tile.mask.fill(0)
        self._rule = None

    def reset(self) -> None:
        """Drop every tile and unlock the accumulation rule."""
        with self._lock:
            self._tiles.clear()
            self._rule = None
            self._budget_warned = False
            self._clear_bounds()
        logger.debug("Tile store reset")
