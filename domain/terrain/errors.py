"""Terrain Bounded Context - Error Hierarchy.

Custom exceptions for terrain operations: tile loading, raster decoding,
point lookups and path sampling.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from domain.terrain.value_objects import TileKey


class TerrainError(Exception):
    """Base error for terrain operations."""


class InvalidRasterError(TerrainError):
    """File is not a valid raster, wrong format, or corrupted."""


class MissingCRSError(TerrainError):
    """Raster has no CRS defined."""


class InvalidGeotransformError(TerrainError):
    """Raster has invalid or missing geotransform."""


class InvalidBoundsError(TerrainError):
    """Raster bounds do not describe the requested one-degree tile."""


class InsufficientMemoryError(TerrainError):
    """Operation requires more memory than allowed or available."""


# ---------------------------------------------------------------------------
# Tile store errors
# ---------------------------------------------------------------------------
class InvalidTileError(TerrainError):
    """Tile file is readable but its header or sample count is wrong.

    Attributes:
        source: File name (never the full path) of the offending tile
    """

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        super().__init__(f"Invalid tile {source}: {reason}")


class TileBudgetExceededError(TerrainError):
    """Page budget is exhausted and a strict load was requested.

    Attributes:
        key: TileKey that could not be paged in
        max_pages: The store's page budget
    """

    def __init__(self, key: "TileKey", max_pages: int) -> None:
        self.key = key
        self.max_pages = max_pages
        super().__init__(
            f"Cannot load tile {key.name()}: page budget of {max_pages} exhausted"
        )


class InvalidPathError(TerrainError):
    """Path sampling parameters are invalid."""

    pass
