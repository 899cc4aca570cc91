"""Domain Port(s) for Terrain I/O.

Defines interfaces (Protocols) that infrastructure adapters must implement.
No concrete I/O here.
"""

from __future__ import annotations

from typing import Protocol

import numpy as np
from numpy.typing import NDArray

from .value_objects import TileKey


class TileRepository(Protocol):
    """Port for obtaining one-degree elevation tiles from external sources.

    Implementations live in infrastructure (SDF text tiles, GeoTIFF tiles).
    """

    def load_tile(self, key: TileKey, resolution: int) -> NDArray[np.int16] | None:
        """Return the tile's ``resolution x resolution`` elevation grid in meters.

        The grid is indexed ``[x, y]`` with ``x`` growing northward from
        ``key.min_north`` and ``y`` growing westward, so ``y = R - 1`` lies on
        the tile's ``max_west`` edge.
        Returns None when the source has no data for ``key``; the tile store
        then synthesizes a sea-level tile.
        """
        ...


class EmptyTileRepository:
    """Repository without data: every tile resolves to sea level."""

    def load_tile(self, key: TileKey, resolution: int) -> NDArray[np.int16] | None:
        return None
