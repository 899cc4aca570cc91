"""Infrastructure adapters for the terrain bounded context.

Tile repositories for SDF text tiles (plain or bzip2) and one-degree
GeoTIFF tiles, both exported for simplified imports.
"""

from .geotiff_adapter import GeoTiffTileRepository
from .sdf_adapter import SdfTileRepository

__all__ = ["GeoTiffTileRepository", "SdfTileRepository"]
