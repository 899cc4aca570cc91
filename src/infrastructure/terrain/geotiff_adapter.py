"""GeoTIFF adapter for TileRepository.

Loads one-degree DEM tiles stored as single-band GeoTIFFs named after their
key (``40_41_73_74.tif``, ``-hd`` suffix for 3600 samples per degree) and
resamples them onto the tile store's sample lattice in EPSG:4326.

Lifecycle (to avoid resource leaks):
1) Enter rasterio.Env for GDAL/PROJ configuration
2) Open dataset with context manager (rasterio.open)
3) Read metadata and validate preconditions
4) Reproject onto the tile lattice (bilinear) regardless of source CRS
5) Convert nodata -> sea level; cast to int16 meters
6) Exit contexts to release GDAL handles
7) Return the ``[x, y]`` grid
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import numpy as np
import rasterio
from affine import Affine
from numpy.typing import NDArray
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.warp import reproject

from domain.terrain.errors import (
    InsufficientMemoryError,
    InvalidBoundsError,
    InvalidGeotransformError,
    InvalidRasterError,
    MissingCRSError,
)
from domain.terrain.value_objects import TileKey

# Module-level logger (reused across all calls)
logger = logging.getLogger(__name__)

# Target CRS for all tiles (constructed once for efficient comparison)
_TARGET_CRS = CRS.from_epsg(4326)

_SUFFIXES = (".tif", ".tiff")


def _is_wgs84(crs: Any) -> bool:
    """Check if CRS is WGS84 (EPSG:4326 or equivalent)."""
    if crs is None:
        return False
    try:
        if crs == _TARGET_CRS:
            return True
    except (TypeError, AttributeError):
        pass
    return str(crs).upper() in ("EPSG:4326", "OGC:CRS84")


def _east_longitude(west: float) -> float:
    """Degrees west (0-360) to east-positive degrees in [-180, 180)."""
    return ((-west + 180.0) % 360.0) - 180.0


def tile_transform(key: TileKey, resolution: int) -> Affine:
    """North-up transform whose pixel centers sit on the tile's samples.

    Sample ``x`` lies at ``min_north + x/R`` and sample ``y`` at west
    longitude ``max_west - (R-1-y)/R``, so pixel ``(row, col)`` of a
    north-up raster holds sample ``[R-1-row, R-1-col]``.
    """
    step = 1.0 / resolution
    left = _east_longitude(key.max_west) - step / 2.0
    top = key.max_north - step / 2.0
    return Affine(step, 0.0, left, 0.0, -step, top)


class GeoTiffTileRepository:
    """Infrastructure adapter for loading one-degree tiles from GeoTIFF files.

    Args:
        search_dirs: Directories to search, in priority order
        max_bytes: Optional memory budget for one float32 tile grid
    """

    def __init__(
        self, search_dirs: Iterable[Path | str], max_bytes: int | None = None
    ) -> None:
        self.search_dirs = tuple(Path(d) for d in search_dirs)
        self.max_bytes = max_bytes

    def locate(self, key: TileKey, resolution: int) -> Path | None:
        stem = key.name(resolution)
        for directory in self.search_dirs:
            for suffix in _SUFFIXES:
                candidate = directory / f"{stem}{suffix}"
                if candidate.is_file():
                    return candidate
        return None

    def load_tile(self, key: TileKey, resolution: int) -> NDArray[np.int16] | None:
        path = self.locate(key, resolution)
        if path is None:
            logger.debug("No GeoTIFF tile for %s", key.name(resolution))
            return None
        return self.read_tile(path, key, resolution)

    def read_tile(
        self, file_path: Path | str, key: TileKey, resolution: int
    ) -> NDArray[np.int16]:
        """Resample one GeoTIFF onto ``key``'s sample lattice.

        Raises:
            FileNotFoundError: File does not exist
            InvalidRasterError: Not a readable single-band raster
            MissingCRSError: Raster has no CRS
            InvalidGeotransformError: Transform is missing or degenerate
            InvalidBoundsError: Raster does not overlap the tile
            InsufficientMemoryError: Grid exceeds ``max_bytes``
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(str(path))
        if path.is_symlink():
            raise InvalidRasterError("Symlinks are not permitted")
        if path.stat().st_size == 0:
            raise InvalidRasterError("Empty file")

        if self.max_bytes is not None:
            est_bytes = resolution * resolution * 4  # float32 = 4 bytes
            if est_bytes > self.max_bytes:
                raise InsufficientMemoryError(
                    f"Estimated grid size {est_bytes}B exceeds budget {self.max_bytes}B"
                )

        try:
            with rasterio.Env():
                with rasterio.open(path) as src:
                    if src.count != 1:
                        raise InvalidRasterError(f"Expected 1 band, got {src.count}")
                    if src.crs is None:
                        raise MissingCRSError("Raster has no CRS defined")

                    transform: Affine = src.transform
                    if not isinstance(transform, Affine):
                        raise InvalidGeotransformError("Missing affine transform")
                    if any(
                        math.isnan(v) or math.isinf(v)
                        for v in (transform.a, transform.e, transform.c, transform.f)
                    ):
                        raise InvalidGeotransformError(
                            "Invalid (NaN/Inf) transform values"
                        )
                    if transform.a == 0 or transform.e == 0:
                        raise InvalidGeotransformError("Invalid transform scale (zero)")

                    target = tile_transform(key, resolution)
                    aligned = (
                        _is_wgs84(src.crs)
                        and (src.height, src.width) == (resolution, resolution)
                        and transform.almost_equals(target)
                    )
                    if aligned:
                        # Already on the tile lattice; read directly
                        data = src.read(1, masked=True, out_dtype="float32")
                        dst = np.where(
                            np.ma.getmaskarray(data), np.float32(np.nan), data.data
                        )
                    else:
                        dst = np.full(
                            (resolution, resolution), np.nan, dtype=np.float32
                        )
                        reproject(
                            source=rasterio.band(src, 1),
                            destination=dst,
                            src_transform=transform,
                            src_crs=src.crs,
                            dst_transform=target,
                            dst_crs=_TARGET_CRS,
                            resampling=Resampling.bilinear,
                            src_nodata=src.nodata,
                            dst_nodata=np.nan,
                        )
                    if not _is_wgs84(src.crs):
                        logger.info(
                            "DEM %s: reprojected from %s to EPSG:4326",
                            path.name,
                            src.crs.to_string(),
                        )
        except PermissionError as e:
            # Re-raise with filename only to avoid leaking full path in logs
            raise PermissionError(path.name) from e
        except (rasterio.errors.RasterioIOError, rasterio.errors.RasterioError) as e:
            raise InvalidRasterError(f"Corrupted or invalid raster: {e}") from e
        except MemoryError as e:
            raise InsufficientMemoryError("Insufficient memory to load raster") from e

        missing = np.isnan(dst)
        if missing.all():
            raise InvalidBoundsError(
                f"DEM {path.name} does not cover tile {key.name(resolution)}"
            )
        nodata_pct = float(missing.mean() * 100.0)
        if nodata_pct > 80.0:
            logger.warning(
                "DEM %s: %.1f%% NoData pixels detected", path.name, nodata_pct
            )

        meters = np.clip(np.rint(np.where(missing, 0.0, dst)), -32768, 32767)
        grid = np.ascontiguousarray(meters[::-1, ::-1]).astype(np.int16)
        logger.debug("DEM %s: loaded %dx%d tile", path.name, resolution, resolution)
        return grid


def write_tile(
    directory: Path | str,
    key: TileKey,
    grid: NDArray[np.integer],
    nodata: int | None = None,
) -> Path:
    """Write ``grid`` (indexed ``[x, y]``) as a one-band EPSG:4326 GeoTIFF."""
    grid = np.asarray(grid)
    if grid.ndim != 2 or grid.shape[0] != grid.shape[1]:
        raise ValueError(f"grid must be square, got {grid.shape}")
    resolution = grid.shape[0]
    path = Path(directory) / f"{key.name(resolution)}.tif"
    raster = np.ascontiguousarray(grid[::-1, ::-1]).astype(np.int16)
    with rasterio.Env():
        with rasterio.open(
            path,
            "w",
            driver="GTiff",
            height=resolution,
            width=resolution,
            count=1,
            dtype="int16",
            crs=_TARGET_CRS,
            transform=tile_transform(key, resolution),
            nodata=nodata,
        ) as dst:
            dst.write(raster, 1)
    logger.debug("DEM %s: wrote %dx%d tile", path.name, resolution, resolution)
    return path
