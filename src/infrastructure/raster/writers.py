"""Output artifact writers.

Each writer produces one file and raises ``OutputWriteError`` naming only
that artifact when it fails; the in-memory raster is never affected.

- PNG via Pillow (RGBA, or RGB when every pixel is opaque)
- GeoTIFF via rasterio, EPSG:4326, four bands, legend rows included
- Bounds sidecar as JSON (north/south/east/west)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import numpy as np
import rasterio
from numpy.typing import NDArray
from PIL import Image
from rasterio.crs import CRS
from rasterio.transform import from_bounds

from domain.coverage.errors import OutputWriteError
from domain.coverage.value_objects import GeoBounds, RenderedRaster

logger = logging.getLogger(__name__)

_TARGET_CRS = CRS.from_epsg(4326)


def _image(pixels: NDArray[np.uint8]) -> Image.Image:
    if pixels.shape[-1] == 4 and np.all(pixels[..., 3] == 255):
        return Image.fromarray(np.ascontiguousarray(pixels[..., :3]))
    return Image.fromarray(np.ascontiguousarray(pixels))


def write_png(raster: RenderedRaster, file_path: Path | str) -> Path:
    """Save the raster as PNG.

    Raises:
        OutputWriteError: The file could not be written
    """
    path = Path(file_path)
    try:
        _image(raster.pixels).save(path, format="PNG")
    except (OSError, ValueError) as e:
        logger.error("PNG %s not written: %s", path.name, type(e).__name__)
        raise OutputWriteError(path.name, str(e)) from e
    logger.debug("PNG %s: %dx%d", path.name, raster.width, raster.height)
    return path


def write_color_key(pixels: NDArray[np.uint8], file_path: Path | str) -> Path:
    """Save a stand-alone color key image as PNG.

    Raises:
        OutputWriteError: The file could not be written
    """
    path = Path(file_path)
    try:
        _image(pixels).save(path, format="PNG")
    except (OSError, ValueError) as e:
        logger.error("Color key %s not written: %s", path.name, type(e).__name__)
        raise OutputWriteError(path.name, str(e)) from e
    return path


def write_geotiff(raster: RenderedRaster, file_path: Path | str) -> Path:
    """Save the raster as a georeferenced four-band GeoTIFF.

    The transform spans ``raster.bounds``; when a legend band is present
    the bounds already extend south to cover it.

    Raises:
        OutputWriteError: The file could not be written
    """
    path = Path(file_path)
    bounds = raster.bounds
    transform = from_bounds(
        bounds.west,
        bounds.south,
        bounds.east,
        bounds.north,
        raster.width,
        raster.height,
    )
    bands = np.moveaxis(raster.pixels, -1, 0)
    try:
        with rasterio.Env():
            with rasterio.open(
                path,
                "w",
                driver="GTiff",
                height=raster.height,
                width=raster.width,
                count=4,
                dtype="uint8",
                crs=_TARGET_CRS,
                transform=transform,
            ) as dst:
                dst.write(bands)
    except (OSError, rasterio.errors.RasterioError) as e:
        logger.error("GeoTIFF %s not written: %s", path.name, type(e).__name__)
        raise OutputWriteError(path.name, str(e)) from e
    logger.debug("GeoTIFF %s: %dx%d", path.name, raster.width, raster.height)
    return path


def write_bounds(bounds: GeoBounds, file_path: Path | str) -> Path:
    """Write the raster extent as a JSON object.

    Raises:
        OutputWriteError: The file could not be written
    """
    path = Path(file_path)
    try:
        text = json.dumps(bounds.as_dict(), indent=2) + "\n"
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        logger.error("Bounds %s not written: %s", path.name, type(e).__name__)
        raise OutputWriteError(path.name, str(e)) from e
    return path
