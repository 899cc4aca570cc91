"""Tests for PNG, GeoTIFF and bounds artifact writers."""

from __future__ import annotations

import json

import numpy as np
import pytest
import rasterio
from PIL import Image

from domain.coverage.errors import OutputWriteError
from domain.coverage.value_objects import GeoBounds, RenderedRaster, SignalMode
from infrastructure.raster.writers import (
    write_bounds,
    write_color_key,
    write_geotiff,
    write_png,
)

BOUNDS = GeoBounds(north=41.0, south=40.0, east=-100.0, west=-101.0)


def _raster(alpha: int = 255) -> RenderedRaster:
    pixels = np.zeros((10, 20, 4), dtype=np.uint8)
    pixels[..., 0] = 200
    pixels[..., 3] = alpha
    pixels[0, 0, 3] = 255
    return RenderedRaster(pixels=pixels, bounds=BOUNDS, mode=SignalMode.LOS)


def test_opaque_png_is_rgb(tmp_path):
    path = write_png(_raster(), tmp_path / "map.png")

    with Image.open(path) as image:
        assert image.mode == "RGB"
        assert image.size == (20, 10)
        assert image.getpixel((5, 5)) == (200, 0, 0)


def test_transparent_png_keeps_alpha(tmp_path):
    path = write_png(_raster(alpha=0), tmp_path / "map.png")

    with Image.open(path) as image:
        assert image.mode == "RGBA"
        assert image.getpixel((5, 5))[3] == 0
        assert image.getpixel((0, 0))[3] == 255


def test_png_into_missing_directory_fails(tmp_path):
    with pytest.raises(OutputWriteError) as exc:
        write_png(_raster(), tmp_path / "absent" / "map.png")
    assert exc.value.artifact == "map.png"


def test_color_key_png(tmp_path):
    key = np.full((30, 100, 3), 7, dtype=np.uint8)

    path = write_color_key(key, tmp_path / "map-ck.png")

    with Image.open(path) as image:
        assert image.size == (100, 30)


def test_geotiff_is_georeferenced(tmp_path):
    path = write_geotiff(_raster(), tmp_path / "map.tif")

    with rasterio.open(path) as src:
        assert src.count == 4
        assert src.crs.to_epsg() == 4326
        assert src.bounds.left == pytest.approx(-101.0)
        assert src.bounds.top == pytest.approx(41.0)
        assert src.bounds.bottom == pytest.approx(40.0)
        assert src.read(1)[5, 5] == 200


def test_geotiff_into_missing_directory_fails(tmp_path):
    with pytest.raises(OutputWriteError):
        write_geotiff(_raster(), tmp_path / "absent" / "map.tif")


def test_bounds_sidecar(tmp_path):
    path = write_bounds(BOUNDS, tmp_path / "map.json")

    assert json.loads(path.read_text()) == {
        "north": 41.0,
        "south": 40.0,
        "east": -100.0,
        "west": -101.0,
    }


def test_bounds_into_missing_directory_fails(tmp_path):
    with pytest.raises(OutputWriteError):
        write_bounds(BOUNDS, tmp_path / "absent" / "map.json")
