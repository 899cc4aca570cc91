"""Output artifact writers for rendered coverage rasters."""

from .writers import write_bounds, write_color_key, write_geotiff, write_png

__all__ = ["write_bounds", "write_color_key", "write_geotiff", "write_png"]
