"""Coverage Bounded Context - Signal Raster and Contour Renderer.

Turns the tile store's signal and mask layers into an RGBA image, north
up and east right. Row ``y`` samples latitude ``max_north - dpp - dpp*y``
and column ``x`` samples west longitude ``max_west - dpp*x``, so each
output pixel maps onto exactly one stored sample.

Pixel priority, highest first: text mask, boundary mask, signal contour,
terrain. Signal values are bucketed against the color table; in smooth
mode the RGB is interpolated between adjacent buckets.
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import ArrayLike, NDArray
from pydantic import BaseModel, ConfigDict

from domain.coverage.colors import default_table
from domain.coverage.errors import CoverageError
from domain.coverage.font import GLYPH_HEIGHT, GLYPH_WIDTH, MICRO, glyph
from domain.coverage.value_objects import (
    ColorTable,
    CoverageRequest,
    GeoBounds,
    RenderedRaster,
    SignalMode,
)
from domain.terrain.geodesy import reduce_angle
from domain.terrain.tiles import TileStore
from shared.constants import (
    GAMMA,
    LEGEND_HEIGHT,
    LOS_MASK_ALL,
    MASK_BOUNDARY,
    MASK_TEXT,
)

logger = logging.getLogger(__name__)

SEA_COLOR = (0, 0, 170)
TEXT_COLOR = (255, 0, 0)
LOS_BOUNDARY_COLOR = (128, 128, 255)

# Combined visibility bits of up to four transmitters
LOS_COLORS: dict[int, tuple[int, int, int]] = {
    1: (0, 255, 0),
    8: (0, 255, 255),
    9: (255, 255, 0),
    16: (147, 112, 219),
    17: (255, 192, 203),
    24: (255, 165, 0),
    25: (0, 100, 0),
    32: (255, 130, 71),
    33: (173, 255, 47),
    40: (193, 255, 193),
    41: (255, 235, 205),
    48: (0, 206, 209),
    49: (0, 250, 154),
    56: (210, 180, 140),
    57: (238, 201, 0),
}

# Legend glyph columns inside one color block: (field, x offset)
_LEGEND_LAYOUT: dict[SignalMode, tuple[tuple[str, int], ...]] = {
    SignalMode.PATH_LOSS: (
        ("hundreds", 11),
        ("tens", 19),
        ("units", 27),
        ("d", 42),
        ("B", 50),
    ),
    SignalMode.FIELD_STRENGTH: (
        ("hundreds", 5),
        ("tens", 13),
        ("units", 21),
        ("d", 36),
        ("B", 44),
        (MICRO, 52),
        ("V", 60),
        ("/", 68),
        ("m", 76),
    ),
    SignalMode.POWER_DBM: (
        ("sign", 3),
        ("hundreds", 11),
        ("tens", 19),
        ("units", 27),
        ("d", 42),
        ("B", 50),
        ("m", 58),
    ),
}
_GLYPH_TOP = 8


class RenderOptions(BaseModel):
    """Display switches for one rendering pass."""

    contour_threshold: int = 0  # 0 disables the threshold
    smooth_contours: bool = False
    show_legend: bool = True
    terrain_shading: bool = True
    transparent_background: bool = False

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_request(cls, request: CoverageRequest) -> "RenderOptions":
        return cls(
            contour_threshold=request.contour_threshold,
            smooth_contours=request.smooth_contours,
            show_legend=request.show_legend,
            terrain_shading=request.terrain_shading,
            transparent_background=request.transparent_background,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def interpolate(
    y0: ArrayLike, y1: ArrayLike, x0: ArrayLike, x1: ArrayLike, n: ArrayLike
) -> int | NDArray[np.int64]:
    """Map ``n`` from the range ``x0..x1`` linearly onto ``y0..y1``.

    Values at or beyond either end take that end's value; the step is
    rounded up. Works elementwise on arrays and returns a plain int for
    scalar input.
    """
    y0, y1, x0, x1, n = np.broadcast_arrays(
        *(np.asarray(a, dtype=np.int64) for a in (y0, y1, x0, x1, n))
    )
    with np.errstate(divide="ignore", invalid="ignore"):
        slope = (y0 - y1).astype(np.float64) / (x0 - x1)
        middle = y0 + np.ceil(slope * (n - x0))
    flat = (y0 == y1) | (x0 == x1)
    out = np.where(
        n <= x0, y0, np.where(n >= x1, y1, np.where(flat, y0, middle))
    ).astype(np.int64)
    if out.ndim == 0:
        return int(out)
    return out


def grid_coordinates(
    store: TileStore,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Latitudes of every output row and west longitudes of every column."""
    ppd = store.resolution
    dpp = store.dpp
    width = int(ppd * reduce_angle(store.max_west - store.min_west))
    height = int(ppd * reduce_angle(store.max_north - store.min_north))
    north = store.max_north - dpp
    lats = north - dpp * np.arange(height, dtype=np.float64)
    lons = store.max_west - dpp * np.arange(width, dtype=np.float64)
    lons = np.where(lons < 0.0, lons + 360.0, lons)
    return lats, lons


def compute_bounds(store: TileStore, legend: bool = False) -> GeoBounds:
    """Geographic extent of the rendered image, east-positive longitudes.

    When a legend band is appended the southern edge moves down by the
    band's height in samples so the image stays undistorted.
    """
    dpp = store.dpp
    min_west = dpp + store.min_west
    if min_west > 360.0:
        min_west -= 360.0
    north = store.max_north - dpp
    south = float(store.min_north)
    if legend:
        south -= LEGEND_HEIGHT / store.resolution
    east = -min_west if min_west < 180.0 else 360.0 - store.min_west
    max_west = store.max_west
    west = -float(max_west) if max_west < 180 else 360.0 - max_west
    return GeoBounds(north=north, south=south, east=east, west=west)


def _terrain_rgb(
    elevation: NDArray[np.int16],
    elevation_range: tuple[int, int] | None,
    shading: bool,
) -> NDArray[np.uint8]:
    """Grayscale relief with sea-level cells in blue, or plain white."""
    shape = elevation.shape + (3,)
    if not shading:
        return np.full(shape, 255, dtype=np.uint8)
    low, high = elevation_range if elevation_range is not None else (0, 0)
    span = float(high - low)
    relief = np.clip(elevation.astype(np.float64) - low, 0.0, None)
    if span > 0.0:
        grey = 0.5 + relief ** (1.0 / GAMMA) * (255.0 / span ** (1.0 / GAMMA))
    else:
        grey = np.full(elevation.shape, 255.0)
    grey = np.clip(grey, 0.0, 255.0).astype(np.uint8)
    rgb = np.repeat(grey[..., None], 3, axis=-1)
    rgb[elevation == 0] = SEA_COLOR
    return rgb


def _bucket(
    values: NDArray[np.int64], thresholds: NDArray[np.int64], descending: bool
) -> NDArray[np.int64]:
    """Index of the first matching color level for each value, -1 for none.

    Ascending tables (path loss) match ``t[z-1] <= v < t[z]`` with values
    at or below ``t[0]`` in bucket 0; descending tables (field strength,
    power) match ``t[z-1] > v >= t[z]`` with values at or above ``t[0]``
    in bucket 0.
    """
    match = np.full(values.shape, -1, dtype=np.int64)
    if descending:
        match[values >= thresholds[0]] = 0
    else:
        match[values <= thresholds[0]] = 0
    for z in range(1, len(thresholds)):
        lower, upper = thresholds[z - 1], thresholds[z]
        if descending:
            hit = (values < lower) & (values >= upper)
        else:
            hit = (values >= lower) & (values < upper)
        match[(match < 0) & hit] = z
    return match


def _contour_rgb(
    values: NDArray[np.int64],
    table: ColorTable,
    descending: bool,
    smooth: bool,
) -> NDArray[np.uint8]:
    thresholds = table.thresholds
    colors = table.colors.astype(np.int64)
    match = _bucket(values, thresholds, descending)
    rgb = np.zeros(values.shape + (3,), dtype=np.int64)
    valid = match >= 0
    rgb[valid] = colors[match[valid]]

    if smooth:
        blend = match > 0
        m = match[blend]
        v = values[blend]
        if descending:
            rgb[blend] = interpolate(
                colors[m],
                colors[m - 1],
                thresholds[m][:, None],
                thresholds[m - 1][:, None],
                v[:, None],
            )
        else:
            rgb[blend] = interpolate(
                colors[m - 1],
                colors[m],
                thresholds[m - 1][:, None],
                thresholds[m][:, None],
                v[:, None],
            )
    return np.clip(rgb, 0, 255).astype(np.uint8)


# ---------------------------------------------------------------------------
# Legend
# ---------------------------------------------------------------------------
def _label_ink(level: int, mode: SignalMode, cell_width: int) -> NDArray[np.bool_]:
    """Glyph pixels of one level's label inside a ``30 x cell_width`` block."""
    ink = np.zeros((LEGEND_HEIGHT, cell_width), dtype=bool)
    magnitude = abs(int(level))
    hundreds = (magnitude // 100) % 10
    tens = (magnitude // 10) % 10
    units = magnitude % 10
    chars = {
        "hundreds": str(hundreds) if hundreds > 0 else None,
        "tens": str(tens) if (tens > 0 or hundreds > 0) else None,
        "units": str(units),
        "sign": "-" if level < 0 else None,
    }
    for field, x_off in _LEGEND_LAYOUT.get(mode, ()):
        char = chars.get(field, field)
        if char is None or x_off >= cell_width:
            continue
        pixels = glyph(char)
        right = min(cell_width, x_off + GLYPH_WIDTH)
        ink[_GLYPH_TOP : _GLYPH_TOP + GLYPH_HEIGHT, x_off:right] |= pixels[
            :, : right - x_off
        ]
    return ink


def legend_band(table: ColorTable, mode: SignalMode, width: int) -> NDArray[np.uint8]:
    """``(30, width, 3)`` strip with one labelled color block per level.

    Blocks are ``rint(width / levels)`` wide; columns past the last block
    and glyph pixels are black.
    """
    band = np.zeros((LEGEND_HEIGHT, width, 3), dtype=np.uint8)
    levels = len(table)
    cell = max(1, int(np.rint(width / levels)))
    colors = table.colors
    for indx, entry in enumerate(table.levels):
        left = indx * cell
        if left >= width:
            break
        right = min(width, left + cell)
        block = band[:, left:right]
        block[:] = colors[indx]
        ink = _label_ink(entry.level, mode, cell)[:, : right - left]
        block[ink] = 0
    return band


def color_key(table: ColorTable, mode: SignalMode) -> NDArray[np.uint8]:
    """Stand-alone key image: 100 pixels wide, one 30-row block per level."""
    key = np.zeros((LEGEND_HEIGHT * len(table), 100, 3), dtype=np.uint8)
    colors = table.colors
    for indx, entry in enumerate(table.levels):
        top = indx * LEGEND_HEIGHT
        block = key[top : top + LEGEND_HEIGHT]
        block[:] = colors[indx]
        block[_label_ink(entry.level, mode, 100)] = 0
    return key


# ---------------------------------------------------------------------------
# Render
# ---------------------------------------------------------------------------
def render(
    store: TileStore,
    mode: SignalMode,
    color_table: ColorTable | None = None,
    options: RenderOptions | None = None,
) -> RenderedRaster:
    """Render the store's current region.

    Args:
        store: Tile store holding the swept region
        mode: Meaning of the signal layer
        color_table: Contour table; the mode's default when None
        options: Display switches

    Returns:
        RenderedRaster with an RGBA buffer and its geographic bounds

    Raises:
        CoverageError: No region is loaded
    """
    if not store.has_region:
        raise CoverageError("Cannot render: no terrain region is loaded")
    options = options or RenderOptions()
    table = color_table if color_table is not None else default_table(mode)

    lats, lons = grid_coordinates(store)
    sample = store.sample_grid(lats, lons)
    height, width = sample.found.shape
    mask = sample.mask
    text = (mask & MASK_TEXT) != 0
    boundary = ~text & ((mask & MASK_BOUNDARY) != 0)

    terrain = _terrain_rgb(
        sample.elevation, store.elevation_range, options.terrain_shading
    )
    rgb = np.zeros((height, width, 3), dtype=np.uint8)

    if mode is SignalMode.LOS or table is None:
        visible = (mask & LOS_MASK_ALL).astype(np.int64)
        show_terrain = visible == 0
        rgb[show_terrain] = terrain[show_terrain]
        for bits, color in LOS_COLORS.items():
            rgb[visible == bits] = color
        rgb[text] = TEXT_COLOR
        rgb[boundary] = LOS_BOUNDARY_COLOR
    else:
        descending = mode is not SignalMode.PATH_LOSS
        values = sample.signal.astype(np.int64) - mode.offset
        contour = _contour_rgb(values, table, descending, options.smooth_contours)
        threshold = options.contour_threshold
        if mode is SignalMode.PATH_LOSS:
            below = (values == 0) | ((threshold != 0) & (values > abs(threshold)))
        else:
            below = np.full(values.shape, threshold != 0) & (values < threshold)
        uncolored = ~contour.any(axis=-1)
        show_terrain = below | uncolored
        rgb[:] = np.where(show_terrain[..., None], terrain, contour)

        reddish = (
            (contour[..., 0] >= 180) & (contour[..., 1] <= 75) & (contour[..., 2] <= 75)
        )
        if mode is not SignalMode.FIELD_STRENGTH:
            reddish &= values != 0
        rgb[text] = TEXT_COLOR
        invert = text & reddish
        rgb[invert] = 255 ^ contour[invert]
        rgb[boundary] = (0, 0, 0)

    alpha = np.full((height, width), 255, dtype=np.uint8)
    plain = show_terrain & ~text & ~boundary
    if options.transparent_background:
        rgb[plain] = (0, 0, 0)
        alpha[plain] = 0
    rgb[~sample.found] = (0, 0, 0)
    alpha[~sample.found] = 255

    pixels = np.concatenate([rgb, alpha[..., None]], axis=-1)
    legend_rows = 0
    draw_legend = options.show_legend and mode is not SignalMode.LOS
    if draw_legend and table is not None and width > 0:
        band = legend_band(table, mode, width)
        band_alpha = np.full((LEGEND_HEIGHT, width, 1), 255, dtype=np.uint8)
        pixels = np.concatenate(
            [pixels, np.concatenate([band, band_alpha], axis=-1)], axis=0
        )
        legend_rows = LEGEND_HEIGHT

    bounds = compute_bounds(store, legend=legend_rows > 0)
    logger.info(
        "Rendered %dx%d %s raster (%d legend rows)",
        width,
        height,
        mode.value,
        legend_rows,
    )
    return RenderedRaster(
        pixels=pixels, bounds=bounds, mode=mode, legend_rows=legend_rows
    )
