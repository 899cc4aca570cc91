"""SDF text-tile adapter for TileRepository.

An SDF tile is plain text: four header integers (max_west, min_north,
min_west, max_north), then ``R * R`` elevations in meters, one per line,
ordered ``x`` (northward) outer and ``y`` (westward) inner. Files are named
after their key, e.g. ``40_41_73_74.sdf`` or ``40_41_73_74-hd.sdf`` for
3600 samples per degree, and may be bzip2 compressed (``.sdf.bz2``).

Directories are searched in order; the first match wins.
"""

from __future__ import annotations

import bz2
import logging
from collections.abc import Iterable
from pathlib import Path

import numpy as np
from numpy.typing import NDArray

from domain.terrain.errors import InvalidTileError
from domain.terrain.value_objects import TileKey

logger = logging.getLogger(__name__)

_SUFFIXES = (".sdf", ".sdf.bz2")


def _header(key: TileKey) -> tuple[int, int, int, int]:
    return key.max_west, key.min_north, key.min_west, key.max_north


class SdfTileRepository:
    """Loads ``.sdf`` and ``.sdf.bz2`` tiles from a list of directories.

    Args:
        search_dirs: Directories to search, in priority order
    """

    def __init__(self, search_dirs: Iterable[Path | str]) -> None:
        self.search_dirs = tuple(Path(d) for d in search_dirs)

    def locate(self, key: TileKey, resolution: int) -> Path | None:
        """First existing file for ``key``, or None."""
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
            logger.debug("No SDF tile for %s", key.name(resolution))
            return None

        try:
            if path.name.endswith(".bz2"):
                with bz2.open(path, "rt", encoding="ascii") as fh:
                    text = fh.read()
            else:
                text = path.read_text(encoding="ascii")
        except (OSError, EOFError, UnicodeDecodeError) as e:
            # Log only the file name, never the full path
            logger.error("Failed to read %s: %s", path.name, type(e).__name__)
            raise InvalidTileError(path.name, f"unreadable: {type(e).__name__}") from e

        grid = parse_sdf(text, key, resolution, source=path.name)
        logger.debug("SDF %s: loaded %dx%d grid", path.name, resolution, resolution)
        return grid


def parse_sdf(
    text: str, key: TileKey, resolution: int, source: str = "<memory>"
) -> NDArray[np.int16]:
    """Decode SDF text into an ``[x, y]`` elevation grid.

    Raises:
        InvalidTileError: Header does not match ``key`` or the sample count
            is not ``resolution ** 2``
    """
    tokens = text.split()
    if len(tokens) < 4:
        raise InvalidTileError(source, "truncated header")
    try:
        values = np.array(tokens, dtype=np.int64)
    except ValueError as e:
        raise InvalidTileError(source, "non-integer sample") from e

    header = tuple(int(v) for v in values[:4])
    if header != _header(key):
        raise InvalidTileError(
            source, f"header {header} does not match tile {key.name()}"
        )
    samples = values[4:]
    expected = resolution * resolution
    if samples.size != expected:
        raise InvalidTileError(
            source, f"expected {expected} samples, found {samples.size}"
        )
    return np.clip(samples, -32768, 32767).astype(np.int16).reshape(
        resolution, resolution
    )


def write_sdf(
    directory: Path | str,
    key: TileKey,
    grid: NDArray[np.integer],
    compress: bool = False,
) -> Path:
    """Write ``grid`` (indexed ``[x, y]``) as an SDF tile and return its path."""
    grid = np.asarray(grid)
    if grid.ndim != 2 or grid.shape[0] != grid.shape[1]:
        raise ValueError(f"grid must be square, got {grid.shape}")
    resolution = grid.shape[0]
    lines = [str(v) for v in _header(key)]
    lines.extend(str(int(v)) for v in grid.ravel())
    text = "\n".join(lines) + "\n"

    stem = key.name(resolution)
    if compress:
        path = Path(directory) / f"{stem}.sdf.bz2"
        with bz2.open(path, "wt", encoding="ascii") as fh:
            fh.write(text)
    else:
        path = Path(directory) / f"{stem}.sdf"
        path.write_text(text, encoding="ascii")
    logger.debug("SDF %s: wrote %dx%d grid", path.name, resolution, resolution)
    return path
