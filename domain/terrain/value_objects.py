"""Terrain Bounded Context - Value Objects.

Immutable data structures representing geographic concepts.
All validation occurs at construction time via Pydantic.

Longitudes are stored west-positive in [0, 360), matching the tile naming
scheme; latitudes are north-positive. Heights are in feet, distances in
statute miles.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shared.constants import FEET_PER_METER, HD_RESOLUTION


# ---------------------------------------------------------------------------
# Site
# ---------------------------------------------------------------------------
class Site(BaseModel):
    """Transmitter or receiver location (Value Object).

    Invariants:
        latitude in [-90, 90]
        longitude normalized to [0, 360) west-positive
        altitude_ft >= 0 (antenna height above ground level)

    Use ``Site.from_degrees`` for conventional east-positive input.
    """

    name: str = ""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=0, lt=360)
    altitude_ft: float = Field(default=0.0, ge=0)

    model_config = ConfigDict(frozen=True)

    @field_validator("longitude", mode="before")
    @classmethod
    def normalize_longitude(cls, value: float) -> float:
        lon = float(value) % 360.0
        # Tiny negative inputs round up to exactly 360
        return 0.0 if lon >= 360.0 else lon

    @classmethod
    def from_degrees(
        cls,
        name: str,
        latitude: float,
        longitude: float,
        altitude: float = 0.0,
        metric: bool = False,
    ) -> "Site":
        """Build a Site from east-positive longitude in [-180, 180].

        Args:
            name: Site label
            latitude: Degrees north
            longitude: Degrees east (negative west of Greenwich)
            altitude: Antenna height AGL, meters when ``metric`` else feet
            metric: Interpret ``altitude`` as meters

        Returns:
            Site with west-positive longitude and altitude in feet
        """
        if not -180.0 <= longitude <= 180.0:
            raise ValueError(f"longitude out of range: {longitude}")
        altitude_ft = altitude * FEET_PER_METER if metric else altitude
        return cls(
            name=name, latitude=latitude, longitude=-longitude, altitude_ft=altitude_ft
        )

    @property
    def east_longitude(self) -> float:
        """Longitude in conventional east-positive degrees [-180, 180)."""
        if self.longitude < 180.0:
            return -self.longitude
        return 360.0 - self.longitude


# ---------------------------------------------------------------------------
# TileKey
# ---------------------------------------------------------------------------
class TileKey(BaseModel):
    """South-west corner of a one-degree tile (Value Object).

    The tile covers ``min_north..min_north+1`` degrees north and
    ``min_west..min_west+1`` degrees west, the west edge wrapping at 360.
    """

    min_north: int = Field(ge=-90, le=89)
    min_west: int = Field(ge=0, le=359)

    model_config = ConfigDict(frozen=True)

    @property
    def max_north(self) -> int:
        return self.min_north + 1

    @property
    def max_west(self) -> int:
        return (self.min_west + 1) % 360

    def name(self, resolution: int | None = None) -> str:
        """Conventional base file name, e.g. ``40_41_73_74`` or ``40_41_73_74-hd``."""
        base = f"{self.min_north}_{self.max_north}_{self.min_west}_{self.max_west}"
        if resolution == HD_RESOLUTION:
            return base + "-hd"
        return base


# ---------------------------------------------------------------------------
# TerrainPath
# ---------------------------------------------------------------------------
class TerrainPath(BaseModel):
    """Great-circle path sampled from a source toward a destination.

    All arrays have the same length and are read-only after construction.
    ``elevation`` holds feet above sea level and NaN where no resident tile
    covers the sample.

    Invariants:
        len >= 1
        distance[0] == 0 and distance is non-decreasing
    """

    latitude: NDArray[np.float64]
    longitude: NDArray[np.float64]  # West-positive degrees
    distance: NDArray[np.float64]  # Miles from source
    elevation: NDArray[np.float64]  # Feet AMSL, NaN for no data
    truncated: bool = False  # Sample budget reached before the destination

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @model_validator(mode="after")
    def validate_path(self) -> "TerrainPath":
        n = len(self.latitude)
        if n == 0:
            raise ValueError("Path must have at least one sample")
        for label in ("longitude", "distance", "elevation"):
            if len(getattr(self, label)) != n:
                raise ValueError(f"{label} length differs from latitude length {n}")
        if self.distance[0] != 0.0:
            raise ValueError(f"First sample distance must be 0, got {self.distance[0]}")
        if n > 1 and np.any(np.diff(self.distance) < 0):
            raise ValueError("Sample distances must be non-decreasing")

        # Owned read-only copies, so callers cannot mutate a sampled path.
        for label in ("latitude", "longitude", "distance", "elevation"):
            frozen = np.array(getattr(self, label), dtype=np.float64, copy=True)
            frozen.flags.writeable = False
            object.__setattr__(self, label, frozen)
        return self

    def __len__(self) -> int:
        return len(self.latitude)

    @property
    def total_distance(self) -> float:
        return float(self.distance[-1])

    @property
    def has_nodata(self) -> bool:
        return bool(np.isnan(self.elevation).any())


# ---------------------------------------------------------------------------
# Obstruction analysis
# ---------------------------------------------------------------------------
class ObstructionPoint(BaseModel):
    """Terrain feature blocking the direct ray between two sites."""

    latitude: float
    longitude: float  # West-positive degrees
    distance_miles: float = Field(ge=0)  # From the receiving site
    height_ft: float  # AMSL, clutter included

    model_config = ConfigDict(frozen=True)


class ObstructionReport(BaseModel):
    """Result of an obstruction analysis between a transmitter and receiver.

    Heights are receiver antenna heights AGL in feet needed to clear the
    given criterion; ``None`` means the criterion is already met.
    """

    obstructions: tuple[ObstructionPoint, ...] = ()
    clear_los_height_ft: float | None = None
    clear_fresnel_height_ft: float | None = None
    clear_fresnel_fraction_height_ft: float | None = None
    fresnel_fraction: float = Field(default=0.6, ge=0, le=1)
    frequency_mhz: float | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_clear(self) -> bool:
        return not self.obstructions
