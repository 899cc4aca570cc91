"""Coverage Bounded Context - Value Objects.

Immutable request, parameter and result structures for coverage runs.
All validation occurs at construction time via Pydantic; values the engine
clamps rather than rejects (radius, Fresnel percentage, frequency) are left
loose here and normalized by the sweep layer.
"""

from __future__ import annotations

import math
from enum import Enum

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, Field, model_validator

from domain.terrain.tiles import AccumulationRule
from domain.terrain.value_objects import ObstructionReport, Site, TerrainPath
from shared.constants import MAX_COLOR_LEVELS


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------
class CoverageKind(str, Enum):
    """Which analysis a sweep performs."""

    LOS = "los"
    LOSS = "loss"


class SignalMode(str, Enum):
    """Meaning of the accumulated signal byte and how it is rendered."""

    LOS = "los"
    PATH_LOSS = "path_loss"  # byte = loss in dB
    FIELD_STRENGTH = "field_strength"  # byte = 100 + dBuV/m
    POWER_DBM = "power_dbm"  # byte = 200 + dBm

    @property
    def rule(self) -> AccumulationRule:
        if self is SignalMode.PATH_LOSS:
            return AccumulationRule.LOWER
        return AccumulationRule.HIGHER

    @property
    def offset(self) -> int:
        """Value subtracted from a stored byte to recover the physical unit."""
        return {
            SignalMode.FIELD_STRENGTH: 100,
            SignalMode.POWER_DBM: 200,
        }.get(self, 0)


# ---------------------------------------------------------------------------
# RF parameters
# ---------------------------------------------------------------------------
class PropagationParameters(BaseModel):
    """RF and ground parameters consumed by the propagation model.

    Defaults are the documented substitutes used when no parameter file is
    available. ``erp_watts`` of 0 selects path-loss output.
    """

    dielectric: float = Field(default=15.0, gt=0)  # Relative permittivity
    conductivity: float = Field(default=0.005, gt=0)  # Siemens per meter
    refractivity: float = Field(default=301.0, ge=0)  # N-units
    frequency_mhz: float = Field(default=1400.0, gt=0)
    climate: int = Field(default=5, ge=1, le=7)
    polarization: int = Field(default=1, ge=0, le=1)  # 0 horizontal, 1 vertical
    confidence: float = Field(default=0.5, gt=0, lt=1)
    reliability: float = Field(default=0.5, gt=0, lt=1)
    erp_watts: float = Field(default=0.0, ge=0)

    model_config = ConfigDict(frozen=True)


class AntennaPattern(BaseModel):
    """Relative field pattern indexed by azimuth degree and elevation step.

    ``values[az, el]`` holds a linear field ratio (0..1) for azimuth
    ``az`` in whole degrees and elevation index ``el`` where
    ``el = rint(10 * (10 - elevation_deg))``, covering +10 to -90 degrees
    in tenths. A zero entry means "no data" and applies no correction.
    """

    values: NDArray[np.float64]

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @model_validator(mode="after")
    def validate_values(self) -> "AntennaPattern":
        if self.values.shape != (360, 1001):
            raise ValueError(f"Pattern must be 360x1001, got {self.values.shape}")
        frozen = np.array(self.values, dtype=np.float64, copy=True)
        if np.any(frozen < 0):
            raise ValueError("Pattern values must be non-negative")
        frozen.flags.writeable = False
        object.__setattr__(self, "values", frozen)
        return self

    @classmethod
    def uniform(cls) -> "AntennaPattern":
        return cls(values=np.ones((360, 1001), dtype=np.float64))

    def gain_db(self, azimuth_deg: float, elevation_deg: float) -> float:
        """Pattern correction in dB; 0 outside the grid or where no data."""
        el = int(np.rint(10.0 * (10.0 - elevation_deg)))
        if not 0 <= el <= 1000:
            return 0.0
        az = int(np.rint(azimuth_deg)) % 360
        ratio = float(self.values[az, el])
        if ratio == 0.0:
            return 0.0
        return 20.0 * math.log10(ratio)


class LossResult(BaseModel):
    """Output of one point-to-point propagation evaluation."""

    loss_db: float
    mode: str
    error_code: int = Field(default=0, ge=0, le=4)

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Color tables
# ---------------------------------------------------------------------------
class ColorLevel(BaseModel):
    """One ``(threshold, RGB)`` breakpoint."""

    level: int
    red: int = Field(ge=0, le=255)
    green: int = Field(ge=0, le=255)
    blue: int = Field(ge=0, le=255)

    model_config = ConfigDict(frozen=True)

    @property
    def rgb(self) -> tuple[int, int, int]:
        return self.red, self.green, self.blue


class ColorTable(BaseModel):
    """Ordered contour breakpoints for one signal mode (1 to 32 levels)."""

    levels: tuple[ColorLevel, ...]

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_levels(self) -> "ColorTable":
        if not 1 <= len(self.levels) <= MAX_COLOR_LEVELS:
            raise ValueError(
                f"Color table needs 1..{MAX_COLOR_LEVELS} levels, "
                f"got {len(self.levels)}"
            )
        return self

    @classmethod
    def from_rows(cls, rows: list[tuple[int, int, int, int]]) -> "ColorTable":
        return cls(
            levels=tuple(
                ColorLevel(level=lv, red=r, green=g, blue=b) for lv, r, g, b in rows
            )
        )

    def __len__(self) -> int:
        return len(self.levels)

    @property
    def thresholds(self) -> NDArray[np.int64]:
        return np.array([c.level for c in self.levels], dtype=np.int64)

    @property
    def colors(self) -> NDArray[np.uint8]:
        return np.array([c.rgb for c in self.levels], dtype=np.uint8).reshape(-1, 3)


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------
class CoverageRequest(BaseModel):
    """One coverage run over up to four transmitters.

    Heights are in the request's units (meters when ``metric`` else feet),
    ``max_range`` in kilometers or miles accordingly (0 means "radio
    horizon"). ``frequency_mhz`` and ``erp_watts`` override the parameter
    file when set; an ERP of 0 selects path-loss output.
    """

    transmitters: tuple[Site, ...]
    receiver_height: float = 0.0
    frequency_mhz: float | None = None
    start_angle: float = 0.0
    end_angle: float = 360.0
    max_range: float = 0.0
    clutter_height: float = 0.0
    erp_watts: float | None = None
    fresnel_clearance_percent: float = 60.0
    earth_radius_multiplier: float = 1.0  # Applied to line-of-sight sweeps
    metric: bool = False
    kind: CoverageKind = CoverageKind.LOSS
    dbm: bool = False  # Received power instead of field strength when ERP > 0
    contour_threshold: int = 0  # 0 disables the threshold
    smooth_contours: bool = False
    show_legend: bool = True
    terrain_shading: bool = True
    transparent_background: bool = False
    color_table: ColorTable | None = None  # Overrides the mode's default table

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------
class RunDiagnostics(BaseModel):
    """Per-run counters and warnings; accumulated while the sweep runs."""

    warnings: list[str] = Field(default_factory=list)
    loss_model_codes: dict[int, int] = Field(default_factory=dict)
    mode_counts: dict[str, int] = Field(default_factory=dict)
    rays_traced: int = 0
    rays_skipped: int = 0  # Outside the angular window
    points_evaluated: int = 0
    truncated_paths: int = 0
    nodata_samples: int = 0
    cancelled: bool = False
    timed_out: bool = False
    failed_outputs: list[str] = Field(default_factory=list)
    elapsed_s: float = 0.0

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def record_loss(self, result: LossResult) -> None:
        self.mode_counts[result.mode] = self.mode_counts.get(result.mode, 0) + 1
        if result.error_code:
            code = result.error_code
            self.loss_model_codes[code] = self.loss_model_codes.get(code, 0) + 1


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
class GeoBounds(BaseModel):
    """Raster extent in degrees.

    Longitudes use the conventional east-positive sign (negative west of
    Greenwich) so downstream consumers can place the image directly.
    """

    north: float
    south: float
    east: float
    west: float

    model_config = ConfigDict(frozen=True)

    def as_dict(self) -> dict[str, float]:
        return {
            "north": self.north,
            "south": self.south,
            "east": self.east,
            "west": self.west,
        }


class RenderedRaster(BaseModel):
    """RGBA pixel buffer, north up and east right.

    ``pixels`` has shape ``(height, width, 4)``; when a legend was drawn its
    band occupies the last ``legend_rows`` rows.
    """

    pixels: NDArray[np.uint8]
    bounds: GeoBounds
    mode: SignalMode
    legend_rows: int = 0

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @model_validator(mode="after")
    def validate_pixels(self) -> "RenderedRaster":
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 4:
            raise ValueError(f"Pixels must be (H, W, 4), got {self.pixels.shape}")
        frozen = np.array(self.pixels, dtype=np.uint8, copy=True)
        frozen.flags.writeable = False
        object.__setattr__(self, "pixels", frozen)
        return self

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def map_pixels(self) -> NDArray[np.uint8]:
        """Pixels without the legend band."""
        return self.pixels[: self.height - self.legend_rows]


class CoverageResult(BaseModel):
    """Everything one ``run_coverage`` call produces."""

    raster: RenderedRaster
    color_table: ColorTable | None
    color_key: NDArray[np.uint8] | None = None  # Separate 100-wide key image
    diagnostics: RunDiagnostics

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def bounds(self) -> GeoBounds:
        return self.raster.bounds


class PathTrace(BaseModel):
    """Point-to-point analysis between a transmitter and a receiver."""

    source: Site
    destination: Site
    path: TerrainPath
    distance_miles: float
    azimuth_deg: float
    elevation_angle_deg: float
    obstruction_angle_deg: float
    visible: bool
    path_loss_db: float
    mode: str
    error_code: int = 0
    field_strength_dbuv_m: float | None = None
    received_power_dbm: float | None = None
    obstruction_report: ObstructionReport

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)
