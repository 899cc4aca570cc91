"""Engine configuration.

``EngineSettings`` gathers the session-wide knobs: where tiles come from,
the store's resolution and page budget, how RF parameter files are read
and the per-transmitter sweep timeout. ``from_env`` reads the same fields
from ``COVERAGE_*`` environment variables.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from domain.coverage.value_objects import PropagationParameters
from shared.constants import (
    DEFAULT_MAX_PAGES,
    DEFAULT_MAX_PATH_SAMPLES,
    STANDARD_RESOLUTION,
)

ENV_PREFIX = "COVERAGE_"


class EngineSettings(BaseModel):
    """Session configuration for a ``CoverageEngine``."""

    # Tile source
    tile_dirs: tuple[Path, ...] = ()
    tile_format: Literal["sdf", "geotiff"] = "sdf"
    resolution: int = Field(default=STANDARD_RESOLUTION, ge=2)
    max_pages: int = Field(default=DEFAULT_MAX_PAGES, ge=1)
    max_path_samples: int = Field(default=DEFAULT_MAX_PATH_SAMPLES, ge=2)

    # RF parameters
    lrp_file: Path | None = None
    strict_parameters: bool = False
    forced_frequency_mhz: float | None = None
    forced_erp_watts: float | None = None
    color_dir: Path | None = None  # Holds <site name>.lcf / .scf / .dcf overrides

    # Ground defaults used when no parameter file is configured
    dielectric: float = Field(default=15.0, gt=0)
    conductivity: float = Field(default=0.005, gt=0)
    refractivity: float = Field(default=301.0, ge=0)

    sweep_timeout_s: float | None = Field(default=None, gt=0)

    model_config = ConfigDict(frozen=True)

    @field_validator("tile_dirs", mode="before")
    @classmethod
    def split_dirs(cls, value: object) -> object:
        if isinstance(value, str):
            return tuple(Path(p) for p in value.split(os.pathsep) if p)
        return value

    @property
    def ground_defaults(self) -> PropagationParameters:
        return PropagationParameters(
            dielectric=self.dielectric,
            conductivity=self.conductivity,
            refractivity=self.refractivity,
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineSettings":
        """Build settings from ``COVERAGE_<FIELD>`` variables.

        ``COVERAGE_TILE_DIRS`` is an ``os.pathsep`` separated list; unset or
        empty variables keep the field default.

        Raises:
            pydantic.ValidationError: A variable holds an invalid value
        """
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for name in cls.model_fields:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is not None and raw.strip():
                values[name] = raw.strip()
        return cls.model_validate(values)
