"""Tests for EngineSettings and its environment loader."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from application.settings import EngineSettings
from shared.constants import DEFAULT_MAX_PAGES, STANDARD_RESOLUTION


def test_defaults():
    settings = EngineSettings()

    assert settings.tile_dirs == ()
    assert settings.tile_format == "sdf"
    assert settings.resolution == STANDARD_RESOLUTION
    assert settings.max_pages == DEFAULT_MAX_PAGES
    assert settings.lrp_file is None
    assert settings.ground_defaults.erp_watts == 0.0


def test_from_env_reads_prefixed_variables():
    environ = {
        "COVERAGE_TILE_DIRS": f"tiles{os.pathsep}{os.pathsep}more",
        "COVERAGE_TILE_FORMAT": "geotiff",
        "COVERAGE_MAX_PAGES": "9",
        "COVERAGE_STRICT_PARAMETERS": "true",
        "COVERAGE_FORCED_FREQUENCY_MHZ": "900",
        "COVERAGE_LRP_FILE": "  ",
        "UNRELATED": "x",
    }

    settings = EngineSettings.from_env(environ)

    assert settings.tile_dirs == (Path("tiles"), Path("more"))
    assert settings.tile_format == "geotiff"
    assert settings.max_pages == 9
    assert settings.strict_parameters is True
    assert settings.forced_frequency_mhz == 900.0
    assert settings.lrp_file is None


def test_from_env_rejects_invalid_values():
    with pytest.raises(ValidationError):
        EngineSettings.from_env({"COVERAGE_TILE_FORMAT": "png"})


def test_ground_defaults_follow_settings():
    settings = EngineSettings(dielectric=4.0, conductivity=0.001, refractivity=250.0)

    ground = settings.ground_defaults

    assert (ground.dielectric, ground.conductivity, ground.refractivity) == (
        4.0,
        0.001,
        250.0,
    )


def test_settings_are_frozen():
    settings = EngineSettings()

    with pytest.raises(ValidationError):
        settings.max_pages = 4
