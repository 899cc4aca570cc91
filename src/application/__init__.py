"""Application layer: coverage engine sessions and their settings."""

from .engine import CoverageEngine
from .settings import EngineSettings

__all__ = ["CoverageEngine", "EngineSettings"]
