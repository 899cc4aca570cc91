"""Coverage Engine Domain Layer.

This package contains the core logic organized by bounded contexts:
- terrain: Elevation tiles, great-circle paths, line-of-sight calculations
- coverage: RF propagation, radial sweeps, signal rasters
"""

# Imports alphabetized per project style (isort)
from domain import coverage, terrain

__all__ = ["coverage", "terrain"]
