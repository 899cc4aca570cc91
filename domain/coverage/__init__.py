"""Coverage Bounded Context.

Responsible for RF propagation and signal analysis:
- Value Objects: CoverageRequest, PropagationParameters, ColorTable
- Services: PropagationModel port, CoverageSweep, raster rendering
"""
