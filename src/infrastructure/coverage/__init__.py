"""Infrastructure adapters for the coverage bounded context.

Readers for RF parameter files, antenna pattern tables and contour color
files.
"""

from .parameter_files import (
    ParameterSet,
    load_parameters,
    read_color_file,
    read_pattern_csv,
)

__all__ = ["ParameterSet", "load_parameters", "read_color_file", "read_pattern_csv"]
