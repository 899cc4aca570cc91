"""RF parameter, antenna pattern and color file readers.

Parameter files (``.lrp``) hold one value per line, text after ``;`` being
a comment:

    15.000  ; Earth Dielectric Constant (Relative permittivity)
    0.005   ; Earth Conductivity (Siemens per meter)
    301.000 ; Atmospheric Bending Constant (N-units)
    1400.0  ; Frequency in MHz (20 MHz to 20 GHz)
    5       ; Radio Climate (1..7)
    1       ; Polarization (0 = Horizontal, 1 = Vertical)
    0.50    ; Fraction of situations (50% of locations)
    0.50    ; Fraction of time (50% of the time)
    126.0   ; Effective Radiated Power in Watts (optional)
    none    ; Antenna pattern file (extended format only)

The ERP line may carry a ``dBm`` suffix, in which case the EIRP in dBm is
converted to ERP in watts. A tenth line selects the extended format and
names a CSV antenna pattern with ``azimuth,elevation_index,ratio`` rows.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import NamedTuple

import numpy as np
from pydantic import ValidationError

from domain.coverage.colors import format_color_table, parse_color_lines
from domain.coverage.errors import ConfigurationError
from domain.coverage.value_objects import (
    AntennaPattern,
    ColorTable,
    PropagationParameters,
    SignalMode,
)
from shared.constants import MAX_FREQUENCY_MHZ, MIN_FREQUENCY_MHZ

logger = logging.getLogger(__name__)

# Substituted when a configured parameter file cannot be used
FILE_DEFAULTS = PropagationParameters(erp_watts=126.0)

_FIELDS = (
    ("dielectric", float),
    ("conductivity", float),
    ("refractivity", float),
    ("frequency_mhz", float),
    ("climate", int),
    ("polarization", int),
    ("confidence", float),
    ("reliability", float),
)
_NO_PATTERN = ("", "none")


class ParameterSet(NamedTuple):
    """Outcome of reading a parameter file."""

    params: PropagationParameters
    pattern: AntennaPattern | None
    warnings: list[str]


def _values(lines: Iterable[str]) -> list[str]:
    """Comment-stripped, non-blank lines."""
    out = []
    for raw in lines:
        text = raw.split(";", 1)[0].strip()
        if text:
            out.append(text)
    return out


def _erp_watts(text: str) -> float:
    number = text.split()[0]
    erp = float(number)
    if "dbm" in text.lower():
        # EIRP in dBm referenced to an isotropic radiator
        erp = 10.0 ** ((erp - 32.14) / 10.0)
    return max(erp, 0.0)


def parse_parameters(lines: Iterable[str]) -> tuple[dict[str, float], str | None]:
    """Decode parameter file lines.

    Returns:
        (field values for PropagationParameters, pattern file name or None)

    Raises:
        ValueError: Fewer than eight values, or a value is not a number
    """
    values = _values(lines)
    if len(values) < len(_FIELDS):
        raise ValueError(f"expected at least {len(_FIELDS)} values, got {len(values)}")
    fields: dict[str, float] = {}
    for (name, kind), text in zip(_FIELDS, values):
        fields[name] = kind(text.split()[0])
    if len(values) > len(_FIELDS):
        fields["erp_watts"] = _erp_watts(values[len(_FIELDS)])
    pattern_name = None
    if len(values) > len(_FIELDS) + 1:
        name = values[len(_FIELDS) + 1]
        if name.lower() not in _NO_PATTERN:
            pattern_name = name
    return fields, pattern_name


def read_pattern_csv(file_path: Path | str) -> AntennaPattern:
    """Read an ``azimuth,elevation_index,ratio`` pattern table.

    Unlisted cells keep a ratio of 1.0; rows outside ``0..359`` by
    ``0..1000`` or with a negative ratio are ignored.

    Raises:
        ConfigurationError: File cannot be read
    """
    path = Path(file_path)
    values = np.ones((360, 1001), dtype=np.float64)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(path.name, f"unreadable ({type(e).__name__})") from e

    ignored = 0
    for line in text.splitlines():
        parts = line.split(",")
        if len(parts) != 3:
            continue
        try:
            az, el, ratio = int(parts[0]), int(parts[1]), float(parts[2])
        except ValueError:
            ignored += 1
            continue
        if 0 <= az < 360 and 0 <= el <= 1000 and ratio >= 0.0:
            values[az, el] = ratio
        else:
            ignored += 1
    if ignored:
        logger.debug("Pattern %s: %d rows ignored", path.name, ignored)
    return AntennaPattern(values=values)


def _apply_forced(
    params: PropagationParameters,
    forced_frequency_mhz: float | None,
    forced_erp_watts: float | None,
) -> PropagationParameters:
    updates: dict[str, float] = {}
    if (
        forced_frequency_mhz is not None
        and MIN_FREQUENCY_MHZ <= forced_frequency_mhz <= MAX_FREQUENCY_MHZ
    ):
        updates["frequency_mhz"] = forced_frequency_mhz
    if forced_erp_watts is not None:
        updates["erp_watts"] = max(forced_erp_watts, 0.0)
    return params.model_copy(update=updates) if updates else params


def load_parameters(
    file_path: Path | str | None,
    forced_frequency_mhz: float | None = None,
    forced_erp_watts: float | None = None,
    strict: bool = False,
    defaults: PropagationParameters | None = None,
) -> ParameterSet:
    """Read RF parameters and the optional antenna pattern.

    Without a file ``defaults`` (or the built-in parameters) apply; their
    ERP of 0 selects path-loss output. A file that is missing, unreadable
    or malformed falls back to ``FILE_DEFAULTS`` with a warning, unless
    ``strict`` is set.

    Args:
        file_path: Parameter file, or None for built-in parameters
        forced_frequency_mhz: Overrides the file when within 20..20000 MHz
        forced_erp_watts: Overrides the file's ERP when not None
        strict: Raise instead of substituting defaults
        defaults: Parameters used when ``file_path`` is None

    Raises:
        ConfigurationError: ``strict`` and the file or its pattern is unusable
    """
    if file_path is None:
        params = _apply_forced(
            defaults or PropagationParameters(), forced_frequency_mhz, forced_erp_watts
        )
        return ParameterSet(params, None, [])

    path = Path(file_path)
    warnings: list[str] = []
    try:
        text = path.read_text(encoding="utf-8")
        fields, pattern_name = parse_parameters(text.splitlines())
        params = PropagationParameters(**fields)
    except (OSError, ValueError, ValidationError) as e:
        if isinstance(e, FileNotFoundError):
            reason = "not found"
        elif isinstance(e, ValidationError):
            reason = f"{e.error_count()} invalid values"
        elif isinstance(e, OSError):
            reason = f"unreadable ({type(e).__name__})"
        else:
            reason = str(e)
        if strict:
            raise ConfigurationError(path.name, reason) from e
        message = f"Parameter file {path.name}: {reason}; using default parameters"
        logger.warning(message)
        warnings.append(message)
        params = _apply_forced(FILE_DEFAULTS, forced_frequency_mhz, forced_erp_watts)
        return ParameterSet(params, None, warnings)

    pattern = None
    if pattern_name is not None:
        pattern_path = Path(pattern_name)
        if not pattern_path.is_absolute():
            pattern_path = path.parent / pattern_path
        if pattern_path.is_file():
            pattern = read_pattern_csv(pattern_path)
        elif strict:
            raise ConfigurationError(pattern_path.name, "pattern file not found")
        else:
            message = f"Antenna pattern {pattern_path.name} not found; using none"
            logger.warning(message)
            warnings.append(message)

    params = _apply_forced(params, forced_frequency_mhz, forced_erp_watts)
    logger.debug(
        "Parameters from %s: %.1f MHz, ERP %.1f W",
        path.name,
        params.frequency_mhz,
        params.erp_watts,
    )
    return ParameterSet(params, pattern, warnings)


def format_parameters(
    params: PropagationParameters, pattern_name: str | None = None
) -> str:
    """Render parameters in the ``.lrp`` layout, commented per line."""
    lines = [
        f"{params.dielectric:.3f}\t; Earth Dielectric Constant (Relative permittivity)",
        f"{params.conductivity:.3f}\t; Earth Conductivity (Siemens per meter)",
        f"{params.refractivity:.3f}\t; Atmospheric Bending Constant (N-units)",
        f"{params.frequency_mhz:.3f}\t; Frequency in MHz (20 MHz to 20 GHz)",
        f"{params.climate}\t; Radio Climate",
        f"{params.polarization}\t; Polarization (0 = Horizontal, 1 = Vertical)",
        f"{params.confidence:.2f}\t; Fraction of situations",
        f"{params.reliability:.2f}\t; Fraction of time",
        f"{params.erp_watts:.2f}\t; Effective Radiated Power in Watts",
    ]
    if pattern_name is not None:
        lines.append(f"{pattern_name}\t; Antenna pattern file")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Color files
# ---------------------------------------------------------------------------
def read_color_file(file_path: Path | str, mode: SignalMode) -> ColorTable | None:
    """Read a contour color file; None when it does not exist or is empty.

    Raises:
        ConfigurationError: File exists but cannot be read
    """
    path = Path(file_path)
    if not path.is_file():
        return None
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(path.name, f"unreadable ({type(e).__name__})") from e
    table = parse_color_lines(
        text.splitlines(), clamp=mode is not SignalMode.POWER_DBM
    )
    if table is None:
        logger.warning("Color file %s defines no levels; using defaults", path.name)
    else:
        logger.debug("Color file %s: %d levels", path.name, len(table))
    return table


def write_color_file(
    file_path: Path | str, table: ColorTable, mode: SignalMode
) -> Path:
    path = Path(file_path)
    path.write_text(format_color_table(table, mode), encoding="utf-8")
    return path
