"""Default contour color tables and the ``level: r, g, b`` text format.

Three tables exist, one per rendered signal unit: field strength in
dBuV/m (descending thresholds), path loss in dB (ascending) and received
power in dBm (descending). Text parsing lives here so both the file
readers and tests can share it; reading files is left to infrastructure.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from domain.coverage.value_objects import ColorTable, SignalMode
from shared.constants import MAX_COLOR_LEVELS

logger = logging.getLogger(__name__)

SIGNAL_COLORS = ColorTable.from_rows(
    [
        (128, 255, 0, 0),
        (118, 255, 165, 0),
        (108, 255, 206, 0),
        (98, 255, 255, 0),
        (88, 184, 255, 0),
        (78, 0, 255, 0),
        (68, 0, 208, 0),
        (58, 0, 196, 196),
        (48, 0, 148, 255),
        (38, 80, 80, 255),
        (28, 0, 38, 255),
        (18, 142, 63, 255),
        (8, 140, 0, 128),
    ]
)

LOSS_COLORS = ColorTable.from_rows(
    [
        (80, 255, 0, 0),
        (90, 255, 128, 0),
        (100, 255, 165, 0),
        (110, 255, 206, 0),
        (120, 255, 255, 0),
        (130, 184, 255, 0),
        (140, 0, 255, 0),
        (150, 0, 208, 0),
        (160, 0, 196, 196),
        (170, 0, 148, 255),
        (180, 80, 80, 255),
        (190, 0, 38, 255),
        (200, 142, 63, 255),
        (210, 196, 54, 255),
        (220, 255, 0, 255),
        (230, 255, 194, 204),
    ]
)

DBM_COLORS = ColorTable.from_rows(
    [
        (0, 255, 0, 0),
        (-10, 255, 128, 0),
        (-20, 255, 165, 0),
        (-30, 255, 206, 0),
        (-40, 255, 255, 0),
        (-50, 184, 255, 0),
        (-60, 0, 255, 0),
        (-70, 0, 208, 0),
        (-80, 0, 196, 196),
        (-90, 0, 148, 255),
        (-100, 80, 80, 255),
        (-110, 0, 38, 255),
        (-120, 142, 63, 255),
        (-130, 196, 54, 255),
        (-140, 255, 0, 255),
        (-150, 255, 194, 204),
    ]
)

# File extension conventionally used for each table's override file
COLOR_FILE_SUFFIX = {
    SignalMode.FIELD_STRENGTH: ".scf",
    SignalMode.PATH_LOSS: ".lcf",
    SignalMode.POWER_DBM: ".dcf",
}

_UNIT_LABEL = {
    SignalMode.FIELD_STRENGTH: "dBuV/m",
    SignalMode.PATH_LOSS: "dB",
    SignalMode.POWER_DBM: "dBm",
}


def default_table(mode: SignalMode) -> ColorTable | None:
    """Built-in table for a mode; None for LOS, which uses fixed colors."""
    if mode is SignalMode.FIELD_STRENGTH:
        return SIGNAL_COLORS
    if mode is SignalMode.PATH_LOSS:
        return LOSS_COLORS
    if mode is SignalMode.POWER_DBM:
        return DBM_COLORS
    return None


def parse_color_lines(lines: Iterable[str], clamp: bool = True) -> ColorTable | None:
    """Parse ``level: red, green, blue`` lines into a table.

    Text after ``;`` is a comment. Lines that do not hold four integers are
    skipped. Color components are clamped to 0..255; levels are clamped
    too unless ``clamp`` is False (dBm tables hold negative levels).
    At most 32 levels are read.

    Returns:
        ColorTable, or None when no line parsed
    """
    rows: list[tuple[int, int, int, int]] = []
    for raw in lines:
        text = raw.split(";", 1)[0].strip()
        if not text or ":" not in text:
            continue
        head, _, tail = text.partition(":")
        parts = [p.strip() for p in tail.split(",")]
        if len(parts) != 3:
            continue
        try:
            values = [int(head.strip())] + [int(p) for p in parts]
        except ValueError:
            continue
        level = max(0, min(255, values[0])) if clamp else values[0]
        r, g, b = (max(0, min(255, v)) for v in values[1:])
        rows.append((level, r, g, b))
        if len(rows) == MAX_COLOR_LEVELS:
            break
    if not rows:
        return None
    return ColorTable.from_rows(rows)


def format_color_table(table: ColorTable, mode: SignalMode) -> str:
    """Render a table in the editable text format, with a comment header."""
    unit = _UNIT_LABEL.get(mode, "level")
    header = [
        f"; Contour color definitions ({unit})",
        ";",
        f";    {unit}: red, green, blue",
        ";",
        f"; Up to {MAX_COLOR_LEVELS} levels may be defined.",
        ";",
    ]
    body = [
        f"{c.level:3d}: {c.red:3d}, {c.green:3d}, {c.blue:3d}" for c in table.levels
    ]
    return "\n".join(header + body) + "\n"


def unit_label(mode: SignalMode) -> str:
    return _UNIT_LABEL.get(mode, "")
