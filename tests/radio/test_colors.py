"""Tests for default color tables and the ``level: r, g, b`` text format."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from domain.coverage.colors import (
    COLOR_FILE_SUFFIX,
    DBM_COLORS,
    LOSS_COLORS,
    SIGNAL_COLORS,
    default_table,
    format_color_table,
    parse_color_lines,
    unit_label,
)
from domain.coverage.value_objects import ColorTable, SignalMode
from shared.constants import MAX_COLOR_LEVELS


def test_default_tables_per_mode():
    assert default_table(SignalMode.PATH_LOSS) is LOSS_COLORS
    assert default_table(SignalMode.FIELD_STRENGTH) is SIGNAL_COLORS
    assert default_table(SignalMode.POWER_DBM) is DBM_COLORS
    assert default_table(SignalMode.LOS) is None


def test_default_table_ordering():
    assert list(LOSS_COLORS.thresholds) == sorted(LOSS_COLORS.thresholds)
    assert list(SIGNAL_COLORS.thresholds) == sorted(
        SIGNAL_COLORS.thresholds, reverse=True
    )
    assert DBM_COLORS.thresholds[-1] == -150


def test_parse_skips_comments_and_malformed_lines():
    lines = [
        "; header comment",
        "",
        "80: 255, 0, 0   ; strongest",
        "not a level",
        "90: 1, 2",
        "100: 300, -5, 7",
    ]

    table = parse_color_lines(lines)

    assert [(c.level, c.rgb) for c in table.levels] == [
        (80, (255, 0, 0)),
        (100, (255, 0, 7)),
    ]


def test_parse_clamps_levels_unless_disabled():
    assert parse_color_lines(["-20: 1, 2, 3"]).levels[0].level == 0
    assert parse_color_lines(["-20: 1, 2, 3"], clamp=False).levels[0].level == -20


def test_parse_reads_at_most_32_levels():
    lines = [f"{i}: 0, 0, 0" for i in range(40)]

    table = parse_color_lines(lines)

    assert len(table) == MAX_COLOR_LEVELS


def test_parse_empty_returns_none():
    assert parse_color_lines(["; nothing here"]) is None


def test_format_is_parseable():
    text = format_color_table(DBM_COLORS, SignalMode.POWER_DBM)

    assert text.startswith("; Contour color definitions (dBm)")
    assert parse_color_lines(text.splitlines(), clamp=False) == DBM_COLORS


def test_color_table_rejects_empty_and_oversized():
    with pytest.raises(ValidationError):
        ColorTable(levels=())
    with pytest.raises(ValidationError):
        ColorTable.from_rows([(i, 0, 0, 0) for i in range(MAX_COLOR_LEVELS + 1)])


def test_suffixes_and_units():
    assert COLOR_FILE_SUFFIX[SignalMode.PATH_LOSS] == ".lcf"
    assert COLOR_FILE_SUFFIX[SignalMode.FIELD_STRENGTH] == ".scf"
    assert COLOR_FILE_SUFFIX[SignalMode.POWER_DBM] == ".dcf"
    assert unit_label(SignalMode.FIELD_STRENGTH) == "dBuV/m"
    assert unit_label(SignalMode.LOS) == ""
