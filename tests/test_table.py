"""Tests for the Table model and cleaning reports."""

from datetime import date

import polars as pl
import pytest

from standardization_engine import CleaningReport, ColumnKind, Reason, Table
from standardization_engine.report import Stage, StageReport
from standardization_engine.table import map_columns


def test_kinds_follow_dtypes() -> None:
    """Test the kind assigned to each ingested dtype."""
    table = Table.from_frame(
        pl.DataFrame(
            {
                "name": ["a"],
                "count": [1],
                "ratio": [0.5],
                "flag": [True],
                "seen": [date(2020, 1, 1)],
                "group": pl.Series(["x"], dtype=pl.Categorical),
            }
        )
    )

    assert dict(table.kinds) == {
        "name": ColumnKind.TEXT,
        "count": ColumnKind.NUMERIC,
        "ratio": ColumnKind.NUMERIC,
        "flag": ColumnKind.LOGICAL,
        "seen": ColumnKind.DATE,
        "group": ColumnKind.CATEGORICAL,
    }
    assert table.frame["group"].dtype == pl.Utf8
    assert table.is_text("group")
    assert not table.is_text("count")


def test_blank_cells_become_missing() -> None:
    """Test that empty and whitespace-only strings are read as missing."""
    table = Table.from_columns({"note": ["", "  ", "x"]})

    assert table.frame["note"].to_list() == [None, None, "x"]
    assert Table.from_frame(pl.DataFrame({"note": [""]}), blank_as_missing=False).cell(
        0, "note"
    ) == ""


def test_holdouts_merge_into_values() -> None:
    """Test the cell-level view of a typed column with held-out text."""
    frame = pl.DataFrame({"seen": [date(2020, 1, 1), None]})
    table = Table(frame, {"seen": ColumnKind.DATE}, {"seen": {1: "soon"}})

    assert table.values("seen") == [date(2020, 1, 1), "soon"]
    assert table.cell(1, "seen") == "soon"
    assert table.frame["seen"][1] is None
    assert dict(table.holdouts("other")) == {}


def test_replace_columns_returns_new_table() -> None:
    """Test that tables are never modified in place."""
    table = Table.from_columns({"a": ["x"], "b": ["y"]})
    replaced = table.replace_columns({"a": pl.Series(["z"])}, {"a": ColumnKind.CATEGORICAL})

    assert table.frame["a"].to_list() == ["x"]
    assert table.kind("a") == ColumnKind.TEXT
    assert replaced.frame["a"].to_list() == ["z"]
    assert replaced.kind("a") == ColumnKind.CATEGORICAL
    assert replaced.columns == ["a", "b"]

    with pytest.raises(TypeError):
        table.kinds["a"] = ColumnKind.DATE  # type: ignore


def test_rename_carries_kinds_and_holdouts() -> None:
    """Test positional renaming."""
    table = Table(
        pl.DataFrame({"Seen": [None], "N": [1]}).cast({"Seen": pl.Date}),
        {"Seen": ColumnKind.DATE},
        {"Seen": {0: "later"}},
    )
    renamed = table.rename(["seen", "n"])

    assert renamed.columns == ["seen", "n"]
    assert renamed.kind("seen") == ColumnKind.DATE
    assert renamed.values("seen") == ["later"]
    assert "Seen" not in renamed

    with pytest.raises(ValueError):
        table.rename(["only_one"])


def test_map_columns_keeps_column_order() -> None:
    """Test that threaded results come back in input order."""
    names = [f"c{i}" for i in range(8)]
    def work(name: str) -> str:
        return name.upper()

    assert map_columns(work, names, max_workers=4) == [name.upper() for name in names]
    assert map_columns(work, names) == [name.upper() for name in names]


def test_report_accumulates_in_order() -> None:
    """Test combining stage reports and exporting them."""
    values = StageReport(stage=Stage.VALUES)
    values.record(0, "sex", " M", "m", Reason.STANDARDIZED)
    values.record(2, "city", "x@y", "x@y", Reason.DISALLOWED_CHARACTER, "@")
    dates = StageReport(stage=Stage.DATES)
    dates.record(1, "seen", "2020-01-01", date(2020, 1, 1), Reason.DATE_CONVERTED, "iso")
    dates.warn("candidate_absent", column="visit")

    report = CleaningReport.single(values).extend(CleaningReport.single(dates))

    assert [c.row for c in report.changes] == [0, 2, 1]
    assert [f.column for f in report.flags()] == ["city"]
    assert report.flags(Reason.UNMAPPED) == []
    assert report.changes[2].altered
    assert not report.changes[1].altered
    assert not report.empty

    frame = report.to_frame()
    assert frame["after"].to_list() == ["m", "x@y", "2020-01-01"]
    assert frame["stage"].to_list() == ["standardize_values", "standardize_values", "infer_dates"]
    assert report.warnings_frame()["code"].to_list() == ["candidate_absent"]


def test_empty_report_frames_keep_schema() -> None:
    """Test that an empty report still exports typed columns."""
    report = CleaningReport.single(StageReport(stage=Stage.NAMES))

    assert report.empty
    assert report.to_frame().schema["row"] == pl.Int64
    assert report.warnings_frame().height == 0
