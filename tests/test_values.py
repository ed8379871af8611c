"""Tests for value standardization."""

import polars as pl
import pytest

from standardization_engine import Reason, StandardizationConfig, Table, standardize_values
from standardization_engine.values import disallowed_pattern


@pytest.fixture
def messy_table() -> Table:
    """Create a table with untidy text values."""
    return Table.from_frame(
        pl.DataFrame(
            {
                "sex": ["  Male ", "FEMALE", None, "female", "Male#"],
                "city": ["Paris", "o'Neil town", "x@y", "Zürich", "st. louis"],
                "legend": ["  Case A ", "Case B", "Case C", "Case D", "Case E"],
                "age": [34, 51, 28, 40, 63],
            }
        )
    )


def test_trim_and_lowercase(messy_table: Table) -> None:
    """Test trimming and lowercasing of text columns."""
    result, _ = standardize_values(messy_table, {"legend"})

    assert result.frame["sex"].to_list() == ["male", "female", None, "female", "male#"]
    assert result.frame["city"].to_list() == ["paris", "o'neil town", "x@y", "zürich", "st. louis"]


def test_label_and_typed_columns_untouched(messy_table: Table) -> None:
    """Test that label columns and numeric columns pass through."""
    result, report = standardize_values(messy_table, {"legend"})

    assert result.frame["legend"].to_list() == messy_table.frame["legend"].to_list()
    assert result.frame["age"].to_list() == [34, 51, 28, 40, 63]
    assert {change.column for change in report.changes} == {"sex", "city"}


def test_disallowed_characters_flagged(messy_table: Table) -> None:
    """Test that disallowed characters are flagged but kept by default."""
    _, report = standardize_values(messy_table, {"legend"})

    flags = report.flags(Reason.DISALLOWED_CHARACTER)
    assert [(f.column, f.row, f.detail) for f in flags] == [("sex", 4, "#"), ("city", 2, "@")]
    assert flags[0].before == "Male#"
    assert flags[0].after == "male#"


def test_strict_policy_replaces_with_sentinel(messy_table: Table) -> None:
    """Test that strict mode turns flagged cells into the sentinel."""
    config = StandardizationConfig(strict_character_policy=True, unmapped_sentinel="unknown")
    result, report = standardize_values(messy_table, {"legend"}, config)

    assert result.frame["sex"][4] == "unknown"
    assert result.frame["city"][2] == "unknown"
    assert all(f.after == "unknown" for f in report.flags())


def test_one_record_per_touched_cell(messy_table: Table) -> None:
    """Test that every altered or flagged cell has exactly one record."""
    result, report = standardize_values(messy_table, {"legend"})

    touched = set()
    for name in ("sex", "city"):
        before = messy_table.frame[name].to_list()
        after = result.frame[name].to_list()
        touched |= {(row, name) for row, (b, a) in enumerate(zip(before, after)) if b != a}
    touched |= {(f.row, f.column) for f in report.flags()}

    records = [(change.row, change.column) for change in report.changes]
    assert len(records) == len(set(records))
    assert set(records) == touched
    assert all(0 <= row < messy_table.height for row, _ in records)


def test_unchanged_cells_not_reported() -> None:
    """Test that clean values produce an empty report."""
    table = Table.from_columns({"sex": ["male", "female", None]})
    _, report = standardize_values(table)

    assert report.changes == []


def test_whitespace_only_becomes_missing() -> None:
    """Test that a cell emptied by trimming becomes missing, not ''."""
    table = Table(pl.DataFrame({"note": ["   ", "ok"]}))
    result, report = standardize_values(table)

    assert result.frame["note"].to_list() == [None, "ok"]
    assert report.changes[0].after is None



def test_decomposed_accents_are_composed() -> None:
    """Test that combining accents are composed rather than flagged."""
    table = Table.from_columns({"city": ["Zu\u0308rich", "z\u00fcrich"]})
    result, report = standardize_values(table)

    assert result.frame["city"].to_list() == ["z\u00fcrich", "z\u00fcrich"]
    assert report.flags(Reason.DISALLOWED_CHARACTER) == []
    assert [change.row for change in report.changes] == [0]


def test_absent_label_column_warns() -> None:
    """Test that naming a missing label column is reported."""
    table = Table.from_columns({"sex": ["m"]})
    _, report = standardize_values(table, {"caption"})

    assert [(w.code, w.column) for w in report.warnings] == [("label_column_absent", "caption")]


def test_input_not_mutated(messy_table: Table) -> None:
    """Test that the input table keeps its values."""
    before = messy_table.frame.to_dicts()
    standardize_values(messy_table, {"legend"})

    assert messy_table.frame.to_dicts() == before


def test_parallel_columns_match_sequential(messy_table: Table) -> None:
    """Test that worker threads do not change the output or report order."""
    sequential, seq_report = standardize_values(messy_table, {"legend"})
    parallel, par_report = standardize_values(
        messy_table, {"legend"}, StandardizationConfig(max_workers=4)
    )

    assert parallel.frame.to_dicts() == sequential.frame.to_dicts()
    assert par_report.to_frame().to_dicts() == seq_report.to_frame().to_dicts()


def test_allowed_punctuation_configurable() -> None:
    """Test that allowed punctuation is read from the configuration."""
    table = Table.from_columns({"code": ["a+b", "a/b"]})
    config = StandardizationConfig(allowed_punctuation="+")
    _, report = standardize_values(table, config=config)

    assert [(f.row, f.detail) for f in report.flags()] == [(1, "/")]
    assert disallowed_pattern("+").startswith("[^")
