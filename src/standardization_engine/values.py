"""
Value standardization - composes Unicode, trims, lowercases and flags
in text columns using Polars expressions.
"""

import logging
from typing import AbstractSet, List, Optional, Tuple

import polars as pl
from opentelemetry import trace

from standardization_engine.report import ChangeRecord, CleaningReport, Reason, Stage, StageReport
from standardization_engine.rules import StandardizationConfig
from standardization_engine.table import ROW_INDEX, Table, map_columns

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_AFTER = "__after__"
_BAD = "__bad__"
_FINAL = "__final__"


def disallowed_pattern(allowed_punctuation: str) -> str:
    """
    Regex matching one character outside letters, digits, ``_``, ``-`` and
    the allowed punctuation.
    """
    allowed = "".join(f"\\x{{{ord(c):x}}}" for c in sorted(set("_-" + allowed_punctuation)))
    return f"[^\\p{{L}}\\p{{N}}{allowed}]"


def _standardize_column(
    table: Table, name: str, pattern: str, sentinel: Optional[str]
) -> Tuple[pl.Series, List[ChangeRecord]]:
    # composed form so decomposed accents read as letters
    after = pl.col(name).str.normalize("NFC").str.strip_chars().str.to_lowercase()
    after = pl.when(after == "").then(None).otherwise(after)
    flagged = pl.col(_BAD).list.len() > 0

    work = (
        table.frame.select(pl.col(name))
        .with_row_index(ROW_INDEX)
        .with_columns(after.alias(_AFTER))
        .with_columns(pl.col(_AFTER).str.extract_all(pattern).alias(_BAD))
    )
    if sentinel is None:
        work = work.with_columns(pl.col(_AFTER).alias(_FINAL))
    else:
        work = work.with_columns(
            pl.when(flagged).then(pl.lit(sentinel)).otherwise(pl.col(_AFTER)).alias(_FINAL)
        )

    touched = work.filter(
        pl.col(name).is_not_null() & (pl.col(name).ne_missing(pl.col(_FINAL)) | flagged)
    )
    scratch = StageReport(stage=Stage.VALUES)
    for row in touched.iter_rows(named=True):
        bad = row[_BAD] or []
        if bad:
            scratch.record(
                row[ROW_INDEX],
                name,
                row[name],
                row[_FINAL],
                Reason.DISALLOWED_CHARACTER,
                "".join(dict.fromkeys(bad)),
            )
        else:
            scratch.record(row[ROW_INDEX], name, row[name], row[_FINAL], Reason.STANDARDIZED)

    return work.get_column(_FINAL).alias(name), scratch.changes


def standardize_values(
    table: Table,
    label_columns: AbstractSet[str] = frozenset(),
    config: Optional[StandardizationConfig] = None,
) -> Tuple[Table, CleaningReport]:
    """
    Trim and lowercase every text cell outside ``label_columns``.

    Cells holding characters outside the allowed set are flagged with the
    offending characters. They pass through unless the strict character
    policy is on, in which case they become the unmapped sentinel.

    Args:
        table: Table to standardize
        label_columns: Display-only columns left untouched
        config: Engine configuration (defaults apply when omitted)

    Returns:
        New Table and a report with one record per touched cell
    """
    config = config or StandardizationConfig()
    report = StageReport(stage=Stage.VALUES)

    for absent in sorted(set(label_columns) - set(table.columns)):
        report.warn("label_column_absent", "label column not present in table", column=absent)

    targets = [
        name for name in table.columns if name not in label_columns and table.is_text(name)
    ]
    pattern = disallowed_pattern(config.allowed_punctuation)
    sentinel = config.unmapped_sentinel if config.strict_character_policy else None

    with tracer.start_as_current_span(
        "stage.standardize_values",
        attributes={"rows": table.height, "columns": len(targets), "strict": sentinel is not None},
    ):
        results = map_columns(
            lambda name: _standardize_column(table, name, pattern, sentinel),
            targets,
            config.max_workers,
        )

    replaced = {}
    for name, (series, changes) in zip(targets, results):
        replaced[name] = series
        report.changes.extend(changes)
        logger.debug("Standardized column %s: %d cells touched", name, len(changes))

    logger.info(
        "Standardized %d text columns: %d cells touched, %d flagged",
        len(targets),
        len(report.changes),
        sum(1 for change in report.changes if change.reason.is_flag),
    )
    return table.replace_columns(replaced), CleaningReport.single(report)
