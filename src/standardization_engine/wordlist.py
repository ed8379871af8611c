"""
Wordlist store and spelling correction.

A wordlist is an ordered set of ``pattern -> canonical`` rules per column.
Lookups are exact on the trimmed, lowercased cell; the first pattern in
declaration order wins.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

import polars as pl
import yaml
from opentelemetry import trace
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from standardization_engine.errors import WordlistError
from standardization_engine.report import (
    ChangeRecord,
    CleaningReport,
    Reason,
    Stage,
    StageReport,
)
from standardization_engine.rules import MissingColumnPolicy, StandardizationConfig
from standardization_engine.table import ROW_INDEX, ColumnKind, Table, map_columns

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ANY_COLUMN = "*"

_KEY = "__key__"
_MAPPED = "__mapped__"
_FINAL = "__final__"


def lookup_key(value: str) -> str:
    return value.strip().lower()


class UnmatchedPolicy(str, Enum):
    """What happens to a non-missing cell no pattern matches."""

    SENTINEL = "sentinel"
    KEEP = "keep"


class WordlistEntry(BaseModel):
    pattern: str = Field(..., min_length=1)
    canonical: str = Field(..., min_length=1)

    @field_validator("pattern", "canonical")
    @classmethod
    def strip_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class WordlistRule(BaseModel):
    """Correction rules for one column, or ``"*"`` for every text column."""

    column: str = Field(..., min_length=1)
    entries: List[WordlistEntry] = Field(..., min_length=1)
    unmatched: Optional[UnmatchedPolicy] = Field(
        None, description="Defaults to 'sentinel' for column rules and 'keep' for '*'"
    )
    sentinel: Optional[str] = Field(None, description="Overrides the configured sentinel")

    @model_validator(mode="after")
    def default_policy(self) -> "WordlistRule":
        if self.unmatched is None:
            self.unmatched = (
                UnmatchedPolicy.KEEP if self.column == ANY_COLUMN else UnmatchedPolicy.SENTINEL
            )
        return self

    @property
    def is_global(self) -> bool:
        return self.column == ANY_COLUMN


class PatternConflict(NamedTuple):
    key: str
    kept: str
    ignored: str


class WordlistStore:
    """
    Holds correction rules per target column, in declaration order.

    Rules are loaded by the caller (from YAML, Polars frames, or DuckDB
    tables) before correction runs.
    """

    def __init__(self, rules: Iterable[WordlistRule] = ()):
        self._rules: Dict[str, WordlistRule] = {}
        for rule in rules:
            if rule.column in self._rules:
                raise WordlistError(f"more than one wordlist rule targets {rule.column!r}")
            self._rules[rule.column] = rule

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, column: object) -> bool:
        return column in self._rules

    @property
    def rules(self) -> List[WordlistRule]:
        return list(self._rules.values())

    @property
    def column_rules(self) -> List[WordlistRule]:
        return [rule for rule in self._rules.values() if not rule.is_global]

    @property
    def global_rule(self) -> Optional[WordlistRule]:
        return self._rules.get(ANY_COLUMN)

    def lookup(self, column: str) -> Tuple[Dict[str, str], List[PatternConflict]]:
        """
        Exact-match table for ``column``.

        Column entries come first, then ``"*"`` entries, then each canonical
        value mapping to itself. Earlier keys are never overwritten.
        """
        table: Dict[str, str] = {}
        conflicts: List[PatternConflict] = []
        chain = [rule for rule in (self._rules.get(column), self.global_rule) if rule is not None]

        for rule in chain:
            for entry in rule.entries:
                key = lookup_key(entry.pattern)
                canonical = entry.canonical.strip()
                kept = table.setdefault(key, canonical)
                if kept != canonical:
                    conflicts.append(PatternConflict(key, kept, canonical))
        for rule in chain:
            for entry in rule.entries:
                canonical = entry.canonical.strip()
                table.setdefault(lookup_key(canonical), canonical)
        return table, conflicts

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, object]]) -> "WordlistStore":
        """Build from rule dictionaries, e.g. the ``rules`` list of a YAML file."""
        rules = []
        for position, record in enumerate(records):
            if not isinstance(record, Mapping):
                raise WordlistError(f"wordlist rule {position} is not a mapping: {record!r}")
            try:
                rules.append(WordlistRule.model_validate(record))
            except ValidationError as exc:
                raise WordlistError(f"malformed wordlist rule {position}: {exc}") from exc
        return cls(rules)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "WordlistStore":
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict) or not isinstance(data.get("rules"), list):
            raise WordlistError(f"{path}: expected a mapping with a 'rules' list")
        return cls.from_records(data["rules"])

    @classmethod
    def from_frames(cls, frames: Mapping[str, pl.DataFrame]) -> "WordlistStore":
        """
        Build from one table per target column, each with ``pattern`` and
        ``canonical`` columns (one spreadsheet sheet per column).
        """
        rules = []
        for column, frame in frames.items():
            try:
                rules.append(
                    WordlistRule(column=column, entries=_entries_from_frame(column, frame))
                )
            except ValidationError as exc:
                raise WordlistError(f"malformed wordlist for {column!r}: {exc}") from exc
        return cls(rules)

    @classmethod
    def from_long_frame(cls, frame: pl.DataFrame) -> "WordlistStore":
        """Build from a single table with ``column``, ``pattern`` and ``canonical``."""
        if "column" not in frame.columns:
            raise WordlistError("wordlist table lacks a 'column' column")
        if frame["column"].null_count():
            raise WordlistError("wordlist table has rows without a target column")
        frames = {
            column: frame.filter(pl.col("column") == column)
            for column in frame["column"].unique(maintain_order=True).to_list()
        }
        return cls.from_frames(frames)

    @classmethod
    def from_storage(cls, storage, tables: Mapping[str, str]) -> "WordlistStore":  # type: ignore
        """
        Build from DuckDB tables.

        Args:
            storage: Connected DuckDBStorage
            tables: Target column -> table name holding its rules
        """
        return cls.from_frames(
            {column: storage.load_dataframe(table) for column, table in tables.items()}
        )

    def to_long_frame(self) -> pl.DataFrame:
        rows = [
            {"column": rule.column, "pattern": entry.pattern, "canonical": entry.canonical}
            for rule in self._rules.values()
            for entry in rule.entries
        ]
        return pl.DataFrame(
            rows, schema={"column": pl.Utf8, "pattern": pl.Utf8, "canonical": pl.Utf8}
        )


def _entries_from_frame(column: str, frame: pl.DataFrame) -> List[WordlistEntry]:
    absent = {"pattern", "canonical"} - set(frame.columns)
    if absent:
        raise WordlistError(f"wordlist for {column!r} lacks {', '.join(sorted(absent))}")
    if frame.height == 0:
        raise WordlistError(f"wordlist for {column!r} is empty")

    entries = []
    for position, row in enumerate(frame.select("pattern", "canonical").iter_rows(named=True)):
        pattern, canonical = row["pattern"], row["canonical"]
        if pattern is None or canonical is None:
            raise WordlistError(
                f"wordlist for {column!r} has an incomplete entry at row {position}"
            )
        entries.append(WordlistEntry(pattern=str(pattern), canonical=str(canonical)))
    return entries


class _Target(NamedTuple):
    column: str
    policy: UnmatchedPolicy
    sentinel: str


def _correct_column(
    table: Table, target: _Target, mapping: Dict[str, str]
) -> Tuple[pl.Series, List[ChangeRecord]]:
    name = target.column
    original = pl.col(name)
    sentinel_key = lookup_key(target.sentinel)

    if target.policy == UnmatchedPolicy.SENTINEL:
        fallback = pl.lit(target.sentinel, dtype=pl.Utf8)
    else:
        fallback = original

    work = (
        table.frame.select(original)
        .with_row_index(ROW_INDEX)
        .with_columns(original.str.strip_chars().str.to_lowercase().alias(_KEY))
        .with_columns(
            pl.col(_KEY)
            .replace_strict(mapping, default=pl.lit(None, dtype=pl.Utf8), return_dtype=pl.Utf8)
            .alias(_MAPPED)
        )
        .with_columns(
            pl.when(original.is_null())
            .then(None)
            .when(pl.col(_MAPPED).is_not_null())
            .then(pl.col(_MAPPED))
            .when(pl.col(_KEY) == sentinel_key)
            .then(original)
            .otherwise(fallback)
            .alias(_FINAL)
        )
    )

    unmapped = (
        pl.col(_MAPPED).is_null()
        & (pl.col(_KEY) != sentinel_key)
        & pl.lit(target.policy == UnmatchedPolicy.SENTINEL)
    )
    touched = work.filter(original.is_not_null() & (original.ne_missing(pl.col(_FINAL)) | unmapped))

    scratch = StageReport(stage=Stage.WORDLIST)
    for row in touched.iter_rows(named=True):
        if row[_MAPPED] is None:
            scratch.record(
                row[ROW_INDEX],
                name,
                row[name],
                row[_FINAL],
                Reason.UNMAPPED,
                f"no wordlist pattern matches {row[_KEY]!r}",
            )
        else:
            scratch.record(row[ROW_INDEX], name, row[name], row[_FINAL], Reason.CORRECTED)
    return work.get_column(_FINAL).alias(name), scratch.changes


def apply_wordlist(
    table: Table,
    wordlist: WordlistStore,
    config: Optional[StandardizationConfig] = None,
    label_columns: Optional[Sequence[str]] = None,
) -> Tuple[Table, CleaningReport]:
    """
    Recode text columns against the wordlist.

    Columns with their own rule are corrected with first-match-wins lookups;
    unmatched non-missing cells become the sentinel and are reported as
    unmapped. ``"*"`` entries back up every column rule and also apply to
    the remaining text columns outside ``label_columns``.

    Args:
        table: Table to correct
        wordlist: Correction rules
        config: Engine configuration (defaults apply when omitted)
        label_columns: Columns ``"*"`` rules never touch; defaults to the
            configured label columns

    Returns:
        New Table and a report with one record per corrected or unmapped cell

    Raises:
        WordlistError: If a rule targets an absent column and the policy is 'fail'
    """
    config = config or StandardizationConfig()
    if label_columns is None:
        label_columns = config.label_columns
    report = StageReport(stage=Stage.WORDLIST)

    targets: List[_Target] = []
    scoped = set()
    for rule in wordlist.column_rules:
        if rule.column not in table:
            if config.missing_wordlist_column == MissingColumnPolicy.FAIL:
                raise WordlistError(f"wordlist rule targets absent column {rule.column!r}")
            report.warn(
                "rule_column_absent", "wordlist rule targets an absent column", column=rule.column
            )
            continue
        if not table.is_text(rule.column):
            report.warn(
                "rule_column_not_text",
                f"column has kind {table.kind(rule.column).value}; not corrected",
                column=rule.column,
            )
            continue
        scoped.add(rule.column)
        targets.append(
            _Target(rule.column, rule.unmatched, rule.sentinel or config.unmapped_sentinel)
        )

    global_rule = wordlist.global_rule
    if global_rule is not None:
        for name in table.columns:
            if name in scoped or name in label_columns or not table.is_text(name):
                continue
            targets.append(
                _Target(
                    name, global_rule.unmatched, global_rule.sentinel or config.unmapped_sentinel
                )
            )

    order = {name: index for index, name in enumerate(table.columns)}
    targets.sort(key=lambda target: order[target.column])

    lookups = {}
    for target in targets:
        mapping, conflicts = wordlist.lookup(target.column)
        lookups[target.column] = mapping
        for conflict in conflicts:
            report.warn(
                "conflicting_pattern",
                f"pattern {conflict.key!r} maps to {conflict.kept!r}; "
                f"later mapping to {conflict.ignored!r} ignored",
                column=target.column,
            )

    with tracer.start_as_current_span(
        "stage.apply_wordlist",
        attributes={"rows": table.height, "columns": len(targets), "rules": len(wordlist)},
    ):
        results = map_columns(
            lambda target: _correct_column(table, target, lookups[target.column]),
            targets,
            config.max_workers,
        )

    replaced = {}
    kinds = {}
    for target, (series, changes) in zip(targets, results):
        replaced[target.column] = series
        if target.column in scoped:
            kinds[target.column] = ColumnKind.CATEGORICAL
        report.changes.extend(changes)

    unmapped = sum(1 for change in report.changes if change.reason == Reason.UNMAPPED)
    if unmapped:
        logger.warning("%d cells had no wordlist match and were set to the sentinel", unmapped)
    logger.info(
        "Wordlist applied to %d columns: %d cells corrected",
        len(targets),
        len(report.changes) - unmapped,
    )
    return table.replace_columns(replaced, kinds), CleaningReport.single(report)
