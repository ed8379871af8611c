"""
Column name normalization.

Headers are transliterated, lowercased and underscore-separated, then made
unique with deterministic numeric suffixes in original column order.
"""

import logging
import re
import unicodedata
from typing import Dict, List, Optional, Sequence, Tuple

from opentelemetry import trace

from standardization_engine.errors import NamingError
from standardization_engine.report import CleaningReport, Stage, StageReport
from standardization_engine.rules import ColumnNameRule
from standardization_engine.table import Table

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

EMPTY_NAME = "column"


def canonical_name(raw: str) -> str:
    """
    Normalize one header.

    >>> canonical_name("Date of Birth")
    'date_of_birth'
    >>> canonical_name("Âge (années)")
    'age_annees'
    """
    text = unicodedata.normalize("NFKD", str(raw))
    text = "".join(c for c in text if not unicodedata.combining(c))
    text = text.encode("ascii", "ignore").decode("ascii").lower()
    return _NON_ALNUM.sub("_", text).strip("_")


def _rule_lookup(rules: Sequence[ColumnNameRule]) -> Dict[str, Tuple[int, str]]:
    lookup: Dict[str, Tuple[int, str]] = {}
    for index, rule in enumerate(rules):
        # first rule for a pattern wins
        lookup.setdefault(canonical_name(rule.pattern), (index, canonical_name(rule.canonical)))
    return lookup


def normalize_names(
    table: Table, rules: Sequence[ColumnNameRule] = ()
) -> Tuple[Table, CleaningReport]:
    """
    Map every header to a unique canonical name.

    Args:
        table: Table whose headers are normalized
        rules: Optional header rules; a header matching a rule's pattern takes
            the rule's canonical name

    Returns:
        New Table and a report with ``renamed`` and ``name_collision`` warnings

    Raises:
        NamingError: If two columns bound to different rules share a canonical name
    """
    report = StageReport(stage=Stage.NAMES)
    lookup = _rule_lookup(rules)

    with tracer.start_as_current_span(
        "stage.normalize_names", attributes={"columns": len(table.columns), "rules": len(rules)}
    ):
        bases: List[str] = []
        bound: List[Optional[int]] = []
        empty: List[bool] = []
        for raw in table.columns:
            base = canonical_name(raw)
            match = lookup.get(base)
            if match is not None:
                bound.append(match[0])
                base = match[1]
            else:
                bound.append(None)
            empty.append(not base)
            if not base:
                base = EMPTY_NAME
            bases.append(base)

        bindings: Dict[str, Dict[int, str]] = {}
        for raw, base, rule_index in zip(table.columns, bases, bound):
            if rule_index is None:
                continue
            seen = bindings.setdefault(base, {})
            seen.setdefault(rule_index, raw)
            if len(seen) > 1:
                clashing = list(seen.values())
                raise NamingError(
                    f"columns {clashing!r} are bound to different rules resolving to {base!r}",
                    columns=clashing,
                )

        names: List[str] = []
        used = set()
        for raw, base, unusable in zip(table.columns, bases, empty):
            name = base
            if name in used:
                suffix = 2
                while f"{base}_{suffix}" in used:
                    suffix += 1
                name = f"{base}_{suffix}"
                report.warn(
                    "name_collision",
                    f"header {raw!r} collides with {base!r}; renamed to {name!r}",
                    column=name,
                )
            used.add(name)
            names.append(name)
            if unusable:
                report.warn(
                    "empty_name", f"header {raw!r} has no usable characters", column=name
                )
            if name != raw:
                report.warn("renamed", f"{raw!r} -> {name!r}", column=name)

    if report.warnings:
        logger.info("Normalized %d column names (%d warnings)", len(names), len(report.warnings))
    return table.rename(names), CleaningReport.single(report)
