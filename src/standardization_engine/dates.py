"""
Date inference - detects date-like text columns and converts them to
``pl.Date`` under a single, majority-voted format per column.

Cells that would need a different format, that are ambiguous without the
column's format to settle them, or that are out of range are never guessed:
they stay as raw text (held out of the typed column) and are flagged.
"""

import logging
import re
from collections import Counter
from datetime import date
from typing import Dict, List, NamedTuple, Optional, Pattern, Sequence, Tuple, Union

import polars as pl
from opentelemetry import trace

from standardization_engine.errors import DateFormatError
from standardization_engine.report import (
    ChangeRecord,
    CleaningReport,
    Reason,
    Stage,
    StageReport,
    StageWarning,
)
from standardization_engine.rules import DateFormat, StandardizationConfig
from standardization_engine.table import ColumnKind, Table, map_columns

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MONTHS: Dict[str, int] = {}
for _number, _name in enumerate(
    [
        "january",
        "february",
        "march",
        "april",
        "may",
        "june",
        "july",
        "august",
        "september",
        "october",
        "november",
        "december",
    ],
    start=1,
):
    MONTHS[_name] = _number
    MONTHS[_name[:3]] = _number
MONTHS["sept"] = 9

_MONTH_NAMES = "|".join(sorted(MONTHS, key=len, reverse=True))

# directive -> (field, regex)
_DIRECTIVES: Dict[str, Tuple[str, str]] = {
    "%Y": ("year", r"(?P<year>\d{4})"),
    "%m": ("month", r"(?P<month>\d{1,2})"),
    "%d": ("day", r"(?P<day>\d{1,2})"),
    "%B": ("month", rf"(?P<month_name>{_MONTH_NAMES})\.?"),
    "%b": ("month", rf"(?P<month_name>{_MONTH_NAMES})\.?"),
}

_TOKEN = re.compile(r"%.")
_SPACE = re.compile(r"\s+")


def _literal(text: str) -> str:
    return r"\s+".join(re.escape(chunk) for chunk in _SPACE.split(text))


def compile_pattern(pattern: str) -> Pattern[str]:
    """
    Turn a strptime-style layout into a full-match regex with named groups.

    Raises:
        DateFormatError: On unsupported or repeated directives, or when the
            layout lacks a year, month or day
    """
    parts: List[str] = []
    fields = set()
    position = 0
    for token in _TOKEN.finditer(pattern):
        directive = token.group(0)
        if directive not in _DIRECTIVES:
            raise DateFormatError(f"unsupported directive {directive!r} in {pattern!r}")
        field, regex = _DIRECTIVES[directive]
        if field in fields:
            raise DateFormatError(f"repeated {field} directive in {pattern!r}")
        fields.add(field)
        parts.append(_literal(pattern[position : token.start()]))
        parts.append(regex)
        position = token.end()
    parts.append(_literal(pattern[position:]))

    missing = {"year", "month", "day"} - fields
    if missing:
        raise DateFormatError(f"{pattern!r} lacks {', '.join(sorted(missing))}")
    return re.compile("".join(parts), re.IGNORECASE)


class CellReading(NamedTuple):
    """How one cell reads under every configured format family."""

    parsed: Dict[str, date]
    invalid: Optional[str]

    @property
    def parses(self) -> bool:
        return bool(self.parsed)


class DateParser:
    """Reads cells against an ordered list of format families."""

    def __init__(self, formats: Sequence[DateFormat], year_range: Tuple[int, int]):
        self.order = [fmt.name for fmt in formats]
        self.families = [
            (fmt.name, [compile_pattern(p) for p in fmt.patterns]) for fmt in formats
        ]
        self.year_range = year_range

    def _check(self, match: "re.Match[str]") -> Union[date, str]:
        groups = match.groupdict()
        year = int(groups["year"])
        day = int(groups["day"])
        if groups.get("month_name"):
            month = MONTHS[groups["month_name"].lower()]
        else:
            month = int(groups["month"])

        low, high = self.year_range
        if not low <= year <= high:
            return f"year {year} outside {low}-{high}"
        if not 1 <= month <= 12:
            return f"month {month} out of range"
        if not 1 <= day <= 31:
            return f"day {day} out of range"
        try:
            return date(year, month, day)
        except ValueError:
            return f"day {day} does not exist in {year}-{month:02d}"

    def read(self, text: str) -> CellReading:
        text = text.strip()
        parsed: Dict[str, date] = {}
        invalid: Optional[str] = None
        for name, patterns in self.families:
            for regex in patterns:
                match = regex.fullmatch(text)
                if match is None:
                    continue
                outcome = self._check(match)
                if isinstance(outcome, date):
                    parsed[name] = outcome
                    break
                if invalid is None:
                    invalid = outcome
        return CellReading(parsed, invalid)

    def column_format(self, readings: Sequence[CellReading]) -> Optional[str]:
        """Majority vote over cells that parse under exactly one family."""
        votes = Counter(
            next(iter(reading.parsed)) for reading in readings if len(reading.parsed) == 1
        )
        if not votes:
            return None
        return max(self.order, key=lambda name: (votes.get(name, 0), -self.order.index(name)))


class _ColumnOutcome(NamedTuple):
    series: Optional[pl.Series]
    holdouts: Dict[int, str]
    changes: List[ChangeRecord]
    warnings: List[StageWarning]


def detect_date_columns(
    table: Table, parser: DateParser, threshold: float, exclude: Sequence[str] = ()
) -> List[str]:
    """Text columns where at least ``threshold`` of non-missing cells parse as dates."""
    detected = []
    for name in table.columns:
        if name in exclude or not table.is_text(name):
            continue
        cells = table.frame[name].drop_nulls().to_list()
        if not cells:
            continue
        parsing = sum(1 for cell in cells if parser.read(cell).parses)
        ratio = parsing / len(cells)
        logger.debug("Column %s: %.2f of cells parse as dates", name, ratio)
        if ratio >= threshold:
            detected.append(name)
    return detected


def _convert_column(table: Table, name: str, parser: DateParser) -> _ColumnOutcome:
    report = StageReport(stage=Stage.DATES)
    cells = table.frame[name].to_list()
    readings = {row: parser.read(cell) for row, cell in enumerate(cells) if cell is not None}
    fmt = parser.column_format(list(readings.values()))

    converted: List[Optional[date]] = [None] * len(cells)
    holdouts: Dict[int, str] = {}
    for row, reading in readings.items():
        raw = cells[row]
        if fmt is not None and fmt in reading.parsed:
            converted[row] = reading.parsed[fmt]
            report.record(row, name, raw, reading.parsed[fmt], Reason.DATE_CONVERTED, fmt)
            continue

        holdouts[row] = raw
        if len(reading.parsed) == 1:
            other = next(iter(reading.parsed))
            report.record(
                row,
                name,
                raw,
                raw,
                Reason.DATE_FORMAT_CONFLICT,
                f"parses only as {other}; column format is {fmt}",
            )
        elif reading.parsed:
            report.record(
                row,
                name,
                raw,
                raw,
                Reason.AMBIGUOUS_DATE,
                f"matches {', '.join(reading.parsed)}",
            )
        elif reading.invalid is not None:
            report.record(row, name, raw, raw, Reason.INVALID_DATE, reading.invalid)
        else:
            report.record(row, name, raw, raw, Reason.UNPARSEABLE_DATE)

    if fmt is None or len(holdouts) == len(readings):
        report.warn(
            "no_date_format", "no cell could be converted; column left as text", column=name
        )
        return _ColumnOutcome(None, {}, report.changes, report.warnings)

    logger.debug("Column %s converted as %s with %d holdouts", name, fmt, len(holdouts))
    series = pl.Series(name, converted, dtype=pl.Date)
    return _ColumnOutcome(series, holdouts, report.changes, report.warnings)


def infer_dates(
    table: Table,
    candidate_columns: Optional[Sequence[str]] = None,
    config: Optional[StandardizationConfig] = None,
) -> Tuple[Table, CleaningReport]:
    """
    Convert date-like text columns to dates.

    Args:
        table: Table to convert
        candidate_columns: Columns to convert; when omitted the configured
            candidates are used, and ``"auto"`` detects them
        config: Engine configuration (defaults apply when omitted)

    Returns:
        New Table with converted columns of kind ``date`` and a report

    Raises:
        DateFormatError: If a configured format is malformed
    """
    config = config or StandardizationConfig()
    report = StageReport(stage=Stage.DATES)
    parser = DateParser(config.date_formats, config.date_plausible_year_range)

    if candidate_columns is None and config.date_candidate_columns != "auto":
        candidate_columns = list(config.date_candidate_columns)

    with tracer.start_as_current_span(
        "stage.infer_dates",
        attributes={"rows": table.height, "auto_detect": candidate_columns is None},
    ) as span:
        if candidate_columns is None:
            targets = detect_date_columns(
                table, parser, config.date_detection_threshold, config.label_columns
            )
        else:
            targets = []
            for name in candidate_columns:
                if name not in table:
                    report.warn(
                        "candidate_absent", "date candidate not present in table", column=name
                    )
                elif table.kind(name) == ColumnKind.DATE:
                    continue
                elif not table.is_text(name):
                    report.warn(
                        "candidate_not_text",
                        f"column has kind {table.kind(name).value}; not converted",
                        column=name,
                    )
                elif name not in targets:
                    targets.append(name)
        span.set_attribute("columns", len(targets))

        outcomes = map_columns(
            lambda name: _convert_column(table, name, parser), targets, config.max_workers
        )

    replaced = {}
    kinds = {}
    holdouts = {}
    for name, outcome in zip(targets, outcomes):
        report.changes.extend(outcome.changes)
        report.warnings.extend(outcome.warnings)
        if outcome.series is not None:
            replaced[name] = outcome.series
            kinds[name] = ColumnKind.DATE
            holdouts[name] = outcome.holdouts

    logger.info(
        "Date inference converted %d of %d candidate columns (%d cells flagged)",
        len(replaced),
        len(targets),
        sum(1 for change in report.changes if change.reason.is_flag),
    )
    return table.replace_columns(replaced, kinds, holdouts), CleaningReport.single(report)
