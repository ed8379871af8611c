"""
Cleaning report models.

Every stage returns a CleaningReport holding one StageReport. Reports are
append-only: combining them concatenates stage entries, nothing is replaced.
"""

from enum import Enum
from typing import Any, List, Optional

import polars as pl
from pydantic import BaseModel, ConfigDict, Field


class Stage(str, Enum):
    """Pipeline stages, in execution order."""

    NAMES = "normalize_names"
    VALUES = "standardize_values"
    DATES = "infer_dates"
    WORDLIST = "apply_wordlist"


class Reason(str, Enum):
    """Why a cell appears in a report."""

    STANDARDIZED = "standardized"
    DISALLOWED_CHARACTER = "disallowed_character"
    DATE_CONVERTED = "date_converted"
    AMBIGUOUS_DATE = "ambiguous_date"
    INVALID_DATE = "invalid_date"
    DATE_FORMAT_CONFLICT = "date_format_conflict"
    UNPARSEABLE_DATE = "unparseable_date"
    CORRECTED = "corrected"
    UNMAPPED = "unmapped"

    @property
    def is_flag(self) -> bool:
        return self in FLAG_REASONS


FLAG_REASONS = frozenset(
    {
        Reason.DISALLOWED_CHARACTER,
        Reason.AMBIGUOUS_DATE,
        Reason.INVALID_DATE,
        Reason.DATE_FORMAT_CONFLICT,
        Reason.UNPARSEABLE_DATE,
        Reason.UNMAPPED,
    }
)


class ChangeRecord(BaseModel):
    """One touched cell: altered, flagged, or both."""

    model_config = ConfigDict(frozen=True)

    stage: Stage
    row: int
    column: str
    before: Any = None
    after: Any = None
    reason: Reason
    detail: Optional[str] = None

    @property
    def altered(self) -> bool:
        return self.before != self.after


class StageWarning(BaseModel):
    """A structural note that is not tied to a single cell."""

    model_config = ConfigDict(frozen=True)

    stage: Stage
    code: str
    column: Optional[str] = None
    row: Optional[int] = None
    detail: str = ""


class StageReport(BaseModel):
    """Changes and warnings produced by one stage invocation."""

    stage: Stage
    changes: List[ChangeRecord] = Field(default_factory=list)
    warnings: List[StageWarning] = Field(default_factory=list)

    def record(
        self,
        row: int,
        column: str,
        before: Any,
        after: Any,
        reason: Reason,
        detail: Optional[str] = None,
    ) -> None:
        self.changes.append(
            ChangeRecord(
                stage=self.stage,
                row=row,
                column=column,
                before=before,
                after=after,
                reason=reason,
                detail=detail,
            )
        )

    def warn(
        self,
        code: str,
        detail: str = "",
        column: Optional[str] = None,
        row: Optional[int] = None,
    ) -> None:
        self.warnings.append(
            StageWarning(stage=self.stage, code=code, column=column, row=row, detail=detail)
        )

    @property
    def empty(self) -> bool:
        return not self.changes and not self.warnings


class CleaningReport(BaseModel):
    """Ordered, append-only log of stage reports for one run."""

    stages: List[StageReport] = Field(default_factory=list)

    @classmethod
    def single(cls, stage_report: StageReport) -> "CleaningReport":
        return cls(stages=[stage_report])

    def extend(self, other: "CleaningReport") -> "CleaningReport":
        """Return a new report with ``other``'s stages appended after ours."""
        return CleaningReport(stages=[*self.stages, *other.stages])

    @property
    def changes(self) -> List[ChangeRecord]:
        return [change for stage in self.stages for change in stage.changes]

    @property
    def warnings(self) -> List[StageWarning]:
        return [warning for stage in self.stages for warning in stage.warnings]

    @property
    def empty(self) -> bool:
        return all(stage.empty for stage in self.stages)

    def flags(self, reason: Optional[Reason] = None) -> List[ChangeRecord]:
        """Cell records that flag an anomaly, optionally of one reason."""
        return [
            change
            for change in self.changes
            if change.reason.is_flag and (reason is None or change.reason == reason)
        ]

    def for_stage(self, stage: Stage) -> List[StageReport]:
        return [entry for entry in self.stages if entry.stage == stage]

    def to_frame(self) -> pl.DataFrame:
        """Export cell records as a table; before/after are rendered as text."""
        return pl.DataFrame(
            {
                "stage": [c.stage.value for c in self.changes],
                "row": [c.row for c in self.changes],
                "column": [c.column for c in self.changes],
                "before": [_render(c.before) for c in self.changes],
                "after": [_render(c.after) for c in self.changes],
                "reason": [c.reason.value for c in self.changes],
                "detail": [c.detail for c in self.changes],
            },
            schema={
                "stage": pl.Utf8,
                "row": pl.Int64,
                "column": pl.Utf8,
                "before": pl.Utf8,
                "after": pl.Utf8,
                "reason": pl.Utf8,
                "detail": pl.Utf8,
            },
        )

    def warnings_frame(self) -> pl.DataFrame:
        return pl.DataFrame(
            {
                "stage": [w.stage.value for w in self.warnings],
                "code": [w.code for w in self.warnings],
                "column": [w.column for w in self.warnings],
                "row": [w.row for w in self.warnings],
                "detail": [w.detail for w in self.warnings],
            },
            schema={
                "stage": pl.Utf8,
                "code": pl.Utf8,
                "column": pl.Utf8,
                "row": pl.Int64,
                "detail": pl.Utf8,
            },
        )


def _render(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
