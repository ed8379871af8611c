"""
Data dictionary validation and Pandera contract export.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import pandera.polars as pa
import polars as pl
import yaml
from opentelemetry import trace
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from standardization_engine.errors import DictionaryError
from standardization_engine.table import ROW_INDEX, ColumnKind, Table

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# expected kind -> observed kinds that satisfy it
COMPATIBLE_KINDS: Dict[ColumnKind, frozenset] = {
    ColumnKind.TEXT: frozenset({ColumnKind.TEXT, ColumnKind.CATEGORICAL, ColumnKind.UNKNOWN}),
    ColumnKind.CATEGORICAL: frozenset({ColumnKind.TEXT, ColumnKind.CATEGORICAL}),
    ColumnKind.DATE: frozenset({ColumnKind.DATE}),
    ColumnKind.NUMERIC: frozenset({ColumnKind.NUMERIC}),
    ColumnKind.LOGICAL: frozenset({ColumnKind.LOGICAL}),
}

_PANDERA_DTYPES: Dict[ColumnKind, Any] = {
    ColumnKind.TEXT: pl.Utf8,
    ColumnKind.CATEGORICAL: pl.Utf8,
    ColumnKind.DATE: pl.Date,
    ColumnKind.LOGICAL: pl.Boolean,
}

_TRUE = {"true", "yes", "y", "1"}
_FALSE = {"false", "no", "n", "0", ""}


class ViolationRule(str, Enum):
    MISSING_COLUMN = "MissingColumn"
    TYPE_MISMATCH = "TypeMismatch"
    DISALLOWED_VALUE = "DisallowedValue"
    UNEXPECTED_COLUMN = "UnexpectedColumn"


class ColumnExpectation(BaseModel):
    """What the dictionary expects of one column."""

    name: str = Field(..., min_length=1)
    kind: ColumnKind = ColumnKind.UNKNOWN
    allowed_values: Optional[List[str]] = None
    required: bool = True

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("column name is blank")
        return v.strip()


class DictionarySpec(BaseModel):
    """Ordered set of column expectations."""

    columns: List[ColumnExpectation] = Field(default_factory=list)
    strict: bool = Field(False, description="Report columns the dictionary does not list")

    @model_validator(mode="after")
    def unique_names(self) -> "DictionarySpec":
        names = [column.name for column in self.columns]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate dictionary entries: {', '.join(duplicates)}")
        return self

    @classmethod
    def from_records(cls, records: List[Dict[str, Any]], strict: bool = False) -> "DictionarySpec":
        for position, record in enumerate(records):
            if not isinstance(record, Mapping):
                raise DictionaryError(
                    f"data dictionary entry {position} is not a mapping: {record!r}"
                )
        try:
            return cls(
                columns=[ColumnExpectation.model_validate(record) for record in records],
                strict=strict,
            )
        except ValidationError as exc:
            raise DictionaryError(f"malformed data dictionary: {exc}") from exc

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "DictionarySpec":
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict) or not isinstance(data.get("columns"), list):
            raise DictionaryError(f"{path}: expected a mapping with a 'columns' list")
        return cls.from_records(data["columns"], strict=bool(data.get("strict", False)))

    @classmethod
    def from_frame(
        cls, frame: pl.DataFrame, delimiter: str = ",", strict: bool = False
    ) -> "DictionarySpec":
        """
        Build from a table with one row per expected column.

        Args:
            frame: Columns ``name``, ``kind``, ``allowed_values`` and ``required``;
                only ``name`` is mandatory
            delimiter: Separator inside ``allowed_values``
            strict: Whether unlisted columns are violations
        """
        if "name" not in frame.columns:
            raise DictionaryError("data dictionary lacks a 'name' column")

        records = []
        for position, row in enumerate(frame.iter_rows(named=True)):
            if row["name"] is None:
                raise DictionaryError(f"data dictionary row {position} has no name")
            record: Dict[str, Any] = {"name": str(row["name"])}
            if row.get("kind") is not None:
                record["kind"] = str(row["kind"]).strip().lower()
            allowed = row.get("allowed_values")
            if allowed is not None and str(allowed).strip():
                record["allowed_values"] = [
                    value.strip() for value in str(allowed).split(delimiter) if value.strip()
                ]
            if row.get("required") is not None:
                record["required"] = _parse_flag(row["required"], position)
            records.append(record)
        return cls.from_records(records, strict=strict)

    def expectation(self, name: str) -> Optional[ColumnExpectation]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def to_schema(self) -> pa.DataFrameSchema:
        """
        Export the dictionary as a Pandera schema.

        Numeric and unknown kinds carry no dtype constraint since several
        Polars dtypes satisfy them.
        """
        columns: Dict[str, pa.Column] = {}
        for expectation in self.columns:
            checks = []
            if expectation.allowed_values is not None:
                checks.append(pa.Check.isin(expectation.allowed_values))
            columns[expectation.name] = pa.Column(
                _PANDERA_DTYPES.get(expectation.kind),
                nullable=True,
                required=expectation.required,
                checks=checks,
            )
        return pa.DataFrameSchema(columns=columns, strict=self.strict)


def _parse_flag(value: Any, position: int) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise DictionaryError(f"data dictionary row {position}: cannot read required={value!r}")


class Violation(BaseModel):
    """One dictionary violation; ``row`` is None for column-level violations."""

    row: Optional[int] = None
    column: str
    rule: ViolationRule
    detail: str = ""


class ValidationResult(BaseModel):
    violations: List[Violation] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.violations

    def by_rule(self, rule: ViolationRule) -> List[Violation]:
        return [violation for violation in self.violations if violation.rule == rule]

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame(
            {
                "row": [v.row for v in self.violations],
                "column": [v.column for v in self.violations],
                "rule": [v.rule.value for v in self.violations],
                "detail": [v.detail for v in self.violations],
            },
            schema={"row": pl.Int64, "column": pl.Utf8, "rule": pl.Utf8, "detail": pl.Utf8},
        )


def _render(value: Any) -> str:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _disallowed(table: Table, expectation: ColumnExpectation) -> List[Violation]:
    allowed = set(expectation.allowed_values or [])
    name = expectation.name
    held = table.holdouts(name)
    violations = []
    cells = table.frame.select(pl.col(name)).with_row_index(ROW_INDEX).drop_nulls(name)
    for row, value in cells.iter_rows():
        if row in held:
            continue
        if _render(value) not in allowed:
            violations.append(
                Violation(
                    row=row,
                    column=name,
                    rule=ViolationRule.DISALLOWED_VALUE,
                    detail=f"{_render(value)!r} is not an allowed value",
                )
            )
    return violations


def validate(table: Table, dictionary: DictionarySpec) -> ValidationResult:
    """
    Check a table against a data dictionary without modifying it.

    Args:
        table: Table to check
        dictionary: Expected columns, kinds and allowed values

    Returns:
        ValidationResult listing every violation; ``passed`` when there are none
    """
    result = ValidationResult()

    with tracer.start_as_current_span(
        "stage.validate",
        attributes={"rows": table.height, "expectations": len(dictionary.columns)},
    ) as span:
        for expectation in dictionary.columns:
            name = expectation.name
            if name not in table:
                if expectation.required:
                    result.violations.append(
                        Violation(
                            column=name,
                            rule=ViolationRule.MISSING_COLUMN,
                            detail="required column is absent",
                        )
                    )
                continue

            observed = table.kind(name)
            compatible = COMPATIBLE_KINDS.get(expectation.kind)
            if compatible is not None and observed not in compatible:
                result.violations.append(
                    Violation(
                        column=name,
                        rule=ViolationRule.TYPE_MISMATCH,
                        detail=f"expected {expectation.kind.value}, found {observed.value}",
                    )
                )
            if compatible is not None:
                for row, raw in sorted(table.holdouts(name).items()):
                    result.violations.append(
                        Violation(
                            row=row,
                            column=name,
                            rule=ViolationRule.TYPE_MISMATCH,
                            detail=f"{raw!r} was not converted to {observed.value}",
                        )
                    )

            if expectation.allowed_values is not None:
                result.violations.extend(_disallowed(table, expectation))

        if dictionary.strict:
            listed = {column.name for column in dictionary.columns}
            for name in table.columns:
                if name not in listed:
                    result.violations.append(
                        Violation(
                            column=name,
                            rule=ViolationRule.UNEXPECTED_COLUMN,
                            detail="column is not in the data dictionary",
                        )
                    )

        span.set_attribute("violations", len(result.violations))

    if result.passed:
        logger.info("Dictionary validation passed for %d columns", len(dictionary.columns))
    else:
        logger.warning("Dictionary validation found %d violations", len(result.violations))
    return result


def enforce(table: Table, dictionary: DictionarySpec) -> pl.DataFrame:
    """
    Validate the table's frame against the dictionary's Pandera schema.

    Returns:
        The validated frame

    Raises:
        pandera.errors.SchemaErrors: If any check fails (collected lazily)
    """
    with tracer.start_as_current_span(
        "schema.enforce", attributes={"rows": table.height, "columns": len(table.columns)}
    ):
        return dictionary.to_schema().validate(table.frame, lazy=True)
