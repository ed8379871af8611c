"""
Configuration models for the standardization engine using Pydantic.
Provides type-safe, validated configuration loaded from YAML.
"""

from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Tuple, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from standardization_engine.errors import ConfigError


def _default_year_range() -> Tuple[int, int]:
    return (1900, date.today().year + 1)


class MissingColumnPolicy(str, Enum):
    """What to do when a wordlist rule targets a column the table lacks."""

    FAIL = "fail"
    WARN = "warn"


class DateFormat(BaseModel):
    """A named family of equivalent date layouts (e.g. day-month-year)."""

    name: str = Field(..., description="Family name used in majority voting")
    patterns: List[str] = Field(
        ..., min_length=1, description="strptime-style layouts using %Y %m %d %B %b"
    )


DEFAULT_DATE_FORMATS: List[DateFormat] = [
    DateFormat(name="iso", patterns=["%Y-%m-%d", "%Y/%m/%d"]),
    DateFormat(name="dmy", patterns=["%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y"]),
    DateFormat(name="mdy", patterns=["%m/%d/%Y", "%m-%d-%Y"]),
    DateFormat(name="month_name", patterns=["%d %B %Y", "%B %d %Y", "%B %d, %Y"]),
]


class ColumnNameRule(BaseModel):
    """Map a raw header pattern onto a canonical column name."""

    pattern: str = Field(..., min_length=1)
    canonical: str = Field(..., min_length=1)


class StandardizationConfig(BaseModel):
    """Complete configuration for the standardization engine."""

    version: str = Field("1.0", description="Configuration schema version")
    name: str = Field("standardization", description="Name of this configuration")
    description: Union[str, None] = Field(None, description="What this configuration cleans")

    label_columns: List[str] = Field(
        default_factory=list, description="Display-only columns that are never standardized"
    )
    column_name_rules: List[ColumnNameRule] = Field(default_factory=list)

    date_candidate_columns: Union[List[str], Literal["auto"]] = Field(
        "auto", description="Columns to convert to dates, or 'auto' to detect them"
    )
    date_formats: List[DateFormat] = Field(
        default_factory=lambda: [f.model_copy(deep=True) for f in DEFAULT_DATE_FORMATS],
        description="Ordered date format families; earlier wins ties",
    )
    date_plausible_year_range: Tuple[int, int] = Field(default_factory=_default_year_range)
    date_detection_threshold: float = Field(
        0.8, description="Fraction of non-missing cells that must parse for auto-detection"
    )

    strict_character_policy: bool = Field(
        False, description="Replace cells holding disallowed characters with the sentinel"
    )
    allowed_punctuation: str = Field(" .,'()/", description="Punctuation allowed in values")
    unmapped_sentinel: str = Field("unknown", min_length=1)
    missing_wordlist_column: MissingColumnPolicy = MissingColumnPolicy.FAIL

    max_workers: int = Field(1, ge=1, description="Threads used for column-level work")

    observability: Dict[str, Any] = Field(
        default_factory=lambda: {"enabled": True, "service_name": "standardization-engine"},
        description="OpenTelemetry configuration",
    )

    @field_validator("date_plausible_year_range")
    @classmethod
    def check_year_range(cls, v: Tuple[int, int]) -> Tuple[int, int]:
        """Ensure the plausible range is not inverted."""
        if v[0] > v[1]:
            raise ValueError("date_plausible_year_range minimum exceeds maximum")
        return v

    @field_validator("date_detection_threshold")
    @classmethod
    def check_threshold(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("date_detection_threshold must be in (0, 1]")
        return v

    @model_validator(mode="after")
    def check_format_names(self) -> "StandardizationConfig":
        """Ensure date format families are uniquely named."""
        names = [fmt.name for fmt in self.date_formats]
        if len(names) != len(set(names)):
            raise ValueError("date_formats names must be unique")
        return self

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "StandardizationConfig":
        """
        Load configuration from a YAML file.

        Raises:
            ConfigError: If the file is not a mapping or fails validation
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping of configuration keys")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"{path}: invalid configuration: {exc}") from exc

    def to_yaml(self, path: Union[str, Path]) -> None:
        config_dict = self.model_dump(mode="json")
        with open(path, "w") as f:
            yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)
