"""
Tabular Standardization Engine

Deterministic, auditable cleaning of tabular data built with:
- Polars for column-level processing
- YAML + Pydantic for configurable rules
- Pandera for dictionary contracts
- OpenTelemetry for observability
- DuckDB for storage
"""

__version__ = "0.1.0"

from standardization_engine.dates import infer_dates
from standardization_engine.engine import PipelineResult, StandardizationEngine
from standardization_engine.errors import (
    ConfigError,
    DateFormatError,
    DictionaryError,
    NamingError,
    StandardizationError,
    WordlistError,
)
from standardization_engine.names import normalize_names
from standardization_engine.report import CleaningReport, Reason
from standardization_engine.rules import ColumnNameRule, DateFormat, StandardizationConfig
from standardization_engine.storage import DuckDBStorage
from standardization_engine.table import ColumnKind, Table
from standardization_engine.validation import (
    ColumnExpectation,
    DictionarySpec,
    ValidationResult,
    validate,
)
from standardization_engine.values import standardize_values
from standardization_engine.wordlist import WordlistRule, WordlistStore, apply_wordlist

__all__ = [
    "StandardizationEngine",
    "PipelineResult",
    "StandardizationConfig",
    "ColumnNameRule",
    "DateFormat",
    "Table",
    "ColumnKind",
    "CleaningReport",
    "Reason",
    "normalize_names",
    "standardize_values",
    "infer_dates",
    "apply_wordlist",
    "validate",
    "WordlistRule",
    "WordlistStore",
    "ColumnExpectation",
    "DictionarySpec",
    "ValidationResult",
    "DuckDBStorage",
    "StandardizationError",
    "ConfigError",
    "NamingError",
    "WordlistError",
    "DictionaryError",
    "DateFormatError",
]
