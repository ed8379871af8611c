"""
Main standardization engine implementation.
Runs the stages in order on a Table and collects their reports.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import polars as pl
from opentelemetry import trace
from pydantic import BaseModel, ConfigDict

from standardization_engine.dates import infer_dates
from standardization_engine.names import normalize_names
from standardization_engine.observability import setup_observability
from standardization_engine.report import CleaningReport
from standardization_engine.rules import StandardizationConfig
from standardization_engine.storage import DuckDBStorage
from standardization_engine.table import Table
from standardization_engine.validation import DictionarySpec, ValidationResult, validate
from standardization_engine.values import standardize_values
from standardization_engine.wordlist import WordlistStore, apply_wordlist

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class PipelineResult(BaseModel):
    """Output of one engine run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    table: Table
    report: CleaningReport
    validation: Optional[ValidationResult] = None

    @property
    def passed(self) -> bool:
        return self.validation is None or self.validation.passed


class StandardizationEngine:
    """
    Tabular standardization engine.

    Stages, in order:
    - Column name normalization
    - Value standardization (trim, lowercase, character flags)
    - Date inference
    - Wordlist spelling correction
    - Dictionary validation
    """

    def __init__(
        self,
        config: Optional[Union[str, Path, StandardizationConfig]] = None,
        wordlist: Optional[WordlistStore] = None,
        dictionary: Optional[DictionarySpec] = None,
        storage: Optional[DuckDBStorage] = None,
        enable_observability: bool = True,
    ):
        """
        Initialize the standardization engine.

        Args:
            config: Path to YAML config file or StandardizationConfig object
            wordlist: Optional correction rules; correction is skipped without them
            dictionary: Optional data dictionary; validation is skipped without it
            storage: Optional DuckDBStorage instance
            enable_observability: Whether to enable OpenTelemetry tracing
        """
        self.config = StandardizationConfig()
        self.wordlist = wordlist
        self.dictionary = dictionary
        self.storage = storage

        if config:
            self.load_config(config)

        if enable_observability and self.config.observability.get("enabled", True):
            service_name = self.config.observability.get("service_name", "standardization-engine")
            console_export = self.config.observability.get("console_export", True)
            setup_observability(service_name=service_name, console_export=console_export)

    def load_config(self, config: Union[str, Path, StandardizationConfig]) -> None:
        """
        Load engine configuration.

        Args:
            config: Path to YAML file or StandardizationConfig object
        """
        with tracer.start_as_current_span("engine.load_config"):
            if isinstance(config, StandardizationConfig):
                self.config = config
            else:
                self.config = StandardizationConfig.from_yaml(config)

    def run(self, data: Union[Table, pl.DataFrame]) -> PipelineResult:
        """
        Run every stage on a table.

        Args:
            data: Table, or DataFrame to ingest with ``Table.from_frame``

        Returns:
            PipelineResult with the cleaned table, the combined report and the
            validation result when a dictionary is set

        Raises:
            StandardizationError: On naming, wordlist or format configuration errors
        """
        table = data if isinstance(data, Table) else Table.from_frame(data)
        config = self.config
        label_columns = set(config.label_columns)

        with tracer.start_as_current_span(
            "engine.run",
            attributes={"input_rows": table.height, "input_columns": len(table.columns)},
        ) as span:
            table, report = normalize_names(table, config.column_name_rules)

            table, stage = standardize_values(table, label_columns, config)
            report = report.extend(stage)

            table, stage = infer_dates(table, config=config)
            report = report.extend(stage)

            if self.wordlist is not None:
                table, stage = apply_wordlist(table, self.wordlist, config)
                report = report.extend(stage)

            validation = None
            if self.dictionary is not None:
                validation = validate(table, self.dictionary)

            span.set_attribute("changes", len(report.changes))
            span.set_attribute("flags", len(report.flags()))

        logger.info(
            "Run complete: %d cells changed or flagged, %d warnings",
            len(report.changes),
            len(report.warnings),
        )
        return PipelineResult(table=table, report=report, validation=validation)

    def clean_from_storage(
        self,
        table_name: str,
        output_table: Optional[str] = None,
    ) -> PipelineResult:
        """
        Standardize data directly from DuckDB storage.

        Args:
            table_name: Source table name
            output_table: Optional output table name; the report and any
                violations are stored alongside it

        Returns:
            PipelineResult
        """
        if not self.storage:
            raise ValueError("Storage not configured. Provide DuckDBStorage instance.")

        with tracer.start_as_current_span("engine.clean_from_storage"):
            result = self.run(self.storage.load_table(table_name))

            if output_table:
                self.storage.save_table(result.table, output_table)
                self.storage.save_report(result.report, output_table)
                if result.validation is not None:
                    self.storage.save_violations(result.validation, f"{output_table}_violations")

            return result

    def save_config(self, path: Union[str, Path]) -> None:
        """
        Save current configuration to YAML file.

        Args:
            path: Output file path
        """
        with tracer.start_as_current_span("engine.save_config"):
            self.config.to_yaml(path)

