"""
DuckDB storage layer for tables, cleaning reports, violations and wordlists.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import duckdb
import polars as pl
from opentelemetry import trace

from standardization_engine.report import CleaningReport
from standardization_engine.table import Table
from standardization_engine.validation import ValidationResult
from standardization_engine.wordlist import WordlistStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _holdouts_frame(table: Table, offset: int = 0) -> pl.DataFrame:
    records = [
        (name, row + offset, raw)
        for name in table.columns
        for row, raw in sorted(table.holdouts(name).items())
    ]
    return pl.DataFrame(
        records, schema={"column": pl.Utf8, "row": pl.Int64, "raw": pl.Utf8}, orient="row"
    )


class DuckDBStorage:
    """
    DuckDB storage backend for the standardization engine.
    Persists cleaned tables next to the reports that explain them.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        """
        Initialize DuckDB storage.

        Args:
            db_path: Path to DuckDB file. If None, uses in-memory database.
        """
        self.db_path = str(db_path) if db_path else ":memory:"
        self.connection: Optional[duckdb.DuckDBPyConnection] = None

    def __enter__(self) -> "DuckDBStorage":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        """Context manager exit."""
        self.close()

    def connect(self) -> None:
        """Establish connection to DuckDB."""
        with tracer.start_as_current_span("duckdb.connect"):
            self.connection = duckdb.connect(self.db_path)

    def close(self) -> None:
        """Close DuckDB connection."""
        if self.connection:
            with tracer.start_as_current_span("duckdb.close"):
                self.connection.close()
                self.connection = None

    def _require_connection(self) -> duckdb.DuckDBPyConnection:
        if not self.connection:
            raise RuntimeError("Not connected to database. Call connect() first.")
        return self.connection

    def table_exists(self, table_name: str) -> bool:
        result = (
            self._require_connection()
            .execute(
                "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?",
                [table_name],
            )
            .fetchone()
        )
        return bool(result and result[0] > 0)

    def save_dataframe(
        self, df: pl.DataFrame, table_name: str, if_exists: str = "replace"
    ) -> None:
        """
        Save a Polars DataFrame to DuckDB.

        Args:
            df: Polars DataFrame to save
            table_name: Name of the table
            if_exists: Action if table exists ('replace', 'append', 'fail')
        """
        connection = self._require_connection()
        if if_exists not in ("replace", "append", "fail"):
            raise ValueError(f"Unknown if_exists mode: {if_exists}")

        with tracer.start_as_current_span(
            "duckdb.save_dataframe", attributes={"table_name": table_name, "rows": len(df)}
        ):
            # Convert Polars DataFrame to Arrow for efficient transfer
            arrow_table = df.to_arrow()
            connection.register("_incoming", arrow_table)
            try:
                exists = self.table_exists(table_name)
                if exists and if_exists == "fail":
                    raise ValueError(f"Table {table_name} already exists")
                if exists and if_exists == "append":
                    connection.execute(f"INSERT INTO {_quote(table_name)} SELECT * FROM _incoming")
                else:
                    connection.execute(
                        f"CREATE OR REPLACE TABLE {_quote(table_name)} AS SELECT * FROM _incoming"
                    )
            finally:
                connection.unregister("_incoming")
        logger.debug("Saved %d rows to %s", len(df), table_name)

    def load_dataframe(self, table_name: str, limit: Optional[int] = None) -> pl.DataFrame:
        """
        Load a table as a Polars DataFrame.

        Args:
            table_name: Name of the table to load
            limit: Optional row limit

        Returns:
            Polars DataFrame
        """
        connection = self._require_connection()

        with tracer.start_as_current_span(
            "duckdb.load_dataframe", attributes={"table_name": table_name}
        ):
            query = f"SELECT * FROM {_quote(table_name)}"
            if limit:
                query += f" LIMIT {int(limit)}"

            # Use Arrow for efficient transfer
            arrow_table = connection.execute(query).fetch_arrow_table()
            return pl.from_arrow(arrow_table)

    def save_table(self, table: Table, table_name: str, if_exists: str = "replace") -> None:
        """
        Persist a Table's frame as ``table_name``.

        Held-out cells go to ``<table_name>_holdouts`` (``column``, ``row``, ``raw``)
        so that ``load_table`` returns the same cell values.
        """
        offset = 0
        if if_exists == "append" and self.table_exists(table_name):
            offset = self.load_dataframe(table_name).height
        self.save_dataframe(table.frame, table_name, if_exists)

        held = _holdouts_frame(table, offset)
        holdout_table = f"{table_name}_holdouts"
        if held.height:
            self.save_dataframe(held, holdout_table, "append" if offset else "replace")
        elif not offset:
            self._require_connection().execute(f"DROP TABLE IF EXISTS {_quote(holdout_table)}")

    def load_table(self, table_name: str, limit: Optional[int] = None) -> Table:
        """Load a table saved by ``save_table``, holdouts included."""
        table = Table.from_frame(self.load_dataframe(table_name, limit))
        holdout_table = f"{table_name}_holdouts"
        if not self.table_exists(holdout_table):
            return table

        held = self.load_dataframe(holdout_table)
        if limit:
            held = held.filter(pl.col("row") < int(limit))
        holdouts: Dict[str, Dict[int, str]] = {}
        for record in held.iter_rows(named=True):
            holdouts.setdefault(record["column"], {})[record["row"]] = record["raw"]
        return Table(table.frame, table.kinds, holdouts)

    def save_report(self, report: CleaningReport, prefix: str) -> List[str]:
        """
        Persist a cleaning report as ``<prefix>_changes`` and ``<prefix>_warnings``.

        Returns:
            Names of the tables written
        """
        names = [f"{prefix}_changes", f"{prefix}_warnings"]
        self.save_dataframe(report.to_frame(), names[0])
        self.save_dataframe(report.warnings_frame(), names[1])
        return names

    def save_violations(self, result: ValidationResult, table_name: str) -> None:
        self.save_dataframe(result.to_frame(), table_name)

    def save_wordlist(self, wordlist: WordlistStore, table_name: str) -> None:
        """Persist a wordlist in long form (``column``, ``pattern``, ``canonical``)."""
        self.save_dataframe(wordlist.to_long_frame(), table_name)

    def load_wordlist(self, table_name: str) -> WordlistStore:
        return WordlistStore.from_long_frame(self.load_dataframe(table_name))

    def query(self, sql: str) -> pl.DataFrame:
        """
        Execute a SQL query and return results as Polars DataFrame.

        Args:
            sql: SQL query to execute

        Returns:
            Query results as Polars DataFrame
        """
        connection = self._require_connection()

        with tracer.start_as_current_span("duckdb.query"):
            arrow_table = connection.execute(sql).fetch_arrow_table()
            return pl.from_arrow(arrow_table)

    def list_tables(self) -> List[str]:
        """
        List all tables in the database.

        Returns:
            List of table names
        """
        result = (
            self._require_connection()
            .execute(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = 'main' ORDER BY table_name"
            )
            .fetchall()
        )
        return [row[0] for row in result]
