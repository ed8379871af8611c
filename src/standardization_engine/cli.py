"""Command line entry point: ``standardize run`` and ``standardize validate``."""

from pathlib import Path
from typing import Optional

import polars as pl
import typer

from standardization_engine.engine import StandardizationEngine
from standardization_engine.errors import StandardizationError
from standardization_engine.observability import setup_logging
from standardization_engine.storage import DuckDBStorage
from standardization_engine.table import Table
from standardization_engine.validation import DictionarySpec, ValidationResult, validate
from standardization_engine.wordlist import WordlistStore

app = typer.Typer(
    add_completion=False,
    help="Standardize column names, values, dates and spellings of tabular data.",
)


def _read_csv(path: Path, infer_types: bool) -> Table:
    if infer_types:
        frame = pl.read_csv(path)
    else:
        frame = pl.read_csv(path, infer_schema_length=0)
    return Table.from_frame(frame)


def _load_dictionary(path: Path, delimiter: str) -> DictionarySpec:
    if path.suffix.lower() in (".yaml", ".yml"):
        return DictionarySpec.from_yaml(path)
    return DictionarySpec.from_frame(pl.read_csv(path, infer_schema_length=0), delimiter=delimiter)


def _echo_violations(result: ValidationResult, limit: int = 20) -> None:
    for violation in result.violations[:limit]:
        where = violation.column
        if violation.row is not None:
            where = f"{violation.column}[{violation.row}]"
        typer.echo(f"  {violation.rule.value:<17} {where}: {violation.detail}")
    if len(result.violations) > limit:
        typer.echo(f"  ... {len(result.violations) - limit} more")


@app.command()
def run(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Input CSV file"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", exists=True, help="YAML config"),
    wordlist: Optional[Path] = typer.Option(
        None, "--wordlist", "-w", exists=True, help="YAML wordlist"
    ),
    dictionary: Optional[Path] = typer.Option(
        None, "--dictionary", "-d", exists=True, help="Data dictionary (YAML or CSV)"
    ),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="DuckDB file to write"),
    table_name: str = typer.Option("cleaned", "--table", help="Output table name"),
    delimiter: str = typer.Option(",", help="Separator of allowed values in a CSV dictionary"),
    infer_types: bool = typer.Option(False, help="Let Polars infer column dtypes"),
    fail_on_violations: bool = typer.Option(False, help="Exit with status 1 if validation fails"),
    log_level: str = typer.Option("INFO", help="Log level"),
) -> None:
    """Run the full pipeline on a CSV file."""
    setup_logging(log_level)
    try:
        engine = StandardizationEngine(
            config=config,
            wordlist=WordlistStore.from_yaml(wordlist) if wordlist else None,
            dictionary=_load_dictionary(dictionary, delimiter) if dictionary else None,
            enable_observability=False,
        )
        result = engine.run(_read_csv(source, infer_types))
    except StandardizationError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)

    typer.echo(f"rows: {result.table.height}  columns: {', '.join(result.table.columns)}")
    typer.echo(f"cells changed or flagged: {len(result.report.changes)}")
    typer.echo(f"flags: {len(result.report.flags())}  warnings: {len(result.report.warnings)}")
    if result.validation is not None:
        typer.echo(f"validation: {'passed' if result.validation.passed else 'failed'}")
        _echo_violations(result.validation)

    if output is not None:
        with DuckDBStorage(output) as storage:
            storage.save_table(result.table, table_name)
            storage.save_report(result.report, table_name)
            if result.validation is not None:
                storage.save_violations(result.validation, f"{table_name}_violations")
        typer.echo(f"written to {output}")

    if fail_on_violations and not result.passed:
        raise typer.Exit(code=1)


@app.command("validate")
def validate_command(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Input CSV file"),
    dictionary: Path = typer.Option(..., "--dictionary", "-d", exists=True),
    delimiter: str = typer.Option(",", help="Separator of allowed values in a CSV dictionary"),
    infer_types: bool = typer.Option(False, help="Let Polars infer column dtypes"),
) -> None:
    """Check a CSV file against a data dictionary without cleaning it."""
    try:
        contract = _load_dictionary(dictionary, delimiter)
    except StandardizationError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)

    result = validate(_read_csv(source, infer_types), contract)
    typer.echo("passed" if result.passed else f"failed: {len(result.violations)} violations")
    _echo_violations(result)
    if not result.passed:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
