"""
Example usage of the Tabular Standardization Engine.

Demonstrates:
- Running every stage from YAML configuration, wordlist and dictionary
- Reading the cleaning report and validation result
- Running single stages on their own
- Using DuckDB for storage
"""

from pathlib import Path

import polars as pl

from standardization_engine import (
    DictionarySpec,
    DuckDBStorage,
    StandardizationConfig,
    StandardizationEngine,
    Table,
    WordlistStore,
    infer_dates,
    normalize_names,
)
from standardization_engine.observability import setup_logging

HERE = Path(__file__).parent


def visit_export() -> pl.DataFrame:
    """A small export with the usual problems."""
    return pl.DataFrame(
        {
            "Patient ID": ["P-001", "P-002", "P-003", "P-004", "P-005"],
            "Gender": ["M", " female", "Fem", "man", "X#"],
            "DOB": ["1984-02-11", "1990-07-30", "1975-13-02", "2001-01-09", ""],
            "Visit Date": ["04/03/2020", "15/03/2020", "21/03/2020", "2020-03-28", "n/a"],
            "Outcome": ["Alive", "deceased", "recovered", "dead", "transferred"],
            "Caption": ["First Visit", "Follow-up", "Follow-up", "Follow-up", "Final"],
        }
    )


def pipeline_example() -> None:
    """Run the whole pipeline with configuration files."""
    print("=" * 80)
    print("PIPELINE EXAMPLE")
    print("=" * 80)

    df = visit_export()
    print("\n1. Original Data:")
    print(df)

    engine = StandardizationEngine(
        config=HERE / "example_config.yaml",
        wordlist=WordlistStore.from_yaml(HERE / "example_wordlist.yaml"),
        dictionary=DictionarySpec.from_yaml(HERE / "example_dictionary.yaml"),
        enable_observability=False,
    )
    print(f"\n2. Loaded configuration: {engine.config.name}")

    result = engine.run(df)

    print("\n3. Cleaned Data:")
    print(result.table.frame)
    print(f"   Column kinds: {dict(result.table.kinds)}")

    print("\n4. Flags:")
    for flag in result.report.flags():
        where = f"{flag.column}[{flag.row}]"
        print(f"   {where} {flag.reason.value}: {flag.before!r} {flag.detail or ''}")

    print("\n5. Validation:")
    print(f"   Passed: {result.passed}")
    if result.validation is not None:
        print(result.validation.to_frame())


def single_stage_example() -> None:
    """Run individual stages without the engine."""
    print("\n" + "=" * 80)
    print("SINGLE STAGE EXAMPLE")
    print("=" * 80)

    table = Table.from_columns({"Onset Date": ["2020-03-04", "04/03/2020", "2020-13-01"]})
    table, _ = normalize_names(table)
    table, report = infer_dates(table, ["onset_date"])

    print("\n1. Cell values after date inference:")
    print(f"   {table.values('onset_date')}")
    print("\n2. Report:")
    print(report.to_frame())


def storage_example() -> None:
    """Example using DuckDB storage."""
    print("\n" + "=" * 80)
    print("STORAGE EXAMPLE")
    print("=" * 80)

    config = StandardizationConfig(label_columns=["caption"], missing_wordlist_column="warn")
    wordlist = WordlistStore.from_yaml(HERE / "example_wordlist.yaml")

    with DuckDBStorage() as storage:
        storage.save_dataframe(visit_export(), "raw_visits")
        storage.save_wordlist(wordlist, "wordlist")
        print("1. Saved raw data and wordlist to in-memory DuckDB")

        engine = StandardizationEngine(
            config=config,
            wordlist=storage.load_wordlist("wordlist"),
            storage=storage,
            enable_observability=False,
        )
        engine.clean_from_storage("raw_visits", output_table="visits")

        print(f"2. Tables in database: {storage.list_tables()}")
        print("\n3. Flags by reason:")
        print(
            storage.query(
                "SELECT reason, COUNT(*) AS cells FROM visits_changes "
                "GROUP BY reason ORDER BY reason"
            )
        )


def main() -> None:
    """Run all examples."""
    setup_logging("WARNING")
    pipeline_example()
    single_stage_example()
    storage_example()

    print("\n" + "=" * 80)
    print("Examples completed successfully!")
    print("=" * 80)


if __name__ == "__main__":
    main()
