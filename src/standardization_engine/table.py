"""
Immutable table model flowing through the standardization stages.

A Table wraps a Polars DataFrame together with the declared kind of each
column and the raw text of cells a typed column could not hold.
"""

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar

import polars as pl

T = TypeVar("T")

ROW_INDEX = "__row__"


class ColumnKind(str, Enum):
    """Declared kind of a column."""

    TEXT = "text"
    CATEGORICAL = "categorical"
    DATE = "date"
    NUMERIC = "numeric"
    LOGICAL = "logical"
    UNKNOWN = "unknown"

    @classmethod
    def from_dtype(cls, dtype: pl.DataType) -> "ColumnKind":
        """Map a Polars dtype to the kind a freshly ingested column carries."""
        if dtype == pl.Utf8:
            return cls.TEXT
        if dtype in (pl.Categorical, pl.Enum):
            return cls.CATEGORICAL
        if dtype == pl.Boolean:
            return cls.LOGICAL
        if dtype == pl.Date or dtype == pl.Datetime:
            return cls.DATE
        if dtype.is_numeric():
            return cls.NUMERIC
        return cls.UNKNOWN


TEXT_KINDS = frozenset({ColumnKind.TEXT, ColumnKind.CATEGORICAL, ColumnKind.UNKNOWN})


class Table:
    """
    Positionally aligned columns with declared kinds.

    Tables are never mutated; every stage builds a new one through
    ``replace_columns`` or ``rename``.
    """

    def __init__(
        self,
        frame: pl.DataFrame,
        kinds: Optional[Mapping[str, ColumnKind]] = None,
        holdouts: Optional[Mapping[str, Mapping[int, str]]] = None,
    ):
        kinds = dict(kinds or {})
        resolved: Dict[str, ColumnKind] = {}
        for name, dtype in zip(frame.columns, frame.dtypes):
            resolved[name] = ColumnKind(kinds.get(name, ColumnKind.from_dtype(dtype)))

        self._frame = frame
        self._kinds = MappingProxyType(resolved)
        self._holdouts = MappingProxyType(
            {
                name: MappingProxyType(dict(rows))
                for name, rows in (holdouts or {}).items()
                if rows and name in resolved
            }
        )

    @classmethod
    def from_frame(cls, frame: pl.DataFrame, blank_as_missing: bool = True) -> "Table":
        """
        Build a Table from an ingested DataFrame.

        Categorical columns are cast to strings and keep the categorical kind.
        Blank strings become missing so that missing is never the empty string.
        """
        kinds = {}
        casts = []
        for name, dtype in zip(frame.columns, frame.dtypes):
            if dtype in (pl.Categorical, pl.Enum):
                kinds[name] = ColumnKind.CATEGORICAL
                casts.append(pl.col(name).cast(pl.Utf8))
        if casts:
            frame = frame.with_columns(casts)

        if blank_as_missing:
            frame = frame.with_columns(
                [
                    pl.when(pl.col(name).str.strip_chars() == "")
                    .then(None)
                    .otherwise(pl.col(name))
                    .alias(name)
                    for name in frame.columns
                    if frame[name].dtype == pl.Utf8
                ]
            )
        return cls(frame, kinds)

    @classmethod
    def from_columns(cls, data: Mapping[str, Sequence[Any]]) -> "Table":
        """Build a Table from plain Python column sequences."""
        return cls.from_frame(pl.DataFrame({name: list(values) for name, values in data.items()}))

    @property
    def frame(self) -> pl.DataFrame:
        return self._frame

    @property
    def columns(self) -> List[str]:
        return self._frame.columns

    @property
    def height(self) -> int:
        return self._frame.height

    @property
    def kinds(self) -> Mapping[str, ColumnKind]:
        return self._kinds

    def __len__(self) -> int:
        return self._frame.height

    def __contains__(self, name: object) -> bool:
        return name in self._kinds

    def __repr__(self) -> str:
        return f"Table(rows={self.height}, columns={self.columns!r})"

    def kind(self, column: str) -> ColumnKind:
        return self._kinds[column]

    def holdouts(self, column: str) -> Mapping[int, str]:
        """Raw text of the cells ``column`` could not convert, keyed by row."""
        return self._holdouts.get(column, MappingProxyType({}))

    def is_text(self, column: str) -> bool:
        """Whether a column still holds untyped string values."""
        return self._kinds[column] in TEXT_KINDS and self._frame[column].dtype == pl.Utf8

    def cell(self, row: int, column: str) -> Any:
        held = self.holdouts(column)
        if row in held:
            return held[row]
        return self._frame[column][row]

    def values(self, column: str) -> List[Any]:
        """Cell-level view of a column, holdouts merged back in."""
        values = self._frame[column].to_list()
        for row, raw in self.holdouts(column).items():
            values[row] = raw
        return values

    def replace_columns(
        self,
        columns: Mapping[str, pl.Series],
        kinds: Optional[Mapping[str, ColumnKind]] = None,
        holdouts: Optional[Mapping[str, Mapping[int, str]]] = None,
    ) -> "Table":
        """Return a new Table with the given columns swapped in place."""
        frame = self._frame
        if columns:
            frame = frame.with_columns([series.alias(name) for name, series in columns.items()])

        merged_kinds = dict(self._kinds)
        merged_kinds.update(kinds or {})
        merged_holdouts = {name: dict(rows) for name, rows in self._holdouts.items()}
        merged_holdouts.update({name: dict(rows) for name, rows in (holdouts or {}).items()})
        return Table(frame, merged_kinds, merged_holdouts)

    def rename(self, names: Sequence[str]) -> "Table":
        """Return a new Table whose columns carry ``names`` positionally."""
        if len(names) != len(self.columns):
            raise ValueError("rename requires one name per column")
        mapping = dict(zip(self.columns, names))
        return Table(
            self._frame.rename(mapping),
            {mapping[name]: kind for name, kind in self._kinds.items()},
            {mapping[name]: rows for name, rows in self._holdouts.items()},
        )


def map_columns(
    func: Callable[[Any], T], columns: Iterable[Any], max_workers: int = 1
) -> List[T]:
    """
    Apply ``func`` to each column, returning results in column order.

    Columns are independent, so with ``max_workers > 1`` they are spread over a
    thread pool; results are still merged by column index.
    """
    names = list(columns)
    if max_workers <= 1 or len(names) < 2:
        return [func(name) for name in names]
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(func, names))
