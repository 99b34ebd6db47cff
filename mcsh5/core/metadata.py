# mcsh5/core/metadata.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Sequence

import numpy as np

from .exceptions import InvalidPayload


def rows_to_columns(rows: Sequence[Mapping[str, Any]]) -> dict[str, np.ndarray]:
    """Turn a list of row dicts into a mapping field -> numpy column."""
    columns: dict[str, list[Any]] = {}
    for row in rows:
        for key in row:
            columns.setdefault(key, [])
    for row in rows:
        for key, col in columns.items():
            col.append(row.get(key))

    out: dict[str, np.ndarray] = {}
    for key, col in columns.items():
        if col and all(isinstance(v, str) for v in col):
            out[key] = np.array(col, dtype=object)
        else:
            out[key] = np.asarray(col)
    return out


@dataclass(frozen=True, slots=True)
class InfoTable:
    """
    Column table describing the channels / entities of a stream.

    Built from the rows of an `Info*` compound dataset. Each column holds one
    value per row; `len(table)` is the row count.
    """
    columns: Mapping[str, np.ndarray] = field(default_factory=dict)
    name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.columns, Mapping):
            raise InvalidPayload("InfoTable.columns must be a mapping.")
        normalized = {k: np.asarray(v) for k, v in self.columns.items()}
        lengths = {v.shape[0] if v.ndim else 1 for v in normalized.values()}
        if len(lengths) > 1:
            raise InvalidPayload(
                f"InfoTable '{self.name}' columns have different lengths: {sorted(lengths)}"
            )
        object.__setattr__(self, "columns", normalized)

    @classmethod
    def from_rows(cls, rows: Sequence[Mapping[str, Any]], name: str | None = None) -> "InfoTable":
        return cls(columns=rows_to_columns(rows), name=name)

    # ---- dict-like API ----
    def __len__(self) -> int:
        for col in self.columns.values():
            return int(col.shape[0]) if col.ndim else 1
        return 0

    def __contains__(self, name: object) -> bool:
        return name in self.columns

    def __getitem__(self, name: str) -> np.ndarray:
        return self.columns[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.columns)

    def keys(self):
        return self.columns.keys()

    def column(self, name: str, default: Any = None) -> np.ndarray | None:
        if name in self.columns:
            return self.columns[name]
        if default is None:
            return None
        return np.full(len(self), default)

    def row(self, index: int) -> dict[str, Any]:
        n = len(self)
        if not -n <= index < n:
            raise IndexError(f"row {index} out of range for table of {n} rows")
        return {k: (v[index] if v.ndim else v[()]) for k, v in self.columns.items()}

    def rows(self) -> Iterator[dict[str, Any]]:
        for i in range(len(self)):
            yield self.row(i)

    # ---- channel info accessors ----
    @property
    def labels(self) -> list[str]:
        col = self.column("Label")
        return [] if col is None else [str(x) for x in col]

    @property
    def units(self) -> list[str]:
        col = self.column("Unit")
        return [] if col is None else [str(x) for x in col]

    @property
    def exponents(self) -> np.ndarray:
        return np.asarray(self.column("Exponent", 0), dtype=np.int64)

    @property
    def ad_zero(self) -> np.ndarray:
        return np.asarray(self.column("ADZero", 0), dtype=np.float64)

    @property
    def conversion_factor(self) -> np.ndarray:
        return np.asarray(self.column("ConversionFactor", 1), dtype=np.float64)

    @property
    def tick(self) -> int | None:
        """Sampling tick of the stream in microseconds (uniform per stream)."""
        col = self.column("Tick")
        if col is None or len(col) == 0:
            return None
        return int(col[0])

    def find(self, column: str, value: Any) -> int:
        """Index of the first row whose `column` equals `value`."""
        col = self.column(column)
        if col is not None:
            hits = np.flatnonzero(col == value)
            if hits.size:
                return int(hits[0])
        raise KeyError(f"No row with {column} == {value!r} in '{self.name}'")
