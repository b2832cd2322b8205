from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from statmon.delta.ordering import sorted_rows
from statmon.exceptions.core import MalformedResult

Cell = Optional[str]
Row = Tuple[Cell, ...]


@dataclass
class TabularSnapshot:
    """
    One sample of one statistics category at one instant.

    Columns are named; every cell is either None (the source returned NULL)
    or the exact text of the source value. No column type is assumed here;
    numeric parsing belongs to the delta engine.

    Invariants (checked by validate()):
      - len(columns) == ncols
      - len(rows) == nrows
      - every row has exactly ncols cells

    Instances are treated as immutable once built. The single exception is
    sort(), which reorders rows in place; copy() first if the original
    order is still needed.
    """

    columns: Tuple[str, ...]
    rows: List[Row] = field(default_factory=list)
    ncols: int = 0
    nrows: int = 0
    valid: bool = True

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def build(cls, columns: Iterable[str], rows: Iterable[Sequence[Cell]]) -> "TabularSnapshot":
        cols = tuple(str(c) for c in columns)
        body = [tuple(r) for r in rows]
        snap = cls(columns=cols, rows=body, ncols=len(cols), nrows=len(body))
        snap.validate()
        return snap

    @classmethod
    def from_query_result(
        cls,
        columns: Sequence[str],
        rows: Iterable[Sequence[object]],
    ) -> "TabularSnapshot":
        """Build from raw query output; non-null values are kept as their text."""
        cols = tuple(columns)
        if not cols:
            raise MalformedResult("query returned no columns")
        body = [tuple(None if v is None else str(v) for v in r) for r in rows]
        return cls.build(cols, body)

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "TabularSnapshot":
        rows = [
            tuple(None if pd.isna(v) else str(v) for v in rec)
            for rec in df.itertuples(index=False, name=None)
        ]
        return cls.build([str(c) for c in df.columns], rows)

    def copy(self) -> "TabularSnapshot":
        return TabularSnapshot(
            columns=tuple(self.columns),
            rows=list(self.rows),
            ncols=self.ncols,
            nrows=self.nrows,
            valid=self.valid,
        )

    # ------------------------------------------------------------------
    # Invariant
    # ------------------------------------------------------------------
    def validate(self) -> None:
        if len(self.columns) != self.ncols:
            raise MalformedResult(
                f"column count mismatch: header has {len(self.columns)} names, ncols={self.ncols}"
            )
        if len(self.rows) != self.nrows:
            raise MalformedResult(f"row count mismatch: {len(self.rows)} rows, nrows={self.nrows}")
        for i, row in enumerate(self.rows):
            if len(row) != self.ncols:
                raise MalformedResult(f"row {i} has {len(row)} cells, expected {self.ncols}")

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------
    def column_index(self, name: str) -> int:
        try:
            return self.columns.index(name)
        except ValueError:
            raise KeyError(f"column not found: {name}") from None

    def column(self, index: int) -> List[Cell]:
        return [row[index] for row in self.rows]

    # ------------------------------------------------------------------
    # In-place reorder
    # ------------------------------------------------------------------
    def sort(self, column_index: int, descending: bool = False) -> None:
        """Reorder rows in place by one column (type-aware, stable)."""
        self.rows[:] = sorted_rows(self.rows, column_index, descending=descending)

    def head(self, limit: int) -> "TabularSnapshot":
        if limit <= 0 or limit >= self.nrows:
            return self.copy()
        return TabularSnapshot.build(self.columns, self.rows[:limit])

    # ------------------------------------------------------------------
    # pandas bridge
    # ------------------------------------------------------------------
    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows, columns=list(self.columns), dtype=object)

    def render(self) -> str:
        """Plain-text table, NULL cells shown empty."""
        df = self.to_frame().fillna("")
        if df.empty:
            return "  ".join(self.columns)
        return df.to_string(index=False)
