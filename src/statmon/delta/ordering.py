from __future__ import annotations

import math
from typing import Any, List, Optional, Sequence, Tuple


def parse_number(text: Optional[str]) -> float:
    """
    Strict float parse of a cell's text.

    Rejects None, surrounding whitespace and digit-group underscores, which
    float() would otherwise accept.
    """
    if text is None:
        raise ValueError("null cell")
    if not text or text != text.strip() or "_" in text:
        raise ValueError(f"not a number: {text!r}")
    return float(text)


def _is_numeric(text: str) -> bool:
    try:
        value = parse_number(text)
    except ValueError:
        return False
    return not math.isnan(value)


def is_numeric_column(rows: Sequence[Sequence[Optional[str]]], column_index: int) -> bool:
    """True when every non-null cell of the column parses as a number."""
    seen = False
    for row in rows:
        cell = row[column_index]
        if cell is None:
            continue
        if not _is_numeric(cell):
            return False
        seen = True
    return seen


def sorted_rows(
    rows: Sequence[Tuple[Optional[str], ...]],
    column_index: int,
    *,
    descending: bool = False,
) -> List[Tuple[Optional[str], ...]]:
    """
    Return rows ordered by one column.

    Numeric columns compare by value, others as case-sensitive text. NULL
    cells are the lowest value of either kind. Ties keep their input order
    in both directions.
    """
    if not rows:
        return list(rows)

    numeric = is_numeric_column(rows, column_index)

    def key(row: Sequence[Optional[str]]) -> Tuple[int, Any]:
        cell = row[column_index]
        if cell is None:
            return (0, 0.0 if numeric else "")
        return (1, parse_number(cell) if numeric else cell)

    return sorted(rows, key=key, reverse=descending)
