from __future__ import annotations

import re
from dataclasses import dataclass
from fractions import Fraction
from typing import Dict, List, Optional, Tuple

from statmon.data.snapshot import Row, TabularSnapshot
from statmon.delta.ordering import parse_number
from statmon.exceptions.core import InvalidNumericCell
from statmon.utils.logger import get_logger, log_debug, log_warn

_logger = get_logger(__name__)

_INT_RE = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class DeltaSpec:
    """
    How to turn two samples of one category into a rate table.

    - unique_key: column joining current and previous rows
    - diff_range: inclusive [start, end] of diffable columns; the key
      column is never diffed even when the range covers it
    - elapsed: seconds between samples, 0 reports the plain difference
    - order_key / order_desc: sort applied to the result
    - row_limit: keep only the first N sorted rows, 0 keeps all
    """

    unique_key: int = 0
    diff_range: Tuple[int, int] = (0, 0)
    elapsed: float = 0.0
    order_key: int = 0
    order_desc: bool = True
    row_limit: int = 0

    def __post_init__(self) -> None:
        start, end = self.diff_range
        if start < 0 or end < start:
            raise ValueError(f"invalid diff_range {self.diff_range!r}")
        if self.elapsed < 0:
            raise ValueError("elapsed must be >= 0")
        if self.row_limit < 0:
            raise ValueError("row_limit must be >= 0")

    @property
    def interval(self) -> float:
        return self.elapsed if self.elapsed > 0 else 1


def whole_seconds(elapsed: float) -> float:
    """
    Rate interval for a measured gap between two samples: whole seconds,
    at least 1. Sampling jitter (1.0003s on a 1s cadence) must not skew
    integer rates. 0 stays 0.
    """
    if elapsed <= 0:
        return 0.0
    return float(max(1, round(elapsed)))


# ----------------------------------------------------------------------
# Pair parsing
# ----------------------------------------------------------------------
def parse_pair_int(curr: Optional[str], prev: Optional[str]) -> Tuple[int, int]:
    """Parse both cells as plain integers (no decimal point, no exponent)."""
    if curr is None or prev is None:
        raise ValueError("null cell")
    if not _INT_RE.fullmatch(curr) or not _INT_RE.fullmatch(prev):
        raise ValueError(f"not an integer pair: {curr!r}, {prev!r}")
    return int(curr), int(prev)


def parse_pair_float(curr: Optional[str], prev: Optional[str]) -> Tuple[float, float]:
    return parse_number(curr), parse_number(prev)


def _as_fraction(value: float) -> Fraction:
    if isinstance(value, int):
        return Fraction(value)
    return Fraction(repr(float(value)))


def diff_pair(curr: Optional[str], prev: Optional[str], interval: float = 1) -> str:
    """
    Rate of change between two cells.

    Two integers give an integer result truncated toward zero. Anything
    else goes through float and is rendered with two fractional digits.
    """
    if interval <= 0:
        raise ValueError("interval must be > 0")

    try:
        c, p = parse_pair_int(curr, prev)
    except ValueError:
        pass
    else:
        delta = c - p
        if interval == 1:
            return str(delta)
        return str(int(Fraction(delta) / _as_fraction(interval)))

    try:
        cf, pf = parse_pair_float(curr, prev)
    except ValueError as exc:
        raise InvalidNumericCell(f"cannot diff {curr!r} and {prev!r}: {exc}") from exc

    return f"{(cf - pf) / interval:.2f}"


# ----------------------------------------------------------------------
# Join + diff
# ----------------------------------------------------------------------
def diff(current: TabularSnapshot, previous: TabularSnapshot, spec: DeltaSpec) -> TabularSnapshot:
    """
    Join current to previous on the unique key and diff the ranged columns.

    Rows new since the previous sample (or with a NULL key) are copied
    unchanged. Rows that disappeared are dropped.
    """
    key = spec.unique_key
    start, end = spec.diff_range
    interval = spec.interval

    baseline: Dict[str, Row] = {}
    if previous.columns == current.columns:
        for row in previous.rows:
            if row[key] is not None:
                baseline[row[key]] = row
    else:
        log_warn(
            _logger,
            "delta.layout_changed",
            current=list(current.columns),
            previous=list(previous.columns),
        )

    rows: List[Row] = []
    for i, row in enumerate(current.rows):
        prev_row = baseline.get(row[key]) if row[key] is not None else None
        if prev_row is None:
            rows.append(row)
            continue

        cells = []
        for j, cell in enumerate(row):
            if j == key or j < start or j > end:
                cells.append(cell)
                continue
            try:
                cells.append(diff_pair(cell, prev_row[j], interval))
            except InvalidNumericCell as exc:
                raise InvalidNumericCell(
                    f"row {i} column {current.columns[j]!r}: {exc}"
                ) from exc
        rows.append(tuple(cells))

    return TabularSnapshot.build(current.columns, rows)


def compute_delta(current: TabularSnapshot, previous: TabularSnapshot, spec: DeltaSpec) -> TabularSnapshot:
    """
    Diff, sort and truncate. Inputs are never modified.

    A diff_range of (0, 0) means the category has nothing to diff and the
    current sample is returned as-is, unsorted.
    """
    if spec.diff_range == (0, 0):
        return current.copy()

    result = diff(current, previous, spec)
    result.sort(spec.order_key, spec.order_desc)
    if spec.row_limit > 0:
        result = result.head(spec.row_limit)

    log_debug(_logger, "delta.computed", rows=result.nrows, elapsed=spec.elapsed)
    return result
