from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, Optional, TextIO, Tuple

from statmon.archive.naming import Bound, TimeRange
from statmon.archive.reader import ArchiveEntry, ArchiveReader
from statmon.data.snapshot import TabularSnapshot
from statmon.delta.engine import compute_delta, whole_seconds
from statmon.exceptions.core import InvalidNumericCell
from statmon.utils.logger import get_logger, log_debug, log_info, log_warn
from statmon.views.registry import ViewRegistry, ViewSpec, default_views

_logger = get_logger(__name__)


@dataclass(frozen=True)
class ReportConfig:
    """
    Replay settings.

    categories=() replays every category in the archive. grep is a
    (column, regex) pair applied after diffing; rows whose cell does not
    match are hidden. string_limit=0 disables cell truncation.
    """

    input: str | Path = "statmon.stat.tar"
    start: Bound = None
    end: Bound = None
    categories: Tuple[str, ...] = ()
    order_column: Optional[str] = None
    order_desc: bool = True
    grep: Optional[Tuple[str, str]] = None
    limit: int = 0
    string_limit: int = 32

    def __post_init__(self) -> None:
        if self.limit < 0:
            raise ValueError("limit must be >= 0")
        if self.string_limit < 0:
            raise ValueError("string_limit must be >= 0")


@dataclass(frozen=True)
class ReportSample:
    category: str
    timestamp: datetime
    elapsed: float
    table: TabularSnapshot


def parse_grep(text: str) -> Tuple[str, str]:
    """'colname:pattern' -> (colname, pattern)"""
    column, sep, pattern = text.partition(":")
    if not sep or not column or not pattern:
        raise ValueError(f"invalid filter {text!r}, expected colname:pattern")
    try:
        re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"invalid filter pattern {pattern!r}: {exc}") from exc
    return column, pattern


class ReportBuilder:
    """
    Rebuilds rate tables from a recorded archive.

    For each category the first entry only primes the baseline; every
    later entry is diffed against the one before it, using the seconds
    between the two entry timestamps, rounded to whole seconds, as the
    rate interval. An entry that cannot be diffed is skipped with a
    warning and still becomes the baseline for the next one.
    """

    def __init__(self, config: ReportConfig, views: Optional[ViewRegistry] = None):
        self.config = config
        self.views = views if views is not None else default_views()

    def _view(self, category: str) -> ViewSpec:
        if category in self.views:
            return self.views.get(category)
        # unknown categories are shown as recorded
        return ViewSpec(name=category, query="")

    def _order_key(self, view: ViewSpec, snap: TabularSnapshot) -> int:
        name = self.config.order_column
        if name and name in snap.columns:
            return snap.column_index(name)
        return view.order_key

    def _filter(self, table: TabularSnapshot) -> TabularSnapshot:
        df = table.to_frame()
        if self.config.grep is not None:
            column, pattern = self.config.grep
            if column in df.columns and not df.empty:
                mask = df[column].map(lambda v: "" if v is None else v).str.contains(pattern, regex=True)
                df = df[mask]
        if self.config.limit > 0:
            df = df.head(self.config.limit)
        return TabularSnapshot.from_frame(df)

    def iter_samples(self) -> Iterator[ReportSample]:
        reader = ArchiveReader(
            self.config.input,
            time_range=TimeRange(self.config.start, self.config.end),
            categories=self.config.categories or None,
        )
        previous: Dict[str, ArchiveEntry] = {}

        for entry in reader:
            prev = previous.get(entry.category)
            previous[entry.category] = entry
            if prev is None:
                log_debug(_logger, "report.baseline", category=entry.category, entry=entry.name)
                continue

            view = self._view(entry.category)
            elapsed = whole_seconds((entry.timestamp - prev.timestamp).total_seconds())
            spec = view.delta_spec(
                elapsed=elapsed,
                order_key=self._order_key(view, entry.snapshot),
                order_desc=self.config.order_desc,
            )
            try:
                delta = compute_delta(entry.snapshot, prev.snapshot, spec)
            except InvalidNumericCell as exc:
                log_warn(_logger, "report.diff_failed", category=entry.category, entry=entry.name, err=str(exc))
                continue
            yield ReportSample(
                category=entry.category,
                timestamp=entry.timestamp,
                elapsed=elapsed,
                table=self._filter(delta),
            )

    def render(self, sample: ReportSample) -> str:
        df = sample.table.to_frame()
        limit = self.config.string_limit
        if limit > 0 and not df.empty:
            df = df.apply(lambda s: s.map(lambda v: v if v is None or len(v) <= limit else v[:limit]))
        df = df.fillna("")
        header = f"{sample.timestamp:%Y-%m-%d %H:%M:%S}, {sample.category}, interval {sample.elapsed:.2f}s"
        body = "  ".join(sample.table.columns) if df.empty else df.to_string(index=False)
        return f"{header}\n{body}\n"

    def run(self, out: TextIO) -> int:
        count = 0
        for sample in self.iter_samples():
            out.write(self.render(sample))
            out.write("\n")
            count += 1
        log_info(_logger, "report.finished", samples=count, input=str(self.config.input))
        return count
