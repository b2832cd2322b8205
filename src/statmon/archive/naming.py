from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, time
from typing import Tuple, Union

TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S.%f"
ENTRY_SUFFIX = ".jsonl"

_ENTRY_RE = re.compile(r"^(?P<category>[A-Za-z0-9_\-]+)\.(?P<token>\d{8}T\d{6}\.\d{6})\.jsonl$")
_CATEGORY_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

Bound = Union[datetime, time, None]


def entry_name(category: str, ts: datetime) -> str:
    """<category>.<YYYYMMDDTHHMMSS.ffffff>.jsonl"""
    if not _CATEGORY_RE.match(category):
        raise ValueError(f"invalid category name: {category!r}")
    return f"{category}.{ts.strftime(TIMESTAMP_FORMAT)}{ENTRY_SUFFIX}"


def parse_entry_name(name: str) -> Tuple[str, datetime]:
    m = _ENTRY_RE.match(name)
    if m is None:
        raise ValueError(f"unrecognized entry name: {name!r}")
    return m.group("category"), datetime.strptime(m.group("token"), TIMESTAMP_FORMAT)


def parse_bound(text: str) -> Union[datetime, time]:
    """
    Parse a report bound: "YYYY-MM-DD HH:MM:SS" or "HH:MM:SS".

    A time-only bound applies to the time of day of every entry.
    """
    text = text.strip()
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.strptime(text, "%H:%M:%S").time()
    except ValueError:
        raise ValueError(f"invalid timestamp {text!r}, expected [YYYY-MM-DD] HH:MM:SS") from None


@dataclass(frozen=True)
class TimeRange:
    """Inclusive [start, end]; a None bound is open."""

    start: Bound = None
    end: Bound = None

    @staticmethod
    def _resolve(bound: Union[datetime, time], ts: datetime) -> datetime:
        if isinstance(bound, datetime):
            return bound
        return datetime.combine(ts.date(), bound)

    def contains(self, ts: datetime) -> bool:
        if self.start is not None and ts < self._resolve(self.start, ts):
            return False
        if self.end is not None and ts > self._resolve(self.end, ts):
            return False
        return True

    @property
    def unbounded(self) -> bool:
        return self.start is None and self.end is None
