"""
Archive payload codec.

One payload is UTF-8 JSON lines:

    {"columns":["datname","xact_commit"],"nrows":2}
    ["postgres","1204"]
    ["template1",null]

The header names the columns and the row count, so a truncated payload is
detected even when it still ends on a line boundary. NULL cells are JSON
null, distinct from the empty string "".
"""
from __future__ import annotations

import json
from typing import Any, List

from statmon.data.snapshot import Row, TabularSnapshot
from statmon.exceptions.core import MalformedArchiveEntry, MalformedResult

_SEPARATORS = (",", ":")


def encode_snapshot(snap: TabularSnapshot) -> bytes:
    snap.validate()
    header = {"columns": list(snap.columns), "nrows": snap.nrows}
    lines = [json.dumps(header, ensure_ascii=False, separators=_SEPARATORS)]
    lines.extend(json.dumps(list(row), ensure_ascii=False, separators=_SEPARATORS) for row in snap.rows)
    return ("\n".join(lines) + "\n").encode("utf-8")


def _load_line(line: str, lineno: int) -> Any:
    try:
        return json.loads(line)
    except json.JSONDecodeError as exc:
        raise MalformedArchiveEntry(f"line {lineno}: invalid JSON ({exc.msg})") from exc


def decode_snapshot(payload: bytes) -> TabularSnapshot:
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedArchiveEntry(f"payload is not UTF-8: {exc}") from exc

    if not text.endswith("\n"):
        raise MalformedArchiveEntry("payload truncated: missing final newline")
    lines = text[:-1].split("\n")

    header = _load_line(lines[0], 1)
    if not isinstance(header, dict):
        raise MalformedArchiveEntry("header must be an object")
    columns = header.get("columns")
    nrows = header.get("nrows")
    if not isinstance(columns, list) or not columns or not all(isinstance(c, str) for c in columns):
        raise MalformedArchiveEntry("header 'columns' must be a non-empty list of strings")
    if not isinstance(nrows, int) or isinstance(nrows, bool) or nrows < 0:
        raise MalformedArchiveEntry("header 'nrows' must be a non-negative integer")

    body = lines[1:]
    if len(body) != nrows:
        raise MalformedArchiveEntry(f"expected {nrows} rows, found {len(body)}")

    rows: List[Row] = []
    for lineno, line in enumerate(body, start=2):
        cells = _load_line(line, lineno)
        if not isinstance(cells, list) or not all(c is None or isinstance(c, str) for c in cells):
            raise MalformedArchiveEntry(f"line {lineno}: row must be a list of strings or nulls")
        rows.append(tuple(cells))

    try:
        return TabularSnapshot.build(columns, rows)
    except MalformedResult as exc:
        raise MalformedArchiveEntry(str(exc)) from exc
