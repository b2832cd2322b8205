from __future__ import annotations

import tarfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from statmon.archive.naming import TimeRange, parse_entry_name
from statmon.data.codec import decode_snapshot
from statmon.data.snapshot import TabularSnapshot
from statmon.exceptions.core import ArchiveCorrupt, MalformedArchiveEntry
from statmon.utils.logger import get_logger, log_archive_integrity, log_debug

_logger = get_logger(__name__)


@dataclass(frozen=True)
class ArchiveEntry:
    category: str
    timestamp: datetime
    name: str
    position: int
    snapshot: TabularSnapshot


class ArchiveReader:
    """
    Replays an archive written by ArchiveWriter, in archive order.

    Filters (time range, categories) are applied on the entry name, so
    skipped entries are never decoded. The first corrupt entry stops the
    iteration with ArchiveCorrupt; entries yielded before it are valid.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        time_range: Optional[TimeRange] = None,
        categories: Optional[Iterable[str]] = None,
    ):
        self.path = Path(path)
        self.time_range = time_range or TimeRange()
        self.categories = frozenset(categories) if categories is not None else None

    def _selected(self, category: str, ts: datetime) -> bool:
        if self.categories is not None and category not in self.categories:
            return False
        return self.time_range.contains(ts)

    def _corrupt(self, message: str, name: Optional[str], position: int) -> ArchiveCorrupt:
        log_archive_integrity(
            _logger,
            "archive.entry_corrupt",
            path=str(self.path),
            entry=name,
            position=position,
            reason=message,
        )
        return ArchiveCorrupt(message, entry_name=name, position=position)

    def _read_payload(self, tar: tarfile.TarFile, member: tarfile.TarInfo, position: int) -> bytes:
        try:
            fh = tar.extractfile(member)
            if fh is None:
                raise self._corrupt("entry has no payload", member.name, position)
            with fh:
                data = fh.read()
        except (tarfile.TarError, OSError) as exc:
            raise self._corrupt(f"truncated payload: {exc}", member.name, position) from exc
        if len(data) != member.size:
            raise self._corrupt(f"payload has {len(data)} of {member.size} bytes", member.name, position)
        return data

    def _check_clean_end(self, tar: tarfile.TarFile, size: int, position: int) -> None:
        # tarfile stops silently on a bad header past the first one
        if tar.offset >= size:
            return
        fileobj = tar.fileobj
        fileobj.seek(tar.offset)
        block = fileobj.read(tarfile.BLOCKSIZE)
        if block.strip(tarfile.NUL):
            raise self._corrupt("invalid tar header", None, position)

    def __iter__(self) -> Iterator[ArchiveEntry]:
        size = self.path.stat().st_size
        if size == 0:
            return
        try:
            tar = tarfile.open(self.path, mode="r:")
        except tarfile.TarError as exc:
            raise self._corrupt(f"not a readable tar archive: {exc}", None, 0) from exc

        with tar:
            position = 0
            while True:
                try:
                    member = tar.next()
                except tarfile.TarError as exc:
                    raise self._corrupt(f"unreadable tar header: {exc}", None, position) from exc
                if member is None:
                    self._check_clean_end(tar, size, position)
                    break

                name = member.name
                if not member.isfile():
                    raise self._corrupt("entry is not a regular file", name, position)
                try:
                    category, ts = parse_entry_name(name)
                except ValueError as exc:
                    raise self._corrupt(str(exc), name, position) from exc

                if member.offset_data + member.size > size:
                    raise self._corrupt("payload runs past end of file", name, position)

                if not self._selected(category, ts):
                    log_debug(_logger, "archive.entry_skipped", entry=name, position=position)
                    position += 1
                    continue

                payload = self._read_payload(tar, member, position)
                try:
                    snap = decode_snapshot(payload)
                except MalformedArchiveEntry as exc:
                    raise self._corrupt(str(exc), name, position) from exc

                yield ArchiveEntry(
                    category=category,
                    timestamp=ts,
                    name=name,
                    position=position,
                    snapshot=snap,
                )
                position += 1

    def read_all(self) -> List[ArchiveEntry]:
        return list(self)
