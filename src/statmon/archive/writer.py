from __future__ import annotations

import io
import os
import tarfile
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import IO, Iterator, Optional, Set

from statmon.archive.naming import entry_name
from statmon.data.codec import encode_snapshot
from statmon.data.snapshot import TabularSnapshot
from statmon.exceptions.core import ArchiveUnwritable
from statmon.runtime.lifecycle import CyclePhase, LifecycleGuard
from statmon.utils.logger import get_logger, log_debug, log_info, log_warn

_logger = get_logger(__name__)

_EOF_MARKER = tarfile.NUL * (tarfile.BLOCKSIZE * 2)


def _naive_local(ts: datetime) -> datetime:
    if ts.tzinfo is not None:
        return ts.astimezone().replace(tzinfo=None)
    return ts


class ArchiveWriter:
    """
    Append-only tar archive of snapshots.

    Each sampling cycle is one open -> write* -> close scope. The file is
    opened fresh per cycle and fsync'ed on close, so a concurrent reader
    always sees whole cycles. If a cycle fails half-way, the entries it
    wrote are cut off again before the error propagates.

    append=False truncates the file on the first cycle only; later cycles
    of the same writer append.
    """

    def __init__(self, path: str | Path, *, append: bool = True):
        self.path = Path(path)
        self.append = append
        self.cycles = 0

        self._guard = LifecycleGuard()
        self._guard.enter(CyclePhase.SETUP)

        self._fh: Optional[IO[bytes]] = None
        self._tar: Optional[tarfile.TarFile] = None
        self._start_offset = 0
        self._cycle_ts: Optional[datetime] = None
        self._last_ts: Optional[datetime] = None
        self._names: Set[str] = set()

        log_debug(_logger, "archive.writer_initialized", path=str(self.path), append=append)

    # ------------------------------------------------------------------
    # Cycle scope
    # ------------------------------------------------------------------
    def _cycle_timestamp(self, ts: Optional[datetime]) -> datetime:
        ts = _naive_local(ts) if ts is not None else datetime.now()
        if self._last_ts is not None and ts <= self._last_ts:
            bumped = self._last_ts + timedelta(microseconds=1)
            log_warn(_logger, "archive.clock_backwards", requested=ts, used=bumped)
            ts = bumped
        return ts

    def open(self, ts: Optional[datetime] = None) -> None:
        append = self.append or self.cycles > 0
        existing = self.path.exists() and self.path.stat().st_size > 0
        try:
            if append and existing:
                fh = open(self.path, "r+b")
                mode = "a"
            else:
                fh = open(self.path, "w+b")
                mode = "w"
        except OSError as exc:
            raise ArchiveUnwritable(f"cannot open {self.path}: {exc}") from exc

        try:
            tar = tarfile.open(fileobj=fh, mode=mode)
        except (OSError, tarfile.TarError) as exc:
            fh.close()
            raise ArchiveUnwritable(f"cannot open {self.path} as tar archive: {exc}") from exc

        self._fh = fh
        self._tar = tar
        self._start_offset = tar.offset
        self._cycle_ts = self._cycle_timestamp(ts)
        self._names = set()
        self._guard.enter(CyclePhase.OPEN)

    def write(self, category: str, snap: TabularSnapshot) -> str:
        """Add one category's snapshot to the open cycle; returns the entry name."""
        if self._tar is None or self._cycle_ts is None:
            raise RuntimeError("archive cycle is not open")
        self._guard.enter(CyclePhase.WRITE)

        name = entry_name(category, self._cycle_ts)
        if name in self._names:
            raise ValueError(f"category {category!r} already written in this cycle")

        payload = encode_snapshot(snap)
        info = tarfile.TarInfo(name=name)
        info.size = len(payload)
        info.mtime = int(self._cycle_ts.timestamp())
        info.mode = 0o644
        try:
            self._tar.addfile(info, io.BytesIO(payload))
        except OSError as exc:
            raise ArchiveUnwritable(f"cannot write {name} to {self.path}: {exc}") from exc

        self._names.add(name)
        log_debug(_logger, "archive.entry_written", entry=name, size=info.size, rows=snap.nrows)
        return name

    def close(self) -> None:
        if self._tar is None or self._fh is None:
            raise RuntimeError("archive cycle is not open")
        try:
            self._tar.close()
            self._fh.flush()
            os.fsync(self._fh.fileno())
        except OSError as exc:
            raise ArchiveUnwritable(f"cannot flush {self.path}: {exc}") from exc
        finally:
            self._fh.close()
            self._tar = None
            self._fh = None

        self._guard.enter(CyclePhase.CLOSE)
        self._last_ts = self._cycle_ts
        self.cycles += 1
        log_info(_logger, "archive.cycle_closed", path=str(self.path), entries=len(self._names), cycle=self.cycles)

    def abort(self) -> None:
        """Drop everything written in the open cycle and close the file."""
        if self._tar is None or self._fh is None:
            return
        try:
            self._tar.close()
            self._fh.seek(self._start_offset)
            self._fh.truncate()
            self._fh.write(_EOF_MARKER)
            self._fh.flush()
            os.fsync(self._fh.fileno())
        finally:
            self._fh.close()
            self._tar = None
            self._fh = None
            self._guard.enter(CyclePhase.CLOSE)
        log_warn(_logger, "archive.cycle_aborted", path=str(self.path), dropped=len(self._names))

    @contextmanager
    def cycle(self, ts: Optional[datetime] = None) -> Iterator["ArchiveWriter"]:
        """
        with writer.cycle() as w:
            w.write("databases_general", snap)
        """
        self.open(ts)
        try:
            yield self
        except BaseException:
            self.abort()
            raise
        self.close()

    def finish(self) -> None:
        if self._tar is not None:
            raise RuntimeError("archive cycle still open")
        self._guard.enter(CyclePhase.FINISH)
