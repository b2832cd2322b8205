from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from collectors.contracts.connection import Connection
from statmon.archive.writer import ArchiveWriter
from statmon.runtime.driver import BaseSampler
from statmon.utils.logger import get_logger, log_info
from statmon.utils.timer import timed_block
from statmon.views.registry import ViewRegistry

_logger = get_logger(__name__)

DEFAULT_ARCHIVE = "statmon.stat.tar"


@dataclass(frozen=True)
class RecordConfig:
    """
    Recording session settings.

    count=0 records until cancelled. append=False truncates the output
    on the first cycle.
    """

    output: str | Path = DEFAULT_ARCHIVE
    append: bool = True
    interval: float = 1.0
    count: int = 0
    string_limit: int = 0

    def __post_init__(self) -> None:
        if self.interval < 0:
            raise ValueError("interval must be >= 0")
        if self.count < 0:
            raise ValueError("count must be >= 0")
        if self.string_limit < 0:
            raise ValueError("string_limit must be >= 0")

    @classmethod
    def oneshot(cls, output: str | Path = DEFAULT_ARCHIVE, *, string_limit: int = 0) -> "RecordConfig":
        """Append a single snapshot set and stop."""
        return cls(output=output, append=True, interval=0.0, count=1, string_limit=string_limit)


class RecordDriver(BaseSampler):
    """
    Samples every view once per tick and appends the set to the archive.

    Per tick: collect all views, then one writer cycle
    (open -> write per view -> close). A sampling failure aborts before
    the archive is touched; a write failure rolls the cycle back.
    """

    def __init__(
        self,
        *,
        conn: Connection,
        views: ViewRegistry,
        config: RecordConfig,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(
            conn=conn,
            views=views,
            interval=config.interval,
            count=config.count,
            stop_event=stop_event,
            clock=clock,
        )
        self.config = config
        self.writer = ArchiveWriter(config.output, append=config.append)

    def step(self, tick: int) -> None:
        with timed_block("record.cycle", tick=tick):
            stats = self.collect_all()
            with self.writer.cycle() as w:
                for name, snap in stats:
                    w.write(name, snap)
        log_info(_logger, "record.cycle_written", tick=tick, entries=len(stats), output=str(self.config.output))

    def finish(self) -> None:
        self.writer.finish()
        log_info(_logger, "record.finished", cycles=self.writer.cycles, output=str(self.config.output))
