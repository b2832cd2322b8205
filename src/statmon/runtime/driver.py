from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Iterator, List, Optional, Tuple

from collectors.contracts.connection import Connection
from statmon.data.snapshot import TabularSnapshot
from statmon.utils.logger import get_logger, log_debug, log_info, log_warn
from statmon.views.registry import ViewRegistry, ViewSpec

_logger = get_logger(__name__)


class BaseSampler(ABC):
    """
    Base class for periodic sampling loops.

    Responsibilities:
      - Own the tick cadence and the sample count.
      - Observe cancellation between ticks only; a tick in progress
        always runs to completion.
      - Never own diffing or persistence (subclasses do, in step()).

    stop_event is the cancellation token. Setting it (from a signal
    handler, another thread, a test) ends the loop after the current tick.
    """

    def __init__(
        self,
        *,
        conn: Connection,
        views: ViewRegistry,
        interval: float,
        count: int = 0,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval < 0:
            raise ValueError("interval must be >= 0")
        if count < 0:
            raise ValueError("count must be >= 0")
        self.conn = conn
        self.views = views
        self.interval = float(interval)
        self.count = int(count)
        self.stop_event = stop_event or threading.Event()
        self.clock = clock
        self.ticks = 0

    # -------------------------------------------------
    # Sampling
    # -------------------------------------------------

    def collect(self, view: ViewSpec) -> TabularSnapshot:
        columns, rows = self.conn.fetch(view.query)
        snap = TabularSnapshot.from_query_result(columns, rows)
        if view.columns and snap.columns != view.columns:
            log_warn(_logger, "sampling.columns_mismatch", view=view.name,
                     expected=list(view.columns), got=list(snap.columns))
        log_debug(_logger, "sampling.collected", view=view.name, rows=snap.nrows)
        return snap

    def collect_all(self) -> List[Tuple[str, TabularSnapshot]]:
        """One snapshot per view, in the registry's fixed name order."""
        return [(view.name, self.collect(view)) for view in self.views]

    # -------------------------------------------------
    # Cadence
    # -------------------------------------------------

    def iter_ticks(self) -> Iterator[int]:
        """
        Yield tick numbers until `count` ticks ran (0 = unbounded) or the
        stop event is set. Ticks are scheduled from the loop start, so a
        slow tick shortens the following wait instead of shifting the grid.
        """
        started = self.clock()
        tick = 0
        while not self.stop_event.is_set():
            yield tick
            tick += 1
            if self.count and tick >= self.count:
                return
            remaining = started + tick * self.interval - self.clock()
            if self.stop_event.wait(max(0.0, remaining)):
                log_info(_logger, "sampling.interrupted", ticks=tick)
                return

    @abstractmethod
    def step(self, tick: int) -> None:
        raise NotImplementedError

    def finish(self) -> None:
        """Hook run once after the loop ends normally."""

    def run(self) -> int:
        for tick in self.iter_ticks():
            self.step(tick)
            self.ticks += 1
        self.finish()
        return self.ticks
