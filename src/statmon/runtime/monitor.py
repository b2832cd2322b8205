from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from collectors.contracts.connection import Connection
from statmon.data.snapshot import TabularSnapshot
from statmon.delta.engine import compute_delta, whole_seconds
from statmon.exceptions.core import InvalidNumericCell
from statmon.runtime.driver import BaseSampler
from statmon.utils.logger import get_logger, log_warn
from statmon.views.registry import ViewRegistry

_logger = get_logger(__name__)

Sink = Callable[[str, TabularSnapshot], None]


class MonitorDriver(BaseSampler):
    """
    Live monitoring loop: per tick and view, diff the fresh sample
    against the previous one and hand the rate table to `sink`.

    The first tick has no baseline and diffs a sample against itself.
    A view whose diff fails is skipped for that tick only; its fresh
    sample still becomes the next baseline.
    The previous/current pair is owned here and never shared.
    """

    def __init__(
        self,
        *,
        conn: Connection,
        views: ViewRegistry,
        sink: Sink,
        interval: float = 1.0,
        count: int = 0,
        row_limit: int = 0,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(
            conn=conn,
            views=views,
            interval=interval,
            count=count,
            stop_event=stop_event,
            clock=clock,
        )
        self.sink = sink
        self.row_limit = row_limit
        self._previous: Dict[str, Tuple[TabularSnapshot, float]] = {}

    def step(self, tick: int) -> None:
        now = self.clock()
        for view in self.views:
            current = self.collect(view)
            previous, previous_at = self._previous.get(view.name, (current, now))
            self._previous[view.name] = (current, now)
            spec = view.delta_spec(elapsed=whole_seconds(now - previous_at), row_limit=self.row_limit)
            try:
                result = compute_delta(current, previous, spec)
            except InvalidNumericCell as exc:
                log_warn(_logger, "monitor.diff_failed", view=view.name, tick=tick, err=str(exc))
                continue
            self.sink(view.name, result)
