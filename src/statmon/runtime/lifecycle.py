from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Set


class CyclePhase(Enum):
    SETUP = "setup"
    OPEN = "open"
    WRITE = "write"
    CLOSE = "close"
    FINISH = "finish"


_ALLOWED: Dict[Optional[CyclePhase], Set[CyclePhase]] = {
    None: {CyclePhase.SETUP},
    CyclePhase.SETUP: {CyclePhase.OPEN, CyclePhase.FINISH},
    CyclePhase.OPEN: {CyclePhase.WRITE, CyclePhase.CLOSE},
    CyclePhase.WRITE: {CyclePhase.WRITE, CyclePhase.CLOSE},
    CyclePhase.CLOSE: {CyclePhase.OPEN, CyclePhase.FINISH},
    CyclePhase.FINISH: set(),
}


class LifecycleGuard:
    """
    Enforces the recording cycle order:

        SETUP -> (OPEN -> WRITE* -> CLOSE)* -> FINISH

    A write outside an open cycle, or a second open before close, is a
    programming error and raises RuntimeError.
    """

    def __init__(self) -> None:
        self._phase: Optional[CyclePhase] = None

    @property
    def phase(self) -> Optional[CyclePhase]:
        return self._phase

    def enter(self, phase: CyclePhase) -> None:
        if phase not in _ALLOWED[self._phase]:
            current = self._phase.value if self._phase else None
            raise RuntimeError(f"invalid lifecycle transition: {current} -> {phase.value}")
        self._phase = phase
