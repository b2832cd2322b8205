import logging
import os
import random

import pytest

from statmon.views.registry import ViewRegistry, ViewSpec


@pytest.fixture(autouse=True)
def _seed_everything():
    random.seed(0)
    os.environ.setdefault("PYTHONHASHSEED", "0")


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def counter_views() -> ViewRegistry:
    """Two small views over fake queries: one diffed, one shown as-is."""
    return ViewRegistry([
        ViewSpec("counters", "q_counters", unique_key=0, diff_range=(1, 2), order_key=1, order_desc=True),
        ViewSpec("sessions", "q_sessions", unique_key=0, diff_range=(0, 0), order_key=0),
    ])
