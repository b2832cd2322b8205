from __future__ import annotations

import json
import logging
from io import StringIO
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from statmon.utils.logger import (
    ContextFilter,
    JsonFormatter,
    _debug_module_matches,
    get_logger,
    init_logging,
    log_archive_integrity,
    log_debug,
    log_info,
    safe_jsonable,
)
from statmon.utils.timer import timed_block


class Color(Enum):
    RED = "red"


@dataclass
class Sample:
    path: Path
    created: datetime
    color: Color


def _reset_root() -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


def _capture(name: str) -> tuple[logging.Logger, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(ContextFilter())
    logger = logging.getLogger(name)
    logger.handlers = []
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger, stream


def test_safe_jsonable_handles_common_types() -> None:
    payload = {
        "path": Path("foo/bar"),
        "created": datetime(2020, 1, 1, 0, 0, 0),
        "enum": Color.RED,
        "sample": Sample(Path("x/y"), datetime(2021, 1, 2, 3, 4, 5), Color.RED),
        "exc": ValueError("boom"),
        "tuple": (1, 2),
        "set": {3, 4},
    }

    out = safe_jsonable(payload)
    json.dumps(out)
    assert out["path"] == "foo/bar"
    assert "2020" in out["created"]
    assert out["enum"] == "red"
    assert out["exc"] == "ValueError: boom"
    assert out["set"] == [3, 4]


def test_debug_module_matching() -> None:
    assert _debug_module_matches("statmon.archive.writer", "archive")
    assert _debug_module_matches("statmon.archive.writer", "statmon.archive")
    assert _debug_module_matches("collectors.postgres.connection", "postgres")
    assert _debug_module_matches("archive.writer", "archive")
    assert not _debug_module_matches("statmon.delta.engine", "archive")
    assert not _debug_module_matches("statmon.archiver", "archive")


def test_init_logging_dictconfig_applied(tmp_path: Path) -> None:
    config = {
        "active_profile": "default",
        "profiles": {
            "default": {
                "level": "DEBUG",
                "debug": {"enabled": True, "modules": ["archive"]},
                "handlers": {"console": {"enabled": True, "level": "DEBUG"}},
                "format": {"json": True, "timestamp_utc": True},
            }
        },
    }
    config_path = tmp_path / "logging.json"
    config_path.write_text(json.dumps(config), encoding="utf-8")

    init_logging(config_path=str(config_path))
    logger = get_logger("statmon.test")

    assert logging.getLogger().level == logging.DEBUG
    assert logger.getEffectiveLevel() == logging.DEBUG

    root_handlers = logging.getLogger().handlers
    assert root_handlers
    assert any(isinstance(h.formatter, JsonFormatter) for h in root_handlers)
    assert any(any(isinstance(f, ContextFilter) for f in h.filters) for h in root_handlers)
    _reset_root()


def test_init_logging_file_output_with_context_and_category(tmp_path: Path) -> None:
    log_path = tmp_path / "runs" / "{run_id}" / "logs" / "{mode}.jsonl"
    profile = {
        "level": "INFO",
        "debug": {"enabled": False, "modules": []},
        "handlers": {
            "console": {"enabled": False},
            "file": {"enabled": True, "level": "INFO", "path": str(log_path)},
        },
        "format": {"json": True},
    }
    config = {"active_profile": "default", "profiles": {"default": profile, "record": profile}}
    config_path = tmp_path / "logging.json"
    config_path.write_text(json.dumps(config), encoding="utf-8")

    init_logging(config_path=str(config_path), run_id="run123", mode="record")
    logger = get_logger("statmon.test")
    log_archive_integrity(logger, "archive.entry_corrupt", entry="activity.x.jsonl", position=3)
    for handler in logging.getLogger().handlers:
        handler.flush()

    resolved_path = tmp_path / "runs" / "run123" / "logs" / "record.jsonl"
    lines = resolved_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    payload = json.loads(lines[0])

    assert payload["event"] == "archive.entry_corrupt"
    assert payload["level"] == "WARNING"
    assert payload["category"] == "archive_integrity"
    assert payload["context"]["run_id"] == "run123"
    assert payload["context"]["mode"] == "record"
    assert payload["context"]["position"] == 3
    assert "category" not in payload.get("context", {})
    assert {"ts", "ts_ms", "level", "logger", "event", "module", "msg"}.issubset(payload.keys())
    _reset_root()


def test_missing_config_falls_back_to_console(tmp_path: Path) -> None:
    init_logging(config_path=str(tmp_path / "absent.json"))
    root = logging.getLogger()
    assert root.level == logging.INFO
    assert any(isinstance(h, logging.StreamHandler) for h in root.handlers)
    _reset_root()


def test_log_debug_gating_with_monkeypatch(monkeypatch) -> None:
    logger_match, stream = _capture("statmon.archive.writer")
    logger_miss = logging.getLogger("statmon.delta.engine")
    logger_miss.handlers = list(logger_match.handlers)
    logger_miss.setLevel(logging.DEBUG)
    logger_miss.propagate = False

    monkeypatch.setattr("statmon.utils.logger._CONFIGURED", True)
    monkeypatch.setattr("statmon.utils.logger._RUN_ID", "rid")
    monkeypatch.setattr("statmon.utils.logger._MODE", "record")
    monkeypatch.setattr("statmon.utils.logger._DEBUG_ENABLED", True)
    monkeypatch.setattr("statmon.utils.logger._DEBUG_MODULES", {"statmon.archive"})

    log_debug(logger_miss, "smoke.debug", detail="skip")
    log_debug(logger_match, "smoke.debug", detail="ok")
    log_info(logger_match, "smoke.start", sample=1)

    lines = stream.getvalue().strip().splitlines()
    assert len(lines) == 2
    debug_payload = json.loads(lines[0])
    info_payload = json.loads(lines[1])

    assert debug_payload["event"] == "smoke.debug"
    assert debug_payload["context"]["run_id"] == "rid"
    assert debug_payload["context"]["mode"] == "record"
    assert info_payload["event"] == "smoke.start"


def test_log_debug_disabled_drops_records(monkeypatch) -> None:
    logger, stream = _capture("statmon.archive.reader")
    monkeypatch.setattr("statmon.utils.logger._DEBUG_ENABLED", False)
    log_debug(logger, "smoke.debug")
    assert stream.getvalue() == ""


def test_timed_block_logs_elapsed(monkeypatch) -> None:
    logger, stream = _capture("statmon.timer")
    monkeypatch.setattr("statmon.utils.logger._DEBUG_ENABLED", True)
    monkeypatch.setattr("statmon.utils.logger._DEBUG_MODULES", set())

    with timed_block("record.cycle", tick=4):
        pass

    payload = json.loads(stream.getvalue().strip())
    assert payload["event"] == "[TIMER] record.cycle"
    assert payload["context"]["tick"] == 4
    assert payload["context"]["elapsed_ms"] >= 0
