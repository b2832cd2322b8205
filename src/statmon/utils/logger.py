import logging
import logging.config
import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, time, timezone
from enum import Enum
from functools import lru_cache
from logging import Logger
from pathlib import Path
from typing import Any


_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[3] / "configs" / "logging.json"

_CONFIGURED = False
_RUN_ID: str | None = None
_MODE: str | None = None
_DEBUG_ENABLED = False
_DEBUG_MODULES: set[str] = set()


def _default_config() -> dict:
    return {
        "active_profile": "default",
        "profiles": {
            "default": {
                "level": "INFO",
                "debug": {"enabled": False, "modules": []},
                "handlers": {"console": {"enabled": True}},
                "format": {"json": True, "timestamp_utc": True},
            }
        },
    }


# Load logging config
def _load_logging_config(config_path: str | Path | None) -> dict:
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    return _default_config()


def safe_jsonable(value: Any) -> Any:
    """Coerce log context into plain JSON types."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Enum):
        return safe_jsonable(value.value)
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    if is_dataclass(value) and not isinstance(value, type):
        return safe_jsonable(asdict(value))
    if isinstance(value, dict):
        return {str(k): safe_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [safe_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((safe_jsonable(v) for v in value), key=str)
    return str(value)


class ContextFilter(logging.Filter):
    """Guarantees record.context / record.category always exist."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "context"):
            record.context = None
        if not hasattr(record, "category"):
            record.category = None
        return True


class JsonFormatter(logging.Formatter):
    """Structured JSON formatter for deterministic, parseable logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "ts_ms": int(record.created * 1000),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "event": record.msg if isinstance(record.msg, str) else str(record.msg),
            "msg": record.getMessage(),
        }

        category = getattr(record, "category", None)
        if category:
            payload["category"] = category

        context = getattr(record, "context", None)
        if context:
            payload["context"] = safe_jsonable(context)

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


def _debug_module_matches(name: str, pattern: str) -> bool:
    candidates = {name}
    head, _, rest = name.partition(".")
    if head in ("statmon", "collectors") and rest:
        candidates.add(rest)
    return any(c == pattern or c.startswith(pattern + ".") for c in candidates)


def init_logging(
    config_path: str | None = None,
    *,
    run_id: str | None = None,
    mode: str | None = None,
) -> None:
    """
    Configure root logging from a profile-based JSON config.

    The profile is `mode` when given, else `active_profile`. File handler
    paths may contain `{run_id}` and `{mode}` placeholders.
    """
    global _CONFIGURED, _RUN_ID, _MODE, _DEBUG_ENABLED, _DEBUG_MODULES

    cfg = _load_logging_config(config_path)
    profiles = cfg.get("profiles", {})
    if not isinstance(profiles, dict) or not profiles:
        raise TypeError("logging config 'profiles' must be a non-empty dict")

    profile_name = mode or cfg.get("active_profile") or "default"
    profile = profiles.get(profile_name) or profiles.get("default")
    if profile is None:
        raise KeyError(f"logging profile not found: {profile_name}")

    level = str(profile.get("level", "INFO")).upper()
    handlers_cfg = profile.get("handlers", {})
    handlers: dict[str, dict[str, Any]] = {}

    console = handlers_cfg.get("console", {"enabled": True})
    if console.get("enabled", True):
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "level": str(console.get("level", level)).upper(),
            "formatter": "json",
            "filters": ["context"],
        }

    file_cfg = handlers_cfg.get("file", {})
    if file_cfg.get("enabled") and file_cfg.get("path"):
        path = Path(str(file_cfg["path"]).format(run_id=run_id or "default", mode=mode or profile_name))
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "level": str(file_cfg.get("level", level)).upper(),
            "formatter": "json",
            "filters": ["context"],
            "filename": str(path),
            "encoding": "utf-8",
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"context": {"()": ContextFilter}},
        "formatters": {"json": {"()": JsonFormatter}},
        "handlers": handlers,
        "root": {"level": level, "handlers": list(handlers)},
    })

    debug = profile.get("debug", {})
    _DEBUG_ENABLED = bool(debug.get("enabled", False))
    _DEBUG_MODULES = set(debug.get("modules", []))
    _RUN_ID = run_id
    _MODE = mode
    _CONFIGURED = True


@lru_cache(None)
def get_logger(name: str = "statmon") -> Logger:
    return logging.getLogger(name)


def _context(category: str | None, context: dict[str, Any]) -> dict[str, Any]:
    ctx = dict(context)
    if _CONFIGURED:
        if _RUN_ID is not None:
            ctx.setdefault("run_id", _RUN_ID)
        if _MODE is not None:
            ctx.setdefault("mode", _MODE)
    return {"context": ctx, "category": category}


def log_debug(logger: Logger, msg: str, **context):
    if not _DEBUG_ENABLED:
        return
    if _DEBUG_MODULES and not any(_debug_module_matches(logger.name, m) for m in _DEBUG_MODULES):
        return
    logger.debug(msg, extra=_context(None, context))


def log_info(logger: Logger, msg: str, **context):
    logger.info(msg, extra=_context(None, context))


def log_warn(logger: Logger, msg: str, **context):
    logger.warning(msg, extra=_context(None, context))


def log_error(logger: Logger, msg: str, **context):
    logger.error(msg, extra=_context(None, context))


def log_exception(logger: Logger, msg: str, **context):
    logger.exception(msg, extra=_context(None, context))


def log_archive_integrity(logger: Logger, msg: str, **context):
    logger.warning(msg, extra=_context("archive_integrity", context))
