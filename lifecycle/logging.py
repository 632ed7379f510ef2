"""Lifecycle structured logging with JSON output and run context."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOG_FILE = "lifecycle.log"
_ROTATE_BYTES = 10 * 1024 * 1024
_ROTATE_BACKUPS = 5

# Record attributes copied into the JSON line when a caller passes them as extra
_EXTRA_FIELDS = ("task_id", "group", "tier", "phase", "domain", "event")

# Run id, work item and phase of the run being driven, merged into every JSON line
_run_context: dict[str, Any] = {}


def _utc_now() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for the run log file."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": _utc_now(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            **_run_context,
        }
        payload.update({key: getattr(record, key) for key in _EXTRA_FIELDS if hasattr(record, key)})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output with a [G<group>:<task>] prefix."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _prefix(record: logging.LogRecord) -> str:
        where = [f"G{record.group}"] if hasattr(record, "group") else []
        if hasattr(record, "task_id"):
            where.append(str(record.task_id))
        return f"[{':'.join(where)}]" if where else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = datetime.now().strftime("%H:%M:%S")
        return f"{color}{clock} {record.levelname:8s}{self.RESET} {self._prefix(record)} {record.getMessage()}"


def set_run_context(run_id: str | None = None, **fields: Any) -> None:
    """Replace the context stamped on every JSON line."""
    global _run_context
    _run_context = {"run_id": run_id} if run_id is not None else {}
    _run_context.update(fields)


def clear_run_context() -> None:
    global _run_context
    _run_context = {}


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"lifecycle.{name}")


def setup_logging(
    level: str = "info",
    log_dir: str | Path | None = None,
    json_output: bool = True,
    console_output: bool = True,
) -> None:
    """Route the ``lifecycle`` logger to stderr and to a rotating JSON file.

    Calling it again replaces the previous handlers. ``warn`` is accepted as
    an alias for ``warning``.
    """
    name = "warning" if level.lower() == "warn" else level
    log_level = getattr(logging, name.upper(), logging.INFO)

    root = logging.getLogger("lifecycle")
    root.setLevel(log_level)
    root.propagate = False
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = []
    if console_output:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(ConsoleFormatter())
        handlers.append(console)
    if log_dir and json_output:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        log_file = RotatingFileHandler(directory / LOG_FILE, maxBytes=_ROTATE_BYTES, backupCount=_ROTATE_BACKUPS)
        log_file.setFormatter(JsonFormatter())
        handlers.append(log_file)

    for handler in handlers:
        handler.setLevel(log_level)
        root.addHandler(handler)


class TaskLoggerAdapter(logging.LoggerAdapter[logging.Logger]):
    """Stamps task id and group on records, keeping any extra the caller passes."""

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def get_task_logger(task_id: str, group: int | None = None) -> TaskLoggerAdapter:
    extra: dict[str, Any] = {"task_id": task_id}
    if group is not None:
        extra["group"] = group
    return TaskLoggerAdapter(get_logger("task"), extra)
