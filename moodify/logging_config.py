import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from .settings import MoodifySettings

# Set by the orchestrator for the duration of one pipeline run
run_id_var: ContextVar[str] = ContextVar("run_id", default="-")

# Recent errors kept in-process for diagnostics
_ERRORS: list[dict[str, Any]] = []
_MAX_ERRORS = 200


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "run_id": getattr(record, "run_id", run_id_var.get()),
            "level": record.levelname,
            "component": record.name,
            "msg": record.getMessage(),
        }
        if hasattr(record, "meta"):
            payload["meta"] = record.meta
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        try:
            return json.dumps(payload, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return payload["msg"]


class RunIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_var.get()
        return True


class _ErrorBufferHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        if record.levelno < logging.ERROR:
            return
        _ERRORS.append(
            {
                "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
                "level": record.levelname,
                "component": record.name,
                "run_id": getattr(record, "run_id", run_id_var.get()),
                "msg": record.getMessage(),
            }
        )
        if len(_ERRORS) > _MAX_ERRORS:
            # keep newest
            del _ERRORS[: len(_ERRORS) - _MAX_ERRORS]


def configure_logging(settings: MoodifySettings) -> None:
    """
    Call once at startup of the host application.
    ``log_level`` controls verbosity; ``log_json`` selects JSON lines on stderr
    versus plain text on stdout.
    """
    level = settings.log_level.upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    run_filter = RunIdFilter()

    if settings.log_json:
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(run_id)s] %(message)s"
            )
        )
    handler.addFilter(run_filter)
    root_logger.addHandler(handler)

    error_handler = _ErrorBufferHandler()
    error_handler.addFilter(run_filter)
    root_logger.addHandler(error_handler)

    # Reduce third-party verbosity unless DEBUG
    if level != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("aiosqlite").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_last_errors(n: int) -> list[dict[str, Any]]:
    """Return the last ``n`` ERROR records."""
    if n <= 0:
        return []
    return _ERRORS[-n:]


def clear_errors() -> None:
    _ERRORS.clear()
