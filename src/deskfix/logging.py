"""
Structured logging for deskfix using structlog.

Two sinks: a ``[LEVEL] message`` console line (ANSI colored when enabled and
stdout is a terminal) and a JSON-lines log file written from a background
queue listener.
"""

import logging
import logging.handlers
import queue
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

LOGGER_NAME = "deskfix"

# Console labels for each stdlib level; OK is an INFO record tagged outcome="ok".
LEVEL_LABELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "warning": "WARN",
    "error": "ERR",
    "critical": "ERR",
}

LABEL_COLORS = {
    "INFO": "\033[1;34m",
    "WARN": "\033[1;33m",
    "OK": "\033[1;32m",
    "ERR": "\033[1;31m",
}
RESET = "\033[0m"

_listener: Optional[logging.handlers.QueueListener] = None


class _QuietFileHandler(logging.FileHandler):
    """File handler whose open and write errors never reach the caller."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            super().emit(record)
        except Exception:
            self.handleError(record)

    def handleError(self, record: logging.LogRecord) -> None:
        pass


class ConsoleLineRenderer:
    """Render an event dict as ``[LEVEL] message``."""

    def __init__(self, colors: bool = True):
        self.colors = colors

    def __call__(self, logger: Any, method_name: str, event_dict: Dict[str, Any]) -> str:
        label = label_for(event_dict)
        line = f"[{label}] {event_dict.get('event', '')}"
        if self.colors and label in LABEL_COLORS:
            return f"{LABEL_COLORS[label]}{line}{RESET}"
        return line


def label_for(event_dict: Dict[str, Any]) -> str:
    if event_dict.get("outcome") == "ok":
        return "OK"
    level = str(event_dict.get("level", "info")).lower()
    return LEVEL_LABELS.get(level, level.upper())


def _add_label(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict["level"] = label_for(event_dict)
    event_dict.pop("outcome", None)
    return event_dict


def configure_logging(
    log_file: Optional[Path] = None,
    color: bool = True,
    level: str = "INFO",
    stream: Any = None,
) -> None:
    """
    Configure structured logging for deskfix.

    Args:
        log_file: Optional file path for the JSON log (written asynchronously)
        color: Color console lines when the stream is a terminal
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        stream: Console stream (default: sys.stdout)
    """
    global _listener
    shutdown_logging()

    stream = stream or sys.stdout
    use_colors = color and hasattr(stream, "isatty") and stream.isatty()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger(LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(stream)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=ConsoleLineRenderer(colors=use_colors),
            foreign_pre_chain=shared_processors,
        )
    )
    root.addHandler(console_handler)

    if log_file:
        file_handler = _QuietFileHandler(log_file, mode="a", encoding="utf-8", delay=True)
        file_handler.setFormatter(logging.Formatter("%(message)s"))

        # Records are rendered to JSON before they enter the queue.
        queue_handler = logging.handlers.QueueHandler(queue.SimpleQueue())
        queue_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    _add_label,
                    structlog.processors.JSONRenderer(),
                ],
                foreign_pre_chain=shared_processors,
            )
        )
        root.addHandler(queue_handler)
        _listener = logging.handlers.QueueListener(queue_handler.queue, file_handler)
        _listener.start()

    root.setLevel(getattr(logging, level.upper()))


def shutdown_logging() -> None:
    """Drain pending file records and stop the background listener."""
    global _listener
    if _listener is None:
        return
    listener, _listener = _listener, None
    listener.stop()
    for handler in listener.handlers:
        handler.close()


def get_logger(name: str = LOGGER_NAME) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance under the deskfix hierarchy."""
    if not name.startswith(LOGGER_NAME):
        name = f"{LOGGER_NAME}.{name}"
    return structlog.get_logger(name)


def log_ok(logger: structlog.stdlib.BoundLogger, event: str, **kwargs: Any) -> None:
    """Emit an OK-level line."""
    logger.info(event, outcome="ok", **kwargs)


@contextmanager
def log_phase(logger: structlog.stdlib.BoundLogger, title: str):
    """
    Log a phase banner and its failure, if any.

    Usage:
        with log_phase(log, "Clean caches"):
            # do stuff
    """
    start_time = datetime.now()
    logger.info(f"=== Phase: {title} ===")
    try:
        yield logger
    except Exception as e:
        duration_ms = (datetime.now() - start_time).total_seconds() * 1000
        logger.debug(
            "phase.failed",
            phase=title,
            error=str(e),
            error_type=type(e).__name__,
            duration_ms=round(duration_ms, 2),
        )
        raise
