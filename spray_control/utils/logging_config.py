"""Logging setup shared by the command-line entrypoints.

Provides:
    - Console handler (optionally coloured) and rotating file handler
    - JSON line output for log collectors
    - Contextual fields (host, pass, phase) attached to every record
    - Uncaught exception logging

Public API:
    setup_logging("INFO", "logs/spray.log", context={"app": "send_dxf"})
    push_context(host="192.168.0.1")
    pop_context(keys=["host"])
    install_excepthook()

Format examples:
    Human: 2025-10-28T13:45:12.345Z | INFO     | app=send_dxf | Payload sent
    JSON:  {"t":"2025-10-28T13:45:12.345Z","lvl":"INFO","app":"send_dxf","msg":"..."}

Idempotent: repeated setup_logging() calls replace handlers instead of
stacking them.
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

_context_var: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "spray_logging_context", default={}
)

_configured = False

_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
_RESET = "\033[0m"


class ContextFormatter(logging.Formatter):
    """Formatter that appends the current context fields.

    Parameters
    ----------
    fmt_mode : str
        ``"human"`` or ``"json"``.
    use_color : bool
        ANSI colours for the level name (only when stderr is a TTY).
    """

    def __init__(self, fmt_mode: str = "human", use_color: bool = True) -> None:
        super().__init__()
        self.fmt_mode = fmt_mode
        self.use_color = use_color and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        context = _context_var.get()
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)

        if self.fmt_mode == "json":
            payload: dict[str, Any] = {
                "t": ts.isoformat(),
                "lvl": record.levelname,
                "name": record.name,
                **context,
                "msg": record.getMessage(),
            }
            if record.exc_info:
                payload["exc"] = self.formatException(record.exc_info)
            return json.dumps(payload, default=str)

        level = f"{record.levelname:8s}"
        if self.use_color:
            level = f"{_COLORS.get(record.levelname, '')}{level}{_RESET}"
        parts = [ts.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z", "|", level, "|"]
        if context:
            parts.append(" ".join(f"{k}={v}" for k, v in context.items()) + " |")
        parts.append(record.getMessage())
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    log_level: str = "INFO",
    log_file: str | None = None,
    *,
    json: bool = False,
    color: bool = True,
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
    quiet_libs: list[str] | None = None,
    context: dict[str, Any] | None = None,
) -> list[logging.Handler]:
    """Configure the root logger (idempotent).

    Parameters
    ----------
    log_level : str
        ``"DEBUG"`` .. ``"CRITICAL"``.
    log_file : str, optional
        Rotating log file; ``None`` logs to stderr only.
    json : bool
        JSON lines in the file handler.
    color : bool
        Coloured console level names.
    max_bytes, backup_count : int
        Rotation settings for *log_file*.
    quiet_libs : list[str], optional
        Loggers forced to WARNING.  Defaults to ``["pymodbus", "ezdxf"]``.
    context : dict, optional
        Initial contextual fields.

    Returns
    -------
    list[logging.Handler]
        Handlers installed on the root logger.
    """
    global _configured

    root = logging.getLogger()
    if _configured:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

    root.setLevel(getattr(logging, log_level.upper()))

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(ContextFormatter("human", color))
    handlers: list[logging.Handler] = [console]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(
            ContextFormatter("json" if json else "human", use_color=False)
        )
        handlers.append(file_handler)

    for handler in handlers:
        root.addHandler(handler)

    for lib in quiet_libs if quiet_libs is not None else ["pymodbus", "ezdxf"]:
        logging.getLogger(lib).setLevel(logging.WARNING)

    logging.captureWarnings(True)

    if context:
        push_context(**context)

    _configured = True
    return handlers


def push_context(**kwargs: Any) -> None:
    """Add contextual fields to all subsequent log records."""
    _context_var.set({**_context_var.get(), **kwargs})


def pop_context(keys: list[str] | None = None) -> None:
    """Remove the given context keys, or all of them when *keys* is None."""
    if keys is None:
        _context_var.set({})
        return
    current = dict(_context_var.get())
    for key in keys:
        current.pop(key, None)
    _context_var.set(current)


def install_excepthook() -> None:
    """Log uncaught exceptions (except Ctrl+C) before the interpreter exits."""

    def log_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logging.getLogger(__name__).critical(
            "Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback)
        )

    sys.excepthook = log_exception
