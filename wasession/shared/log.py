#!/usr/bin/env python3
"""
wasession logging.

Every module asks for its logger with ``get_logger(__name__)``. Records go to
stderr (coloured on a terminal) and to ``$WASESSION_LOG_DIR/wasession.log``.
stdout stays reserved for the QR code and the one-line command outcome.

Session context is passed through ``extra`` and rendered as a prefix:

    logger.warning("Stored session rejected", extra={"jid": jid, "state": "failed"})
    -> [jid=628123@s.whatsapp.net state=failed] Stored session rejected
"""

from __future__ import annotations
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

LOG_DIR_ENV = "WASESSION_LOG_DIR"
LOG_LEVEL_ENV = "WASESSION_LOG_LEVEL"
LOG_FILE = "wasession.log"

# (record attribute, label shown in the prefix)
CONTEXT_FIELDS = (("jid", "jid"), ("state", "state"), ("frame_type", "frame"), ("conn", "conn"))

LEVEL_COLORS = {
    logging.DEBUG: '\033[36m',
    logging.INFO: '\033[32m',
    logging.WARNING: '\033[33m',
    logging.ERROR: '\033[31m',
    logging.CRITICAL: '\033[35m',
}
RESET = '\033[0m'


# ========================================
#           FORMATTING
# ========================================

class SessionFormatter(logging.Formatter):
    """Prefixes session context fields and optionally colours the level name."""

    def __init__(self, fmt: str, datefmt: str, colored: bool = False) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colored = colored

    def format(self, record: logging.LogRecord) -> str:
        context = [f"{label}={getattr(record, attr)}" for attr, label in CONTEXT_FIELDS
                   if getattr(record, attr, None) is not None]
        if not context and not self.colored:
            return super().format(record)

        # Handlers share the record; decorate a copy
        record = logging.makeLogRecord(record.__dict__)
        if context:
            record.msg = f"[{' '.join(context)}] {record.msg}"
        if self.colored and record.levelno in LEVEL_COLORS:
            record.levelname = f"{LEVEL_COLORS[record.levelno]}{record.levelname}{RESET}"
        return super().format(record)


def _is_development() -> bool:
    return os.getenv('PYTHON_ENV', '').lower() in ('dev', 'development') or 'pytest' in sys.modules


def _resolve_level(level: Optional[str] = None) -> int:
    name = level or os.getenv(LOG_LEVEL_ENV)
    if name:
        return getattr(logging, name.upper(), logging.INFO)
    return logging.DEBUG if _is_development() else logging.INFO


def _stderr_is_color_terminal() -> bool:
    if not (hasattr(sys.stderr, "isatty") and sys.stderr.isatty()):
        return False
    if os.getenv("TERM", "") == "dumb":
        return False
    if sys.platform == "win32":
        return bool(os.getenv("WT_SESSION") or os.getenv("ANSICON") or os.getenv("TERM_PROGRAM") == "vscode")
    return True


def _build_handlers() -> List[logging.Handler]:
    handlers: List[logging.Handler] = []

    console = logging.StreamHandler(sys.stderr)
    colored = _is_development() and _stderr_is_color_terminal()
    console.setFormatter(SessionFormatter(
        fmt='[%(levelname)-8s][%(asctime)s][%(name)s]: %(message)s',
        datefmt='%H:%M:%S' if colored else '%Y-%m-%d %H:%M:%S',
        colored=colored,
    ))
    handlers.append(console)

    log_dir = Path(os.getenv(LOG_DIR_ENV, 'logs'))
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = logging.FileHandler(log_dir / LOG_FILE, encoding='utf-8')
    except OSError:
        # No writable log directory; stderr only
        return handlers
    log_file.setFormatter(SessionFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    ))
    handlers.append(log_file)
    return handlers


# ========================================
#           PUBLIC API
# ========================================

_configured = set()


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Return the logger for ``name``, attaching wasession handlers on first use.

    Args:
        name: Usually __name__ of the calling module
        level: Override for this logger ("DEBUG", "INFO", "WARNING", "ERROR");
            defaults to $WASESSION_LOG_LEVEL, then DEBUG in development and
            INFO otherwise
    """
    logger = logging.getLogger(name)
    if name not in _configured:
        logger.handlers.clear()
        for handler in _build_handlers():
            logger.addHandler(handler)
        logger.setLevel(_resolve_level(level))
        logger.propagate = False
        _configured.add(name)
    return logger


def set_level(level: str) -> None:
    """Apply ``level`` to every logger handed out by get_logger."""
    resolved = _resolve_level(level)
    for name in _configured:
        logging.getLogger(name).setLevel(resolved)


def configure_root_logging(level: str = "INFO") -> None:
    """Call once at startup, after configuration is loaded."""
    root = logging.getLogger()
    root.handlers.clear()
    for handler in _build_handlers():
        root.addHandler(handler)
    root.setLevel(_resolve_level(level))
    set_level(level)


def log_frame(logger: logging.Logger, level: str, message: str,
              frame: Optional[Dict[str, Any]] = None, **context: Any) -> None:
    """
    Log a gateway frame; its type becomes the ``frame`` context field.

    Example:
        log_frame(logger, "debug", "Received frame", frame=envelope.to_dict(), conn="gateway")
    """
    extra = dict(context)
    if frame:
        extra['frame_type'] = frame.get('type')
    getattr(logger, level.lower())(message, extra=extra)
