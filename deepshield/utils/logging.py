"""
deepshield.utils.logging – root logging setup and per-cycle context fields.

Records carry ``session_id`` and ``task_id`` attributes so a single log
stream can interleave live sampling and batch processing readably.
"""
from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

from deepshield.config import Settings, get_settings

_SESSION_ID: ContextVar[str] = ContextVar("session_id", default="-")
_TASK_ID: ContextVar[str] = ContextVar("task_id", default="-")


@contextmanager
def log_context(
    *,
    session_id: str | None = None,
    task_id: str | None = None,
) -> Iterator[None]:
    """Apply log context fields within a block."""
    tokens: list[tuple[ContextVar[str], Token[str]]] = []
    if session_id is not None:
        tokens.append((_SESSION_ID, _SESSION_ID.set(session_id)))
    if task_id is not None:
        tokens.append((_TASK_ID, _TASK_ID.set(task_id)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def install_log_context() -> None:
    """Install a LogRecord factory that injects context fields."""
    if getattr(install_log_context, "_installed", False):
        return

    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.session_id = _SESSION_ID.get()
        record.task_id = _TASK_ID.get()
        return record

    logging.setLogRecordFactory(record_factory)
    install_log_context._installed = True  # type: ignore[attr-defined]


def configure_logging(settings: Settings | None = None) -> None:
    """Initialize root logging configuration once per process."""
    settings = settings or get_settings()
    level = (settings.log_level or "INFO").upper()

    install_log_context()
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(level=level, format=settings.log_format)
    else:
        root_logger.setLevel(level)
        for handler in root_logger.handlers:
            with contextlib.suppress(Exception):
                handler.setLevel(level)
                handler.setFormatter(logging.Formatter(settings.log_format))

    logging.getLogger("deepshield").setLevel(level)


__all__ = [
    "configure_logging",
    "install_log_context",
    "log_context",
]
