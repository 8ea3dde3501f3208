"""Run context for structured logging.

A run is one invocation of the pipeline on one source file. The run id and
source path are held in contextvars and injected into every log record by
RunContextFilter, so background threads started inside ``run_log_context``
inherit them when they copy the context.
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Generator

_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id", default=None
)
_file_path: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "file_path", default=None
)


def set_run_context(run_id: str, file_path: Path | str | None = None) -> None:
    _run_id.set(run_id)
    _file_path.set(str(file_path) if file_path is not None else None)


def clear_run_context() -> None:
    _run_id.set(None)
    _file_path.set(None)


def get_run_context() -> tuple[str | None, str | None]:
    """Return (run_id, file_path) for the current context, either may be None."""
    return _run_id.get(), _file_path.get()


@contextmanager
def run_log_context(
    run_id: str, file_path: Path | str | None = None
) -> Generator[None, None, None]:
    """Set the run context on entry and restore the previous one on exit.

    Example:
        with run_log_context("3f2a9c1d", "/media/movie.mkv"):
            logger.info("Probing source")  # record carries run_id/file_path
    """
    old_run_id = _run_id.get()
    old_file_path = _file_path.get()
    try:
        set_run_context(run_id, file_path)
        yield
    finally:
        _run_id.set(old_run_id)
        _file_path.set(old_file_path)


class RunContextFilter(logging.Filter):
    """Logging filter that injects run context into log records.

    Adds ``run_id`` and ``file_path`` for JSON output and a compact
    ``run_tag`` (``[3f2a9c1d] ``) for the text format.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        run_id, file_path = get_run_context()
        record.run_id = run_id
        record.file_path = file_path
        record.run_tag = f"[{run_id}] " if run_id else ""
        return True
