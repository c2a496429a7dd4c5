"""
Centralised logging configuration for Sheet Mapper.

Every module obtains its logger via ``get_logger("<module>")``, a child of
the ``sheet_mapper`` namespace.  The pipeline and the HTTP app call
``configure_logging`` at startup; handlers are attached once, later calls
only adjust the level.  ``SHEET_MAPPER_LOG_LEVEL`` overrides the level
passed in code.

Records are tagged with the upload being processed, so the audit trail of
a batch reads per file::

    2024-03-01 10:00:00 | INFO     | sheet_mapper.classifier | bank.csv | Auto-mapped ...
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional, Union


NAMESPACE = "sheet_mapper"
LEVEL_ENV_VAR = "SHEET_MAPPER_LOG_LEVEL"

_CONFIGURED = False

# Name of the upload currently flowing through the pipeline.
_current_file: ContextVar[str] = ContextVar("sheet_mapper_file", default="-")

LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)-26s | %(upload)s | %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class UploadFilter(logging.Filter):
    """Stamps each record with the current upload as ``record.upload``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.upload = _current_file.get()
        return True


@contextmanager
def upload_context(file_name: str) -> Iterator[None]:
    """Tag every record emitted inside the block with *file_name*."""
    token = _current_file.set(file_name or "-")
    try:
        yield
    finally:
        _current_file.reset(token)


def resolve_level(level: Union[int, str]) -> int:
    """Accept ``logging.INFO`` as well as ``"info"`` / ``"INFO"``."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
) -> None:
    """Set up the ``sheet_mapper`` namespace logger.

    Parameters
    ----------
    level:
        Minimum severity to emit.  ``SHEET_MAPPER_LOG_LEVEL`` wins when set.
    log_file:
        If provided, a ``FileHandler`` is added alongside the console handler.
    """
    global _CONFIGURED  # noqa: PLW0603
    root = logging.getLogger(NAMESPACE)
    root.setLevel(resolve_level(os.environ.get(LEVEL_ENV_VAR) or level))
    if _CONFIGURED:
        return

    root.propagate = False
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    uploads = UploadFilter()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.addFilter(uploads)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``sheet_mapper`` namespace."""
    return logging.getLogger(f"{NAMESPACE}.{name}")
