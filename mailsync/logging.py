"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Third-party loggers that are chatty at INFO and drown out sync events.
_NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "httpx", "httpcore", "aiosqlite")


def setup_logging(*, json: bool = True, level: str = "INFO") -> None:
    """Configure structlog for the mailsync process.

    Parameters
    ----------
    json:
        If *True* (the default, suitable for production), output JSON
        lines.  If *False*, use a human-friendly console renderer.
    level:
        Root log level name (e.g. ``"DEBUG"``, ``"INFO"``).  Library
        loggers listed in ``_NOISY_LOGGERS`` are held at ``WARNING``
        unless the root level is ``DEBUG``.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    library_level = logging.DEBUG if root.level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


@contextmanager
def bound_context(**values: object) -> Iterator[None]:
    """Bind *values* to every log line emitted inside the block.

    Used to tag all events of one sync run or one download with the
    account / attachment they belong to::

        with bound_context(account_id=str(account_id), mode="full"):
            ...
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield
