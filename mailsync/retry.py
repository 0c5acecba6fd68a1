"""Tenacity retry wrapper for provider page fetches."""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig
from .errors import TransportError

T = TypeVar("T")

logger = structlog.get_logger()


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "provider_call_retrying",
        attempt=state.attempt_number,
        error=str(exc) if exc else None,
    )


def with_retry(
    config: RetryConfig,
    *,
    retryable_exceptions: tuple[type[BaseException], ...] = (TransportError,),
) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    Only transport-class failures are retried by default; credential and
    cursor errors surface on the first attempt.  The last exception is
    re-raised once attempts are exhausted.

    Usage::

        @with_retry(settings.retry)
        async def fetch() -> MessagePage: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=_log_retry,
        reraise=True,
    )
