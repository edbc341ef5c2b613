"""Bounded retry helpers built on tenacity."""

from __future__ import annotations

import time
from typing import Callable

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shipops.core.config import RetryPolicy

logger = structlog.get_logger(__name__)


def retrying(
    policy: RetryPolicy,
    retry_on: type[BaseException] | tuple[type[BaseException], ...],
    *,
    operation: str,
    sleep: Callable[[float], None] = time.sleep,
    **context,
) -> Retrying:
    """
    Return a Retrying controller for one bounded operation.

    Waits grow exponentially from `policy.initial_backoff` (5s, 10s, ...).
    After the last attempt the original exception is re-raised.
    """

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            f"{operation}_retry",
            attempt=state.attempt_number,
            max_attempts=policy.attempts,
            wait=state.next_action.sleep if state.next_action else None,
            error=str(exc),
            **context,
        )

    return Retrying(
        retry=retry_if_exception_type(retry_on),
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(multiplier=policy.initial_backoff, max=policy.max_backoff),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )
