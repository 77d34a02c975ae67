"""
Bounded retry for directory calls.

Only ``TransientRemoteError`` is retried, with exponential backoff; every
other error (terminal, not found) surfaces on the first attempt.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tenantops.config.settings import Settings
from tenantops.core.errors import TransientRemoteError

logger = structlog.get_logger()

T = TypeVar("T")


def _log_retry(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.warning(
        "remote_call_retry",
        call=getattr(state.fn, "__name__", "call"),
        attempt=state.attempt_number,
        error=str(error),
    )


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for transient remote failures."""

    max_attempts: int = 4
    backoff_factor: float = 0.5
    max_wait: float = 8.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_retries,
            backoff_factor=settings.retry_backoff_factor,
            max_wait=settings.retry_max_wait,
        )

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Invoke ``fn``; re-raises the last TransientRemoteError when attempts run out."""
        retrying = Retrying(
            retry=retry_if_exception_type(TransientRemoteError),
            stop=stop_after_attempt(max(self.max_attempts, 1)),
            wait=wait_exponential(multiplier=self.backoff_factor, max=self.max_wait),
            before_sleep=_log_retry,
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)


NO_RETRY = RetryPolicy(max_attempts=1)
