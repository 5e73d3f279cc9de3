"""Retry policy for calls to external services.

httpx + tenacity: capped exponential backoff, retrying only errors that a
later attempt might cure (timeouts, network failures, 5xx responses).
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Retry configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MIN_WAIT = 0.5  # seconds
DEFAULT_MAX_WAIT = 8.0  # seconds


class RetryableStatusError(Exception):
    """A response whose status is worth retrying (5xx)."""

    def __init__(self, response: httpx.Response):
        self.response = response
        super().__init__(f"Retryable status {response.status_code}")


def is_transient_http_error(exc: BaseException) -> bool:
    """Timeouts, connection failures and 5xx responses."""
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    return isinstance(exc, RetryableStatusError)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Usage:
        policy = RetryPolicy(max_attempts=3)
        response = await policy.call(client.post, url, json=body)
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    min_wait: float = DEFAULT_MIN_WAIT
    max_wait: float = DEFAULT_MAX_WAIT
    multiplier: float = 1.0
    retry_on: Callable[[BaseException], bool] = is_transient_http_error

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.multiplier, min=self.min_wait, max=self.max_wait
            ),
            retry=retry_if_exception(self.retry_on),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Invoke ``fn`` until it succeeds, raises a non-retryable error,
        or attempts run out (the last error is re-raised)."""
        async for attempt in self.retrying():
            with attempt:
                return await fn(*args, **kwargs)
        raise RuntimeError("unreachable")  # pragma: no cover

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=settings.game_service_max_retries,
            min_wait=settings.game_service_retry_min_wait,
            max_wait=settings.game_service_retry_max_wait,
        )
