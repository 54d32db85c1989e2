"""Bounded retry with linearly increasing backoff for store calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_incrementing

from .errors import PermanentStoreError, TransientStoreError

if TYPE_CHECKING:
    from tenacity import RetryCallState

log = getLogger(__name__)

TRANSIENT_MESSAGE_MARKERS = ("network", "timeout", "connection", "unavailable")

type ErrorClassifier = Callable[[BaseException], bool]
type RetryListener = Callable[[int, int, BaseException], None]
type Sleep = Callable[[float], Awaitable[None]]


def is_transient_error(error: BaseException) -> bool:
    """Return whether ``error`` looks like a network/timeout/availability failure."""

    if isinstance(error, PermanentStoreError):
        return False
    if isinstance(error, TransientStoreError | TimeoutError | ConnectionError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    """How often and how patiently a single store call is attempted.

    ``timeout_seconds`` bounds every attempt on its own; an attempt that runs
    over it fails with :class:`TimeoutError`, which counts as transient.
    """

    attempts: int = 3
    backoff_seconds: float = 1.0
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("Retry attempts must be at least 1")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("Call timeout must be positive")


async def with_retry[T](
    operation: Callable[[], Awaitable[T]],
    *,
    policy: BackoffPolicy,
    classify: ErrorClassifier = is_transient_error,
    on_retry: RetryListener | None = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Await ``operation`` until it succeeds, fails permanently, or attempts run out.

    Only errors accepted by ``classify`` are retried; the last error is re-raised
    unchanged once ``policy.attempts`` is exhausted.
    """

    def before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        if error is None:
            return
        attempt = retry_state.attempt_number
        log.debug("Retrying after attempt %s/%s failed: %s", attempt, policy.attempts, error)
        if on_retry is not None:
            on_retry(attempt, policy.attempts, error)

    async def attempt() -> T:
        if policy.timeout_seconds is None:
            return await operation()
        async with asyncio.timeout(policy.timeout_seconds):
            return await operation()

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_incrementing(start=policy.backoff_seconds, increment=policy.backoff_seconds),
        retry=retry_if_exception(classify),
        before_sleep=before_sleep,
        sleep=sleep,
        reraise=True,
    )
    return await retrying(attempt)
