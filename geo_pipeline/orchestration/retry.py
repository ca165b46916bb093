"""Bounded retry for stage provider calls."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential, wait_random

from ..config.settings import RetryPolicy
from ..exceptions import ProviderError, TransientProviderError
from ..providers.base import classify_exception

logger = structlog.get_logger()


@dataclass
class RetryOutcome:
    value: Any = None
    attempts: int = 0
    error: Optional[ProviderError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)


def _backoff(policy: RetryPolicy):
    """Exponential backoff plus random jitter, never above ``max_delay`` in total."""
    jitter = min(policy.jitter, policy.max_delay)
    return (wait_exponential(multiplier=policy.base_delay, max=policy.max_delay - jitter)
            + wait_random(0, jitter))


async def call_with_retry(fn: Callable[[], Awaitable[Any]],
                          policy: RetryPolicy,
                          stage: Optional[str] = None,
                          provider: Optional[str] = None,
                          timeout: Optional[float] = None,
                          sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> RetryOutcome:
    """
    Call ``fn`` until it succeeds, raises a non-transient error, or the
    attempt budget runs out.

    Every raw exception is classified first, so only transient failures
    (timeouts, resets, unreachable networks, 408/429/5xx) are retried.
    Each attempt is bounded by ``timeout``. Cancellation is never caught.
    """
    attempts = 0

    async def _attempt():
        nonlocal attempts
        attempts += 1
        try:
            if timeout:
                return await asyncio.wait_for(fn(), timeout)
            return await fn()
        except Exception as e:
            error = classify_exception(e, provider=provider, stage=stage)
            logger.warning(
                "stage attempt failed",
                stage=stage,
                attempt=attempts,
                error_type="transient" if isinstance(error, TransientProviderError) else "non_transient",
                error=str(error),
            )
            if error is e:
                raise
            raise error from e

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=_backoff(policy),
        retry=retry_if_exception_type(TransientProviderError),
        sleep=sleep,
        reraise=True,
    )

    try:
        value = await retrying(_attempt)
    except ProviderError as e:
        return RetryOutcome(attempts=attempts, error=e)

    return RetryOutcome(value=value, attempts=attempts)
