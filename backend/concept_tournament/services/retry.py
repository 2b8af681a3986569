"""
Bounded retry for external provider calls
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from concept_tournament.core.config import Settings
from concept_tournament.core.errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CallPolicy:
    """Retry, timeout and concurrency limits shared by one tournament's calls"""
    max_retries: int = 3
    backoff_seconds: float = 1.0
    timeout: float = 120.0
    semaphore: Optional[asyncio.Semaphore] = field(default=None, repr=False)

    @classmethod
    def from_settings(cls, config: Settings) -> "CallPolicy":
        return cls(
            max_retries=config.PROVIDER_MAX_RETRIES,
            backoff_seconds=config.PROVIDER_BACKOFF_SECONDS,
            timeout=config.PROVIDER_CALL_TIMEOUT,
            semaphore=asyncio.Semaphore(config.MAX_CONCURRENT_CALLS),
        )

    def delay_for(self, attempt: int) -> float:
        """Exponential backoff: base, 2*base, 4*base, ..."""
        return self.backoff_seconds * (2 ** attempt)


async def _attempt(operation: Callable[[], Awaitable[T]], policy: CallPolicy) -> T:
    if policy.semaphore is None:
        return await asyncio.wait_for(operation(), timeout=policy.timeout)
    async with policy.semaphore:
        return await asyncio.wait_for(operation(), timeout=policy.timeout)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: CallPolicy,
    label: str = "provider call",
) -> T:
    """
    Run a provider call with retries.

    Total attempts = max_retries + 1. Timeouts and retryable ProviderErrors are
    retried after an exponential backoff; a non-retryable ProviderError stops
    immediately. Anything else is a bug and propagates unchanged.

    Raises:
        ProviderError: when the last attempt fails
    """
    last_error = "no attempt made"
    attempts = 0

    for attempt in range(policy.max_retries + 1):
        attempts = attempt + 1
        try:
            return await _attempt(operation, policy)
        except asyncio.TimeoutError:
            last_error = f"timed out after {policy.timeout}s"
        except ProviderError as e:
            last_error = e.message
            if not e.retryable:
                break

        if attempt < policy.max_retries:
            delay = policy.delay_for(attempt)
            logger.warning(f"{label}: attempt {attempts} failed ({last_error}), retrying in {delay:.1f}s")
            if delay > 0:
                await asyncio.sleep(delay)

    raise ProviderError(f"{label} failed after {attempts} attempt(s): {last_error}", retryable=False)
