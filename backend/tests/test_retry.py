"""
Provider retry tests.
"""

import asyncio

import pytest

from concept_tournament.core.errors import ProviderError
from concept_tournament.services.retry import CallPolicy, call_with_retry


class Flaky:
    """Fails a fixed number of times, then returns 'ok'"""

    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or ProviderError("temporarily unavailable")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


@pytest.fixture
def policy():
    return CallPolicy(max_retries=2, backoff_seconds=0.0, timeout=1.0)


class TestCallWithRetry:
    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self, policy):
        operation = Flaky(0)
        assert await call_with_retry(operation, policy) == "ok"
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, policy):
        operation = Flaky(2)
        assert await call_with_retry(operation, policy) == "ok"
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, policy):
        operation = Flaky(10)
        with pytest.raises(ProviderError) as exc:
            await call_with_retry(operation, policy, label="CLIN review")
        assert operation.calls == 3
        assert "CLIN review failed after 3 attempt(s)" in exc.value.message
        assert exc.value.retryable is False

    @pytest.mark.asyncio
    async def test_non_retryable_stops_immediately(self, policy):
        operation = Flaky(10, ProviderError("bad request", retryable=False))
        with pytest.raises(ProviderError):
            await call_with_retry(operation, policy)
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self):
        calls = []

        async def slow_then_fast():
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(1.0)
            return "ok"

        policy = CallPolicy(max_retries=1, backoff_seconds=0.0, timeout=0.05)
        assert await call_with_retry(slow_then_fast, policy) == "ok"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self, policy):
        operation = Flaky(1, KeyError("bug"))
        with pytest.raises(KeyError):
            await call_with_retry(operation, policy)
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_semaphore_bounds_concurrency(self):
        policy = CallPolicy(max_retries=0, backoff_seconds=0.0, timeout=1.0, semaphore=asyncio.Semaphore(2))
        active = []
        peak = []

        async def tracked():
            active.append(1)
            peak.append(len(active))
            await asyncio.sleep(0.01)
            active.pop()
            return "ok"

        results = await asyncio.gather(*(call_with_retry(tracked, policy) for _ in range(6)))
        assert results == ["ok"] * 6
        assert max(peak) == 2


class TestBackoff:
    def test_exponential_delays(self):
        policy = CallPolicy(max_retries=3, backoff_seconds=0.5)
        assert [policy.delay_for(a) for a in range(4)] == [0.5, 1.0, 2.0, 4.0]
