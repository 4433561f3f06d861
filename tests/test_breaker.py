import time

import pytest

from shared.breaker import CircuitBreaker, CircuitBreakerOpen
from shared.idempotency import mark_processed, release


class TestCircuitBreaker:
    async def test_opens_after_threshold(self, redis_client):
        breaker = CircuitBreaker("upstream", failure_threshold=2, redis_client=redis_client)

        await breaker.record_failure()
        await breaker.allow_request()
        await breaker.record_failure()

        with pytest.raises(CircuitBreakerOpen):
            await breaker.allow_request()

    async def test_half_open_after_timeout(self, redis_client):
        breaker = CircuitBreaker("upstream", failure_threshold=1, reset_timeout_seconds=5, redis_client=redis_client)
        await breaker.record_failure()
        await redis_client.set("cb:upstream:opened_at", str(time.time() - 10))

        await breaker.allow_request()
        assert await breaker.state() == "HALF_OPEN"

        await breaker.record_failure()
        assert await breaker.state() == "OPEN"

    async def test_open_without_timestamp_closes(self, redis_client):
        breaker = CircuitBreaker("upstream", failure_threshold=1, redis_client=redis_client)
        await redis_client.set("cb:upstream:state", "OPEN")

        await breaker.allow_request()

        assert await breaker.state() == "CLOSED"

    async def test_success_closes_and_resets(self, redis_client):
        breaker = CircuitBreaker("upstream", failure_threshold=3, redis_client=redis_client)
        await breaker.record_failure()
        await breaker.record_failure()

        await breaker.record_success()

        assert await breaker.state() == "CLOSED"
        assert await redis_client.get("cb:upstream:failures") is None


class TestIdempotency:
    async def test_event_is_claimed_once(self, redis_client):
        assert await mark_processed("evt-1", client=redis_client) is True
        assert await mark_processed("evt-1", client=redis_client) is False
        assert await redis_client.exists("event:evt-1") == 1

    async def test_release_allows_a_retry(self, redis_client):
        await mark_processed("evt-1", client=redis_client)

        await release("evt-1", client=redis_client)

        assert await redis_client.exists("event:evt-1") == 0
        assert await mark_processed("evt-1", client=redis_client) is True
