import time
from .redis import get_redis

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"

FAILURE_WINDOW_SECONDS = 60


class CircuitBreakerOpen(Exception):
    pass


class CircuitBreaker:
    """Failure counter and state kept in redis under `cb:<name>:*`."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout_seconds: int = 15,
        redis_client=None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self.redis = redis_client or get_redis()
        self.state_key = f"cb:{name}:state"
        self.failures_key = f"cb:{name}:failures"
        self.opened_at_key = f"cb:{name}:opened_at"

    async def state(self) -> str:
        return await self.redis.get(self.state_key) or CLOSED

    async def allow_request(self) -> None:
        state = await self.state()
        if state != OPEN:
            return

        opened_at = await self.redis.get(self.opened_at_key)
        if not opened_at:
            await self.close()
        elif time.time() - float(opened_at) >= self.reset_timeout_seconds:
            await self.redis.set(self.state_key, HALF_OPEN)
        else:
            raise CircuitBreakerOpen(f"Circuit breaker OPEN for {self.name}")

    async def record_success(self) -> None:
        await self.close()

    async def record_failure(self) -> None:
        if await self.state() == HALF_OPEN:
            await self.open()
            return

        failures = await self.redis.incr(self.failures_key)
        if failures == 1:
            await self.redis.expire(self.failures_key, FAILURE_WINDOW_SECONDS)
        if failures >= self.failure_threshold:
            await self.open()

    async def open(self) -> None:
        ttl = self.reset_timeout_seconds + 30
        pipe = self.redis.pipeline()
        pipe.set(self.state_key, OPEN, ex=ttl)
        pipe.set(self.opened_at_key, str(time.time()), ex=ttl)
        await pipe.execute()

    async def close(self) -> None:
        pipe = self.redis.pipeline()
        pipe.set(self.state_key, CLOSED, ex=3600)
        pipe.delete(self.failures_key, self.opened_at_key)
        await pipe.execute()
