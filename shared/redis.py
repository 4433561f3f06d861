import os
import redis.asyncio as redis

REDIS_URL = os.getenv("REDIS_URL") or "redis://localhost:6379/0"

_client = None

def get_redis():
    """Process-wide client, created on first use."""
    global _client
    if _client is None:
        _client = redis.from_url(REDIS_URL, decode_responses=True)
    return _client

async def close_redis():
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
