from .redis import get_redis

PROCESSED_TTL = 86400

def _key(event_id: str) -> str:
    return f"event:{event_id}"

async def mark_processed(event_id: str, client=None) -> bool:
    """
    Claim an event id. Returns False if another delivery already claimed it.
    """
    client = client or get_redis()
    claimed = await client.set(_key(event_id), "1", ex=PROCESSED_TTL, nx=True)
    return bool(claimed)

async def release(event_id: str, client=None):
    client = client or get_redis()
    await client.delete(_key(event_id))
