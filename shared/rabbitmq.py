import os
import aio_pika

RABBIT_URL = os.getenv("RABBIT_URL")  # required for realtime change notifications
EXCHANGE_NAME = "domain_events"


async def connect(url: str | None = None):
    url = url or RABBIT_URL
    if not url:
        return None
    return await aio_pika.connect_robust(url)


async def declare_exchange(channel):
    return await channel.declare_exchange(
        EXCHANGE_NAME, aio_pika.ExchangeType.TOPIC, durable=True
    )
