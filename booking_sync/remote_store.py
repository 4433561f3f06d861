import logging

import aio_pika
import httpx

from shared.breaker import CircuitBreaker, CircuitBreakerOpen
from shared.rabbitmq import connect, declare_exchange

from .errors import NetworkUnavailable, NotFound, RemoteStoreError
from .events import parse_change, subscription_pattern

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3.0
PING_TIMEOUT = 1.5


class Subscription:
    """Handle for one open change-notification channel."""

    def __init__(self, table: str, filters: dict, connection=None, queue=None, consumer_tag=None):
        self.table = table
        self.filters = dict(filters)
        self.connection = connection
        self.queue = queue
        self.consumer_tag = consumer_tag
        self.closed = False


class RemoteStore:
    """
    Server of record for bookings.

    Request/response calls raise NetworkUnavailable when the call could not
    complete and RemoteStoreError when the store rejected it.
    """

    async def select(self, table: str, filters: dict, order: str | None = None) -> list[dict]:
        raise NotImplementedError

    async def insert(self, table: str, row: dict) -> dict:
        raise NotImplementedError

    async def update(self, table: str, id: str, patch: dict) -> dict:
        raise NotImplementedError

    async def delete(self, table: str, id: str) -> None:
        raise NotImplementedError

    async def subscribe(self, table: str, filters: dict, on_change) -> Subscription:
        raise NotImplementedError

    async def unsubscribe(self, handle: Subscription) -> None:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True


class RestRemoteStore(RemoteStore):
    """
    PostgREST-style HTTP API for rows, RabbitMQ topic exchange for change
    notifications (routing key `<table>.<event>.<user_id>`).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        rabbit_url: str | None = None,
        breaker: CircuitBreaker | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.rabbit_url = rabbit_url
        self.breaker = breaker
        self.timeout = timeout
        self.transport = transport

    def _url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def _headers(self, prefer: str | None = None) -> dict:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @staticmethod
    def _filters(filters: dict) -> dict:
        return {column: f"eq.{value}" for column, value in filters.items()}

    async def _call(
        self,
        method: str,
        table: str,
        params: dict | None = None,
        payload: dict | None = None,
        prefer: str | None = None,
    ):
        if self.breaker:
            try:
                await self.breaker.allow_request()
            except CircuitBreakerOpen as e:
                raise NetworkUnavailable(str(e))

        url = self._url(table)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.request(
                    method=method,
                    url=url,
                    params=params,
                    json=payload,
                    headers=self._headers(prefer),
                )
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status >= 500 and self.breaker:
                await self.breaker.record_failure()
            raise RemoteStoreError(
                f"{method} {url} returned {status}: {e.response.text}",
                upstream_status=status,
            )
        except httpx.TransportError as e:
            # connect errors, timeouts, dropped connections
            if self.breaker:
                await self.breaker.record_failure()
            raise NetworkUnavailable(f"{method} {url} failed: {e.__class__.__name__}")

        if self.breaker:
            await self.breaker.record_success()
        if resp.content:
            return resp.json()
        return None

    async def select(self, table: str, filters: dict, order: str | None = None) -> list[dict]:
        params = self._filters(filters)
        params["select"] = "*"
        if order:
            params["order"] = order
        rows = await self._call("GET", table, params=params)
        return rows or []

    async def insert(self, table: str, row: dict) -> dict:
        rows = await self._call("POST", table, payload=row, prefer="return=representation")
        if not rows:
            raise RemoteStoreError(f"insert into {table} returned no row")
        return rows[0] if isinstance(rows, list) else rows

    async def update(self, table: str, id: str, patch: dict) -> dict:
        rows = await self._call(
            "PATCH", table, params=self._filters({"id": id}), payload=patch,
            prefer="return=representation",
        )
        if not rows:
            raise NotFound(f"{table} row {id} not found", booking_key=id)
        return rows[0] if isinstance(rows, list) else rows

    async def delete(self, table: str, id: str) -> None:
        await self._call("DELETE", table, params=self._filters({"id": id}))

    async def ping(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=PING_TIMEOUT, transport=self.transport) as client:
                r = await client.get(f"{self.base_url}/rest/v1/", headers=self._headers())
                return r.status_code < 500
        except httpx.HTTPError:
            return False

    async def subscribe(self, table: str, filters: dict, on_change) -> Subscription:
        if not self.rabbit_url:
            raise NetworkUnavailable("change feed is not configured, RABBIT_URL is not set")
        try:
            connection = await connect(self.rabbit_url)
        except (aio_pika.exceptions.AMQPError, OSError) as e:
            raise NetworkUnavailable(f"change feed unavailable: {e}")

        async def handle_message(message: aio_pika.abc.AbstractIncomingMessage):
            async with message.process(requeue=False):
                try:
                    change = parse_change(message.body)
                except ValueError as e:
                    logger.warning("dropping malformed change notification: %s", e)
                    return
                await on_change(change)

        try:
            channel = await connection.channel()
            exchange = await declare_exchange(channel)
            queue = await channel.declare_queue(exclusive=True, auto_delete=True)
            await queue.bind(exchange, routing_key=subscription_pattern(table, filters))
            consumer_tag = await queue.consume(handle_message)
        except Exception as e:
            await self._close_connection(connection)
            raise NetworkUnavailable(f"change feed subscription failed: {e.__class__.__name__} {e}") from e

        logger.info("subscribed to %s changes for %s", table, filters)
        return Subscription(table, filters, connection, queue, consumer_tag)

    @staticmethod
    async def _close_connection(connection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.warning("closing change feed connection failed: %s", e)

    async def unsubscribe(self, handle: Subscription) -> None:
        if handle.closed:
            return
        handle.closed = True
        try:
            if handle.queue is not None and handle.consumer_tag:
                await handle.queue.cancel(handle.consumer_tag)
        finally:
            if handle.connection is not None and not handle.connection.is_closed:
                await handle.connection.close()
        logger.info("unsubscribed from %s changes for %s", handle.table, handle.filters)
