import asyncio
import logging

from shared.breaker import CircuitBreaker
from shared.database import create_all, get_engine, get_session
from shared.redis import get_redis

from . import config
from .connectivity import ConnectivityEvent, ConnectivityMonitor, probe_loop
from .lifecycle import BookingLifecycle
from .local_cache import LocalCache
from .payments import HttpPaymentGateway, PaymentInitiator
from .realtime import RealtimeReconciler
from .remote_store import RemoteStore, RestRemoteStore
from .schemas import StorageStats, SyncResult
from .sync_queue import SyncQueue
from .synchronizer import Synchronizer

logger = logging.getLogger(__name__)


class BookingSyncEngine:
    """Wires the cache, queue, synchronizer, realtime reconciler and lifecycle together."""

    def __init__(
        self,
        cache: LocalCache,
        queue: SyncQueue,
        remote: RemoteStore,
        connectivity: ConnectivityMonitor,
        payments: PaymentInitiator | None = None,
        redis_client=None,
        webhook_secret: str | None = None,
        payment_site_id: str | None = None,
    ):
        self.cache = cache
        self.queue = queue
        self.remote = remote
        self.connectivity = connectivity
        self.redis = redis_client or get_redis()
        self.webhook_secret = webhook_secret
        self.payment_site_id = payment_site_id

        self.synchronizer = Synchronizer(cache, queue, remote, connectivity)
        self.lifecycle = BookingLifecycle(cache, queue, remote, connectivity, payments)
        self.realtime = RealtimeReconciler(remote, self.synchronizer, connectivity)

        self.user_id: str | None = None
        self.last_sync: SyncResult | None = None
        self._remove_listener = None
        self._stop_event = asyncio.Event()
        self._probe_task = None

    async def start(self, user_id: str | None = None, probe_interval: float | None = None):
        if self._remove_listener is None:
            self._remove_listener = self.connectivity.add_listener(self._on_connectivity)
        self.realtime.start()
        if user_id:
            await self.set_user(user_id)
        if probe_interval:
            self._stop_event.clear()
            self._probe_task = asyncio.create_task(
                probe_loop(self.connectivity, self.remote.ping, self._stop_event, probe_interval)
            )

    async def stop(self):
        self._stop_event.set()
        if self._probe_task:
            await self._probe_task
            self._probe_task = None
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        await self.realtime.stop()

    async def set_user(self, user_id: str | None):
        self.user_id = user_id
        await self.realtime.set_user(user_id)

    async def sync_now(self, user_id: str | None = None) -> SyncResult:
        user_id = user_id or self.user_id
        if not user_id:
            logger.info("no active user, nothing to sync")
            return SyncResult(skipped=True)
        result = await self.synchronizer.sync_now(user_id)
        if not result.skipped:
            self.last_sync = result
        return result

    async def stats(self, user_id: str) -> StorageStats:
        return StorageStats(
            bookings=await self.cache.count(user_id),
            pending_sync=await self.queue.count(user_id),
        )

    async def _on_connectivity(self, event: ConnectivityEvent):
        if event != ConnectivityEvent.RECONNECTED or not self.user_id:
            return
        result = await self.sync_now(self.user_id)
        if not result.skipped:
            logger.info("reconnected: %s", result.summary)


async def build_engine(database_url: str | None = None, online: bool = True) -> BookingSyncEngine:
    """Build an engine from environment configuration."""
    db_engine = get_engine(database_url or config.OFFLINE_DATABASE_URL)
    await create_all(db_engine)
    session_factory = get_session(db_engine)

    remote = RestRemoteStore(
        config.require("REMOTE_STORE_URL", config.REMOTE_STORE_URL),
        api_key=config.REMOTE_STORE_KEY,
        rabbit_url=config.RABBIT_URL,
        breaker=CircuitBreaker("remote-store", failure_threshold=5, reset_timeout_seconds=10),
    )

    payments = None
    if config.PAYMENT_GATEWAY_URL:
        gateway = HttpPaymentGateway(
            config.PAYMENT_GATEWAY_URL,
            api_key=config.PAYMENT_GATEWAY_KEY,
            notify_url=config.PAYMENT_NOTIFY_URL,
            return_url=config.PAYMENT_RETURN_URL,
            breaker=CircuitBreaker("payment-gateway", failure_threshold=3, reset_timeout_seconds=30),
            site_id=config.PAYMENT_SITE_ID,
            check_url=config.PAYMENT_CHECK_URL,
        )
        payments = PaymentInitiator(gateway, country_code=config.PAYMENT_COUNTRY_CODE)

    return BookingSyncEngine(
        LocalCache(session_factory, stale_after_seconds=config.STALE_AFTER_SECONDS),
        SyncQueue(session_factory),
        remote,
        ConnectivityMonitor(online=online),
        payments=payments,
        webhook_secret=config.PAYMENT_WEBHOOK_SECRET,
        payment_site_id=config.PAYMENT_SITE_ID,
    )
