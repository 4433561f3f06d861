import asyncio
import logging

from .connectivity import ConnectivityEvent, ConnectivityMonitor
from .errors import NetworkUnavailable
from .remote_store import RemoteStore, Subscription
from .schemas import ChangeEvent
from .synchronizer import Synchronizer

logger = logging.getLogger(__name__)


class RealtimeReconciler:
    """
    Keeps one change subscription open for the active user while online and
    refreshes the local cache on every notification.

    Opening and closing are serialized, and the old subscription is always
    torn down before a new one is opened.
    """

    def __init__(self, remote: RemoteStore, synchronizer: Synchronizer, connectivity: ConnectivityMonitor):
        self.remote = remote
        self.synchronizer = synchronizer
        self.connectivity = connectivity
        self.table = synchronizer.table
        self._lock = asyncio.Lock()
        self._user_id = None
        self._subscription: Subscription | None = None
        self._remove_listener = None

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def subscription(self) -> Subscription | None:
        return self._subscription

    def start(self):
        if self._remove_listener is None:
            self._remove_listener = self.connectivity.add_listener(self._on_connectivity)

    async def stop(self):
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        async with self._lock:
            await self._close()

    async def set_user(self, user_id: str | None):
        async with self._lock:
            if user_id == self._user_id and self._subscription is not None:
                return
            await self._close()
            self._user_id = user_id
            await self._open()

    async def _on_connectivity(self, event: ConnectivityEvent):
        async with self._lock:
            if event == ConnectivityEvent.DISCONNECTED:
                await self._close()
            else:
                await self._open()

    async def _open(self):
        if self._subscription is not None or not self._user_id or not self.connectivity.online:
            return

        user_id = self._user_id

        async def on_change(change: ChangeEvent):
            await self._handle_change(user_id, change)

        try:
            self._subscription = await self.remote.subscribe(self.table, {"user_id": user_id}, on_change)
        except NetworkUnavailable as e:
            logger.warning("realtime subscription for user %s not opened: %s", user_id, e)

    async def _close(self):
        if self._subscription is None:
            return
        subscription, self._subscription = self._subscription, None
        try:
            await self.remote.unsubscribe(subscription)
        except Exception as e:
            logger.warning("closing realtime subscription failed: %s", e)

    async def _handle_change(self, user_id: str, change: ChangeEvent):
        if user_id != self._user_id:
            # late delivery on a subscription that is being torn down
            return
        logger.debug("%s %s for user %s, refreshing", change.table, change.event, user_id)
        try:
            await self.synchronizer.refresh(user_id)
        except Exception:
            logger.exception("refresh after change notification failed for user %s", user_id)
