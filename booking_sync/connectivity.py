import asyncio
import logging
from enum import Enum

logger = logging.getLogger(__name__)


class ConnectivityEvent(str, Enum):
    RECONNECTED = "reconnected"
    DISCONNECTED = "disconnected"


class ConnectivityMonitor:
    """
    Online/offline state for the process, fed by environment signals through
    set_online(). One event is fired per actual transition; repeating the
    current state fires nothing.

    Listeners are coroutine functions taking a ConnectivityEvent. They run in
    registration order and a failing listener does not stop the others.
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners = []

    @property
    def online(self) -> bool:
        return self._online

    def add_listener(self, listener):
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def set_online(self, online: bool) -> ConnectivityEvent | None:
        if online == self._online:
            return None

        self._online = online
        event = ConnectivityEvent.RECONNECTED if online else ConnectivityEvent.DISCONNECTED
        logger.info("connectivity %s", event.value)

        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                logger.exception("connectivity listener failed on %s", event.value)
        return event


async def probe_loop(monitor: ConnectivityMonitor, probe, stop_event: asyncio.Event, interval: float = 10.0):
    """Poll `probe()` (an awaitable returning bool) and feed the result to the monitor."""
    while not stop_event.is_set():
        try:
            online = bool(await probe())
        except Exception as e:
            logger.debug("connectivity probe failed: %s", e)
            online = False
        await monitor.set_online(online)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue
