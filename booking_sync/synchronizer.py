import logging

from .connectivity import ConnectivityMonitor
from .errors import NetworkUnavailable, NotFound, RemoteStoreError, ValidationFailed
from .local_cache import LocalCache, to_booking
from .remote_store import RemoteStore
from .schemas import Booking, BookingsView, MutationAction, QueuedMutation, SyncResult, is_local_key
from .sync_queue import SyncQueue

logger = logging.getLogger(__name__)

BOOKINGS_TABLE = "bookings"
NEWEST_FIRST = "created_at.desc"


class Synchronizer:
    """
    Replays the sync queue against the remote store and refreshes the local
    cache from the server of record.

    Only one drain runs at a time; a trigger that arrives while a drain is in
    progress is dropped and the caller gets a skipped result.
    """

    def __init__(
        self,
        cache: LocalCache,
        queue: SyncQueue,
        remote: RemoteStore,
        connectivity: ConnectivityMonitor,
        table: str = BOOKINGS_TABLE,
    ):
        self.cache = cache
        self.queue = queue
        self.remote = remote
        self.connectivity = connectivity
        self.table = table
        self._draining = False

    @property
    def draining(self) -> bool:
        return self._draining

    async def sync_now(self, user_id: str) -> SyncResult:
        if self._draining:
            logger.info("drain already in progress, skipping trigger for user %s", user_id)
            return SyncResult(skipped=True)
        if not self.connectivity.online:
            logger.info("offline, nothing to sync for user %s", user_id)
            return SyncResult(skipped=True)

        self._draining = True
        try:
            entries = await self.queue.drain(user_id)
            synced = 0
            failed = 0
            for entry in entries:
                if entry.table != self.table:
                    failed += 1
                    logger.warning("entry %s targets unsupported table %s, left queued", entry.id, entry.table)
                    continue
                try:
                    await self._apply(entry)
                except Exception as e:
                    failed += 1
                    logger.warning(
                        "sync of entry %s (%s %s) failed: %s",
                        entry.id, entry.action.value, entry.booking_key, e,
                    )
                    continue
                await self.queue.remove(entry.id)
                synced += 1

            if entries and not failed:
                # entries queued while this drain ran were never sent
                await self.queue.clear(user_id, up_to=entries[-1].id)

            refreshed = await self.refresh(user_id)
            result = SyncResult(synced=synced, total=len(entries), failed=failed, refreshed=refreshed)
            if entries:
                logger.info("user %s: %s", user_id, result.summary)
            return result
        finally:
            self._draining = False

    async def _apply(self, entry: QueuedMutation) -> None:
        key = await self.queue.resolve(entry.booking_key)

        if entry.action == MutationAction.CREATE:
            local = Booking.model_validate(entry.payload)
            row = await self.remote.insert(self.table, local.to_row())
            stored = to_booking(row)
            await self.queue.record_alias(entry.user_id, entry.booking_key, stored.id)
            await self.cache.discard(entry.booking_key)
            await self.cache.put(stored, synced=True)
            return

        if is_local_key(key):
            raise NotFound(f"booking {key} has not been created remotely yet", booking_key=key)

        if entry.action == MutationAction.UPDATE:
            await self.remote.update(self.table, key, entry.payload)
        elif entry.action == MutationAction.DELETE:
            await self.remote.delete(self.table, key)

    async def refresh(self, user_id: str) -> bool:
        """
        Overwrite the user's cache with the server's list, newest first.
        Mutations still queued are laid over the fetched rows so the cache
        never goes back behind a local change. Returns False, leaving the cache
        untouched, when the fetch fails.
        """
        try:
            rows = await self.remote.select(self.table, {"user_id": user_id}, order=NEWEST_FIRST)
            bookings = [to_booking(r) for r in rows]
        except (NetworkUnavailable, RemoteStoreError, ValidationFailed) as e:
            logger.warning("refresh for user %s failed, serving cached bookings: %s", user_id, e)
            return False

        pending_entries = await self.queue.drain(user_id)
        bookings, pending = await self._overlay(bookings, pending_entries)
        await self.cache.save(bookings, user_id, pending=pending)
        return True

    async def _overlay(self, bookings: list[Booking], entries: list[QueuedMutation]):
        by_key = {b.key: b for b in bookings}
        order = [b.key for b in bookings]
        pending = set()

        for entry in entries:
            key = await self.queue.resolve(entry.booking_key)
            if entry.action == MutationAction.CREATE:
                if key not in by_key:
                    by_key[key] = Booking.model_validate(entry.payload)
                    order.insert(0, key)
            elif entry.action == MutationAction.UPDATE:
                if key in by_key:
                    by_key[key] = by_key[key].with_changes(entry.payload)
            elif entry.action == MutationAction.DELETE:
                by_key.pop(key, None)
            pending.add(key)

        return [by_key[k] for k in order if k in by_key], pending

    async def bookings(self, user_id: str) -> BookingsView:
        """
        Read path: refresh when online, always answer from the cache.

        `stale` means this read could not refresh; `expired` means the last
        successful refresh is older than the cache's staleness window.
        `pending` lists bookings carrying local changes not yet confirmed.
        """
        refreshed = False
        if self.connectivity.online:
            refreshed = await self.refresh(user_id)
        snapshot = await self.cache.load(user_id)
        return BookingsView(
            bookings=list(snapshot),
            stale=not refreshed,
            synced_at=await self.cache.last_synced_at(user_id),
            expired=await self.cache.is_stale(user_id),
            pending=await self.cache.pending_keys(user_id),
        )
