import logging

from pydantic import ValidationError
from sqlalchemy import delete, func, select

from .errors import validation_failed
from .local_cache import utcnow
from .models import BookingKeyAlias, SyncQueueEntry
from .schemas import QueuedMutation

logger = logging.getLogger(__name__)


def _to_entry(row: SyncQueueEntry) -> QueuedMutation:
    return QueuedMutation(
        id=row.id,
        user_id=row.user_id,
        table=row.table_name,
        action=row.action,
        booking_key=row.booking_key,
        payload=row.payload,
        enqueued_at=row.enqueued_at,
    )


class SyncQueue:
    """
    Durable FIFO of mutations made while offline, one logical queue per user.
    Entries are appended and removed, never updated.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def enqueue(self, entry) -> QueuedMutation:
        if not isinstance(entry, QueuedMutation):
            try:
                entry = QueuedMutation.model_validate(entry)
            except ValidationError as e:
                raise validation_failed("Malformed queue entry", e)

        row = SyncQueueEntry(
            user_id=entry.user_id,
            table_name=entry.table,
            action=entry.action.value,
            booking_key=entry.booking_key,
            payload=entry.payload,
            enqueued_at=entry.enqueued_at or utcnow(),
        )
        async with self.session_factory() as db:
            async with db.begin():
                db.add(row)
                await db.flush()
                queued = _to_entry(row)

        logger.info(
            "queued %s for booking %s (entry %s)",
            queued.action.value, queued.booking_key, queued.id,
        )
        return queued

    async def drain(self, user_id: str) -> list[QueuedMutation]:
        """All pending entries for the user in insertion order. Nothing is removed."""
        async with self.session_factory() as db:
            res = await db.execute(
                select(SyncQueueEntry)
                .where(SyncQueueEntry.user_id == user_id)
                .order_by(SyncQueueEntry.id)
            )
            return [_to_entry(r) for r in res.scalars().all()]

    async def remove(self, entry_id: int) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                await db.execute(delete(SyncQueueEntry).where(SyncQueueEntry.id == entry_id))

    async def clear(self, user_id: str, up_to: int | None = None) -> int:
        """Delete the user's entries, only those with id <= `up_to` when given."""
        stmt = delete(SyncQueueEntry).where(SyncQueueEntry.user_id == user_id)
        if up_to is not None:
            stmt = stmt.where(SyncQueueEntry.id <= up_to)
        async with self.session_factory() as db:
            async with db.begin():
                res = await db.execute(stmt)
                return res.rowcount

    async def count(self, user_id: str) -> int:
        async with self.session_factory() as db:
            res = await db.execute(
                select(func.count()).select_from(SyncQueueEntry)
                .where(SyncQueueEntry.user_id == user_id)
            )
            return res.scalar_one()

    # ---- local key -> server id ----

    async def record_alias(self, user_id: str, local_key: str, server_id: str) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                row = await db.get(BookingKeyAlias, local_key)
                if row:
                    row.server_id = server_id
                else:
                    db.add(BookingKeyAlias(local_key=local_key, server_id=server_id, user_id=user_id))

    async def resolve(self, booking_key: str) -> str:
        async with self.session_factory() as db:
            row = await db.get(BookingKeyAlias, booking_key)
            return row.server_id if row else booking_key

    async def has_pending(self, booking_key: str) -> bool:
        """True if any queued entry targets this booking, under its server id or a local key."""
        async with self.session_factory() as db:
            res = await db.execute(
                select(BookingKeyAlias.local_key).where(BookingKeyAlias.server_id == booking_key)
            )
            keys = [booking_key, *res.scalars().all()]
            res = await db.execute(
                select(func.count()).select_from(SyncQueueEntry)
                .where(SyncQueueEntry.booking_key.in_(keys))
            )
            return res.scalar_one() > 0
