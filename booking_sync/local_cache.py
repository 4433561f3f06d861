import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Iterator, Optional

from pydantic import ValidationError
from sqlalchemy import delete, func, select

from .errors import ValidationFailed, validation_failed
from .models import CachedBooking
from .schemas import Booking

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(ts: datetime | None) -> datetime | None:
    # SQLite hands DateTime(timezone=True) back without tzinfo
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def to_booking(value) -> Booking:
    if isinstance(value, Booking):
        return value
    try:
        return Booking.model_validate(value)
    except ValidationError as e:
        raise validation_failed("Malformed booking row", e)


class BookingSnapshot:
    """
    Rows from the last save for one user. Iterating parses them into
    Booking objects on demand; the snapshot can be iterated any number of times.
    """

    def __init__(self, rows: list[dict]):
        self._rows = rows

    def __iter__(self) -> Iterator[Booking]:
        for row in self._rows:
            yield Booking.model_validate(row)

    def __len__(self) -> int:
        return len(self._rows)


class LocalCache:
    """Durable per-user mirror of the user's bookings."""

    def __init__(self, session_factory, stale_after_seconds: int = 300):
        self.session_factory = session_factory
        self.stale_after = timedelta(seconds=stale_after_seconds)

    async def save(self, bookings: Iterable, user_id: str, synced: bool = True, pending: Iterable[str] = ()) -> int:
        """
        Replace every row of `user_id` in one transaction. Rows are validated
        before the transaction opens, so a bad row leaves the old set intact.
        Keys in `pending` are stored as optimistic (not yet confirmed) rows.
        """
        validated = [to_booking(b) for b in bookings]
        for b in validated:
            if b.user_id != user_id:
                raise ValidationFailed(
                    f"Booking {b.key} belongs to another user", booking_key=b.key
                )

        pending = set(pending)
        synced_at = utcnow() if synced else None
        async with self.session_factory() as db:
            async with db.begin():
                await db.execute(delete(CachedBooking).where(CachedBooking.user_id == user_id))
                db.add_all([
                    CachedBooking(
                        booking_key=b.key,
                        user_id=user_id,
                        position=i,
                        payload=b.to_cache(),
                        synced_at=None if b.key in pending else synced_at,
                    )
                    for i, b in enumerate(validated)
                ])

        logger.debug("cache saved %d bookings for user %s", len(validated), user_id)
        return len(validated)

    async def load(self, user_id: str) -> BookingSnapshot:
        async with self.session_factory() as db:
            res = await db.execute(
                select(CachedBooking.payload)
                .where(CachedBooking.user_id == user_id)
                .order_by(CachedBooking.position)
            )
            return BookingSnapshot(list(res.scalars().all()))

    async def get(self, booking_key: str) -> Optional[Booking]:
        async with self.session_factory() as db:
            row = await db.get(CachedBooking, booking_key)
            if not row:
                return None
            return Booking.model_validate(row.payload)

    async def put(self, booking: Booking, synced: bool = False) -> None:
        """Write one row; a new row goes to the top of the user's list."""
        booking = to_booking(booking)
        async with self.session_factory() as db:
            async with db.begin():
                row = await db.get(CachedBooking, booking.key)
                if row:
                    row.payload = booking.to_cache()
                    row.synced_at = utcnow() if synced else None
                    return

                res = await db.execute(
                    select(func.min(CachedBooking.position))
                    .where(CachedBooking.user_id == booking.user_id)
                )
                top = res.scalar()
                db.add(CachedBooking(
                    booking_key=booking.key,
                    user_id=booking.user_id,
                    position=(top - 1) if top is not None else 0,
                    payload=booking.to_cache(),
                    synced_at=utcnow() if synced else None,
                ))

    async def discard(self, booking_key: str) -> bool:
        async with self.session_factory() as db:
            async with db.begin():
                res = await db.execute(
                    delete(CachedBooking).where(CachedBooking.booking_key == booking_key)
                )
                return res.rowcount > 0

    async def count(self, user_id: str) -> int:
        async with self.session_factory() as db:
            res = await db.execute(
                select(func.count()).select_from(CachedBooking)
                .where(CachedBooking.user_id == user_id)
            )
            return res.scalar_one()

    async def pending_keys(self, user_id: str) -> list[str]:
        """Keys of rows written optimistically and not yet confirmed by a refresh."""
        async with self.session_factory() as db:
            res = await db.execute(
                select(CachedBooking.booking_key)
                .where(CachedBooking.user_id == user_id, CachedBooking.synced_at.is_(None))
                .order_by(CachedBooking.position)
            )
            return list(res.scalars().all())

    async def last_synced_at(self, user_id: str) -> Optional[datetime]:
        async with self.session_factory() as db:
            res = await db.execute(
                select(func.max(CachedBooking.synced_at))
                .where(CachedBooking.user_id == user_id)
            )
            return _aware(res.scalar())

    async def is_stale(self, user_id: str, now: datetime | None = None) -> bool:
        synced_at = await self.last_synced_at(user_id)
        if synced_at is None:
            return True
        return ((now or utcnow()) - synced_at) > self.stale_after
