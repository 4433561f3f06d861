from datetime import timedelta

import pytest

from booking_sync.errors import ValidationFailed
from booking_sync.local_cache import utcnow
from booking_sync.schemas import Booking, BookingStatus


class TestLocalCache:
    async def test_load_before_any_save_is_empty(self, cache):
        snapshot = await cache.load("user-1")

        assert len(snapshot) == 0
        assert list(snapshot) == []

    async def test_save_then_load_keeps_order(self, cache, make_row):
        rows = [make_row(id="bk-3"), make_row(id="bk-1"), make_row(id="bk-2")]

        await cache.save(rows, "user-1")
        snapshot = await cache.load("user-1")

        assert [b.id for b in snapshot] == ["bk-3", "bk-1", "bk-2"]

    async def test_snapshot_can_be_iterated_twice(self, cache, make_row):
        await cache.save([make_row(id="bk-1"), make_row(id="bk-2")], "user-1")
        snapshot = await cache.load("user-1")

        first = [b.id for b in snapshot]
        second = [b.id for b in snapshot]

        assert first == second == ["bk-1", "bk-2"]
        assert all(isinstance(b, Booking) for b in snapshot)

    async def test_save_replaces_only_that_users_rows(self, cache, make_row):
        await cache.save([make_row(id="bk-1"), make_row(id="bk-2")], "user-1")
        await cache.save([make_row(id="bk-9", user_id="user-2")], "user-2")

        await cache.save([make_row(id="bk-5")], "user-1")

        assert [b.id for b in await cache.load("user-1")] == ["bk-5"]
        assert [b.id for b in await cache.load("user-2")] == ["bk-9"]

    async def test_invalid_row_leaves_previous_set_intact(self, cache, make_row):
        await cache.save([make_row(id="bk-1")], "user-1")
        broken = make_row(id="bk-2", guests=0)

        with pytest.raises(ValidationFailed):
            await cache.save([make_row(id="bk-3"), broken], "user-1")

        assert [b.id for b in await cache.load("user-1")] == ["bk-1"]

    async def test_rows_of_another_user_are_rejected(self, cache, make_row):
        with pytest.raises(ValidationFailed):
            await cache.save([make_row(id="bk-1", user_id="user-2")], "user-1")

        assert await cache.count("user-1") == 0

    async def test_put_new_row_goes_to_the_top(self, cache, make_row):
        await cache.save([make_row(id="bk-1"), make_row(id="bk-2")], "user-1")

        await cache.put(Booking.model_validate(make_row(id="bk-new")))

        assert [b.id for b in await cache.load("user-1")] == ["bk-new", "bk-1", "bk-2"]

    async def test_put_existing_row_keeps_its_position(self, cache, make_row):
        await cache.save([make_row(id="bk-1"), make_row(id="bk-2")], "user-1")

        await cache.put(Booking.model_validate(make_row(id="bk-2", status="cancelled")))

        bookings = list(await cache.load("user-1"))
        assert [b.id for b in bookings] == ["bk-1", "bk-2"]
        assert bookings[1].status == BookingStatus.CANCELLED

    async def test_optimistic_rows_are_reported_pending(self, cache, make_row):
        await cache.save([make_row(id="bk-1"), make_row(id="bk-2")], "user-1", pending=["bk-2"])
        await cache.put(Booking.model_validate(make_row(id="bk-3")), synced=False)

        assert await cache.pending_keys("user-1") == ["bk-3", "bk-2"]

    async def test_get_and_discard(self, cache, make_row):
        await cache.save([make_row(id="bk-1")], "user-1")

        assert (await cache.get("bk-1")).customer_name == "Awa Kone"
        assert await cache.discard("bk-1") is True
        assert await cache.get("bk-1") is None
        assert await cache.discard("bk-1") is False

    async def test_staleness_follows_last_save(self, cache, make_row):
        assert await cache.is_stale("user-1") is True

        await cache.save([make_row(id="bk-1")], "user-1")

        assert await cache.is_stale("user-1") is False
        later = utcnow() + timedelta(seconds=301)
        assert await cache.is_stale("user-1", now=later) is True
