import pytest

from booking_sync.errors import ValidationFailed
from booking_sync.schemas import MutationAction, QueuedMutation


def _update(key, user_id="user-1", **payload):
    return QueuedMutation(
        user_id=user_id,
        action=MutationAction.UPDATE,
        booking_key=key,
        payload=payload or {"status": "cancelled"},
    )


class TestSyncQueue:
    async def test_drain_returns_entries_in_insertion_order(self, queue):
        first = await queue.enqueue(_update("bk-2"))
        second = await queue.enqueue(_update("bk-1"))
        third = await queue.enqueue({"user_id": "user-1", "action": "delete", "booking_key": "bk-2"})

        entries = await queue.drain("user-1")

        assert [e.id for e in entries] == [first.id, second.id, third.id]
        assert first.id < second.id < third.id
        assert entries[2].action == MutationAction.DELETE

    async def test_drain_does_not_remove(self, queue):
        await queue.enqueue(_update("bk-1"))

        await queue.drain("user-1")

        assert await queue.count("user-1") == 1

    async def test_remove_deletes_one_entry(self, queue):
        first = await queue.enqueue(_update("bk-1"))
        second = await queue.enqueue(_update("bk-2"))

        await queue.remove(first.id)

        assert [e.id for e in await queue.drain("user-1")] == [second.id]

    async def test_queues_are_scoped_per_user(self, queue):
        await queue.enqueue(_update("bk-1"))
        await queue.enqueue(_update("bk-9", user_id="user-2"))

        assert await queue.clear("user-1") == 1
        assert await queue.count("user-1") == 0
        assert await queue.count("user-2") == 1

    async def test_empty_update_is_rejected(self, queue):
        with pytest.raises(ValidationFailed):
            await queue.enqueue({
                "user_id": "user-1",
                "action": "update",
                "booking_key": "bk-1",
                "payload": {},
            })

    async def test_update_with_unknown_column_is_rejected(self, queue):
        with pytest.raises(ValidationFailed):
            await queue.enqueue({
                "user_id": "user-1",
                "action": "update",
                "booking_key": "bk-1",
                "payload": {"price": 10},
            })

    async def test_alias_resolution(self, queue):
        assert await queue.resolve("local-abc") == "local-abc"

        await queue.record_alias("user-1", "local-abc", "bk-7")

        assert await queue.resolve("local-abc") == "bk-7"
        assert await queue.resolve("bk-7") == "bk-7"

    async def test_has_pending_looks_through_aliases(self, queue):
        await queue.record_alias("user-1", "local-abc", "bk-7")
        assert await queue.has_pending("bk-7") is False

        await queue.enqueue(_update("local-abc"))

        assert await queue.has_pending("bk-7") is True
        assert await queue.has_pending("bk-8") is False
