"""Shared pytest fixtures."""
import pytest
import fakeredis
from fakeredis import aioredis

from shared.database import create_all, get_engine, get_session

import booking_sync.models  # noqa: F401  registers the tables on Base.metadata
from booking_sync.connectivity import ConnectivityMonitor
from booking_sync.engine import BookingSyncEngine
from booking_sync.errors import NetworkUnavailable, NotFound, PaymentInitiationFailed, RemoteStoreError
from booking_sync.local_cache import LocalCache
from booking_sync.payments import PaymentGateway, PaymentInitiator
from booking_sync.remote_store import RemoteStore, Subscription
from booking_sync.schemas import Booking, PaymentOutcome, PaymentSession, PaymentVerification
from booking_sync.sync_queue import SyncQueue

MUTATIONS = ("insert", "update", "delete")


class FakeRemoteStore(RemoteStore):
    """In-memory server of record that records every call."""

    def __init__(self):
        self.rows = {}
        self.calls = []
        self.reachable = True
        self.rejected_ids = set()
        self.subscriptions = []
        self._next_id = 100

    def _check(self):
        if not self.reachable:
            raise NetworkUnavailable("remote store unreachable")

    @property
    def mutations(self):
        return [c for c in self.calls if c[0] in MUTATIONS]

    async def select(self, table, filters, order=None):
        self.calls.append(("select", table, dict(filters)))
        self._check()
        rows = [
            dict(r) for r in self.rows.values()
            if all(r.get(k) == v for k, v in filters.items())
        ]
        if order == "created_at.desc":
            rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return rows

    async def insert(self, table, row):
        self.calls.append(("insert", table, dict(row)))
        self._check()
        row = dict(row)
        if not row.get("id"):
            self._next_id += 1
            row["id"] = f"bk-{self._next_id}"
        self.rows[row["id"]] = row
        return dict(row)

    async def update(self, table, id, patch):
        self.calls.append(("update", table, id, dict(patch)))
        self._check()
        if id in self.rejected_ids:
            raise RemoteStoreError("rejected", upstream_status=400)
        if id not in self.rows:
            raise NotFound(f"{table} row {id} not found", booking_key=id)
        self.rows[id].update(patch)
        return dict(self.rows[id])

    async def delete(self, table, id):
        self.calls.append(("delete", table, id))
        self._check()
        if id in self.rejected_ids:
            raise RemoteStoreError("rejected", upstream_status=400)
        self.rows.pop(id, None)

    async def subscribe(self, table, filters, on_change):
        self.calls.append(("subscribe", table, dict(filters)))
        self._check()
        sub = Subscription(table, filters)
        sub.on_change = on_change
        self.subscriptions.append(sub)
        return sub

    async def unsubscribe(self, handle):
        self.calls.append(("unsubscribe", handle.table, dict(handle.filters)))
        handle.closed = True
        self.subscriptions.remove(handle)

    async def ping(self):
        return self.reachable


class FakeGateway(PaymentGateway):
    """Records payment requests; `settled` maps transaction refs to the status the gateway reports."""

    def __init__(self):
        self.requests = []
        self.error = None
        self.settled = {}
        self.checked = []

    async def initiate(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return PaymentSession(
            redirect_url=f"https://pay.example.com/checkout/{request.transaction_ref}",
            transaction_ref=request.transaction_ref,
        )

    async def verify(self, transaction_ref):
        self.checked.append(transaction_ref)
        if self.error:
            raise self.error
        outcome, booking_id = self.settled.get(transaction_ref, (PaymentOutcome.FAILED, None))
        return PaymentVerification(
            transaction_ref=transaction_ref,
            outcome=outcome,
            status="ACCEPTED" if outcome == PaymentOutcome.PAID else "REFUSED",
            booking_id=booking_id,
        )


@pytest.fixture
def make_row():
    def _make(id="bk-1", user_id="user-1", status="pending", payment_status="pending", **extra):
        row = {
            "id": id,
            "user_id": user_id,
            "service_id": "svc-1",
            "customer_name": "Awa Kone",
            "customer_email": "awa@example.com",
            "customer_phone": "07 08 09 10 11",
            "start_date": "2026-12-01",
            "end_date": "2026-12-05",
            "guests": 2,
            "total_price": "150000",
            "currency": "XOF",
            "status": status,
            "payment_status": payment_status,
            "notes": None,
            "created_at": "2026-10-01T10:00:00+00:00",
            "updated_at": "2026-10-01T10:00:00+00:00",
            "external_ref": None,
        }
        row.update(extra)
        return row
    return _make


@pytest.fixture
def draft():
    return {
        "service_id": "svc-9",
        "customer_name": "  Jean Yao ",
        "customer_email": "Jean.Yao@Example.com",
        "customer_phone": "0102030405",
        "start_date": "2026-12-20",
        "end_date": "2026-12-22",
        "guests": 3,
        "total_price": "98000",
    }


@pytest.fixture
async def session_factory(tmp_path):
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'offline.db'}")
    await create_all(engine)
    yield get_session(engine)
    await engine.dispose()


@pytest.fixture
def cache(session_factory):
    return LocalCache(session_factory, stale_after_seconds=300)


@pytest.fixture
def queue(session_factory):
    return SyncQueue(session_factory)


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def connectivity():
    return ConnectivityMonitor(online=True)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def redis_client():
    return aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
async def engine(cache, queue, remote, connectivity, gateway, redis_client):
    eng = BookingSyncEngine(
        cache,
        queue,
        remote,
        connectivity,
        payments=PaymentInitiator(gateway, country_code="225"),
        redis_client=redis_client,
    )
    await eng.start(user_id="user-1")
    yield eng
    await eng.stop()


@pytest.fixture
def lifecycle(engine):
    return engine.lifecycle


@pytest.fixture
def seed(remote, cache):
    """Put a row on the server and mirror it in the local cache."""
    async def _seed(row):
        remote.rows[row["id"]] = dict(row)
        await cache.put(Booking.model_validate(row), synced=True)
        return row
    return _seed


@pytest.fixture
def payment_failure():
    return PaymentInitiationFailed("payment creation failed")
