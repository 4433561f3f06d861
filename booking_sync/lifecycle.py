import logging
import uuid

from pydantic import ValidationError

from .connectivity import ConnectivityMonitor
from .errors import (
    Forbidden,
    InvalidTransition,
    NetworkUnavailable,
    NotFound,
    PaymentInitiationFailed,
    ValidationFailed,
    validation_failed,
)
from .local_cache import LocalCache, to_booking, utcnow
from .payments import PaymentInitiator
from .remote_store import RemoteStore
from .schemas import (
    LOCAL_KEY_PREFIX,
    Booking,
    BookingDraft,
    BookingPatch,
    BookingStatus,
    ConfirmResult,
    CustomerInfo,
    MutationAction,
    PaymentMethod,
    PaymentOutcome,
    PaymentStatus,
    QueuedMutation,
)
from .sync_queue import SyncQueue
from .synchronizer import BOOKINGS_TABLE

logger = logging.getLogger(__name__)

UNDELETABLE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.COMPLETED)


class BookingLifecycle:
    """
    Validates and applies booking state transitions.

    Writes go to the remote store while online. Offline, or when the remote
    call cannot complete, the change is written to the local cache first and
    then queued for the synchronizer. Reads of current state always come from
    the local cache.
    """

    def __init__(
        self,
        cache: LocalCache,
        queue: SyncQueue,
        remote: RemoteStore,
        connectivity: ConnectivityMonitor,
        payments: PaymentInitiator | None = None,
        table: str = BOOKINGS_TABLE,
    ):
        self.cache = cache
        self.queue = queue
        self.remote = remote
        self.connectivity = connectivity
        self.payments = payments
        self.table = table

    async def get(self, booking_key: str) -> Booking:
        booking = await self.cache.get(booking_key)
        if booking is None:
            resolved = await self.queue.resolve(booking_key)
            if resolved != booking_key:
                booking = await self.cache.get(resolved)
        if booking is None:
            raise NotFound(f"Booking {booking_key} not found", booking_key=booking_key)
        return booking

    # ---- operations ----

    async def create(self, user_id: str, draft) -> Booking:
        if not isinstance(draft, BookingDraft):
            try:
                draft = BookingDraft.model_validate(draft)
            except ValidationError as e:
                raise validation_failed("Invalid booking", e)

        now = utcnow()
        booking = Booking(
            local_key=f"{LOCAL_KEY_PREFIX}{uuid.uuid4()}",
            user_id=user_id,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
            **draft.model_dump(),
        )

        if self.connectivity.online:
            try:
                row = await self.remote.insert(self.table, booking.to_row())
            except NetworkUnavailable as e:
                logger.warning("create went offline, queueing: %s", e)
            else:
                stored = to_booking(row)
                await self.cache.put(stored, synced=True)
                return stored

        await self.cache.put(booking)
        await self.queue.enqueue(QueuedMutation(
            user_id=user_id,
            action=MutationAction.CREATE,
            booking_key=booking.key,
            payload=booking.to_cache(),
        ))
        return booking

    async def confirm(
        self,
        booking_key: str,
        method: PaymentMethod = PaymentMethod.CARD,
        customer: CustomerInfo | None = None,
    ) -> ConfirmResult:
        """
        Confirm a pending booking. An unpaid booking starts a payment and
        stays pending until the gateway reports back; an already paid one is
        confirmed right away.
        """
        booking = await self.get(booking_key)
        if booking.status != BookingStatus.PENDING:
            raise InvalidTransition(
                f"Only pending bookings can be confirmed (status is {booking.status.value})",
                booking_key=booking.key,
            )

        if booking.payment_status == PaymentStatus.PAID:
            updated = await self._update(booking, BookingPatch(status=BookingStatus.CONFIRMED))
            return ConfirmResult(booking=updated)

        if booking.payment_status != PaymentStatus.PENDING:
            raise InvalidTransition(
                f"Payment is {booking.payment_status.value}, booking cannot be confirmed",
                booking_key=booking.key,
            )

        if self.payments is None:
            raise PaymentInitiationFailed("Payments are not configured", booking_key=booking.key)
        if not booking.id:
            raise InvalidTransition("Booking has not been synced yet", booking_key=booking.key)
        if not self.connectivity.online:
            raise NetworkUnavailable("Payments need a connection", booking_key=booking.key)

        customer = customer or CustomerInfo(
            name=booking.customer_name,
            email=booking.customer_email,
            phone=booking.customer_phone,
        )
        session = await self.payments.initiate(
            booking.id, booking.total_price, booking.currency, customer, method
        )
        updated = await self._update(booking, BookingPatch(external_ref=session.transaction_ref))
        return ConfirmResult(booking=updated, payment=session)

    async def cancel(self, booking_key: str) -> Booking:
        booking = await self.get(booking_key)
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidTransition("Booking is already cancelled", booking_key=booking.key)

        if booking.payment_status == PaymentStatus.PAID:
            patch = BookingPatch(status=BookingStatus.CANCELLED, payment_status=PaymentStatus.REFUNDED)
        else:
            patch = BookingPatch(status=BookingStatus.CANCELLED)
        return await self._update(booking, patch)

    async def delete_booking(self, booking_key: str) -> None:
        booking = await self.get(booking_key)
        if booking.status in UNDELETABLE_STATUSES and booking.payment_status == PaymentStatus.PAID:
            raise Forbidden(
                "Paid bookings must be cancelled and refunded before deletion",
                booking_key=booking.key,
            )
        await self._delete(booking)

    async def apply_payment_result(self, booking_key: str, outcome, transaction_ref: str | None = None) -> Booking:
        try:
            outcome = PaymentOutcome(outcome)
        except ValueError:
            raise ValidationFailed(f"Unknown payment outcome: {outcome}", booking_key=booking_key)

        booking = await self.get(booking_key)
        if booking.payment_status != PaymentStatus.PENDING:
            raise InvalidTransition(
                f"Payment is already {booking.payment_status.value}",
                booking_key=booking.key,
            )
        if transaction_ref and booking.external_ref and transaction_ref != booking.external_ref:
            raise ValidationFailed("Transaction reference does not match", booking_key=booking.key)

        if outcome == PaymentOutcome.FAILED:
            return await self._update(booking, BookingPatch(payment_status=PaymentStatus.FAILED))

        if booking.status == BookingStatus.PENDING:
            patch = BookingPatch(payment_status=PaymentStatus.PAID, status=BookingStatus.CONFIRMED)
        else:
            patch = BookingPatch(payment_status=PaymentStatus.PAID)
            if booking.status == BookingStatus.CANCELLED:
                logger.warning("booking %s was paid after cancellation, refund required", booking.key)
        return await self._update(booking, patch)

    async def settle_payment(self, booking_key: str, transaction_ref: str) -> Booking:
        """Ask the gateway how the transaction ended and apply that outcome."""
        if self.payments is None:
            raise PaymentInitiationFailed("Payments are not configured", booking_key=booking_key)
        verification = await self.payments.verify(transaction_ref)
        if verification.booking_id and verification.booking_id != booking_key:
            logger.warning(
                "transaction %s belongs to booking %s, not %s",
                transaction_ref, verification.booking_id, booking_key,
            )
            booking_key = verification.booking_id
        return await self.apply_payment_result(booking_key, verification.outcome, transaction_ref=transaction_ref)

    # ---- write path ----

    async def _remote_allowed(self, booking: Booking) -> bool:
        # earlier queued changes to the same booking must reach the server first
        if not self.connectivity.online or not booking.id:
            return False
        return not await self.queue.has_pending(booking.key)

    async def _update(self, booking: Booking, patch: BookingPatch) -> Booking:
        changes = patch.to_payload()
        changes["updated_at"] = utcnow().isoformat()
        updated = booking.with_changes(changes)

        if await self._remote_allowed(booking):
            try:
                row = await self.remote.update(self.table, booking.id, changes)
            except NetworkUnavailable as e:
                logger.warning("update of %s went offline, queueing: %s", booking.key, e)
            else:
                stored = to_booking(row)
                await self.cache.put(stored, synced=True)
                return stored

        await self.cache.put(updated)
        await self.queue.enqueue(QueuedMutation(
            user_id=booking.user_id,
            action=MutationAction.UPDATE,
            booking_key=booking.key,
            payload=changes,
        ))
        return updated

    async def _delete(self, booking: Booking) -> None:
        if await self._remote_allowed(booking):
            try:
                await self.remote.delete(self.table, booking.id)
            except NetworkUnavailable as e:
                logger.warning("delete of %s went offline, queueing: %s", booking.key, e)
            else:
                await self.cache.discard(booking.key)
                return

        await self.cache.discard(booking.key)
        await self.queue.enqueue(QueuedMutation(
            user_id=booking.user_id,
            action=MutationAction.DELETE,
            booking_key=booking.key,
        ))
