from fastapi import APIRouter, Header, HTTPException, Request

from shared.idempotency import mark_processed, release

from .engine import BookingSyncEngine
from .errors import BookingError, ValidationFailed
from .schemas import (
    Booking,
    BookingDraft,
    BookingsView,
    ConfirmBookingRequest,
    ConfirmResult,
    CustomerInfo,
    PaymentWebhook,
    StorageStats,
    SyncResponse,
)

router = APIRouter()


def get_engine(request: Request) -> BookingSyncEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Booking engine not started")
    return engine


async def _call(coro):
    try:
        return await coro
    except ValidationFailed as e:
        raise HTTPException(status_code=e.status_code, detail={"message": e.message, "errors": e.errors})
    except BookingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/users/{user_id}/bookings", response_model=BookingsView)
async def list_bookings(user_id: str, request: Request):
    engine = get_engine(request)
    return await _call(engine.synchronizer.bookings(user_id))


@router.post("/users/{user_id}/bookings", response_model=Booking, status_code=201)
async def create_booking(user_id: str, data: BookingDraft, request: Request):
    engine = get_engine(request)
    return await _call(engine.lifecycle.create(user_id, data))


@router.post("/users/{user_id}/sync", response_model=SyncResponse)
async def sync_now(user_id: str, request: Request):
    engine = get_engine(request)
    result = await _call(engine.sync_now(user_id))
    return SyncResponse(
        synced=result.synced,
        total=result.total,
        failed=result.failed,
        refreshed=result.refreshed,
        skipped=result.skipped,
        message=result.summary,
    )


@router.get("/users/{user_id}/stats", response_model=StorageStats)
async def storage_stats(user_id: str, request: Request):
    engine = get_engine(request)
    return await engine.stats(user_id)


@router.post("/bookings/{booking_key}/confirm", response_model=ConfirmResult)
async def confirm_booking(booking_key: str, request: Request, data: ConfirmBookingRequest | None = None):
    engine = get_engine(request)
    data = data or ConfirmBookingRequest()

    customer = None
    if data.customer_city or data.customer_address:
        booking = await _call(engine.lifecycle.get(booking_key))
        customer = CustomerInfo(
            name=booking.customer_name,
            email=booking.customer_email,
            phone=booking.customer_phone,
            address=data.customer_address,
            city=data.customer_city,
        )
    return await _call(engine.lifecycle.confirm(booking_key, method=data.method, customer=customer))


@router.post("/bookings/{booking_key}/cancel", response_model=Booking)
async def cancel_booking(booking_key: str, request: Request):
    engine = get_engine(request)
    return await _call(engine.lifecycle.cancel(booking_key))


@router.delete("/bookings/{booking_key}", status_code=204)
async def delete_booking(booking_key: str, request: Request):
    engine = get_engine(request)
    await _call(engine.lifecycle.delete_booking(booking_key))


@router.post("/payments/webhook")
async def payment_webhook(
    data: PaymentWebhook,
    request: Request,
    x_webhook_secret: str | None = Header(default=None),
):
    engine = get_engine(request)
    if engine.webhook_secret and x_webhook_secret != engine.webhook_secret:
        raise HTTPException(status_code=403, detail="Invalid webhook secret")
    if engine.payment_site_id and data.site_id != engine.payment_site_id:
        raise HTTPException(status_code=403, detail="Invalid site id")

    if not await mark_processed(data.event_id, client=engine.redis):
        return {"status": "duplicate", "booking_id": data.booking_id}

    try:
        booking = await _call(engine.lifecycle.settle_payment(data.booking_id, data.transaction_ref))
    except HTTPException:
        # let the gateway's retry be processed again
        await release(data.event_id, client=engine.redis)
        raise

    return {
        "status": "processed",
        "booking_id": booking.key,
        "booking_status": booking.status.value,
        "payment_status": booking.payment_status.value,
    }
