from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
LOCAL_KEY_PREFIX = "local-"


def is_local_key(key: str) -> bool:
    return key.startswith(LOCAL_KEY_PREFIX)


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentOutcome(str, Enum):
    PAID = "paid"
    FAILED = "failed"


class MutationAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PaymentMethod(str, Enum):
    WAVE = "wave"
    MOBILE_MONEY = "mobile_money"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"


class ServiceRef(BaseModel):
    name: str
    type: Optional[str] = None
    location: Optional[str] = None


class Booking(BaseModel):
    """
    A booking row as mirrored in the local cache.

    `id` is assigned by the remote store; a booking created offline only has
    a `local_key` until its create has been replayed.
    """

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    local_key: Optional[str] = None
    user_id: str
    service_id: Optional[str] = None
    service: Optional[ServiceRef] = None
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    guests: int = Field(default=1, ge=1)
    total_price: Decimal = Field(ge=0)
    currency: str = "XOF"
    status: BookingStatus = BookingStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    external_ref: Optional[str] = None

    @model_validator(mode="after")
    def _has_key(self):
        if not self.id and not self.local_key:
            raise ValueError("booking needs a server id or a local correlation key")
        return self

    @property
    def key(self) -> str:
        return self.id or self.local_key

    def to_row(self) -> dict:
        """Column values as sent to the remote store."""
        exclude = {"local_key", "service"}
        if not self.id:
            exclude.add("id")
        return self.model_dump(mode="json", exclude=exclude)

    def to_cache(self) -> dict:
        return self.model_dump(mode="json")

    def with_changes(self, changes: dict) -> "Booking":
        return Booking.model_validate({**self.to_cache(), **changes})


class BookingPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Optional[BookingStatus] = None
    payment_status: Optional[PaymentStatus] = None
    external_ref: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    updated_at: Optional[datetime] = None

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", exclude_unset=True)


class BookingDraft(BaseModel):
    service_id: Optional[str] = None
    service: Optional[ServiceRef] = None
    customer_name: str = Field(min_length=3, max_length=100)
    customer_email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    customer_phone: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    guests: int = Field(ge=1, le=50)
    total_price: Decimal = Field(gt=0)
    currency: str = "XOF"
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("customer_name", "notes", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("customer_email", mode="before")
    @classmethod
    def _normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _check_span(self):
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class QueuedMutation(BaseModel):
    """One not-yet-applied mutation. `id` is the insertion order, set on enqueue."""

    id: Optional[int] = None
    user_id: str
    table: str = "bookings"
    action: MutationAction
    booking_key: str
    payload: dict = Field(default_factory=dict)
    enqueued_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_payload(self):
        if self.action == MutationAction.CREATE:
            Booking.model_validate(self.payload)
        elif self.action == MutationAction.UPDATE:
            patch = BookingPatch.model_validate(self.payload)
            if not patch.to_payload():
                raise ValueError("update payload is empty")
        return self


class CustomerInfo(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None


class PaymentRequest(BaseModel):
    booking_id: str
    transaction_ref: str
    amount: int
    currency: str
    method: PaymentMethod
    channels: str
    customer: CustomerInfo
    description: str


class PaymentSession(BaseModel):
    redirect_url: str
    transaction_ref: str


class ConfirmResult(BaseModel):
    booking: Booking
    payment: Optional[PaymentSession] = None


class ChangeEvent(BaseModel):
    event_id: Optional[str] = None
    table: str
    event: str  # insert / update / delete
    record: Optional[dict] = None
    occurred_at: Optional[datetime] = None


class SyncResult(BaseModel):
    synced: int = 0
    total: int = 0
    failed: int = 0
    refreshed: bool = False
    skipped: bool = False

    @property
    def summary(self) -> str:
        return f"{self.synced} of {self.total} changes synced"


class BookingsView(BaseModel):
    bookings: List[Booking]
    stale: bool = False
    synced_at: Optional[datetime] = None
    expired: bool = False
    pending: List[str] = Field(default_factory=list)


class StorageStats(BaseModel):
    bookings: int
    pending_sync: int


# ---- HTTP ----

class ConfirmBookingRequest(BaseModel):
    method: PaymentMethod = PaymentMethod.CARD
    customer_city: Optional[str] = None
    customer_address: Optional[str] = None


class PaymentVerification(BaseModel):
    """The gateway's own answer for a transaction."""

    transaction_ref: str
    outcome: PaymentOutcome
    status: Optional[str] = None
    booking_id: Optional[str] = None


class PaymentWebhook(BaseModel):
    event_id: str
    booking_id: str
    transaction_ref: str
    site_id: Optional[str] = None


class SyncResponse(BaseModel):
    synced: int
    total: int
    failed: int
    refreshed: bool
    skipped: bool
    message: str
