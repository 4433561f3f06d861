import json
import logging
import secrets
import string
import time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

import httpx

from shared.breaker import CircuitBreaker, CircuitBreakerOpen

from .errors import NetworkUnavailable, PaymentInitiationFailed, PaymentVerificationFailed, ValidationFailed
from .schemas import (
    CustomerInfo,
    PaymentMethod,
    PaymentOutcome,
    PaymentRequest,
    PaymentSession,
    PaymentVerification,
)

logger = logging.getLogger(__name__)

MAX_AMOUNT = Decimal("10000000")
GATEWAY_TIMEOUT = 10.0

CHANNELS = {
    PaymentMethod.CARD: "CREDIT_CARD",
    PaymentMethod.MOBILE_MONEY: "MOBILE_MONEY",
    PaymentMethod.WAVE: "WALLET",
    PaymentMethod.BANK_TRANSFER: "CREDIT_CARD",
}

_REF_ALPHABET = string.ascii_uppercase + string.digits


def normalize_amount(amount) -> int:
    """Gateway amounts are whole units, 0 < amount <= 10,000,000."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationFailed("Amount must be a number")
    if not value.is_finite() or value <= 0:
        raise ValidationFailed("Amount must be greater than 0")
    if value > MAX_AMOUNT:
        raise ValidationFailed("Amount exceeds the maximum of 10,000,000")
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_phone(phone: str | None, country_code: str | None = None) -> str:
    if not phone:
        return ""
    digits = "".join(c for c in phone if c.isdigit())
    if country_code and digits.startswith("0"):
        digits = country_code + digits[1:]
    return digits


def new_transaction_ref(booking_id: str, now_ms: int | None = None) -> str:
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_REF_ALPHABET) for _ in range(6))
    return f"TXN-{booking_id[:8]}-{now_ms}-{suffix}"


class PaymentGateway:
    async def initiate(self, request: PaymentRequest) -> PaymentSession:
        raise NotImplementedError

    async def verify(self, transaction_ref: str) -> PaymentVerification:
        raise NotImplementedError


class HttpPaymentGateway(PaymentGateway):
    """
    Hosted-checkout gateway. A successful creation answers
    {"code": "201", "data": {"payment_url": ...}}; anything else is a failure.
    The check endpoint (`<url>/check` unless given) answers
    {"code": "00", "data": {"status": "ACCEPTED", "metadata": ...}} for a paid
    transaction.
    """

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        notify_url: str | None = None,
        return_url: str | None = None,
        breaker: CircuitBreaker | None = None,
        timeout: float = GATEWAY_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        site_id: str | None = None,
        check_url: str | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.notify_url = notify_url
        self.return_url = return_url
        self.breaker = breaker
        self.timeout = timeout
        self.transport = transport
        self.site_id = site_id
        self.check_url = check_url or f"{url.rstrip('/')}/check"

    def _payload(self, request: PaymentRequest) -> dict:
        return {
            "apikey": self.api_key,
            "site_id": self.site_id,
            "transaction_id": request.transaction_ref,
            "amount": request.amount,
            "currency": request.currency,
            "channels": request.channels,
            "description": request.description,
            "customer_name": request.customer.name,
            "customer_email": request.customer.email,
            "customer_phone_number": request.customer.phone or "",
            "customer_address": request.customer.address or "",
            "customer_city": request.customer.city or "",
            "notify_url": self.notify_url,
            "return_url": self.return_url,
            "metadata": json.dumps({
                "booking_id": request.booking_id,
                "payment_method": request.method.value,
            }),
        }

    async def _post(self, url: str, payload: dict, error) -> dict:
        """POST through the breaker; answers the decoded JSON body."""
        if self.breaker:
            try:
                await self.breaker.allow_request()
            except CircuitBreakerOpen as e:
                raise NetworkUnavailable(str(e))

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(url, json=payload)
        except httpx.TransportError as e:
            if self.breaker:
                await self.breaker.record_failure()
            raise NetworkUnavailable(f"payment gateway unreachable: {e.__class__.__name__}")

        if resp.status_code >= 500:
            if self.breaker:
                await self.breaker.record_failure()
            raise error(f"payment gateway error {resp.status_code}")
        if self.breaker:
            await self.breaker.record_success()

        try:
            body = resp.json()
        except ValueError:
            raise error("payment gateway returned a non-JSON response")
        if not isinstance(body, dict):
            raise error("payment gateway returned an unexpected response")
        return body

    async def initiate(self, request: PaymentRequest) -> PaymentSession:
        body = await self._post(self.url, self._payload(request), PaymentInitiationFailed)

        code = str(body.get("code"))
        if code != "201":
            message = body.get("message") or "payment creation failed"
            if code in ("401", "403"):
                message = "payment gateway configuration error"
            elif code == "422":
                message = "invalid payment data"
            raise PaymentInitiationFailed(message, booking_key=request.booking_id)

        payment_url = (body.get("data") or {}).get("payment_url")
        if not payment_url:
            raise PaymentInitiationFailed("payment gateway returned no payment URL", booking_key=request.booking_id)

        return PaymentSession(redirect_url=payment_url, transaction_ref=request.transaction_ref)

    async def verify(self, transaction_ref: str) -> PaymentVerification:
        payload = {"apikey": self.api_key, "site_id": self.site_id, "transaction_id": transaction_ref}
        body = await self._post(self.check_url, payload, PaymentVerificationFailed)

        data = body.get("data") or {}
        status = data.get("status")
        paid = str(body.get("code")) == "00" and status == "ACCEPTED"

        booking_id = None
        if data.get("metadata"):
            try:
                booking_id = json.loads(data["metadata"]).get("booking_id")
            except (TypeError, ValueError, AttributeError):
                logger.warning("unreadable metadata on transaction %s", transaction_ref)

        return PaymentVerification(
            transaction_ref=transaction_ref,
            outcome=PaymentOutcome.PAID if paid else PaymentOutcome.FAILED,
            status=status,
            booking_id=booking_id,
        )


class PaymentInitiator:
    """
    Starts a payment for a booking. It only talks to the gateway; the booking
    is marked paid later, by the gateway's webhook.
    """

    def __init__(self, gateway: PaymentGateway, country_code: str | None = None):
        self.gateway = gateway
        self.country_code = country_code

    async def initiate(
        self,
        booking_id: str,
        amount,
        currency: str,
        customer: CustomerInfo,
        method: PaymentMethod = PaymentMethod.CARD,
    ) -> PaymentSession:
        name = (customer.name or "").strip()[:100]
        email = (customer.email or "").strip()[:255]
        if "@" not in email:
            raise ValidationFailed("Invalid customer email", booking_key=booking_id)
        if len(name) < 2:
            raise ValidationFailed("Invalid customer name", booking_key=booking_id)

        try:
            method = PaymentMethod(method)
        except ValueError:
            raise ValidationFailed(f"Invalid payment method: {method}", booking_key=booking_id)

        request = PaymentRequest(
            booking_id=booking_id,
            transaction_ref=new_transaction_ref(booking_id),
            amount=normalize_amount(amount),
            currency=currency,
            method=method,
            channels=CHANNELS[method],
            customer=CustomerInfo(
                name=name,
                email=email,
                phone=normalize_phone(customer.phone, self.country_code),
                address=customer.address,
                city=customer.city,
            ),
            description=f"Booking #{booking_id[:8]}",
        )

        session = await self.gateway.initiate(request)
        logger.info("payment %s started for booking %s", session.transaction_ref, booking_id)
        return session

    async def verify(self, transaction_ref: str) -> PaymentVerification:
        verification = await self.gateway.verify(transaction_ref)
        logger.info(
            "payment %s verified as %s (gateway status %s)",
            transaction_ref, verification.outcome.value, verification.status,
        )
        return verification
