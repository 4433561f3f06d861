class BookingError(Exception):
    """Base class for every failure the booking engine reports to callers."""

    status_code = 400

    def __init__(self, message: str, booking_key: str | None = None):
        super().__init__(message)
        self.message = message
        self.booking_key = booking_key


class NotFound(BookingError):
    status_code = 404


class InvalidTransition(BookingError):
    status_code = 409


class Forbidden(BookingError):
    status_code = 403


class ValidationFailed(BookingError):
    status_code = 422

    def __init__(self, message: str, errors: list | None = None, booking_key: str | None = None):
        super().__init__(message, booking_key)
        self.errors = errors or []


class NetworkUnavailable(BookingError):
    """A remote call could not complete (transport error, timeout, open breaker)."""

    status_code = 503


class RemoteStoreError(BookingError):
    """The remote store answered, but rejected the request."""

    status_code = 502

    def __init__(self, message: str, upstream_status: int | None = None, booking_key: str | None = None):
        super().__init__(message, booking_key)
        self.upstream_status = upstream_status


class PaymentInitiationFailed(BookingError):
    status_code = 502


class PaymentVerificationFailed(BookingError):
    status_code = 502


def validation_failed(message: str, exc, booking_key: str | None = None) -> ValidationFailed:
    """Wrap a pydantic ValidationError."""
    errors = exc.errors(include_url=False, include_context=False, include_input=False)
    return ValidationFailed(message, errors=errors, booking_key=booking_key)
