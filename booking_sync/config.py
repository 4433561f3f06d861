import os

OFFLINE_DATABASE_URL = os.getenv("OFFLINE_DATABASE_URL") or "sqlite+aiosqlite:///./booking_offline.db"

REMOTE_STORE_URL = os.getenv("REMOTE_STORE_URL")
REMOTE_STORE_KEY = os.getenv("REMOTE_STORE_KEY")

RABBIT_URL = os.getenv("RABBIT_URL")

PAYMENT_GATEWAY_URL = os.getenv("PAYMENT_GATEWAY_URL")
PAYMENT_GATEWAY_KEY = os.getenv("PAYMENT_GATEWAY_KEY")
PAYMENT_NOTIFY_URL = os.getenv("PAYMENT_NOTIFY_URL")
PAYMENT_RETURN_URL = os.getenv("PAYMENT_RETURN_URL")
PAYMENT_CHECK_URL = os.getenv("PAYMENT_CHECK_URL")
PAYMENT_SITE_ID = os.getenv("PAYMENT_SITE_ID")
PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET")
PAYMENT_COUNTRY_CODE = os.getenv("PAYMENT_COUNTRY_CODE") or None

CONNECTIVITY_PROBE_SECONDS = float(os.getenv("CONNECTIVITY_PROBE_SECONDS") or "10")
STALE_AFTER_SECONDS = int(os.getenv("STALE_AFTER_SECONDS") or "300")


def require(name: str, value: str | None) -> str:
    if not value:
        raise RuntimeError(f"{name} environment variable is not set")
    return value
