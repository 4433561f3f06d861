import json

from pydantic import ValidationError

from .schemas import ChangeEvent

CHANGE_EVENTS = ("insert", "update", "delete")

def subscription_pattern(table: str, filters: dict) -> str:
    user_id = filters.get("user_id")
    if user_id:
        return f"{table}.*.{user_id}"
    return f"{table}.#"

def parse_change(body: bytes | str) -> ChangeEvent:
    """
    Decode a change notification envelope:
    {"event_id", "event_type": "<table>.<insert|update|delete>", "occurred_at", "data": {"record": {...}}}
    Raises ValueError on anything else.
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    payload = json.loads(body)
    if not isinstance(payload, dict):
        raise ValueError("change notification is not an object")

    table, _, event = (payload.get("event_type") or "").partition(".")
    if not table or event not in CHANGE_EVENTS:
        raise ValueError(f"unknown change event type: {payload.get('event_type')!r}")

    data = payload.get("data") or {}
    try:
        return ChangeEvent(
            event_id=payload.get("event_id"),
            table=table,
            event=event,
            record=data.get("record"),
            occurred_at=payload.get("occurred_at"),
        )
    except ValidationError as e:
        raise ValueError(str(e))
