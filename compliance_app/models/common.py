# compliance_app/models/common.py
"""Conversions between model dates and the store's native timestamp type."""
from datetime import date, datetime, time, timezone
from typing import Any, Optional


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_store_timestamp(value: Any) -> Any:
    """BSON has no date type; calendar dates are stored as midnight UTC."""
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    return value


def to_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            return date.fromisoformat(text[:10])
    raise ValueError(f"Cannot convert {value!r} to a date")
