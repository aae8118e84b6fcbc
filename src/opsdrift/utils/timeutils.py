"""
Timestamp helpers shared by the engine, the store and the API layer.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[Union[datetime, str]]) -> Optional[datetime]:
    """
    Normalise a timestamp to an aware UTC datetime.

    Drivers such as sqlite drop tzinfo on the way back, and observer reports
    arrive as ISO strings; both are treated as UTC.
    """
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 rendering used in every API payload."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()


def elapsed_ms(since: Optional[datetime], now: datetime) -> Optional[float]:
    """Milliseconds between ``since`` and ``now``; None when ``since`` is unknown."""
    if since is None:
        return None
    return (ensure_utc(now) - ensure_utc(since)).total_seconds() * 1000.0


def age_seconds(since: Optional[datetime], now: datetime) -> int:
    """Whole seconds since ``since``, never negative; 0 when unknown."""
    if since is None:
        return 0
    seconds = int((ensure_utc(now) - ensure_utc(since)).total_seconds())
    return max(seconds, 0)
