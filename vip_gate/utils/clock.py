"""Time helpers. All persisted times are Unix epoch milliseconds."""

import time
from datetime import datetime, timezone

MILLIS_PER_MINUTE = 60 * 1000
MILLIS_PER_DAY = 24 * 60 * MILLIS_PER_MINUTE


def now_millis() -> int:
    """Current wall-clock time in Unix milliseconds."""
    return int(time.time() * 1000)


def minutes_to_millis(minutes: float) -> int:
    return int(minutes * MILLIS_PER_MINUTE)


def days_to_millis(days: int) -> int:
    return days * MILLIS_PER_DAY


def millis_to_datetime(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def millis_to_iso(millis: int) -> str:
    """Format Unix millis as an ISO 8601 timestamp with milliseconds.

    Mercado Pago expects ``yyyy-MM-dd'T'HH:mm:ss.SSSz`` for date_of_expiration.
    """
    return millis_to_datetime(millis).isoformat(timespec="milliseconds")
