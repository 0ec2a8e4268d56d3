"""Shared numeric and time helpers for ledger calculations."""
from datetime import datetime, timezone, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

Number = Union[int, float, Decimal]

_ONE_DAY = timedelta(days=1)


def round_half_up(value: Number) -> int:
    """Round to the nearest integer, halves away from zero (262.5 -> 263).

    Floats go through str() so 0.1-style binary noise does not leak into the result.
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_dt(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (ValueError, TypeError):
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def first_of_next_month(now: datetime) -> datetime:
    """00:00 UTC on the first day of the calendar month after now."""
    now = now.astimezone(timezone.utc)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


def ceil_days_between(start: datetime, end: datetime) -> int:
    """ceil((end - start) / 1 day), exact to the microsecond."""
    micros = (end - start) // timedelta(microseconds=1)
    day_micros = _ONE_DAY // timedelta(microseconds=1)
    return -(-micros // day_micros)
