"""
Limit period computation.

The single source of truth for accounting windows, shared by the limit
evaluator and the usage aggregator so the two can never drift apart. All
boundaries are computed in one configured time zone (UTC by default).
"""

from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from .models import DEFAULT_LIMIT_PERIOD, LimitPeriod


# Months per accounting block
PERIOD_MONTHS: dict[str, int] = {
    "monthly": 1,
    "quarterly": 3,
    "half_yearly": 6,
    "yearly": 12,
}


def localize(now: Optional[datetime], tz_name: str = "UTC") -> datetime:
    """
    Express ``now`` in the accounting time zone.

    Naive datetimes are taken to already be in that zone. ``None`` means the
    current wall-clock time.
    """
    tz = ZoneInfo(tz_name)
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def compute_period_start(limit_period: Optional[LimitPeriod], now: date) -> date:
    """
    Get the first day of the accounting period containing ``now``.

    Unknown or unset periods fall back to monthly.

    Args:
        limit_period: monthly, quarterly, half_yearly or yearly.
        now: Current date (a datetime is reduced to its date).

    Returns:
        First day of the current period.
    """
    if isinstance(now, datetime):
        now = now.date()
    block = PERIOD_MONTHS.get(limit_period or DEFAULT_LIMIT_PERIOD, 1)
    # Months are 0-indexed for the block arithmetic
    start_month = ((now.month - 1) // block) * block + 1
    return date(now.year, start_month, 1)


def period_window(
    limit_period: Optional[LimitPeriod],
    now: Optional[datetime] = None,
    tz_name: str = "UTC",
) -> tuple[datetime, datetime]:
    """
    Get the half-open window ``[period_start, tomorrow)`` as aware datetimes.

    Args:
        limit_period: Accounting period of the item.
        now: Evaluation instant; defaults to the current time.
        tz_name: Accounting time zone.

    Returns:
        Tuple of (start, end) at local midnight in ``tz_name``.
    """
    local_now = localize(now, tz_name)
    tz = local_now.tzinfo
    start = datetime.combine(compute_period_start(limit_period, local_now.date()), time.min, tzinfo=tz)
    end = datetime.combine(local_now.date() + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def today_in(now: Optional[datetime] = None, tz_name: str = "UTC") -> date:
    """Get the current date in the accounting time zone."""
    return localize(now, tz_name).date()
