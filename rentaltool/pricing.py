import datetime
import math
from typing import Optional

from .models import RateType

UNIT_LENGTHS = {
    RateType.HOURLY: datetime.timedelta(hours=1),
    RateType.DAILY: datetime.timedelta(days=1),
    RateType.WEEKLY: datetime.timedelta(weeks=1),
    # Months are approximated as 30 days.
    RateType.MONTHLY: datetime.timedelta(days=30),
}


def _as_datetime(value: datetime.date) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    return datetime.datetime.combine(value, datetime.time.min)


def rental_duration(
    rate_type: RateType, start: datetime.date, end: datetime.date
) -> int:
    """Number of whole units of ``rate_type`` billed for ``start``..``end``."""
    elapsed = _as_datetime(end) - _as_datetime(start)
    duration = math.ceil(elapsed / UNIT_LENGTHS[RateType(rate_type)])
    return max(1, duration)


def calculate_rental_cost(
    rate_amount: float,
    rate_type: RateType,
    start: datetime.date,
    end: datetime.date,
) -> float:
    return rate_amount * rental_duration(rate_type, start, end)


def line_subtotal(
    rate_amount: float,
    rate_type: RateType,
    quantity: int,
    start: datetime.date,
    end: datetime.date,
) -> float:
    return calculate_rental_cost(rate_amount, rate_type, start, end) * quantity


def resolve_rate(pricing: Optional[dict], rate_type: RateType) -> Optional[float]:
    """Configured rate of an inventory item for ``rate_type``, if any."""
    if not pricing:
        return None
    return pricing.get(RateType(rate_type).value)
