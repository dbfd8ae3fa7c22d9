import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import selectinload
from sqlmodel import Session, col, select

from .models import (
    Customer,
    DashboardStats,
    InventoryItem,
    ItemStatus,
    MetricChange,
    MetricsComparison,
    Rental,
    RentalItem,
    RENTED_OUT_STATUSES,
    RentalStatus,
    RevenuePoint,
    TopItem,
    as_utc,
    utcnow,
)

REVENUE_STATUSES = (RentalStatus.COMPLETED, RentalStatus.ACTIVE)


def _count(session: Session, model, *conditions) -> int:
    query = select(func.count()).select_from(model)
    for condition in conditions:
        query = query.where(condition)
    return int(session.exec(query).one())


def _revenue(session: Session, user_id: str, *conditions) -> float:
    query = (
        select(Rental.total_amount)
        .where(Rental.user_id == user_id)
        .where(col(Rental.status).in_(REVENUE_STATUSES))
    )
    for condition in conditions:
        query = query.where(condition)
    return float(sum(amount or 0 for amount in session.exec(query).all()))


def dashboard_stats(session: Session, user_id: str) -> DashboardStats:
    return DashboardStats(
        total_revenue=_revenue(session, user_id),
        total_rentals=_count(session, Rental, Rental.user_id == user_id),
        active_rentals=_count(
            session,
            Rental,
            Rental.user_id == user_id,
            col(Rental.status).in_(RENTED_OUT_STATUSES),
        ),
        total_customers=_count(session, Customer, Customer.user_id == user_id),
        total_items=_count(session, InventoryItem, InventoryItem.user_id == user_id),
        available_items=_count(
            session,
            InventoryItem,
            InventoryItem.user_id == user_id,
            InventoryItem.status == ItemStatus.AVAILABLE,
        ),
    )


def revenue_by_date(
    session: Session,
    user_id: str,
    start: datetime.datetime,
    end: datetime.datetime,
) -> list[RevenuePoint]:
    """Revenue of rentals starting in ``start``..``end``, grouped by start day."""
    rows = session.exec(
        select(Rental.start_date, Rental.total_amount)
        .where(Rental.user_id == user_id)
        .where(col(Rental.status).in_(REVENUE_STATUSES))
        .where(Rental.start_date >= as_utc(start))
        .where(Rental.start_date <= as_utc(end))
        .order_by(col(Rental.start_date).asc())
    ).all()

    revenue = {}
    for start_date, amount in rows:
        day = start_date.date()
        revenue[day] = revenue.get(day, 0) + (amount or 0)
    return [RevenuePoint(date=day, amount=amount) for day, amount in revenue.items()]


def top_items(session: Session, user_id: str, limit: int = 5) -> list[TopItem]:
    """Most rented inventory items by rented quantity."""
    rows = session.exec(
        select(RentalItem.inventory_item_id, RentalItem.quantity, RentalItem.subtotal, InventoryItem.name)
        .join(Rental, col(RentalItem.rental_id) == col(Rental.id))
        .outerjoin(InventoryItem, col(RentalItem.inventory_item_id) == col(InventoryItem.id))
        .where(Rental.user_id == user_id)
    ).all()

    stats = {}
    for item_id, quantity, subtotal, name in rows:
        entry = stats.setdefault(
            item_id, {"name": name or "Unknown", "rental_count": 0, "total_revenue": 0.0}
        )
        entry["rental_count"] += quantity or 1
        entry["total_revenue"] += subtotal or 0

    ranked = sorted(stats.items(), key=lambda pair: pair[1]["rental_count"], reverse=True)
    return [TopItem(id=item_id, **entry) for item_id, entry in ranked[:limit]]


def recent_rentals(session: Session, user_id: str, limit: int = 10) -> list[Rental]:
    return list(
        session.exec(
            select(Rental)
            .where(Rental.user_id == user_id)
            .options(selectinload(Rental.customer))
            .order_by(col(Rental.created_at).desc(), col(Rental.id).desc())
            .limit(limit)
        ).all()
    )


def percentage_change(current: float, previous: float) -> MetricChange:
    if previous == 0:
        if current > 0:
            return MetricChange(value="100%", trend="positive")
        return MetricChange(value="0%", trend="neutral")

    change = (current - previous) / previous * 100
    if change > 0:
        trend = "positive"
    elif change < 0:
        trend = "negative"
    else:
        trend = "neutral"
    return MetricChange(value=f"{abs(change):.1f}%", trend=trend)


def metrics_comparison(
    session: Session,
    user_id: str,
    days: int = 30,
    now: Optional[datetime.datetime] = None,
) -> MetricsComparison:
    """Current totals against the ``days`` long period before the last ``days``."""
    now = as_utc(now) or utcnow()
    previous_end = now - datetime.timedelta(days=days)
    previous_start = previous_end - datetime.timedelta(days=days)

    current = dashboard_stats(session, user_id)

    previous_revenue = _revenue(
        session,
        user_id,
        Rental.start_date >= previous_start,
        Rental.start_date < previous_end,
    )
    in_previous_rentals = (
        Rental.user_id == user_id,
        Rental.created_at >= previous_start,
        Rental.created_at < previous_end,
    )
    previous_rentals = _count(session, Rental, *in_previous_rentals)
    previous_active = _count(
        session, Rental, *in_previous_rentals, col(Rental.status).in_(RENTED_OUT_STATUSES)
    )
    previous_customers = _count(
        session,
        Customer,
        Customer.user_id == user_id,
        Customer.created_at >= previous_start,
        Customer.created_at < previous_end,
    )

    # No inventory history is kept, so utilisation has nothing to compare to.
    return MetricsComparison(
        revenue=percentage_change(current.total_revenue, previous_revenue),
        total_rentals=percentage_change(current.total_rentals, previous_rentals),
        active_rentals=percentage_change(current.active_rentals, previous_active),
        customers=percentage_change(current.total_customers, previous_customers),
        utilization=MetricChange(value="0%", trend="neutral"),
    )
