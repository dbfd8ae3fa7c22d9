import datetime
import logging
from collections import defaultdict
from typing import Iterable, Optional

from sqlalchemy import func
from sqlmodel import Session, col, select

from .errors import NotFoundError, UnavailableError
from .models import Availability, InventoryItem, Rental, RentalItem, RentalStatus, as_utc

logger = logging.getLogger(__name__)

# Rentals in these states hold stock for their whole period.
HOLDING_STATUSES = (
    RentalStatus.DRAFT,
    RentalStatus.UPCOMING,
    RentalStatus.ACTIVE,
    RentalStatus.OVERDUE,
)


def get_owned_item(session: Session, user_id: str, item_id: int) -> InventoryItem:
    item = session.get(InventoryItem, item_id)
    if not item or item.user_id != user_id:
        raise NotFoundError("Inventory item not found")
    return item


def booked_quantity(
    session: Session,
    user_id: str,
    item_id: int,
    start: datetime.datetime,
    end: datetime.datetime,
    exclude_rental_id: Optional[int] = None,
) -> int:
    """Units of an item booked by rentals whose period intersects ``start``..``end``."""
    query = (
        select(func.coalesce(func.sum(RentalItem.quantity), 0))
        .select_from(RentalItem)
        .join(Rental, col(RentalItem.rental_id) == col(Rental.id))
        .where(RentalItem.inventory_item_id == item_id)
        .where(Rental.user_id == user_id)
        .where(col(Rental.status).in_(HOLDING_STATUSES))
        .where(Rental.start_date <= as_utc(end))
        .where(Rental.end_date >= as_utc(start))
    )
    if exclude_rental_id is not None:
        query = query.where(Rental.id != exclude_rental_id)
    return int(session.exec(query).one())


def check_availability(
    session: Session,
    user_id: str,
    item_id: int,
    start: datetime.datetime,
    end: datetime.datetime,
    exclude_rental_id: Optional[int] = None,
) -> Availability:
    """Free and booked quantity of an inventory item for a period.

    ``exclude_rental_id`` leaves one rental's own bookings out, so a rental
    being edited is not counted against itself.
    """
    item = get_owned_item(session, user_id, item_id)
    booked = booked_quantity(session, user_id, item_id, start, end, exclude_rental_id)
    return Availability(
        available_quantity=max(0, item.quantity_total - booked),
        booked_quantity=booked,
    )


def ensure_available(
    session: Session,
    user_id: str,
    lines: Iterable[tuple[int, int]],
    start: datetime.datetime,
    end: datetime.datetime,
    exclude_rental_id: Optional[int] = None,
) -> None:
    """Raise UnavailableError unless every ``(item_id, quantity)`` line fits."""
    requested = defaultdict(int)
    for item_id, quantity in lines:
        requested[item_id] += quantity

    for item_id, quantity in requested.items():
        availability = check_availability(
            session, user_id, item_id, start, end, exclude_rental_id
        )
        if quantity > availability.available_quantity:
            item = session.get(InventoryItem, item_id)
            logger.warning(
                "Item %s over-requested: %s wanted, %s free",
                item_id,
                quantity,
                availability.available_quantity,
            )
            raise UnavailableError(
                f"Only {availability.available_quantity} of '{item.name}' "
                "available for the requested period"
            )
