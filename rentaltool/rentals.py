import datetime
import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import selectinload
from sqlmodel import Session, col, select

from . import config
from .availability import HOLDING_STATUSES, ensure_available, get_owned_item
from .database import atomic
from .errors import InvalidTransitionError, NotFoundError, ValidationFailed
from .models import (
    Customer,
    Payment,
    PaymentMethod,
    ProcessReturn,
    Rental,
    RentalCreate,
    RentalItem,
    RentalItemCreate,
    RentalSortField,
    RentalStatus,
    RentalUpdate,
    SortOrder,
    as_utc,
    utcnow,
)
from .pricing import line_subtotal, resolve_rate

logger = logging.getLogger(__name__)

STATUS_TRANSITIONS = {
    RentalStatus.DRAFT: {RentalStatus.UPCOMING, RentalStatus.ACTIVE, RentalStatus.CANCELLED},
    RentalStatus.UPCOMING: {RentalStatus.ACTIVE, RentalStatus.CANCELLED},
    RentalStatus.ACTIVE: {RentalStatus.COMPLETED, RentalStatus.OVERDUE, RentalStatus.CANCELLED},
    RentalStatus.OVERDUE: {RentalStatus.COMPLETED, RentalStatus.CANCELLED},
    RentalStatus.COMPLETED: set(),
    RentalStatus.CANCELLED: set(),
}

INITIAL_STATUSES = {RentalStatus.DRAFT, RentalStatus.UPCOMING, RentalStatus.ACTIVE}

# Header columns that may not be cleared by an update.
REQUIRED_FIELDS = {
    "customer_id",
    "start_date",
    "end_date",
    "status",
    "total_amount",
    "deposit_amount",
}

RETURN_PAYMENT_NOTE = "Additional charges on return"


def can_transition(current: RentalStatus, target: RentalStatus) -> bool:
    current, target = RentalStatus(current), RentalStatus(target)
    return current == target or target in STATUS_TRANSITIONS[current]


def ensure_transition(current: RentalStatus, target: RentalStatus) -> None:
    if not can_transition(current, target):
        logger.warning("Rejected rental transition %s -> %s", current, target)
        raise InvalidTransitionError(
            f"Cannot change rental status from {RentalStatus(current).value} "
            f"to {RentalStatus(target).value}"
        )


def generate_rental_number(session: Session, user_id: str, prefix: Optional[str] = None) -> str:
    token = (prefix or config.RENTAL_NUMBER_PREFIX).upper()
    numbers = session.exec(
        select(Rental.rental_number)
        .where(Rental.user_id == user_id)
        .where(col(Rental.rental_number).like(f"{token}-%"))
    ).all()

    max_number = 0
    for number in numbers:
        try:
            value = int(number.replace(f"{token}-", "", 1))
        except ValueError:
            continue
        max_number = max(max_number, value)
    return f"{token}-{max_number + 1:03d}"


def get_owned_rental(session: Session, user_id: str, rental_id: int) -> Rental:
    rental = session.get(Rental, rental_id)
    if not rental or rental.user_id != user_id:
        raise NotFoundError("Rental not found")
    return rental


def _get_owned_customer(session: Session, user_id: str, customer_id: int) -> Customer:
    customer = session.get(Customer, customer_id)
    if not customer or customer.user_id != user_id:
        raise NotFoundError("Customer not found")
    return customer


def _build_items(
    session: Session,
    user_id: str,
    lines: list[RentalItemCreate],
    start: datetime.datetime,
    end: datetime.datetime,
) -> list[RentalItem]:
    items = []
    for line in lines:
        inventory_item = get_owned_item(session, user_id, line.inventory_item_id)
        rate_amount = line.rate_amount
        if rate_amount is None:
            rate_amount = resolve_rate(inventory_item.pricing, line.rate_type)
        if rate_amount is None:
            raise ValidationFailed(
                f"'{inventory_item.name}' has no {line.rate_type.value} rate"
            )
        subtotal = line.subtotal
        if subtotal is None:
            subtotal = line_subtotal(rate_amount, line.rate_type, line.quantity, start, end)
        items.append(
            RentalItem(
                inventory_item_id=inventory_item.id,
                quantity=line.quantity,
                rate_type=line.rate_type,
                rate_amount=rate_amount,
                subtotal=subtotal,
                condition_before=line.condition_before or inventory_item.condition,
                condition_after=line.condition_after,
                notes=line.notes,
            )
        )
    return items


def _booked_lines(items: list[RentalItem]) -> list[tuple[int, int]]:
    return [(item.inventory_item_id, item.quantity) for item in items]


def create_rental(session: Session, user_id: str, data: RentalCreate) -> Rental:
    """Insert a rental header and its line items in one transaction."""
    status = RentalStatus(data.status)
    if status not in INITIAL_STATUSES:
        raise InvalidTransitionError(f"A rental cannot be created as {status.value}")

    with atomic(session):
        _get_owned_customer(session, user_id, data.customer_id)
        items = _build_items(session, user_id, data.items, data.start_date, data.end_date)
        ensure_available(
            session, user_id, _booked_lines(items), data.start_date, data.end_date
        )

        total_amount = data.total_amount
        if total_amount is None:
            total_amount = sum(item.subtotal for item in items)

        rental = Rental(
            **data.model_dump(exclude={"items", "total_amount"}),
            user_id=user_id,
            rental_number=generate_rental_number(session, user_id),
            total_amount=total_amount,
            items=items,
        )
        session.add(rental)

    session.refresh(rental)
    logger.info("Created rental %s with %d items", rental.rental_number, len(items))
    return rental


def update_rental(
    session: Session, user_id: str, rental_id: int, data: RentalUpdate
) -> Rental:
    """Apply a partial header update.

    When ``items`` is given, every existing line item is deleted and the new
    set inserted in its place. Otherwise moving the dates reprices the stored
    lines.
    """
    with atomic(session):
        rental = get_owned_rental(session, user_id, rental_id)
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True, exclude={"items"}).items()
            if value is not None or key not in REQUIRED_FIELDS
        }

        if "status" in changes:
            ensure_transition(rental.status, changes["status"])
        if "customer_id" in changes:
            _get_owned_customer(session, user_id, changes["customer_id"])

        start = changes.get("start_date", rental.start_date)
        end = changes.get("end_date", rental.end_date)
        if end < start:
            raise ValidationFailed("End date must be after or equal to start date")

        status = RentalStatus(changes.get("status", rental.status))
        dates_changed = start != rental.start_date or end != rental.end_date

        new_items = None
        if data.items is not None:
            new_items = _build_items(session, user_id, data.items, start, end)
            booked = _booked_lines(new_items)
        else:
            booked = _booked_lines(rental.items)

        if status in HOLDING_STATUSES and (new_items is not None or dates_changed):
            ensure_available(session, user_id, booked, start, end, exclude_rental_id=rental.id)

        for key, value in changes.items():
            setattr(rental, key, value)

        if new_items is not None:
            rental.items = new_items
        elif dates_changed:
            for item in rental.items:
                item.subtotal = line_subtotal(
                    item.rate_amount, item.rate_type, item.quantity, start, end
                )
        if (new_items is not None or dates_changed) and "total_amount" not in changes:
            rental.total_amount = sum(item.subtotal for item in rental.items)
        session.add(rental)

    session.refresh(rental)
    logger.info("Updated rental %s", rental.rental_number)
    return rental


def process_return(
    session: Session, user_id: str, rental_id: int, data: ProcessReturn
) -> Rental:
    """Complete a rental: stamp the return, record item conditions, bill extras."""
    with atomic(session):
        rental = get_owned_rental(session, user_id, rental_id)
        if rental.status == RentalStatus.COMPLETED:
            raise InvalidTransitionError("Rental has already been returned")
        ensure_transition(rental.status, RentalStatus.COMPLETED)

        rental.status = RentalStatus.COMPLETED
        rental.return_date = data.return_date
        rental.notes = data.notes

        items_by_id = {item.id: item for item in rental.items}
        for line in data.items:
            item = items_by_id.get(line.rental_item_id)
            if item is None:
                raise ValidationFailed(
                    f"Rental item {line.rental_item_id} is not part of this rental"
                )
            item.condition_after = line.condition_after
            item.notes = line.notes

        if data.additional_charges > 0:
            rental.payments.append(
                Payment(
                    user_id=user_id,
                    amount=data.additional_charges,
                    payment_method=PaymentMethod(config.RETURN_PAYMENT_METHOD),
                    payment_date=data.return_date.date(),
                    notes=RETURN_PAYMENT_NOTE,
                )
            )
        session.add(rental)

    session.refresh(rental)
    logger.info(
        "Returned rental %s (additional charges %s)",
        rental.rental_number,
        data.additional_charges,
    )
    return rental


def delete_rental(session: Session, user_id: str, rental_id: int) -> None:
    with atomic(session):
        rental = get_owned_rental(session, user_id, rental_id)
        session.delete(rental)
    logger.info("Deleted rental %s", rental_id)


def mark_overdue_rentals(
    session: Session, user_id: str, now: Optional[datetime.datetime] = None
) -> int:
    """Move active rentals past their end date without a return to overdue."""
    now = as_utc(now) or utcnow()
    with atomic(session):
        rentals = session.exec(
            select(Rental)
            .where(Rental.user_id == user_id)
            .where(Rental.status == RentalStatus.ACTIVE)
            .where(Rental.end_date < now)
            .where(col(Rental.return_date).is_(None))
        ).all()
        for rental in rentals:
            rental.status = RentalStatus.OVERDUE
            session.add(rental)
    if rentals:
        logger.info("Marked %d rentals overdue", len(rentals))
    return len(rentals)


#########
# QUERIES
#########


def list_rentals(
    session: Session,
    user_id: str,
    search: Optional[str] = None,
    customer_id: Optional[int] = None,
    status: Optional[RentalStatus] = None,
    start_date_from: Optional[datetime.datetime] = None,
    start_date_to: Optional[datetime.datetime] = None,
    sort_by: RentalSortField = RentalSortField.CREATED_AT,
    sort_order: SortOrder = SortOrder.DESC,
) -> list[Rental]:
    query = (
        select(Rental)
        .where(Rental.user_id == user_id)
        .options(
            selectinload(Rental.customer),
            selectinload(Rental.items).selectinload(RentalItem.inventory_item),
        )
    )

    if search:
        pattern = f"%{search}%"
        query = query.outerjoin(Customer, col(Rental.customer_id) == col(Customer.id)).where(
            or_(col(Rental.rental_number).ilike(pattern), col(Customer.name).ilike(pattern))
        )
    if customer_id:
        query = query.where(Rental.customer_id == customer_id)
    if status:
        query = query.where(Rental.status == status)
    if start_date_from:
        query = query.where(Rental.start_date >= as_utc(start_date_from))
    if start_date_to:
        query = query.where(Rental.start_date <= as_utc(start_date_to))

    column = col(getattr(Rental, RentalSortField(sort_by).value))
    query = query.order_by(column.asc() if sort_order == SortOrder.ASC else column.desc())

    return list(session.exec(query).all())


def get_rental(session: Session, user_id: str, rental_id: int) -> Rental:
    return get_owned_rental(session, user_id, rental_id)
