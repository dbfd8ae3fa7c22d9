import logging
from typing import Optional

from sqlalchemy import or_
from sqlmodel import Session, col, select

from .errors import ConflictError, NotFoundError
from .models import Customer, CustomerCreate, CustomerSortField, SortOrder

logger = logging.getLogger(__name__)


def list_customers(
    session: Session,
    user_id: str,
    search: Optional[str] = None,
    tag: Optional[str] = None,
    sort_by: CustomerSortField = CustomerSortField.CREATED_AT,
    sort_order: SortOrder = SortOrder.DESC,
) -> list[Customer]:
    query = select(Customer).where(Customer.user_id == user_id)

    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(
                col(Customer.name).ilike(pattern),
                col(Customer.email).ilike(pattern),
                col(Customer.phone).ilike(pattern),
            )
        )

    column = col(getattr(Customer, CustomerSortField(sort_by).value))
    query = query.order_by(column.asc() if sort_order == SortOrder.ASC else column.desc())

    customers = session.exec(query).all()
    # Tags live in a JSON column, so membership is checked after the fetch.
    if tag:
        customers = [customer for customer in customers if tag in (customer.tags or [])]
    return list(customers)


def get_customer(session: Session, user_id: str, customer_id: int) -> Customer:
    customer = session.get(Customer, customer_id)
    if not customer or customer.user_id != user_id:
        raise NotFoundError("Customer not found")
    return customer


def create_customer(session: Session, user_id: str, data: CustomerCreate) -> Customer:
    customer = Customer(**data.model_dump(), user_id=user_id)
    session.add(customer)
    session.commit()
    session.refresh(customer)
    logger.info("Created customer %s", customer.id)
    return customer


def update_customer(
    session: Session, user_id: str, customer_id: int, data: CustomerCreate
) -> Customer:
    customer = get_customer(session, user_id, customer_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(customer, key, value)
    session.add(customer)
    session.commit()
    session.refresh(customer)
    return customer


def delete_customer(session: Session, user_id: str, customer_id: int) -> None:
    customer = get_customer(session, user_id, customer_id)
    if customer.rentals:
        raise ConflictError("Customer has rentals and cannot be deleted")
    session.delete(customer)
    session.commit()
    logger.info("Deleted customer %s", customer_id)


def list_customer_tags(session: Session, user_id: str) -> list[str]:
    rows = session.exec(select(Customer.tags).where(Customer.user_id == user_id)).all()
    return sorted({tag for tags in rows for tag in (tags or [])})
