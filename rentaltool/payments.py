import logging

from sqlalchemy.orm import selectinload
from sqlmodel import Session, col, select

from .models import Payment, PaymentCreate, PaymentSummary, Rental, RentalStatus
from .rentals import get_owned_rental

logger = logging.getLogger(__name__)

# Rentals whose unpaid balance still counts as outstanding.
OPEN_STATUSES = (RentalStatus.ACTIVE, RentalStatus.UPCOMING, RentalStatus.OVERDUE)


def list_payments(session: Session, user_id: str) -> list[Payment]:
    return list(
        session.exec(
            select(Payment)
            .where(Payment.user_id == user_id)
            .options(selectinload(Payment.rental).selectinload(Rental.customer))
            .order_by(col(Payment.payment_date).desc(), col(Payment.id).desc())
        ).all()
    )


def list_rental_payments(session: Session, user_id: str, rental_id: int) -> list[Payment]:
    get_owned_rental(session, user_id, rental_id)
    return list(
        session.exec(
            select(Payment)
            .where(Payment.rental_id == rental_id)
            .order_by(col(Payment.payment_date).desc(), col(Payment.id).desc())
        ).all()
    )


def create_payment(session: Session, user_id: str, data: PaymentCreate) -> Payment:
    get_owned_rental(session, user_id, data.rental_id)
    payment = Payment(**data.model_dump(), user_id=user_id)
    session.add(payment)
    session.commit()
    session.refresh(payment)
    logger.info("Recorded payment %s for rental %s", payment.id, payment.rental_id)
    return payment


def payment_summary(session: Session, user_id: str) -> PaymentSummary:
    amounts = session.exec(select(Payment.amount).where(Payment.user_id == user_id)).all()

    rentals = session.exec(
        select(Rental)
        .where(Rental.user_id == user_id)
        .where(col(Rental.status).in_(OPEN_STATUSES))
        .options(selectinload(Rental.payments))
    ).all()
    outstanding = 0.0
    for rental in rentals:
        paid = sum(payment.amount or 0 for payment in rental.payments)
        outstanding += max(0.0, (rental.total_amount or 0) - paid)

    return PaymentSummary(
        total_received=sum(amount or 0 for amount in amounts),
        total_outstanding=outstanding,
        payment_count=len(amounts),
    )
