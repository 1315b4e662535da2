"""
Provider-agnostic settlement of verified webhook events.

PENDING moves to PAID or FAILED exactly once. A terminal record is never
rewritten: a repeat of the same outcome is a no-op, a contradicting outcome
is audited and ignored.
"""
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from cloudus import audit
from cloudus.models import BookingStatus, Payment, PaymentStatus, Provider
from cloudus.providers import InboundEvent

logger = structlog.get_logger(__name__)

BOOKING_STATUS_FOR = {
    PaymentStatus.PAID: BookingStatus.CONFIRMED,
    PaymentStatus.FAILED: BookingStatus.CANCELED,
}


def find_payment(db: Session, provider: Provider, event: InboundEvent) -> Optional[Payment]:
    payment = None
    if event.reference:
        payment = (
            db.query(Payment)
            .filter(Payment.provider == provider, Payment.provider_ref == event.reference)
            .first()
        )
    if payment is None and event.payment_id:
        payment = db.query(Payment).filter(Payment.id == event.payment_id, Payment.provider == provider).first()
    return payment


def apply_event(db: Session, provider: Provider, event: InboundEvent) -> Optional[Payment]:
    payment = find_payment(db, provider, event)
    if payment is None:
        logger.warning(
            "webhook_payment_not_found",
            provider=provider.value,
            reference=event.reference,
            payment_id=event.payment_id,
            event_type=event.event_type,
        )
        return None

    if payment.status == event.outcome:
        logger.info("webhook_duplicate", payment_id=payment.id, status=payment.status.value)
        return payment

    if payment.status != PaymentStatus.PENDING:
        logger.warning(
            "webhook_transition_rejected",
            payment_id=payment.id,
            current=payment.status.value,
            requested=event.outcome.value,
        )
        audit.record(db, payment, "payment.ignored", requested=event.outcome.value, event_type=event.event_type)
        db.commit()
        return payment

    payment.status = event.outcome
    if event.receipt_url:
        payment.receipt_url = event.receipt_url

    # a failed attempt never cancels a booking that another payment already confirmed
    if payment.booking is not None and payment.booking.status == BookingStatus.PENDING:
        payment.booking.status = BOOKING_STATUS_FOR[event.outcome]

    audit.record(
        db,
        payment,
        f"payment.{event.outcome.value.lower()}",
        reference=event.reference,
        event_type=event.event_type,
    )
    db.commit()

    logger.info(
        "payment_settled",
        payment_id=payment.id,
        provider=provider.value,
        status=payment.status.value,
    )
    return payment
