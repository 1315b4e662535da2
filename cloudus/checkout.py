"""
Checkout initiation.

Looks up the payable entity, enforces the settlement rules, reuses or creates
the PENDING Payment record for the chosen provider and asks the provider for
a hosted checkout. The reference handed to the provider is derived from the
entity id and payment id so webhooks can always be correlated back.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from cloudus import audit
from cloudus.errors import AlreadySettled, EntityNotFound, InvalidAmount, ProviderNotConfigured
from cloudus.models import (
    Booking,
    BookingStatus,
    Order,
    PayableKind,
    Payment,
    PaymentStatus,
    ProjectMilestone,
    Provider,
)
from cloudus.providers import CheckoutSession, PaymentProvider

logger = structlog.get_logger(__name__)

REFERENCE_PREFIXES = {
    PayableKind.ORDER: "ord",
    PayableKind.PROJECT: "proj",
    PayableKind.BOOKING: "book",
}


@dataclass
class Payable:
    """Provider-neutral view of an Order, ProjectMilestone or Booking."""

    kind: PayableKind
    id: str
    total_cents: int
    currency: str
    name: str
    description: str
    email: Optional[str]
    success_path: str
    cancel_path: str
    delivery_cents: int = 0
    payments: List[Payment] = field(default_factory=list)
    blocked_reason: Optional[str] = None


def _order_payable(order: Order) -> Payable:
    if order.kind == "laundry":
        success_path, cancel_path = "/laundry/payment/success", "/laundry?payment=cancelled"
    else:
        success_path = f"/shop/orders/{order.id}/payment/success"
        cancel_path = f"/shop/orders/{order.id}?payment=cancelled"
    return Payable(
        kind=PayableKind.ORDER,
        id=order.id,
        total_cents=order.total_cents,
        currency=order.currency,
        name=order.name or f"Order {order.id}",
        description=(order.description or "Order payment")[:250],
        email=order.customer_email,
        success_path=success_path,
        cancel_path=cancel_path,
        delivery_cents=order.delivery_cents or 0,
        payments=list(order.payments),
    )


def _milestone_payable(milestone: ProjectMilestone) -> Payable:
    base = f"/projects/{milestone.project_id}/payment"
    return Payable(
        kind=PayableKind.PROJECT,
        id=milestone.id,
        total_cents=milestone.amount_cents,
        currency=milestone.currency,
        name=milestone.project_name,
        description=(milestone.purpose or f"Payment for {milestone.project_name}")[:250],
        email=milestone.client_email,
        success_path=f"{base}?success=1",
        cancel_path=f"{base}?cancelled=1",
        payments=list(milestone.payments),
    )


def _booking_payable(booking: Booking) -> Payable:
    return Payable(
        kind=PayableKind.BOOKING,
        id=booking.id,
        total_cents=booking.total_cents,
        currency=booking.currency,
        name=f"Booking {booking.id}",
        description=f"Stay: {booking.room_title or 'Room booking'}",
        email=booking.guest_email,
        success_path=f"/rooms/{booking.room_id}?payment=success",
        cancel_path=f"/rooms/{booking.room_id}?payment=cancelled",
        payments=list(booking.payments),
        blocked_reason="Booking is canceled" if booking.status == BookingStatus.CANCELED else None,
    )


PAYABLE_LOADERS = {
    PayableKind.ORDER: (Order, _order_payable),
    PayableKind.PROJECT: (ProjectMilestone, _milestone_payable),
    PayableKind.BOOKING: (Booking, _booking_payable),
}

NOT_FOUND_MESSAGES = {
    PayableKind.ORDER: "Order not found",
    PayableKind.PROJECT: "Project payment not found",
    PayableKind.BOOKING: "Booking not found",
}


def load_payable(db: Session, kind: PayableKind, entity_id: str) -> Payable:
    model, to_payable = PAYABLE_LOADERS[kind]
    entity = db.get(model, entity_id)
    if entity is None:
        raise EntityNotFound(NOT_FOUND_MESSAGES[kind])
    return to_payable(entity)


def build_reference(kind: PayableKind, entity_id: str, payment_id: str) -> str:
    return f"{REFERENCE_PREFIXES[kind]}-{entity_id}-{payment_id}"


def _new_payment(payable: Payable, provider: Provider) -> Payment:
    payment = Payment(
        payable_kind=payable.kind,
        amount_cents=payable.total_cents,
        currency=payable.currency.upper(),
        provider=provider,
        status=PaymentStatus.PENDING,
    )
    if payable.kind == PayableKind.ORDER:
        payment.order_id = payable.id
    elif payable.kind == PayableKind.PROJECT:
        payment.milestone_id = payable.id
    else:
        payment.booking_id = payable.id
    return payment


class CheckoutInitiator:
    def __init__(self, providers: Dict[Provider, PaymentProvider], app_url: str):
        self.providers = providers
        self.app_url = app_url.rstrip("/")

    def initiate(
        self,
        db: Session,
        kind: PayableKind,
        entity_id: str,
        provider: Provider,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> CheckoutSession:
        gateway = self.providers[provider]
        if not gateway.configured:
            raise ProviderNotConfigured(f"{provider.value.title()} is not configured")

        payable = load_payable(db, kind, entity_id)

        if payable.total_cents <= 0:
            raise InvalidAmount("Total must be greater than zero")
        if payable.blocked_reason:
            raise AlreadySettled(payable.blocked_reason)

        same_provider = [p for p in payable.payments if p.provider == provider]
        if any(p.status == PaymentStatus.PAID for p in same_provider):
            raise AlreadySettled(f"Already settled via {provider.value.title()}")

        payment = next((p for p in same_provider if p.status == PaymentStatus.PENDING), None)
        if payment is None:
            payment = _new_payment(payable, provider)
            db.add(payment)
            # keep the record even if the provider call below fails; the retry reuses it
            db.commit()
            db.refresh(payment)
            logger.info("payment_created", payment_id=payment.id, provider=provider.value, kind=kind.value)
        elif payment.amount_cents != payable.total_cents:
            payment.amount_cents = payable.total_cents

        origin = (origin or self.app_url).rstrip("/")
        reference = build_reference(kind, payable.id, payment.id)
        session = gateway.initialize_checkout(
            amount_cents=payment.amount_cents,
            currency=payment.currency,
            reference=reference,
            callback_url=success_url or f"{origin}{payable.success_path}",
            cancel_url=cancel_url or f"{origin}{payable.cancel_path}",
            metadata={
                "payment_id": payment.id,
                "payable_kind": kind.value,
                "entity_id": payable.id,
                "name": payable.name,
                "description": payable.description,
                "email": payable.email or "",
                "delivery_cents": payable.delivery_cents,
            },
        )

        payment.provider_ref = session.reference
        audit.record(db, payment, "checkout.started", reference=session.reference)
        db.commit()

        logger.info(
            "checkout_started",
            payment_id=payment.id,
            provider=provider.value,
            kind=kind.value,
            reference=session.reference,
        )
        return session
