from sqlalchemy.orm import Session

from cloudus.models import AuditLog, Payment


def record(db: Session, payment: Payment, action: str, **payload) -> AuditLog:
    """Add an audit entry to the session; the caller commits."""
    entry = AuditLog(
        payment_id=payment.id,
        action=action,
        payload={
            "provider": payment.provider.value,
            "payable_kind": payment.payable_kind.value,
            "entity_id": payment.entity_id,
            "amount_cents": payment.amount_cents,
            "currency": payment.currency,
            **payload,
        },
    )
    db.add(entry)
    return entry
