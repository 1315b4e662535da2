"""
Read side: payment listings, settlement summaries and the audit log.

Nothing here writes. Lists are newest first and paginated with an opaque
cursor (the id of the first row of the next page).
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import and_, func, or_

from cloudus.auth import verify_token
from cloudus.database import SessionLocal
from cloudus.models import AuditLog, PayableKind, Payment, PaymentStatus, Provider

router = APIRouter(dependencies=[Depends(verify_token)])


def _paginate(db, query, model, limit: int, cursor: Optional[str]):
    if cursor:
        anchor = db.get(model, cursor)
        if anchor is not None:
            query = query.filter(
                or_(
                    model.created_at < anchor.created_at,
                    and_(model.created_at == anchor.created_at, model.id <= anchor.id),
                )
            )
    rows = query.order_by(model.created_at.desc(), model.id.desc()).limit(limit + 1).all()

    next_cursor = None
    if len(rows) > limit:
        next_cursor = rows.pop().id
    return rows, next_cursor


def serialize_payment(payment: Payment) -> dict:
    return {
        "id": payment.id,
        "payableKind": payment.payable_kind.value,
        "entityId": payment.entity_id,
        "amountCents": payment.amount_cents,
        "currency": payment.currency,
        "provider": payment.provider.value,
        "providerRef": payment.provider_ref,
        "status": payment.status.value,
        "receiptUrl": payment.receipt_url,
        "createdAt": payment.created_at.isoformat() if payment.created_at else None,
        "updatedAt": payment.updated_at.isoformat() if payment.updated_at else None,
    }


@router.get("/payments")
def list_payments(
    status: Optional[PaymentStatus] = None,
    provider: Optional[Provider] = None,
    kind: Optional[PayableKind] = None,
    limit: int = Query(25, ge=1, le=100),
    cursor: Optional[str] = None,
):
    db = SessionLocal()
    try:
        query = db.query(Payment)
        if status:
            query = query.filter(Payment.status == status)
        if provider:
            query = query.filter(Payment.provider == provider)
        if kind:
            query = query.filter(Payment.payable_kind == kind)

        rows, next_cursor = _paginate(db, query, Payment, limit, cursor)
        return {"items": [serialize_payment(p) for p in rows], "nextCursor": next_cursor}
    finally:
        db.close()


@router.get("/reports/payments")
def payment_summary(provider: Optional[Provider] = None, kind: Optional[PayableKind] = None):
    db = SessionLocal()
    try:
        filters = []
        if provider:
            filters.append(Payment.provider == provider)
        if kind:
            filters.append(Payment.payable_kind == kind)

        by_status = {s.value: 0 for s in PaymentStatus}
        for status, count in db.query(Payment.status, func.count(Payment.id)).filter(*filters).group_by(Payment.status):
            by_status[status.value] = count

        by_provider = {p.value: 0 for p in Provider}
        for prov, count in db.query(Payment.provider, func.count(Payment.id)).filter(*filters).group_by(Payment.provider):
            by_provider[prov.value] = count

        paid = (
            db.query(Payment.currency, func.sum(Payment.amount_cents), func.count(Payment.id))
            .filter(Payment.status == PaymentStatus.PAID, *filters)
            .group_by(Payment.currency)
            .order_by(Payment.currency)
            .all()
        )

        return {
            "byStatus": by_status,
            "byProvider": by_provider,
            "paidTotals": [
                {"currency": currency, "amountCents": int(total or 0), "count": count}
                for currency, total, count in paid
            ],
        }
    finally:
        db.close()


@router.get("/audit")
def list_audit(
    payment_id: Optional[str] = Query(None, alias="paymentId"),
    limit: int = Query(25, ge=1, le=100),
    cursor: Optional[str] = None,
):
    db = SessionLocal()
    try:
        query = db.query(AuditLog)
        if payment_id:
            query = query.filter(AuditLog.payment_id == payment_id)

        rows, next_cursor = _paginate(db, query, AuditLog, limit, cursor)
        return {
            "items": [
                {
                    "id": log.id,
                    "paymentId": log.payment_id,
                    "action": log.action,
                    "payload": log.payload,
                    "createdAt": log.created_at.isoformat() if log.created_at else None,
                }
                for log in rows
            ],
            "nextCursor": next_cursor,
        }
    finally:
        db.close()
