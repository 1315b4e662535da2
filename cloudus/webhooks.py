import structlog
from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from cloudus.database import SessionLocal
from cloudus.errors import WebhookVerificationError
from cloudus.models import Provider
from cloudus.reconcile import apply_event
from cloudus.registry import get_providers
from cloudus.routes import ProviderSlug

logger = structlog.get_logger(__name__)

router = APIRouter()

# Ozow signs inside the body (HashCheck)
SIGNATURE_HEADERS = {
    Provider.STRIPE: "stripe-signature",
    Provider.PAYSTACK: "x-paystack-signature",
}


def _settle(gateway, payload: bytes, signature):
    try:
        event = gateway.verify_inbound_event(payload, signature)
    except WebhookVerificationError as e:
        logger.warning("webhook_rejected", provider=gateway.name.value, reason=e.message)
        raise

    if event is None:
        logger.info("webhook_ignored", provider=gateway.name.value)
        return

    db = SessionLocal()
    try:
        apply_event(db, gateway.name, event)
    finally:
        db.close()


@router.post("/webhooks/{provider}")
async def provider_webhook(provider: ProviderSlug, request: Request, providers=Depends(get_providers)):
    payload = await request.body()
    gateway = providers[provider.provider]

    header = SIGNATURE_HEADERS.get(provider.provider)
    signature = request.headers.get(header) if header else None

    # signature checks, provider lookups and DB writes are blocking
    await run_in_threadpool(_settle, gateway, payload, signature)
    return {"received": True}
