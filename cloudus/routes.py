import enum
from typing import Dict, Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from cloudus.checkout import CheckoutInitiator
from cloudus.config import Settings, get_settings
from cloudus.database import SessionLocal
from cloudus.models import PayableKind, Provider
from cloudus.providers import PaymentProvider
from cloudus.registry import get_providers

router = APIRouter()


class ProviderSlug(str, enum.Enum):
    stripe = "stripe"
    paystack = "paystack"
    ozow = "ozow"

    @property
    def provider(self) -> Provider:
        return Provider[self.name.upper()]


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    entity_id: str = Field(alias="entityId", min_length=1)
    success_url: Optional[HttpUrl] = Field(default=None, alias="successUrl")
    cancel_url: Optional[HttpUrl] = Field(default=None, alias="cancelUrl")


def _request_origin(request: Request) -> Optional[str]:
    origin = request.headers.get("origin")
    if origin:
        return origin
    referer = urlsplit(request.headers.get("referer") or "")
    if referer.scheme and referer.netloc:
        return f"{referer.scheme}://{referer.netloc}"
    return None


def _checkout(
    kind: PayableKind,
    provider: ProviderSlug,
    body: CheckoutRequest,
    request: Request,
    providers: Dict[Provider, PaymentProvider],
    settings: Settings,
):
    initiator = CheckoutInitiator(providers, settings.app_url)

    db = SessionLocal()
    try:
        session = initiator.initiate(
            db,
            kind,
            body.entity_id,
            provider.provider,
            success_url=str(body.success_url) if body.success_url else None,
            cancel_url=str(body.cancel_url) if body.cancel_url else None,
            origin=_request_origin(request),
        )
    finally:
        db.close()

    return {"checkoutUrl": session.checkout_url, "reference": session.reference}


@router.post("/payments/{provider}/checkout", status_code=201)
def order_checkout(
    provider: ProviderSlug,
    body: CheckoutRequest,
    request: Request,
    providers=Depends(get_providers),
    settings: Settings = Depends(get_settings),
):
    return _checkout(PayableKind.ORDER, provider, body, request, providers, settings)


@router.post("/projects/payments/{provider}/checkout", status_code=201)
def project_checkout(
    provider: ProviderSlug,
    body: CheckoutRequest,
    request: Request,
    providers=Depends(get_providers),
    settings: Settings = Depends(get_settings),
):
    return _checkout(PayableKind.PROJECT, provider, body, request, providers, settings)


@router.post("/bookings/{provider}/checkout", status_code=201)
def booking_checkout(
    provider: ProviderSlug,
    body: CheckoutRequest,
    request: Request,
    providers=Depends(get_providers),
    settings: Settings = Depends(get_settings),
):
    return _checkout(PayableKind.BOOKING, provider, body, request, providers, settings)
