from typing import Mapping, Optional

import stripe
import structlog

from cloudus.config import StripeConfig
from cloudus.errors import ProviderError, ProviderNotConfigured, WebhookVerificationError
from cloudus.models import PaymentStatus, Provider
from cloudus.providers import CheckoutSession, InboundEvent, PaymentProvider

logger = structlog.get_logger(__name__)

SUCCESS_EVENTS = {"checkout.session.async_payment_succeeded"}
FAILURE_EVENTS = {"checkout.session.async_payment_failed", "checkout.session.expired"}
# a declined attempt leaves the Checkout Session open for another card
RETRYABLE_EVENTS = {"payment_intent.payment_failed"}
SESSION_ID_PARAM = "session_id={CHECKOUT_SESSION_ID}"


class StripeProvider(PaymentProvider):
    name = Provider.STRIPE

    def __init__(self, config: StripeConfig):
        self.config = config

    @property
    def configured(self) -> bool:
        return self.config.configured

    def initialize_checkout(self, amount_cents, currency, reference, callback_url, cancel_url, metadata):
        if not self.configured:
            raise ProviderNotConfigured("Stripe is not configured. Set STRIPE_SECRET_KEY.")

        metadata = {key: str(value) for key, value in metadata.items()}
        metadata["reference"] = reference
        customer_email = metadata.pop("email", None) or None
        delivery_cents = int(metadata.pop("delivery_cents", 0) or 0)
        if not 0 < delivery_cents < amount_cents:
            delivery_cents = 0

        line_items = [
            _line_item(
                currency,
                amount_cents - delivery_cents,
                metadata.get("name") or reference,
                (metadata.get("description") or "")[:250] or None,
            )
        ]
        if delivery_cents:
            line_items.append(_line_item(currency, delivery_cents, "Delivery"))

        try:
            session = stripe.checkout.Session.create(
                api_key=self.config.secret_key,
                mode="payment",
                client_reference_id=reference,
                customer_email=customer_email,
                line_items=line_items,
                success_url=with_session_id(callback_url),
                cancel_url=cancel_url,
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                billing_address_collection="required",
            )
        except stripe.StripeError as e:
            logger.error("stripe_checkout_failed", reference=reference, error=str(e))
            raise ProviderError(e.user_message or str(e) or "Stripe checkout failed")

        if not session.url:
            raise ProviderError("Stripe did not return a checkout URL")

        return CheckoutSession(checkout_url=session.url, reference=session.id)

    def verify_inbound_event(self, raw_body: bytes, signature: Optional[str]) -> Optional[InboundEvent]:
        if not self.config.webhook_secret:
            raise ProviderNotConfigured("Stripe webhook secret is not configured")
        if not signature:
            raise WebhookVerificationError("Missing Stripe signature")

        try:
            event = stripe.Webhook.construct_event(raw_body, signature, self.config.webhook_secret)
        except ValueError:
            raise WebhookVerificationError("Invalid payload")
        except stripe.SignatureVerificationError:
            raise WebhookVerificationError("Invalid signature")

        event_type = event["type"]
        obj = event["data"]["object"]
        metadata = _metadata(obj)

        if event_type == "checkout.session.completed":
            if obj.get("payment_status") != "paid":
                # async methods settle later via async_payment_succeeded
                return None
            outcome = PaymentStatus.PAID
        elif event_type in SUCCESS_EVENTS:
            outcome = PaymentStatus.PAID
        elif event_type in FAILURE_EVENTS:
            outcome = PaymentStatus.FAILED
        elif event_type in RETRYABLE_EVENTS:
            logger.info("stripe_attempt_declined", payment_id=metadata.get("payment_id"), intent=obj.get("id"))
            return None
        else:
            return None

        reference = obj.get("id") if event_type.startswith("checkout.session.") else None
        return InboundEvent(
            reference=reference,
            outcome=outcome,
            receipt_url=None,
            payment_id=metadata.get("payment_id"),
            event_type=event_type,
            raw=obj,
        )


def with_session_id(url: str) -> str:
    """Ask Stripe to hand the Checkout Session id back on the success redirect."""
    if "{CHECKOUT_SESSION_ID}" in url:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{SESSION_ID_PARAM}"


def _line_item(currency: str, unit_amount: int, name: str, description: Optional[str] = None) -> dict:
    product_data = {"name": name}
    if description:
        product_data["description"] = description
    return {
        "quantity": 1,
        "price_data": {
            "currency": currency.lower(),
            "unit_amount": unit_amount,
            "product_data": product_data,
        },
    }


def _metadata(obj: Mapping) -> Mapping:
    metadata = obj.get("metadata") or {}
    return metadata if isinstance(metadata, Mapping) else {}
