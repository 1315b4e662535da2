import hashlib
import hmac
import json
from typing import Optional

import requests
import structlog

from cloudus.config import PaystackConfig
from cloudus.errors import ProviderError, ProviderNotConfigured, WebhookVerificationError
from cloudus.models import PaymentStatus, Provider
from cloudus.providers import CheckoutSession, InboundEvent, PaymentProvider

logger = structlog.get_logger(__name__)

SUCCESS_STATES = {"success"}
FAILURE_STATES = {"failed", "failure", "abandoned", "cancelled", "reversed"}


def paystack_signature(secret_key: str, raw_body: bytes) -> str:
    return hmac.new(secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


class PaystackProvider(PaymentProvider):
    name = Provider.PAYSTACK

    def __init__(self, config: PaystackConfig, timeout: float = 30):
        self.config = config
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return self.config.configured

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.config.secret_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        if not self.configured:
            raise ProviderNotConfigured("Paystack is not configured. Set PAYSTACK_SECRET_KEY.")

        url = f"{self.config.api_url}{path}"
        try:
            r = requests.request(method, url, headers=self._headers(), json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error("paystack_request_error", path=path, error=str(e))
            raise ProviderError(f"Network error: {e}")

        try:
            data = r.json()
        except ValueError:
            data = {}

        if r.status_code >= 400 or not data.get("status"):
            message = data.get("message") or f"Paystack request to {path} failed with status {r.status_code}"
            logger.error("paystack_api_error", path=path, status_code=r.status_code, error=message)
            raise ProviderError(message)

        return data.get("data") or {}

    def initialize_checkout(self, amount_cents, currency, reference, callback_url, cancel_url, metadata):
        metadata = dict(metadata)
        email = metadata.pop("email", None) or f"{reference}@{self.config.fallback_email_domain}"
        metadata["cancel_url"] = cancel_url

        data = self._request(
            "POST",
            "/transaction/initialize",
            {
                "amount": int(amount_cents),
                "email": email,
                "currency": (currency or "ZAR").upper(),
                "reference": reference,
                "callback_url": callback_url,
                "metadata": metadata,
            },
        )

        if not data.get("authorization_url") or not data.get("reference"):
            raise ProviderError("Failed to initialize Paystack transaction.")

        logger.info("paystack_transaction_initialized", reference=data["reference"])
        return CheckoutSession(checkout_url=data["authorization_url"], reference=data["reference"])

    def verify_transaction(self, reference: str) -> dict:
        return self._request("GET", f"/transaction/verify/{reference}")

    def verify_inbound_event(self, raw_body: bytes, signature: Optional[str]) -> Optional[InboundEvent]:
        if not self.configured:
            raise ProviderNotConfigured("Paystack secret key not configured")

        computed = paystack_signature(self.config.secret_key, raw_body).encode("utf-8")
        if not signature or not hmac.compare_digest(computed, signature.strip().lower().encode("utf-8")):
            raise WebhookVerificationError("Invalid Paystack signature")

        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except ValueError:
            raise WebhookVerificationError("Invalid webhook payload")
        if not isinstance(payload, dict):
            raise WebhookVerificationError("Invalid webhook payload")

        event_type = payload.get("event") or ""
        data = payload.get("data") or {}
        if not isinstance(data, dict) or not data or event_type.startswith("transfer."):
            return None

        status = (data.get("status") or "").lower()
        reference = data.get("reference")
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}

        if status in SUCCESS_STATES or event_type == "charge.success":
            if reference:
                try:
                    status = (self.verify_transaction(reference).get("status") or status).lower()
                except ProviderError as e:
                    # keep the signed event status
                    logger.warning("paystack_verify_failed", reference=reference, error=e.message)
            if status not in SUCCESS_STATES:
                return None
            outcome = PaymentStatus.PAID
        elif status in FAILURE_STATES or "failed" in event_type:
            outcome = PaymentStatus.FAILED
        else:
            return None

        receipt_number = data.get("receipt_number")
        return InboundEvent(
            reference=reference,
            outcome=outcome,
            receipt_url=f"paystack-receipt:{receipt_number}" if receipt_number else None,
            payment_id=metadata.get("payment_id"),
            event_type=event_type,
            raw=data,
        )
