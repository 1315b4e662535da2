import hashlib
import hmac
import json
from decimal import Decimal
from typing import Mapping, Optional
from urllib.parse import parse_qsl, urlencode

import structlog

from cloudus.config import OzowConfig
from cloudus.errors import ProviderNotConfigured, WebhookVerificationError
from cloudus.models import PaymentStatus, Provider
from cloudus.providers import CheckoutSession, InboundEvent, PaymentProvider

logger = structlog.get_logger(__name__)

# Fields covered by the notification HashCheck; absent fields hash as ""
NOTIFY_HASH_FIELDS = (
    "Amount",
    "BankReference",
    "CountryCode",
    "CurrencyCode",
    "IsTest",
    "SiteCode",
    "Status",
    "TransactionId",
    "TransactionReference",
)

SUCCESS_STATES = {"COMPLETE"}
FAILURE_STATES = {"CANCELLED", "ERROR", "ABANDONED"}


def ozow_hash(params: Mapping[str, str], private_key: str) -> str:
    """SHA-512 over the values in key order, upper-cased, with the private key appended."""
    ordered = sorted(params, key=str.lower)
    concatenated = "".join(params[key] or "" for key in ordered).upper()
    return hashlib.sha512((concatenated + private_key).strip().encode("utf-8")).hexdigest()


def format_amount(amount_cents: int) -> str:
    return str((Decimal(amount_cents) / 100).quantize(Decimal("0.01")))


def parse_notification(raw_body: bytes) -> dict:
    """Ozow posts form-encoded notifications; JSON is accepted too."""
    text = raw_body.decode("utf-8", errors="replace")
    try:
        payload = json.loads(text)
    except ValueError:
        payload = dict(parse_qsl(text, keep_blank_values=True))
    if not isinstance(payload, dict) or not payload:
        raise WebhookVerificationError("Invalid notification payload")
    return {key: "" if value is None else str(value) for key, value in payload.items()}


class OzowProvider(PaymentProvider):
    name = Provider.OZOW

    def __init__(self, config: OzowConfig, notify_url: str):
        self.config = config
        self.notify_url = notify_url

    @property
    def configured(self) -> bool:
        return self.config.configured

    def initialize_checkout(self, amount_cents, currency, reference, callback_url, cancel_url, metadata):
        if not self.configured:
            raise ProviderNotConfigured("Ozow is not configured. Set OZOW_SITE_CODE and OZOW_PRIVATE_KEY.")

        params = {
            "Amount": format_amount(amount_cents),
            "BankReference": (metadata.get("name") or reference)[:20],
            "CancelUrl": cancel_url,
            "CountryCode": self.config.country_code,
            "CurrencyCode": currency.upper(),
            "ErrorUrl": cancel_url,
            "IsTest": "true" if self.config.is_test else "false",
            "NotifyUrl": self.notify_url,
            "SiteCode": self.config.site_code,
            "SuccessUrl": callback_url,
            "TransactionReference": reference,
        }
        params["HashCheck"] = ozow_hash(params, self.config.private_key)

        return CheckoutSession(checkout_url=f"{self.config.api_url}?{urlencode(params)}", reference=reference)

    def verify_inbound_event(self, raw_body: bytes, signature: Optional[str] = None) -> Optional[InboundEvent]:
        if not self.configured:
            raise ProviderNotConfigured("Ozow not configured")

        payload = parse_notification(raw_body)
        incoming = (signature or payload.get("HashCheck") or "").strip().lower()
        expected = ozow_hash({key: payload.get(key, "") for key in NOTIFY_HASH_FIELDS}, self.config.private_key)

        if not incoming or not hmac.compare_digest(incoming.encode("utf-8"), expected.encode("utf-8")):
            raise WebhookVerificationError("Hash verification failed")

        reference = payload.get("TransactionReference")
        if not reference:
            raise WebhookVerificationError("Missing transaction reference")

        status = payload.get("Status", "").upper()
        if status in SUCCESS_STATES:
            outcome = PaymentStatus.PAID
        elif status in FAILURE_STATES:
            outcome = PaymentStatus.FAILED
        else:
            logger.info("ozow_status_ignored", reference=reference, status=status)
            return None

        return InboundEvent(
            reference=reference,
            outcome=outcome,
            receipt_url=None,
            event_type=f"ozow.{status.lower()}",
            raw=payload,
        )
