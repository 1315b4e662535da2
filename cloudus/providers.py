"""
Provider capability set.

Every payment provider exposes the same two operations: start a hosted
checkout, and turn an inbound webhook body into a verified outcome. The
reconciliation code never looks at provider-specific payloads.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping, Optional

from cloudus.models import PaymentStatus, Provider


@dataclass(frozen=True)
class CheckoutSession:
    checkout_url: str
    reference: str


@dataclass(frozen=True)
class InboundEvent:
    """A verified provider notification, reduced to what reconciliation needs."""

    reference: Optional[str]
    outcome: PaymentStatus
    receipt_url: Optional[str] = None
    payment_id: Optional[str] = None
    event_type: str = ""
    raw: Mapping = field(default_factory=dict, compare=False, repr=False)


class PaymentProvider(ABC):
    name: Provider

    @property
    @abstractmethod
    def configured(self) -> bool:
        ...

    @abstractmethod
    def initialize_checkout(
        self,
        amount_cents: int,
        currency: str,
        reference: str,
        callback_url: str,
        cancel_url: str,
        metadata: Mapping[str, str],
    ) -> CheckoutSession:
        """Start a hosted checkout.

        Raises ProviderNotConfigured when keys are missing and ProviderError
        when the provider API cannot be reached or refuses the request.
        """

    @abstractmethod
    def verify_inbound_event(self, raw_body: bytes, signature: Optional[str]) -> Optional[InboundEvent]:
        """Authenticate a webhook body.

        Raises WebhookVerificationError if the body cannot be trusted. Returns
        None for authentic events that carry no settlement outcome.
        """
