from typing import Dict

from cloudus.config import Settings, get_settings
from cloudus.models import Provider
from cloudus.ozow_service import OzowProvider
from cloudus.paystack_service import PaystackProvider
from cloudus.providers import PaymentProvider
from cloudus.stripe_service import StripeProvider

OZOW_NOTIFY_PATH = "/webhooks/ozow"


def build_providers(settings: Settings) -> Dict[Provider, PaymentProvider]:
    return {
        Provider.STRIPE: StripeProvider(settings.stripe),
        Provider.PAYSTACK: PaystackProvider(settings.paystack),
        Provider.OZOW: OzowProvider(settings.ozow, notify_url=f"{settings.app_url}{OZOW_NOTIFY_PATH}"),
    }


def get_providers() -> Dict[Provider, PaymentProvider]:
    """FastAPI dependency; tests override it with providers built from test settings."""
    return build_providers(get_settings())
