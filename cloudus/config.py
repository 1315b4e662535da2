import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Force-load .env (Windows-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    # Empty strings count as unset
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


class StripeConfig(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)


class PaystackConfig(BaseModel):
    secret_key: Optional[str] = None
    api_url: str = "https://api.paystack.co"
    fallback_email_domain: str = "paystack.local"

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)


class OzowConfig(BaseModel):
    site_code: Optional[str] = None
    private_key: Optional[str] = None
    api_url: str = "https://pay.ozow.com"
    mode: str = "test"
    country_code: str = "ZA"

    @property
    def configured(self) -> bool:
        return bool(self.site_code and self.private_key)

    @property
    def is_test(self) -> bool:
        return self.mode != "live"


class Settings(BaseModel):
    """Everything the service reads from the environment, in one place.

    Providers and routes receive this object (or the relevant section of it);
    nothing below this module calls ``os.getenv``.
    """

    database_url: Optional[str] = None
    app_url: str = "http://localhost:3000"
    jwt_secret: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = True

    stripe: StripeConfig = StripeConfig()
    paystack: PaystackConfig = PaystackConfig()
    ozow: OzowConfig = OzowConfig()

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=_env("DATABASE_URL"),
            app_url=_env("APP_URL", "http://localhost:3000").rstrip("/"),
            jwt_secret=_env("JWT_SECRET"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            log_json=_env("LOG_JSON", "true").lower() in ("1", "true", "yes", "on"),
            stripe=StripeConfig(
                secret_key=_env("STRIPE_SECRET_KEY"),
                webhook_secret=_env("STRIPE_WEBHOOK_SECRET"),
            ),
            paystack=PaystackConfig(
                secret_key=_env("PAYSTACK_SECRET_KEY"),
                api_url=_env("PAYSTACK_API_URL", "https://api.paystack.co").rstrip("/"),
                fallback_email_domain=_env("PAYSTACK_FALLBACK_EMAIL_DOMAIN", "paystack.local"),
            ),
            ozow=OzowConfig(
                site_code=_env("OZOW_SITE_CODE"),
                private_key=_env("OZOW_PRIVATE_KEY"),
                api_url=_env("OZOW_API_URL", "https://pay.ozow.com"),
                mode=_env("OZOW_MODE", "test").lower(),
                country_code=_env("OZOW_COUNTRY_CODE", "ZA").upper(),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
