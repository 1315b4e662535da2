from typing import Any, Optional


class PaymentError(Exception):
    """Base for every failure that is reported back to the caller as ``{error, details?}``."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class EntityNotFound(PaymentError):
    status_code = 404


class InvalidAmount(PaymentError):
    status_code = 400


class AlreadySettled(PaymentError):
    status_code = 409


class ProviderNotConfigured(PaymentError):
    status_code = 501


class ProviderError(PaymentError):
    """The provider API or the network to it failed."""

    status_code = 502


class WebhookVerificationError(PaymentError):
    status_code = 400
