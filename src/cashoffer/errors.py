"""Failure taxonomy for VIN decoding and upstream provider calls.

Resolvers translate every upstream failure into one of these; the API
maps them to a JSON error body using ``status_code``.
"""

from __future__ import annotations

from typing import Any


class CashOfferError(Exception):
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InputValidationError(CashOfferError):
    status_code = 400


class VinValidationError(InputValidationError):
    pass


class VinNotFoundError(CashOfferError):
    status_code = 404


class ConfigurationError(CashOfferError):
    status_code = 500


class ProviderConfigError(ConfigurationError):
    pass


class ProviderAuthError(CashOfferError):
    status_code = 500


class ProviderRateLimitError(CashOfferError):
    status_code = 429
    retryable = True

    def __init__(self, message: str, details: Any = None, retry_after: int | None = None) -> None:
        super().__init__(message, details)
        self.retry_after = retry_after


class ProviderTimeoutError(CashOfferError):
    status_code = 504
    retryable = True


class ProviderError(CashOfferError):
    status_code = 502
