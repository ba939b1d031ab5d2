# modules/payments/__init__.py
"""
Payments package: the payment monitoring engine of the POS.

Stable public API:
    - InvoiceProvider.create_invoice(fiat_amount, description)
    - RateConverter.get_rate(asset) / RateConverter.convert(fiat_amount, asset)
    - compose(asset, address, native_amount)
    - PaymentMonitor (start / restart / cancel / retry / close / result)
    - start_checkout(...)

Usually used as:
    from modules.payments import InvoiceProvider, PaymentMonitor, start_checkout

The exception taxonomy lives here so that providers and services can
import it without pulling in each other.
"""

from __future__ import annotations

from typing import Optional


class PaymentError(Exception):
    """Base error of the payment engine; ``detail`` is safe to show to operators."""

    def __init__(self, message: str = "", *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.detail = detail or message


class InvalidAmount(PaymentError):
    """Fiat amount outside configured bounds; rejected before any network call."""


class DustAmount(InvalidAmount):
    """Amount converts to fewer base units than the asset's dust threshold."""


class UnsupportedAsset(PaymentError):
    """Asset is not one of the enumerated payment assets."""


class ProviderError(PaymentError):
    """Error at the payment processor boundary."""


class TransportError(ProviderError):
    """Timeout, connection failure or non-2xx response."""

    def __init__(self, message: str = "", *, status: Optional[int] = None, detail: Optional[str] = None) -> None:
        super().__init__(message, detail=detail)
        self.status = status


class RateLimited(TransportError):
    """Processor answered 429; retried with a longer backoff base."""

    def __init__(
        self,
        message: str = "",
        *,
        retry_after: Optional[float] = None,
        status: Optional[int] = 429,
        detail: Optional[str] = None,
    ) -> None:
        super().__init__(message, status=status, detail=detail)
        self.retry_after = retry_after


class MalformedResponse(ProviderError):
    """Response body had an unexpected shape."""


class ProviderUnavailable(ProviderError):
    """Invoice creation failed; callers receive a degraded fallback invoice."""


class Expired(PaymentError):
    """Session deadline reached or processor reported expiration."""


class Cancelled(PaymentError):
    """Monitoring cancelled by the caller or by teardown."""


class MonitoringFailed(PaymentError):
    """Terminal failure handed to ``on_failed``."""


class InvalidTransition(PaymentError):
    """A state change outside the session transition table."""


from .models import (  # noqa: E402
    Conversion,
    ExchangeRateSnapshot,
    Invoice,
    PaymentSession,
    PaymentState,
    RateQuote,
    StatusUpdate,
)
from .composer import compose  # noqa: E402
from .rates import RateConverter  # noqa: E402
from .service import InvoiceProvider  # noqa: E402
from .monitor import PaymentMonitor  # noqa: E402
from .checkout import CheckoutResult, start_checkout  # noqa: E402

__all__ = [
    "PaymentError",
    "InvalidAmount",
    "DustAmount",
    "UnsupportedAsset",
    "ProviderError",
    "TransportError",
    "RateLimited",
    "MalformedResponse",
    "ProviderUnavailable",
    "Expired",
    "Cancelled",
    "MonitoringFailed",
    "InvalidTransition",
    "Conversion",
    "ExchangeRateSnapshot",
    "Invoice",
    "PaymentSession",
    "PaymentState",
    "RateQuote",
    "StatusUpdate",
    "compose",
    "RateConverter",
    "InvoiceProvider",
    "PaymentMonitor",
    "CheckoutResult",
    "start_checkout",
]
