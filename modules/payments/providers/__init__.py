# modules/payments/providers/__init__.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from shared.config.env import Config

from .. import ProviderError

# Normalized invoice states reported by adapters
UNPAID = "unpaid"
PENDING = "pending"
PAID = "paid"
CANCELLED = "cancelled"
EXPIRED = "expired"
FAILED = "failed"


class RateSource(Protocol):
    async def get_ticker(self) -> List[Dict[str, Any]]: ...


class StatusSource(Protocol):
    async def get_invoice_status(self, invoice_id: str) -> str: ...


class PaymentsProvider(RateSource, StatusSource, Protocol):
    name: str

    async def create_invoice(
        self, amount: str, currency: str, description: str, correlation_id: str
    ) -> Dict[str, Any]: ...
    async def create_quote(self, invoice_id: str) -> Dict[str, Any]: ...
    async def close(self) -> None: ...


def get_provider(cfg: Optional[Config] = None, name: str = "strike") -> PaymentsProvider:
    """
    Return the processor adapter for ``name``.
    Adding a processor means a new branch here and a new module.
    """
    if name == "strike":
        from .strike import StrikeProvider  # local import
        return StrikeProvider(cfg)
    raise ProviderError(f"unknown payment provider={name}")


__all__ = [
    "UNPAID",
    "PENDING",
    "PAID",
    "CANCELLED",
    "EXPIRED",
    "FAILED",
    "RateSource",
    "StatusSource",
    "PaymentsProvider",
    "get_provider",
]
