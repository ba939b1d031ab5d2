# modules/constants/assets.py

"""
Supported payment assets.

Each asset fixes the number of decimal places of its native unit, the URI
scheme used in payment requests, the token contract of token assets, the
dust threshold (in base units) and a hard-coded USD rate used when no rate
source is reachable.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

ADDRESS = "address"
PROCESSOR_REQUEST = "processor_request"


@dataclass(frozen=True)
class AssetSpec:
    code: str
    ticker: str
    decimals: int
    kind: str
    dust_threshold: int
    fallback_rate: Decimal
    uri_scheme: Optional[str] = None
    amount_param: Optional[str] = None
    token_contract: Optional[str] = None

    @property
    def base_units(self) -> int:
        """Number of base units in one whole coin (e.g. 100_000_000 sats per BTC)."""
        return 10 ** self.decimals


LIGHTNING = AssetSpec(
    code="lightning",
    ticker="BTC",
    decimals=8,
    kind=PROCESSOR_REQUEST,
    dust_threshold=1,
    fallback_rate=Decimal("45000"),
)

BITCOIN = AssetSpec(
    code="bitcoin",
    ticker="BTC",
    decimals=8,
    kind=ADDRESS,
    dust_threshold=1,
    fallback_rate=Decimal("45000"),
    uri_scheme="bitcoin",
    amount_param="amount",
)

# ERC-20 USDT, paid to an Ethereum address
USDT = AssetSpec(
    code="usdt",
    ticker="USDT",
    decimals=6,
    kind=ADDRESS,
    dust_threshold=1,
    fallback_rate=Decimal("1.00"),
    uri_scheme="ethereum",
    amount_param="amount",
    token_contract="0xdac17f958d2ee523a2206206994597c13d831ec7",
)

ASSETS: Dict[str, AssetSpec] = {a.code: a for a in (LIGHTNING, BITCOIN, USDT)}

ALIASES = {
    "ln": "lightning",
    "btc": "bitcoin",
    "tether": "usdt",
}


def find_asset(name: str) -> Optional[AssetSpec]:
    key = (name or "").strip().lower()
    return ASSETS.get(ALIASES.get(key, key))


__all__ = ("AssetSpec", "ASSETS", "LIGHTNING", "BITCOIN", "USDT", "ADDRESS", "PROCESSOR_REQUEST", "find_asset")
