# modules/payments/composer.py
"""
Payment request composer.

Builds the exact string that goes into the QR code / payment URI.  The
function is pure: no I/O, no clock, no randomness, so identical inputs
always give byte-identical output.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Union

from modules.constants.assets import ADDRESS, AssetSpec, find_asset

from . import InvalidAmount, UnsupportedAsset


def format_native_amount(native_amount: int, decimals: int) -> str:
    """Render an integer count of base units with exactly ``decimals`` places.

    ``format_native_amount(33, 8) == "0.00000033"``
    """
    if decimals == 0:
        return str(native_amount)
    whole, frac = divmod(native_amount, 10 ** decimals)
    return f"{whole}.{frac:0{decimals}d}"


def _resolve(asset: Union[str, AssetSpec]) -> AssetSpec:
    if isinstance(asset, AssetSpec):
        return asset
    spec = find_asset(asset)
    if spec is None:
        raise UnsupportedAsset(f"unsupported asset: {asset!r}")
    return spec


def compose(asset: Union[str, AssetSpec], address: str, native_amount: Union[int, Decimal]) -> str:
    """Return the payment payload for ``asset``.

    For address-based assets the result is the asset's URI, e.g.
    ``bitcoin:<address>?amount=0.00000033``, with the amount rendered in
    the asset's native precision.  Token assets append their contract
    (``&token=<contract>``) so wallets do not send the native coin.
    ``native_amount`` is a count of base units (satoshis, micro-USDT).
    For processor-issued requests (lightning) ``address`` already is the
    full payment string and is returned unchanged.
    """
    spec = _resolve(asset)
    if not address:
        raise ValueError("address or payment request is required")

    if spec.kind != ADDRESS:
        return address

    if isinstance(native_amount, Decimal):
        if native_amount != native_amount.to_integral_value():
            raise InvalidAmount(f"native amount must be whole base units, got {native_amount}")
        native_amount = int(native_amount)
    if native_amount <= 0:
        raise InvalidAmount(f"native amount must be positive, got {native_amount}")

    amount = format_native_amount(native_amount, spec.decimals)
    payload = f"{spec.uri_scheme}:{address}?{spec.amount_param}={amount}"
    if spec.token_contract:
        payload += f"&token={spec.token_contract}"
    return payload
