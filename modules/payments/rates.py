# modules/payments/rates.py
from __future__ import annotations

import asyncio
import logging
import time
from decimal import ROUND_HALF_UP, ROUND_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Union

from modules.constants.assets import AssetSpec, find_asset
from shared.config.env import Config
from shared.utils.time import utc_now

import metrics

from . import DustAmount, InvalidAmount, MalformedResponse, ProviderError, UnsupportedAsset
from .models import Conversion, ExchangeRateSnapshot, RateQuote
from .providers import RateSource

log = logging.getLogger("lnpos.payments.rates")


def to_decimal(value: Union[int, float, str, Decimal]) -> Decimal:
    """Money-safe conversion; floats go through ``str`` to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"not a number: {value!r}")


def parse_ticker_rate(ticker: List[Dict[str, Any]], source: str, target: str) -> Decimal:
    """Pick the ``source``/``target`` pair out of a ``/rates/ticker`` payload."""
    if not isinstance(ticker, list):
        raise MalformedResponse(f"ticker payload is not a list: {type(ticker).__name__}")
    for item in ticker:
        if not isinstance(item, dict):
            continue
        if item.get("sourceCurrency") == source and item.get("targetCurrency") == target:
            raw = item.get("amount", item.get("rate"))
            try:
                rate = Decimal(str(raw))
            except (InvalidOperation, ValueError):
                raise MalformedResponse(f"{source}/{target} rate is not a number: {raw!r}")
            if not rate.is_finite() or rate <= 0:
                raise MalformedResponse(f"{source}/{target} rate must be positive, got {raw!r}")
            return rate
    raise MalformedResponse(f"{source}/{target} rate not found in ticker")


class RateConverter:
    """Converts fiat amounts to native asset units with a time-cached rate.

    One instance is meant to be shared by every session of a terminal.
    Reads are served from the cache while it is fresh; a refresh takes a
    per-ticker lock, so concurrent callers on a cache miss wait for a
    single fetch instead of issuing their own.  Assets priced off the same
    ticker (lightning and bitcoin) share one cache entry, and at most one
    fetch per ticker is attempted per TTL window, successful or not.

    On fetch failure the last known rate is returned flagged ``stale``;
    with nothing cached, the asset's hard-coded rate is returned flagged
    ``fallback``.  ``convert`` never yields a zero amount: amounts below
    the asset's dust threshold raise ``DustAmount``.
    """

    def __init__(
        self,
        source: RateSource,
        *,
        config: Optional[Config] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if config is None:
            from shared.config.env import config as default_config
            config = default_config
        self._source = source
        self._config = config
        self._clock = clock
        self._ttl = config.rate_ttl_ms / 1000
        self._cache: Dict[str, ExchangeRateSnapshot] = {}
        self._attempted_at: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @staticmethod
    def _spec(asset: Union[str, AssetSpec]) -> AssetSpec:
        if isinstance(asset, AssetSpec):
            return asset
        spec = find_asset(asset)
        if spec is None:
            raise UnsupportedAsset(f"unsupported asset: {asset!r}")
        return spec

    def _fresh(self, ticker: str) -> Optional[ExchangeRateSnapshot]:
        snapshot = self._cache.get(ticker)
        if snapshot and self._clock() - snapshot.loaded_at < self._ttl:
            return snapshot
        return None

    def _quote(self, spec: AssetSpec, snapshot: ExchangeRateSnapshot, *, stale: bool = False) -> RateQuote:
        return RateQuote(asset=spec.code, rate=snapshot.rate, fetched_at=snapshot.fetched_at, stale=stale)

    def _degraded(self, spec: AssetSpec, reason: str) -> RateQuote:
        snapshot = self._cache.get(spec.ticker)
        if snapshot is not None:
            log.warning("rates: using stale %s rate %s (%s)", spec.code, snapshot.rate, reason)
            metrics.rate_lookups_total.labels(asset=spec.code, outcome="stale").inc()
            return self._quote(spec, snapshot, stale=True)
        log.warning("rates: using fallback %s rate %s (%s)", spec.code, spec.fallback_rate, reason)
        metrics.rate_lookups_total.labels(asset=spec.code, outcome="fallback").inc()
        return RateQuote(asset=spec.code, rate=spec.fallback_rate, fetched_at=None, fallback=True)

    async def _fetch(self, spec: AssetSpec) -> Decimal:
        ticker = await asyncio.wait_for(self._source.get_ticker(), timeout=self._config.request_timeout)
        return parse_ticker_rate(ticker, spec.ticker, self._config.fiat_currency)

    async def get_rate(self, asset: Union[str, AssetSpec]) -> RateQuote:
        """Return the fiat price of one whole coin of ``asset``."""
        spec = self._spec(asset)
        snapshot = self._fresh(spec.ticker)
        if snapshot is not None:
            metrics.rate_lookups_total.labels(asset=spec.code, outcome="cached").inc()
            return self._quote(spec, snapshot)

        lock = self._locks.setdefault(spec.ticker, asyncio.Lock())
        async with lock:
            # another caller may have refreshed while we waited
            snapshot = self._fresh(spec.ticker)
            if snapshot is not None:
                metrics.rate_lookups_total.labels(asset=spec.code, outcome="cached").inc()
                return self._quote(spec, snapshot)

            attempted = self._attempted_at.get(spec.ticker)
            if attempted is not None and self._clock() - attempted < self._ttl:
                return self._degraded(spec, "previous fetch failed within TTL")

            self._attempted_at[spec.ticker] = self._clock()
            try:
                rate = await self._fetch(spec)
            except (ProviderError, asyncio.TimeoutError) as e:
                return self._degraded(spec, str(e) or type(e).__name__)

            snapshot = ExchangeRateSnapshot(rate=rate, fetched_at=utc_now(), loaded_at=self._clock())
            self._cache[spec.ticker] = snapshot
            log.info("rates: %s/%s = %s", spec.ticker, self._config.fiat_currency, rate)
            metrics.rate_lookups_total.labels(asset=spec.code, outcome="fetched").inc()
            return self._quote(spec, snapshot)

    async def convert(self, fiat_amount: Union[int, float, str, Decimal], asset: Union[str, AssetSpec]) -> Conversion:
        """Convert ``fiat_amount`` into whole base units of ``asset``.

        Rounds half-up to the nearest base unit.  Raises ``InvalidAmount``
        for non-positive input and ``DustAmount`` below the dust threshold.
        """
        spec = self._spec(asset)
        fiat = to_decimal(fiat_amount)
        if fiat <= 0:
            raise InvalidAmount(f"amount must be positive, got {fiat}")

        quote = await self.get_rate(spec)
        whole = fiat / quote.rate
        native = int((whole * spec.base_units).quantize(Decimal(1), rounding=ROUND_HALF_UP))
        if native < spec.dust_threshold:
            minimum = Decimal(spec.dust_threshold) * quote.rate / spec.base_units
            minimum = minimum.quantize(Decimal("0.01"), rounding=ROUND_UP)
            raise DustAmount(
                f"payment too small: {native} base units of {spec.code}, minimum is {spec.dust_threshold}",
                detail=f"minimum is about {minimum} {self._config.fiat_currency}",
            )

        return Conversion(
            asset=spec.code,
            fiat_amount=fiat,
            native_amount=native,
            amount=Decimal(native).scaleb(-spec.decimals),
            rate=quote.rate,
            stale=quote.stale,
            fallback=quote.fallback,
        )

    def clear_cache(self) -> None:
        self._cache.clear()
        self._attempted_at.clear()
