"""
Tests for the rate converter.
"""
import asyncio
from decimal import Decimal

import pytest

from modules.constants.assets import BITCOIN, USDT
from modules.payments import (
    DustAmount,
    InvalidAmount,
    MalformedResponse,
    RateConverter,
    TransportError,
    UnsupportedAsset,
    compose,
)
from modules.payments.rates import parse_ticker_rate

from tests.conftest import ScriptedProcessor


class ManualClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestParseTicker:
    """Picking a pair out of the ticker payload."""

    def test_finds_pair(self) -> None:
        ticker = [{"sourceCurrency": "BTC", "targetCurrency": "USD", "amount": "45000.5"}]
        assert parse_ticker_rate(ticker, "BTC", "USD") == Decimal("45000.5")

    def test_missing_pair(self) -> None:
        with pytest.raises(MalformedResponse):
            parse_ticker_rate([], "BTC", "USD")

    def test_zero_rate_rejected(self) -> None:
        ticker = [{"sourceCurrency": "BTC", "targetCurrency": "USD", "amount": "0"}]
        with pytest.raises(MalformedResponse):
            parse_ticker_rate(ticker, "BTC", "USD")


class TestGetRate:
    """Caching, single-flight refresh and degradation."""

    @pytest.mark.asyncio
    async def test_fetches_once_within_ttl(self, rates: RateConverter, processor: ScriptedProcessor) -> None:
        first = await rates.get_rate("bitcoin")
        second = await rates.get_rate("bitcoin")

        assert first.rate == Decimal("45000")
        assert second.rate == first.rate
        assert processor.ticker_calls == 1

    @pytest.mark.asyncio
    async def test_refetches_after_ttl(self, processor: ScriptedProcessor, test_config) -> None:
        clock = ManualClock()
        converter = RateConverter(processor, config=test_config, clock=clock)
        await converter.get_rate("bitcoin")
        processor.rate = "50000"
        clock.now += test_config.rate_ttl_ms / 1000 + 1

        quote = await converter.get_rate("bitcoin")

        assert quote.rate == Decimal("50000")
        assert processor.ticker_calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_fetch(self, test_config) -> None:
        class SlowTicker(ScriptedProcessor):
            async def get_ticker(self):
                await asyncio.sleep(0.02)
                return await super().get_ticker()

        processor = SlowTicker()
        converter = RateConverter(processor, config=test_config)

        quotes = await asyncio.gather(*(converter.get_rate("bitcoin") for _ in range(10)))

        assert processor.ticker_calls == 1
        assert {q.rate for q in quotes} == {Decimal("45000")}

    @pytest.mark.asyncio
    async def test_fallback_when_source_fails_first(self, rates: RateConverter, processor: ScriptedProcessor) -> None:
        processor.ticker_error = TransportError("ticker down")

        conversion = await rates.convert(10, "bitcoin")

        assert conversion.fallback is True
        assert conversion.rate == BITCOIN.fallback_rate
        assert conversion.native_amount == 22_222

    @pytest.mark.asyncio
    async def test_stale_rate_after_failure(self, processor: ScriptedProcessor, test_config) -> None:
        clock = ManualClock()
        converter = RateConverter(processor, config=test_config, clock=clock)
        await converter.get_rate("bitcoin")
        processor.ticker_error = TransportError("ticker down")
        clock.now += test_config.rate_ttl_ms / 1000 + 1

        quote = await converter.get_rate("bitcoin")

        assert quote.stale is True
        assert quote.rate == Decimal("45000")

    @pytest.mark.asyncio
    async def test_failed_fetch_not_repeated_within_ttl(self, rates: RateConverter, processor: ScriptedProcessor) -> None:
        processor.ticker_error = TransportError("ticker down")

        await rates.get_rate("bitcoin")
        await rates.get_rate("bitcoin")

        assert processor.ticker_calls == 1

    @pytest.mark.asyncio
    async def test_zero_rate_degrades_to_fallback(self, rates: RateConverter, processor: ScriptedProcessor) -> None:
        processor.rate = "0"

        quote = await rates.get_rate("bitcoin")

        assert quote.fallback is True
        assert quote.rate > 0

    @pytest.mark.asyncio
    async def test_lightning_and_bitcoin_share_the_btc_ticker(
        self, rates: RateConverter, processor: ScriptedProcessor
    ) -> None:
        lightning = await rates.get_rate("lightning")
        bitcoin = await rates.get_rate("bitcoin")

        assert processor.ticker_calls == 1
        assert lightning.asset == "lightning" and bitcoin.asset == "bitcoin"
        assert lightning.rate == bitcoin.rate

    @pytest.mark.asyncio
    async def test_clear_cache_forces_refetch(self, rates: RateConverter, processor: ScriptedProcessor) -> None:
        await rates.get_rate("bitcoin")
        rates.clear_cache()
        await rates.get_rate("bitcoin")

        assert processor.ticker_calls == 2

    @pytest.mark.asyncio
    async def test_unknown_asset(self, rates: RateConverter) -> None:
        with pytest.raises(UnsupportedAsset):
            await rates.get_rate("dogecoin")


class TestConvert:
    """Fiat to native base units."""

    @pytest.mark.asyncio
    async def test_bitcoin_conversion(self, rates: RateConverter) -> None:
        conversion = await rates.convert("1.50", "bitcoin")

        assert conversion.native_amount == 3333
        assert conversion.amount == Decimal("0.00003333")

    @pytest.mark.asyncio
    async def test_usdt_has_six_decimals(self, rates: RateConverter) -> None:
        conversion = await rates.convert("5", USDT)

        assert conversion.native_amount == 4_999_500
        assert conversion.amount == Decimal("4.999500")

    @pytest.mark.asyncio
    async def test_tiny_lightning_amount(self, rates: RateConverter) -> None:
        conversion = await rates.convert("0.015", "lightning")

        assert conversion.native_amount == 33

    @pytest.mark.asyncio
    async def test_tiny_bitcoin_amount_reaches_the_uri(self, rates: RateConverter) -> None:
        conversion = await rates.convert("0.015", "bitcoin")

        assert conversion.native_amount == 33
        payload = compose(BITCOIN, "bc1qexampleaddress", conversion.native_amount)
        assert payload == "bitcoin:bc1qexampleaddress?amount=0.00000033"

    @pytest.mark.asyncio
    async def test_amount_below_one_satoshi_rejected(self, rates: RateConverter) -> None:
        with pytest.raises(DustAmount) as exc_info:
            await rates.convert("0.0001", "bitcoin")

        assert exc_info.value.detail == "minimum is about 0.01 USD"

    @pytest.mark.asyncio
    async def test_non_positive_rejected(self, rates: RateConverter, processor: ScriptedProcessor) -> None:
        with pytest.raises(InvalidAmount):
            await rates.convert(0, "bitcoin")

        assert processor.ticker_calls == 0
