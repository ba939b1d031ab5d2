"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from modules.payments import InvoiceProvider, PaymentMonitor, RateConverter
from modules.payments.providers import UNPAID
from shared.config.env import Config


class ScriptedProcessor:
    """In-memory payment processor answering from scripts.

    ``statuses`` is consumed one entry per status poll; an entry that is
    an exception instance is raised instead of returned.  The last entry
    repeats once the script runs out.
    """

    name = "scripted"
    configured = True

    def __init__(
        self,
        statuses: Optional[List[Any]] = None,
        *,
        rate: str = "45000",
        invoice_id: str = "abc-123",
        expiration: Optional[str] = None,
    ) -> None:
        self.statuses = list(statuses or [UNPAID])
        self.rate = rate
        self.invoice_id = invoice_id
        self.expiration = expiration or (
            (datetime.now(timezone.utc) + timedelta(minutes=15)).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        )
        self.status_calls: List[str] = []
        self.ticker_calls = 0
        self.created: List[Dict[str, Any]] = []
        self.invoice_error: Optional[Exception] = None
        self.ticker_error: Optional[Exception] = None
        self.closed = False

    async def get_invoice_status(self, invoice_id: str) -> str:
        self.status_calls.append(invoice_id)
        index = min(len(self.status_calls), len(self.statuses)) - 1
        entry = self.statuses[index]
        if isinstance(entry, BaseException):
            raise entry
        return entry

    async def get_ticker(self) -> List[Dict[str, Any]]:
        self.ticker_calls += 1
        if self.ticker_error is not None:
            raise self.ticker_error
        return [
            {"sourceCurrency": "BTC", "targetCurrency": "USD", "amount": self.rate},
            {"sourceCurrency": "USDT", "targetCurrency": "USD", "amount": "1.0001"},
        ]

    async def create_invoice(self, amount: str, currency: str, description: str, correlation_id: str) -> Dict[str, Any]:
        if self.invoice_error is not None:
            raise self.invoice_error
        self.created.append(
            {"amount": amount, "currency": currency, "description": description, "correlation_id": correlation_id}
        )
        return {"invoice_id": self.invoice_id, "state": "UNPAID", "created": None, "description": description}

    async def create_quote(self, invoice_id: str) -> Dict[str, Any]:
        return {
            "payment_request": "lnbc15u1ptestinvoice",
            "expiration": self.expiration,
            "source_amount": {"amount": "1.50", "currency": "USD"},
            "target_amount": {"amount": "0.00003333", "currency": "BTC"},
        }

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def test_config() -> Config:
    """Config with millisecond timings so that tests run fast."""
    return Config(
        terminal_id="test-pos",
        timeout_ms=60_000,
        max_retries=3,
        heartbeat_interval_ms=10,
        request_timeout_ms=200,
        rate_ttl_ms=60_000,
        retry_base_delay_ms=10,
        rate_limit_base_delay_ms=20,
        retry_max_delay_ms=50,
        min_amount=Decimal("0.01"),
        max_amount=Decimal("1000"),
    )


@pytest.fixture
def processor() -> ScriptedProcessor:
    return ScriptedProcessor()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rates(processor: ScriptedProcessor, test_config: Config) -> RateConverter:
    return RateConverter(processor, config=test_config)


@pytest.fixture
def invoices(processor: ScriptedProcessor, rates: RateConverter, test_config: Config) -> InvoiceProvider:
    return InvoiceProvider(processor, rates, config=test_config)


@pytest_asyncio.fixture
async def monitor(processor: ScriptedProcessor, test_config: Config):
    """Monitor recording every callback; closed after the test."""
    updates: List[Any] = []
    completed: List[str] = []
    failed: List[str] = []
    mon = PaymentMonitor(
        processor,
        config=test_config,
        on_status_update=updates.append,
        on_completed=completed.append,
        on_failed=failed.append,
    )
    mon.updates = updates
    mon.completed = completed
    mon.failed = failed
    async with mon:
        yield mon
