"""
End-to-end checkout: invoice creation followed by monitoring.
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from modules.payments import (
    Cancelled,
    InvalidAmount,
    InvoiceProvider,
    MalformedResponse,
    PaymentMonitor,
    PaymentState,
    start_checkout,
)
from modules.payments.providers import PAID, UNPAID
from shared.utils.time import utc_now

from tests.conftest import ScriptedProcessor


class TestCheckout:
    """start_checkout wires the provider and the monitor together."""

    @pytest.mark.asyncio
    async def test_paid_after_three_polls(
        self, invoices: InvoiceProvider, monitor: PaymentMonitor, processor: ScriptedProcessor
    ) -> None:
        processor.statuses = [UNPAID, UNPAID, UNPAID, PAID, PAID]
        generated = []
        monitor.on_invoice_generated = generated.append

        result = await start_checkout(invoices, monitor, "1.50", "test")

        assert result.invoice.invoice_id == "abc-123"
        assert result.payload == "lnbc15u1ptestinvoice"
        remaining = result.invoice.expires_at - utc_now()
        assert timedelta(minutes=14) < remaining <= timedelta(minutes=15)
        assert generated == [result.invoice]

        assert await monitor.wait(timeout=2) is PaymentState.COMPLETED
        states = [u.state.value for u in monitor.updates]
        assert states == ["initializing", "waiting", "completed"]
        assert len(monitor.completed) == 1
        assert monitor.updates[-1].transaction_id is not None

    @pytest.mark.asyncio
    async def test_invalid_amount_never_starts(
        self, invoices: InvoiceProvider, monitor: PaymentMonitor, processor: ScriptedProcessor
    ) -> None:
        with pytest.raises(InvalidAmount):
            await start_checkout(invoices, monitor, "5000", "test")

        assert monitor.updates == []
        assert monitor.state is PaymentState.IDLE
        assert processor.created == []

    @pytest.mark.asyncio
    async def test_dust_amount_fails_the_checkout(
        self, invoices: InvoiceProvider, monitor: PaymentMonitor, processor: ScriptedProcessor
    ) -> None:
        processor.rate = "1000000000"

        with pytest.raises(InvalidAmount):
            await start_checkout(invoices, monitor, "0.01", "test")

        assert monitor.state is PaymentState.FAILED
        assert len(monitor.failed) == 1

    @pytest.mark.asyncio
    async def test_fallback_invoice_is_not_polled(
        self, invoices: InvoiceProvider, monitor: PaymentMonitor, processor: ScriptedProcessor
    ) -> None:
        processor.create_quote = AsyncMock(side_effect=MalformedResponse("quote has no payment request"))

        result = await start_checkout(invoices, monitor, "1.50", "test")

        assert result.invoice.degraded is True
        assert result.session.degraded is True
        assert result.session.poll_task is None
        assert monitor.state is PaymentState.WAITING


    @pytest.mark.asyncio
    async def test_cancel_while_generating(
        self, invoices: InvoiceProvider, monitor: PaymentMonitor, processor: ScriptedProcessor
    ) -> None:
        async def create_and_walk_away(amount, currency, description, correlation_id):
            monitor.cancel()
            return {"invoice_id": "abc-123", "state": "UNPAID", "created": None, "description": description}

        processor.create_invoice = AsyncMock(side_effect=create_and_walk_away)

        with pytest.raises(Cancelled):
            await start_checkout(invoices, monitor, "1.50", "test")

        assert monitor.session is None
        assert processor.status_calls == []
        assert [u.state.value for u in monitor.updates] == ["initializing", "cancelled"]
