# modules/payments/checkout.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from modules.constants.assets import LIGHTNING

from . import Cancelled, PaymentError
from .composer import compose
from .models import Invoice, PaymentSession, PaymentState
from .monitor import PaymentMonitor
from .service import InvoiceProvider

log = logging.getLogger("lnpos.payments.checkout")


@dataclass(frozen=True)
class CheckoutResult:
    invoice: Invoice
    payload: str
    session: PaymentSession


async def start_checkout(
    invoices: InvoiceProvider,
    monitor: PaymentMonitor,
    fiat_amount: Union[int, float, str, Decimal],
    description: str = "",
) -> CheckoutResult:
    """Create an invoice for ``fiat_amount`` and start monitoring it.

    Out-of-range amounts raise ``InvalidAmount`` before the monitor hears
    about the checkout.  Any later error while generating the invoice is
    reported through the monitor as ``failed`` and then re-raised; a
    checkout cancelled meanwhile raises ``Cancelled`` without monitoring.
    """
    invoices.validate_amount(fiat_amount)
    monitor.begin()
    try:
        invoice = await invoices.create_invoice(fiat_amount, description)
    except PaymentError as e:
        monitor.abort(e.detail)
        raise

    if monitor.state is PaymentState.CANCELLED:
        raise Cancelled(f"checkout cancelled while generating invoice {invoice.invoice_id}")

    payload = compose(LIGHTNING, invoice.payment_request, invoice.native_amount)
    monitor.notify_invoice_generated(invoice)
    session = monitor.start(invoice.invoice_id, invoice.expires_at, degraded=invoice.degraded)
    log.info(
        "checkout: invoice=%s amount=%s sats=%s degraded=%s",
        invoice.invoice_id,
        invoice.fiat_amount,
        invoice.native_amount,
        invoice.degraded,
    )
    return CheckoutResult(invoice=invoice, payload=payload, session=session)
