#!/usr/bin/env python3
"""Create a Lightning invoice and watch it until it settles.

Handy for checking processor credentials from a terminal::

    python scripts/watch_invoice.py --amount 1.50 --description test

The payment request is printed so that it can be paid from any wallet;
every status update is printed as it happens.  Ctrl-C cancels the
session.  Exit status is 0 when the payment completed, 1 otherwise.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

# scripts/ lives next to the top-level packages
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from modules.payments import (  # noqa: E402
    InvalidAmount,
    InvoiceProvider,
    PaymentError,
    PaymentMonitor,
    RateConverter,
    start_checkout,
)
from modules.payments.providers import get_provider  # noqa: E402
from shared.config.env import load_config  # noqa: E402
from shared.utils.logging import setup_logging  # noqa: E402


def _print_update(update) -> None:
    line = f"[{update.timestamp:%H:%M:%S}] {update.state.value:<12} {update.message}"
    if update.transaction_id:
        line += f" (txn {update.transaction_id})"
    if update.error_detail:
        line += f" - {update.error_detail}"
    print(line, flush=True)


async def run(amount: str, description: str, terminal_id: str = None) -> int:
    cfg = load_config(terminal_id)
    provider = get_provider(cfg)
    rates = RateConverter(provider, config=cfg)
    invoices = InvoiceProvider(provider, rates, config=cfg)
    monitor = PaymentMonitor(provider, config=cfg, on_status_update=_print_update)
    try:
        async with monitor:
            try:
                result = await start_checkout(invoices, monitor, amount, description)
            except InvalidAmount as e:
                print(f"rejected: {e.detail}", file=sys.stderr)
                return 2
            print(f"invoice:  {result.invoice.invoice_id}")
            print(f"amount:   {result.invoice.fiat_amount} {cfg.fiat_currency} = {result.invoice.native_amount} sats")
            print(f"expires:  {result.invoice.expires_at.isoformat()}")
            if result.invoice.degraded:
                print(f"warning:  fallback invoice ({result.invoice.error})")
            print(result.payload, flush=True)
            await monitor.wait()
    finally:
        await provider.close()

    try:
        txn = monitor.result()
    except PaymentError as e:
        print(f"{monitor.state.value}: {e.detail}", file=sys.stderr)
        return 1
    print(f"paid:     {txn}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a Lightning invoice and watch its status")
    parser.add_argument("--amount", required=True, help="Fiat amount to charge (e.g. 1.50)")
    parser.add_argument("--description", default="", help="Invoice description")
    parser.add_argument("--terminal-id", default=None, help="Terminal whose configuration to load")
    args = parser.parse_args()

    load_dotenv()
    setup_logging()
    try:
        code = asyncio.run(run(args.amount, args.description, args.terminal_id))
    except KeyboardInterrupt:
        code = 130
    raise SystemExit(code)


if __name__ == "__main__":
    main()
