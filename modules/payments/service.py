# modules/payments/service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Union

from modules.constants.assets import LIGHTNING
from modules.constants.payments import FALLBACK_INVOICE, FALLBACK_INVOICE_PREFIX
from shared.config.env import Config
from shared.utils.idempotency import correlation_id as new_correlation_id
from shared.utils.retry import call_with_retry
from shared.utils.time import parse_iso8601, utc_now

import metrics

from . import InvalidAmount, MalformedResponse, ProviderError, TransportError
from .models import Conversion, Invoice
from .providers import PaymentsProvider
from .rates import RateConverter, to_decimal

log = logging.getLogger("lnpos.payments.service")

_CENTS = Decimal("0.01")


def _native_from_quote(quote: Dict[str, Any], conversion: Conversion) -> int:
    """Prefer the processor's own BTC amount; otherwise keep the local conversion."""
    target = quote.get("target_amount") or {}
    if target.get("currency") == LIGHTNING.ticker:
        try:
            sats = Decimal(str(target.get("amount"))) * LIGHTNING.base_units
            return int(sats.quantize(Decimal(1), rounding=ROUND_HALF_UP))
        except (InvalidOperation, ValueError):
            log.warning("quote target amount is not a number: %r", target)
    return conversion.native_amount


class InvoiceProvider:
    """Creates Lightning invoices with the payment processor.

    The amount is validated against the configured bounds before any
    network call.  The processor's invoice and quote endpoints are
    retried on transport errors; if they still fail, the caller gets a
    fallback invoice flagged ``degraded`` so that something can always be
    rendered.  The monitor never polls degraded invoices.
    """

    def __init__(
        self,
        provider: PaymentsProvider,
        rates: RateConverter,
        *,
        config: Optional[Config] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if config is None:
            from shared.config.env import config as default_config
            config = default_config
        self._provider = provider
        self._rates = rates
        self._config = config
        self._clock = clock

    def validate_amount(self, fiat_amount: Union[int, float, str, Decimal]) -> Decimal:
        fiat = to_decimal(fiat_amount)
        if not fiat.is_finite() or fiat < self._config.min_amount or fiat > self._config.max_amount:
            metrics.invoices_created_total.labels(outcome="invalid").inc()
            raise InvalidAmount(
                f"amount must be between {self._config.min_amount} and {self._config.max_amount} "
                f"{self._config.fiat_currency}, got {fiat_amount}"
            )
        return fiat

    def fallback_invoice(self, fiat: Decimal, conversion: Conversion, description: str, corr_id: str, reason: str) -> Invoice:
        metrics.invoices_created_total.labels(outcome="fallback").inc()
        invoice = Invoice(
            invoice_id=f"{FALLBACK_INVOICE_PREFIX}{corr_id}",
            payment_request=FALLBACK_INVOICE,
            expires_at=self._clock() + timedelta(milliseconds=self._config.timeout_ms),
            rate_used=conversion.rate,
            fiat_amount=fiat,
            native_amount=conversion.native_amount,
            description=description,
            degraded=True,
            error=reason,
        )
        log.warning("invoice fallback: id=%s reason=%s", invoice.invoice_id, reason)
        return invoice

    async def create_invoice(
        self,
        fiat_amount: Union[int, float, str, Decimal],
        description: str = "",
        *,
        correlation_id: Optional[str] = None,
    ) -> Invoice:
        """Create an invoice for ``fiat_amount`` and return it with its payment request.

        Raises ``InvalidAmount`` (or ``DustAmount``) for amounts that must
        not reach the processor; every processor failure yields a degraded
        fallback invoice instead of an exception.
        """
        fiat = self.validate_amount(fiat_amount)
        conversion = await self._rates.convert(fiat, LIGHTNING)

        currency = self._config.fiat_currency
        text = description or f"{self._config.description_prefix} - {fiat.quantize(_CENTS)} {currency}"
        corr_id = correlation_id or new_correlation_id(self._config.terminal_id)
        attempts = self._config.max_retries + 1
        base_delay = self._config.retry_base_delay_ms / 1000
        max_delay = self._config.retry_max_delay_ms / 1000

        try:
            created = await call_with_retry(
                self._provider.create_invoice,
                str(fiat.quantize(_CENTS)),
                currency,
                text,
                corr_id,
                attempts=attempts,
                base_delay=base_delay,
                max_delay=max_delay,
                retry_on=(TransportError,),
                logger=log,
            )
            invoice_id = created["invoice_id"]
            quote = await call_with_retry(
                self._provider.create_quote,
                invoice_id,
                attempts=attempts,
                base_delay=base_delay,
                max_delay=max_delay,
                retry_on=(TransportError,),
                logger=log,
            )
            try:
                expires_at = parse_iso8601(str(quote["expiration"]))
            except ValueError:
                raise MalformedResponse(f"quote expiration is not ISO-8601: {quote['expiration']!r}")
        except ProviderError as e:
            return self.fallback_invoice(fiat, conversion, text, corr_id, str(e))

        invoice = Invoice(
            invoice_id=invoice_id,
            payment_request=quote["payment_request"],
            expires_at=expires_at,
            rate_used=conversion.rate,
            fiat_amount=fiat,
            native_amount=_native_from_quote(quote, conversion),
            description=text,
        )
        metrics.invoices_created_total.labels(outcome="ok").inc()
        log.info(
            "invoice created: provider=%s id=%s amount=%s %s sats=%s expires=%s",
            getattr(self._provider, "name", "?"),
            invoice.invoice_id,
            fiat,
            currency,
            invoice.native_amount,
            invoice.expires_at.isoformat(),
        )
        return invoice
