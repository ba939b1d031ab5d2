# modules/payments/providers/strike.py
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from shared.config.env import Config

from .. import MalformedResponse, ProviderUnavailable, RateLimited, TransportError
from . import CANCELLED, EXPIRED, FAILED, PAID, PENDING, UNPAID

log = logging.getLogger("lnpos.payments.providers.strike")

STATUS_MAP = {
    "unpaid": UNPAID,
    "pending": PENDING,
    "paid": PAID,
    "completed": PAID,
    "cancelled": CANCELLED,
    "canceled": CANCELLED,
    "expired": EXPIRED,
    "failed": FAILED,
}


def _parse_retry_after(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def normalize_status(payload: Any) -> str:
    """Map a Strike invoice body to one of the normalized states."""
    if not isinstance(payload, dict):
        raise MalformedResponse(f"strike invoice body is not an object: {type(payload).__name__}")
    raw_state = payload.get("state")
    if not isinstance(raw_state, str):
        raise MalformedResponse("strike invoice body has no state")
    status = STATUS_MAP.get(raw_state.lower())
    if status is None:
        raise MalformedResponse(f"strike invoice state not recognized: {raw_state!r}")
    return status


def _amount(node: Any) -> Optional[Dict[str, Any]]:
    if isinstance(node, dict) and "amount" in node:
        return {"amount": str(node.get("amount")), "currency": node.get("currency")}
    return None


class StrikeProvider:
    """Strike API adapter.

    Every request carries its own timeout (``request_timeout_ms``).
    aiohttp errors, timeouts, non-2xx answers and undecodable bodies are
    translated into the engine's error taxonomy; callers never see an
    aiohttp exception.
    """

    name = "strike"

    def __init__(self, cfg: Optional[Config] = None, *, session: Optional[aiohttp.ClientSession] = None) -> None:
        if cfg is None:
            from shared.config.env import config as default_config
            cfg = default_config
        self._api = cfg.strike_api.rstrip("/")
        self._token = cfg.strike_api_key
        self._timeout = aiohttp.ClientTimeout(total=cfg.request_timeout)
        self._session = session
        self._owns_session = session is None

    @property
    def configured(self) -> bool:
        return bool(self._token)

    def _http(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        if not self._token:
            raise ProviderUnavailable("STRIKE_API_KEY is not set")

        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }
        url = f"{self._api}{path}"
        try:
            async with self._http().request(
                method, url, json=payload, headers=headers, timeout=self._timeout
            ) as resp:
                text = await resp.text()
                status = resp.status
                retry_after = resp.headers.get("Retry-After")
        except asyncio.TimeoutError:
            raise TransportError(f"strike {method} {path} timed out")
        except aiohttp.ClientError as e:
            raise TransportError(f"strike {method} {path} failed: {e}")

        if status == 429:
            log.warning("strike rate limited: %s %s retry_after=%s", method, path, retry_after)
            raise RateLimited(
                f"strike rate limited {method} {path}",
                retry_after=_parse_retry_after(retry_after),
            )
        if status < 200 or status >= 300:
            log.error("strike error resp=%s %s %s body=%s", status, method, path, text[:500])
            raise TransportError(
                f"strike error: status={status}, body={text[:200]}",
                status=status,
            )
        if not text:
            return {}
        try:
            return json.loads(text)
        except ValueError:
            log.error("strike non-JSON response: %s %s", status, text[:500])
            raise MalformedResponse(f"strike invalid response (status={status})")

    async def create_invoice(
        self, amount: str, currency: str, description: str, correlation_id: str
    ) -> Dict[str, Any]:
        payload = {
            "correlationId": correlation_id,
            "description": description[:200],
            "amount": {"amount": amount, "currency": currency},
        }
        log.info("strike createInvoice: amount=%s %s correlation_id=%s", amount, currency, correlation_id)
        data = await self._request("POST", "/invoices", payload)
        if not isinstance(data, dict) or not data.get("invoiceId"):
            raise MalformedResponse("strike returned no invoice ID")
        return {
            "invoice_id": str(data["invoiceId"]),
            "state": data.get("state"),
            "created": data.get("created"),
            "description": data.get("description"),
        }

    async def create_quote(self, invoice_id: str) -> Dict[str, Any]:
        data = await self._request("POST", f"/invoices/{quote(invoice_id, safe='')}/quote")
        if not isinstance(data, dict):
            raise MalformedResponse("strike quote body is not an object")
        payment_request = data.get("lnInvoice") or data.get("paymentRequestString") or data.get("paymentRequest")
        if not payment_request:
            raise MalformedResponse("strike quote has no payment request")
        if not data.get("expiration"):
            raise MalformedResponse("strike quote has no expiration")
        return {
            "payment_request": str(payment_request),
            "expiration": data["expiration"],
            "source_amount": _amount(data.get("sourceAmount")),
            "target_amount": _amount(data.get("targetAmount")),
        }

    async def get_invoice_status(self, invoice_id: str) -> str:
        data = await self._request("GET", f"/invoices/{quote(invoice_id, safe='')}")
        return normalize_status(data)

    async def get_ticker(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/rates/ticker")
        if not isinstance(data, list):
            raise MalformedResponse("strike ticker body is not a list")
        return data
