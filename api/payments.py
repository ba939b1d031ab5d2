# api/payments.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from modules.payments import InvalidAmount, InvalidTransition, PaymentMonitor, StatusUpdate, start_checkout
from modules.payments.providers import StatusSource
from shared.config.env import Config

log = logging.getLogger("lnpos.api.payments")
router = APIRouter()


class CreateInvoiceRequest(BaseModel):
    amount: Decimal
    description: str = ""


@dataclass
class TrackedSession:
    monitor: PaymentMonitor
    updates: List[Dict[str, Any]] = field(default_factory=list)

    def on_status_update(self, update: StatusUpdate) -> None:
        self.updates.append(update.to_dict())

    def describe(self) -> Dict[str, Any]:
        return {**self.monitor.describe(), "updates": list(self.updates)}


class SessionRegistry:
    """Monitors created through the API, keyed by invoice id."""

    def __init__(self, source: StatusSource, cfg: Config, *, max_finished: int = 100) -> None:
        self._source = source
        self._cfg = cfg
        self._max_finished = max_finished
        self._sessions: Dict[str, TrackedSession] = {}

    def new(self) -> TrackedSession:
        tracked = TrackedSession(monitor=PaymentMonitor(self._source, config=self._cfg))
        tracked.monitor.on_status_update = tracked.on_status_update
        return tracked

    def register(self, invoice_id: str, tracked: TrackedSession) -> None:
        previous = self._sessions.pop(invoice_id, None)
        if previous is not None and previous is not tracked:
            previous.monitor.close()
        self._sessions[invoice_id] = tracked
        self._prune()

    def get(self, invoice_id: str) -> Optional[TrackedSession]:
        return self._sessions.get(invoice_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def _prune(self) -> None:
        finished = [key for key, t in self._sessions.items() if t.monitor.state.is_terminal]
        for key in finished[: max(0, len(finished) - self._max_finished)]:
            del self._sessions[key]

    def close_all(self) -> None:
        for tracked in self._sessions.values():
            tracked.monitor.close()
        self._sessions.clear()


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def _tracked(request: Request, invoice_id: str) -> TrackedSession:
    tracked = _registry(request).get(invoice_id)
    if tracked is None:
        raise HTTPException(status_code=404, detail=f"unknown invoice {invoice_id}")
    return tracked


@router.post("/invoices", status_code=201)
async def create_invoice(body: CreateInvoiceRequest, request: Request):
    registry = _registry(request)
    tracked = registry.new()
    try:
        result = await start_checkout(request.app.state.invoices, tracked.monitor, body.amount, body.description)
    except InvalidAmount as e:
        log.info("invoice rejected: %s", e)
        raise HTTPException(status_code=422, detail=e.detail)

    registry.register(result.invoice.invoice_id, tracked)
    return {
        "invoice": result.invoice.to_dict(),
        "payload": result.payload,
        "session": tracked.describe(),
    }


@router.get("/sessions/{invoice_id}")
async def get_session(invoice_id: str, request: Request):
    return _tracked(request, invoice_id).describe()


@router.post("/sessions/{invoice_id}/cancel")
async def cancel_session(invoice_id: str, request: Request):
    tracked = _tracked(request, invoice_id)
    cancelled = tracked.monitor.cancel()
    return {"cancelled": cancelled, **tracked.describe()}


@router.post("/sessions/{invoice_id}/retry")
async def retry_session(invoice_id: str, request: Request):
    tracked = _tracked(request, invoice_id)
    try:
        tracked.monitor.retry()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=e.detail)
    return tracked.describe()
