# modules/payments/models.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional

from shared.utils.idempotency import transaction_id
from shared.utils.time import seconds_until

from . import InvalidTransition


class PaymentState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    WAITING = "waiting"
    CONFIRMING = "confirming"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[PaymentState] = frozenset(
    {PaymentState.COMPLETED, PaymentState.FAILED, PaymentState.EXPIRED, PaymentState.CANCELLED}
)

_ACTIVE_EXITS = frozenset(
    {
        PaymentState.CONFIRMING,
        PaymentState.COMPLETED,
        PaymentState.FAILED,
        PaymentState.EXPIRED,
        PaymentState.CANCELLED,
    }
)

# Forward-only transition table; terminal states have no exits.
TRANSITIONS: Dict[PaymentState, FrozenSet[PaymentState]] = {
    PaymentState.IDLE: frozenset({PaymentState.INITIALIZING, PaymentState.WAITING, PaymentState.CANCELLED}),
    PaymentState.INITIALIZING: frozenset({PaymentState.WAITING, PaymentState.FAILED, PaymentState.CANCELLED}),
    PaymentState.WAITING: _ACTIVE_EXITS,
    PaymentState.CONFIRMING: _ACTIVE_EXITS,
    PaymentState.COMPLETED: frozenset(),
    PaymentState.FAILED: frozenset(),
    PaymentState.EXPIRED: frozenset(),
    PaymentState.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class StatusUpdate:
    """Immutable record emitted on every state transition."""

    state: PaymentState
    message: str
    timestamp: datetime
    invoice_id: Optional[str]
    transaction_id: Optional[str] = None
    error_detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "state": self.state.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "invoice_id": self.invoice_id,
            "transaction_id": self.transaction_id,
            "error_detail": self.error_detail,
        }


@dataclass(frozen=True)
class ExchangeRateSnapshot:
    """Cached rate for one asset; ``loaded_at`` is on the converter's monotonic clock."""

    rate: Decimal
    fetched_at: datetime
    loaded_at: float


@dataclass(frozen=True)
class RateQuote:
    """Fiat price of one whole coin, as served by RateConverter."""

    asset: str
    rate: Decimal
    fetched_at: Optional[datetime]
    stale: bool = False
    fallback: bool = False


@dataclass(frozen=True)
class Conversion:
    """A fiat amount expressed in an asset's native unit.

    ``native_amount`` is an integer count of base units (satoshis for
    bitcoin and lightning, micro-units for USDT); ``amount`` is the same
    value in whole coins.
    """

    asset: str
    fiat_amount: Decimal
    native_amount: int
    amount: Decimal
    rate: Decimal
    stale: bool = False
    fallback: bool = False


@dataclass(frozen=True)
class Invoice:
    invoice_id: str
    payment_request: str
    expires_at: datetime
    rate_used: Decimal
    fiat_amount: Decimal
    native_amount: int
    description: str = ""
    degraded: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "invoice_id": self.invoice_id,
            "payment_request": self.payment_request,
            "expires_at": self.expires_at.isoformat(),
            "rate_used": str(self.rate_used),
            "fiat_amount": str(self.fiat_amount),
            "native_amount": self.native_amount,
            "description": self.description,
            "degraded": self.degraded,
            "error": self.error,
        }


@dataclass
class PaymentSession:
    """One monitored invoice.

    The session owns its two timer handles (the poll task and the
    expiration callback); ``release_timers()`` drops both, and nothing
    scheduled by the monitor outlives the session.
    """

    invoice_id: str
    expires_at: datetime
    poll_interval_ms: int
    state: PaymentState = PaymentState.IDLE
    retry_count: int = 0
    completed: bool = False
    result_transaction_id: Optional[str] = None
    monitoring: bool = False
    degraded: bool = False
    attempt: int = 0
    last_update: Optional[StatusUpdate] = None
    poll_task: Optional["asyncio.Task[None]"] = field(default=None, repr=False, compare=False)
    expiry_handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False, compare=False)
    done: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def advance(self, new_state: PaymentState) -> None:
        """Move to ``new_state`` if the transition table allows it."""
        if new_state == self.state and not self.is_terminal:
            return
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"invoice {self.invoice_id}: {self.state.value} -> {new_state.value} is not allowed"
            )
        self.state = new_state
        if new_state is PaymentState.COMPLETED:
            self.completed = True
        if new_state.is_terminal:
            self.done.set()

    def ensure_transaction_id(self, now: datetime) -> str:
        """Generate the local transaction id once and reuse it afterwards."""
        if self.result_transaction_id is None:
            self.result_transaction_id = transaction_id(self.invoice_id, now)
        return self.result_transaction_id

    def seconds_remaining(self, now: Optional[datetime] = None) -> float:
        return seconds_until(self.expires_at, now)

    def release_timers(self) -> None:
        """Cancel the expiration timer and the poll task (unless called from inside it)."""
        if self.expiry_handle is not None:
            self.expiry_handle.cancel()
            self.expiry_handle = None
        task = self.poll_task
        self.poll_task = None
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()
