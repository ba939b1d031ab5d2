# modules/payments/monitor.py
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from modules.constants.payments import STATUS_MESSAGES
from shared.config.env import Config
from shared.utils.logging import get_logger
from shared.utils.time import utc_now

import metrics

from . import (
    Cancelled,
    Expired,
    InvalidTransition,
    MalformedResponse,
    MonitoringFailed,
    ProviderError,
    RateLimited,
)
from .models import Invoice, PaymentSession, PaymentState, StatusUpdate
from .providers import CANCELLED, EXPIRED, FAILED, PAID, PENDING, UNPAID, StatusSource

log = logging.getLogger("lnpos.payments.monitor")

StatusCallback = Callable[[StatusUpdate], Any]
CompletedCallback = Callable[[str], Any]
FailedCallback = Callable[[str], Any]
InvoiceCallback = Callable[[Invoice], Any]


def _error_kind(err: BaseException) -> str:
    if isinstance(err, RateLimited):
        return "rate_limited"
    if isinstance(err, MalformedResponse):
        return "malformed"
    if isinstance(err, asyncio.TimeoutError):
        return "timeout"
    return "transport"


class PaymentMonitor:
    """Watches one invoice at a time until it reaches a terminal state.

    Two timer chains drive a session: a poll task that sleeps
    ``poll_interval_ms`` between status requests, and a one-shot loop
    callback that expires the session at ``expires_at``.  Whichever
    produces a terminal transition first wins; the other finds the
    session terminal and does nothing.

    Callbacks are plain callables invoked on the event loop.  An
    exception raised by a callback is logged and swallowed so that it
    cannot leave the session half-updated.

    ``start()`` with a different invoice id tears the current session
    down first; ``restart()`` always does.  ``cancel()`` and ``close()``
    are idempotent.
    """

    def __init__(
        self,
        source: StatusSource,
        *,
        config: Optional[Config] = None,
        on_status_update: Optional[StatusCallback] = None,
        on_completed: Optional[CompletedCallback] = None,
        on_failed: Optional[FailedCallback] = None,
        on_invoice_generated: Optional[InvoiceCallback] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if config is None:
            from shared.config.env import config as default_config
            config = default_config
        self._source = source
        self._config = config
        self._clock = clock
        self.on_status_update = on_status_update
        self.on_completed = on_completed
        self.on_failed = on_failed
        self.on_invoice_generated = on_invoice_generated
        self._session: Optional[PaymentSession] = None
        # state reported while no session exists (before start, or a failed checkout)
        self._pending_state = PaymentState.IDLE
        self._last_update: Optional[StatusUpdate] = None

    # ------------------------------------------------------------------
    # introspection
    # ------------------------------------------------------------------
    @property
    def session(self) -> Optional[PaymentSession]:
        return self._session

    @property
    def state(self) -> PaymentState:
        if self._session is None:
            return self._pending_state
        return self._session.state

    @property
    def last_update(self) -> Optional[StatusUpdate]:
        return self._last_update

    @property
    def time_remaining(self) -> float:
        """Seconds until the current invoice expires, floored at 0."""
        if self._session is None:
            return 0.0
        return self._session.seconds_remaining(self._clock())

    @property
    def can_retry(self) -> bool:
        session = self._session
        return (
            session is not None
            and session.state is PaymentState.FAILED
            and session.attempt < self._config.max_retries
            and self._clock() < session.expires_at
        )

    def describe(self) -> Dict[str, Any]:
        session = self._session
        data: Dict[str, Any] = {
            "state": self.state.value,
            "can_retry": self.can_retry,
            "time_remaining": round(self.time_remaining, 3),
            "last_update": self._last_update.to_dict() if self._last_update else None,
        }
        if session is not None:
            data.update(
                invoice_id=session.invoice_id,
                expires_at=session.expires_at.isoformat(),
                poll_interval_ms=session.poll_interval_ms,
                retry_count=session.retry_count,
                attempt=session.attempt,
                degraded=session.degraded,
                monitoring=session.monitoring,
                transaction_id=session.result_transaction_id,
            )
        return data

    # ------------------------------------------------------------------
    # control surface
    # ------------------------------------------------------------------
    def begin(self) -> None:
        """Announce that an invoice is being generated."""
        self._teardown()
        self._session = None
        self._pending_state = PaymentState.INITIALIZING
        self._emit(None, PaymentState.INITIALIZING)

    def abort(self, error_detail: str) -> None:
        """Fail a checkout whose invoice could not be generated."""
        if self._session is not None or self._pending_state is not PaymentState.INITIALIZING:
            return
        self._pending_state = PaymentState.FAILED
        self._emit(None, PaymentState.FAILED, message=STATUS_MESSAGES["failed"], error_detail=error_detail)
        metrics.payment_sessions_finished_total.labels(state=PaymentState.FAILED.value).inc()
        self._safe_call(self.on_failed, error_detail)

    def notify_invoice_generated(self, invoice: Invoice) -> None:
        self._safe_call(self.on_invoice_generated, invoice)

    def start(
        self,
        invoice_id: str,
        expires_at: datetime,
        *,
        degraded: bool = False,
        attempt: int = 0,
    ) -> PaymentSession:
        """Begin monitoring ``invoice_id`` and return its session.

        Calling ``start`` again with the id of the session being monitored
        returns that session unchanged.  Degraded invoices are not polled;
        only the expiration timer runs for them.
        """
        current = self._session
        if current is not None and current.invoice_id == invoice_id and not current.is_terminal:
            return current
        self._teardown()

        session = PaymentSession(
            invoice_id=invoice_id,
            expires_at=expires_at,
            poll_interval_ms=self._config.heartbeat_interval_ms,
            degraded=degraded,
            attempt=attempt,
        )
        if self._pending_state is PaymentState.INITIALIZING:
            session.advance(PaymentState.INITIALIZING)
        self._pending_state = PaymentState.IDLE
        self._session = session

        session.advance(PaymentState.WAITING)
        session.monitoring = True
        metrics.active_payment_sessions.inc()
        self._logger(session).info(
            "monitor: start invoice=%s expires_at=%s attempt=%s degraded=%s",
            invoice_id,
            expires_at.isoformat(),
            attempt,
            degraded,
        )
        self._emit(session, PaymentState.WAITING)

        # a waiting callback may already have cancelled the session
        if not session.monitoring:
            return session

        loop = asyncio.get_running_loop()
        session.expiry_handle = loop.call_later(
            session.seconds_remaining(self._clock()), self._on_expiry, session
        )
        if not degraded:
            session.poll_task = loop.create_task(self._poll_loop(session), name=f"poll:{invoice_id}")
        return session

    def restart(
        self,
        invoice_id: str,
        expires_at: datetime,
        *,
        degraded: bool = False,
        attempt: int = 0,
    ) -> PaymentSession:
        """Tear down the current session, then start a new one."""
        self._teardown()
        return self.start(invoice_id, expires_at, degraded=degraded, attempt=attempt)

    def cancel(self, reason: Optional[str] = None) -> bool:
        """Stop monitoring; returns False when there was nothing to cancel."""
        session = self._session
        if session is None:
            if self._pending_state is PaymentState.INITIALIZING:
                self._pending_state = PaymentState.CANCELLED
                self._emit(None, PaymentState.CANCELLED, message=reason)
                return True
            return False
        if session.is_terminal:
            session.monitoring = False
            session.release_timers()
            return False
        return self._finish(session, PaymentState.CANCELLED, message=reason)

    def retry(self) -> PaymentSession:
        """Start a fresh session for the invoice of a failed one."""
        session = self._session
        if not self.can_retry or session is None:
            raise InvalidTransition(f"retry is not available in state {self.state.value}")
        self._logger(session).info(
            "monitor: manual retry %s/%s invoice=%s",
            session.attempt + 1,
            self._config.max_retries,
            session.invoice_id,
        )
        return self.start(session.invoice_id, session.expires_at, attempt=session.attempt + 1)

    def close(self) -> None:
        """Teardown: release every timer and cancel a session still running."""
        self._teardown()

    async def wait(self, timeout: Optional[float] = None) -> PaymentState:
        """Wait until the current session reaches a terminal state."""
        session = self._session
        if session is None:
            return self.state
        await asyncio.wait_for(session.done.wait(), timeout=timeout)
        return session.state

    def result(self) -> str:
        """Return the transaction id of a completed checkout.

        Any other outcome is raised: ``Expired``, ``Cancelled`` or
        ``MonitoringFailed`` carrying the last error detail.  Raises
        ``asyncio.InvalidStateError`` while monitoring is still running.
        """
        state = self.state
        if state is PaymentState.COMPLETED:
            return self._session.result_transaction_id
        update = self._last_update
        detail = None
        if update is not None:
            detail = update.error_detail or update.message
        if state is PaymentState.EXPIRED:
            raise Expired("invoice expired", detail=detail)
        if state is PaymentState.CANCELLED:
            raise Cancelled("monitoring cancelled", detail=detail)
        if state is PaymentState.FAILED:
            raise MonitoringFailed("monitoring failed", detail=detail)
        raise asyncio.InvalidStateError(f"monitoring has not finished (state {state.value})")

    async def __aenter__(self) -> "PaymentMonitor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        task = self._session.poll_task if self._session is not None else None
        self.close()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _logger(self, session: Optional[PaymentSession]) -> logging.LoggerAdapter:
        return get_logger(
            log.name,
            terminal_id=self._config.terminal_id,
            corr_id=session.invoice_id if session is not None else None,
        )

    def _teardown(self) -> None:
        session = self._session
        if session is None:
            return
        if not session.is_terminal:
            self._finish(session, PaymentState.CANCELLED)
        session.monitoring = False
        session.release_timers()

    def _is_live(self, session: PaymentSession) -> bool:
        return session is self._session and session.monitoring and not session.is_terminal

    def _safe_call(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            log.exception("monitor: callback %r failed", callback)

    def _emit(
        self,
        session: Optional[PaymentSession],
        state: PaymentState,
        *,
        message: Optional[str] = None,
        error_detail: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> StatusUpdate:
        update = StatusUpdate(
            state=state,
            message=message or STATUS_MESSAGES[state.value],
            timestamp=self._clock(),
            invoice_id=session.invoice_id if session is not None else None,
            transaction_id=transaction_id,
            error_detail=error_detail,
        )
        if session is not None:
            session.last_update = update
        self._last_update = update
        self._safe_call(self.on_status_update, update)
        return update

    def _finish(
        self,
        session: PaymentSession,
        state: PaymentState,
        *,
        message: Optional[str] = None,
        error_detail: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> bool:
        """Move ``session`` into a terminal state exactly once."""
        if session.is_terminal:
            return False
        session.advance(state)
        session.monitoring = False
        session.release_timers()
        metrics.active_payment_sessions.dec()
        metrics.payment_sessions_finished_total.labels(state=state.value).inc()

        logger = self._logger(session)
        if state is PaymentState.FAILED:
            logger.error("monitor: invoice=%s failed: %s", session.invoice_id, error_detail)
        else:
            logger.info("monitor: invoice=%s -> %s", session.invoice_id, state.value)

        self._emit(
            session,
            state,
            message=message,
            error_detail=error_detail,
            transaction_id=transaction_id,
        )
        return True

    def _fail(self, session: PaymentSession, error_detail: str) -> None:
        if self._finish(session, PaymentState.FAILED, error_detail=error_detail):
            self._safe_call(self.on_failed, error_detail)

    def _complete(self, session: PaymentSession) -> None:
        if session.completed or session.is_terminal:
            return
        txn = session.ensure_transaction_id(self._clock())
        if self._finish(session, PaymentState.COMPLETED, transaction_id=txn):
            self._safe_call(self.on_completed, txn)

    def _expired(self, session: PaymentSession) -> bool:
        return self._clock() >= session.expires_at

    def _on_expiry(self, session: PaymentSession) -> None:
        session.expiry_handle = None
        if not self._is_live(session):
            return
        self._finish(session, PaymentState.EXPIRED)

    async def _poll_loop(self, session: PaymentSession) -> None:
        logger = self._logger(session)
        try:
            while self._is_live(session):
                await asyncio.sleep(session.poll_interval_ms / 1000)
                if not self._is_live(session):
                    return
                await self._poll_once(session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("monitor: poll loop crashed for invoice=%s", session.invoice_id)
            if self._is_live(session):
                self._fail(session, f"Payment monitoring error: {e}")

    async def _poll_once(self, session: PaymentSession) -> None:
        started = time.perf_counter()
        try:
            status = await asyncio.wait_for(
                self._source.get_invoice_status(session.invoice_id),
                timeout=self._config.request_timeout,
            )
        except (ProviderError, asyncio.TimeoutError) as e:
            metrics.status_poll_latency_seconds.observe(time.perf_counter() - started)
            if self._is_live(session):
                self._on_poll_error(session, e)
            return
        metrics.status_poll_latency_seconds.observe(time.perf_counter() - started)

        # late response after cancel, expiry or a restart
        if not self._is_live(session):
            return
        self._apply_status(session, status)

    def _apply_status(self, session: PaymentSession, status: str) -> None:
        if session.is_terminal:
            return
        if self._expired(session):
            self._finish(session, PaymentState.EXPIRED)
            return
        if status not in (UNPAID, PENDING, PAID, CANCELLED, EXPIRED, FAILED):
            self._on_poll_error(session, MalformedResponse(f"unknown invoice state: {status!r}"))
            return

        session.poll_interval_ms = self._config.heartbeat_interval_ms
        session.retry_count = 0

        if status == PAID:
            self._complete(session)
        elif status == PENDING:
            if session.state is PaymentState.WAITING:
                session.advance(PaymentState.CONFIRMING)
                self._logger(session).info("monitor: invoice=%s payment detected", session.invoice_id)
                self._emit(session, PaymentState.CONFIRMING)
        elif status == CANCELLED:
            self._finish(session, PaymentState.CANCELLED, message="Invoice cancelled by the payment processor")
        elif status == EXPIRED:
            self._finish(session, PaymentState.EXPIRED)
        elif status == FAILED:
            self._fail(session, "Payment processor reported the payment as failed")

    def _on_poll_error(self, session: PaymentSession, err: BaseException) -> None:
        kind = _error_kind(err)
        metrics.status_poll_errors_total.labels(kind=kind).inc()
        logger = self._logger(session)

        if self._expired(session):
            self._finish(session, PaymentState.EXPIRED)
            return

        max_retries = self._config.max_retries
        if session.retry_count >= max_retries:
            self._fail(
                session,
                f"Payment monitoring failed after {session.retry_count + 1} attempts: {err or kind}",
            )
            return

        base = (
            self._config.rate_limit_base_delay_ms
            if isinstance(err, RateLimited)
            else self._config.retry_base_delay_ms
        )
        interval = max(session.poll_interval_ms, base * 2 ** session.retry_count)
        retry_after = getattr(err, "retry_after", None)
        if retry_after:
            interval = max(interval, int(retry_after * 1000))
        session.poll_interval_ms = min(interval, self._config.retry_max_delay_ms)
        session.retry_count += 1
        logger.warning(
            "monitor: %s error polling invoice=%s (%s); retry %s/%s in %sms",
            kind,
            session.invoice_id,
            err,
            session.retry_count,
            max_retries,
            session.poll_interval_ms,
        )
