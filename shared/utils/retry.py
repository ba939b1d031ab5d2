"""Retry helper for outbound processor calls."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")

AsyncCall = Callable[..., Awaitable[T]]


def _qualname(func: Callable[..., Any]) -> str:
    """Return a readable name for logging purposes."""
    return getattr(func, "__qualname__", repr(func))


def backoff_delay(base: float, attempt_num: int, cap: Optional[float] = None) -> float:
    """Exponential backoff: ``base * 2 ** (attempt_num - 1)``, optionally capped."""
    delay = base * (2 ** max(0, attempt_num - 1))
    return min(delay, cap) if cap is not None else delay


async def call_with_retry(
    func: AsyncCall[T],
    *args: Any,
    attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    logger: Optional[logging.Logger] = None,
    **kwargs: Any,
) -> T:
    """Execute ``func`` with retries on the exception types in ``retry_on``.

    Parameters
    ----------
    func:
        Awaitable processor call (e.g. ``provider.create_invoice``).
    attempts:
        Total number of attempts, at least one.
    base_delay:
        Base delay in seconds before retrying.  Each subsequent retry uses an
        exponential backoff: ``delay * 2 ** (attempt - 1)``, capped at
        ``max_delay``.  An exception carrying a ``retry_after`` attribute
        (seconds) asks for at least that long.
    logger:
        Optional logger used for diagnostics.  Falls back to
        ``"lnpos.retry"``.

    Returns
    -------
    The result of ``func`` on success.  If all attempts fail, the last
    exception is re-raised unchanged.  Exceptions outside ``retry_on``
    propagate immediately.
    """

    log = logger or logging.getLogger("lnpos.retry")
    attempts_val = max(1, int(attempts))
    delay_val = max(0.0, float(base_delay))

    for attempt_num in range(1, attempts_val + 1):
        try:
            return await func(*args, **kwargs)
        except retry_on as err:
            if attempt_num >= attempts_val:
                log.warning(
                    "call_with_retry: %s failed after %s attempts: %s",
                    _qualname(func),
                    attempts_val,
                    err,
                )
                raise
            sleep_for = backoff_delay(delay_val, attempt_num, max_delay)
            retry_after = getattr(err, "retry_after", None)
            if retry_after:
                sleep_for = max(sleep_for, float(retry_after))
            log.warning(
                "call_with_retry: %s error on attempt %s/%s (%s); retrying in %.2fs",
                _qualname(func),
                attempt_num,
                attempts_val,
                err,
                sleep_for,
            )
            await asyncio.sleep(sleep_for)

    raise RuntimeError("call_with_retry: execution finished without result")
