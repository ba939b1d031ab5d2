"""Utilities package for the POS payment engine.

This package bundles helper modules used across the codebase: logging
setup with terminal/correlation context, UTC time helpers, idempotency
and correlation ids, and the retry helper for processor calls.

Usage::

    from shared.utils import logging as logging_utils
    logger = logging_utils.get_logger("lnpos.my_module", terminal_id="pos-1")
"""

from __future__ import annotations

from . import idempotency, logging, retry, time  # noqa: F401

__all__ = ["logging", "time", "idempotency", "retry"]
