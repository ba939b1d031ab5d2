"""Logging utilities for the POS payment engine.

This module provides helper functions to configure Python's logging
module with a consistent format and to enrich log records with
contextual data (terminal ID, module name, correlation ID).  Using
``get_logger()`` yields a ``logging.LoggerAdapter`` that injects
``terminal_id``, ``mod_name`` (the logical module name) and ``corr_id``
into each log record.  The payment monitor passes the invoice ID as the
correlation ID so that every line of one payment session can be grepped
together.

Example::

    from shared.utils.logging import setup_logging, get_logger

    setup_logging()  # configure the root logger once at startup
    logger = get_logger(__name__, terminal_id="pos-1", corr_id="abc-123")
    logger.info("Hello world")
"""

from __future__ import annotations

import os
import logging
from typing import Optional

_CONTEXT_FIELDS = ("terminal_id", "mod_name", "corr_id")


class _ContextDefaults(logging.Filter):
    """Fill missing context attributes with ``-`` so the format never fails."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in _CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger with a standard format.

    If ``level`` is not provided, it is taken from the ``LOGLEVEL``
    environment variable, defaulting to ``INFO``.  Records emitted by
    third-party loggers (aiohttp, uvicorn) carry no context fields; the
    handlers get a filter that substitutes ``-`` for them.  The
    ``force=True`` parameter reinitializes logging configuration if
    called multiple times.
    """
    lvl = (level or os.getenv("LOGLEVEL", "INFO")).upper()
    logging.basicConfig(
        level=lvl,
        format=(
            "%(asctime)s | %(terminal_id)s | %(mod_name)s | %(corr_id)s | "
            "%(levelname)s | %(message)s"
        ),
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(_ContextDefaults())


class _ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter that injects terminal/module/correlation IDs into records."""

    def __init__(self, logger: logging.Logger, terminal_id: str, module: str, corr_id: Optional[str] = None) -> None:
        super().__init__(logger, {})
        self.terminal_id = terminal_id
        self.module_name = module
        self.corr_id = corr_id or "-"

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        # existing values take precedence
        extra.setdefault("terminal_id", self.terminal_id)
        extra.setdefault("mod_name", self.module_name)
        extra.setdefault("corr_id", self.corr_id)
        return msg, kwargs


def get_logger(module: str, *, terminal_id: str, corr_id: Optional[str] = None) -> logging.LoggerAdapter:
    """Return a logger adapter for the given module and terminal.

    :param module: The name of the module emitting logs (usually a
        ``lnpos.*`` logger name).
    :param terminal_id: Identifier of the POS terminal (used to group logs
        when several terminals share one log sink).
    :param corr_id: Optional correlation ID for tracing a single
        payment session across multiple log entries.
    :returns: A ``logging.LoggerAdapter`` that automatically injects
        ``terminal_id``, ``mod_name`` and ``corr_id`` into each log record.
    """
    base_logger = logging.getLogger(module)
    return _ContextAdapter(base_logger, terminal_id=str(terminal_id), module=module, corr_id=corr_id)
