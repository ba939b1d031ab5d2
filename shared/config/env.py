"""Centralized environment configuration for the POS payment engine.

This module centralizes loading and validation of environment variables
for the payment monitoring engine.  It merges values from the process
environment (os.environ) with optional per‑terminal YAML configuration
files located under ``configs/terminals/<terminal_id>.yaml``.  Aliases
for commonly used variables (e.g. ``STRIKE_API_KEY`` vs ``STRIKE_TOKEN``)
are supported out of the box.

Usage::

    from shared.config.env import config
    heartbeat = config.heartbeat_interval_ms

    # If you need to reload configuration (e.g. after changing
    # environment variables), call reload_config():
    config = reload_config()

The ``Config`` dataclass exposes typed attributes for all supported
settings.  Durations are kept in milliseconds, money limits in the fiat
currency.  Every field has a default so that tests can build a
``Config`` directly; ``__post_init__`` rejects combinations that would
make the monitor misbehave.
"""

from __future__ import annotations

import os
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger("lnpos.env")


@dataclass
class Config:
    """Holds all configuration values for one POS terminal."""

    terminal_id: str = "pos"
    loglevel: str = "INFO"
    strike_api_key: str = ""
    strike_api: str = "https://api.strike.me/v1"
    environment: str = "sandbox"
    fiat_currency: str = "USD"
    description_prefix: str = "POS Payment"
    timeout_ms: int = 15 * 60 * 1000
    max_retries: int = 3
    heartbeat_interval_ms: int = 5000
    request_timeout_ms: int = 10000
    rate_ttl_ms: int = 5 * 60 * 1000
    retry_base_delay_ms: int = 1000
    rate_limit_base_delay_ms: int = 5000
    retry_max_delay_ms: int = 30000
    min_amount: Decimal = Decimal("0.01")
    max_amount: Decimal = Decimal("1000")
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Normalize types and validate the monitoring parameters."""
        self.min_amount = _ensure_decimal(self.min_amount, "min_amount")
        self.max_amount = _ensure_decimal(self.max_amount, "max_amount")
        self.fiat_currency = (self.fiat_currency or "USD").upper()

        if self.min_amount <= 0 or self.min_amount >= self.max_amount:
            raise RuntimeError("PAYMENT_MIN_AMOUNT must be positive and less than PAYMENT_MAX_AMOUNT")
        if self.heartbeat_interval_ms <= 0:
            raise RuntimeError("PAYMENT_HEARTBEAT_MS must be positive")
        if self.request_timeout_ms <= 0:
            raise RuntimeError("PAYMENT_REQUEST_TIMEOUT_MS must be positive")
        if self.timeout_ms <= 0:
            raise RuntimeError("PAYMENT_TIMEOUT_MS must be positive")
        if self.rate_ttl_ms <= 0:
            raise RuntimeError("RATE_TTL_MS must be positive")
        if self.max_retries < 0:
            raise RuntimeError("PAYMENT_MAX_RETRIES must not be negative")
        if self.retry_base_delay_ms > self.retry_max_delay_ms:
            raise RuntimeError("PAYMENT_RETRY_BASE_MS must not exceed PAYMENT_RETRY_MAX_MS")
        if self.rate_limit_base_delay_ms > self.retry_max_delay_ms:
            raise RuntimeError("PAYMENT_RATE_LIMIT_BASE_MS must not exceed PAYMENT_RETRY_MAX_MS")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def request_timeout(self) -> float:
        """Per-request timeout in seconds, as aiohttp and asyncio expect it."""
        return self.request_timeout_ms / 1000


def _ensure_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise RuntimeError(f"{name} must be a number, got {value!r}")


def _load_yaml_config(terminal_id: str) -> Dict[str, Any]:
    """Load per‑terminal YAML configuration if available.

    The YAML file is expected at ``configs/terminals/<terminal_id>.yaml``
    relative to the project root.  If the file does not exist, an empty
    dict is returned.
    """
    # shared/config/env.py -> project root is two levels up
    base_dir = os.path.dirname(os.path.dirname(os.path.dirname(__file__)))
    cfg_path = os.path.join(base_dir, "configs", "terminals", f"{terminal_id}.yaml")
    if not os.path.exists(cfg_path):
        return {}
    try:
        with open(cfg_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("env: failed to load YAML config %s: %s", cfg_path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _get_alias(env: Dict[str, str], *names: str, default: Optional[Any] = None) -> Optional[Any]:
    """Return the first defined environment variable from ``names``.

    Example::

        _get_alias(os.environ, 'STRIKE_API_KEY', 'STRIKE_TOKEN')

    will return the value of ``STRIKE_API_KEY`` if set, otherwise the
    value of ``STRIKE_TOKEN``.  If neither is set, returns ``default``.
    """
    for name in names:
        val = env.get(name)
        if val:
            return val
    return default


def load_config(terminal_id: Optional[str] = None) -> Config:
    """Load configuration from environment and optional YAML.

    If ``terminal_id`` is not provided, it is taken from the
    ``TERMINAL_ID`` environment variable (defaulting to ``pos``).
    """
    env = os.environ
    resolved_id = (terminal_id or env.get("TERMINAL_ID") or "pos").strip()
    yaml_data = _load_yaml_config(resolved_id)

    def _int(key: str, *names: str, default: int) -> int:
        raw = _get_alias(env, *names, default=yaml_data.get(key, default))
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning("env: %s=%r is not an integer, using %s", names[0], raw, default)
            return default

    cfg = Config(
        terminal_id=resolved_id,
        loglevel=_get_alias(env, "LOGLEVEL", default=yaml_data.get("loglevel", "INFO")),
        strike_api_key=_get_alias(env, "STRIKE_API_KEY", "STRIKE_TOKEN", default=yaml_data.get("strike_api_key", "")),
        strike_api=_get_alias(env, "STRIKE_API", default=yaml_data.get("strike_api", "https://api.strike.me/v1")),
        environment=_get_alias(env, "STRIKE_ENVIRONMENT", default=yaml_data.get("environment", "sandbox")),
        fiat_currency=_get_alias(env, "FIAT_CURRENCY", default=yaml_data.get("fiat_currency", "USD")),
        description_prefix=_get_alias(
            env, "INVOICE_DESCRIPTION_PREFIX", default=yaml_data.get("description_prefix", "POS Payment")
        ),
        timeout_ms=_int("timeout_ms", "PAYMENT_TIMEOUT_MS", default=15 * 60 * 1000),
        max_retries=_int("max_retries", "PAYMENT_MAX_RETRIES", default=3),
        heartbeat_interval_ms=_int("heartbeat_interval_ms", "PAYMENT_HEARTBEAT_MS", default=5000),
        request_timeout_ms=_int("request_timeout_ms", "PAYMENT_REQUEST_TIMEOUT_MS", default=10000),
        rate_ttl_ms=_int("rate_ttl_ms", "RATE_TTL_MS", default=5 * 60 * 1000),
        retry_base_delay_ms=_int("retry_base_delay_ms", "PAYMENT_RETRY_BASE_MS", default=1000),
        rate_limit_base_delay_ms=_int("rate_limit_base_delay_ms", "PAYMENT_RATE_LIMIT_BASE_MS", default=5000),
        retry_max_delay_ms=_int("retry_max_delay_ms", "PAYMENT_RETRY_MAX_MS", default=30000),
        min_amount=_get_alias(env, "PAYMENT_MIN_AMOUNT", default=yaml_data.get("min_amount", "0.01")),
        max_amount=_get_alias(env, "PAYMENT_MAX_AMOUNT", default=yaml_data.get("max_amount", "1000")),
        extra=yaml_data.get("extra", {}) or {},
    )
    logger.info(
        "env: loaded config for terminal_id=%s (environment=%s heartbeat=%sms max_retries=%s api_key=%s)",
        resolved_id,
        cfg.environment,
        cfg.heartbeat_interval_ms,
        cfg.max_retries,
        "set" if cfg.strike_api_key else "missing",
    )
    return cfg


# Load configuration once at import; can be reloaded by calling reload_config().
config: Config = load_config()


def reload_config(terminal_id: Optional[str] = None) -> Config:
    """Reload the configuration and update the global ``config`` object.

    The returned ``Config`` instance is also stored in
    ``shared.config.env.config``.
    """
    global config
    config = load_config(terminal_id)
    return config
