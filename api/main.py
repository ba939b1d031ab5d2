# api/main.py
"""
Service entrypoint:
- FastAPI exposes checkout, session and health endpoints
- the processor adapter, rate cache and invoice provider are shared by all sessions
- Prometheus metrics are served on /metrics

Run with ``uvicorn api.main:app``.
"""
from dotenv import load_dotenv
load_dotenv()

import logging
from typing import Optional

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from api.health import router as health_router
from api.payments import SessionRegistry, router as payments_router
from modules.payments import InvoiceProvider, RateConverter
from modules.payments.providers import PaymentsProvider, get_provider
from shared.config.env import Config, config
from shared.utils.logging import setup_logging

log = logging.getLogger("lnpos.app")


def create_app(cfg: Optional[Config] = None, provider: Optional[PaymentsProvider] = None) -> FastAPI:
    cfg = cfg or config
    app = FastAPI(title="lnpos payment monitor", version="1.0.0")
    app.state.config = cfg
    app.state.provider = provider
    app.state.invoices = None

    app.include_router(payments_router, prefix="/payments")
    app.include_router(health_router)
    app.mount("/metrics", make_asgi_app())

    @app.on_event("startup")
    async def on_startup():
        if app.state.provider is None:
            app.state.provider = get_provider(cfg)
        rates = RateConverter(app.state.provider, config=cfg)
        app.state.rates = rates
        app.state.invoices = InvoiceProvider(app.state.provider, rates, config=cfg)
        app.state.registry = SessionRegistry(app.state.provider, cfg)
        log.info(
            "startup: terminal=%s provider=%s environment=%s",
            cfg.terminal_id,
            getattr(app.state.provider, "name", "?"),
            cfg.environment,
        )

    @app.on_event("shutdown")
    async def on_shutdown():
        app.state.registry.close_all()
        await app.state.provider.close()
        log.info("shutdown: sessions closed")

    return app


setup_logging(config.loglevel)
app = create_app()
