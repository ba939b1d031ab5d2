from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/healthz")
async def healthz(request: Request):
    cfg = request.app.state.config
    provider = getattr(request.app.state, "provider", None)
    return {
        "status": "ok",
        "terminal_id": cfg.terminal_id,
        "provider": getattr(provider, "name", None),
        "environment": cfg.environment,
    }


@router.get("/readyz")
async def readyz(request: Request):
    provider = getattr(request.app.state, "provider", None)
    ready = getattr(request.app.state, "invoices", None) is not None
    return {
        "ready": ready,
        # without credentials every invoice is a fallback one
        "provider_configured": bool(getattr(provider, "configured", False)),
    }


@router.get("/livez")
async def livez():
    return {"alive": True}
