from __future__ import annotations

import logging
from typing import Any, Dict, List, Type

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..errors import EstimationFailure, MalformedResponse, QuoteEngineError
from ..resolver import QuoteResolver
from ..settings import settings
from .routes import close_resolver, get_resolver, router

# ---------------- Logging ----------------
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("freight-quote-api")

API_VERSION = "0.3.0"

# ---------- App ----------
app = FastAPI(
    title="Freight Quote Engine",
    version=API_VERSION,
    description="Freight quote resolution (live, cached or estimated) with port-cost projections",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.include_router(router)

# ----- CORS -----
allow_origins: List[str] = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] or ["*"]
allow_all = (len(allow_origins) == 1 and allow_origins[0] == "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    # Browsers disallow credentials with "*"; use regex echo when fully open.
    allow_credentials=not allow_all,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=".*" if allow_all else None,
)

# ----- Errors -----
_STATUS_BY_ERROR: Dict[Type[QuoteEngineError], int] = {
    MalformedResponse: 502,
    EstimationFailure: 503,
}


def status_for(exc: QuoteEngineError) -> int:
    for cls, status in _STATUS_BY_ERROR.items():
        if isinstance(exc, cls):
            return status
    return 502


@app.exception_handler(QuoteEngineError)
async def _quote_engine_error(request: Request, exc: QuoteEngineError) -> JSONResponse:
    status = status_for(exc)
    logger.error("%s %s failed with %s: %s", request.method, request.url.path, exc.code, exc.message,
                 exc_info=exc)
    return JSONResponse(status_code=status, content=exc.to_dict())


# ----- Startup -----
@app.on_event("startup")
def _startup():
    """Build the resolver eagerly so configuration problems show up at boot."""
    try:
        get_resolver()
        logger.info("Startup complete, quote resolver ready.")
    except Exception:
        logger.exception("Resolver init failed during startup; will retry on first request.")


@app.on_event("shutdown")
async def _shutdown():
    await close_resolver()


# ----- System -----
@app.get("/health", tags=["System"])
def health(resolver: QuoteResolver = Depends(get_resolver)) -> Dict[str, Any]:
    gateway = resolver.gateway
    return {
        "ok": True,
        "version": API_VERSION,
        "cache_stats": gateway.cache.stats(),
        "quota": gateway.cache.governor.status().as_dict(),
        "enabled_endpoints": sorted(gateway.enabled_endpoints),
        "features": [
            "live_rates",
            "response_cache",
            "monthly_quota",
            "estimation_fallback",
            "port_cost_breakdown",
        ],
    }
