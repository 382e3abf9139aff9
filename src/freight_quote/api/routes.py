# src/freight_quote/api/routes.py
"""
Quote and port-cost endpoints.

Notes:
- Resolver wiring comes from settings on first use; tests swap it through
  ``app.dependency_overrides[get_resolver]``.
- Fatal engine errors propagate to the app-level handler (502/503); bad input
  is a 404/422 here.
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from ..resolver import QuoteResolver
from ..rules.cost_breakdown import breakdown_for, demurrage_for, fees_for
from ..rules.port_fees import ContainerType, lookup_port
from ..schemas import QuoteRequest
from ..settings import get_settings

logger = logging.getLogger("freight-quote-api")

router = APIRouter(tags=["Quotes"])

_resolver: Optional[QuoteResolver] = None


def get_resolver() -> QuoteResolver:
    global _resolver
    if _resolver is None:
        _resolver = QuoteResolver.from_settings(get_settings())
    return _resolver


async def close_resolver() -> None:
    global _resolver
    if _resolver is not None:
        await _resolver.aclose()
        _resolver = None


# ============ Pydantic Models ============

class CostBreakdownRequest(BaseModel):
    ocean_freight: Decimal = Field(..., ge=0, examples=[2450])
    origin_port: str = Field(..., examples=["CNSHA"])
    destination_port: str = Field(..., examples=["USLAX"])
    container_type: str = Field("40HC", examples=["40HC"])
    quantity: int = Field(1, ge=0, examples=[2])
    arrival_date: Optional[date] = Field(None, examples=["2025-03-01"])
    pickup_date: Optional[date] = Field(None, examples=["2025-03-09"])


def _validated_container(raw: str) -> str:
    # Unrecognised descriptors still price at the default multiplier; only blanks are rejected.
    if not raw.strip():
        raise HTTPException(status_code=422, detail="container_type must not be blank")
    ct = ContainerType.parse(raw)
    return ct.value if ct else raw


# ============ Quotes ============

@router.post("/quotes")
async def create_quotes(
    request: QuoteRequest,
    resolver: QuoteResolver = Depends(get_resolver),
) -> Dict[str, Any]:
    """Resolve live, cached or estimated quotes for a route."""
    res = await resolver.resolve_detailed(request)
    quota = res.quota or resolver.gateway.cache.governor.status()
    return {
        "quotes": jsonable_encoder(res.quotes),
        "provenance": res.provenance.value if res.provenance else None,
        "quota": quota.as_dict(),
        "recovered_errors": [e.to_dict() for e in res.swallowed],
    }


# ============ Port costs ============

@router.get("/port-fees/{port_code}", tags=["Port Costs"])
def get_port_fees(
    port_code: str,
    container_type: str = Query("40HC"),
    quantity: int = Query(1, ge=0),
) -> Dict[str, Any]:
    fees = fees_for(port_code, _validated_container(container_type), quantity)
    body = jsonable_encoder(fees)
    body["error"] = fees.error.to_dict() if fees.error else None
    return body


@router.get("/demurrage", tags=["Port Costs"])
def get_demurrage(
    port_code: str = Query(..., min_length=1),
    arrival_date: date = Query(...),
    pickup_date: date = Query(...),
    container_type: str = Query("40HC"),
    quantity: int = Query(1, ge=0),
) -> Dict[str, Any]:
    fees = fees_for(port_code, _validated_container(container_type), quantity)
    projection = demurrage_for(
        fees.free_days, fees.demurrage_rate_per_day_total, arrival_date, pickup_date
    )
    return {
        "port_code": fees.port_code,
        "port_name": fees.port_name,
        "known_port": lookup_port(port_code).known,
        "free_days": fees.free_days,
        "rate_per_day": jsonable_encoder(fees.demurrage_rate_per_day_total),
        **jsonable_encoder(projection),
    }


@router.post("/cost-breakdown", tags=["Port Costs"])
def post_cost_breakdown(req: CostBreakdownRequest) -> Dict[str, Any]:
    if (req.arrival_date is None) != (req.pickup_date is None):
        raise HTTPException(status_code=422, detail="arrival_date and pickup_date must be given together")
    breakdown = breakdown_for(
        req.ocean_freight,
        req.origin_port,
        req.destination_port,
        _validated_container(req.container_type),
        req.quantity,
        req.arrival_date,
        req.pickup_date,
    )
    body = jsonable_encoder(breakdown)
    body["estimated"] = breakdown.estimated
    return body


# ============ Cache ============

@router.get("/cache/stats", tags=["System"])
def cache_stats(resolver: QuoteResolver = Depends(get_resolver)) -> Dict[str, Any]:
    cache = resolver.gateway.cache
    return {
        **cache.stats(),
        "approximate_calls": cache.approximate_calls(),
        "quota": cache.governor.status().as_dict(),
    }


@router.delete("/cache", tags=["System"])
def clear_cache(resolver: QuoteResolver = Depends(get_resolver)) -> Dict[str, Any]:
    resolver.gateway.cache.clear()
    logger.info("Response cache cleared via API")
    return {"ok": True}
