# src/freight_quote/clients/estimation_client.py
"""Generative rate estimation, the last resort when live rates are unavailable.

The model is asked for a single bare number (the base freight cost); the
category markup turns that into a sell price. There is no cache and no quota
here, and no further fallback: anything that goes wrong is an
``EstimationFailure``.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..errors import EstimationFailure
from ..schemas import Cargo, ServiceType

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"\$?\s*(\d+(?:\.\d+)?)")

_SERVICE_LABELS: Dict[ServiceType, str] = {
    ServiceType.FCL: "FCL (full container load) sea freight",
    ServiceType.LCL: "LCL (less than container load) sea freight",
    ServiceType.AIR: "air freight",
    ServiceType.RAIL: "railway freight",
    ServiceType.ROAD: "road freight (FTL/LTL trucking)",
    ServiceType.PARCEL: "international parcel delivery",
}


class MarkupConfig(BaseModel):
    """Markup applied on top of the estimated base cost, per service category."""

    fcl: float = Field(0.15, ge=0)
    lcl: float = Field(0.20, ge=0)
    air: float = Field(0.18, ge=0)
    rail: float = Field(0.15, ge=0)
    road: float = Field(0.12, ge=0)
    parcel: float = Field(0.25, ge=0)

    def for_service(self, service_type: ServiceType) -> Decimal:
        return Decimal(str(getattr(self, service_type.value)))


@dataclass(frozen=True)
class Estimate:
    base_cost: Decimal
    markup: Decimal
    sell_price: Decimal
    currency: str

    @property
    def service_fee(self) -> Decimal:
        return self.sell_price - self.base_cost


def _money(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def parse_base_cost(text: Optional[str]) -> Decimal:
    """Read a bare base cost such as ``"2450"`` or ``"$2,450.00"``; prose replies are rejected."""
    if text is None:
        raise EstimationFailure("estimation service returned an empty response")
    cleaned = text.strip().replace(",", "")
    m = _NUMBER_RE.fullmatch(cleaned)
    if not m:
        raise EstimationFailure(f"estimation response is not a number: {text[:80]!r}")
    try:
        value = Decimal(m.group(1))
    except InvalidOperation as e:
        raise EstimationFailure(f"estimation response is not a number: {text[:80]!r}") from e
    if not value.is_finite() or value <= 0:
        raise EstimationFailure(f"estimation returned a non-positive cost: {value}")
    return value


def describe_cargo(service_type: ServiceType, cargo: Cargo) -> str:
    parts = [cargo.description or "General cargo"]
    if cargo.containers:
        parts.append(", ".join(f"{c.quantity} x {c.type}" for c in cargo.containers))
    if cargo.weight_kg:
        parts.append(f"{cargo.weight_kg:g} kg")
    if cargo.volume_cbm:
        parts.append(f"{cargo.volume_cbm:g} CBM")
    if cargo.hs_code:
        parts.append(f"HS code {cargo.hs_code}")
    return "; ".join(parts)


class EstimationFallback:
    def __init__(
        self,
        markups: MarkupConfig,
        *,
        client: Any = None,
        model: str = "gpt-4o-mini",
        timeout_s: float = 20.0,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> None:
        self.markups = markups
        self.model = model
        self.timeout_s = timeout_s
        self.base_url = base_url
        self.api_key = api_key
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise EstimationFailure("estimation service is not configured")
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    @staticmethod
    def build_prompt(
        service_type: ServiceType,
        origin: str,
        destination: str,
        cargo: Cargo,
        currency: str,
    ) -> str:
        return (
            f"Act as a logistics pricing expert for {_SERVICE_LABELS[service_type]}.\n"
            f"- Origin: {origin}\n"
            f"- Destination: {destination}\n"
            f"- Cargo: {describe_cargo(service_type, cargo)}\n"
            f"- Currency: {currency.upper()}\n\n"
            "Provide a single estimated base cost for the freight as a number. "
            "Do not add any other text or formatting."
        )

    async def _complete(self, prompt: str) -> str:
        client = self._get_client()
        try:
            resp = await asyncio.wait_for(
                client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": "You reply with a single number only."},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=0.2,
                ),
                self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise EstimationFailure(f"estimation service timed out after {self.timeout_s:g}s") from e
        except EstimationFailure:
            raise
        except Exception as e:
            raise EstimationFailure(f"estimation service call failed: {e}") from e

        try:
            return resp.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise EstimationFailure("estimation service returned no choices") from e

    async def estimate_detail(
        self,
        service_type: ServiceType,
        origin: str,
        destination: str,
        cargo: Cargo,
        currency: str,
    ) -> Estimate:
        prompt = self.build_prompt(service_type, origin, destination, cargo, currency)
        text = await self._complete(prompt)
        base_cost = parse_base_cost(text)
        markup = self.markups.for_service(service_type)
        sell_price = _money(base_cost * (Decimal("1") + markup))
        logger.info(
            "Estimated %s %s→%s base=%s markup=%s sell=%s %s",
            service_type.value, origin, destination, base_cost, markup, sell_price, currency,
        )
        return Estimate(base_cost=_money(base_cost), markup=markup, sell_price=sell_price, currency=currency.upper())

    async def estimate(
        self,
        service_type: ServiceType,
        origin: str,
        destination: str,
        cargo: Cargo,
        currency: str,
    ) -> Decimal:
        """Sell price for the route: ``base_cost × (1 + markup)``."""
        detail = await self.estimate_detail(service_type, origin, destination, cargo, currency)
        return detail.sell_price
