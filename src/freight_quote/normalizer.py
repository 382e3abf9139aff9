# src/freight_quote/normalizer.py
"""Map provider payloads and estimates onto the canonical ``Quote``.

Upstream carriers and proxies disagree on field names (``carrier`` vs
``carrier_name``, ``total_rate`` vs ``price`` ...). Optional fields fall back
to sentinels; a quote without any price field is malformed.
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .clients.estimation_client import Estimate
from .errors import MalformedResponse
from .schemas import FreightCharges, Provenance, Quote, QuoteRequest, ServiceType

logger = logging.getLogger(__name__)

NA = "N/A"

CARRIER_KEYS = ("carrier", "carrier_name", "carrierName", "shipping_line", "shippingLine", "service_name")
PRICE_KEYS = ("total_rate", "totalRate", "price", "rate", "total_cost", "totalCost", "amount")
TRANSIT_TEXT_KEYS = ("transit_time", "estimated_transit_time", "estimatedTransitTime", "estimated_delivery")
TRANSIT_DAYS_KEYS = ("transitTime", "transit_days", "estimated_days", "days")
FREIGHT_KEYS = ("ocean_freight", "oceanFreight", "base_rate", "freight", "base_shipping_cost")
FUEL_KEYS = ("baf", "fuel_surcharge", "fuelSurcharge")
CUSTOMS_KEYS = ("customs", "duties", "estimated_customs_and_taxes")
FEE_KEYS = ("service_fee", "serviceFee")

_CARRIER_TYPES: Dict[ServiceType, str] = {
    ServiceType.FCL: "FCL",
    ServiceType.LCL: "LCL",
    ServiceType.AIR: "Air Freight",
    ServiceType.RAIL: "Rail Freight",
    ServiceType.ROAD: "Road Freight",
    ServiceType.PARCEL: "Parcel",
}

_PROVIDER_LABELS: Dict[Provenance, str] = {
    Provenance.LIVE: "Rate Provider API",
    Provenance.CACHED: "Rate Provider (Cached)",
    Provenance.ESTIMATED: "AI Estimate",
}


def _first(raw: Mapping[str, Any], keys: Tuple[str, ...]) -> Optional[Any]:
    for k in keys:
        v = raw.get(k)
        if v is not None and v != "":
            return v
    return None


def _decimal(value: Any, field: str) -> Decimal:
    try:
        d = Decimal(str(value).replace(",", "").strip())
    except (InvalidOperation, ValueError) as e:
        raise MalformedResponse(f"{field} is not numeric: {value!r}") from e
    if not d.is_finite():
        raise MalformedResponse(f"{field} is not finite: {value!r}")
    return d


def _optional_decimal(raw: Mapping[str, Any], keys: Tuple[str, ...]) -> Decimal:
    v = _first(raw, keys)
    if v is None:
        return Decimal("0")
    try:
        return _decimal(v, keys[0])
    except MalformedResponse:
        logger.debug("Ignoring non-numeric %s=%r", keys[0], v)
        return Decimal("0")


def _transit(raw: Mapping[str, Any]) -> str:
    text = _first(raw, TRANSIT_TEXT_KEYS)
    if text is not None:
        return str(text)
    days = _first(raw, TRANSIT_DAYS_KEYS)
    if days is not None:
        return f"{days} days"
    return NA


def _chargeable(request: QuoteRequest) -> Tuple[float, str, str]:
    cargo = request.cargo
    st = request.service_type
    if st is ServiceType.FCL:
        if cargo.weight_kg:
            return cargo.weight_kg, "kg", "Per Container"
        return 0, NA, "Per Container"
    if st is ServiceType.LCL:
        volume = cargo.volume_cbm if cargo.volume_cbm and cargo.volume_cbm > 0 else 1.0
        return volume, "CBM", "Volume"
    if st is ServiceType.AIR:
        weight = cargo.weight_kg if cargo.weight_kg and cargo.weight_kg > 0 else 100.0
        return weight, "kg", "Chargeable Weight"
    if cargo.weight_kg:
        return cargo.weight_kg, "kg", "Actual"
    return 0, NA, NA


class QuoteNormalizer:
    def validate_payload(self, payload: Mapping[str, Any]) -> None:
        """Reject payloads that could never normalize, before they are cached."""
        quotes = payload.get("quotes") if isinstance(payload, Mapping) else None
        if not isinstance(quotes, list):
            raise MalformedResponse("payload has no 'quotes' list")
        for i, raw in enumerate(quotes):
            if not isinstance(raw, Mapping):
                raise MalformedResponse(f"quote #{i} is not an object")
            price = _first(raw, PRICE_KEYS)
            if price is None:
                raise MalformedResponse(f"quote #{i} has no price field")
            _decimal(price, "price")

    def normalize_one(
        self,
        raw: Mapping[str, Any],
        *,
        provenance: Provenance,
        request: QuoteRequest,
    ) -> Quote:
        price = _first(raw, PRICE_KEYS)
        if price is None:
            raise MalformedResponse("quote has no price field", details={"keys": sorted(raw)})
        total = _decimal(price, "price")

        breakdown = raw.get("breakdown") if isinstance(raw.get("breakdown"), Mapping) else {}
        merged: Dict[str, Any] = {**breakdown, **raw}

        carrier_type = _CARRIER_TYPES[request.service_type]
        if request.service_type is ServiceType.PARCEL:
            carrier_type = str(raw.get("service_type") or carrier_type)

        weight, unit, basis = _chargeable(request)
        return Quote(
            carrier_name=str(_first(raw, CARRIER_KEYS) or NA),
            carrier_type=carrier_type,
            total_cost=total,
            currency=str(raw.get("currency") or request.currency).upper(),
            transit_time=_transit(raw),
            provenance=provenance,
            service_provider=_PROVIDER_LABELS[provenance],
            is_special_offer=bool(raw.get("is_special_offer", False)),
            chargeable_weight=weight,
            chargeable_weight_unit=unit,
            weight_basis=basis,
            cost_breakdown=FreightCharges(
                base_shipping_cost=_optional_decimal(merged, FREIGHT_KEYS),
                fuel_surcharge=_optional_decimal(merged, FUEL_KEYS),
                estimated_customs_and_taxes=_optional_decimal(merged, CUSTOMS_KEYS),
                our_service_fee=_optional_decimal(merged, FEE_KEYS),
            ),
        )

    def normalize(
        self,
        payload: Mapping[str, Any],
        *,
        provenance: Provenance,
        request: QuoteRequest,
    ) -> List[Quote]:
        self.validate_payload(payload)
        return [
            self.normalize_one(raw, provenance=provenance, request=request)
            for raw in payload["quotes"]
        ]

    def from_estimate(self, estimate: Estimate, request: QuoteRequest) -> Quote:
        weight, unit, basis = _chargeable(request)
        return Quote(
            carrier_name="Estimated rate",
            carrier_type=_CARRIER_TYPES[request.service_type],
            total_cost=estimate.sell_price,
            currency=estimate.currency,
            transit_time=NA,
            provenance=Provenance.ESTIMATED,
            service_provider=_PROVIDER_LABELS[Provenance.ESTIMATED],
            chargeable_weight=weight,
            chargeable_weight_unit=unit,
            weight_basis=basis,
            cost_breakdown=FreightCharges(
                base_shipping_cost=estimate.base_cost,
                our_service_fee=estimate.service_fee,
            ),
            notices=["Estimated rate - live carrier rates are currently unavailable"],
        )
