from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .rules.cost_breakdown import CostBreakdown


class ServiceType(str, Enum):
    FCL = "fcl"
    LCL = "lcl"
    AIR = "air"
    RAIL = "rail"
    ROAD = "road"
    PARCEL = "parcel"


class Provenance(str, Enum):
    LIVE = "live"
    CACHED = "cached"
    ESTIMATED = "estimated"


class ContainerSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = Field(..., examples=["40HC"])
    quantity: int = Field(1, ge=0)


class Cargo(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str = Field("General cargo", examples=["Furniture"])
    weight_kg: Optional[float] = Field(None, ge=0)
    volume_cbm: Optional[float] = Field(None, ge=0)
    hs_code: Optional[str] = Field(None, examples=["940360"])
    containers: List[ContainerSpec] = Field(default_factory=list)

    def primary_container(self) -> Optional[ContainerSpec]:
        for c in self.containers:
            if c.quantity > 0:
                return c
        return self.containers[0] if self.containers else None


class QuoteRequest(BaseModel):
    """A rate request as issued by a booking form. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    service_type: ServiceType
    origin: str = Field(..., examples=["CNSHA"])
    destination: str = Field(..., examples=["USLAX"])
    cargo: Cargo = Field(default_factory=Cargo)
    currency: str = Field("USD", min_length=3, max_length=3)
    # Optional dates drive the demurrage projection in the port-cost enrichment.
    arrival_date: Optional[date] = None
    pickup_date: Optional[date] = None

    def provider_params(self) -> Dict[str, Any]:
        """Every semantic field of the request, in the provider's wire names."""
        return {
            "service_type": self.service_type.value,
            "origin": self.origin,
            "destination": self.destination,
            "containers": [c.model_dump() for c in self.cargo.containers],
            "cargo": {
                "description": self.cargo.description,
                "weight": self.cargo.weight_kg,
                "volume": self.cargo.volume_cbm,
                "hs_code": self.cargo.hs_code,
            },
            "include_port_fees": True,
            "include_co2": True,
            "currency": self.currency.upper(),
        }


class FreightCharges(BaseModel):
    base_shipping_cost: Decimal = Decimal("0")
    fuel_surcharge: Decimal = Decimal("0")
    estimated_customs_and_taxes: Decimal = Decimal("0")
    optional_insurance_cost: Decimal = Decimal("0")
    our_service_fee: Decimal = Decimal("0")


class Quote(BaseModel):
    carrier_name: str
    carrier_type: str
    total_cost: Decimal
    currency: str = "USD"
    transit_time: str = "N/A"
    provenance: Provenance
    service_provider: str = "N/A"
    is_special_offer: bool = False
    chargeable_weight: float = 0
    chargeable_weight_unit: str = "N/A"
    weight_basis: str = "N/A"
    cost_breakdown: FreightCharges = Field(default_factory=FreightCharges)
    port_costs: Optional[CostBreakdown] = None
    breakdown_available: bool = False
    notices: List[str] = Field(default_factory=list)
