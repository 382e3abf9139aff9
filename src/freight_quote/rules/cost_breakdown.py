# src/freight_quote/rules/cost_breakdown.py
"""Port fees, demurrage projection and complete landed-cost breakdowns.

Shows the costs a shipper pays on top of ocean freight: port charges,
terminal handling and documentation at both ends, plus demurrage when the
container sits at the destination longer than its free storage allowance.
Everything here is deterministic and side-effect free.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Union

from ..errors import UnknownPort
from .port_fees import (
    Congestion,
    ContainerType,
    PortFeeProfile,
    lookup_port,
    multiplier_for,
)

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]

__all__ = [
    "PortFees",
    "DemurrageProjection",
    "Savings",
    "CostBreakdown",
    "fees_for",
    "demurrage_for",
    "breakdown_for",
]


def _money(x: Decimal | int | float | str) -> Decimal:
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass
class PortFees:
    success: bool
    port_code: str
    port_name: str
    country: str
    container_type: str
    quantity: int
    multiplier: Decimal
    port_charges: Decimal
    terminal_handling: Decimal
    documentation: Decimal
    total: Decimal
    per_container: Decimal
    free_days: int
    demurrage_rate_per_day: Decimal
    demurrage_rate_per_day_total: Decimal
    congestion_level: Congestion
    congestion_warning: Optional[str] = None
    notes: str = ""
    disclaimer: Optional[str] = None

    @property
    def error(self) -> Optional[UnknownPort]:
        return None if self.success else UnknownPort(self.port_code)


@dataclass
class DemurrageProjection:
    days_in_port: int
    free_days_used: int
    chargeable_days: int
    total_cost: Decimal
    warning: Optional[str] = None


@dataclass
class Savings:
    pickup_by: date
    save_amount: Decimal


@dataclass
class CostBreakdown:
    ocean_freight: Decimal
    origin_port_fees: PortFees
    destination_port_fees: PortFees
    total_minimum: Decimal
    demurrage: Optional[DemurrageProjection] = None
    total_with_demurrage: Optional[Decimal] = None
    savings: Optional[Savings] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def estimated(self) -> bool:
        return not (self.origin_port_fees.success and self.destination_port_fees.success)


def _congestion_warning(profile: PortFeeProfile) -> Optional[str]:
    if profile.congestion_level is Congestion.HIGH:
        return f"High congestion at {profile.name} - pickup delays likely"
    return None


def fees_for(
    port_code: str,
    container_type: "str | ContainerType | None" = ContainerType.HC40,
    quantity: int = 1,
) -> PortFees:
    """Port fees for ``quantity`` containers of ``container_type`` at ``port_code``.

    Unknown ports fall back to the default profile with ``success=False`` so
    callers can show an "estimated" disclaimer. Unrecognised container types
    use the default multiplier.
    """
    if quantity < 0:
        raise ValueError("quantity must be >= 0")

    lookup = lookup_port(port_code)
    profile = lookup.profile
    ct = ContainerType.parse(container_type)
    multiplier = multiplier_for(ct)

    port_charges = _money(profile.port_charges * multiplier)
    terminal_handling = _money(profile.terminal_handling * multiplier)
    documentation = _money(profile.documentation * multiplier)
    per_container = port_charges + terminal_handling + documentation

    demurrage_per_day = _money(profile.demurrage_rate * multiplier)

    disclaimer: Optional[str] = None
    if not lookup.known:
        disclaimer = "Port fees are estimated - actual fees may vary"
        logger.info("Port %s not in fee table; using default profile", lookup.code or "<blank>")

    return PortFees(
        success=lookup.known,
        port_code=lookup.code,
        port_name=profile.name,
        country=profile.country,
        container_type=ct.value if ct else str(container_type or ""),
        quantity=quantity,
        multiplier=multiplier,
        port_charges=port_charges * quantity,
        terminal_handling=terminal_handling * quantity,
        documentation=documentation * quantity,
        total=per_container * quantity,
        per_container=per_container,
        free_days=profile.free_days,
        demurrage_rate_per_day=demurrage_per_day,
        demurrage_rate_per_day_total=demurrage_per_day * quantity,
        congestion_level=profile.congestion_level,
        congestion_warning=_congestion_warning(profile),
        notes=profile.notes,
        disclaimer=disclaimer,
    )


def _days_between(arrival: DateLike, pickup: DateLike) -> int:
    if isinstance(arrival, datetime) or isinstance(pickup, datetime):
        a = arrival if isinstance(arrival, datetime) else datetime.combine(arrival, datetime.min.time())
        p = pickup if isinstance(pickup, datetime) else datetime.combine(pickup, datetime.min.time())
        delta = p - a
    else:
        delta = pickup - arrival
    return math.ceil(delta / timedelta(days=1))


def demurrage_for(
    free_days: int,
    rate_per_day: Decimal | int | float,
    arrival_date: DateLike,
    pickup_date: DateLike,
) -> DemurrageProjection:
    days_in_port = _days_between(arrival_date, pickup_date)

    if days_in_port < 0:
        return DemurrageProjection(
            days_in_port=0,
            free_days_used=0,
            chargeable_days=0,
            total_cost=Decimal("0.00"),
            warning="Pickup date is before arrival date",
        )

    free_days_used = min(days_in_port, free_days)
    chargeable_days = max(0, days_in_port - free_days)
    total_cost = _money(Decimal(chargeable_days) * Decimal(str(rate_per_day)))

    warning: Optional[str] = None
    if chargeable_days > 0:
        warning = f"{chargeable_days} days of demurrage charges = ${total_cost}"
    elif days_in_port == free_days:
        warning = "Last free day! Pickup tomorrow to avoid charges."

    return DemurrageProjection(
        days_in_port=days_in_port,
        free_days_used=free_days_used,
        chargeable_days=chargeable_days,
        total_cost=total_cost,
        warning=warning,
    )


def breakdown_for(
    ocean_freight: Decimal | int | float,
    origin_port: str,
    destination_port: str,
    container_type: "str | ContainerType | None" = ContainerType.HC40,
    quantity: int = 1,
    arrival_date: Optional[DateLike] = None,
    pickup_date: Optional[DateLike] = None,
) -> CostBreakdown:
    """Complete cost breakdown: freight, both ends' port fees and demurrage."""
    freight = _money(ocean_freight)
    origin = fees_for(origin_port, container_type, quantity)
    destination = fees_for(destination_port, container_type, quantity)

    total_minimum = freight + origin.total + destination.total

    warnings = [w for w in (origin.congestion_warning, destination.congestion_warning) if w]
    for fees in (origin, destination):
        if fees.disclaimer:
            warnings.append(f"{fees.port_code or 'Unknown port'}: {fees.disclaimer}")

    demurrage: Optional[DemurrageProjection] = None
    total_with_demurrage: Optional[Decimal] = None
    savings: Optional[Savings] = None

    if arrival_date is not None and pickup_date is not None:
        demurrage = demurrage_for(
            destination.free_days,
            destination.demurrage_rate_per_day_total,
            arrival_date,
            pickup_date,
        )
        total_with_demurrage = total_minimum + demurrage.total_cost
        if demurrage.warning:
            warnings.append(demurrage.warning)

        if demurrage.chargeable_days > 0:
            arrival_day = arrival_date.date() if isinstance(arrival_date, datetime) else arrival_date
            savings = Savings(
                pickup_by=arrival_day + timedelta(days=destination.free_days),
                save_amount=demurrage.total_cost,
            )

    return CostBreakdown(
        ocean_freight=freight,
        origin_port_fees=origin,
        destination_port_fees=destination,
        total_minimum=total_minimum,
        demurrage=demurrage,
        total_with_demurrage=total_with_demurrage,
        savings=savings,
        warnings=warnings,
    )
