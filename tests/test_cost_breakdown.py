from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from freight_quote.rules.cost_breakdown import breakdown_for, demurrage_for


@pytest.mark.parametrize("stay_days", [0, 1, 4, 6])
def test_no_demurrage_within_free_days(stay_days):
    arrival = date(2025, 3, 1)
    result = demurrage_for(7, Decimal("90"), arrival, arrival + timedelta(days=stay_days))

    assert result.chargeable_days == 0
    assert result.total_cost == Decimal("0.00")
    assert result.days_in_port == stay_days
    assert result.free_days_used == stay_days


def test_last_free_day_is_flagged():
    result = demurrage_for(5, Decimal("85"), date(2025, 3, 1), date(2025, 3, 6))
    assert result.chargeable_days == 0
    assert result.warning == "Last free day! Pickup tomorrow to avoid charges."


def test_chargeable_days_priced_at_daily_rate():
    result = demurrage_for(7, Decimal("90"), date(2025, 3, 1), date(2025, 3, 10))

    assert result.days_in_port == 9
    assert result.free_days_used == 7
    assert result.chargeable_days == 2
    assert result.total_cost == Decimal("180.00")
    assert result.warning == "2 days of demurrage charges = $180.00"


def test_pickup_before_arrival_is_rejected_without_cost():
    result = demurrage_for(7, Decimal("90"), date(2025, 3, 10), date(2025, 3, 1))

    assert result.days_in_port == 0
    assert result.chargeable_days == 0
    assert result.total_cost == Decimal("0.00")
    assert result.warning == "Pickup date is before arrival date"


def test_partial_days_round_up():
    result = demurrage_for(
        7, 90, datetime(2025, 3, 1, 8, 0), datetime(2025, 3, 8, 9, 0)
    )
    assert result.days_in_port == 8
    assert result.chargeable_days == 1
    assert result.total_cost == Decimal("90.00")


def test_breakdown_totals_and_savings_tip():
    bd = breakdown_for(
        2450, "CNSHA", "USLAX", "40HC", 1, date(2025, 3, 1), date(2025, 3, 9)
    )

    assert bd.ocean_freight == Decimal("2450.00")
    assert bd.origin_port_fees.total == Decimal("558.00")
    assert bd.destination_port_fees.total == Decimal("855.00")
    assert bd.total_minimum == Decimal("3863.00")

    # USLAX: 5 free days, 85/day scaled by 1.8
    assert bd.demurrage.chargeable_days == 3
    assert bd.demurrage.total_cost == Decimal("459.00")
    assert bd.total_with_demurrage == Decimal("4322.00")
    assert bd.savings.pickup_by == date(2025, 3, 6)
    assert bd.savings.save_amount == Decimal("459.00")
    assert "3 days of demurrage charges = $459.00" in bd.warnings
    assert bd.estimated is False


def test_breakdown_without_dates_has_no_projection():
    bd = breakdown_for(Decimal("1000"), "CNNGB", "NLRTM", "20GP")

    assert bd.demurrage is None
    assert bd.total_with_demurrage is None
    assert bd.savings is None
    assert bd.total_minimum == Decimal("1000.00") + bd.origin_port_fees.total + bd.destination_port_fees.total


def test_breakdown_scales_with_container_quantity():
    single = breakdown_for(0, "CNSHA", "USLAX", "40HC", 1)
    double = breakdown_for(0, "CNSHA", "USLAX", "40HC", 2)
    assert double.total_minimum == single.total_minimum * 2


def test_breakdown_with_unknown_port_is_estimated_and_warned():
    bd = breakdown_for(1500, "ZZZZZ", "USNYC", "40GP")

    assert bd.estimated is True
    assert bd.origin_port_fees.success is False
    assert "ZZZZZ: Port fees are estimated - actual fees may vary" in bd.warnings
    assert "High congestion at New York/New Jersey - pickup delays likely" in bd.warnings


def test_no_savings_tip_when_picked_up_in_time():
    bd = breakdown_for(2450, "CNSHA", "USLAX", "40HC", 1, date(2025, 3, 1), date(2025, 3, 3))
    assert bd.demurrage.total_cost == Decimal("0.00")
    assert bd.savings is None
    assert bd.total_with_demurrage == bd.total_minimum
