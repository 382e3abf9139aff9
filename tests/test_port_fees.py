from decimal import Decimal

import pytest

from freight_quote.errors import UnknownPort
from freight_quote.rules.cost_breakdown import fees_for
from freight_quote.rules.port_fees import (
    DEFAULT_MULTIPLIER,
    PORT_FEE_TABLE,
    Congestion,
    ContainerType,
    PortCode,
    extract_port_code,
    lookup_port,
    multiplier_for,
)


def test_shanghai_high_cube_fees_scale_by_multiplier():
    fees = fees_for("CNSHA", "40HC", 1)

    assert fees.success is True
    assert fees.port_name == "Shanghai"
    assert fees.port_charges == Decimal("216.00")
    assert fees.terminal_handling == Decimal("270.00")
    assert fees.documentation == Decimal("72.00")
    assert fees.total == Decimal("558.00")
    assert fees.per_container == Decimal("558.00")
    assert fees.free_days == 7
    assert fees.demurrage_rate_per_day == Decimal("90.00")
    assert fees.error is None
    assert fees.disclaimer is None


def test_quantity_multiplies_shipment_totals_but_not_per_container():
    fees = fees_for("CNSHA", ContainerType.HC40, 3)

    assert fees.per_container == Decimal("558.00")
    assert fees.total == Decimal("1674.00")
    assert fees.demurrage_rate_per_day_total == Decimal("270.00")


def test_zero_quantity_is_allowed_and_costs_nothing():
    fees = fees_for("USLAX", "20GP", 0)
    assert fees.total == Decimal("0.00")
    assert fees.per_container > 0


def test_negative_quantity_rejected():
    with pytest.raises(ValueError):
        fees_for("USLAX", "20GP", -1)


def test_unknown_port_uses_default_profile_and_flags_estimate():
    fees = fees_for("ZZZZZ", "20GP", 1)

    assert fees.success is False
    assert fees.port_name == "Unknown Port"
    assert fees.total == Decimal("390.00")
    assert fees.total > 0
    assert fees.disclaimer == "Port fees are estimated - actual fees may vary"
    assert isinstance(fees.error, UnknownPort)
    assert fees.error.port_code == "ZZZZZ"


def test_unknown_port_high_cube_scales_default_profile():
    fees = fees_for("ZZZZZ", "40HC", 1)

    assert fees.success is False
    assert (fees.port_charges, fees.terminal_handling, fees.documentation) == (
        Decimal("270.00"),
        Decimal("324.00"),
        Decimal("108.00"),
    )
    assert fees.total == Decimal("702.00")


def test_port_codes_are_case_and_whitespace_insensitive():
    assert fees_for("  cnsha ", "40HC").success is True
    assert lookup_port(PortCode.SGSIN).profile.name == "Singapore"


def test_high_congestion_port_warns():
    fees = fees_for("USNYC", "40GP")
    assert fees.congestion_level is Congestion.HIGH
    assert fees.congestion_warning == "High congestion at New York/New Jersey - pickup delays likely"

    assert fees_for("SGSIN", "40GP").congestion_warning is None


def test_unrecognised_container_uses_default_multiplier():
    fees = fees_for("CNSHA", "mystery box")
    assert fees.multiplier == DEFAULT_MULTIPLIER
    assert fees.total == Decimal("558.00")
    assert fees.container_type == "mystery box"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("40HC", ContainerType.HC40),
        ("40hq", ContainerType.HC40),
        ("40' high cube", ContainerType.HC40),
        ("20ft", ContainerType.GP20),
        ("20 FOOT dry", ContainerType.GP20),
        ("40ft reefer", ContainerType.RF40),
        ("20' open top", ContainerType.OT20),
        ("40 flat rack", ContainerType.FR40),
        ("45'", ContainerType.HC45),
    ],
)
def test_container_descriptors_normalize(raw, expected):
    assert ContainerType.parse(raw) is expected


def test_container_without_size_is_unclassified():
    assert ContainerType.parse("reefer") is None
    assert ContainerType.parse("") is None
    assert multiplier_for(None) == DEFAULT_MULTIPLIER


def test_every_port_member_has_a_profile():
    assert set(PORT_FEE_TABLE) == set(PortCode)


def test_extract_port_code_prefers_known_codes():
    assert extract_port_code("Shanghai, CHINA (CNSHA)") == "CNSHA"
    assert extract_port_code("Los Angeles USLAX") == "USLAX"
    assert extract_port_code("ABCDE warehouse") == "ABCDE"
    assert extract_port_code("Shanghai") is None
    assert extract_port_code(None) is None


def test_extract_port_code_accepts_lowercase_table_codes():
    assert extract_port_code("cnsha") == "CNSHA"
    assert extract_port_code("Los Angeles (uslax)") == "USLAX"
    assert extract_port_code("Paris, France") is None
