from datetime import timedelta

import pytest

from availability.models import FacilityType, RateType
from availability.pricing import (
    calculate,
    calculate_duration,
    calculate_reservation_pricing,
    quote_reservation_pricing,
    validate_pricing_params,
)
from availability.schema import ErrorCode
from conftest import at


def test_discount_applies_before_tax():
    result = calculate(100, at(1), at(3), "night", tax_rate=10, discount_rate=5)

    assert result.duration == 2
    assert result.subtotal == 200.0
    assert result.discount_amount == 10.0
    assert result.after_discount == 190.0
    assert result.tax_amount == 19.0
    assert result.total_amount == 209.0
    assert result.applied_tax == 10.0
    assert result.applied_discount == 5.0


@pytest.mark.parametrize(
    ("unit", "elapsed", "expected"),
    [
        ("day", timedelta(hours=25), 2),
        ("night", timedelta(hours=24), 1),
        ("hour", timedelta(minutes=90), 2),
        ("HOUR", timedelta(hours=3), 3),
        ("week", timedelta(days=8), 2),
        ("month", timedelta(days=31), 2),
        ("fortnight", timedelta(hours=30), 2),
    ],
)
def test_partial_units_round_up(unit, elapsed, expected):
    start = at(1)
    assert calculate_duration(start, start + elapsed, unit) == expected


def test_zero_length_window_costs_nothing():
    result = calculate(80, at(1), at(1))
    assert result.duration == 0
    assert result.total_amount == 0.0


def test_money_is_rounded_only_on_output():
    result = calculate(0.03, at(1), at(2), "night", discount_rate=50)

    # 0.015 survives unrounded until the end, then rounds half-up.
    assert result.discount_amount == 0.02
    assert result.after_discount == 0.02
    assert result.total_amount == 0.02


def test_calculate_rejects_inverted_window():
    with pytest.raises(ValueError):
        calculate(100, at(3), at(1))


def test_validate_pricing_params_messages():
    facility_type = FacilityType(name="Deluxe", price=100.0)

    assert validate_pricing_params(None, at(2), facility_type).reason == "Reservation dates are required"
    assert validate_pricing_params(at(2), at(2), facility_type).reason == "End date must be after start date"
    assert (
        validate_pricing_params(at(1), at(2)).reason
        == "Facility type (for pricing) or base price override is required"
    )
    assert validate_pricing_params(at(1), at(2), base_price_override=0).allowed
    assert validate_pricing_params(at(1), at(2), facility_type).allowed


def test_linked_rate_type_supplies_tax_and_discount():
    facility_type = FacilityType(name="Deluxe", price=100.0, rate_type=RateType(default_tax=10.0, default_discount=5.0))

    result = calculate_reservation_pricing(at(1), at(3), facility_type=facility_type)

    assert result.base_price == 100.0
    assert result.total_amount == 209.0


def test_override_wins_even_when_zero():
    facility_type = FacilityType(name="Deluxe", price=100.0, rate_type=RateType(default_tax=10.0, default_discount=0.0))

    result = calculate_reservation_pricing(at(1), at(3), facility_type=facility_type, base_price_override=0)

    assert result.base_price == 0.0
    assert result.total_amount == 0.0


def test_bare_rate_type_never_supplies_a_price():
    rate_type = RateType(default_tax=10.0, default_discount=0.0)

    with pytest.raises(ValueError, match="base price override is required"):
        calculate_reservation_pricing(at(1), at(3), rate_type=rate_type)

    result = calculate_reservation_pricing(at(1), at(3), rate_type=rate_type, base_price_override=50)
    assert result.subtotal == 100.0
    assert result.tax_amount == 10.0
    assert result.total_amount == 110.0


def test_linked_rate_type_beats_bare_rate_type():
    facility_type = FacilityType(name="Deluxe", price=100.0, rate_type=RateType(default_tax=0.0, default_discount=0.0))
    bare = RateType(default_tax=50.0, default_discount=0.0)

    result = calculate_reservation_pricing(at(1), at(2), facility_type=facility_type, rate_type=bare)

    assert result.applied_tax == 0.0
    assert result.total_amount == 100.0


def test_bare_rate_type_is_ignored_when_a_facility_type_is_given():
    facility_type = FacilityType(name="Deluxe", price=100.0)
    bare = RateType(default_tax=50.0, default_discount=10.0)

    result = calculate_reservation_pricing(at(1), at(2), facility_type=facility_type, rate_type=bare)

    assert result.applied_tax == 0.0
    assert result.applied_discount == 0.0
    assert result.total_amount == 100.0


def test_quote_uses_stored_facility_type_and_rate(seed):
    rate_type_id = seed.rate_type(default_tax=10.0, default_discount=5.0)
    type_id = seed.facility_type(price=100.0, rate_type_id=rate_type_id)

    result = quote_reservation_pricing(type_id, at(1), at(3))

    assert result.success is True
    assert result.pricing.total_amount == 209.0
    assert result.pricing.unit == "night"


def test_quote_reports_missing_facility_type():
    result = quote_reservation_pricing("missing", at(1), at(3))
    assert result.success is False
    assert result.error_code == ErrorCode.NOT_FOUND


def test_quote_rejects_inverted_dates(seed):
    type_id = seed.facility_type(price=100.0)
    result = quote_reservation_pricing(type_id, at(3), at(1))
    assert result.error_code == ErrorCode.VALIDATION_ERROR
    assert result.error == "End date must be after start date"
