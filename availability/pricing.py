"""Reservation pricing: duration in billing units, discount, then tax."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from availability.models import FacilityType, RateType
from availability.overlap import to_utc
from availability.rules import RuleCheckResult
from availability.schema import ErrorCode, PricingQuoteResult, PricingResult
from db.session import SessionLocal

logger = logging.getLogger(__name__)

DEFAULT_UNIT = "night"
UNIT_LENGTHS = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "night": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}
_CENT = Decimal("0.01")


def _money(value: Decimal) -> float:
    return float(value.quantize(_CENT, rounding=ROUND_HALF_UP))


def _decimal(value: float | int | None) -> Decimal:
    return Decimal(str(value or 0))


def calculate_duration(start: datetime, end: datetime, unit: str = DEFAULT_UNIT) -> int:
    """Whole billing units covering ``[start, end]``; a partial unit counts as one."""
    unit_length = UNIT_LENGTHS.get(unit.lower(), UNIT_LENGTHS[DEFAULT_UNIT])
    elapsed = to_utc(end) - to_utc(start)
    return -((-elapsed) // unit_length)


def calculate(
    base_price: float,
    start: datetime,
    end: datetime,
    unit: str = DEFAULT_UNIT,
    tax_rate: float = 0,
    discount_rate: float = 0,
) -> PricingResult:
    if to_utc(end) < to_utc(start):
        raise ValueError("End date must not be before start date.")

    unit = (unit or DEFAULT_UNIT).lower()
    duration = calculate_duration(start, end, unit)

    price = _decimal(base_price)
    subtotal = price * duration
    discount_amount = subtotal * _decimal(discount_rate) / 100
    after_discount = subtotal - discount_amount
    tax_amount = after_discount * _decimal(tax_rate) / 100
    total_amount = after_discount + tax_amount

    return PricingResult(
        base_price=_money(price),
        duration=duration,
        unit=unit,
        subtotal=_money(subtotal),
        discount_amount=_money(discount_amount),
        after_discount=_money(after_discount),
        tax_amount=_money(tax_amount),
        total_amount=_money(total_amount),
        price_per_unit=_money(price),
        applied_tax=float(tax_rate or 0),
        applied_discount=float(discount_rate or 0),
    )


def validate_pricing_params(
    start: datetime | None,
    end: datetime | None,
    facility_type: FacilityType | None = None,
    base_price_override: float | None = None,
) -> RuleCheckResult:
    if start is None or end is None:
        return RuleCheckResult(allowed=False, reason="Reservation dates are required")
    if to_utc(end) <= to_utc(start):
        return RuleCheckResult(allowed=False, reason="End date must be after start date")
    if facility_type is None and base_price_override is None:
        return RuleCheckResult(allowed=False, reason="Facility type (for pricing) or base price override is required")
    return RuleCheckResult(allowed=True)


def calculate_reservation_pricing(
    start: datetime,
    end: datetime,
    facility_type: FacilityType | None = None,
    rate_type: RateType | None = None,
    base_price_override: float | None = None,
    unit: str | None = None,
) -> PricingResult:
    """Price a reservation from its facility type, an optional rate type and an override.

    An explicit override always wins over the facility type price, even when
    it is zero. Tax and discount come from the facility type's linked rate
    type; a rate type passed on its own only contributes tax and discount
    when there is no facility type at all.
    """
    check = validate_pricing_params(start, end, facility_type, base_price_override)
    if not check.allowed:
        raise ValueError(check.reason)

    if base_price_override is not None:
        base_price = base_price_override
    else:
        base_price = facility_type.price or 0

    tax_source = facility_type.rate_type if facility_type is not None else rate_type
    tax_rate = tax_source.default_tax if tax_source else 0
    discount_rate = tax_source.default_discount if tax_source else 0

    result = calculate(base_price, start, end, unit or DEFAULT_UNIT, tax_rate, discount_rate)
    logger.debug("Calculated pricing: %s", result.model_dump(mode="json"))
    return result


def quote_reservation_pricing(
    facility_type_id: str | None,
    start: datetime,
    end: datetime,
    rate_type_id: str | None = None,
    base_price_override: float | None = None,
    unit: str | None = None,
) -> PricingQuoteResult:
    with SessionLocal() as db:
        try:
            facility_type = None
            if facility_type_id:
                facility_type = db.scalar(
                    select(FacilityType)
                    .options(selectinload(FacilityType.rate_type))
                    .where(FacilityType.id == facility_type_id)
                )
                if not facility_type:
                    return PricingQuoteResult(success=False, error="Facility type not found.", error_code=ErrorCode.NOT_FOUND)

            rate_type = None
            if rate_type_id:
                rate_type = db.get(RateType, rate_type_id)
                if not rate_type:
                    return PricingQuoteResult(success=False, error="Rate type not found.", error_code=ErrorCode.NOT_FOUND)

            check = validate_pricing_params(start, end, facility_type, base_price_override)
            if not check.allowed:
                return PricingQuoteResult(success=False, error=check.reason, error_code=ErrorCode.VALIDATION_ERROR)

            pricing = calculate_reservation_pricing(
                start,
                end,
                facility_type=facility_type,
                rate_type=rate_type,
                base_price_override=base_price_override,
                unit=unit,
            )
        except SQLAlchemyError:
            logger.exception("Database error while quoting facility type %s", facility_type_id)
            return PricingQuoteResult(
                success=False,
                error="Database error while calculating pricing.",
                error_code=ErrorCode.DATABASE_ERROR,
            )

    return PricingQuoteResult(success=True, pricing=pricing)
