"""Facility type availability over a date window.

After the candidate facility types are resolved, the whole computation
costs three queries (facilities, overlapping reservations, overlapping
maintenance) no matter how many facilities the types hold. Metadata filters
run in memory afterwards because they target free-form JSON.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Iterable, Optional

from pydantic import ValidationError
from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from availability.models import Facility, FacilityLocation, FacilityType, MaintenanceRecord, Reservation
from availability.overlap import maintenance_overlap_clause, reservation_overlap_clause, to_utc
from availability.rules import RuleCheckResult
from availability.schema import (
    AvailabilitySearchRequest,
    AvailabilitySearchResult,
    ErrorCode,
    FacilityFilter,
    FacilitySummary,
    FacilityTypeAvailability,
    PriceRange,
    TypeAvailabilityRequest,
)
from db.session import SessionLocal

logger = logging.getLogger(__name__)


def _price_conditions(price_range: PriceRange) -> list:
    conditions = []
    if price_range.min is not None:
        conditions.append(FacilityType.price >= price_range.min)
    if price_range.max is not None:
        conditions.append(FacilityType.price <= price_range.max)
    return conditions


def _resolve_facility_types(
    db: Session,
    *,
    facility_type_id: str | None,
    facility_type: str | None,
    organization_id: str | None,
    filters: list[FacilityFilter],
) -> list[FacilityType]:
    stmt = select(FacilityType)
    if facility_type_id:
        stmt = stmt.where(FacilityType.id == facility_type_id)
    if facility_type:
        stmt = stmt.where(FacilityType.name == facility_type)
    if organization_id:
        stmt = stmt.where(FacilityType.organization_id == organization_id)

    # Only narrow by price in SQL when every group constrains price; a group
    # without a price range could still match any type.
    if filters and all(group.price_range is not None for group in filters):
        group_conditions = [_price_conditions(group.price_range) for group in filters]
        if all(group_conditions):
            stmt = stmt.where(or_(*(and_(*conditions) for conditions in group_conditions)))

    return list(db.scalars(stmt.order_by(FacilityType.name.asc(), FacilityType.id.asc())))


def _summarize(facility: Facility, location_name: str | None) -> FacilitySummary:
    meta = facility.facility_metadata or None
    return FacilitySummary(
        id=facility.id,
        name=facility.name,
        description=facility.description,
        location=location_name,
        room_number=(meta or {}).get("room_number"),
        meta=meta,
    )


def _build_availability(
    facility_type: FacilityType,
    facilities: list[tuple[Facility, Optional[str]]],
    *,
    reserved_ids: set[str],
    maintenance_ids: set[str],
    type_level_reservations: int,
) -> FacilityTypeAvailability:
    facility_ids = {facility.id for facility, _ in facilities}
    unavailable_ids = reserved_ids | maintenance_ids
    available = [
        _summarize(facility, location_name)
        for facility, location_name in facilities
        if facility.id not in unavailable_ids
    ]
    available_count = max(len(available) - type_level_reservations, 0)
    metadata: dict[str, Any] = facility_type.type_metadata or {}

    return FacilityTypeAvailability(
        facility_type=facility_type.name,
        is_available=available_count > 0,
        available_count=available_count,
        total_count=len(facilities),
        reserved_count=len(facility_ids & reserved_ids) + type_level_reservations,
        maintenance_count=len(facility_ids & maintenance_ids),
        available_facilities=available,
        id=facility_type.id,
        name=facility_type.name,
        code=facility_type.code,
        description=facility_type.description,
        category=facility_type.category,
        metadata=metadata,
        organization_id=facility_type.organization_id,
        price=facility_type.price,
        rate_type_id=facility_type.rate_type_id,
        amenities=list(metadata.get("amenities") or []),
        facility_features=list(metadata.get("room_features") or []),
        bed_type=metadata.get("bed_type"),
        bed_count=metadata.get("bed_count"),
        max_occupancy=metadata.get("max_occupancy"),
    )


def matches_filter(result: FacilityTypeAvailability, group: FacilityFilter) -> bool:
    if group.category is not None and result.category != group.category.value:
        return False
    if group.amenities and not all(amenity in result.amenities for amenity in group.amenities):
        return False
    if group.facility_features and not all(feature in result.facility_features for feature in group.facility_features):
        return False
    if group.bed_type and result.bed_type != group.bed_type:
        return False
    if group.max_occupancy is not None and (result.max_occupancy or 0) < group.max_occupancy:
        return False
    if group.price_range is not None and not group.price_range.contains(result.price):
        return False
    return True


def apply_filters(
    results: Iterable[FacilityTypeAvailability],
    filters: list[FacilityFilter] | None,
) -> list[FacilityTypeAvailability]:
    """Keep results matching any filter group; conditions inside a group all apply."""
    results = list(results)
    if not filters:
        return results
    return [result for result in results if any(matches_filter(result, group) for group in filters)]


def _collect_availability(
    db: Session,
    start: datetime,
    end: datetime,
    *,
    facility_type_id: str | None = None,
    facility_type: str | None = None,
    filters: list[FacilityFilter] | None = None,
    organization_id: str | None = None,
) -> list[FacilityTypeAvailability]:
    start, end = to_utc(start), to_utc(end)
    filters = filters or []

    facility_types = _resolve_facility_types(
        db,
        facility_type_id=facility_type_id,
        facility_type=facility_type,
        organization_id=organization_id,
        filters=filters,
    )
    if not facility_types:
        return []

    type_ids = [ft.id for ft in facility_types]
    type_names = sorted({ft.name for ft in facility_types})
    type_orgs = sorted({ft.organization_id for ft in facility_types})

    facility_rows = db.execute(
        select(Facility, FacilityLocation.name)
        .outerjoin(FacilityLocation, FacilityLocation.id == Facility.facility_location_id)
        .where(Facility.facility_type_id.in_(type_ids), Facility.is_deleted.is_(False))
        .order_by(Facility.name.asc(), Facility.id.asc())
    ).all()
    facility_ids = [facility.id for facility, _ in facility_rows]

    reservation_rows = db.execute(
        select(Reservation.facility_id, Reservation.facility_type, Reservation.organization_id).where(
            or_(
                Reservation.facility_id.in_(facility_ids),
                and_(
                    Reservation.facility_id.is_(None),
                    Reservation.facility_type.in_(type_names),
                    Reservation.organization_id.in_(type_orgs),
                ),
            ),
            reservation_overlap_clause(start, end),
        )
    ).all()

    maintenance_ids = set(
        db.scalars(
            select(MaintenanceRecord.facility_id).where(
                MaintenanceRecord.facility_id.in_(facility_ids),
                maintenance_overlap_clause(start, end),
            )
        )
    )

    reserved_ids = {row.facility_id for row in reservation_rows if row.facility_id}
    # Type names are only unique within an organization.
    type_level_counts = Counter(
        (row.organization_id, row.facility_type) for row in reservation_rows if not row.facility_id
    )

    facilities_by_type: dict[str, list[tuple[Facility, Optional[str]]]] = {type_id: [] for type_id in type_ids}
    for facility, location_name in facility_rows:
        facilities_by_type[facility.facility_type_id].append((facility, location_name))

    results = [
        _build_availability(
            ft,
            facilities_by_type[ft.id],
            reserved_ids=reserved_ids,
            maintenance_ids=maintenance_ids,
            type_level_reservations=type_level_counts.get((ft.organization_id, ft.name), 0),
        )
        for ft in facility_types
    ]
    return apply_filters(results, filters)


def check_all_facility_types_availability(
    start: datetime,
    end: datetime,
    facility_type_id: str | None = None,
    facility_type: str | None = None,
    filters: list[FacilityFilter] | None = None,
    organization_id: str | None = None,
) -> list[FacilityTypeAvailability]:
    with SessionLocal() as db:
        return _collect_availability(
            db,
            start,
            end,
            facility_type_id=facility_type_id,
            facility_type=facility_type,
            filters=filters,
            organization_id=organization_id,
        )


def search_availability(payload: dict) -> AvailabilitySearchResult:
    try:
        request = AvailabilitySearchRequest.model_validate(payload)
    except ValidationError as exc:
        return AvailabilitySearchResult(
            success=False,
            error=f"Invalid availability request: {exc}",
            error_code=ErrorCode.VALIDATION_ERROR,
        )

    try:
        results = check_all_facility_types_availability(
            request.reservation_start_date,
            request.reservation_end_date,
            facility_type_id=request.facility_type_id,
            facility_type=request.facility_type,
            filters=request.filters,
            organization_id=request.organization_id,
        )
    except SQLAlchemyError:
        logger.exception("Database error while searching availability")
        return AvailabilitySearchResult(
            success=False,
            error="Database error while checking availability.",
            error_code=ErrorCode.DATABASE_ERROR,
        )
    return AvailabilitySearchResult(success=True, results=results)


def check_facility_type_availability(
    facility_type: str,
    start: datetime,
    end: datetime,
    organization_id: str | None = None,
) -> FacilityTypeAvailability | None:
    results = check_all_facility_types_availability(
        start,
        end,
        facility_type=facility_type,
        organization_id=organization_id,
    )
    return results[0] if results else None


def check_multiple_facility_types_availability(
    facility_types: Iterable[str],
    start: datetime,
    end: datetime,
    organization_id: str | None = None,
) -> dict[str, FacilitySummary | None]:
    """First free facility per requested type name, or ``None`` when the type is full."""
    requested = list(dict.fromkeys(facility_types))
    with SessionLocal() as db:
        results = _collect_availability(db, start, end, organization_id=organization_id)

    by_name: dict[str, FacilityTypeAvailability] = {}
    for result in results:
        by_name.setdefault(result.name, result)

    picked: dict[str, FacilitySummary | None] = {}
    for name in requested:
        result = by_name.get(name)
        if result is None or not result.is_available:
            picked[name] = None
        else:
            picked[name] = result.available_facilities[0]
    return picked


def get_available_facility_types(start: datetime, end: datetime, organization_id: str | None = None) -> list[str]:
    results = check_all_facility_types_availability(start, end, organization_id=organization_id)
    return list(dict.fromkeys(result.name for result in results if result.is_available))


def validate_availability_request(payload: dict) -> RuleCheckResult:
    try:
        TypeAvailabilityRequest.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        message = str(first.get("msg", "Invalid availability request."))
        return RuleCheckResult(allowed=False, reason=message.removeprefix("Value error, "))
    return RuleCheckResult(allowed=True)
