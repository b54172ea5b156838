"""Overlap checks between a requested window and reservations or maintenance.

Every check exists twice: as a plain Python predicate over loaded rows and
as a SQLAlchemy clause that can be composed into a single query. Windows are
inclusive on both ends.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import ColumnElement, and_, or_, select
from sqlalchemy.exc import SQLAlchemyError

from availability.models import Facility, MaintenanceRecord, Reservation
from availability.schema import (
    ErrorCode,
    FacilityAvailability,
    FacilityAvailabilityResult,
    MaintenanceStatus,
    ReservationStatus,
)
from db.session import SessionLocal

logger = logging.getLogger(__name__)

BLOCKING_RESERVATION_STATUSES = (ReservationStatus.RESERVED.value, ReservationStatus.CHECKED_IN.value)
BLOCKING_MAINTENANCE_STATUSES = (MaintenanceStatus.PENDING.value, MaintenanceStatus.IN_PROGRESS.value)


def to_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        # SQLite hands back naive values for UTC columns.
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ranges_overlap(existing_start: datetime, existing_end: datetime, start: datetime, end: datetime) -> bool:
    return to_utc(existing_start) <= to_utc(end) and to_utc(existing_end) >= to_utc(start)


def reservation_blocks(reservation, start: datetime, end: datetime) -> bool:
    if reservation.status not in BLOCKING_RESERVATION_STATUSES:
        return False
    return ranges_overlap(reservation.reservation_date, reservation.reservation_end_date, start, end)


def maintenance_blocks(record, start: datetime, end: datetime) -> bool:
    if record.status not in BLOCKING_MAINTENANCE_STATUSES:
        return False

    if record.start_date is not None and record.end_date is not None:
        return ranges_overlap(record.start_date, record.end_date, start, end)
    if record.start_date is not None:
        # Open-ended maintenance blocks everything from its start onwards.
        return to_utc(record.start_date) <= to_utc(end)
    if record.end_date is None and record.date is not None:
        return to_utc(start) <= to_utc(record.date) <= to_utc(end)
    return False


def reservation_overlap_clause(start: datetime, end: datetime) -> ColumnElement[bool]:
    return and_(
        Reservation.status.in_(BLOCKING_RESERVATION_STATUSES),
        Reservation.reservation_date <= end,
        Reservation.reservation_end_date >= start,
    )


def maintenance_overlap_clause(start: datetime, end: datetime) -> ColumnElement[bool]:
    return and_(
        MaintenanceRecord.status.in_(BLOCKING_MAINTENANCE_STATUSES),
        or_(
            and_(
                MaintenanceRecord.start_date.is_not(None),
                MaintenanceRecord.end_date.is_not(None),
                MaintenanceRecord.start_date <= end,
                MaintenanceRecord.end_date >= start,
            ),
            and_(
                MaintenanceRecord.start_date.is_not(None),
                MaintenanceRecord.end_date.is_(None),
                MaintenanceRecord.start_date <= end,
            ),
            and_(
                MaintenanceRecord.start_date.is_(None),
                MaintenanceRecord.end_date.is_(None),
                MaintenanceRecord.date >= start,
                MaintenanceRecord.date <= end,
            ),
        ),
    )


def facility_available_clause(start: datetime, end: datetime) -> ColumnElement[bool]:
    """Correlated NOT EXISTS filter for ``select(Facility)`` statements."""
    reserved = (
        select(Reservation.id)
        .where(
            Reservation.facility_id == Facility.id,
            reservation_overlap_clause(start, end),
        )
        .exists()
    )
    under_maintenance = (
        select(MaintenanceRecord.id)
        .where(
            MaintenanceRecord.facility_id == Facility.id,
            maintenance_overlap_clause(start, end),
        )
        .exists()
    )
    return and_(Facility.is_deleted.is_(False), ~reserved, ~under_maintenance)


def check_facility_availability(facility_id: str, start: datetime, end: datetime) -> FacilityAvailabilityResult:
    start, end = to_utc(start), to_utc(end)
    if end < start:
        return FacilityAvailabilityResult(
            success=False,
            error="Reservation end date cannot be before reservation start date.",
            error_code=ErrorCode.VALIDATION_ERROR,
        )

    with SessionLocal() as db:
        try:
            facility = db.get(Facility, facility_id)
            if not facility:
                return FacilityAvailabilityResult(success=False, error="Facility not found.", error_code=ErrorCode.NOT_FOUND)

            reservation_ids = list(
                db.scalars(
                    select(Reservation.id)
                    .where(Reservation.facility_id == facility_id, reservation_overlap_clause(start, end))
                    .order_by(Reservation.reservation_date.asc())
                )
            )
            maintenance_ids = list(
                db.scalars(
                    select(MaintenanceRecord.id).where(
                        MaintenanceRecord.facility_id == facility_id,
                        maintenance_overlap_clause(start, end),
                    )
                )
            )
        except SQLAlchemyError:
            logger.exception("Database error while checking availability of facility %s", facility_id)
            return FacilityAvailabilityResult(
                success=False,
                error="Database error while checking facility availability.",
                error_code=ErrorCode.DATABASE_ERROR,
            )

        return FacilityAvailabilityResult(
            success=True,
            availability=FacilityAvailability(
                facility_id=facility.id,
                is_available=not facility.is_deleted and not reservation_ids and not maintenance_ids,
                blocking_reservation_ids=reservation_ids,
                blocking_maintenance_ids=maintenance_ids,
            ),
        )
