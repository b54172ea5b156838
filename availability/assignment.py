"""Binding concrete facilities to reservations made against a facility type."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from pydantic import ValidationError
from sqlalchemy import Select, select
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from availability.errors import AvailabilityError
from availability.models import Facility, FacilityType, Reservation
from availability.overlap import facility_available_clause, reservation_overlap_clause, to_utc
from availability.rules import RuleEngine
from availability.schema import (
    AssignmentResult,
    BatchAssignmentItem,
    BatchAssignmentResult,
    DateOverrides,
    ErrorCode,
)
from config import get_settings
from db.session import SessionLocal, TransactionTimeoutError, timed_transaction

logger = logging.getLogger(__name__)

settings = get_settings()

MAX_BATCH_ASSIGNMENTS = 100
ASSIGNMENT_CONFLICT_MESSAGE = "Room was just assigned to another reservation. Please try again."
QUERY_CANCELED_PGCODE = "57014"
UNSCOPED_RESERVATION_MESSAGE = "Reservation has no organization, cannot auto-assign."


def _is_statement_timeout(exc: DBAPIError) -> bool:
    return getattr(exc.orig, "pgcode", None) == QUERY_CANCELED_PGCODE


def candidate_statement(
    facility_type: str,
    start: datetime,
    end: datetime,
    *,
    organization_id: str,
    skip: Iterable[str] = (),
    lock: bool = True,
) -> Select:
    stmt = (
        select(Facility)
        .join(FacilityType, FacilityType.id == Facility.facility_type_id)
        .where(
            FacilityType.name == facility_type,
            FacilityType.organization_id == organization_id,
            Facility.organization_id == organization_id,
            facility_available_clause(start, end),
        )
        .order_by(Facility.name.asc(), Facility.id.asc())
        .limit(1)
    )
    skip = list(skip)
    if skip:
        stmt = stmt.where(Facility.id.not_in(skip))
    if lock:
        stmt = stmt.with_for_update(of=Facility)
    return stmt


def _taken_since_snapshot(db: Session, facility_id: str, start: datetime, end: datetime) -> bool:
    # A fresh statement sees reservations committed while we waited for the lock.
    return (
        db.scalar(
            select(Reservation.id)
            .where(Reservation.facility_id == facility_id, reservation_overlap_clause(start, end))
            .limit(1)
        )
        is not None
    )


def find_available_facility(
    db: Session,
    facility_type: str,
    start: datetime,
    end: datetime,
    *,
    organization_id: str,
    lock: bool = True,
) -> Facility | None:
    """First free facility of ``facility_type`` for the window, by name then id.

    The stable ordering makes concurrent callers contend for the same row
    instead of each grabbing a different one. The loser of that race gets
    the lock on a row whose candidate query ran against an older snapshot,
    so once locked the facility is checked again and skipped if a competing
    reservation has landed on it.
    """
    start, end = to_utc(start), to_utc(end)
    skipped: list[str] = []
    while True:
        facility = db.scalar(
            candidate_statement(
                facility_type,
                start,
                end,
                organization_id=organization_id,
                skip=skipped,
                lock=lock,
            )
        )
        if facility is None or not lock:
            return facility
        if not _taken_since_snapshot(db, facility.id, start, end):
            return facility
        logger.info("Facility %s was booked while waiting for its lock, trying the next one", facility.id)
        skipped.append(facility.id)


def _apply_date_overrides(reservation: Reservation, overrides: DateOverrides) -> None:
    if overrides.check_in_date is not None:
        reservation.check_in_date = overrides.check_in_date
    if overrides.check_out_date is not None:
        reservation.check_out_date = overrides.check_out_date


def _load_reservation(db: Session, reservation_id: str) -> Reservation | None:
    return db.scalar(select(Reservation).where(Reservation.id == reservation_id).with_for_update())


def _assign(db: Session, reservation_id: str, overrides: DateOverrides) -> AssignmentResult:
    reservation = _load_reservation(db, reservation_id)
    if not reservation:
        raise AvailabilityError(ErrorCode.NOT_FOUND, "Reservation not found.")

    if reservation.facility_id:
        _apply_date_overrides(reservation, overrides)
        db.flush()
        return AssignmentResult(
            success=True,
            reservation_id=reservation.id,
            facility_id=reservation.facility_id,
            already_assigned=True,
        )

    if not reservation.facility_type:
        raise AvailabilityError(ErrorCode.INVALID_STATE, "Reservation is not for a room type, cannot auto-assign.")
    if not reservation.organization_id:
        raise AvailabilityError(ErrorCode.INVALID_STATE, UNSCOPED_RESERVATION_MESSAGE)

    modification = RuleEngine.validate_reservation_modification(reservation.status)
    if not modification.allowed:
        raise AvailabilityError(ErrorCode.INVALID_STATE, modification.reason)

    _apply_date_overrides(reservation, overrides)
    db.flush()

    facility = find_available_facility(
        db,
        reservation.facility_type,
        reservation.reservation_date,
        reservation.reservation_end_date,
        organization_id=reservation.organization_id,
    )
    if not facility:
        raise AvailabilityError(ErrorCode.NO_AVAILABILITY, "No available rooms for the specified room type and dates.")

    reservation.facility_id = facility.id
    db.flush()
    return AssignmentResult(success=True, reservation_id=reservation.id, facility_id=facility.id)


def auto_assign_room(
    reservation_id: str,
    check_in_date: datetime | None = None,
    check_out_date: datetime | None = None,
) -> AssignmentResult:
    try:
        overrides = DateOverrides(check_in_date=check_in_date, check_out_date=check_out_date)
    except ValidationError as exc:
        return AssignmentResult(
            success=False,
            reservation_id=reservation_id,
            error=f"Invalid date overrides: {exc}",
            error_code=ErrorCode.VALIDATION_ERROR,
        )

    with SessionLocal() as db:
        try:
            with timed_transaction(db, settings.assignment_timeout_seconds):
                result = _assign(db, reservation_id, overrides)
        except AvailabilityError as exc:
            logger.info("Auto-assignment of reservation %s failed: %s", reservation_id, exc.message)
            return AssignmentResult(
                success=False,
                reservation_id=reservation_id,
                error=exc.message,
                error_code=exc.code,
            )
        except TransactionTimeoutError as exc:
            logger.warning("Auto-assignment of reservation %s timed out: %s", reservation_id, exc)
            return AssignmentResult(
                success=False,
                reservation_id=reservation_id,
                error="Room assignment timed out. Please try again.",
                error_code=ErrorCode.TIMEOUT,
            )
        except IntegrityError:
            db.rollback()
            logger.warning("Reservation %s lost an assignment race", reservation_id)
            return AssignmentResult(
                success=False,
                reservation_id=reservation_id,
                error=ASSIGNMENT_CONFLICT_MESSAGE,
                error_code=ErrorCode.CONFLICT,
            )
        except DBAPIError as exc:
            db.rollback()
            if _is_statement_timeout(exc):
                logger.warning("Auto-assignment of reservation %s hit the statement timeout", reservation_id)
                return AssignmentResult(
                    success=False,
                    reservation_id=reservation_id,
                    error="Room assignment timed out. Please try again.",
                    error_code=ErrorCode.TIMEOUT,
                )
            logger.exception("Database error while assigning reservation %s", reservation_id)
            return AssignmentResult(
                success=False,
                reservation_id=reservation_id,
                error="Database error while assigning room.",
                error_code=ErrorCode.DATABASE_ERROR,
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error while assigning reservation %s", reservation_id)
            return AssignmentResult(
                success=False,
                reservation_id=reservation_id,
                error="Database error while assigning room.",
                error_code=ErrorCode.DATABASE_ERROR,
            )

    if result.already_assigned:
        logger.info("Reservation %s already bound to facility %s", reservation_id, result.facility_id)
    else:
        logger.info("Assigned facility %s to reservation %s", result.facility_id, reservation_id)
    return result


def _assign_batch_item(db: Session, item: BatchAssignmentItem) -> AssignmentResult:
    reservation = _load_reservation(db, item.reservation_id)
    if not reservation:
        raise AvailabilityError(ErrorCode.NOT_FOUND, "Reservation not found")

    if reservation.facility_id:
        return AssignmentResult(
            success=False,
            reservation_id=reservation.id,
            facility_id=reservation.facility_id,
            already_assigned=True,
            error="Reservation already has a facility assigned",
            error_code=ErrorCode.INVALID_STATE,
        )

    facility_type = item.facility_type or reservation.facility_type
    if not facility_type:
        raise AvailabilityError(ErrorCode.INVALID_STATE, "Reservation is not for a room type, cannot auto-assign.")
    if not reservation.organization_id:
        raise AvailabilityError(ErrorCode.INVALID_STATE, UNSCOPED_RESERVATION_MESSAGE)

    start = item.reservation_start_date or reservation.reservation_date
    end = item.reservation_end_date or reservation.reservation_end_date
    facility = find_available_facility(db, facility_type, start, end, organization_id=reservation.organization_id)
    if not facility:
        raise AvailabilityError(ErrorCode.NO_AVAILABILITY, "No available facilities for the specified type and dates")

    reservation.facility_id = facility.id
    db.flush()
    return AssignmentResult(success=True, reservation_id=reservation.id, facility_id=facility.id)


def batch_assign_facilities(assignments: list[dict[str, Any]] | list[BatchAssignmentItem]) -> BatchAssignmentResult:
    """Assign facilities to several reservations in one bounded transaction.

    Items run one after another, each inside its own savepoint, so a failed
    item is rolled back alone and reported while the others still commit.
    """
    try:
        items = [BatchAssignmentItem.model_validate(item) for item in assignments]
    except ValidationError as exc:
        return BatchAssignmentResult(
            success=False,
            error=f"Invalid assignment payload: {exc}",
            error_code=ErrorCode.VALIDATION_ERROR,
        )
    if not items:
        return BatchAssignmentResult(
            success=False,
            error="At least one assignment is required.",
            error_code=ErrorCode.VALIDATION_ERROR,
        )
    if len(items) > MAX_BATCH_ASSIGNMENTS:
        return BatchAssignmentResult(
            success=False,
            error=f"At most {MAX_BATCH_ASSIGNMENTS} assignments can be processed per batch.",
            error_code=ErrorCode.VALIDATION_ERROR,
        )

    results: list[AssignmentResult] = []
    with SessionLocal() as db:
        try:
            with timed_transaction(db, settings.batch_assignment_timeout_seconds):
                for item in items:
                    try:
                        with db.begin_nested():
                            results.append(_assign_batch_item(db, item))
                    except AvailabilityError as exc:
                        results.append(
                            AssignmentResult(
                                success=False,
                                reservation_id=item.reservation_id,
                                error=exc.message,
                                error_code=exc.code,
                            )
                        )
                    except IntegrityError:
                        logger.warning("Reservation %s lost an assignment race in batch", item.reservation_id)
                        results.append(
                            AssignmentResult(
                                success=False,
                                reservation_id=item.reservation_id,
                                error=ASSIGNMENT_CONFLICT_MESSAGE,
                                error_code=ErrorCode.CONFLICT,
                            )
                        )
        except TransactionTimeoutError as exc:
            logger.warning("Batch assignment of %d reservations timed out: %s", len(items), exc)
            return BatchAssignmentResult(
                success=False,
                error="Batch assignment timed out. No assignments were saved.",
                error_code=ErrorCode.TIMEOUT,
            )
        except DBAPIError as exc:
            db.rollback()
            if _is_statement_timeout(exc):
                logger.warning("Batch assignment hit the statement timeout")
                return BatchAssignmentResult(
                    success=False,
                    error="Batch assignment timed out. No assignments were saved.",
                    error_code=ErrorCode.TIMEOUT,
                )
            logger.exception("Database error during batch assignment")
            return BatchAssignmentResult(
                success=False,
                error="Database error during batch assignment.",
                error_code=ErrorCode.DATABASE_ERROR,
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error during batch assignment")
            return BatchAssignmentResult(
                success=False,
                error="Database error during batch assignment.",
                error_code=ErrorCode.DATABASE_ERROR,
            )

    assigned = sum(1 for result in results if result.success)
    logger.info("Batch assignment finished: %d of %d reservations assigned", assigned, len(results))
    return BatchAssignmentResult(success=True, results=results)
