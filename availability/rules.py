"""Reservation lifecycle rules and status changes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from availability.models import Reservation
from availability.schema import ErrorCode, ReservationStatus, StatusChangeResult
from db.session import SessionLocal

logger = logging.getLogger(__name__)

STATUS_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PROCESSING: frozenset({ReservationStatus.RESERVED, ReservationStatus.CANCELLED}),
    ReservationStatus.RESERVED: frozenset(
        {ReservationStatus.CHECKED_IN, ReservationStatus.CANCELLED, ReservationStatus.NO_SHOW}
    ),
    ReservationStatus.CHECKED_IN: frozenset({ReservationStatus.CHECKED_OUT}),
    ReservationStatus.CHECKED_OUT: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.NO_SHOW: frozenset(),
}


@dataclass
class RuleCheckResult:
    allowed: bool
    reason: str | None = None


class RuleEngine:
    @staticmethod
    def validate_status_transition(current: ReservationStatus | str, new: ReservationStatus | str) -> RuleCheckResult:
        current_status = ReservationStatus(current)
        new_status = ReservationStatus(new)
        if new_status in STATUS_TRANSITIONS[current_status]:
            return RuleCheckResult(allowed=True)
        return RuleCheckResult(
            allowed=False,
            reason=f"Invalid status transition from {current_status.value} to {new_status.value}",
        )

    @staticmethod
    def validate_reservation_modification(status: ReservationStatus | str) -> RuleCheckResult:
        status = ReservationStatus(status)
        if status == ReservationStatus.CHECKED_OUT:
            return RuleCheckResult(allowed=False, reason="Cannot modify a checked-out reservation")
        if status == ReservationStatus.CANCELLED:
            return RuleCheckResult(allowed=False, reason="Cannot modify a cancelled reservation")
        return RuleCheckResult(allowed=True)

    @staticmethod
    def validate_reservation_window(start: datetime, end: datetime) -> RuleCheckResult:
        if end < start:
            return RuleCheckResult(allowed=False, reason="Reservation end date cannot be before reservation start date")
        return RuleCheckResult(allowed=True)


def update_reservation_status(reservation_id: str, new_status: ReservationStatus | str) -> StatusChangeResult:
    try:
        target = ReservationStatus(new_status)
    except ValueError:
        return StatusChangeResult(
            success=False,
            error=f"Unknown reservation status: {new_status}",
            error_code=ErrorCode.VALIDATION_ERROR,
        )

    with SessionLocal() as db:
        try:
            with db.begin():
                reservation = db.scalar(select(Reservation).where(Reservation.id == reservation_id).with_for_update())
                if not reservation:
                    return StatusChangeResult(success=False, error="Reservation not found.", error_code=ErrorCode.NOT_FOUND)

                previous = ReservationStatus(reservation.status)
                transition = RuleEngine.validate_status_transition(previous, target)
                if not transition.allowed:
                    return StatusChangeResult(
                        success=False,
                        reservation_id=reservation.id,
                        previous_status=previous,
                        status=previous,
                        error=transition.reason,
                        error_code=ErrorCode.INVALID_STATE,
                    )

                now_utc = datetime.now(timezone.utc)
                reservation.status = target.value
                if target == ReservationStatus.CHECKED_IN and reservation.check_in_date is None:
                    reservation.check_in_date = now_utc
                if target == ReservationStatus.CHECKED_OUT and reservation.check_out_date is None:
                    reservation.check_out_date = now_utc
                db.flush()

                logger.info("Reservation %s moved from %s to %s", reservation.id, previous.value, target.value)
                return StatusChangeResult(
                    success=True,
                    reservation_id=reservation.id,
                    previous_status=previous,
                    status=target,
                )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error while updating status of reservation %s", reservation_id)
            return StatusChangeResult(
                success=False,
                error="Database error while updating reservation status.",
                error_code=ErrorCode.DATABASE_ERROR,
            )
