"""Temporary holds that soft-lock a facility or type while a booking is being made.

A hold starts PENDING and ends CONFIRMED, CANCELLED or EXPIRED; none of the
end states can change again.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import Select, and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from availability.errors import AvailabilityError
from availability.models import Facility, FacilityType, Reservation, TemporaryReservation, User
from availability.overlap import BLOCKING_RESERVATION_STATUSES, to_utc
from availability.schema import (
    ConfirmHoldResult,
    ErrorCode,
    HoldConflict,
    HoldDetails,
    HoldLookupResult,
    HoldRequest,
    HoldResult,
    ReservationOverrides,
    ReservationStatus,
    SweepResult,
    TemporaryReservationStatus,
)
from config import get_settings
from db.session import SessionLocal

logger = logging.getLogger(__name__)

settings = get_settings()

PENDING = TemporaryReservationStatus.PENDING.value


def facility_type_lock_statement(facility_type: str, organization_id: str) -> Select:
    """Rows that serialise competing holds against the same facility type."""
    return (
        select(FacilityType)
        .where(FacilityType.name == facility_type, FacilityType.organization_id == organization_id)
        .order_by(FacilityType.id.asc())
        .with_for_update()
    )


def _find_conflicting_hold(
    db: Session,
    request: HoldRequest,
    organization_id: str,
    now: datetime,
) -> TemporaryReservation | None:
    stmt = (
        select(TemporaryReservation)
        .options(selectinload(TemporaryReservation.frontdesk_user))
        .where(
            TemporaryReservation.organization_id == organization_id,
            TemporaryReservation.status == PENDING,
            TemporaryReservation.expires_at > now,
            TemporaryReservation.reservation_date <= request.reservation_end_date,
            TemporaryReservation.reservation_end_date >= request.reservation_date,
        )
        .order_by(TemporaryReservation.expires_at.desc())
        .limit(1)
    )
    if request.facility_id:
        stmt = stmt.where(TemporaryReservation.facility_id == request.facility_id)
    if request.facility_type:
        stmt = stmt.where(TemporaryReservation.facility_type == request.facility_type)
    return db.scalar(stmt)


def _find_conflicting_reservation(db: Session, request: HoldRequest, organization_id: str) -> Reservation | None:
    targets = []
    if request.facility_id:
        targets.append(Reservation.facility_id == request.facility_id)
    if request.facility_type:
        targets.append(
            and_(
                Reservation.facility_id.is_(None),
                Reservation.facility_type == request.facility_type,
                Reservation.organization_id == organization_id,
            )
        )

    stmt = (
        select(Reservation)
        .where(
            or_(*targets),
            Reservation.status.in_(BLOCKING_RESERVATION_STATUSES),
            Reservation.reservation_date <= request.reservation_end_date,
            Reservation.reservation_end_date >= request.reservation_date,
        )
        .order_by(Reservation.reservation_date.asc())
        .limit(1)
    )
    return db.scalar(stmt)


def _create_hold(db: Session, request: HoldRequest) -> HoldResult:
    now_utc = datetime.now(timezone.utc)
    organization_id = request.organization_id

    if request.facility_id:
        facility = db.scalar(select(Facility).where(Facility.id == request.facility_id).with_for_update())
        if not facility or facility.is_deleted or (organization_id and facility.organization_id != organization_id):
            raise AvailabilityError(ErrorCode.NOT_FOUND, "Facility not found.")
        organization_id = facility.organization_id
    if request.facility_type:
        # Type-level holds have no facility row to lock, so the type rows stand in.
        if not db.scalars(facility_type_lock_statement(request.facility_type, organization_id)).all():
            raise AvailabilityError(ErrorCode.NOT_FOUND, "Facility type not found.")
    if not db.get(User, request.frontdesk_user_id):
        raise AvailabilityError(ErrorCode.NOT_FOUND, "Front desk user not found.")

    held = _find_conflicting_hold(db, request, organization_id, now_utc)
    if held:
        holder = held.frontdesk_user.user_name if held.frontdesk_user else held.frontdesk_user_id
        expires_at = to_utc(held.expires_at)
        return HoldResult(
            success=False,
            error=f"Room is temporarily held by {holder} until {expires_at.isoformat()}",
            error_code=ErrorCode.CONFLICT,
            conflict=HoldConflict(
                kind="TEMPORARY_HOLD",
                id=held.id,
                held_by=holder,
                frontdesk_user_id=held.frontdesk_user_id,
                expires_at=expires_at,
                status=held.status,
                reservation_date=held.reservation_date,
                reservation_end_date=held.reservation_end_date,
            ),
        )

    reserved = _find_conflicting_reservation(db, request, organization_id)
    if reserved:
        return HoldResult(
            success=False,
            error="Room is already reserved for the selected dates",
            error_code=ErrorCode.CONFLICT,
            conflict=HoldConflict(
                kind="RESERVATION",
                id=reserved.id,
                status=reserved.status,
                reservation_date=reserved.reservation_date,
                reservation_end_date=reserved.reservation_end_date,
            ),
        )

    duration = request.hold_duration_minutes or settings.hold_duration_minutes
    hold = TemporaryReservation(
        organization_id=organization_id,
        facility_id=request.facility_id,
        facility_type=request.facility_type,
        user_id=request.user_id,
        frontdesk_user_id=request.frontdesk_user_id,
        session_id=request.session_id,
        reservation_date=request.reservation_date,
        reservation_end_date=request.reservation_end_date,
        guests=request.guests,
        special_requests=request.special_requests,
        price_per_night=request.price_per_night,
        total_amount=request.total_amount,
        status=PENDING,
        expires_at=now_utc + timedelta(minutes=duration),
        created_at=now_utc,
    )
    db.add(hold)
    db.flush()
    return HoldResult(success=True, temporary_reservation_id=hold.id, expires_at=hold.expires_at)


def create_temporary_reservation(data: dict[str, Any]) -> HoldResult:
    try:
        request = HoldRequest.model_validate(data)
    except ValidationError as exc:
        return HoldResult(
            success=False,
            error=f"Invalid hold request: {exc}",
            error_code=ErrorCode.VALIDATION_ERROR,
        )

    with SessionLocal() as db:
        try:
            with db.begin():
                result = _create_hold(db, request)
        except AvailabilityError as exc:
            return HoldResult(success=False, error=exc.message, error_code=exc.code)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error while creating temporary reservation")
            return HoldResult(
                success=False,
                error="Database error while creating temporary reservation.",
                error_code=ErrorCode.DATABASE_ERROR,
            )

    target = request.facility_id or request.facility_type
    if result.success:
        logger.info(
            "Temporary reservation %s created for %s by front desk user %s",
            result.temporary_reservation_id,
            target,
            request.frontdesk_user_id,
        )
    else:
        logger.warning("Temporary reservation for %s refused: %s", target, result.error)
    return result


def _load_pending_hold(db: Session, hold_id: str, now: datetime) -> TemporaryReservation:
    hold = db.scalar(select(TemporaryReservation).where(TemporaryReservation.id == hold_id).with_for_update())
    if not hold:
        raise AvailabilityError(ErrorCode.NOT_FOUND, "Temporary reservation not found")
    if hold.status != PENDING:
        raise AvailabilityError(ErrorCode.EXPIRED, f"Temporary reservation is already {hold.status.lower()}")
    if to_utc(hold.expires_at) < now:
        raise AvailabilityError(ErrorCode.EXPIRED, "Temporary reservation has expired")
    return hold


def confirm_temporary_reservation(
    hold_id: str,
    overrides: dict[str, Any] | ReservationOverrides | None = None,
) -> ConfirmHoldResult:
    try:
        extra = ReservationOverrides.model_validate(overrides or {})
    except ValidationError as exc:
        return ConfirmHoldResult(
            success=False,
            temporary_reservation_id=hold_id,
            error=f"Invalid reservation overrides: {exc}",
            error_code=ErrorCode.VALIDATION_ERROR,
        )

    with SessionLocal() as db:
        try:
            with db.begin():
                hold = _load_pending_hold(db, hold_id, datetime.now(timezone.utc))

                organization_id = hold.organization_id or extra.organization_id
                if organization_id is None and hold.facility_id:
                    facility = db.get(Facility, hold.facility_id)
                    organization_id = facility.organization_id if facility else None

                reservation = Reservation(
                    organization_id=organization_id,
                    facility_id=hold.facility_id,
                    facility_type=hold.facility_type,
                    user_id=hold.user_id,
                    reservation_date=hold.reservation_date,
                    reservation_end_date=hold.reservation_end_date,
                    guests=extra.guests or hold.guests,
                    special_requests=extra.special_requests if extra.special_requests is not None else hold.special_requests,
                    price_per_night=extra.price_per_night if extra.price_per_night is not None else hold.price_per_night,
                    total_amount=extra.total_amount if extra.total_amount is not None else hold.total_amount,
                    status=ReservationStatus.RESERVED.value,
                )
                if extra.payment_status is not None:
                    reservation.payment_status = extra.payment_status.value
                db.add(reservation)
                hold.status = TemporaryReservationStatus.CONFIRMED.value
                db.flush()
                reservation_id = reservation.id
        except AvailabilityError as exc:
            return ConfirmHoldResult(
                success=False,
                temporary_reservation_id=hold_id,
                error=exc.message,
                error_code=exc.code,
            )
        except IntegrityError:
            db.rollback()
            logger.warning("Temporary reservation %s collided with an existing reservation", hold_id)
            return ConfirmHoldResult(
                success=False,
                temporary_reservation_id=hold_id,
                error="Room is already reserved for the selected dates",
                error_code=ErrorCode.CONFLICT,
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error while confirming temporary reservation %s", hold_id)
            return ConfirmHoldResult(
                success=False,
                temporary_reservation_id=hold_id,
                error="Database error while confirming temporary reservation.",
                error_code=ErrorCode.DATABASE_ERROR,
            )

    logger.info("Temporary reservation %s confirmed as reservation %s", hold_id, reservation_id)
    return ConfirmHoldResult(success=True, temporary_reservation_id=hold_id, reservation_id=reservation_id)


def cancel_temporary_reservation(hold_id: str) -> HoldResult:
    with SessionLocal() as db:
        try:
            with db.begin():
                hold = db.scalar(
                    select(TemporaryReservation).where(TemporaryReservation.id == hold_id).with_for_update()
                )
                if not hold:
                    raise AvailabilityError(ErrorCode.NOT_FOUND, "Temporary reservation not found")
                if hold.status != PENDING:
                    raise AvailabilityError(ErrorCode.EXPIRED, f"Temporary reservation is already {hold.status.lower()}")
                hold.status = TemporaryReservationStatus.CANCELLED.value
                db.flush()
        except AvailabilityError as exc:
            return HoldResult(success=False, temporary_reservation_id=hold_id, error=exc.message, error_code=exc.code)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error while cancelling temporary reservation %s", hold_id)
            return HoldResult(
                success=False,
                temporary_reservation_id=hold_id,
                error="Database error while cancelling temporary reservation.",
                error_code=ErrorCode.DATABASE_ERROR,
            )

    logger.info("Temporary reservation %s cancelled", hold_id)
    return HoldResult(success=True, temporary_reservation_id=hold_id)


def cleanup_expired_temporary_reservations(now: datetime | None = None) -> SweepResult:
    """Move every PENDING hold whose ``expires_at`` has passed to EXPIRED."""
    now_utc = to_utc(now) if now else datetime.now(timezone.utc)
    with SessionLocal() as db:
        try:
            with db.begin():
                result = db.execute(
                    update(TemporaryReservation)
                    .where(
                        TemporaryReservation.status == PENDING,
                        TemporaryReservation.expires_at < now_utc,
                    )
                    .values(status=TemporaryReservationStatus.EXPIRED.value)
                    .execution_options(synchronize_session=False)
                )
                cleaned_count = result.rowcount or 0
        except SQLAlchemyError:
            logger.exception("Error cleaning up expired temporary reservations")
            raise

    if cleaned_count:
        logger.info("Cleaned up %d expired temporary reservations", cleaned_count)
    return SweepResult(cleaned_count=cleaned_count)


def _hold_details(hold: TemporaryReservation) -> HoldDetails:
    return HoldDetails(
        id=hold.id,
        organization_id=hold.organization_id,
        facility_id=hold.facility_id,
        facility_name=hold.facility.name if hold.facility else None,
        facility_type=hold.facility_type,
        user_id=hold.user_id,
        frontdesk_user_id=hold.frontdesk_user_id,
        frontdesk_user_name=hold.frontdesk_user.user_name if hold.frontdesk_user else None,
        session_id=hold.session_id,
        reservation_date=hold.reservation_date,
        reservation_end_date=hold.reservation_end_date,
        guests=hold.guests,
        status=TemporaryReservationStatus(hold.status),
        expires_at=hold.expires_at,
    )


def get_temporary_reservation(hold_id: str) -> HoldLookupResult:
    with SessionLocal() as db:
        hold = db.scalar(
            select(TemporaryReservation)
            .options(
                selectinload(TemporaryReservation.facility),
                selectinload(TemporaryReservation.frontdesk_user),
            )
            .where(TemporaryReservation.id == hold_id)
        )
        if not hold:
            return HoldLookupResult(success=False, error="Temporary reservation not found", error_code=ErrorCode.NOT_FOUND)
        return HoldLookupResult(success=True, holds=[_hold_details(hold)])


def get_temporary_reservations_by_session(session_id: str) -> HoldLookupResult:
    """Active holds of a front desk session, newest first."""
    now_utc = datetime.now(timezone.utc)
    with SessionLocal() as db:
        holds = db.scalars(
            select(TemporaryReservation)
            .options(
                selectinload(TemporaryReservation.facility),
                selectinload(TemporaryReservation.frontdesk_user),
            )
            .where(
                TemporaryReservation.session_id == session_id,
                TemporaryReservation.status == PENDING,
                TemporaryReservation.expires_at > now_utc,
            )
            .order_by(TemporaryReservation.created_at.desc(), TemporaryReservation.id.asc())
        )
        return HoldLookupResult(success=True, holds=[_hold_details(hold) for hold in holds])
