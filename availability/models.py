"""SQLAlchemy models for facilities, reservations, maintenance and holds."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True, index=True)


class RateType(Base):
    __tablename__ = "rate_types"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    default_tax: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    default_discount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class FacilityType(Base):
    __tablename__ = "facility_types"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="HOTEL", index=True)
    # "metadata" is reserved on declarative classes, so the attribute is renamed.
    type_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    rate_type_id: Mapped[str | None] = mapped_column(String, ForeignKey("rate_types.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    rate_type: Mapped[Optional[RateType]] = relationship()
    facilities: Mapped[list["Facility"]] = relationship(back_populates="facility_type")


class FacilityLocation(Base):
    __tablename__ = "facility_locations"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    floor: Mapped[str | None] = mapped_column(String(32), nullable=True)


class Facility(Base):
    __tablename__ = "facilities"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    facility_type_id: Mapped[str | None] = mapped_column(String, ForeignKey("facility_types.id", ondelete="SET NULL"), nullable=True, index=True)
    facility_location_id: Mapped[str | None] = mapped_column(String, ForeignKey("facility_locations.id", ondelete="SET NULL"), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    facility_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    facility_type: Mapped[Optional[FacilityType]] = relationship(back_populates="facilities")
    location: Mapped[Optional[FacilityLocation]] = relationship()


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        # Last line of defence against two transactions binding the same
        # facility for the same window.
        Index(
            "uq_reservation_facility_window",
            "facility_id",
            "reservation_date",
            "reservation_end_date",
            "status",
            unique=True,
            postgresql_where=text("facility_id IS NOT NULL AND status NOT IN ('CANCELLED', 'CHECKED_OUT')"),
            sqlite_where=text("facility_id IS NOT NULL AND status NOT IN ('CANCELLED', 'CHECKED_OUT')"),
        ),
        Index("idx_reservation_type_availability", "facility_type", "status", "reservation_date", "reservation_end_date"),
        Index("idx_reservation_facility_availability", "facility_id", "status", "reservation_date", "reservation_end_date"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    organization_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    facility_id: Mapped[str | None] = mapped_column(String, ForeignKey("facilities.id", ondelete="SET NULL"), nullable=True)
    facility_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    reservation_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reservation_end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    check_in_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PROCESSING", index=True)
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    price_per_night: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    special_requests: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    facility: Mapped[Optional[Facility]] = relationship()


class MaintenanceRecord(Base):
    __tablename__ = "maintenance_records"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    facility_id: Mapped[str] = mapped_column(String, ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING", index=True)
    date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class TemporaryReservation(Base):
    __tablename__ = "temporary_reservations"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    facility_id: Mapped[str | None] = mapped_column(String, ForeignKey("facilities.id", ondelete="CASCADE"), nullable=True, index=True)
    facility_type: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    frontdesk_user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    reservation_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reservation_end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    special_requests: Mapped[str | None] = mapped_column(Text, nullable=True)
    price_per_night: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING", index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    frontdesk_user: Mapped[User] = relationship(foreign_keys=[frontdesk_user_id])
    facility: Mapped[Optional[Facility]] = relationship()
