"""Pydantic schemas for availability, assignment, hold and pricing flows."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator


class ReservationStatus(str, Enum):
    PROCESSING = "PROCESSING"
    RESERVED = "RESERVED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    REFUNDED = "REFUNDED"


class MaintenanceStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TemporaryReservationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class FacilityCategory(str, Enum):
    HOTEL = "HOTEL"
    GYM = "GYM"
    RESTAURANT = "RESTAURANT"
    SPORTS_COURT = "SPORTS_COURT"
    CONFERENCE_ROOM = "CONFERENCE_ROOM"
    PARKING = "PARKING"
    AMENITY_SPACE = "AMENITY_SPACE"
    OTHER = "OTHER"


class BedType(str, Enum):
    SINGLE_BED = "SINGLE_BED"
    DOUBLE_BED = "DOUBLE_BED"
    QUEEN_BED = "QUEEN_BED"
    KING_BED = "KING_BED"
    TWIN_BED = "TWIN_BED"
    BUNK_BED = "BUNK_BED"
    SOFA_BED = "SOFA_BED"
    MURPHY_BED = "MURPHY_BED"
    DAYBED = "DAYBED"
    FUTON = "FUTON"


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    NO_AVAILABILITY = "NO_AVAILABILITY"
    CONFLICT = "CONFLICT"
    EXPIRED = "EXPIRED"
    TIMEOUT = "TIMEOUT"
    DATABASE_ERROR = "DATABASE_ERROR"


def _require_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_require_utc)]


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class PriceRange(BaseModel):
    min: Optional[float] = Field(default=None, ge=0)
    max: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def validate_bounds(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("priceRange.min must not exceed priceRange.max.")
        return self

    def contains(self, price: Optional[float]) -> bool:
        if price is None:
            return self.min is None and self.max is None
        if self.min is not None and price < self.min:
            return False
        if self.max is not None and price > self.max:
            return False
        return True


class FacilityFilter(BaseModel):
    """One filter group. Conditions inside a group are AND-ed."""

    model_config = ConfigDict(str_strip_whitespace=True)

    category: Optional[FacilityCategory] = None
    amenities: list[str] = Field(default_factory=list)
    facility_features: list[str] = Field(default_factory=list)
    bed_type: Optional[str] = None
    max_occupancy: Optional[int] = Field(default=None, ge=1)
    price_range: Optional[PriceRange] = None


class AvailabilitySearchRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    reservation_start_date: UtcDatetime
    reservation_end_date: UtcDatetime
    facility_type_id: Optional[str] = None
    facility_type: Optional[str] = None
    organization_id: Optional[str] = None
    filters: list[FacilityFilter] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_window(self):
        if self.reservation_end_date < self.reservation_start_date:
            raise ValueError("Reservation end date cannot be before reservation start date.")
        return self


class TypeAvailabilityRequest(BaseModel):
    """Single facility type lookup; rejects windows that start in the past."""

    model_config = ConfigDict(str_strip_whitespace=True)

    facility_type: str = Field(min_length=1)
    reservation_start_date: UtcDatetime
    reservation_end_date: UtcDatetime

    @model_validator(mode="after")
    def validate_window(self):
        if self.reservation_end_date < self.reservation_start_date:
            raise ValueError("Reservation end date cannot be before reservation start date.")
        if self.reservation_start_date.date() < datetime.now(timezone.utc).date():
            raise ValueError("Reservation start date cannot be in the past.")
        return self


class FacilitySummary(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    room_number: Optional[str] = None
    meta: Optional[dict[str, Any]] = None


class FacilityTypeAvailability(BaseModel):
    facility_type: str
    is_available: bool
    available_count: int
    total_count: int
    reserved_count: int
    maintenance_count: int
    available_facilities: list[FacilitySummary] = Field(default_factory=list)

    id: str
    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    category: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    organization_id: Optional[str] = None
    price: Optional[float] = None
    rate_type_id: Optional[str] = None

    amenities: list[str] = Field(default_factory=list)
    facility_features: list[str] = Field(default_factory=list)
    bed_type: Optional[str] = None
    bed_count: Optional[int] = None
    max_occupancy: Optional[int] = None


class FacilityAvailability(BaseModel):
    facility_id: str
    is_available: bool
    blocking_reservation_ids: list[str] = Field(default_factory=list)
    blocking_maintenance_ids: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class OperationResult(BaseModel):
    success: bool
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None

    @field_validator("error")
    @classmethod
    def normalize_error(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class AvailabilitySearchResult(OperationResult):
    results: list[FacilityTypeAvailability] = Field(default_factory=list)


class FacilityAvailabilityResult(OperationResult):
    availability: Optional[FacilityAvailability] = None


class AssignmentResult(OperationResult):
    reservation_id: Optional[str] = None
    facility_id: Optional[str] = None
    already_assigned: bool = False


class BatchAssignmentItem(BaseModel):
    reservation_id: str = Field(min_length=1)
    facility_type: Optional[str] = None
    reservation_start_date: Optional[UtcDatetime] = None
    reservation_end_date: Optional[UtcDatetime] = None


class BatchAssignmentResult(OperationResult):
    results: list[AssignmentResult] = Field(default_factory=list)


class DateOverrides(BaseModel):
    check_in_date: Optional[UtcDatetime] = None
    check_out_date: Optional[UtcDatetime] = None

    @model_validator(mode="after")
    def validate_order(self):
        if self.check_in_date and self.check_out_date and self.check_out_date < self.check_in_date:
            raise ValueError("End date cannot be before start date.")
        return self


class HoldRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    facility_id: Optional[str] = None
    facility_type: Optional[str] = None
    organization_id: Optional[str] = None
    user_id: str = Field(min_length=1)
    frontdesk_user_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    reservation_date: UtcDatetime
    reservation_end_date: UtcDatetime
    guests: int = Field(default=1, ge=1)
    special_requests: Optional[str] = None
    price_per_night: Optional[float] = Field(default=None, ge=0)
    total_amount: Optional[float] = Field(default=None, ge=0)
    hold_duration_minutes: Optional[int] = Field(default=None, ge=1, le=24 * 60)

    @model_validator(mode="after")
    def validate_target(self):
        if not self.facility_id and not self.facility_type:
            raise ValueError("Either facility_id or facility_type is required.")
        if not self.facility_id and not self.organization_id:
            raise ValueError("organization_id is required when holding a facility type.")
        if self.reservation_end_date < self.reservation_date:
            raise ValueError("Reservation end date cannot be before reservation start date.")
        return self


class HoldConflict(BaseModel):
    kind: Literal["TEMPORARY_HOLD", "RESERVATION"]
    id: str
    held_by: Optional[str] = None
    frontdesk_user_id: Optional[str] = None
    expires_at: Optional[UtcDatetime] = None
    status: Optional[str] = None
    reservation_date: UtcDatetime
    reservation_end_date: UtcDatetime


class HoldResult(OperationResult):
    temporary_reservation_id: Optional[str] = None
    expires_at: Optional[UtcDatetime] = None
    conflict: Optional[HoldConflict] = None


class ReservationOverrides(BaseModel):
    """Fields that may replace the hold's values when it is confirmed."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    organization_id: Optional[str] = None
    guests: Optional[int] = Field(default=None, ge=1)
    special_requests: Optional[str] = None
    price_per_night: Optional[float] = Field(default=None, ge=0)
    total_amount: Optional[float] = Field(default=None, ge=0)
    payment_status: Optional[PaymentStatus] = None


class ConfirmHoldResult(OperationResult):
    temporary_reservation_id: Optional[str] = None
    reservation_id: Optional[str] = None


class HoldDetails(BaseModel):
    id: str
    organization_id: Optional[str] = None
    facility_id: Optional[str] = None
    facility_name: Optional[str] = None
    facility_type: Optional[str] = None
    user_id: str
    frontdesk_user_id: str
    frontdesk_user_name: Optional[str] = None
    session_id: str
    reservation_date: UtcDatetime
    reservation_end_date: UtcDatetime
    guests: int
    status: TemporaryReservationStatus
    expires_at: UtcDatetime


class HoldLookupResult(OperationResult):
    holds: list[HoldDetails] = Field(default_factory=list)


class SweepResult(BaseModel):
    cleaned_count: int


class StatusChangeRequest(BaseModel):
    status: ReservationStatus


class StatusChangeResult(OperationResult):
    reservation_id: Optional[str] = None
    previous_status: Optional[ReservationStatus] = None
    status: Optional[ReservationStatus] = None


class PricingResult(BaseModel):
    base_price: float
    duration: int
    unit: str
    subtotal: float
    discount_amount: float
    after_discount: float
    tax_amount: float
    total_amount: float
    price_per_unit: float
    applied_tax: float
    applied_discount: float


class PricingQuoteRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    facility_type_id: Optional[str] = None
    rate_type_id: Optional[str] = None
    reservation_date: UtcDatetime
    reservation_end_date: UtcDatetime
    base_price_override: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = None


class PricingQuoteResult(OperationResult):
    pricing: Optional[PricingResult] = None


class AdminActionResult(OperationResult):
    facility_type_id: Optional[str] = None
