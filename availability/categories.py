"""Facility type categories: metadata shapes, price ranges and admin upsert."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator
from sqlalchemy.exc import SQLAlchemyError

from availability.models import FacilityType, RateType
from availability.schema import AdminActionResult, BedType, ErrorCode, FacilityCategory
from db.session import SessionLocal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryPriceRange:
    min: float
    max: float
    base: float

    def contains(self, price: float) -> bool:
        return self.min <= price <= self.max


CATEGORY_PRICE_RANGES: dict[FacilityCategory, CategoryPriceRange] = {
    FacilityCategory.HOTEL: CategoryPriceRange(50.0, 1000.0, 100.0),
    FacilityCategory.GYM: CategoryPriceRange(10.0, 100.0, 25.0),
    FacilityCategory.RESTAURANT: CategoryPriceRange(20.0, 200.0, 50.0),
    FacilityCategory.SPORTS_COURT: CategoryPriceRange(20.0, 150.0, 40.0),
    FacilityCategory.CONFERENCE_ROOM: CategoryPriceRange(30.0, 300.0, 75.0),
    FacilityCategory.PARKING: CategoryPriceRange(5.0, 50.0, 15.0),
    FacilityCategory.AMENITY_SPACE: CategoryPriceRange(10.0, 100.0, 30.0),
    FacilityCategory.OTHER: CategoryPriceRange(10.0, 200.0, 25.0),
}


def price_range_for_category(category: FacilityCategory | str) -> CategoryPriceRange:
    return CATEGORY_PRICE_RANGES[FacilityCategory(category)]


# ---------------------------------------------------------------------------
# Metadata per category
# ---------------------------------------------------------------------------


class _Metadata(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class HotelMetadata(_Metadata):
    bed_type: BedType
    bed_count: int = Field(ge=1)
    max_occupancy: int = Field(ge=1)
    room_number: Optional[str] = None
    amenities: list[str] = Field(default_factory=list)
    room_features: list[str] = Field(default_factory=list)


class GymMetadata(_Metadata):
    equipment: list[str] = Field(default_factory=list)
    has_trainer: bool = False
    opening_hours: Optional[str] = None
    capacity: Optional[int] = Field(default=None, ge=1)
    specialty_area: Optional[str] = None


class RestaurantMetadata(_Metadata):
    cuisine_type: Optional[str] = None
    seating_capacity: Optional[int] = Field(default=None, ge=1)
    has_delivery: bool = False
    has_takeout: bool = False
    opening_hours: Optional[str] = None
    menu_url: Optional[str] = None
    avg_meal_price: Optional[float] = Field(default=None, ge=0)


class SportsCourtMetadata(_Metadata):
    sport_type: str = Field(min_length=1)
    surface_type: Optional[str] = None
    is_indoor: bool = False
    max_players: Optional[int] = Field(default=None, ge=1)
    equipment_provided: list[str] = Field(default_factory=list)
    opening_hours: Optional[str] = None


class ConferenceRoomMetadata(_Metadata):
    seating_capacity: int = Field(ge=1)
    has_projector: bool = False
    has_whiteboard: bool = False
    has_video_conferencing: bool = False
    has_audio_system: bool = False
    layout: Optional[str] = None
    equipment: list[str] = Field(default_factory=list)


class ParkingMetadata(_Metadata):
    vehicle_type: Optional[str] = None
    is_underground: bool = False
    is_covered: bool = False
    has_electric_charging: bool = False
    max_vehicle_height: Optional[float] = Field(default=None, gt=0)
    security_level: Optional[str] = None


class AmenitySpaceMetadata(_Metadata):
    amenity_type: str = Field(min_length=1)
    capacity: Optional[int] = Field(default=None, ge=1)
    requires_reservation: bool = False
    opening_hours: Optional[str] = None
    age_restriction: Optional[str] = None
    additional_fees: Optional[float] = Field(default=None, ge=0)


class OtherMetadata(_Metadata):
    custom_type: str = Field(min_length=1)
    description: Optional[str] = None
    features: list[str] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)
    capacity: Optional[int] = Field(default=None, ge=1)
    opening_hours: Optional[str] = None


_DEFAULT_METADATA: dict[FacilityCategory, dict[str, Any]] = {
    FacilityCategory.HOTEL: {
        "bed_type": BedType.QUEEN_BED.value,
        "bed_count": 1,
        "max_occupancy": 2,
        "amenities": [],
        "room_features": ["WIFI", "PRIVATE_BATHROOM", "AIR_CONDITIONING"],
    },
    FacilityCategory.GYM: {"equipment": [], "has_trainer": False, "capacity": 20},
    FacilityCategory.RESTAURANT: {"seating_capacity": 50, "has_delivery": False, "has_takeout": False},
    FacilityCategory.SPORTS_COURT: {"sport_type": "Tennis", "is_indoor": False, "equipment_provided": []},
    FacilityCategory.CONFERENCE_ROOM: {
        "seating_capacity": 10,
        "has_projector": False,
        "has_whiteboard": False,
        "has_video_conferencing": False,
        "has_audio_system": False,
        "equipment": [],
    },
    FacilityCategory.PARKING: {
        "vehicle_type": "Car",
        "is_underground": False,
        "is_covered": False,
        "has_electric_charging": False,
    },
    FacilityCategory.AMENITY_SPACE: {"amenity_type": "Pool", "requires_reservation": False},
    FacilityCategory.OTHER: {"custom_type": "General Facility", "features": [], "requirements": []},
}


def default_metadata_for_category(category: FacilityCategory | str) -> dict[str, Any]:
    """Starter metadata for a new facility type; always valid for its category."""
    try:
        key = FacilityCategory(category)
    except ValueError:
        return {}
    return {name: list(value) if isinstance(value, list) else value for name, value in _DEFAULT_METADATA[key].items()}


# ---------------------------------------------------------------------------
# Facility type definitions
# ---------------------------------------------------------------------------


class _FacilityTypeBase(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    organization_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=1000)
    price: Optional[float] = Field(default=None, ge=0)
    rate_type_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_price_for_category(self):
        if self.price is None:
            return self
        price_range = price_range_for_category(self.category)
        if not price_range.contains(self.price):
            raise ValueError(
                f"Price must be between {price_range.min:g} and {price_range.max:g} "
                f"for {self.category} facilities"
            )
        return self


class HotelFacilityType(_FacilityTypeBase):
    category: Literal["HOTEL"]
    metadata: HotelMetadata


class GymFacilityType(_FacilityTypeBase):
    category: Literal["GYM"]
    metadata: GymMetadata = Field(default_factory=GymMetadata)


class RestaurantFacilityType(_FacilityTypeBase):
    category: Literal["RESTAURANT"]
    metadata: RestaurantMetadata = Field(default_factory=RestaurantMetadata)


class SportsCourtFacilityType(_FacilityTypeBase):
    category: Literal["SPORTS_COURT"]
    metadata: SportsCourtMetadata


class ConferenceRoomFacilityType(_FacilityTypeBase):
    category: Literal["CONFERENCE_ROOM"]
    metadata: ConferenceRoomMetadata


class ParkingFacilityType(_FacilityTypeBase):
    category: Literal["PARKING"]
    metadata: ParkingMetadata = Field(default_factory=ParkingMetadata)


class AmenitySpaceFacilityType(_FacilityTypeBase):
    category: Literal["AMENITY_SPACE"]
    metadata: AmenitySpaceMetadata


class OtherFacilityType(_FacilityTypeBase):
    category: Literal["OTHER"]
    metadata: OtherMetadata


FacilityTypeDefinition = Annotated[
    Union[
        HotelFacilityType,
        GymFacilityType,
        RestaurantFacilityType,
        SportsCourtFacilityType,
        ConferenceRoomFacilityType,
        ParkingFacilityType,
        AmenitySpaceFacilityType,
        OtherFacilityType,
    ],
    Field(discriminator="category"),
]

_definition_adapter = TypeAdapter(FacilityTypeDefinition)


def validate_facility_type(payload: dict[str, Any]):
    """Parse a facility type payload into its category-specific model.

    Raises ``pydantic.ValidationError`` when the category is unknown, the
    metadata does not fit the category, or the price is outside the
    category's range.
    """
    return _definition_adapter.validate_python(payload)


def upsert_facility_type(payload: dict[str, Any]) -> AdminActionResult:
    try:
        definition = validate_facility_type(payload)
    except ValidationError as exc:
        return AdminActionResult(
            success=False,
            error=f"Invalid facility type payload: {exc}",
            error_code=ErrorCode.VALIDATION_ERROR,
        )

    with SessionLocal() as db:
        try:
            with db.begin():
                if definition.rate_type_id:
                    rate_type = db.get(RateType, definition.rate_type_id)
                    if not rate_type or rate_type.organization_id != definition.organization_id:
                        return AdminActionResult(
                            success=False,
                            error="Rate type not found for this organization.",
                            error_code=ErrorCode.NOT_FOUND,
                        )

                facility_type = db.get(FacilityType, definition.id) if definition.id else None
                if facility_type and facility_type.organization_id != definition.organization_id:
                    return AdminActionResult(
                        success=False,
                        error="Facility type belongs to a different organization.",
                        error_code=ErrorCode.INVALID_STATE,
                    )
                if not facility_type:
                    facility_type = FacilityType(organization_id=definition.organization_id)
                    if definition.id:
                        facility_type.id = definition.id
                    db.add(facility_type)

                facility_type.name = definition.name
                facility_type.code = definition.code
                facility_type.description = definition.description
                facility_type.category = definition.category
                facility_type.type_metadata = definition.metadata.model_dump(mode="json", exclude_none=True)
                facility_type.price = definition.price
                facility_type.rate_type_id = definition.rate_type_id

                db.flush()
                logger.info("Upserted %s facility type %s (%s)", definition.category, facility_type.name, facility_type.id)
                return AdminActionResult(success=True, facility_type_id=facility_type.id)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error while upserting facility type %s", definition.name)
            return AdminActionResult(
                success=False,
                error="Database error while upserting facility type.",
                error_code=ErrorCode.DATABASE_ERROR,
            )
