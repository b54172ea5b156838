import pytest
from pydantic import ValidationError

from availability.categories import (
    HotelFacilityType,
    default_metadata_for_category,
    price_range_for_category,
    upsert_facility_type,
    validate_facility_type,
)
from availability.models import FacilityType
from availability.schema import ErrorCode, FacilityCategory
from conftest import ORG_ID


def _hotel_payload(**changes):
    payload = {
        "organization_id": ORG_ID,
        "name": "Deluxe King",
        "category": "HOTEL",
        "price": 180.0,
        "metadata": {"bed_type": "KING_BED", "bed_count": 1, "max_occupancy": 2, "amenities": ["MINIBAR"]},
    }
    payload.update(changes)
    return payload


def test_valid_hotel_type():
    definition = validate_facility_type(_hotel_payload())

    assert isinstance(definition, HotelFacilityType)
    assert definition.metadata.bed_type == "KING_BED"


def test_hotel_requires_bed_type():
    with pytest.raises(ValidationError):
        validate_facility_type(_hotel_payload(metadata={"bed_count": 1, "max_occupancy": 2}))


def test_metadata_must_match_category():
    with pytest.raises(ValidationError):
        validate_facility_type(_hotel_payload(category="CONFERENCE_ROOM"))


def test_unknown_category_is_rejected():
    with pytest.raises(ValidationError):
        validate_facility_type(_hotel_payload(category="SPACESHIP"))


def test_price_outside_category_range():
    with pytest.raises(ValidationError, match="Price must be between 10 and 100 for GYM facilities"):
        validate_facility_type({"organization_id": ORG_ID, "name": "Gym", "category": "GYM", "price": 250.0})


def test_optional_metadata_defaults():
    definition = validate_facility_type({"organization_id": ORG_ID, "name": "Garage", "category": "PARKING"})
    assert definition.metadata.is_underground is False


@pytest.mark.parametrize("category", list(FacilityCategory))
def test_default_metadata_is_valid_for_its_category(category):
    price = price_range_for_category(category).base
    definition = validate_facility_type(
        {
            "organization_id": ORG_ID,
            "name": f"Default {category.value}",
            "category": category.value,
            "price": price,
            "metadata": default_metadata_for_category(category),
        }
    )
    assert definition.category == category.value


def test_default_metadata_is_a_fresh_copy():
    first = default_metadata_for_category("HOTEL")
    first["room_features"].append("BALCONY")
    assert "BALCONY" not in default_metadata_for_category("HOTEL")["room_features"]
    assert default_metadata_for_category("UNKNOWN") == {}


def test_upsert_creates_then_updates(seed):
    created = upsert_facility_type(_hotel_payload())
    assert created.success is True

    updated = upsert_facility_type(_hotel_payload(id=created.facility_type_id, price=220.0, name="Deluxe King Plus"))

    assert updated.facility_type_id == created.facility_type_id
    stored = seed.get(FacilityType, created.facility_type_id)
    assert stored.name == "Deluxe King Plus"
    assert stored.price == 220.0
    assert stored.type_metadata["bed_type"] == "KING_BED"
    assert "room_number" not in stored.type_metadata
    assert seed.count(FacilityType) == 1


def test_upsert_links_rate_type_of_same_organization(seed):
    rate_type_id = seed.rate_type(default_tax=10.0)
    other_org_rate = seed.rate_type(organization_id="org-2")

    linked = upsert_facility_type(_hotel_payload(rate_type_id=rate_type_id))
    foreign = upsert_facility_type(_hotel_payload(rate_type_id=other_org_rate))
    missing = upsert_facility_type(_hotel_payload(rate_type_id="missing"))

    assert seed.get(FacilityType, linked.facility_type_id).rate_type_id == rate_type_id
    assert foreign.error_code == ErrorCode.NOT_FOUND
    assert missing.error_code == ErrorCode.NOT_FOUND


def test_upsert_refuses_another_organizations_type(seed):
    type_id = seed.facility_type(organization_id="org-2")

    result = upsert_facility_type(_hotel_payload(id=type_id))

    assert result.error_code == ErrorCode.INVALID_STATE


def test_upsert_reports_invalid_payload():
    result = upsert_facility_type(_hotel_payload(price=5.0))
    assert result.success is False
    assert result.error_code == ErrorCode.VALIDATION_ERROR
    assert "Price must be between 50 and 1000 for HOTEL facilities" in result.error
