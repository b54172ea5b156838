from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from api_server import app
from conftest import ORG_ID, at, utc_now

API_HEADERS = {"X-API-Key": "test-api-key"}
ADMIN_HEADERS = {"X-Admin-API-Key": "test-admin-key"}


@pytest.fixture
def client():
    return TestClient(app)


def _window(start_day=5, end_day=8):
    return {"start": at(start_day).isoformat(), "end": at(end_day).isoformat()}


def test_health(client):
    assert client.get("/health/live").json()["status"] == "ok"
    assert client.get("/health/ready").status_code == 200


def test_api_key_is_required(client):
    response = client.post("/v1/availability/search", json={})
    assert response.status_code == 401

    wrong = client.post("/v1/availability/search", json={}, headers={"X-API-Key": "nope"})
    assert wrong.status_code == 401


def test_search(client, hotel):
    response = client.post(
        "/v1/availability/search",
        headers=API_HEADERS,
        json={
            "reservation_start_date": at(1).isoformat(),
            "reservation_end_date": at(2).isoformat(),
            "filters": [{"bed_type": "KING_BED"}],
        },
    )

    assert response.status_code == 200
    [deluxe] = response.json()["results"]
    assert deluxe["available_count"] == 3
    assert [facility["name"] for facility in deluxe["available_facilities"]] == ["Room 101", "Room 102", "Room 103"]


def test_available_types(client, seed, hotel):
    seed.facility_type(name="Empty")

    response = client.get("/v1/availability/types", headers=API_HEADERS, params=_window())
    inverted = client.get("/v1/availability/types", headers=API_HEADERS, params=_window(8, 5))

    assert response.json() == {"facility_types": ["Deluxe"]}
    assert inverted.status_code == 422


def test_facility_availability(client, seed, hotel):
    _, rooms = hotel
    reservation_id = seed.reservation(at(5), at(8), facility_id=rooms["Room 101"])

    response = client.get(f"/v1/facilities/{rooms['Room 101']}/availability", headers=API_HEADERS, params=_window())
    missing = client.get("/v1/facilities/missing/availability", headers=API_HEADERS, params=_window())

    body = response.json()["availability"]
    assert body["is_available"] is False
    assert body["blocking_reservation_ids"] == [reservation_id]
    assert missing.status_code == 404


def test_assign(client, seed, hotel):
    _, rooms = hotel
    reservation_id = seed.reservation(at(5), at(8), facility_type="Deluxe")

    response = client.post(f"/v1/reservations/{reservation_id}/assign", headers=API_HEADERS)
    missing = client.post("/v1/reservations/missing/assign", headers=API_HEADERS)

    assert response.status_code == 200
    assert response.json()["facility_id"] == rooms["Room 101"]
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "NOT_FOUND"


def test_assign_with_date_overrides(client, seed, hotel):
    reservation_id = seed.reservation(at(5), at(8), facility_type="Deluxe")

    response = client.post(
        f"/v1/reservations/{reservation_id}/assign",
        headers=API_HEADERS,
        json={"check_in_date": at(5, 15).isoformat()},
    )

    assert response.status_code == 200


def test_assign_without_rooms_is_a_conflict(client, seed):
    seed.facility_type(name="Deluxe")
    reservation_id = seed.reservation(at(5), at(8), facility_type="Deluxe")

    response = client.post(f"/v1/reservations/{reservation_id}/assign", headers=API_HEADERS)

    assert response.status_code == 409
    assert response.json()["error_code"] == "NO_AVAILABILITY"


def test_assign_batch(client, seed, hotel):
    reservation_id = seed.reservation(at(5), at(8), facility_type="Deluxe")

    response = client.post(
        "/v1/reservations/assign-batch",
        headers=API_HEADERS,
        json={"assignments": [{"reservation_id": reservation_id}, {"reservation_id": "missing"}]},
    )
    empty = client.post("/v1/reservations/assign-batch", headers=API_HEADERS, json={"assignments": []})

    assert response.status_code == 200
    assert [item["success"] for item in response.json()["results"]] == [True, False]
    assert empty.status_code == 422


def test_status_change(client, seed):
    reservation_id = seed.reservation(at(5), at(8), status="CANCELLED")

    response = client.post(f"/v1/reservations/{reservation_id}/status", headers=API_HEADERS, json={"status": "CHECKED_IN"})

    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_STATE"


def test_pricing_quote(client, seed):
    rate_type_id = seed.rate_type(default_tax=10.0, default_discount=5.0)
    type_id = seed.facility_type(rate_type_id=rate_type_id)

    response = client.post(
        "/v1/pricing/quote",
        headers=API_HEADERS,
        json={
            "facility_type_id": type_id,
            "reservation_date": at(1).isoformat(),
            "reservation_end_date": at(3).isoformat(),
        },
    )

    assert response.status_code == 200
    assert response.json()["pricing"]["total_amount"] == 209.0


def test_hold_lifecycle(client, seed, hotel):
    _, rooms = hotel
    guest = seed.user("Gina Guest")
    fiona = seed.user("Fiona")
    omar = seed.user("Omar")
    payload = {
        "facility_id": rooms["Room 101"],
        "user_id": guest,
        "frontdesk_user_id": fiona,
        "session_id": "session-1",
        "reservation_date": at(5).isoformat(),
        "reservation_end_date": at(8).isoformat(),
    }

    created = client.post("/v1/holds", headers=API_HEADERS, json=payload)
    clash = client.post("/v1/holds", headers=API_HEADERS, json={**payload, "frontdesk_user_id": omar})
    hold_id = created.json()["temporary_reservation_id"]
    by_session = client.get("/v1/holds/session/session-1", headers=API_HEADERS)
    confirmed = client.post(f"/v1/holds/{hold_id}/confirm", headers=API_HEADERS, json={"guests": 2})
    cancel_after_confirm = client.post(f"/v1/holds/{hold_id}/cancel", headers=API_HEADERS)

    assert created.status_code == 200
    assert clash.status_code == 409
    assert clash.json()["conflict"]["held_by"] == "Fiona"
    assert [hold["id"] for hold in by_session.json()["holds"]] == [hold_id]
    assert confirmed.status_code == 200
    assert confirmed.json()["reservation_id"]
    assert cancel_after_confirm.status_code == 409
    assert client.get(f"/v1/holds/{hold_id}", headers=API_HEADERS).json()["holds"][0]["status"] == "CONFIRMED"


def test_confirm_expired_hold(client, seed, hotel):
    _, rooms = hotel
    guest = seed.user("Gina Guest")
    fiona = seed.user("Fiona")
    hold_id = seed.hold(guest, fiona, at(5), at(8), facility_id=rooms["Room 101"], expires_at=utc_now() - timedelta(minutes=1))

    response = client.post(f"/v1/holds/{hold_id}/confirm", headers=API_HEADERS)

    assert response.status_code == 409
    assert response.json()["error_code"] == "EXPIRED"


def test_admin_sweep_requires_admin_key(client):
    assert client.post("/v1/admin/holds/sweep", headers=API_HEADERS).status_code == 401

    response = client.post("/v1/admin/holds/sweep", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    assert response.json() == {"cleaned_count": 0}


def test_admin_facility_type_upsert(client):
    valid = client.post(
        "/v1/admin/facility-types",
        headers=ADMIN_HEADERS,
        json={
            "organization_id": ORG_ID,
            "name": "Board Room",
            "category": "CONFERENCE_ROOM",
            "price": 120.0,
            "metadata": {"seating_capacity": 12, "has_projector": True},
        },
    )
    invalid = client.post(
        "/v1/admin/facility-types",
        headers=ADMIN_HEADERS,
        json={"organization_id": ORG_ID, "name": "Board Room", "category": "CONFERENCE_ROOM", "metadata": {}},
    )

    assert valid.status_code == 200
    assert valid.json()["facility_type_id"]
    assert invalid.status_code == 422
    assert invalid.json()["error_code"] == "VALIDATION_ERROR"
