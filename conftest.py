import os
from datetime import datetime, timedelta, timezone

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AVAILABILITY_API_KEY"] = "test-api-key"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["HOLD_SWEEP_INTERVAL_MINUTES"] = "0"

import pytest
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.pool import StaticPool

import db.session
from availability.models import (
    Base,
    Facility,
    FacilityLocation,
    FacilityType,
    MaintenanceRecord,
    RateType,
    Reservation,
    TemporaryReservation,
    User,
)
from db.session import SessionLocal

ORG_ID = "org-1"

# One shared in-memory connection for every session the code under test opens.
engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)


# pysqlite defers BEGIN on its own, which breaks SAVEPOINT handling.
@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, _connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


db.session.engine = engine
SessionLocal.configure(bind=engine)


def at(day: int, hour: int = 0) -> datetime:
    """A fixed UTC instant in January 2030."""
    return datetime(2030, 1, day, hour, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Seeder:
    """Writes rows straight through the ORM, one committed session per call."""

    def _add(self, row):
        with SessionLocal() as db:
            with db.begin():
                db.add(row)
                db.flush()
                return row.id

    def user(self, user_name="Alice", email=None):
        return self._add(User(user_name=user_name, email=email))

    def rate_type(self, default_tax=0.0, default_discount=0.0, name="Standard", organization_id=ORG_ID):
        return self._add(
            RateType(
                organization_id=organization_id,
                name=name,
                default_tax=default_tax,
                default_discount=default_discount,
            )
        )

    def facility_type(
        self,
        name="Deluxe",
        category="HOTEL",
        price=100.0,
        metadata=None,
        rate_type_id=None,
        organization_id=ORG_ID,
    ):
        return self._add(
            FacilityType(
                organization_id=organization_id,
                name=name,
                category=category,
                price=price,
                type_metadata=metadata or {},
                rate_type_id=rate_type_id,
            )
        )

    def location(self, name="East Wing", floor="1"):
        return self._add(FacilityLocation(organization_id=ORG_ID, name=name, floor=floor))

    def facility(self, facility_type_id, name, is_deleted=False, location_id=None, metadata=None, organization_id=ORG_ID):
        return self._add(
            Facility(
                organization_id=organization_id,
                facility_type_id=facility_type_id,
                facility_location_id=location_id,
                name=name,
                facility_metadata=metadata,
                is_deleted=is_deleted,
            )
        )

    def reservation(
        self,
        start,
        end,
        facility_id=None,
        facility_type=None,
        status="RESERVED",
        user_id=None,
        organization_id=ORG_ID,
    ):
        return self._add(
            Reservation(
                organization_id=organization_id,
                facility_id=facility_id,
                facility_type=facility_type,
                user_id=user_id,
                reservation_date=start,
                reservation_end_date=end,
                status=status,
            )
        )

    def maintenance(self, facility_id, status="PENDING", date=None, start_date=None, end_date=None):
        return self._add(
            MaintenanceRecord(
                facility_id=facility_id,
                status=status,
                date=date,
                start_date=start_date,
                end_date=end_date,
            )
        )

    def hold(
        self,
        user_id,
        frontdesk_user_id,
        start,
        end,
        facility_id=None,
        facility_type=None,
        status="PENDING",
        expires_at=None,
        session_id="session-1",
        created_at=None,
        organization_id=ORG_ID,
    ):
        now = utc_now()
        return self._add(
            TemporaryReservation(
                organization_id=organization_id,
                facility_id=facility_id,
                facility_type=facility_type,
                user_id=user_id,
                frontdesk_user_id=frontdesk_user_id,
                session_id=session_id,
                reservation_date=start,
                reservation_end_date=end,
                status=status,
                expires_at=expires_at or now + timedelta(minutes=10),
                created_at=created_at or now,
            )
        )

    def get(self, model, row_id):
        with SessionLocal() as db:
            return db.get(model, row_id)

    def count(self, model):
        with SessionLocal() as db:
            return db.scalar(select(func.count()).select_from(model))


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def seed():
    return Seeder()


@pytest.fixture
def hotel(seed):
    """One HOTEL type with three rooms named out of insertion order."""
    type_id = seed.facility_type(
        name="Deluxe",
        metadata={"bed_type": "KING_BED", "bed_count": 1, "max_occupancy": 2, "amenities": ["MINIBAR"]},
    )
    rooms = {
        "Room 102": seed.facility(type_id, "Room 102", metadata={"room_number": "102"}),
        "Room 101": seed.facility(type_id, "Room 101", metadata={"room_number": "101"}),
        "Room 103": seed.facility(type_id, "Room 103", metadata={"room_number": "103"}),
    }
    return type_id, rooms
