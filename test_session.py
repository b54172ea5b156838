import pytest
from sqlalchemy import Column, MetaData, String, Table
from sqlalchemy.pool import StaticPool

import db.session
from availability.models import Base
from conftest import engine
from db.session import SessionLocal, init_db, validate_db_compatibility


def test_complete_schema_passes():
    validate_db_compatibility()


def test_missing_table_is_reported():
    Base.metadata.tables["temporary_reservations"].drop(engine)

    with pytest.raises(RuntimeError, match="table temporary_reservations is missing"):
        validate_db_compatibility()

    init_db()
    validate_db_compatibility()


def test_missing_column_is_reported():
    Base.metadata.tables["maintenance_records"].drop(engine)
    Table("maintenance_records", MetaData(), Column("id", String, primary_key=True)).create(engine)

    with pytest.raises(RuntimeError, match="maintenance_records lacks facility_id") as excinfo:
        validate_db_compatibility()

    assert "Apply migrations" in str(excinfo.value)


def test_sessions_run_on_the_suites_shared_connection():
    assert isinstance(engine.pool, StaticPool)
    assert db.session.engine is engine
    assert SessionLocal.kw["bind"] is engine
