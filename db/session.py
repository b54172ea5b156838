from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings

settings = get_settings()


class TransactionTimeoutError(Exception):
    """Raised when a bounded transaction outlives its time budget."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Transaction exceeded its {timeout_seconds:g}s time budget.")


engine = create_engine(settings.database_url, pool_pre_ping=True, future=True)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)


@contextmanager
def timed_transaction(db: Session, timeout_seconds: float) -> Iterator[Session]:
    """Run a transaction that rolls back when it outlives ``timeout_seconds``.

    On PostgreSQL the budget is also pushed to the server as a
    transaction-local ``statement_timeout`` so a blocked statement is
    cancelled instead of waiting forever.
    """
    deadline = time.monotonic() + timeout_seconds
    with db.begin():
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_seconds * 1000)}"))
        yield db
        if time.monotonic() > deadline:
            raise TransactionTimeoutError(timeout_seconds)


def init_db() -> None:
    """Bootstrap schema for environments without migrations."""
    from availability.models import Base

    Base.metadata.create_all(bind=engine)


def validate_db_compatibility() -> None:
    """Refuse to start against a database that lacks any mapped table or column."""
    from availability.models import Base

    inspector = inspect(engine)
    existing_tables = set(inspector.get_table_names())

    problems: list[str] = []
    for table in Base.metadata.sorted_tables:
        if table.name not in existing_tables:
            problems.append(f"table {table.name} is missing")
            continue
        present = {column["name"] for column in inspector.get_columns(table.name)}
        absent = [column.name for column in table.columns if column.name not in present]
        if absent:
            problems.append(f"{table.name} lacks {', '.join(absent)}")

    if problems:
        raise RuntimeError(
            f"Database schema is out of date: {'; '.join(problems)}. Apply migrations before starting the service."
        )
