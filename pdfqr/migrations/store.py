"""Ledger of applied migrations backed by the `migrations` table."""

from __future__ import annotations

from datetime import datetime
from typing import List

from sqlalchemy.engine import Connection, Engine
from sqlmodel import Session, select

from ..models import MigrationRecord


class MigrationStore:
    """Read and append ledger rows.

    The store never updates or deletes rows; operators may delete rows
    out-of-band to force a migration to run again.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def ensure_ledger_exists(self) -> None:
        """Create the ledger table if it is missing (idempotent)."""
        MigrationRecord.__table__.create(self.engine, checkfirst=True)

    def list_applied_names(self) -> List[str]:
        """Return applied migration names in the order they were recorded."""
        with Session(self.engine) as session:
            stmt = select(MigrationRecord.migration_name).order_by(MigrationRecord.id)
            return list(session.exec(stmt).all())

    def list_applied(self) -> List[MigrationRecord]:
        """Return ledger rows newest first, for display."""
        with Session(self.engine) as session:
            stmt = select(MigrationRecord).order_by(MigrationRecord.id.desc())
            return list(session.exec(stmt).all())

    def record_applied(self, conn: Connection, name: str, applied_at: datetime) -> None:
        """Insert a ledger row inside the caller's transaction.

        Raises `sqlalchemy.exc.IntegrityError` if `name` is already recorded.
        """
        conn.execute(
            MigrationRecord.__table__.insert().values(migration_name=name, applied_at=applied_at)
        )
