"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine for the SQLite
database and provides small helpers used by the application, the CLI
and tests. The schema itself is owned by the migrations in
`pdfqr.migrations`; nothing here calls `metadata.create_all`.

SQLite's DB-API driver does not open a transaction before DDL
statements, so `CREATE TABLE` / `ALTER TABLE` would commit on their own.
`create_app_engine` switches the driver to autocommit mode and emits
`BEGIN` whenever SQLAlchemy starts a transaction, which makes DDL roll
back together with the rest of a migration.
"""

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, create_engine

from .config import settings


def create_app_engine(url: str, echo: bool = False) -> Engine:
    """Build an engine for `url` with transactional DDL on SQLite.

    Only SQLite URLs are accepted: the migrations and the schema helpers
    below rely on SQLite DDL and `sqlite_master`.
    """
    if not url.startswith("sqlite"):
        raise ValueError(f"unsupported database URL (SQLite only): {url}")

    eng = create_engine(url, echo=echo, connect_args={"check_same_thread": False})

    @event.listens_for(eng, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return eng


engine = create_app_engine(settings.DATABASE_URL)


def table_exists(conn, name: str) -> bool:
    """Return True if a table called `name` exists on `conn` (SQLite)."""
    row = conn.exec_driver_sql(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).first()
    return row is not None


def column_names(conn, table: str) -> set:
    """Return the set of column names of `table` using PRAGMA table_info."""
    rows = conn.exec_driver_sql(f"PRAGMA table_info({table})").mappings().all()
    return {r["name"] for r in rows}


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
