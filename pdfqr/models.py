"""SQLModel data models.

This module maps the application's tables onto SQLModel classes. Apart
from `MigrationRecord`, which the migration store creates itself, the
tables are created by the procedures in `pdfqr.migrations.versions`;
the classes here only describe the columns the application reads and
writes.
"""

from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone


class MigrationRecord(SQLModel, table=True):
    """A ledger row: one successfully applied migration."""
    __tablename__ = "migrations"

    id: Optional[int] = Field(default=None, primary_key=True)
    migration_name: str = Field(nullable=False, unique=True)
    applied_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class User(SQLModel, table=True):
    """An account able to log in.

    Fields:
    - `username`: unique login name
    - `password`: hashed password string (never store plaintext)
    - `is_admin`: grants access to the `/admin` routes
    """
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: Optional[str] = None
    username: str = Field(nullable=False, unique=True)
    password: str
    email: Optional[str] = None
    is_admin: bool = False
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Setting(SQLModel, table=True):
    """A key/value application setting, grouped by the key prefix."""
    __tablename__ = "settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    setting_key: str = Field(nullable=False, unique=True)
    setting_value: str
    setting_description: Optional[str] = None
    setting_type: Optional[str] = "text"
    is_public: bool = False
    is_editable: bool = True
    updated_at: Optional[datetime] = None


class AuditLog(SQLModel, table=True):
    """An audit trail entry.

    `details` holds a JSON encoded object; use
    `services.AuditService.decode_details` to read it back.
    """
    __tablename__ = "audit_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: Optional[str] = None
    user_id: Optional[int] = None
    user_uuid: Optional[str] = None
    action: str
    entity_type: str
    entity_id: str
    entity_uuid: Optional[str] = None
    details: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Document(SQLModel, table=True):
    """An uploaded PDF; only the columns used for storage reporting are mapped."""
    __tablename__ = "documents"

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: Optional[str] = None
    title: str
    original_filename: str
    file_size: int
    created_at: Optional[datetime] = None
