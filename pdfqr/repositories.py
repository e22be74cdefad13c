"""Repository classes encapsulating database operations.

Each repository is small and focused on a single table (users, settings,
audit log, documents). Repositories return SQLModel objects and perform
commits/refreshes where appropriate.
"""

from datetime import datetime
from typing import List, Optional
from sqlmodel import Session, select
from sqlalchemy import func
from . import models


class UserRepository:
    """Lookups and login bookkeeping for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def touch_last_login(self, user: models.User, when: datetime) -> models.User:
        user.last_login = when
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user


class SettingRepository:
    """Read access to the `settings` key/value table."""
    def __init__(self, session: Session):
        self.session = session

    def get_value(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return the value stored under `key`, or `default`."""
        stmt = select(models.Setting.setting_value).where(models.Setting.setting_key == key)
        value = self.session.exec(stmt).first()
        return default if value is None else value

    def list_all(self) -> List[models.Setting]:
        stmt = select(models.Setting).order_by(models.Setting.setting_key)
        return self.session.exec(stmt).all()


class AuditLogRepository:
    """Append and query `AuditLog` entries."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, entry: models.AuditLog) -> models.AuditLog:
        """Persist a new audit entry and return the managed instance."""
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def list_between(self, start: datetime, end: datetime, action: Optional[str] = None) -> List[models.AuditLog]:
        """Return entries with `start <= created_at <= end`, newest first."""
        stmt = select(models.AuditLog).where(
            models.AuditLog.created_at >= start,
            models.AuditLog.created_at <= end
        )
        if action:
            stmt = stmt.where(models.AuditLog.action == action)
        stmt = stmt.order_by(models.AuditLog.created_at.desc(), models.AuditLog.id.desc())
        return self.session.exec(stmt).all()

    def get(self, entry_id: int) -> Optional[models.AuditLog]:
        return self.session.get(models.AuditLog, entry_id)

    def count_by_action(self, action: str) -> int:
        stmt = select(func.count()).select_from(models.AuditLog).where(models.AuditLog.action == action)
        return self.session.exec(stmt).one()


class DocumentRepository:
    """Aggregate queries over uploaded documents."""
    def __init__(self, session: Session):
        self.session = session

    def totals(self) -> tuple:
        """Return `(file_count, total_bytes)`."""
        stmt = select(func.count(), func.coalesce(func.sum(models.Document.file_size), 0))
        count, total = self.session.exec(stmt.select_from(models.Document)).one()
        return int(count), int(total)

    def largest(self, limit: int = 10) -> List[models.Document]:
        stmt = select(models.Document).order_by(models.Document.file_size.desc(), models.Document.id).limit(limit)
        return self.session.exec(stmt).all()
