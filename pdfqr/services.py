"""Business logic services used by HTTP controllers and the CLI.

This module holds small service classes that coordinate repositories,
the migration runner and auxiliary logic. Services are intentionally
thin: they perform validation, execute domain logic and persist
aggregates via repositories.
"""

from datetime import date, datetime, time, timedelta, timezone
from passlib.context import CryptContext
from pathlib import Path
import csv
import io
import json
import logging
import re
import uuid
import jwt
from typing import List, Optional, Tuple
from sqlalchemy import func, inspect, select as sa_select, table
from sqlalchemy.engine import Engine
from sqlmodel import Session
from . import models, repositories
from .config import settings
from .database import table_exists
from .migrations import MigrationRunner, MigrationReport, MigrationStore, REGISTRY
from .migrations.registry import MigrationRegistry
from .utils.formatting import format_file_size

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JWT_SECRET = settings.JWT_SECRET
JWT_ALGORITHM = settings.JWT_ALGORITHM
JWT_EXPIRE_HOURS = settings.JWT_EXPIRE_HOURS

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
EXPORT_COLUMNS = ["id", "uuid", "created_at", "action", "entity_type", "entity_id",
                  "user_id", "ip_address", "details"]

logger = logging.getLogger("pdfqr.audit")


class AuthService:
    """Credential checks and token issuing."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def authenticate(self, username: str, password: str):
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_username(username)
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password):
            return None
        now = datetime.now(timezone.utc)
        self.user_repo.touch_last_login(user, now)
        expire = now + timedelta(hours=JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "username": user.username, "is_admin": bool(user.is_admin),
                   "exp": int(expire.timestamp())}
        return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


class AuditService:
    """Write audit entries and read them back for listing and export."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.AuditLogRepository(session)

    def log_activity(self, action: str, entity_type: str, entity_id: str, details: Optional[dict] = None,
                     user: Optional[models.User] = None, ip_address: Optional[str] = None) -> models.AuditLog:
        """Append an entry; `details` is stored as JSON text."""
        entry = models.AuditLog(
            uuid=str(uuid.uuid4()),
            user_id=user.id if user else None,
            user_uuid=user.uuid if user else None,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            details=json.dumps(details or {}, ensure_ascii=True),
            ip_address=ip_address,
        )
        return self.repo.create(entry)

    @staticmethod
    def parse_range(start_date: Optional[str], end_date: Optional[str],
                    today: Optional[date] = None) -> Tuple[datetime, datetime]:
        """Turn optional `YYYY-MM-DD` strings into an inclusive datetime range.

        Missing or malformed values fall back to the last
        `AUDIT_EXPORT_DEFAULT_DAYS` days ending today. Both bounds are UTC
        and the end bound covers the whole end day.
        """
        today = today or datetime.now(timezone.utc).date()
        default_start = today - timedelta(days=settings.AUDIT_EXPORT_DEFAULT_DAYS)
        start = _parse_day(start_date) or default_start
        end = _parse_day(end_date) or today
        return (datetime.combine(start, time.min, tzinfo=timezone.utc),
                datetime.combine(end, time.max, tzinfo=timezone.utc))

    def list_logs(self, start_date: Optional[str] = None, end_date: Optional[str] = None,
                  action: Optional[str] = None) -> List[models.AuditLog]:
        start, end = self.parse_range(start_date, end_date)
        return self.repo.list_between(start, end, action=action)

    def get_entry(self, entry_id: int) -> Optional[dict]:
        """Return a single entry with decoded details, or `None`."""
        entry = self.repo.get(entry_id)
        return self.to_dict(entry) if entry else None

    @staticmethod
    def decode_details(entry: models.AuditLog) -> dict:
        if not entry.details:
            return {}
        try:
            decoded = json.loads(entry.details)
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {}

    def to_dict(self, entry: models.AuditLog) -> dict:
        return {
            'id': entry.id,
            'uuid': entry.uuid,
            'created_at': entry.created_at.isoformat() if entry.created_at else None,
            'action': entry.action,
            'entity_type': entry.entity_type,
            'entity_id': entry.entity_id,
            'user_id': entry.user_id,
            'ip_address': entry.ip_address,
            'details': entry.details,
            'details_decoded': self.decode_details(entry),
        }

    def export_json(self, entries: List[models.AuditLog]) -> str:
        return json.dumps([self.to_dict(e) for e in entries], ensure_ascii=True, indent=2)

    def export_csv(self, entries: List[models.AuditLog]) -> str:
        buf = io.StringIO()
        writer = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS, extrasaction='ignore')
        writer.writeheader()
        for e in entries:
            writer.writerow(self.to_dict(e))
        return buf.getvalue()


def _parse_day(value: Optional[str]) -> Optional[date]:
    if not value or not _DATE_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def record_migration_run(engine: Engine, message: str, success: bool) -> None:
    """Audit hook for `MigrationRunner`: one `MIGRATION` entry per run."""
    with engine.connect() as conn:
        has_table = table_exists(conn, "audit_log")
    if not has_table:
        logger.warning("audit_log table missing; migration run not audited: %s", message)
        return
    with Session(engine) as session:
        AuditService(session).log_activity(
            'MIGRATION', 'system', 'migration', {'message': message, 'success': success}
        )


class MigrationService:
    """Run migrations and build the admin status view."""
    def __init__(self, engine: Engine, registry: MigrationRegistry = REGISTRY):
        self.engine = engine
        self.registry = registry
        self.store = MigrationStore(engine)

    def runner(self) -> MigrationRunner:
        return MigrationRunner(
            self.engine,
            self.registry,
            store=self.store,
            audit=lambda message, success: record_migration_run(self.engine, message, success),
        )

    def run(self) -> MigrationReport:
        return self.runner().run()

    def status(self) -> dict:
        """List registry names with applied/pending status.

        `applied` holds the raw ledger rows (newest first), which may include
        names no longer present in the registry.
        """
        self.store.ensure_ledger_exists()
        rows = self.store.list_applied()
        applied_at = {r.migration_name: r.applied_at for r in rows}
        items = []
        for name in self.registry.names():
            when = applied_at.get(name)
            items.append({
                'name': name,
                'status': 'applied' if name in applied_at else 'pending',
                'applied_at': when.isoformat() if when else None,
                'has_procedure': self.registry.get(name) is not None,
            })
        return {
            'migrations': items,
            'applied': [{'migration_name': r.migration_name, 'applied_at': r.applied_at.isoformat()} for r in rows],
            'pending_count': sum(1 for i in items if i['status'] == 'pending'),
        }


class DatabaseService:
    """Read-only statistics about the database."""
    def __init__(self, engine: Engine):
        self.engine = engine

    def stats(self) -> dict:
        """Return per-table row counts and the database file size."""
        tables = {}
        names = [n for n in inspect(self.engine).get_table_names() if not n.startswith('sqlite_')]
        with self.engine.connect() as conn:
            for name in sorted(names):
                count = conn.execute(sa_select(func.count()).select_from(table(name))).scalar()
                tables[name] = {'row_count': count}
        size = 0
        db_file = self.engine.url.database
        if db_file and db_file != ':memory:' and Path(db_file).exists():
            size = Path(db_file).stat().st_size
        return {
            'tables': tables,
            'table_count': len(tables),
            'total_records': sum(t['row_count'] for t in tables.values()),
            'size_bytes': size,
            'size_formatted': format_file_size(size),
        }


class SettingsService:
    def __init__(self, session: Session):
        self.repo = repositories.SettingRepository(session)

    def grouped(self) -> dict:
        """Return settings grouped by the key prefix before the first dot."""
        groups = {}
        for s in self.repo.list_all():
            category = s.setting_key.split('.', 1)[0]
            groups.setdefault(category, []).append({
                'key': s.setting_key,
                'value': s.setting_value,
                'description': s.setting_description,
                'type': s.setting_type,
                'is_public': bool(s.is_public),
                'is_editable': bool(s.is_editable),
            })
        return groups


class StorageService:
    """Storage usage against the `storage.max_space` quota."""
    DEFAULT_MAX_SPACE = 1048576000
    DEFAULT_WARNING_THRESHOLD = 80

    def __init__(self, session: Session):
        self.settings_repo = repositories.SettingRepository(session)
        self.document_repo = repositories.DocumentRepository(session)

    def _int_setting(self, key: str, default: int) -> int:
        try:
            return int(self.settings_repo.get_value(key, str(default)))
        except (TypeError, ValueError):
            return default

    def usage(self, largest: int = 10) -> dict:
        """Totals, percentage used (clamped to 0-100) and the warning flag."""
        files, total = self.document_repo.totals()
        max_space = self._int_setting('storage.max_space', self.DEFAULT_MAX_SPACE)
        threshold = self._int_setting('storage.warning_threshold', self.DEFAULT_WARNING_THRESHOLD)
        percent = 100.0 if max_space <= 0 else min(100.0, max(0.0, total / max_space * 100))
        return {
            'total_files': files,
            'total_size': total,
            'total_size_formatted': format_file_size(total),
            'max_space': max_space,
            'max_space_formatted': format_file_size(max_space),
            'percent_used': round(percent, 1),
            'warning_threshold': threshold,
            'warning': percent >= threshold,
            'average_file_size': total // files if files else 0,
            'largest_files': [
                {'id': d.id, 'uuid': d.uuid, 'title': d.title, 'original_filename': d.original_filename,
                 'file_size': d.file_size, 'file_size_formatted': format_file_size(d.file_size)}
                for d in self.document_repo.largest(largest)
            ],
        }
