"""Migration runner.

Applies the pending migrations of a registry in declaration order, each
inside its own transaction together with its ledger row. Failures are
caught at the per-migration boundary and classified:

- configuration error: a declared name has no procedure; skipped with a
  warning, the run continues.
- benign conflict: the procedure raised `BenignConflict`, raised a
  uniqueness `IntegrityError` while declaring `accept_conflicts`, or another run
  recorded the same name first; rolled back, the run continues.
- fatal: anything else; rolled back and the run stops.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from ..database import table_exists
from .errors import BenignConflict
from .registry import Migration, MigrationRegistry
from .store import MigrationStore

logger = logging.getLogger("pdfqr.migrations")

AuditHook = Callable[[str, bool], None]

_UNIQUENESS_CODES = (sqlite3.SQLITE_CONSTRAINT_UNIQUE, sqlite3.SQLITE_CONSTRAINT_PRIMARYKEY)


def _is_uniqueness_violation(exc: Exception) -> bool:
    """True for UNIQUE or PRIMARY KEY violations; NOT NULL, CHECK and FK do not count."""
    if not isinstance(exc, IntegrityError):
        return False
    return getattr(exc.orig, "sqlite_errorcode", None) in _UNIQUENESS_CODES


class LedgerConflict(BenignConflict):
    """The ledger already holds the name, usually from a concurrent run."""


class Outcome(str, Enum):
    SUCCESS = "success"
    SUCCESS_WITH_SKIPS = "success_with_skips"
    FAILED = "failed"


@dataclass
class MigrationReport:
    """Result of a single `MigrationRunner.run` call."""
    pending: List[str] = field(default_factory=list)
    applied: List[str] = field(default_factory=list)
    skipped: List[dict] = field(default_factory=list)
    misconfigured: List[str] = field(default_factory=list)
    failed: Optional[str] = None
    error: Optional[str] = None

    @property
    def outcome(self) -> Outcome:
        if self.error is not None:
            return Outcome.FAILED
        if self.skipped or self.misconfigured:
            return Outcome.SUCCESS_WITH_SKIPS
        return Outcome.SUCCESS

    @property
    def success(self) -> bool:
        return self.outcome is not Outcome.FAILED

    @property
    def summary(self) -> str:
        """Short text used for the audit record."""
        return f"Applied {len(self.applied)} migrations"

    @property
    def message(self) -> str:
        if not self.pending and self.error is None:
            return "No pending migrations."
        parts = [self.summary + "."]
        if self.skipped:
            parts.append("Skipped (conflict): " + ", ".join(s["name"] for s in self.skipped) + ".")
        if self.misconfigured:
            parts.append("Skipped (no procedure): " + ", ".join(self.misconfigured) + ".")
        if self.error is not None:
            if self.failed:
                parts.append(f"Migration {self.failed} failed: {self.error}")
            else:
                parts.append(f"Migration run failed: {self.error}")
        return " ".join(parts)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "success": self.success,
            "message": self.message,
            "pending": list(self.pending),
            "applied": list(self.applied),
            "skipped": [dict(s) for s in self.skipped],
            "misconfigured": list(self.misconfigured),
            "failed": self.failed,
            "error": self.error,
        }


class MigrationRunner:
    def __init__(
        self,
        engine: Engine,
        registry: MigrationRegistry,
        store: Optional[MigrationStore] = None,
        audit: Optional[AuditHook] = None,
    ):
        self.engine = engine
        self.registry = registry
        self.store = store or MigrationStore(engine)
        self.audit = audit

    def pending(self) -> List[str]:
        """Return registry names absent from the ledger, in registry order."""
        self.store.ensure_ledger_exists()
        applied = set(self.store.list_applied_names())
        return [name for name in self.registry.names() if name not in applied]

    def run(self) -> MigrationReport:
        """Apply every pending migration and return a report.

        Never raises for migration failures; inspect `report.outcome`.
        """
        report = MigrationReport()
        try:
            report.pending = self.pending()
        except Exception as exc:
            logger.exception("migration_ledger_unavailable")
            report.error = str(exc)
            return report

        if not report.pending:
            return report

        for name in report.pending:
            migration = self.registry.get(name)
            if migration is None:
                logger.warning("Migration %s has no procedure registered; skipping", name)
                report.misconfigured.append(name)
                continue
            try:
                self._apply(migration)
            except Exception as exc:
                reason = self._classify(migration, exc)
                if reason is None:
                    logger.error(
                        "migration_failed %s",
                        json.dumps({"migration": name, "error": str(exc)}, ensure_ascii=True),
                    )
                    report.failed = name
                    report.error = str(exc)
                    break
                logger.warning(
                    "migration_skipped %s",
                    json.dumps({"migration": name, "reason": reason, "error": str(exc)}, ensure_ascii=True),
                )
                report.skipped.append({"name": name, "reason": reason, "error": str(exc)})
                continue
            report.applied.append(name)

        self._record_audit(report)
        return report

    def _apply(self, migration: Migration) -> None:
        applied_at = datetime.now(timezone.utc)
        with self.engine.begin() as conn:
            migration.procedure(conn)
            try:
                self.store.record_applied(conn, migration.name, applied_at)
            except IntegrityError as exc:
                raise LedgerConflict(f"{migration.name} is already recorded") from exc
            if table_exists(conn, "settings"):
                conn.exec_driver_sql(
                    "UPDATE settings SET setting_value = ? WHERE setting_key = 'system.last_migration'",
                    (migration.name,),
                )
        logger.info(
            "migration_applied %s",
            json.dumps({"migration": migration.name, "applied_at": applied_at.isoformat()}, ensure_ascii=True),
        )

    @staticmethod
    def _classify(migration: Migration, exc: Exception) -> Optional[str]:
        """Return a skip reason for benign failures, `None` for fatal ones."""
        if isinstance(exc, LedgerConflict):
            return "already recorded"
        if isinstance(exc, BenignConflict):
            return "conflict reported by migration"
        if migration.accept_conflicts and _is_uniqueness_violation(exc):
            return "conflict with existing data"
        return None

    def _record_audit(self, report: MigrationReport) -> None:
        if self.audit is None:
            return
        try:
            self.audit(report.summary, report.success)
        except Exception:
            logger.exception("Failed to log migration run")
