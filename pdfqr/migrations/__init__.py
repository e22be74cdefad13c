"""
Database migrations for PDF QR Link.

Migrations are named procedures taking a SQLAlchemy connection. They are
declared in order in `versions.REGISTRY`, tracked in the `migrations`
ledger table and applied by `MigrationRunner`, one transaction each.
"""

# Export the public pieces for stable imports
from .errors import MigrationError, BenignConflict
from .registry import Migration, MigrationRegistry
from .store import MigrationStore
from .runner import MigrationRunner, MigrationReport, Outcome
from .versions import REGISTRY
