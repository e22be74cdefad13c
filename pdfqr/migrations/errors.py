"""Exceptions raised by migration procedures and the runner."""


class MigrationError(Exception):
    """Base class for migration failures."""


class BenignConflict(MigrationError):
    """Raised by a procedure whose effect already exists outside the ledger.

    The runner rolls the migration back, leaves it unrecorded and carries
    on with the next pending migration.
    """
