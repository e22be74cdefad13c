"""Ordered registry of named migrations.

The order of a registry is the order of the names it is built with, not
the order in which procedures get bound and not the lexical order of the
names. Procedures are bound to names explicitly:

    registry = MigrationRegistry(["create_tables", "add_flags"])

    @registry.migration("create_tables")
    def create_tables(conn):
        conn.exec_driver_sql("CREATE TABLE IF NOT EXISTS ...")

A declared name without a bound procedure is allowed; the runner skips it
and logs a warning.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from sqlalchemy.engine import Connection

Procedure = Callable[[Connection], None]


@dataclass(frozen=True)
class Migration:
    """A named schema or seed-data mutation.

    `accept_conflicts` declares that a uniqueness violation raised while
    running `procedure` comes from pre-existing data and is safe to skip.
    """
    name: str
    procedure: Procedure
    accept_conflicts: bool = False


class MigrationRegistry:
    def __init__(self, names: Iterable[str]):
        ordered = tuple(names)
        if len(set(ordered)) != len(ordered):
            raise ValueError("migration names must be unique")
        self._names: Tuple[str, ...] = ordered
        self._migrations: Dict[str, Migration] = {}

    def names(self) -> Tuple[str, ...]:
        """Return every declared name in declaration order."""
        return self._names

    def get(self, name: str) -> Optional[Migration]:
        """Return the migration bound to `name` or `None`."""
        return self._migrations.get(name)

    def add(self, name: str, procedure: Procedure, accept_conflicts: bool = False) -> Migration:
        if name not in self._names:
            raise ValueError(f"migration {name!r} is not declared in this registry")
        if name in self._migrations:
            raise ValueError(f"migration {name!r} already has a procedure")
        migration = Migration(name=name, procedure=procedure, accept_conflicts=accept_conflicts)
        self._migrations[name] = migration
        return migration

    def migration(self, name: str, accept_conflicts: bool = False):
        """Decorator form of `add`; returns the function unchanged."""
        def decorator(fn: Procedure) -> Procedure:
            self.add(name, fn, accept_conflicts=accept_conflicts)
            return fn
        return decorator

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._names
