import pytest
from sqlalchemy import inspect

from pdfqr.database import column_names
from pdfqr.migrations import BenignConflict, MigrationRegistry, MigrationRunner, MigrationStore, Outcome


def _make_table(name):
    def procedure(conn):
        conn.exec_driver_sql(f"CREATE TABLE IF NOT EXISTS {name} (id INTEGER PRIMARY KEY)")
    return procedure


def _fail(message):
    def procedure(conn):
        raise RuntimeError(message)
    return procedure


def _tables(engine):
    return set(inspect(engine).get_table_names())


def test_applies_all_pending_then_second_run_is_empty(engine):
    registry = MigrationRegistry(["a", "b"])
    registry.add("a", _make_table("t_a"))
    registry.add("b", _make_table("t_b"))

    first = MigrationRunner(engine, registry).run()
    assert first.outcome is Outcome.SUCCESS
    assert first.applied == ["a", "b"]
    assert {"t_a", "t_b", "migrations"} <= _tables(engine)

    second = MigrationRunner(engine, registry).run()
    assert second.outcome is Outcome.SUCCESS
    assert second.pending == []
    assert second.applied == []
    assert second.message == "No pending migrations."


def test_registry_order_wins_over_name_order(engine):
    calls = []
    registry = MigrationRegistry(["zeta", "alpha"])

    @registry.migration("alpha")
    def alpha(conn):
        calls.append("alpha")

    @registry.migration("zeta")
    def zeta(conn):
        calls.append("zeta")

    report = MigrationRunner(engine, registry).run()
    assert report.success
    assert calls == ["zeta", "alpha"]
    assert MigrationStore(engine).list_applied_names() == ["zeta", "alpha"]


def test_failed_migration_leaves_no_trace(engine):
    registry = MigrationRegistry(["base", "broken"])
    registry.add("base", _make_table("docs"))

    @registry.migration("broken")
    def broken(conn):
        conn.exec_driver_sql("CREATE TABLE half_done (id INTEGER PRIMARY KEY)")
        conn.exec_driver_sql("ALTER TABLE docs ADD COLUMN expiry_date DATETIME")
        conn.exec_driver_sql("INSERT INTO docs (id) VALUES (1)")
        raise RuntimeError("disk on fire")

    report = MigrationRunner(engine, registry).run()
    assert report.outcome is Outcome.FAILED
    assert "half_done" not in _tables(engine)
    with engine.connect() as conn:
        assert "expiry_date" not in column_names(conn, "docs")
        assert conn.exec_driver_sql("SELECT COUNT(*) FROM docs").scalar() == 0
    assert MigrationStore(engine).list_applied_names() == ["base"]


def test_fatal_failure_stops_the_run(engine):
    calls = []
    registry = MigrationRegistry(["a", "b", "c"])
    registry.add("a", lambda conn: calls.append("a"))

    @registry.migration("b")
    def b(conn):
        calls.append("b")
        raise RuntimeError("boom")

    registry.add("c", lambda conn: calls.append("c"))

    report = MigrationRunner(engine, registry).run()
    assert report.outcome is Outcome.FAILED
    assert not report.success
    assert report.applied == ["a"]
    assert report.failed == "b"
    assert "boom" in report.error
    assert "b failed" in report.message
    assert calls == ["a", "b"]
    assert MigrationStore(engine).list_applied_names() == ["a"]


def test_rerun_after_fatal_failure_only_retries_remaining(engine):
    calls = []
    broken = MigrationRegistry(["a", "b", "c"])
    broken.add("a", lambda conn: calls.append("a"))
    broken.add("b", _fail("not yet"))
    broken.add("c", lambda conn: calls.append("c"))
    assert MigrationRunner(engine, broken).run().failed == "b"

    fixed = MigrationRegistry(["a", "b", "c"])
    fixed.add("a", lambda conn: calls.append("a"))
    fixed.add("b", lambda conn: calls.append("b"))
    fixed.add("c", lambda conn: calls.append("c"))
    report = MigrationRunner(engine, fixed).run()

    assert report.outcome is Outcome.SUCCESS
    assert report.applied == ["b", "c"]
    assert calls == ["a", "b", "c"]
    assert MigrationStore(engine).list_applied_names() == ["a", "b", "c"]


def _seed_admin(conn):
    conn.exec_driver_sql("CREATE TABLE IF NOT EXISTS accounts (username TEXT NOT NULL UNIQUE)")
    conn.exec_driver_sql("INSERT INTO accounts (username) VALUES ('admin')")


def test_declared_conflict_is_skipped_and_run_continues(engine):
    with engine.begin() as conn:
        conn.exec_driver_sql("CREATE TABLE accounts (username TEXT NOT NULL UNIQUE)")
        conn.exec_driver_sql("INSERT INTO accounts (username) VALUES ('admin')")

    registry = MigrationRegistry(["a", "seed", "c"])
    registry.add("a", _make_table("t_a"))
    registry.add("seed", _seed_admin, accept_conflicts=True)
    registry.add("c", _make_table("t_c"))

    report = MigrationRunner(engine, registry).run()
    assert report.success
    assert report.outcome is Outcome.SUCCESS_WITH_SKIPS
    assert report.applied == ["a", "c"]
    assert [s["name"] for s in report.skipped] == ["seed"]
    assert MigrationStore(engine).list_applied_names() == ["a", "c"]


def test_undeclared_conflict_is_fatal(engine):
    with engine.begin() as conn:
        conn.exec_driver_sql("CREATE TABLE accounts (username TEXT NOT NULL UNIQUE)")
        conn.exec_driver_sql("INSERT INTO accounts (username) VALUES ('admin')")

    registry = MigrationRegistry(["seed", "c"])
    registry.add("seed", _seed_admin)
    registry.add("c", _make_table("t_c"))

    report = MigrationRunner(engine, registry).run()
    assert report.outcome is Outcome.FAILED
    assert report.failed == "seed"
    assert "t_c" not in _tables(engine)


def test_declared_conflicts_cover_only_uniqueness_violations(engine):
    with engine.begin() as conn:
        conn.exec_driver_sql("CREATE TABLE accounts (username TEXT NOT NULL UNIQUE)")

    registry = MigrationRegistry(["seed", "c"])

    @registry.migration("seed", accept_conflicts=True)
    def seed(conn):
        conn.exec_driver_sql("INSERT INTO accounts (username) VALUES (NULL)")

    registry.add("c", _make_table("t_c"))

    report = MigrationRunner(engine, registry).run()
    assert report.outcome is Outcome.FAILED
    assert report.failed == "seed"
    assert report.skipped == []
    assert "NOT NULL" in report.error
    assert "t_c" not in _tables(engine)
    assert MigrationStore(engine).list_applied_names() == []


def test_conflict_message_text_alone_is_not_benign(engine):
    registry = MigrationRegistry(["a"])

    @registry.migration("a", accept_conflicts=True)
    def a(conn):
        raise RuntimeError("UNIQUE constraint failed: users.username")

    report = MigrationRunner(engine, registry).run()
    assert report.outcome is Outcome.FAILED


def test_procedure_can_report_benign_conflict(engine):
    registry = MigrationRegistry(["a", "b"])

    @registry.migration("a")
    def a(conn):
        conn.exec_driver_sql("CREATE TABLE t_a (id INTEGER PRIMARY KEY)")
        raise BenignConflict("already seeded elsewhere")

    registry.add("b", _make_table("t_b"))

    report = MigrationRunner(engine, registry).run()
    assert report.outcome is Outcome.SUCCESS_WITH_SKIPS
    assert report.applied == ["b"]
    assert "t_a" not in _tables(engine)


def test_missing_procedure_is_skipped_with_warning(engine, caplog):
    registry = MigrationRegistry(["a", "ghost", "c"])
    registry.add("a", _make_table("t_a"))
    registry.add("c", _make_table("t_c"))

    with caplog.at_level("WARNING", logger="pdfqr.migrations"):
        report = MigrationRunner(engine, registry).run()

    assert report.success
    assert report.misconfigured == ["ghost"]
    assert report.applied == ["a", "c"]
    assert "ghost" in caplog.text
    assert "ghost" not in MigrationStore(engine).list_applied_names()


class _StaleStore(MigrationStore):
    """Simulates a concurrent run that recorded migrations after our read."""
    def list_applied_names(self):
        return []


def test_name_recorded_by_concurrent_run_is_benign(engine):
    registry = MigrationRegistry(["a", "b"])
    registry.add("a", _make_table("t_a"))
    registry.add("b", _make_table("t_b"))
    assert MigrationRunner(engine, registry).run().applied == ["a", "b"]

    with engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE t_b")

    report = MigrationRunner(engine, registry, store=_StaleStore(engine)).run()
    assert report.outcome is Outcome.SUCCESS_WITH_SKIPS
    assert [s["reason"] for s in report.skipped] == ["already recorded", "already recorded"]
    assert "t_b" not in _tables(engine)
    assert MigrationStore(engine).list_applied_names() == ["a", "b"]


def test_ledger_only_grows(engine):
    first = MigrationRegistry(["a"])
    first.add("a", _make_table("t_a"))
    MigrationRunner(engine, first).run()
    before = MigrationStore(engine).list_applied_names()

    second = MigrationRegistry(["a", "b"])
    second.add("a", _make_table("t_a"))
    second.add("b", _fail("nope"))
    MigrationRunner(engine, second).run()

    after = MigrationStore(engine).list_applied_names()
    assert set(before) <= set(after)


def test_audit_hook_called_once_per_run_with_work(engine):
    calls = []
    registry = MigrationRegistry(["a", "b"])
    registry.add("a", _make_table("t_a"))
    registry.add("b", _make_table("t_b"))
    runner = MigrationRunner(engine, registry, audit=lambda message, ok: calls.append((message, ok)))

    runner.run()
    runner.run()
    assert calls == [("Applied 2 migrations", True)]


def test_audit_hook_failure_does_not_change_outcome(engine):
    def broken_audit(message, ok):
        raise RuntimeError("audit store down")

    registry = MigrationRegistry(["a"])
    registry.add("a", _make_table("t_a"))
    report = MigrationRunner(engine, registry, audit=broken_audit).run()
    assert report.outcome is Outcome.SUCCESS


def test_unreachable_ledger_reports_failure(tmp_path):
    from pdfqr.database import create_app_engine

    eng = create_app_engine(f"sqlite:///{tmp_path / 'missing' / 'nested' / 'x.db'}")
    registry = MigrationRegistry(["a"])
    registry.add("a", _make_table("t_a"))
    report = MigrationRunner(eng, registry).run()
    assert report.outcome is Outcome.FAILED
    assert report.failed is None
    assert report.error


def test_registry_rejects_bad_declarations():
    with pytest.raises(ValueError):
        MigrationRegistry(["a", "a"])
    registry = MigrationRegistry(["a"])
    with pytest.raises(ValueError):
        registry.add("undeclared", _make_table("x"))
    registry.add("a", _make_table("x"))
    with pytest.raises(ValueError):
        registry.add("a", _make_table("y"))
    assert registry.names() == ("a",)
    assert registry.names() == registry.names()
    assert "a" in registry
