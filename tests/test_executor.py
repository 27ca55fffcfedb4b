"""
Tests for the migration executor and the SQLite schema backend
"""
import logging
import sqlite3
from unittest.mock import patch

import pytest

from tidemark.errors import LedgerDesyncError, OperationError
from tidemark.migrations import Direction, MigrationLedger, SQLiteBackend
from tidemark.migrations.executor import ErrorDetail, Executor, MigrationResult
from tidemark.migrations.planner import Plan

from conftest import table_names


@pytest.fixture
def ledger(db_path):
    ledger = MigrationLedger(db_path)
    ledger.ensure_storage()
    return ledger


@pytest.fixture
def backend(db_path):
    return SQLiteBackend(db_path)


@pytest.fixture
def executor(backend, ledger):
    return Executor(backend, ledger)


def forward(*definitions):
    return Plan(Direction.FORWARD, tuple(definitions))


def backward(*definitions):
    return Plan(Direction.BACKWARD, tuple(definitions))


class TestSQLiteBackend:
    """Test transaction scopes"""

    def test_commits_on_success(self, backend, db_path):
        with backend.transaction() as conn:
            conn.execute("CREATE TABLE kept (id INTEGER)")
        assert "kept" in table_names(db_path)

    def test_rolls_back_ddl_on_error(self, backend, db_path):
        with pytest.raises(RuntimeError):
            with backend.transaction() as conn:
                conn.execute("CREATE TABLE discarded (id INTEGER)")
                raise RuntimeError("boom")
        assert "discarded" not in table_names(db_path)

    def test_warns_when_migration_commits_itself(self, backend, db_path, caplog):
        with caplog.at_level(logging.WARNING, logger="tidemark"):
            with backend.transaction() as conn:
                conn.execute("CREATE TABLE early (id INTEGER)")
                conn.execute("COMMIT")
        assert "early" in table_names(db_path)
        assert "ended its own transaction" in caplog.text


class TestExecutorForward:
    """Test applying forward plans"""

    def test_empty_plan(self, executor):
        result = executor.apply(forward(), batch=1)
        assert result.success
        assert result.completed == []
        assert result.batch is None

    def test_forward_plan_needs_batch(self, executor, abc):
        with pytest.raises(ValueError):
            executor.apply(forward(*abc))

    def test_applies_and_records_in_order(self, executor, ledger, abc, calls, db_path):
        result = executor.apply(forward(*abc), batch=1)

        assert result.success
        assert result.direction == Direction.FORWARD
        assert result.completed == [d.name for d in abc]
        assert result.batch == 1
        assert calls == [("up", d.name) for d in abc]
        assert [r.name for r in ledger.applied_records()] == result.completed
        assert table_names(db_path) == {"t_a", "t_b", "t_c"}
        assert set(result.durations_ms) == set(result.completed)

    def test_stops_at_first_failure(self, executor, ledger, make_definition, calls, db_path):
        d = make_definition("20240101000004_d")
        e = make_definition("20240101000005_e", fail_up=True)
        f = make_definition("20240101000006_f")

        result = executor.apply(forward(d, e, f), batch=2)

        assert not result.success
        assert result.completed == [d.name]
        assert result.failed_at == e.name
        assert result.cause.type == "OperationError"
        assert result.cause.original_type == "RuntimeError"
        assert result.cause.migration == e.name
        assert isinstance(result.error, OperationError)
        assert ("up", f.name) not in calls
        assert [r.name for r in ledger.applied_records()] == [d.name]
        assert table_names(db_path) == {"t_d"}

    def test_dry_run_touches_nothing(self, executor, ledger, abc, calls, db_path):
        result = executor.apply(forward(*abc), batch=1, dry_run=True)

        assert result.success
        assert result.dry_run
        assert result.completed == [d.name for d in abc]
        assert calls == []
        assert ledger.count() == 0
        assert table_names(db_path) == set()

    def test_ledger_failure_raises_desync(self, executor, ledger, abc, db_path):
        real_record = ledger.record_applied

        def flaky(name, batch):
            if name == abc[1].name:
                raise sqlite3.OperationalError("disk I/O error")
            return real_record(name, batch)

        with patch.object(ledger, "record_applied", side_effect=flaky):
            with pytest.raises(LedgerDesyncError) as exc_info:
                executor.apply(forward(*abc), batch=1)

        error = exc_info.value
        assert error.name == abc[1].name
        assert error.result.completed == [abc[0].name]
        assert error.result.failed_at == abc[1].name
        assert not error.result.success
        # B's change committed even though the ledger never heard of it
        assert "t_b" in table_names(db_path)
        assert "t_c" not in table_names(db_path)
        assert [r.name for r in ledger.applied_records()] == [abc[0].name]


class TestExecutorBackward:
    """Test applying backward plans"""

    def test_rolls_back_and_removes_records(self, executor, ledger, abc, calls, db_path):
        executor.apply(forward(*abc), batch=1)
        calls.clear()

        result = executor.apply(backward(abc[2], abc[1]))

        assert result.success
        assert result.direction == Direction.BACKWARD
        assert result.batch is None
        assert result.completed == [abc[2].name, abc[1].name]
        assert calls == [("down", abc[2].name), ("down", abc[1].name)]
        assert [r.name for r in ledger.applied_records()] == [abc[0].name]
        assert table_names(db_path) == {"t_a"}

    def test_backward_failure_keeps_record(self, executor, ledger, make_definition, db_path):
        a = make_definition("20240101000001_a")
        b = make_definition("20240101000002_b", fail_down=True)
        executor.apply(forward(a, b), batch=1)

        result = executor.apply(backward(b, a))

        assert not result.success
        assert result.completed == []
        assert result.failed_at == b.name
        assert ledger.is_applied(b.name)
        assert ledger.is_applied(a.name)
        assert table_names(db_path) == {"t_a", "t_b"}

    def test_ledger_removal_failure_raises_desync(self, executor, ledger, abc):
        executor.apply(forward(*abc), batch=1)

        with patch.object(ledger, "remove_record", side_effect=sqlite3.OperationalError("locked")):
            with pytest.raises(LedgerDesyncError) as exc_info:
                executor.apply(backward(abc[2]))

        assert exc_info.value.result.completed == []
        assert exc_info.value.result.failed_at == abc[2].name
        assert ledger.is_applied(abc[2].name)


class TestMigrationResult:
    """Test result serialization"""

    def test_to_dict(self):
        result = MigrationResult(
            success=False,
            direction=Direction.FORWARD,
            completed=["20240101000001_a"],
            failed_at="20240101000002_b",
            cause=ErrorDetail("OperationError", "boom", "20240101000002_b", "RuntimeError"),
            batch=3,
        )
        data = result.to_dict()

        assert data["success"] is False
        assert data["direction"] == "forward"
        assert data["completed"] == ["20240101000001_a"]
        assert data["failed_at"] == "20240101000002_b"
        assert data["cause"]["message"] == "boom"
        assert data["batch"] == 3
        assert data["dry_run"] is False

    def test_from_error(self):
        error = ValueError("nope")
        result = MigrationResult.from_error(Direction.BACKWARD, error)

        assert not result.success
        assert result.completed == []
        assert result.failed_at is None
        assert result.cause.type == "ValueError"
        assert result.error is error
