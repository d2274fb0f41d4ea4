"""Tests for secgate.core.db — SQLite manager for the run ledger."""

import sqlite3
from pathlib import Path

import pytest

from secgate.core.db import SCHEMA_VERSION, ledger, open_db


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "reports" / "ledger.db"


class TestOpenDb:
    """open_db creates schema, enables WAL, is idempotent."""

    def test_creates_file_and_parent(self, db_path: Path) -> None:
        conn = open_db(db_path)
        assert db_path.exists()
        conn.close()

    def test_wal_mode(self, db_path: Path) -> None:
        conn = open_db(db_path)
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"
        conn.close()

    def test_tables_exist(self, db_path: Path) -> None:
        conn = open_db(db_path)
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        }
        assert {"runs", "meta"} <= tables
        conn.close()

    def test_schema_version_recorded(self, db_path: Path) -> None:
        conn = open_db(db_path)
        row = conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
        assert row["value"] == str(SCHEMA_VERSION)
        conn.close()

    def test_idempotent(self, db_path: Path) -> None:
        open_db(db_path).close()
        conn = open_db(db_path)
        count = conn.execute("SELECT COUNT(*) FROM meta").fetchone()[0]
        assert count == 1
        conn.close()


class TestAppendOnly:
    def _insert(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            "INSERT INTO runs (run_id, status, exit_code, report_path, report_sha256, entry_hash) "
            "VALUES ('r1', 'passed', 0, '/tmp/r1', 'abc', 'h1')"
        )

    def test_update_blocked(self, db_path: Path) -> None:
        conn = open_db(db_path)
        self._insert(conn)
        with pytest.raises(sqlite3.IntegrityError, match="append-only"):
            conn.execute("UPDATE runs SET status = 'blocked' WHERE run_id = 'r1'")
        conn.close()

    def test_delete_blocked(self, db_path: Path) -> None:
        conn = open_db(db_path)
        self._insert(conn)
        with pytest.raises(sqlite3.IntegrityError, match="append-only"):
            conn.execute("DELETE FROM runs WHERE run_id = 'r1'")
        conn.close()

    def test_run_id_unique(self, db_path: Path) -> None:
        conn = open_db(db_path)
        self._insert(conn)
        with pytest.raises(sqlite3.IntegrityError):
            self._insert(conn)
        conn.close()


class TestLedgerContext:
    def test_closes_connection_on_exit(self, db_path: Path) -> None:
        with ledger(db_path) as conn:
            conn.execute("SELECT 1")
        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")

    def test_closes_connection_on_error(self, db_path: Path) -> None:
        with pytest.raises(RuntimeError):
            with ledger(db_path) as conn:
                raise RuntimeError("boom")
        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")
