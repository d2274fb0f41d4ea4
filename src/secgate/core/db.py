"""SQLite manager for the run ledger.

Owns the connection lifecycle and schema creation.  The ledger is an index
of gate runs next to the report directories; the reports themselves stay
on disk as the artifacts of record.

Notes
-----
* ``secgate history`` may read while a run appends (WAL journal).
* Opening creates missing tables, so every entry point just calls :func:`open_db`.
* UPDATE / DELETE on ``runs`` are rejected by triggers: retention is an
  external concern and the gate itself never rewrites history.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

logger = structlog.get_logger()

# ── Schema version (bump when tables change) ────────────────
SCHEMA_VERSION = 1

_SCHEMA_SQL = """\
-- One row per gate run, append-only, hash-chained
CREATE TABLE IF NOT EXISTS runs (
    seq             INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id          TEXT    NOT NULL UNIQUE,
    status          TEXT    NOT NULL,
    exit_code       INTEGER NOT NULL,
    evaluated_at    TEXT,
    finding_count   INTEGER NOT NULL DEFAULT 0,
    blocking_count  INTEGER NOT NULL DEFAULT 0,
    warning_count   INTEGER NOT NULL DEFAULT 0,
    build_id        TEXT,
    report_path     TEXT    NOT NULL,
    report_sha256   TEXT    NOT NULL,
    signature       TEXT,
    entry_hash      TEXT    NOT NULL,
    prev_hash       TEXT    NOT NULL DEFAULT ''
);

-- Schema metadata
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TRIGGER IF NOT EXISTS runs_no_update
    BEFORE UPDATE ON runs
    BEGIN
        SELECT RAISE(ABORT, 'runs table is append-only: UPDATE blocked');
    END;

CREATE TRIGGER IF NOT EXISTS runs_no_delete
    BEFORE DELETE ON runs
    BEGIN
        SELECT RAISE(ABORT, 'runs table is append-only: DELETE blocked');
    END;
"""


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open (or create) the ledger database and ensure the schema exists.

    Parameters
    ----------
    db_path:
        Absolute path to the SQLite file (e.g. ``reports/gate/ledger.db``).

    Returns
    -------
    sqlite3.Connection
        Ready-to-use connection with WAL mode enabled.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")

    conn.executescript(_SCHEMA_SQL)

    conn.execute(
        "INSERT OR IGNORE INTO meta(key, value) VALUES (?, ?)",
        ("schema_version", str(SCHEMA_VERSION)),
    )
    conn.commit()

    logger.debug("ledger_opened", path=str(db_path), schema_version=SCHEMA_VERSION)
    return conn


@contextmanager
def ledger(db_path: Path) -> Iterator[sqlite3.Connection]:
    """:func:`open_db` scoped to a ``with`` block; the connection is always closed."""
    conn = open_db(db_path)
    try:
        yield conn
    finally:
        conn.close()
