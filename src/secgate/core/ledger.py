"""Append-only run ledger with hash chain.

Every gate run that produces a report is recorded once:

1. ``record_run()`` serialises the run canonically (sorted JSON, no spaces),
   including the SHA-256 of the written ``report.json``.
2. Computes ``entry_hash = SHA-256(canonical_blob + prev_hash)``.
3. Inserts an immutable row into the ``runs`` table.

``verify_ledger()`` recomputes the chain and raises :class:`LedgerBroken`
if any row was edited, removed or inserted out of order.  Combined with the
report digest, this makes a report swapped on disk after the fact visible.

``compute_hmac()`` provides an optional HMAC-SHA256 signature over a
report when ``SECGATE_REPORT_KEY`` is set.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import sqlite3
from dataclasses import asdict, dataclass

import structlog

from secgate.core.errors import LedgerBroken

logger = structlog.get_logger()

_CHAINED_FIELDS = (
    "run_id",
    "status",
    "exit_code",
    "evaluated_at",
    "finding_count",
    "blocking_count",
    "warning_count",
    "build_id",
    "report_path",
    "report_sha256",
    "signature",
)


@dataclass(frozen=True)
class RunRecord:
    run_id: str
    status: str  # passed | blocked | error
    exit_code: int
    evaluated_at: str | None
    finding_count: int
    blocking_count: int
    warning_count: int
    build_id: str | None
    report_path: str
    report_sha256: str
    signature: str | None = None


def record_run(conn: sqlite3.Connection, record: RunRecord) -> str:
    """Append a run to the ledger and return its ``entry_hash``."""
    prev_hash = _get_last_hash(conn)
    canonical = _canonical_blob(asdict(record))
    entry_hash = hashlib.sha256((canonical + prev_hash).encode("utf-8")).hexdigest()

    conn.execute(
        f"""
        INSERT INTO runs ({", ".join(_CHAINED_FIELDS)}, entry_hash, prev_hash)
        VALUES ({", ".join("?" for _ in _CHAINED_FIELDS)}, ?, ?)
        """,
        (*(getattr(record, f) for f in _CHAINED_FIELDS), entry_hash, prev_hash),
    )
    conn.commit()

    logger.info(
        "run_recorded",
        status=record.status,
        entry_hash=entry_hash[:12],
        seq=conn.execute("SELECT last_insert_rowid()").fetchone()[0],
    )
    return entry_hash


def verify_ledger(conn: sqlite3.Connection) -> int:
    """Verify the full hash chain.  Returns the number of runs checked.

    Raises
    ------
    LedgerBroken
        If any hash does not match the recomputed value.
    """
    rows = conn.execute("SELECT * FROM runs ORDER BY seq").fetchall()

    expected_prev = ""
    checked = 0

    for row in rows:
        seq = row["seq"]
        if row["prev_hash"] != expected_prev:
            raise LedgerBroken(
                f"Chain broken at seq={seq}: expected prev_hash={expected_prev[:12]}... "
                f"but found {row['prev_hash'][:12]}..."
            )

        canonical = _canonical_blob({f: row[f] for f in _CHAINED_FIELDS})
        recomputed = hashlib.sha256((canonical + row["prev_hash"]).encode("utf-8")).hexdigest()
        if recomputed != row["entry_hash"]:
            raise LedgerBroken(
                f"Tamper detected at seq={seq}: recomputed hash={recomputed[:12]}... "
                f"does not match stored={row['entry_hash'][:12]}..."
            )

        expected_prev = row["entry_hash"]
        checked += 1

    logger.info("ledger_verified", runs_checked=checked)
    return checked


def list_runs(conn: sqlite3.Connection, *, limit: int = 20) -> list[dict[str, object]]:
    """Most recent runs first."""
    rows = conn.execute(
        "SELECT seq, run_id, status, exit_code, evaluated_at, finding_count, "
        "blocking_count, warning_count, build_id, report_path "
        "FROM runs ORDER BY seq DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [dict(row) for row in rows]


def file_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# ── Internal helpers ────────────────────────────────────────

def _canonical_blob(fields: dict[str, object]) -> str:
    """Deterministic JSON of the chained fields (sorted keys, no whitespace)."""
    obj = {k: fields[k] for k in _CHAINED_FIELDS}
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def _get_last_hash(conn: sqlite3.Connection) -> str:
    """Return the ``entry_hash`` of the most recent run, or ``""`` for the first."""
    row = conn.execute("SELECT entry_hash FROM runs ORDER BY seq DESC LIMIT 1").fetchone()
    return row["entry_hash"] if row else ""


def compute_hmac(
    data: str,
    *,
    env_var: str = "SECGATE_REPORT_KEY",
) -> str | None:
    """Compute HMAC-SHA256 over a report for integrity verification.

    Returns ``None`` if the key is not set (signing is optional; the hash
    chain is the primary integrity guarantee).
    """
    key = os.environ.get(env_var, "").strip()
    if not key:
        return None
    sig = hmac.new(key.encode("utf-8"), data.encode("utf-8"), hashlib.sha256)
    return sig.hexdigest()
