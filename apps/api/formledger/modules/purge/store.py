from __future__ import annotations

import json
import sqlite3
import time
from typing import Any, Dict, List, Optional

from formledger.core.db import connect, write_transaction
from formledger.core.observability import now_iso


def _row_to_run(r: sqlite3.Row) -> Dict[str, Any]:
    d = dict(r)
    d["trigger"] = d.pop("run_trigger")
    try:
        d["details"] = json.loads(d.pop("details_json") or "[]")
    except (TypeError, ValueError):
        d["details"] = []
    return d


class PurgeAuditStore:
    """Audit rows for purge runs plus the cross-process run lease."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url

    def connect(self) -> sqlite3.Connection:
        return connect(self.database_url)

    # -------------------------
    # run lease
    # -------------------------
    def acquire_lock(self, name: str, holder: str, ttl_seconds: int) -> bool:
        now = time.time()
        conn = self.connect()
        try:
            with write_transaction(conn):
                row = conn.execute("SELECT holder, expires_at FROM job_locks WHERE name=?;", (name,)).fetchone()
                if row is not None and float(row["expires_at"]) > now and row["holder"] != holder:
                    return False
                conn.execute(
                    """
                    INSERT INTO job_locks (name, holder, acquired_at, expires_at) VALUES (?,?,?,?)
                    ON CONFLICT(name) DO UPDATE SET holder=excluded.holder,
                                                    acquired_at=excluded.acquired_at,
                                                    expires_at=excluded.expires_at;
                    """,
                    (name, holder, now_iso(), now + ttl_seconds),
                )
                return True
        finally:
            conn.close()

    def release_lock(self, name: str, holder: str) -> None:
        conn = self.connect()
        try:
            with write_transaction(conn):
                conn.execute("DELETE FROM job_locks WHERE name=? AND holder=?;", (name, holder))
        finally:
            conn.close()

    # -------------------------
    # audit
    # -------------------------
    def record_run(self, summary: Dict[str, Any]) -> None:
        conn = self.connect()
        try:
            with write_transaction(conn):
                conn.execute(
                    """
                    INSERT OR REPLACE INTO purge_runs
                    (purge_id, run_trigger, status, started_at, finished_at, duration_ms, orders_examined,
                     versions_deleted, versions_retained, failures, details_json, error_message)
                    VALUES (?,?,?,?,?,?,?,?,?,?,?,?);
                    """,
                    (
                        summary["purge_id"],
                        summary["trigger"],
                        summary["status"],
                        summary["started_at"],
                        summary.get("finished_at"),
                        int(summary.get("duration_ms") or 0),
                        int(summary.get("orders_examined") or 0),
                        int(summary.get("versions_deleted") or 0),
                        int(summary.get("versions_retained") or 0),
                        len(summary.get("failures") or []),
                        json.dumps(summary.get("details") or [], ensure_ascii=False),
                        summary.get("error_message"),
                    ),
                )
        finally:
            conn.close()

    def list_runs(self, limit: int = 20) -> List[Dict[str, Any]]:
        conn = self.connect()
        try:
            rows = conn.execute(
                "SELECT * FROM purge_runs ORDER BY started_at DESC, purge_id DESC LIMIT ?;",
                (int(limit),),
            ).fetchall()
            return [_row_to_run(r) for r in rows]
        finally:
            conn.close()
