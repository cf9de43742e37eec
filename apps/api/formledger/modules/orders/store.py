"""
VersionStore: durable storage of order versions.

Invariants held here (with the partial unique index on order_versions):
- (order_id, version_number) is unique
- at most one row per order_id has is_latest_version = 1
- COMMITTED rows and the latest row are never deleted

Writers that must be atomic with a preceding read (create, promote) take a
connection from `transaction()` and pass it to the `conn=` parameters.
"""
from __future__ import annotations

import itertools
import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from formledger.core.db import connect, write_transaction
from formledger.core.errors import ConflictError, InvariantViolation, NotFound

STATUS_WIP = "WIP"
STATUS_COMMITTED = "COMMITTED"


@dataclass(frozen=True)
class WipPurgeCandidateGroup:
    order_id: str
    wip_versions: Tuple[int, ...]


def _safe_json_loads(v: Any) -> Dict[str, Any]:
    if not v:
        return {}
    try:
        out = json.loads(v)
    except (TypeError, ValueError):
        return {}
    return out if isinstance(out, dict) else {}


def _row_to_version(r: sqlite3.Row) -> Dict[str, Any]:
    return {
        "order_id": str(r["order_id"]),
        "version_number": int(r["version_number"]),
        "status": str(r["status"]),
        "form_version_id": str(r["form_version_id"]),
        "payload": _safe_json_loads(r["payload_json"]),
        "user_name": str(r["user_name"]),
        "timestamp": str(r["timestamp"]),
        "is_latest_version": bool(int(r["is_latest_version"] or 0)),
        "previous_version_number": int(r["previous_version_number"]) if r["previous_version_number"] is not None else None,
        "change_description": r["change_description"],
    }


class VersionStore:
    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url

    def connect(self) -> sqlite3.Connection:
        return connect(self.database_url)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            with write_transaction(conn):
                yield conn
        finally:
            conn.close()

    @contextmanager
    def _conn(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        own = self.connect()
        try:
            yield own
        finally:
            own.close()

    # -------------------------
    # writes
    # -------------------------
    def append(self, version: Dict[str, Any], conn: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
        order_id = version["order_id"]
        version_number = int(version["version_number"])
        with self._conn(conn) as c:
            try:
                c.execute(
                    """
                    INSERT INTO order_versions
                    (order_id, version_number, status, form_version_id, payload_json, user_name, timestamp,
                     is_latest_version, previous_version_number, change_description)
                    VALUES (?,?,?,?,?,?,?,?,?,?);
                    """,
                    (
                        order_id,
                        version_number,
                        version["status"],
                        version["form_version_id"],
                        json.dumps(version.get("payload") or {}, ensure_ascii=False),
                        version["user_name"],
                        version["timestamp"],
                        1 if version.get("is_latest_version") else 0,
                        version.get("previous_version_number"),
                        version.get("change_description"),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(
                    f"version already exists: {order_id} v{version_number}",
                    {"order_id": order_id, "version_number": version_number},
                ) from e
            if conn is None:
                c.commit()
            return self.find_version(order_id, version_number, conn=c)

    def clear_latest(self, conn: sqlite3.Connection, order_id: str) -> None:
        conn.execute(
            "UPDATE order_versions SET is_latest_version=0 WHERE order_id=? AND is_latest_version=1;",
            (order_id,),
        )

    def set_status(self, conn: sqlite3.Connection, order_id: str, version_number: int, status: str) -> None:
        conn.execute(
            "UPDATE order_versions SET status=? WHERE order_id=? AND version_number=?;",
            (status, order_id, int(version_number)),
        )

    def delete_wip_version(self, order_id: str, version_number: int) -> None:
        with self.transaction() as c:
            row = c.execute(
                "SELECT status, is_latest_version FROM order_versions WHERE order_id=? AND version_number=?;",
                (order_id, int(version_number)),
            ).fetchone()
            if row is None:
                raise NotFound(
                    f"version not found: {order_id} v{version_number}",
                    {"order_id": order_id, "version_number": version_number},
                )
            if int(row["is_latest_version"] or 0) == 1:
                raise InvariantViolation(
                    f"refusing to delete latest version: {order_id} v{version_number}",
                    {"order_id": order_id, "version_number": version_number},
                )
            if row["status"] != STATUS_WIP:
                raise InvariantViolation(
                    f"refusing to delete {row['status']} version: {order_id} v{version_number}",
                    {"order_id": order_id, "version_number": version_number, "status": row["status"]},
                )
            c.execute(
                "DELETE FROM order_versions WHERE order_id=? AND version_number=? AND status=? AND is_latest_version=0;",
                (order_id, int(version_number), STATUS_WIP),
            )

    # -------------------------
    # reads
    # -------------------------
    def find_latest(self, order_id: str, conn: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
        with self._conn(conn) as c:
            row = c.execute(
                "SELECT * FROM order_versions WHERE order_id=? AND is_latest_version=1 LIMIT 1;",
                (order_id,),
            ).fetchone()
            if row is None:
                raise NotFound(f"order not found: {order_id}", {"order_id": order_id})
            return _row_to_version(row)

    def find_version(self, order_id: str, version_number: int, conn: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
        with self._conn(conn) as c:
            row = c.execute(
                "SELECT * FROM order_versions WHERE order_id=? AND version_number=? LIMIT 1;",
                (order_id, int(version_number)),
            ).fetchone()
            if row is None:
                raise NotFound(
                    f"version not found: {order_id} v{version_number}",
                    {"order_id": order_id, "version_number": version_number},
                )
            return _row_to_version(row)

    def list_versions(self, order_id: str) -> List[Dict[str, Any]]:
        with self._conn(None) as c:
            rows = c.execute(
                "SELECT * FROM order_versions WHERE order_id=? ORDER BY version_number ASC;",
                (order_id,),
            ).fetchall()
            return [_row_to_version(r) for r in rows]

    def list_committed(self, order_id: str) -> List[Dict[str, Any]]:
        with self._conn(None) as c:
            rows = c.execute(
                "SELECT * FROM order_versions WHERE order_id=? AND status=? ORDER BY version_number ASC;",
                (order_id, STATUS_COMMITTED),
            ).fetchall()
            return [_row_to_version(r) for r in rows]

    def list_latest(self) -> List[Dict[str, Any]]:
        with self._conn(None) as c:
            rows = c.execute(
                "SELECT * FROM order_versions WHERE is_latest_version=1 ORDER BY timestamp DESC, order_id ASC;"
            ).fetchall()
            return [_row_to_version(r) for r in rows]

    def order_exists(self, order_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        with self._conn(conn) as c:
            row = c.execute("SELECT 1 FROM order_versions WHERE order_id=? LIMIT 1;", (order_id,)).fetchone()
            return row is not None

    def count_by_status(self, order_id: str, status: str) -> int:
        with self._conn(None) as c:
            row = c.execute(
                "SELECT COUNT(1) AS n FROM order_versions WHERE order_id=? AND status=?;",
                (order_id, status),
            ).fetchone()
            return int(row["n"] if row else 0)

    def group_wip_by_order(self) -> List[WipPurgeCandidateGroup]:
        # one statement -> one read snapshot; uncommitted writes are never visible
        with self._conn(None) as c:
            rows = c.execute(
                "SELECT order_id, version_number FROM order_versions WHERE status=? ORDER BY order_id ASC, version_number ASC;",
                (STATUS_WIP,),
            ).fetchall()
        groups: List[WipPurgeCandidateGroup] = []
        for order_id, items in itertools.groupby(rows, key=lambda r: str(r["order_id"])):
            groups.append(WipPurgeCandidateGroup(order_id=order_id, wip_versions=tuple(int(r["version_number"]) for r in items)))
        return groups
