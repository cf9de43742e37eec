from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, List, Optional

from formledger.core.db import connect
from formledger.core.errors import ConflictError, NotFound
from formledger.core.observability import now_iso


def _safe_json_loads(v: Any) -> Dict[str, Any]:
    if not v:
        return {}
    if isinstance(v, dict):
        return v
    try:
        out = json.loads(v)
    except (TypeError, ValueError):
        return {}
    return out if isinstance(out, dict) else {}


def _row_to_schema(r: sqlite3.Row) -> Dict[str, Any]:
    return {
        "form_version_id": str(r["form_version_id"]),
        "form_name": str(r["form_name"]),
        "description": r["description"],
        "field_definitions": _safe_json_loads(r["field_definitions_json"]),
        "is_active": bool(int(r["is_active"] or 0)),
        "created_date": r["created_date"],
        "created_by": r["created_by"],
        "deprecated_date": r["deprecated_date"],
        "is_deprecated": r["deprecated_date"] is not None,
    }


class SchemaRegistry:
    """Durable storage of form schemas keyed by form_version_id.

    The `is_active` flag is only written through `set_active`, which expects
    to run inside a write transaction owned by SchemaActivationService.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url

    def connect(self) -> sqlite3.Connection:
        return connect(self.database_url)

    def create(
        self,
        *,
        form_version_id: str,
        form_name: str,
        description: Optional[str],
        field_definitions: Dict[str, Any],
        created_by: Optional[str],
    ) -> Dict[str, Any]:
        conn = self.connect()
        try:
            try:
                conn.execute(
                    """
                    INSERT INTO form_schemas
                    (form_version_id, form_name, description, field_definitions_json, is_active, created_date, created_by, deprecated_date)
                    VALUES (?,?,?,?,?,?,?,?);
                    """,
                    (
                        form_version_id,
                        form_name,
                        description,
                        json.dumps(field_definitions or {}, ensure_ascii=False),
                        0,
                        now_iso(),
                        created_by,
                        None,
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise ConflictError(
                    f"schema version already exists: {form_version_id}",
                    {"form_version_id": form_version_id},
                ) from e
            return self._get(conn, form_version_id)
        finally:
            conn.close()

    def _get(self, conn: sqlite3.Connection, form_version_id: str) -> Dict[str, Any]:
        row = conn.execute(
            "SELECT * FROM form_schemas WHERE form_version_id=? LIMIT 1;",
            (form_version_id,),
        ).fetchone()
        if row is None:
            raise NotFound(f"schema not found: {form_version_id}", {"form_version_id": form_version_id})
        return _row_to_schema(row)

    def get(self, form_version_id: str, conn: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
        if conn is not None:
            return self._get(conn, form_version_id)
        own = self.connect()
        try:
            return self._get(own, form_version_id)
        finally:
            own.close()

    def list_all(self) -> List[Dict[str, Any]]:
        conn = self.connect()
        try:
            rows = conn.execute(
                "SELECT * FROM form_schemas ORDER BY created_date DESC, form_version_id DESC;"
            ).fetchall()
            return [_row_to_schema(r) for r in rows]
        finally:
            conn.close()

    def find_active(self, conn: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
        own = conn is None
        c = conn if conn is not None else self.connect()
        try:
            row = c.execute("SELECT * FROM form_schemas WHERE is_active=1 LIMIT 1;").fetchone()
            if row is None:
                raise NotFound("no active schema", {})
            return _row_to_schema(row)
        finally:
            if own:
                c.close()

    # --- raw writers (caller owns the transaction) ---
    def set_active(self, conn: sqlite3.Connection, form_version_id: str, value: bool) -> None:
        if value:
            conn.execute(
                "UPDATE form_schemas SET is_active=1, deprecated_date=NULL WHERE form_version_id=?;",
                (form_version_id,),
            )
        else:
            conn.execute(
                "UPDATE form_schemas SET is_active=0 WHERE form_version_id=?;",
                (form_version_id,),
            )

    def set_deprecated(self, conn: sqlite3.Connection, form_version_id: str, when: str) -> None:
        conn.execute(
            "UPDATE form_schemas SET deprecated_date=? WHERE form_version_id=? AND deprecated_date IS NULL;",
            (when, form_version_id),
        )
