from __future__ import annotations

import copy
import re
from typing import Any, Dict, List, Optional

from formledger.core.cache import ACTIVE_SCHEMA_KEY, SCHEMA_LIST_KEY, SchemaCache
from formledger.core.db import write_transaction
from formledger.core.errors import InvariantViolation, NotFound, ValidationError
from formledger.core.observability import emit, now_iso

from .registry import SchemaRegistry

FORM_VERSION_ID_PATTERN = re.compile(r"^v\d+\.\d+\.\d+$")


def validate_form_version_id(form_version_id: str) -> str:
    v = (form_version_id or "").strip()
    if not FORM_VERSION_ID_PATTERN.match(v):
        raise ValidationError(
            "form_version_id must match vMAJOR.MINOR.PATCH",
            {"field": "form_version_id", "value": form_version_id},
        )
    return v


class SchemaActivationService:
    """
    Sole writer of the schema activation flag.

    Invariant: at most one schema has is_active = 1. `activate` clears the
    current active schema and sets the target inside one BEGIN IMMEDIATE
    transaction, so concurrent activations serialize (last writer wins) and
    the partial unique index on is_active never sees two active rows.
    """

    def __init__(self, registry: SchemaRegistry, cache: Optional[SchemaCache] = None):
        self.registry = registry
        self.cache = cache

    def _invalidate(self) -> None:
        if self.cache is not None:
            self.cache.invalidate(ACTIVE_SCHEMA_KEY, SCHEMA_LIST_KEY)

    # --- reads ---
    def get_schema(self, form_version_id: str) -> Dict[str, Any]:
        return self.registry.get(form_version_id)

    def get_active(self) -> Dict[str, Any]:
        if self.cache is None:
            return self.registry.find_active()
        # callers get their own copy; cached entries stay untouched
        return copy.deepcopy(self.cache.get_or_load(ACTIVE_SCHEMA_KEY, self.registry.find_active))

    def list_schemas(self) -> List[Dict[str, Any]]:
        if self.cache is None:
            return self.registry.list_all()
        return copy.deepcopy(self.cache.get_or_load(SCHEMA_LIST_KEY, self.registry.list_all))

    # --- writes ---
    def create_schema(
        self,
        *,
        form_version_id: str,
        form_name: str,
        description: Optional[str] = None,
        field_definitions: Optional[Dict[str, Any]] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        fvid = validate_form_version_id(form_version_id)
        if field_definitions is not None and not isinstance(field_definitions, dict):
            raise ValidationError("field_definitions must be an object", {"field": "field_definitions"})
        if not (form_name or "").strip():
            raise ValidationError("form_name is required", {"field": "form_name"})

        out = self.registry.create(
            form_version_id=fvid,
            form_name=form_name.strip(),
            description=description,
            field_definitions=field_definitions or {},
            created_by=created_by,
        )
        self._invalidate()
        emit("info", "schema.created", f"created schema {fvid}", module=__name__, form_version_id=fvid, created_by=created_by)
        return out

    def activate(self, form_version_id: str) -> Dict[str, Any]:
        conn = self.registry.connect()
        try:
            previous: Optional[str] = None
            with write_transaction(conn):
                target = self.registry.get(form_version_id, conn=conn)
                if target["is_active"]:
                    return target

                try:
                    current = self.registry.find_active(conn=conn)
                except NotFound:
                    current = None

                # clear first, then set: the partial unique index allows one active row
                if current is not None:
                    previous = current["form_version_id"]
                    self.registry.set_active(conn, previous, False)
                self.registry.set_active(conn, form_version_id, True)
                out = self.registry.get(form_version_id, conn=conn)
        finally:
            conn.close()

        self._invalidate()
        emit(
            "audit",
            "schema.activated",
            f"activated schema {form_version_id}",
            module=__name__,
            form_version_id=form_version_id,
            previous_active=previous,
        )
        return out

    def deprecate(self, form_version_id: str) -> Dict[str, Any]:
        conn = self.registry.connect()
        try:
            with write_transaction(conn):
                target = self.registry.get(form_version_id, conn=conn)
                if target["is_active"]:
                    raise InvariantViolation(
                        "cannot deprecate the active schema; activate another schema first",
                        {"form_version_id": form_version_id},
                    )
                self.registry.set_deprecated(conn, form_version_id, now_iso())
                out = self.registry.get(form_version_id, conn=conn)
        finally:
            conn.close()

        self._invalidate()
        emit("audit", "schema.deprecated", f"deprecated schema {form_version_id}", module=__name__, form_version_id=form_version_id)
        return out
