from __future__ import annotations

import random
import re
from typing import Any, Dict, List, Optional

from formledger.core.errors import NotFound, ValidationError
from formledger.core.observability import emit, now_iso
from formledger.modules.form_schemas.registry import SchemaRegistry
from formledger.modules.form_schemas.validation import validate_order_data

from .store import STATUS_COMMITTED, STATUS_WIP, VersionStore

ORDER_ID_PATTERN = re.compile(r"^ORD-[0-9]{5}$")
MAX_ORDER_ID_GENERATION_ATTEMPTS = 20


def normalize_order_id(order_id: Optional[str]) -> str:
    return (order_id or "").strip().upper()


def is_valid_order_id(order_id: str) -> bool:
    return bool(ORDER_ID_PATTERN.match(order_id or ""))


def _summary(v: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(v)
    out.pop("payload", None)
    out.pop("order_id", None)
    return out


class OrderVersionService:
    """
    Version numbering and promotion rules on top of VersionStore.

    Every save appends a new immutable row. Within one order, create and
    promote run inside a single BEGIN IMMEDIATE transaction, which makes the
    read-latest / clear-latest / insert sequence linearizable across threads
    and processes sharing the database.
    """

    def __init__(self, store: VersionStore, schemas: SchemaRegistry, rng: Optional[random.Random] = None):
        self.store = store
        self.schemas = schemas
        self._rng = rng or random.Random()

    # -------------------------
    # helpers
    # -------------------------
    def _resolve_schema(self, form_version_id: Optional[str], conn) -> Dict[str, Any]:
        if not form_version_id:
            return self.schemas.find_active(conn=conn)
        schema = self.schemas.get(form_version_id, conn=conn)
        if schema["is_deprecated"]:
            raise ValidationError(
                f"schema is deprecated: {form_version_id}",
                {"field": "form_version_id", "value": form_version_id},
            )
        return schema

    def _generate_draft_order_id(self, conn) -> str:
        for _ in range(MAX_ORDER_ID_GENERATION_ATTEMPTS):
            candidate = f"ORD-{self._rng.randint(0, 99999):05d}"
            if not self.store.order_exists(candidate, conn=conn):
                return candidate
        raise ValidationError("could not allocate a draft order_id; pass one explicitly", {"field": "order_id"})

    def _resolve_order_id(self, order_id: Optional[str], final_save: bool, conn) -> str:
        oid = normalize_order_id(order_id)
        if is_valid_order_id(oid):
            return oid
        if final_save:
            raise ValidationError("order_id must be in format ORD-NNNNN", {"field": "order_id", "value": order_id})
        return self._generate_draft_order_id(conn)

    # -------------------------
    # operations
    # -------------------------
    def create_version(
        self,
        order_id: Optional[str],
        form_version_id: Optional[str],
        payload: Dict[str, Any],
        user_name: str,
        final_save: bool,
        change_description: Optional[str] = None,
    ) -> Dict[str, Any]:
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValidationError("payload must be an object", {"field": "data"})
        if not (user_name or "").strip():
            raise ValidationError("user_name is required", {"field": "user_name"})

        status = STATUS_COMMITTED if final_save else STATUS_WIP

        with self.store.transaction() as conn:
            oid = self._resolve_order_id(order_id, final_save, conn)
            schema = self._resolve_schema(form_version_id, conn)
            fvid = schema["form_version_id"]
            if final_save:
                # orderId is part of the document so schemas can constrain it
                validate_order_data({**payload, "orderId": oid}, schema)

            try:
                prior = self.store.find_latest(oid, conn=conn)
            except NotFound:
                prior = None

            previous_version_number = prior["version_number"] if prior is not None else None
            version_number = previous_version_number + 1 if previous_version_number is not None else 1

            if prior is not None:
                self.store.clear_latest(conn, oid)

            created = self.store.append(
                {
                    "order_id": oid,
                    "version_number": version_number,
                    "status": status,
                    "form_version_id": fvid,
                    "payload": payload,
                    "user_name": user_name.strip(),
                    "timestamp": now_iso(),
                    "is_latest_version": True,
                    "previous_version_number": previous_version_number,
                    "change_description": change_description,
                },
                conn=conn,
            )

        emit(
            "info",
            "order.version.created",
            f"saved {oid} v{version_number} ({status})",
            module=__name__,
            order_id=oid,
            version_number=version_number,
            status=status,
            form_version_id=fvid,
        )
        return created

    def promote(self, order_id: str, version_number: int) -> Dict[str, Any]:
        order_id = normalize_order_id(order_id)
        with self.store.transaction() as conn:
            v = self.store.find_version(order_id, version_number, conn=conn)
            if v["status"] == STATUS_COMMITTED:
                return v
            self.store.set_status(conn, order_id, version_number, STATUS_COMMITTED)
            out = self.store.find_version(order_id, version_number, conn=conn)

        emit(
            "info",
            "order.version.promoted",
            f"promoted {order_id} v{version_number}",
            module=__name__,
            order_id=order_id,
            version_number=version_number,
        )
        return out

    def get_latest(self, order_id: str) -> Dict[str, Any]:
        return self.store.find_latest(normalize_order_id(order_id))

    def get_version(self, order_id: str, version_number: int) -> Dict[str, Any]:
        return self.store.find_version(normalize_order_id(order_id), version_number)

    def list_committed(self, order_id: str) -> List[Dict[str, Any]]:
        oid = normalize_order_id(order_id)
        items = self.store.list_committed(oid)
        if not items and not self.store.order_exists(oid):
            raise NotFound(f"order not found: {oid}", {"order_id": oid})
        return items

    def list_orders(self) -> List[Dict[str, Any]]:
        return [
            {
                "order_id": v["order_id"],
                "latest_version_number": v["version_number"],
                "status": v["status"],
                "form_version_id": v["form_version_id"],
                "user_name": v["user_name"],
                "timestamp": v["timestamp"],
            }
            for v in self.store.list_latest()
        ]

    def get_history(self, order_id: str) -> Dict[str, Any]:
        oid = normalize_order_id(order_id)
        versions = self.store.list_versions(oid)
        if not versions:
            raise NotFound(f"order not found: {oid}", {"order_id": oid})

        committed = sum(1 for v in versions if v["status"] == STATUS_COMMITTED)
        wip = sum(1 for v in versions if v["status"] == STATUS_WIP)
        return {
            "order_id": oid,
            "total_versions": len(versions),
            "committed_versions": committed,
            "wip_versions": wip,
            "versions": [_summary(v) for v in versions],
        }
