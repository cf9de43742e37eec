"""
WIP purge: reclaims superseded work-in-progress versions.

Per run:
1. take the run lease (in-process lock + job_locks row); refusal is fatal
2. read the WIP candidate snapshot (group_wip_by_order); failure is fatal
3. per order: keep the latest version when it is WIP, delete the other WIP
   versions one transaction each; errors are logged, counted and skipped
4. write one purge_runs audit row and return the summary

A version already gone when its delete runs (a concurrent run or an operator
got there first), or promoted to COMMITTED since the snapshot, counts as
skipped, not as a failure.
"""
from __future__ import annotations

import os
import socket
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from formledger.core.errors import InvariantViolation, NotFound, PurgeAlreadyRunning
from formledger.core.observability import emit, now_iso
from formledger.modules.orders.store import STATUS_COMMITTED, STATUS_WIP, VersionStore, WipPurgeCandidateGroup

from .store import PurgeAuditStore

LOCK_NAME = "wip_purge"

STATUS_SUCCESS = "SUCCESS"
STATUS_PARTIAL = "PARTIAL"
STATUS_FAILED = "FAILED"
STATUS_INTERRUPTED = "INTERRUPTED"


def new_purge_id(started: datetime) -> str:
    return f"PURGE-{started.strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6].upper()}"


class WipPurgeEngine:
    def __init__(
        self,
        store: VersionStore,
        audit: PurgeAuditStore,
        *,
        lock_ttl_seconds: int = 3600,
        holder: Optional[str] = None,
    ):
        self.store = store
        self.audit = audit
        self.lock_ttl_seconds = lock_ttl_seconds
        self.holder = holder or f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"
        self._run_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    def run(
        self,
        trigger: str = "manual",
        stop_event: Optional[threading.Event] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not self._run_lock.acquire(blocking=False):
            raise PurgeAlreadyRunning("a purge run is already in progress", {"holder": self.holder})
        try:
            if not self.audit.acquire_lock(LOCK_NAME, self.holder, self.lock_ttl_seconds):
                raise PurgeAlreadyRunning("a purge run is already in progress on another instance", {})
            try:
                return self._run_locked(trigger, stop_event, request_id)
            finally:
                self.audit.release_lock(LOCK_NAME, self.holder)
        finally:
            self._run_lock.release()

    def _run_locked(
        self,
        trigger: str,
        stop_event: Optional[threading.Event],
        request_id: Optional[str],
    ) -> Dict[str, Any]:
        started = datetime.now(timezone.utc)
        t0 = time.monotonic()
        summary: Dict[str, Any] = {
            "purge_id": new_purge_id(started),
            "trigger": trigger,
            "status": STATUS_SUCCESS,
            "started_at": now_iso(),
            "finished_at": None,
            "duration_ms": 0,
            "orders_examined": 0,
            "versions_deleted": 0,
            "versions_retained": 0,
            "versions_skipped": 0,
            "failures": [],
            "details": [],
            "error_message": None,
        }
        emit("info", "purge.run.start", f"purge {summary['purge_id']} started", request_id, __name__, trigger=trigger)

        try:
            groups = self.store.group_wip_by_order()
        except Exception as e:
            summary["status"] = STATUS_FAILED
            summary["error_message"] = f"{type(e).__name__}: {e}"
            self._finish(summary, t0, request_id)
            raise

        for group in groups:
            if stop_event is not None and stop_event.is_set():
                summary["status"] = STATUS_INTERRUPTED
                break
            summary["orders_examined"] += 1
            try:
                detail = self._purge_order(group, summary["failures"], request_id)
            except Exception as e:
                # order-level failure (e.g. latest lookup); siblings still run
                summary["failures"].append(
                    {"order_id": group.order_id, "version_number": None, "error": type(e).__name__, "message": str(e)}
                )
                emit(
                    "error",
                    "purge.order.failed",
                    str(e),
                    request_id,
                    __name__,
                    order_id=group.order_id,
                    error=type(e).__name__,
                )
                continue

            summary["details"].append(detail)
            summary["versions_deleted"] += len(detail["deleted_versions"])
            summary["versions_skipped"] += len(detail["skipped_versions"])
            if detail["retained_wip_version"] is not None:
                summary["versions_retained"] += 1

        if summary["status"] == STATUS_SUCCESS and summary["failures"]:
            summary["status"] = STATUS_PARTIAL

        self._finish(summary, t0, request_id)
        return summary

    def _purge_order(
        self,
        group: WipPurgeCandidateGroup,
        failures: List[Dict[str, Any]],
        request_id: Optional[str],
    ) -> Dict[str, Any]:
        order_id = group.order_id
        try:
            latest = self.store.find_latest(order_id)
        except NotFound:
            # no latest row means the invariant is already broken; touch nothing
            raise InvariantViolation(f"order has WIP versions but no latest version: {order_id}", {"order_id": order_id})

        retained: Optional[int] = None
        if latest["status"] == STATUS_WIP:
            retained = latest["version_number"]

        deleted: List[int] = []
        skipped: List[int] = []
        for n in group.wip_versions:
            if n == retained:
                continue
            try:
                self.store.delete_wip_version(order_id, n)
                deleted.append(n)
            except NotFound:
                skipped.append(n)
            except InvariantViolation as e:
                # promoted since the snapshot: no longer a purge candidate
                if e.details.get("status") == STATUS_COMMITTED:
                    skipped.append(n)
                else:
                    self._record_delete_failure(failures, order_id, n, e, request_id)
            except Exception as e:
                self._record_delete_failure(failures, order_id, n, e, request_id)

        if deleted:
            emit(
                "info",
                "purge.order.done",
                f"{order_id}: deleted {deleted}, retained {retained}",
                request_id,
                __name__,
                order_id=order_id,
                deleted_versions=deleted,
                retained_wip_version=retained,
            )

        # deletions above are already committed; a failed count must not hide them
        committed_count: Optional[int] = None
        try:
            committed_count = self.store.count_by_status(order_id, STATUS_COMMITTED)
        except Exception as e:
            emit("warning", "purge.count.failed", str(e), request_id, __name__, order_id=order_id, error=type(e).__name__)

        return {
            "order_id": order_id,
            "deleted_versions": deleted,
            "skipped_versions": skipped,
            "retained_wip_version": retained,
            "committed_versions_count": committed_count,
        }

    def _record_delete_failure(
        self,
        failures: List[Dict[str, Any]],
        order_id: str,
        version_number: int,
        e: Exception,
        request_id: Optional[str],
    ) -> None:
        failures.append({"order_id": order_id, "version_number": version_number, "error": type(e).__name__, "message": str(e)})
        emit(
            "error",
            "purge.delete.failed",
            str(e),
            request_id,
            __name__,
            order_id=order_id,
            version_number=version_number,
            error=type(e).__name__,
        )

    def _finish(self, summary: Dict[str, Any], t0: float, request_id: Optional[str]) -> None:
        summary["finished_at"] = now_iso()
        summary["duration_ms"] = int((time.monotonic() - t0) * 1000)
        try:
            self.audit.record_run(summary)
        except Exception as e:
            emit("error", "purge.audit.failed", str(e), request_id, __name__, purge_id=summary["purge_id"])
        emit(
            "audit",
            "purge.run.end",
            f"purge {summary['purge_id']} {summary['status']}",
            request_id,
            __name__,
            purge_id=summary["purge_id"],
            status=summary["status"],
            orders_examined=summary["orders_examined"],
            versions_deleted=summary["versions_deleted"],
            versions_retained=summary["versions_retained"],
            failures=len(summary["failures"]),
            duration_ms=summary["duration_ms"],
        )
