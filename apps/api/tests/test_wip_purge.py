"""
Unit tests for WipPurgeEngine.

Tests cover:
- keep-latest-draft deletion semantics
- per-order and per-version failure isolation
- already-deleted versions treated as no-ops
- single-flight runs (in-process and via the job lease)
- interruption between orders
- audit rows
"""

import sqlite3
import threading

import pytest

from formledger.core.errors import InvariantViolation, PurgeAlreadyRunning
from formledger.modules.orders.store import WipPurgeCandidateGroup
from formledger.modules.purge.service import LOCK_NAME, WipPurgeEngine


def _numbers(store, order_id):
    return [(v["version_number"], v["status"]) for v in store.list_versions(order_id)]


class TestWipPurge:
    """Tests for WipPurgeEngine.run."""

    def test_superseded_drafts_deleted_committed_latest_kept(self, saver, store, engine):
        """ORD-00001: 1 WIP, 2 WIP, 3 COMMITTED -> 1 and 2 deleted."""
        saver("ORD-00001")
        saver("ORD-00001")
        saver("ORD-00001", final_save=True)

        summary = engine.run()

        assert _numbers(store, "ORD-00001") == [(3, "COMMITTED")]
        assert summary["status"] == "SUCCESS"
        assert summary["versions_deleted"] == 2
        detail = summary["details"][0]
        assert detail["deleted_versions"] == [1, 2]
        assert detail["retained_wip_version"] is None
        assert detail["committed_versions_count"] == 1

    def test_single_wip_latest_untouched(self, saver, store, engine):
        """ORD-00002: only version 1 (WIP, latest) -> nothing deleted."""
        saver("ORD-00002")

        summary = engine.run()

        assert _numbers(store, "ORD-00002") == [(1, "WIP")]
        assert summary["versions_deleted"] == 0
        assert summary["versions_retained"] == 1

    def test_latest_wip_retained_older_drafts_deleted(self, saver, store, engine):
        saver("ORD-00003")
        saver("ORD-00003", final_save=True)
        saver("ORD-00003")
        saver("ORD-00003")

        engine.run()

        assert _numbers(store, "ORD-00003") == [(2, "COMMITTED"), (4, "WIP")]
        assert store.find_latest("ORD-00003")["version_number"] == 4

    def test_invariants_after_run(self, saver, store, engine):
        """Every latest survives and no non-latest WIP remains."""
        plan = {
            "ORD-00010": [False, False, True],
            "ORD-00011": [False],
            "ORD-00012": [True, False, False],
            "ORD-00013": [True, True],
        }
        for order_id, finals in plan.items():
            for f in finals:
                saver(order_id, final_save=f)
        latest_before = {oid: store.find_latest(oid)["version_number"] for oid in plan}

        engine.run()

        for order_id in plan:
            latest = store.find_latest(order_id)
            assert latest["version_number"] == latest_before[order_id]
            for v in store.list_versions(order_id):
                if v["status"] == "WIP":
                    assert v["is_latest_version"] is True
        assert engine.store.group_wip_by_order() == [
            WipPurgeCandidateGroup("ORD-00011", (1,)),
            WipPurgeCandidateGroup("ORD-00012", (3,)),
        ]

    def test_promoted_versions_survive(self, saver, order_service, store, engine):
        saver("ORD-00020")
        saver("ORD-00020")
        order_service.promote("ORD-00020", 1)

        engine.run()

        assert _numbers(store, "ORD-00020") == [(1, "COMMITTED"), (2, "WIP")]

    def test_second_run_is_noop(self, saver, engine):
        saver("ORD-00001")
        saver("ORD-00001")

        assert engine.run()["versions_deleted"] == 1
        second = engine.run()
        assert second["versions_deleted"] == 0
        assert second["status"] == "SUCCESS"

    def test_empty_store(self, engine):
        summary = engine.run()
        assert summary["orders_examined"] == 0
        assert summary["status"] == "SUCCESS"

    def test_delete_failure_is_isolated(self, saver, store, engine, monkeypatch):
        """One failing delete is recorded; siblings and other orders proceed."""
        for _ in range(3):
            saver("ORD-00001")
        for _ in range(2):
            saver("ORD-00002")

        real_delete = store.delete_wip_version

        def flaky(order_id, version_number):
            if (order_id, version_number) == ("ORD-00001", 1):
                raise sqlite3.OperationalError("disk I/O error")
            return real_delete(order_id, version_number)

        monkeypatch.setattr(store, "delete_wip_version", flaky)

        summary = engine.run()

        assert summary["status"] == "PARTIAL"
        assert summary["failures"] == [
            {"order_id": "ORD-00001", "version_number": 1, "error": "OperationalError", "message": "disk I/O error"}
        ]
        assert _numbers(store, "ORD-00001") == [(1, "WIP"), (3, "WIP")]
        assert _numbers(store, "ORD-00002") == [(2, "WIP")]

    def test_order_level_failure_is_isolated(self, saver, store, engine, monkeypatch):
        saver("ORD-00001")
        saver("ORD-00001")
        saver("ORD-00002")
        saver("ORD-00002")

        real_find_latest = store.find_latest

        def broken(order_id, conn=None):
            if order_id == "ORD-00001":
                raise sqlite3.DatabaseError("database disk image is malformed")
            return real_find_latest(order_id, conn=conn)

        monkeypatch.setattr(store, "find_latest", broken)

        summary = engine.run()

        assert summary["status"] == "PARTIAL"
        assert summary["orders_examined"] == 2
        assert [f["order_id"] for f in summary["failures"]] == ["ORD-00001"]
        assert len(store.list_versions("ORD-00001")) == 2
        assert _numbers(store, "ORD-00002") == [(2, "WIP")]

    def test_stale_latest_hits_guard_and_is_skipped(self, saver, store, engine, monkeypatch):
        """A wrong latest answer cannot make the purge delete the real latest."""
        saver("ORD-00001")
        saver("ORD-00001")

        def stale(order_id, conn=None):
            return {"order_id": order_id, "version_number": 1, "status": "WIP"}

        monkeypatch.setattr(store, "find_latest", stale)

        summary = engine.run()

        assert summary["status"] == "PARTIAL"
        assert summary["failures"][0]["error"] == InvariantViolation.__name__
        assert summary["failures"][0]["version_number"] == 2
        monkeypatch.undo()
        assert store.find_latest("ORD-00001")["version_number"] == 2

    def test_already_deleted_version_is_skipped(self, saver, store, engine, monkeypatch):
        """A candidate gone before its delete is a no-op, not a failure."""
        saver("ORD-00001")
        saver("ORD-00001")
        saver("ORD-00001")

        monkeypatch.setattr(
            store,
            "group_wip_by_order",
            lambda: [WipPurgeCandidateGroup("ORD-00001", (1, 2, 3))],
        )
        store.delete_wip_version("ORD-00001", 1)

        summary = engine.run()

        assert summary["status"] == "SUCCESS"
        assert summary["details"][0]["deleted_versions"] == [2]
        assert summary["details"][0]["skipped_versions"] == [1]
        assert summary["failures"] == []

    def test_version_promoted_after_snapshot_is_skipped(self, saver, order_service, store, engine, monkeypatch):
        """A candidate committed between snapshot and delete is kept and not a failure."""
        for _ in range(3):
            saver("ORD-00001")
        snapshot = store.group_wip_by_order()
        order_service.promote("ORD-00001", 1)
        monkeypatch.setattr(store, "group_wip_by_order", lambda: snapshot)

        summary = engine.run()

        assert summary["status"] == "SUCCESS"
        assert summary["failures"] == []
        assert summary["details"][0]["skipped_versions"] == [1]
        assert summary["details"][0]["deleted_versions"] == [2]
        assert _numbers(store, "ORD-00001") == [(1, "COMMITTED"), (3, "WIP")]

    def test_count_failure_keeps_deletions_in_summary(self, saver, store, engine, audit, monkeypatch):
        """Deletions already committed are reported even when the follow-up count fails."""
        saver("ORD-00001")
        saver("ORD-00001")
        saver("ORD-00001", final_save=True)

        def broken_count(order_id, status):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(store, "count_by_status", broken_count)

        summary = engine.run()

        assert summary["status"] == "SUCCESS"
        assert summary["versions_deleted"] == 2
        assert summary["details"][0]["deleted_versions"] == [1, 2]
        assert summary["details"][0]["committed_versions_count"] is None
        assert audit.list_runs()[0]["versions_deleted"] == 2
        monkeypatch.undo()
        assert _numbers(store, "ORD-00001") == [(3, "COMMITTED")]

    def test_snapshot_failure_is_fatal(self, store, engine, audit, monkeypatch):
        def boom():
            raise sqlite3.OperationalError("no such table: order_versions")

        monkeypatch.setattr(store, "group_wip_by_order", boom)

        with pytest.raises(sqlite3.OperationalError):
            engine.run()

        runs = audit.list_runs()
        assert runs[0]["status"] == "FAILED"
        assert "no such table" in runs[0]["error_message"]
        # lease released even though the run failed
        assert audit.acquire_lock(LOCK_NAME, "someone-else", 60) is True

    def test_interrupted_between_orders(self, saver, store, engine, monkeypatch):
        """Setting the stop event finishes the current order, then stops."""
        for order_id in ("ORD-00001", "ORD-00002"):
            saver(order_id)
            saver(order_id)

        stop = threading.Event()
        real_delete = store.delete_wip_version

        def delete_then_stop(order_id, version_number):
            real_delete(order_id, version_number)
            stop.set()

        monkeypatch.setattr(store, "delete_wip_version", delete_then_stop)

        summary = engine.run(stop_event=stop)

        assert summary["status"] == "INTERRUPTED"
        assert summary["orders_examined"] == 1
        assert _numbers(store, "ORD-00001") == [(2, "WIP")]
        assert len(store.list_versions("ORD-00002")) == 2


class TestSingleFlight:
    """Run-level mutual exclusion."""

    def test_concurrent_run_in_process_is_refused(self, saver, engine):
        saver("ORD-00001")
        assert engine._run_lock.acquire(blocking=False)
        try:
            with pytest.raises(PurgeAlreadyRunning):
                engine.run()
        finally:
            engine._run_lock.release()

    def test_lease_held_by_other_instance_is_refused(self, saver, store, audit, engine):
        saver("ORD-00001")
        saver("ORD-00001")
        assert audit.acquire_lock(LOCK_NAME, "other-host:1", 60) is True

        with pytest.raises(PurgeAlreadyRunning):
            engine.run()
        assert len(store.list_versions("ORD-00001")) == 2

    def test_expired_lease_is_taken_over(self, saver, store, audit, engine):
        saver("ORD-00001")
        saver("ORD-00001")
        assert audit.acquire_lock(LOCK_NAME, "crashed-host:1", -1) is True

        summary = engine.run()

        assert summary["versions_deleted"] == 1

    def test_two_engines_same_database(self, saver, store, audit):
        """While one instance holds the lease, a second instance is refused."""
        saver("ORD-00001")
        saver("ORD-00001")
        first = WipPurgeEngine(store, audit, holder="host-a")
        second = WipPurgeEngine(store, audit, holder="host-b")
        release = threading.Event()
        entered = threading.Event()
        real_group = store.group_wip_by_order
        results = {}

        def slow_group():
            entered.set()
            release.wait(5)
            return real_group()

        store.group_wip_by_order = slow_group
        try:
            t = threading.Thread(target=lambda: results.setdefault("first", first.run()))
            t.start()
            assert entered.wait(5)
            with pytest.raises(PurgeAlreadyRunning):
                second.run()
            release.set()
            t.join(5)
        finally:
            store.group_wip_by_order = real_group

        assert results["first"]["versions_deleted"] == 1


class TestPurgeAudit:
    """Audit rows written per run."""

    def test_run_is_recorded(self, saver, engine, audit):
        saver("ORD-00001")
        saver("ORD-00001")

        summary = engine.run(trigger="scheduled")

        runs = audit.list_runs()
        assert len(runs) == 1
        assert runs[0]["purge_id"] == summary["purge_id"]
        assert runs[0]["purge_id"].startswith("PURGE-")
        assert runs[0]["trigger"] == "scheduled"
        assert runs[0]["versions_deleted"] == 1
        assert runs[0]["details"][0]["deleted_versions"] == [1]
