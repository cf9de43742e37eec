"""
Unit tests for SchemaRegistry and SchemaActivationService.

Tests cover:
- creation, id pattern, duplicates
- single active schema across sequential and concurrent activation
- deprecation rules
- cache invalidation on writes
"""

import threading

import pytest

from formledger.core.cache import ACTIVE_SCHEMA_KEY, SCHEMA_LIST_KEY
from formledger.core.errors import ConflictError, InvariantViolation, NotFound, ValidationError


def _active_ids(registry):
    return [s["form_version_id"] for s in registry.list_all() if s["is_active"]]


class TestSchemaRegistry:
    """Tests for SchemaRegistry."""

    def test_create_defaults_inactive(self, registry):
        s = registry.create(
            form_version_id="v1.0.0",
            form_name="Order Form",
            description="first",
            field_definitions={"fields": []},
            created_by="alice",
        )
        assert s["is_active"] is False
        assert s["field_definitions"] == {"fields": []}
        assert s["created_by"] == "alice"

    def test_create_duplicate(self, registry):
        kwargs = dict(form_version_id="v1.0.0", form_name="A", description=None, field_definitions={}, created_by=None)
        registry.create(**kwargs)
        with pytest.raises(ConflictError):
            registry.create(**kwargs)

    def test_get_missing(self, registry):
        with pytest.raises(NotFound):
            registry.get("v0.0.1")

    def test_find_active_none(self, registry):
        with pytest.raises(NotFound):
            registry.find_active()


class TestSchemaActivationService:
    """Tests for SchemaActivationService."""

    @pytest.fixture
    def two_schemas(self, schema_service):
        schema_service.create_schema(form_version_id="v1.0.0", form_name="Order Form")
        schema_service.create_schema(form_version_id="v1.1.0", form_name="Order Form")

    @pytest.mark.parametrize("bad", ["1.0.0", "v1.0", "v1.0.0-beta", "va.b.c", ""])
    def test_create_rejects_bad_id(self, schema_service, bad):
        with pytest.raises(ValidationError):
            schema_service.create_schema(form_version_id=bad, form_name="X")

    def test_create_rejects_non_object_definitions(self, schema_service):
        with pytest.raises(ValidationError):
            schema_service.create_schema(form_version_id="v1.0.0", form_name="X", field_definitions=["a"])

    def test_activate_then_activate_other(self, schema_service, registry, two_schemas):
        """Only the most recently activated schema is active."""
        schema_service.activate("v1.0.0")
        schema_service.activate("v1.1.0")

        assert _active_ids(registry) == ["v1.1.0"]
        assert registry.get("v1.0.0")["is_active"] is False

    def test_activate_is_idempotent(self, schema_service, registry, two_schemas):
        first = schema_service.activate("v1.0.0")
        second = schema_service.activate("v1.0.0")

        assert first == second
        assert _active_ids(registry) == ["v1.0.0"]

    def test_activate_missing(self, schema_service, registry, two_schemas):
        schema_service.activate("v1.0.0")
        with pytest.raises(NotFound):
            schema_service.activate("v9.9.9")
        assert _active_ids(registry) == ["v1.0.0"]

    def test_concurrent_activation_leaves_one_active(self, schema_service, registry):
        """Racing activations serialize; exactly one schema ends active."""
        ids = [f"v1.{i}.0" for i in range(8)]
        for fvid in ids:
            schema_service.create_schema(form_version_id=fvid, form_name="Order Form")

        errors = []
        barrier = threading.Barrier(len(ids))

        def worker(fvid):
            try:
                barrier.wait()
                for _ in range(3):
                    schema_service.activate(fvid)
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(fvid,)) for fvid in ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(_active_ids(registry)) == 1

    def test_deprecate_active_fails(self, schema_service, registry, two_schemas):
        schema_service.activate("v1.0.0")

        with pytest.raises(InvariantViolation):
            schema_service.deprecate("v1.0.0")
        assert registry.get("v1.0.0")["is_deprecated"] is False

    def test_deprecate_inactive(self, schema_service, two_schemas):
        schema_service.activate("v1.1.0")

        out = schema_service.deprecate("v1.0.0")

        assert out["is_deprecated"] is True
        assert out["deprecated_date"] is not None
        again = schema_service.deprecate("v1.0.0")
        assert again["deprecated_date"] == out["deprecated_date"]

    def test_deprecate_missing(self, schema_service):
        with pytest.raises(NotFound):
            schema_service.deprecate("v3.0.0")

    def test_reactivating_deprecated_schema_revives_it(self, schema_service, two_schemas):
        schema_service.deprecate("v1.0.0")
        out = schema_service.activate("v1.0.0")
        assert out["is_active"] is True
        assert out["is_deprecated"] is False

    def test_superseded_schema_is_not_deprecated(self, schema_service, registry, two_schemas):
        schema_service.activate("v1.0.0")
        schema_service.activate("v1.1.0")
        assert registry.get("v1.0.0")["is_deprecated"] is False

    def test_activation_invalidates_cached_active(self, schema_service, two_schemas):
        """Reads after a write never serve the pre-write active schema."""
        schema_service.activate("v1.0.0")
        assert schema_service.get_active()["form_version_id"] == "v1.0.0"
        assert schema_service.cache.get(ACTIVE_SCHEMA_KEY) is not None

        schema_service.activate("v1.1.0")

        assert schema_service.cache.get(ACTIVE_SCHEMA_KEY) is None
        assert schema_service.get_active()["form_version_id"] == "v1.1.0"

    def test_create_invalidates_cached_list(self, schema_service, two_schemas):
        assert len(schema_service.list_schemas()) == 2
        schema_service.create_schema(form_version_id="v2.0.0", form_name="Order Form")
        assert schema_service.cache.get(SCHEMA_LIST_KEY) is None
        assert len(schema_service.list_schemas()) == 3

    def test_cached_reads_are_isolated_copies(self, schema_service):
        """Mutating a returned schema never leaks into later reads."""
        schema_service.create_schema(
            form_version_id="v1.0.0",
            form_name="Order Form",
            field_definitions={"fields": [{"fieldName": "qty", "fieldType": "number"}]},
        )
        schema_service.activate("v1.0.0")

        active = schema_service.get_active()
        active["field_definitions"]["fields"].append({"fieldName": "injected"})
        listed = schema_service.list_schemas()
        listed[0]["field_definitions"]["fields"].clear()

        assert schema_service.get_active()["field_definitions"]["fields"] == [{"fieldName": "qty", "fieldType": "number"}]
        assert len(schema_service.list_schemas()[0]["field_definitions"]["fields"]) == 1

    def test_get_active_without_any(self, schema_service):
        with pytest.raises(NotFound):
            schema_service.get_active()
