"""
Shared fixtures: every test gets its own SQLite file under tmp_path.
"""

import pytest

from formledger.core.cache import SchemaCache
from formledger.core.db import init_db
from formledger.modules.form_schemas.registry import SchemaRegistry
from formledger.modules.form_schemas.service import SchemaActivationService
from formledger.modules.orders.service import OrderVersionService
from formledger.modules.orders.store import VersionStore
from formledger.modules.purge.service import WipPurgeEngine
from formledger.modules.purge.store import PurgeAuditStore


@pytest.fixture
def db_url(tmp_path):
    """Initialized database URL."""
    url = f"sqlite:///{(tmp_path / 'ledger.db').as_posix()}"
    init_db(url)
    return url


@pytest.fixture
def registry(db_url):
    return SchemaRegistry(db_url)


@pytest.fixture
def schema_service(registry):
    return SchemaActivationService(registry, SchemaCache(ttl_seconds=300))


@pytest.fixture
def store(db_url):
    return VersionStore(db_url)


@pytest.fixture
def active_schema(schema_service):
    """v1.0.0 created and activated."""
    schema_service.create_schema(
        form_version_id="v1.0.0",
        form_name="Order Form",
        field_definitions={"fields": [{"fieldName": "deliveryLocations", "fieldType": "multivalue"}]},
        created_by="tester",
    )
    return schema_service.activate("v1.0.0")


@pytest.fixture
def order_service(store, registry, active_schema):
    return OrderVersionService(store, registry)


@pytest.fixture
def audit(db_url):
    return PurgeAuditStore(db_url)


@pytest.fixture
def engine(store, audit):
    return WipPurgeEngine(store, audit, lock_ttl_seconds=60, holder="test-holder")


def save(order_service, order_id, *, final_save=False, data=None, user="alice"):
    """Create one version of order_id."""
    return order_service.create_version(
        order_id=order_id,
        form_version_id=None,
        payload=data or {"note": "draft"},
        user_name=user,
        final_save=final_save,
        change_description=None,
    )


@pytest.fixture
def saver(order_service):
    def _save(order_id, **kwargs):
        return save(order_service, order_id, **kwargs)

    return _save
