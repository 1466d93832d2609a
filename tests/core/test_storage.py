"""
Tests for the key-value stores.
"""
from datetime import datetime, timedelta, timezone
import pytest

from onboarding.core.storage import InMemoryStore, SQLAlchemyStore, StoreCorruptedError, purge_stale_state
from onboarding.core.storage_models import StoredState


def test_in_memory_store_does_not_alias_values():
    store = InMemoryStore()
    value = {"records": {"a": 1}}
    store.save("key", value)
    value["records"]["a"] = 2

    loaded = store.load("key")
    assert loaded == {"records": {"a": 1}}
    loaded["records"]["a"] = 3
    assert store.load("key") == {"records": {"a": 1}}


def test_in_memory_store_delete_is_idempotent():
    store = InMemoryStore()
    store.save("key", {"x": 1})
    store.delete("key")
    store.delete("key")
    assert store.load("key") is None
    assert store.keys() == []


def test_sqlalchemy_store_round_trip(db):
    store = SQLAlchemyStore(db, "client-a")
    store.save("session", {"current_step": "personal_info"})
    store.save("session", {"current_step": "professional_info"})

    assert SQLAlchemyStore(db, "client-a").load("session") == {"current_step": "professional_info"}
    assert db.query(StoredState).count() == 1


def test_sqlalchemy_store_namespaces_are_isolated(db):
    SQLAlchemyStore(db, "client-a").save("session", {"owner": "a"})
    other = SQLAlchemyStore(db, "client-b")

    assert other.load("session") is None
    other.delete("session")
    assert SQLAlchemyStore(db, "client-a").load("session") == {"owner": "a"}


def test_sqlalchemy_store_rejects_non_object_payload(db):
    db.add(StoredState(namespace="client-a", key="session", payload=[1, 2, 3]))
    db.commit()

    with pytest.raises(StoreCorruptedError):
        SQLAlchemyStore(db, "client-a").load("session")


def test_purge_stale_state(db):
    old = datetime.now(timezone.utc) - timedelta(days=3)
    db.add(StoredState(namespace="old-client", key="session", payload={}, updated_at=old))
    db.commit()
    SQLAlchemyStore(db, "new-client").save("session", {})

    deleted = purge_stale_state(db, datetime.now(timezone.utc) - timedelta(days=1))

    assert deleted == 1
    assert SQLAlchemyStore(db, "new-client").load("session") == {}
