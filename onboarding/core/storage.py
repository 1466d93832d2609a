"""
Durable key-value storage used by the registration engine.

The engine only relies on ``load``/``save``/``delete``: whatever was saved
before a reload must be visible to the next ``load``. Two backends are
provided, an in-process one for tests and single-user tools, and an
SQLAlchemy-backed one for the HTTP service.
"""
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from .storage_models import StoredState

# Set up logging
logger = logging.getLogger(__name__)

class StoreCorruptedError(Exception):
    """Raised when a persisted value cannot be decoded into engine state."""
    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Stored value for '{key}' is corrupted: {reason}")


class KeyValueStore(ABC):
    """Minimal persistence boundary consumed by the session manager and the trackers."""

    @abstractmethod
    def load(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the value saved under ``key`` or None."""

    @abstractmethod
    def save(self, key: str, value: Dict[str, Any]) -> None:
        """Persist ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``. Deleting a missing key is a no-op."""


class InMemoryStore(KeyValueStore):
    """
    Process-local store.

    Values are kept as JSON text so that a loaded value is never the same
    object that was saved, which is what a page reload would observe.
    """

    def __init__(self):
        self._values: Dict[str, str] = {}

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._values.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StoreCorruptedError(key, str(e)) from e

    def save(self, key: str, value: Dict[str, Any]) -> None:
        self._values[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self):
        return list(self._values.keys())


class SQLAlchemyStore(KeyValueStore):
    """
    Store backed by the ``onboarding_state`` table.

    Args:
        db: Database session
        namespace: Owner of the keys, normally the browser client id
    """

    def __init__(self, db: Session, namespace: str):
        self.db = db
        self.namespace = namespace

    def _get_row(self, key: str) -> Optional[StoredState]:
        return self.db.get(StoredState, (self.namespace, key))

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        row = self._get_row(key)
        if row is None:
            return None
        if not isinstance(row.payload, dict):
            raise StoreCorruptedError(key, f"expected a JSON object, got {type(row.payload).__name__}")
        return row.payload

    def save(self, key: str, value: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc)
        row = self._get_row(key)
        if row is None:
            row = StoredState(namespace=self.namespace, key=key, payload=value, updated_at=now)
            self.db.add(row)
        else:
            row.payload = value
            flag_modified(row, "payload")
            row.updated_at = now
        self.db.commit()

    def delete(self, key: str) -> None:
        row = self._get_row(key)
        if row is None:
            return
        self.db.delete(row)
        self.db.commit()


def purge_stale_state(db: Session, older_than: datetime) -> int:
    """
    Delete every stored value not written since ``older_than``.

    Lazy expiry keeps the engine correct without this; the purge only
    frees rows left behind by abandoned browser clients.

    Args:
        db: Database session
        older_than: Cutoff timestamp

    Returns:
        Number of deleted rows
    """
    deleted = (
        db.query(StoredState)
        .filter(StoredState.updated_at < older_than)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info(f"Purged {deleted} stale onboarding state rows older than {older_than.isoformat()}")
    return deleted
