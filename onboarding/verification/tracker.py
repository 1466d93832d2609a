"""
Verification Tracker - attempt, cooldown and verified state for one channel.

The tracker is a pure recorder: it never enforces the cooldown itself.
Callers consult ``CooldownPolicy`` before ``record_attempt``. Expiry of a
verified record is lazy, checked whenever the record is queried.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from ..core.clock import Clock, utc_now
from ..core.storage import KeyValueStore, StoreCorruptedError
from .exceptions import NoActiveVerification
from .schemas import VerificationChannel, VerificationRecord

# Set up logging
logger = logging.getLogger(__name__)

def normalize_email(value: str) -> str:
    return value.strip().lower()

def normalize_phone(value: str) -> str:
    return "".join(ch for ch in value.strip() if ch not in " -().")

def normalize_document(value: str) -> str:
    return value.strip().upper()

DEFAULT_NORMALIZERS: Dict[VerificationChannel, Callable[[str], str]] = {
    VerificationChannel.EMAIL: normalize_email,
    VerificationChannel.PHONE: normalize_phone,
    VerificationChannel.DOCUMENT: normalize_document,
}

class VerificationTracker:
    """
    Tracks verification records of one channel, keyed by identifier.

    Records are loaded once from the store when the tracker is built and
    written through on every mutation.

    Args:
        channel: Channel handled by this instance
        store: Durable store shared with the session manager
        session_timeout: How long a verified record stays verified
        clock: Time source
        normalize: Canonical form of an identifier (defaults per channel)
    """

    def __init__(
        self,
        channel: VerificationChannel,
        store: KeyValueStore,
        session_timeout: timedelta,
        clock: Clock = utc_now,
        normalize: Optional[Callable[[str], str]] = None,
    ):
        self.channel = channel
        self.store = store
        self.session_timeout = session_timeout
        self.clock = clock
        self.normalize = normalize or DEFAULT_NORMALIZERS[channel]
        self.storage_key = f"verification_tracker:{channel.value}"
        self._records: Dict[str, VerificationRecord] = self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> Dict[str, VerificationRecord]:
        stored = self.store.load(self.storage_key)
        if not stored:
            return {}
        try:
            records = {
                identifier: VerificationRecord.model_validate(raw)
                for identifier, raw in stored.get("records", {}).items()
            }
        except (ValidationError, AttributeError) as e:
            raise StoreCorruptedError(self.storage_key, str(e)) from e
        logger.debug(f"Loaded {len(records)} {self.channel.value} verification records")
        return records

    def _save(self) -> None:
        self.store.save(self.storage_key, {
            "records": {
                identifier: record.model_dump(mode="json")
                for identifier, record in self._records.items()
            },
            "last_saved": self.clock().isoformat(),
        })

    # ------------------------------------------------------------------
    # Expiry helpers
    # ------------------------------------------------------------------

    def _is_expired(self, record: VerificationRecord, now: datetime) -> bool:
        return (
            record.verification_timestamp is not None
            and now - record.verification_timestamp > self.session_timeout
        )

    def _expire(self, record: VerificationRecord) -> None:
        record.is_verified = False
        record.verification_timestamp = None
        self._save()
        logger.info(f"{self.channel.value} verification expired for {record.identifier}")

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def start_verification(self, identifier: str) -> VerificationRecord:
        """Create or replace the record for ``identifier`` with zero attempts."""
        key = self.normalize(identifier)
        record = VerificationRecord(channel=self.channel, identifier=key, started_at=self.clock())
        self._records[key] = record
        self._save()
        logger.info(f"{self.channel.value} verification started for {key}")
        return record

    def record_attempt(self, identifier: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """
        Record a send/confirm attempt.

        Raises:
            NoActiveVerification: If no record exists for the identifier
        """
        key = self.normalize(identifier)
        record = self._records.get(key)
        if record is None:
            raise NoActiveVerification(self.channel.value, key)

        record.attempts += 1
        record.last_attempt_timestamp = self.clock()
        record.last_attempt_payload = payload
        self._save()
        logger.info(f"{self.channel.value} attempt #{record.attempts} recorded for {key}")

    def mark_as_verified(self, identifier: str) -> bool:
        """
        Mark the record as verified.

        Returns:
            bool: False when no record exists (it expired or was cleared); the
            caller restarts the flow in that case
        """
        key = self.normalize(identifier)
        record = self._records.get(key)
        if record is None:
            logger.warning(f"Cannot mark {self.channel.value} {key} as verified: no verification record")
            return False

        record.is_verified = True
        record.verification_timestamp = self.clock()
        self._save()
        logger.info(f"{self.channel.value} verified for {key} after {record.attempts} attempts")
        return True

    def is_verified(self, identifier: str) -> bool:
        """True if a record exists, is verified and has not expired. Clears stale state."""
        key = self.normalize(identifier)
        record = self._records.get(key)
        if record is None or not record.is_verified:
            return False

        if self._is_expired(record, self.clock()):
            self._expire(record)
            return False
        return True

    def has_active_session(self, identifier: str) -> bool:
        """Used to skip a redundant re-verification prompt."""
        return self.is_verified(identifier)

    def extend_session(self, identifier: str) -> bool:
        """Refresh the verification timestamp of a still-verified record."""
        if not self.is_verified(identifier):
            return False
        record = self._records[self.normalize(identifier)]
        record.verification_timestamp = self.clock()
        self._save()
        logger.debug(f"{self.channel.value} verification extended for {record.identifier}")
        return True

    def reset(self, identifier: str) -> None:
        """Discard the record entirely."""
        key = self.normalize(identifier)
        if self._records.pop(key, None) is not None:
            self._save()
            logger.info(f"{self.channel.value} verification record discarded for {key}")

    def get_record(self, identifier: str) -> Optional[VerificationRecord]:
        return self._records.get(self.normalize(identifier))

    def clear_all(self) -> None:
        """Drop every record of this channel (registration session destroyed)."""
        self._records.clear()
        self.store.delete(self.storage_key)
        logger.info(f"All {self.channel.value} verification records cleared")

    def cleanup_expired(self) -> int:
        """
        Remove records that can no longer be useful.

        Verified records past the verification timeout and unverified records
        idle for longer than it are dropped.

        Returns:
            int: Number of removed records
        """
        now = self.clock()
        stale = []
        for key, record in self._records.items():
            last_activity = record.verification_timestamp or record.last_attempt_timestamp or record.started_at
            if now - last_activity > self.session_timeout:
                stale.append(key)

        for key in stale:
            del self._records[key]
        if stale:
            self._save()
            logger.info(f"Cleaned up {len(stale)} expired {self.channel.value} verification records")
        return len(stale)
