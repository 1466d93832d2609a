"""
Session Manager - owns the durable registration session.

The session is read from the store once, the first time it is needed, and
every mutation is written straight back. ``navigate_to_step`` is the only
code path that changes ``current_step``.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ValidationError

from ..core.clock import Clock, utc_now
from ..core.storage import KeyValueStore, StoreCorruptedError
from .exceptions import SessionNotStarted, StepValidationRequired
from .navigation import is_step_reachable
from .schemas import (
    RegistrationData,
    RegistrationSession,
    StepValidationResult,
    StepValidationState,
)
from .steps import FIRST_STEP, RegistrationStep
from .validation import VALIDATION_RULES, ValidationRule

# Set up logging
logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = "doctor_registration_session"
RECOVERY_STORAGE_KEY = "doctor_registration_recovery"

def deep_merge(base: Dict[str, Any], partial: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Merge ``partial`` into a copy of ``base``.

    Nested dicts are merged field by field; every other value, lists
    included, replaces the previous one wholesale.
    """
    merged = dict(base)
    for key, value in partial.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class SessionManager:
    """
    Create, persist, validate and move the registration session.

    Args:
        store: Durable key-value store
        rules: Validation rule per step
        session_timeout: Inactivity window after which the session expires
        clock: Time source
        storage_key: Store key of the serialized session
    """

    def __init__(
        self,
        store: KeyValueStore,
        rules: Mapping[RegistrationStep, ValidationRule] = VALIDATION_RULES,
        session_timeout: timedelta = timedelta(minutes=30),
        clock: Clock = utc_now,
        storage_key: str = SESSION_STORAGE_KEY,
    ):
        self.store = store
        self.rules = rules
        self.session_timeout = session_timeout
        self.clock = clock
        self.storage_key = storage_key
        self.recovery_key = RECOVERY_STORAGE_KEY if storage_key == SESSION_STORAGE_KEY else f"{storage_key}:recovery"
        self._session: Optional[RegistrationSession] = None
        self._loaded = False

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        stored = self.store.load(self.storage_key)
        self._loaded = True
        if not stored:
            self._session = None
            return
        try:
            self._session = RegistrationSession.model_validate(stored)
        except ValidationError as e:
            raise StoreCorruptedError(self.storage_key, str(e)) from e

    def _save(self) -> None:
        self.store.save(self.storage_key, self._session.model_dump(mode="json"))

    def _touch_and_save(self) -> None:
        self._session.last_activity_at = self.clock()
        self._save()

    def _require_session(self, operation: str) -> RegistrationSession:
        session = self.get_current_session()
        if session is None:
            raise SessionNotStarted(operation)
        return session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_expired(self, session: RegistrationSession, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        return now - session.last_activity_at > self.session_timeout

    def expires_at(self, session: RegistrationSession) -> datetime:
        return session.last_activity_at + self.session_timeout

    def create_session(self, data: Optional[RegistrationData] = None) -> str:
        """
        Start a fresh session on the first step, replacing any existing one.

        Args:
            data: Initial data, used when resuming from recovered data

        Returns:
            str: The new session id
        """
        now = self.clock()
        self._session = RegistrationSession(
            session_id=f"reg_{uuid.uuid4().hex}",
            current_step=FIRST_STEP,
            data=data or RegistrationData(),
            created_at=now,
            last_activity_at=now,
        )
        self._loaded = True
        self._save()
        self.store.delete(self.recovery_key)
        logger.info(f"Registration session {self._session.session_id} created")
        return self._session.session_id

    def get_current_session(self) -> Optional[RegistrationSession]:
        """
        Return the live session, or None when absent or expired.

        An expired session is purged; its data is kept under the recovery
        key so that the wizard can offer to resume.
        """
        if not self._loaded:
            self._load()
        if self._session is None:
            return None

        if self.is_expired(self._session):
            expired = self._session
            self.store.save(self.recovery_key, {
                "session_id": expired.session_id,
                "data": expired.data.model_dump(mode="json"),
                "expired_at": self.expires_at(expired).isoformat(),
            })
            self.store.delete(self.storage_key)
            self._session = None
            logger.info(f"Registration session {expired.session_id} expired, data kept for recovery")
            return None
        return self._session

    def get_recoverable_data(self) -> Optional[RegistrationData]:
        """Data of the last expired session, if any."""
        stored = self.store.load(self.recovery_key)
        if not stored:
            return None
        try:
            return RegistrationData.model_validate(stored.get("data", {}))
        except ValidationError as e:
            raise StoreCorruptedError(self.recovery_key, str(e)) from e

    def touch(self) -> None:
        """Refresh the activity timestamp, extending the session."""
        self._require_session("extend the session")
        self._touch_and_save()

    def clear_session(self) -> None:
        session_id = self._session.session_id if self._session else None
        self._session = None
        self._loaded = True
        self.store.delete(self.storage_key)
        self.store.delete(self.recovery_key)
        logger.info(f"Registration session {session_id} cleared")

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def get_data(self) -> RegistrationData:
        return self._require_session("read registration data").data

    def update_data(self, partial) -> RegistrationData:
        """
        Deep-merge a partial record into the session data.

        Args:
            partial: Mapping or pydantic model; for a model only the fields
                that were explicitly set are merged

        Returns:
            RegistrationData: The merged data
        """
        session = self._require_session("update registration data")
        if isinstance(partial, BaseModel):
            partial = partial.model_dump(mode="json", exclude_unset=True)

        merged = deep_merge(session.data.model_dump(mode="json"), partial)
        session.data = RegistrationData.model_validate(merged)
        self._touch_and_save()
        logger.debug(f"Session {session.session_id} data updated: {sorted(partial.keys())}")
        return session.data

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_step(self, step: RegistrationStep) -> StepValidationResult:
        """Run the rule of ``step`` against the current data. Never mutates state."""
        step = RegistrationStep(step)
        session = self._require_session("validate a step")
        rule = self.rules.get(step)
        if rule is None:
            return StepValidationResult(step=step, is_valid=True)
        return rule(session.data)

    def validate_current_step(self) -> bool:
        session = self._require_session("validate the current step")
        return self.validate_step(session.current_step).is_valid

    def is_step_valid(self, step: RegistrationStep) -> bool:
        return self.validate_step(step).is_valid

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def complete_step(self, step: RegistrationStep) -> bool:
        """
        Add ``step`` to the completed steps.

        Returns:
            bool: True if the step was newly completed, False if it already was

        Raises:
            SessionNotStarted: If there is no session
            StepValidationRequired: If the rule of the step fails
        """
        step = RegistrationStep(step)
        session = self._require_session("complete a step")
        if step in session.completed_steps:
            return False

        result = self.validate_step(step)
        if not result.is_valid:
            raise StepValidationRequired(step.value, result.errors)

        session.completed_steps.append(step)
        session.step_validation[step] = StepValidationState(is_valid=True, validated_at=self.clock())
        self._touch_and_save()
        logger.info(f"Session {session.session_id} completed step {step.value}")
        return True

    def is_step_completed(self, step: RegistrationStep) -> bool:
        session = self.get_current_session()
        return session is not None and RegistrationStep(step) in session.completed_steps

    def navigate_to_step(self, step: RegistrationStep) -> bool:
        """
        Move ``current_step`` to ``step`` if it is reachable.

        Returns:
            bool: False, with the state untouched, when the step is beyond
            the completed frontier
        """
        step = RegistrationStep(step)
        session = self._require_session("navigate")
        if not is_step_reachable(session, step):
            logger.info(f"Session {session.session_id} refused jump to unreachable step {step.value}")
            return False
        if session.current_step == step:
            return True

        previous = session.current_step
        session.current_step = step
        self._touch_and_save()
        logger.info(f"Session {session.session_id} moved from {previous.value} to {step.value}")
        return True
