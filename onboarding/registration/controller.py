"""
Wizard Controller - orchestrates the doctor registration wizard.

The controller owns one session manager, one verification tracker per
channel, the cooldown policy and the external collaborators, all passed in
explicitly. Expected failures come back as result objects carrying a
``WizardErrorCode``; only hard failures raise.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel

from ..config import Settings, settings as default_settings
from ..core.clock import Clock, utc_now
from ..core.storage import KeyValueStore
from ..verification.cooldown import CooldownPolicy
from ..verification.schemas import VerificationChannel, VerificationStatusResponse
from ..verification.tracker import VerificationTracker
from .exceptions import ProfileConflict, ProviderUnavailable, SessionNotStarted
from .navigation import NavigationResolver
from .providers import (
    HttpIdentityVerificationProvider,
    HttpLicenseRegistryProvider,
    HttpVerificationCodeSender,
    IdentityVerificationProvider,
    LicenseRegistryProvider,
    ProfileStore,
    VerificationCodeSender,
    may_proceed,
    resolve_access_level,
)
from .schemas import (
    IdentityCheckResult,
    IdentityStatus,
    IdentityVerificationState,
    LicenseCheckResult,
    RegistrationData,
    RegistrationSession,
    StepResult,
    SubmissionResult,
    VerificationAttemptResult,
    WizardErrorCode,
)
from .session_manager import SessionManager
from .steps import FINAL_STEP, FIRST_STEP, STEP_ORDER, RegistrationStep, next_step, previous_step, step_index
from .validation import PHONE_PATTERN, VALIDATION_RULES, is_valid_email, validate_document_format

# Set up logging
logger = logging.getLogger(__name__)

# Session field holding the identifier of each channel
CHANNEL_FIELDS = {
    VerificationChannel.EMAIL: "email",
    VerificationChannel.PHONE: "phone",
    VerificationChannel.DOCUMENT: "document_number",
}

# Channels that must be verified before leaving a step
STEP_CHANNELS = {
    RegistrationStep.PERSONAL_INFO: [VerificationChannel.EMAIL, VerificationChannel.PHONE],
    RegistrationStep.LICENSE_VERIFICATION: [VerificationChannel.DOCUMENT],
}

# Fields checked against existing profiles before leaving a step
STEP_UNIQUE_FIELDS = {
    RegistrationStep.PERSONAL_INFO: ["email"],
    RegistrationStep.PROFESSIONAL_INFO: ["document_number"],
}

CODE_CHANNELS = (VerificationChannel.EMAIL, VerificationChannel.PHONE)


@dataclass
class StepHandle:
    """
    Callbacks a mounted step exposes to the wizard.

    ``is_valid`` lets a step veto leaving it (e.g. an upload still in
    progress); ``handle_next`` and ``handle_previous`` run after the wizard
    moved away from the step.
    """
    handle_next: Optional[Callable[[], None]] = None
    handle_previous: Optional[Callable[[], None]] = None
    is_valid: Optional[Callable[[], bool]] = None


class WizardController:
    """
    Entry point of every registration operation.

    Args:
        session_manager: Owner of the registration session
        trackers: One verification tracker per channel
        cooldown: Cooldown policy shared by all channels
        profile_store: Destination of the submitted registration
        license_registry: License lookup provider
        identity_provider: Identity verification provider
        code_sender: Email/SMS code gateway
        clock: Time source
        provider_timeout: Seconds allowed for each provider call
    """

    def __init__(
        self,
        session_manager: SessionManager,
        trackers: Mapping[VerificationChannel, VerificationTracker],
        cooldown: CooldownPolicy,
        profile_store: ProfileStore,
        license_registry: LicenseRegistryProvider,
        identity_provider: IdentityVerificationProvider,
        code_sender: VerificationCodeSender,
        clock: Clock = utc_now,
        provider_timeout: float = 15.0,
    ):
        self.session_manager = session_manager
        self.trackers = dict(trackers)
        self.cooldown = cooldown
        self.profile_store = profile_store
        self.license_registry = license_registry
        self.identity_provider = identity_provider
        self.code_sender = code_sender
        self.clock = clock
        self.provider_timeout = provider_timeout
        self.navigation = NavigationResolver(session_manager)
        self._handles: Dict[RegistrationStep, StepHandle] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_session(self, operation: str) -> RegistrationSession:
        session = self.session_manager.get_current_session()
        if session is None:
            raise SessionNotStarted(operation)
        return session

    def _expired_step_result(self) -> StepResult:
        return StepResult(
            success=False,
            current_step=FIRST_STEP,
            error_code=WizardErrorCode.SESSION_EXPIRED,
            message="Your registration session expired",
        )

    async def _call_provider(self, coroutine):
        try:
            return await asyncio.wait_for(coroutine, timeout=self.provider_timeout)
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable("provider", f"no answer within {self.provider_timeout}s") from e

    def _verification_errors(self, step: RegistrationStep, data: RegistrationData) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        for channel in STEP_CHANNELS.get(step, []):
            field = CHANNEL_FIELDS[channel]
            value = getattr(data, field)
            if not value or not self.trackers[channel].is_verified(value):
                errors[field] = f"Verify your {field.replace('_', ' ')} to continue"
        return errors

    def _availability_errors(self, step: RegistrationStep, data: RegistrationData) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        for field in STEP_UNIQUE_FIELDS.get(step, []):
            value = getattr(data, field)
            if value and not self.profile_store.check_availability(field, value):
                errors[field] = f"This {field.replace('_', ' ')} is already registered"
        return errors

    def _check_leaving(self, step: RegistrationStep) -> Optional[Tuple[WizardErrorCode, Dict[str, str], str]]:
        """Every gate a step must pass before the user may move past it."""
        result = self.session_manager.validate_step(step)
        if not result.is_valid:
            return WizardErrorCode.VALIDATION_FAILED, result.errors, "Please correct the highlighted fields"

        handle = self._handles.get(step)
        if handle is not None and handle.is_valid is not None and not handle.is_valid():
            return WizardErrorCode.VALIDATION_FAILED, {}, "This step is not ready yet"

        data = self.session_manager.get_data()
        errors = self._verification_errors(step, data)
        if errors:
            return WizardErrorCode.VERIFICATION_REQUIRED, errors, "Verification required"

        errors = self._availability_errors(step, data)
        if errors:
            return WizardErrorCode.VALIDATION_FAILED, errors, "Already registered"
        return None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start(self) -> Tuple[RegistrationSession, bool, bool]:
        """
        Resume the live session, or create one.

        When the previous session expired its data is carried into the new
        session.

        Returns:
            (session, resumed, recovered)
        """
        session = self.session_manager.get_current_session()
        if session is not None:
            self.session_manager.touch()
            logger.info(f"Registration session {session.session_id} resumed")
            return session, True, False

        recovered_data = self.session_manager.get_recoverable_data()
        self.session_manager.create_session(data=recovered_data)
        session = self.session_manager.get_current_session()
        if recovered_data is not None:
            logger.info(f"Registration session {session.session_id} created from recovered data")
        return session, False, recovered_data is not None

    def get_session(self) -> Optional[RegistrationSession]:
        return self.session_manager.get_current_session()

    def has_recoverable_data(self) -> bool:
        return self.session_manager.get_recoverable_data() is not None

    def expires_at(self, session: RegistrationSession):
        return self.session_manager.expires_at(session)

    def reset(self) -> None:
        """Destroy the session, its recovery copy and every verification record."""
        self.session_manager.clear_session()
        for tracker in self.trackers.values():
            tracker.clear_all()

    def extend_session(self) -> bool:
        """Refresh the session and every channel that is still verified."""
        session = self.session_manager.get_current_session()
        if session is None:
            return False
        self.session_manager.touch()
        for channel, field in CHANNEL_FIELDS.items():
            value = getattr(session.data, field)
            if value:
                self.trackers[channel].extend_session(value)
        return True

    def cleanup_expired_verifications(self) -> int:
        return sum(tracker.cleanup_expired() for tracker in self.trackers.values())

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def update_data(self, partial) -> RegistrationData:
        """
        Merge a partial update into the session data.

        A changed email, phone or document number discards the verification
        record of the previous identifier; a changed document also drops the
        license verdict obtained for the old one.
        """
        session = self._require_session("update registration data")
        if isinstance(partial, BaseModel):
            partial = partial.model_dump(mode="json", exclude_unset=True)
        partial = dict(partial)
        before = session.data.model_copy(deep=True)

        if partial.get("terms_accepted") and not before.terms_accepted:
            partial["terms_accepted_at"] = self.clock().isoformat()
        elif partial.get("terms_accepted") is False:
            partial["terms_accepted_at"] = None

        data = self.session_manager.update_data(partial)

        for channel, field in CHANNEL_FIELDS.items():
            old_value, new_value = getattr(before, field), getattr(data, field)
            if not old_value:
                continue
            tracker = self.trackers[channel]
            if new_value is None or tracker.normalize(old_value) != tracker.normalize(new_value):
                tracker.reset(old_value)
                logger.info(f"{channel.value} identifier changed, previous verification discarded")

        document_changed = (
            before.document_number != data.document_number
            or before.document_type != data.document_type
        )
        if document_changed and data.license_verification is not None and "license_verification" not in partial:
            data = self.session_manager.update_data({"license_verification": None})
        return data

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def go_to_next_step(self, expected_step: RegistrationStep) -> StepResult:
        """
        Validate the current step, complete it and move to the following one.

        Args:
            expected_step: Step the caller believes is current. When the
                session already left it the call is a duplicate and nothing
                happens, so a repeated click never advances twice.

        Returns:
            StepResult: Failure carries the field errors of the gate that refused
        """
        session = self.session_manager.get_current_session()
        if session is None:
            return self._expired_step_result()

        expected_step = RegistrationStep(expected_step)
        current = session.current_step
        if expected_step != current:
            logger.info(f"Duplicate advance from {expected_step.value} ignored, already on {current.value}")
            return StepResult(success=True, current_step=current, message="Already advanced")

        target = next_step(current)
        if target is None:
            return StepResult(
                success=False,
                current_step=current,
                error_code=WizardErrorCode.STEP_NOT_REACHABLE,
                message="This is the last step, submit the registration to finish",
            )

        refusal = self._check_leaving(current)
        if refusal is not None:
            code, errors, message = refusal
            logger.info(f"Advance from {current.value} refused: {code.value} {sorted(errors)}")
            return StepResult(success=False, current_step=current, error_code=code, errors=errors, message=message)

        self.session_manager.complete_step(current)
        self.session_manager.navigate_to_step(target)

        for channel in STEP_CHANNELS.get(current, []):
            self.trackers[channel].extend_session(getattr(session.data, CHANNEL_FIELDS[channel]))

        handle = self._handles.get(current)
        if handle is not None and handle.handle_next is not None:
            handle.handle_next()
        return StepResult(success=True, current_step=target)

    def go_to_previous_step(self) -> StepResult:
        """Step back without validating or touching any data."""
        session = self.session_manager.get_current_session()
        if session is None:
            return self._expired_step_result()

        current = session.current_step
        target = previous_step(current)
        if target is None:
            return StepResult(
                success=False,
                current_step=current,
                error_code=WizardErrorCode.STEP_NOT_REACHABLE,
                message="Already on the first step",
            )

        self.session_manager.navigate_to_step(target)
        handle = self._handles.get(current)
        if handle is not None and handle.handle_previous is not None:
            handle.handle_previous()
        return StepResult(success=True, current_step=target)

    def jump_to_step(self, step: RegistrationStep) -> StepResult:
        """
        Move directly to a reachable step (progress bar click).

        Jumping forward leaves the current step, so it must pass the same
        gates as a regular advance.
        """
        session = self.session_manager.get_current_session()
        if session is None:
            return self._expired_step_result()

        step = RegistrationStep(step)
        current = session.current_step
        if step == current:
            return StepResult(success=True, current_step=current)

        if not self.navigation.can_navigate_to(step):
            return StepResult(
                success=False,
                current_step=current,
                error_code=WizardErrorCode.STEP_NOT_REACHABLE,
                message=f"Complete the previous steps before opening {step.value}",
            )

        if step_index(step) > step_index(current):
            refusal = self._check_leaving(current)
            if refusal is not None:
                code, errors, message = refusal
                return StepResult(success=False, current_step=current, error_code=code, errors=errors, message=message)

        self.session_manager.navigate_to_step(step)
        return StepResult(success=True, current_step=step)

    # ------------------------------------------------------------------
    # Step handles
    # ------------------------------------------------------------------

    def register_step(self, step: RegistrationStep, handle: StepHandle) -> None:
        self._handles[RegistrationStep(step)] = handle

    def unregister_step(self, step: RegistrationStep) -> None:
        self._handles.pop(RegistrationStep(step), None)

    def get_step_handle(self, step: RegistrationStep) -> Optional[StepHandle]:
        return self._handles.get(RegistrationStep(step))

    # ------------------------------------------------------------------
    # Email and phone codes
    # ------------------------------------------------------------------

    def _identifier_error(self, channel: VerificationChannel, identifier: str) -> Optional[str]:
        if channel == VerificationChannel.EMAIL and not is_valid_email(identifier):
            return "Invalid email format"
        if channel == VerificationChannel.PHONE and not PHONE_PATTERN.match(identifier.strip()):
            return "Must be a Venezuelan mobile number (+58XXXXXXXXXX)"
        return None

    async def request_verification_code(self, channel: VerificationChannel, identifier: str) -> VerificationAttemptResult:
        """
        Send a verification code, honoring the cooldown.

        Returns:
            VerificationAttemptResult: ``retry_after_seconds`` is the wait
            before the next send
        """
        channel = VerificationChannel(channel)
        if channel not in CODE_CHANNELS:
            return VerificationAttemptResult(
                success=False, channel=channel.value, identifier=identifier,
                error_code=WizardErrorCode.VALIDATION_FAILED,
                message="Documents are verified through the license registry",
            )

        identifier_error = self._identifier_error(channel, identifier)
        if identifier_error:
            return VerificationAttemptResult(
                success=False, channel=channel.value, identifier=identifier,
                error_code=WizardErrorCode.VALIDATION_FAILED, message=identifier_error,
            )

        tracker = self.trackers[channel]
        if tracker.has_active_session(identifier):
            record = tracker.get_record(identifier)
            return VerificationAttemptResult(
                success=True, channel=channel.value, identifier=record.identifier,
                attempts=record.attempts, message="Already verified",
            )

        record = tracker.get_record(identifier) or tracker.start_verification(identifier)
        now = self.clock()
        retry_after = self.cooldown.retry_after_seconds(record.attempts, record.last_attempt_timestamp, now)
        if retry_after > 0:
            return VerificationAttemptResult(
                success=False, channel=channel.value, identifier=record.identifier,
                attempts=record.attempts, retry_after_seconds=retry_after,
                error_code=WizardErrorCode.COOLDOWN_ACTIVE,
                message=f"Please wait {retry_after} seconds before requesting a new code",
            )

        try:
            await self._call_provider(self.code_sender.send_code(channel, record.identifier))
        except ProviderUnavailable as e:
            logger.error(f"Could not send {channel.value} code to {record.identifier}: {str(e)}")
            return VerificationAttemptResult(
                success=False, channel=channel.value, identifier=record.identifier,
                attempts=record.attempts, error_code=WizardErrorCode.PROVIDER_UNAVAILABLE,
                message="The code could not be sent, please retry",
            )

        tracker.record_attempt(identifier, payload={"action": "send", "requested_at": now.isoformat()})
        record = tracker.get_record(identifier)
        return VerificationAttemptResult(
            success=True, channel=channel.value, identifier=record.identifier,
            attempts=record.attempts,
            retry_after_seconds=self.cooldown.retry_after_seconds(record.attempts, record.last_attempt_timestamp, now),
            message="Verification code sent",
        )

    async def confirm_verification(self, channel: VerificationChannel, identifier: str, code: str) -> VerificationAttemptResult:
        channel = VerificationChannel(channel)
        tracker = self.trackers[channel]
        record = tracker.get_record(identifier)
        if record is None or channel not in CODE_CHANNELS:
            return VerificationAttemptResult(
                success=False, channel=channel.value, identifier=identifier,
                error_code=WizardErrorCode.VERIFICATION_RECORD_MISSING,
                message="Verification expired, please request a new code",
            )

        if tracker.is_verified(identifier):
            return VerificationAttemptResult(
                success=True, channel=channel.value, identifier=record.identifier,
                attempts=record.attempts, message="Already verified",
            )

        # The first guess after a send is free, further guesses follow the cooldown
        now = self.clock()
        last_action = (record.last_attempt_payload or {}).get("action")
        if last_action == "confirm":
            retry_after = self.cooldown.retry_after_seconds(record.attempts, record.last_attempt_timestamp, now)
            if retry_after > 0:
                return VerificationAttemptResult(
                    success=False, channel=channel.value, identifier=record.identifier,
                    attempts=record.attempts, retry_after_seconds=retry_after,
                    error_code=WizardErrorCode.COOLDOWN_ACTIVE,
                    message=f"Please wait {retry_after} seconds before trying another code",
                )

        try:
            valid = await self._call_provider(self.code_sender.verify_code(channel, record.identifier, code))
        except ProviderUnavailable as e:
            logger.error(f"Could not check {channel.value} code for {record.identifier}: {str(e)}")
            return VerificationAttemptResult(
                success=False, channel=channel.value, identifier=record.identifier,
                attempts=record.attempts, error_code=WizardErrorCode.PROVIDER_UNAVAILABLE,
                message="The code could not be checked, please retry",
            )

        tracker.record_attempt(identifier, payload={"action": "confirm", "valid": bool(valid)})
        record = tracker.get_record(identifier)
        if not valid:
            return VerificationAttemptResult(
                success=False, channel=channel.value, identifier=record.identifier,
                attempts=record.attempts,
                retry_after_seconds=self.cooldown.retry_after_seconds(record.attempts, record.last_attempt_timestamp, now),
                error_code=WizardErrorCode.VALIDATION_FAILED,
                message="Invalid verification code",
            )

        if not tracker.mark_as_verified(identifier):
            return VerificationAttemptResult(
                success=False, channel=channel.value, identifier=identifier,
                error_code=WizardErrorCode.VERIFICATION_RECORD_MISSING,
                message="Verification expired, please request a new code",
            )
        return VerificationAttemptResult(
            success=True, channel=channel.value, identifier=record.identifier,
            attempts=record.attempts, message="Verified",
        )

    def verification_status(self, channel: VerificationChannel, identifier: Optional[str] = None) -> VerificationStatusResponse:
        """State of a channel, for ``identifier`` or the one held in the session."""
        channel = VerificationChannel(channel)
        if identifier is None:
            session = self.session_manager.get_current_session()
            identifier = getattr(session.data, CHANNEL_FIELDS[channel]) if session else None
        if not identifier:
            return VerificationStatusResponse(channel=channel)

        tracker = self.trackers[channel]
        record = tracker.get_record(identifier)
        if record is None:
            return VerificationStatusResponse(channel=channel, identifier=tracker.normalize(identifier))
        return VerificationStatusResponse(
            channel=channel,
            identifier=record.identifier,
            is_verified=tracker.is_verified(identifier),
            attempts=record.attempts,
            retry_after_seconds=self.cooldown.retry_after_seconds(
                record.attempts, record.last_attempt_timestamp, self.clock()
            ),
        )

    # ------------------------------------------------------------------
    # License and identity
    # ------------------------------------------------------------------

    async def verify_license(self, document_type=None, document_number=None) -> LicenseCheckResult:
        """
        Look the session's document up in the license registry.

        The lookup counts as an attempt on the document channel and is
        subject to the same cooldown as code sends.
        """
        session = self.session_manager.get_current_session()
        if session is None:
            return LicenseCheckResult(success=False, error_code=WizardErrorCode.SESSION_EXPIRED,
                                      message="Your registration session expired")

        changes = {}
        if document_type is not None:
            changes["document_type"] = getattr(document_type, "value", document_type)
        if document_number is not None:
            changes["document_number"] = document_number
        data = self.update_data(changes) if changes else session.data

        format_error = validate_document_format(data.document_type, data.document_number)
        if format_error:
            return LicenseCheckResult(success=False, error_code=WizardErrorCode.VALIDATION_FAILED, message=format_error)

        tracker = self.trackers[VerificationChannel.DOCUMENT]
        number = data.document_number
        verdict = data.license_verification
        if verdict is not None and verdict.is_verified and tracker.has_active_session(number):
            return LicenseCheckResult(success=True, verdict=verdict, message="License already verified")

        record = tracker.get_record(number) or tracker.start_verification(number)
        now = self.clock()
        retry_after = self.cooldown.retry_after_seconds(record.attempts, record.last_attempt_timestamp, now)
        if retry_after > 0:
            return LicenseCheckResult(
                success=False, retry_after_seconds=retry_after,
                error_code=WizardErrorCode.COOLDOWN_ACTIVE,
                message=f"Please wait {retry_after} seconds before checking again",
            )

        try:
            verdict = await self._call_provider(self.license_registry.verify(data.document_type.value, tracker.normalize(number)))
        except ProviderUnavailable as e:
            logger.error(f"License lookup failed for {tracker.normalize(number)}: {str(e)}")
            return LicenseCheckResult(
                success=False, error_code=WizardErrorCode.PROVIDER_UNAVAILABLE,
                message="The license registry is not responding, please retry",
            )

        tracker.record_attempt(number, payload={"action": "license_lookup", "document_type": data.document_type.value})

        self.session_manager.update_data({"license_verification": verdict.model_dump(mode="json")})
        if verdict.is_valid and verdict.is_verified:
            tracker.mark_as_verified(number)
            logger.info(f"License verified for {tracker.normalize(number)}")
            return LicenseCheckResult(success=True, verdict=verdict, message="License verified")

        logger.info(f"No registered professional found for {tracker.normalize(number)}")
        return LicenseCheckResult(
            success=False, verdict=verdict,
            error_code=WizardErrorCode.VALIDATION_FAILED,
            message="No registered medical professional was found for this document",
        )

    def apply_identity_status(self, reference_id: str, status: IdentityStatus) -> IdentityCheckResult:
        """Store a status delivered by the identity provider (callback or polling)."""
        session = self.session_manager.get_current_session()
        if session is None:
            return IdentityCheckResult(success=False, error_code=WizardErrorCode.SESSION_EXPIRED,
                                       message="Your registration session expired")

        status = IdentityStatus(status)
        state = IdentityVerificationState(
            reference_id=reference_id,
            status=status,
            access_level=resolve_access_level(status),
            updated_at=self.clock(),
        )
        self.session_manager.update_data({"identity_verification": state.model_dump(mode="json")})
        logger.info(f"Identity verification {reference_id} is {status.value} ({state.access_level.value} access)")
        return IdentityCheckResult(success=True, state=state, may_proceed=may_proceed(state.access_level))

    async def refresh_identity_status(self) -> IdentityCheckResult:
        session = self.session_manager.get_current_session()
        if session is None:
            return IdentityCheckResult(success=False, error_code=WizardErrorCode.SESSION_EXPIRED,
                                       message="Your registration session expired")

        current = session.data.identity_verification
        if current is None:
            return IdentityCheckResult(success=False, error_code=WizardErrorCode.VERIFICATION_REQUIRED,
                                       message="Start the identity verification first")

        try:
            status = await self._call_provider(self.identity_provider.get_status(current.reference_id))
        except ProviderUnavailable as e:
            logger.error(f"Identity status refresh failed for {current.reference_id}: {str(e)}")
            return IdentityCheckResult(
                success=False, state=current, may_proceed=may_proceed(current.access_level),
                error_code=WizardErrorCode.PROVIDER_UNAVAILABLE,
                message="The identity provider is not responding, please retry",
            )
        return self.apply_identity_status(current.reference_id, status)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self) -> SubmissionResult:
        """
        Create the doctor profile from the final review step.

        Every earlier step must be completed, every rule and verification
        must still hold. On success the session and verification records
        are destroyed.
        """
        session = self.session_manager.get_current_session()
        if session is None:
            return SubmissionResult(success=False, error_code=WizardErrorCode.SESSION_EXPIRED,
                                    message="Your registration session expired")

        if session.current_step != FINAL_STEP:
            return SubmissionResult(success=False, error_code=WizardErrorCode.INCOMPLETE_REGISTRATION,
                                    message="Submit from the final review step")

        missing = [step for step in STEP_ORDER[:-1] if step not in session.completed_steps]
        if missing:
            return SubmissionResult(
                success=False, error_code=WizardErrorCode.INCOMPLETE_REGISTRATION,
                errors={step.value: "Step not completed" for step in missing},
                message="Complete every step before submitting",
            )

        errors: Dict[str, str] = {}
        for step in STEP_ORDER:
            errors.update(self.session_manager.validate_step(step).errors)
            errors.update(self._verification_errors(step, session.data))
        if errors:
            return SubmissionResult(success=False, error_code=WizardErrorCode.VALIDATION_FAILED,
                                    errors=errors, message="Some steps need your attention")

        self.session_manager.complete_step(FINAL_STEP)
        try:
            profile_id = self.profile_store.submit_registration(session.data)
        except ProfileConflict as e:
            logger.warning(f"Submission of session {session.session_id} rejected: {str(e)}")
            return SubmissionResult(
                success=False, error_code=WizardErrorCode.VALIDATION_FAILED,
                errors={e.field: "Already registered"}, message=str(e),
            )

        logger.info(f"Registration session {session.session_id} submitted as profile {profile_id}")
        self.reset()
        return SubmissionResult(success=True, profile_id=profile_id, message="Registration completed")


def build_wizard_controller(
    store: KeyValueStore,
    profile_store: ProfileStore,
    config: Settings = default_settings,
    license_registry: Optional[LicenseRegistryProvider] = None,
    identity_provider: Optional[IdentityVerificationProvider] = None,
    code_sender: Optional[VerificationCodeSender] = None,
    clock: Clock = utc_now,
) -> WizardController:
    """
    Wire a controller and its collaborators over one store.

    Providers default to the HTTP clients configured in ``config``.
    """
    verification_timeout = timedelta(minutes=config.verification_session_timeout_minutes)
    manager = SessionManager(
        store,
        rules=VALIDATION_RULES,
        session_timeout=timedelta(minutes=config.registration_session_timeout_minutes),
        clock=clock,
    )
    trackers = {
        channel: VerificationTracker(channel, store, verification_timeout, clock=clock)
        for channel in VerificationChannel
    }
    timeout = config.provider_timeout_seconds
    return WizardController(
        session_manager=manager,
        trackers=trackers,
        cooldown=CooldownPolicy.from_settings(config),
        profile_store=profile_store,
        license_registry=license_registry or HttpLicenseRegistryProvider(
            config.license_registry_url, config.provider_api_key, timeout),
        identity_provider=identity_provider or HttpIdentityVerificationProvider(
            config.identity_provider_url, config.provider_api_key, timeout),
        code_sender=code_sender or HttpVerificationCodeSender(
            config.verification_gateway_url, config.provider_api_key, timeout),
        clock=clock,
        provider_timeout=timeout,
    )
