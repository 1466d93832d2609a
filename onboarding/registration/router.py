"""
Doctor registration routes.

Thin HTTP layer over the wizard controller: each route calls one controller
operation, records an audit entry and translates failed results into the
registration HTTP exceptions.
"""
from fastapi import APIRouter, Depends, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session
import logging
from typing import Dict, List, Optional

from ..core.audit_service import create_audit_log
from ..database import get_db
from ..verification.schemas import VerificationChannel, VerificationStatusResponse
from .controller import WizardController
from .dependencies import get_client_id, get_wizard_controller
from .exceptions import (
    CooldownActiveException,
    IncompleteRegistrationException,
    ProviderUnavailableException,
    SessionExpiredException,
    StepNotReachableException,
    ValidationFailedException,
    VerificationRecordMissingException,
    VerificationRequiredException,
)
from .schemas import (
    IdentityCheckResult,
    IdentityStatusUpdate,
    LicenseCheckResult,
    LicenseVerifyRequest,
    NavigateRequest,
    NextStepRequest,
    RegistrationDataPublic,
    RegistrationDataUpdate,
    RegistrationSession,
    SessionStateResponse,
    StepProgress,
    SubmissionResult,
    VerificationAttemptResult,
    VerificationCodeRequest,
    VerificationConfirmRequest,
    WizardErrorCode,
)

# Set up logging
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(prefix="/api/v1/registration/doctor", tags=["Doctor Registration"])

# ============================================================================
# HELPERS
# ============================================================================

def _session_state(controller: WizardController, session: RegistrationSession,
                   resumed: bool = False, recovered: bool = False) -> SessionStateResponse:
    return SessionStateResponse(
        session_id=session.session_id,
        current_step=session.current_step,
        completed_steps=session.completed_steps,
        data=RegistrationDataPublic.model_validate(session.data.model_dump()),
        progress=controller.navigation.progress(),
        completion_percentage=controller.navigation.completion_percentage(),
        resumed=resumed,
        recovered=recovered,
        expires_at=controller.expires_at(session),
    )

def _require_session(controller: WizardController) -> RegistrationSession:
    session = controller.get_session()
    if session is None:
        raise SessionExpiredException(resumable=controller.has_recoverable_data())
    return session

def _raise_for_error(
    controller: WizardController,
    error_code: Optional[WizardErrorCode],
    message: Optional[str] = None,
    errors: Optional[Dict[str, str]] = None,
    retry_after_seconds: int = 0,
) -> None:
    """Translate a controller error code into its HTTP exception."""
    if error_code is None:
        return
    errors = errors or {}
    if error_code == WizardErrorCode.VALIDATION_FAILED:
        raise ValidationFailedException(errors, message or "Please correct the highlighted fields")
    if error_code == WizardErrorCode.VERIFICATION_REQUIRED:
        raise VerificationRequiredException(errors, message or "Verification required")
    if error_code == WizardErrorCode.STEP_NOT_REACHABLE:
        raise StepNotReachableException(message or "Step is not reachable yet")
    if error_code == WizardErrorCode.COOLDOWN_ACTIVE:
        raise CooldownActiveException(retry_after_seconds)
    if error_code == WizardErrorCode.VERIFICATION_RECORD_MISSING:
        raise VerificationRecordMissingException()
    if error_code == WizardErrorCode.PROVIDER_UNAVAILABLE:
        raise ProviderUnavailableException(message or "Verification service unavailable, please retry")
    if error_code == WizardErrorCode.SESSION_EXPIRED:
        raise SessionExpiredException(resumable=controller.has_recoverable_data())
    if error_code == WizardErrorCode.INCOMPLETE_REGISTRATION:
        raise IncompleteRegistrationException(errors)

# ============================================================================
# SESSION ROUTES
# ============================================================================

@router.post("/session", response_model=SessionStateResponse, summary="Start or resume a registration")
async def start_session_route(
    request: Request,
    controller: WizardController = Depends(get_wizard_controller),
    client_id: str = Depends(get_client_id),
    db: Session = Depends(get_db)
):
    """
    Resume the live registration session of this client, or create one.

    When the previous session expired, the new one starts from its data
    (``recovered`` is true).
    """
    session, resumed, recovered = controller.start()
    if not resumed:
        await create_audit_log(
            db=db,
            action="REGISTRATION_SESSION_STARTED",
            session_id=session.session_id,
            client_id=client_id,
            request=request,
            details={"recovered": recovered}
        )
    return _session_state(controller, session, resumed=resumed, recovered=recovered)

@router.get("/session", response_model=SessionStateResponse)
async def get_session_route(controller: WizardController = Depends(get_wizard_controller)):
    session = _require_session(controller)
    return _session_state(controller, session, resumed=True)

@router.delete("/session", status_code=status.HTTP_204_NO_CONTENT)
async def reset_session_route(
    request: Request,
    controller: WizardController = Depends(get_wizard_controller),
    client_id: str = Depends(get_client_id),
    db: Session = Depends(get_db)
):
    """Discard the session, its recovery copy and every verification record."""
    session = controller.get_session()
    controller.reset()
    await create_audit_log(
        db=db,
        action="REGISTRATION_SESSION_RESET",
        session_id=session.session_id if session else None,
        client_id=client_id,
        request=request
    )

@router.patch("/session/data", response_model=SessionStateResponse)
async def update_data_route(
    update: RegistrationDataUpdate,
    controller: WizardController = Depends(get_wizard_controller)
):
    """Merge the fields present in the body into the registration data."""
    _require_session(controller)
    try:
        controller.update_data(update)
    except ValidationError as e:
        errors = {".".join(str(part) for part in error["loc"]): error["msg"] for error in e.errors()}
        logger.info(f"Rejected registration data update: {sorted(errors)}")
        raise ValidationFailedException(errors, "Some fields have invalid values")
    return _session_state(controller, controller.get_session())

@router.post("/session/extend", response_model=SessionStateResponse)
async def extend_session_route(controller: WizardController = Depends(get_wizard_controller)):
    _require_session(controller)
    controller.extend_session()
    return _session_state(controller, controller.get_session())

# ============================================================================
# NAVIGATION ROUTES
# ============================================================================

@router.post("/session/next", response_model=SessionStateResponse)
async def next_step_route(
    request: Request,
    body: NextStepRequest,
    controller: WizardController = Depends(get_wizard_controller),
    client_id: str = Depends(get_client_id),
    db: Session = Depends(get_db)
):
    """
    Validate the current step and advance.

    ``expected_step`` makes a repeated click harmless: once the session has
    left that step the request changes nothing.
    """
    _require_session(controller)
    result = controller.go_to_next_step(expected_step=body.expected_step)
    _raise_for_error(controller, result.error_code, result.message, result.errors)

    session = controller.get_session()
    await create_audit_log(
        db=db,
        action="REGISTRATION_STEP_ADVANCED",
        session_id=session.session_id,
        client_id=client_id,
        request=request,
        details={"current_step": result.current_step.value}
    )
    return _session_state(controller, session)

@router.post("/session/previous", response_model=SessionStateResponse)
async def previous_step_route(controller: WizardController = Depends(get_wizard_controller)):
    _require_session(controller)
    result = controller.go_to_previous_step()
    _raise_for_error(controller, result.error_code, result.message, result.errors)
    return _session_state(controller, controller.get_session())

@router.post("/session/navigate", response_model=SessionStateResponse)
async def navigate_route(
    body: NavigateRequest,
    controller: WizardController = Depends(get_wizard_controller)
):
    """Jump to a completed step or to the first step not completed yet."""
    _require_session(controller)
    result = controller.jump_to_step(body.step)
    _raise_for_error(controller, result.error_code, result.message, result.errors)
    return _session_state(controller, controller.get_session())

@router.get("/session/progress", response_model=List[StepProgress])
async def progress_route(controller: WizardController = Depends(get_wizard_controller)):
    _require_session(controller)
    return controller.navigation.progress()

# ============================================================================
# VERIFICATION ROUTES
# ============================================================================

@router.post("/verification/{channel}/send", response_model=VerificationAttemptResult)
async def send_code_route(
    channel: VerificationChannel,
    body: VerificationCodeRequest,
    request: Request,
    controller: WizardController = Depends(get_wizard_controller),
    client_id: str = Depends(get_client_id),
    db: Session = Depends(get_db)
):
    """
    Send a verification code to an email address or a phone number.

    Answers 429 with ``Retry-After`` while the cooldown is active.
    """
    session = _require_session(controller)
    result = await controller.request_verification_code(channel, body.identifier)
    _raise_for_error(controller, result.error_code, result.message,
                     {"identifier": result.message or ""}, result.retry_after_seconds)

    await create_audit_log(
        db=db,
        action=f"{channel.value.upper()}_CODE_REQUESTED",
        session_id=session.session_id,
        client_id=client_id,
        request=request,
        details={"identifier": result.identifier, "attempts": result.attempts}
    )
    return result

@router.post("/verification/{channel}/confirm", response_model=VerificationAttemptResult)
async def confirm_code_route(
    channel: VerificationChannel,
    body: VerificationConfirmRequest,
    request: Request,
    controller: WizardController = Depends(get_wizard_controller),
    client_id: str = Depends(get_client_id),
    db: Session = Depends(get_db)
):
    session = _require_session(controller)
    result = await controller.confirm_verification(channel, body.identifier, body.code)
    _raise_for_error(controller, result.error_code, result.message, {"code": result.message or ""},
                     result.retry_after_seconds)

    await create_audit_log(
        db=db,
        action=f"{channel.value.upper()}_VERIFIED",
        session_id=session.session_id,
        client_id=client_id,
        request=request,
        details={"identifier": result.identifier}
    )
    return result

@router.get("/verification/{channel}", response_model=VerificationStatusResponse)
async def verification_status_route(
    channel: VerificationChannel,
    identifier: Optional[str] = None,
    controller: WizardController = Depends(get_wizard_controller)
):
    """State of a channel for ``identifier`` or for the one entered in the session."""
    return controller.verification_status(channel, identifier)

# ============================================================================
# LICENSE AND IDENTITY ROUTES
# ============================================================================

@router.post("/license/verify", response_model=LicenseCheckResult)
async def verify_license_route(
    body: LicenseVerifyRequest,
    request: Request,
    controller: WizardController = Depends(get_wizard_controller),
    client_id: str = Depends(get_client_id),
    db: Session = Depends(get_db)
):
    """
    Look the document up in the professional license registry.

    A lookup that finds nobody is answered with 200 and ``success`` false so
    the UI can show the registry verdict.
    """
    session = _require_session(controller)
    result = await controller.verify_license(body.document_type, body.document_number)
    if result.verdict is None:
        _raise_for_error(controller, result.error_code, result.message,
                         {"document_number": result.message or ""}, result.retry_after_seconds)

    await create_audit_log(
        db=db,
        action="LICENSE_VERIFICATION_CHECKED",
        session_id=session.session_id,
        client_id=client_id,
        request=request,
        details={"verified": result.success}
    )
    return result

@router.post("/identity/status", response_model=IdentityCheckResult)
async def identity_status_route(
    body: IdentityStatusUpdate,
    request: Request,
    controller: WizardController = Depends(get_wizard_controller),
    client_id: str = Depends(get_client_id),
    db: Session = Depends(get_db)
):
    """Record the status reported by the identity verification flow."""
    session = _require_session(controller)
    result = controller.apply_identity_status(body.reference_id, body.status)
    _raise_for_error(controller, result.error_code, result.message)

    await create_audit_log(
        db=db,
        action="IDENTITY_STATUS_UPDATED",
        session_id=session.session_id,
        client_id=client_id,
        request=request,
        details={"reference_id": body.reference_id, "status": body.status.value}
    )
    return result

@router.post("/identity/refresh", response_model=IdentityCheckResult)
async def identity_refresh_route(controller: WizardController = Depends(get_wizard_controller)):
    _require_session(controller)
    result = await controller.refresh_identity_status()
    _raise_for_error(controller, result.error_code, result.message)
    return result

# ============================================================================
# SUBMISSION
# ============================================================================

@router.post("/submit", response_model=SubmissionResult, status_code=status.HTTP_201_CREATED)
async def submit_route(
    request: Request,
    controller: WizardController = Depends(get_wizard_controller),
    client_id: str = Depends(get_client_id),
    db: Session = Depends(get_db)
):
    """
    Create the doctor profile from the final review step.

    The registration session and its verification records are destroyed on
    success.
    """
    session = _require_session(controller)
    result = controller.submit()
    _raise_for_error(controller, result.error_code, result.message, result.errors)

    await create_audit_log(
        db=db,
        action="REGISTRATION_SUBMITTED",
        session_id=session.session_id,
        client_id=client_id,
        request=request,
        details={"profile_id": result.profile_id}
    )
    logger.info(f"Doctor registration submitted by client {client_id}")
    return result
