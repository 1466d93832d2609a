"""
Registration Schemas - Pydantic models for the doctor registration wizard.

Covers the persisted session shape, the accumulated registration data,
the result objects returned by the wizard controller and the request and
response bodies of the registration API.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from .steps import RegistrationStep

# ============================================================================
# REGISTRATION DATA
# ============================================================================

class DocumentType(str, Enum):
    CEDULA_IDENTIDAD = "cedula_identidad"
    CEDULA_EXTRANJERA = "cedula_extranjera"
    MATRICULA = "matricula"

class WorkingDay(BaseModel):
    """
    Working Day Schema - Availability of the doctor on one weekday

    Fields:
    - is_working_day: Whether the doctor works on this day
    - start_time: Start of the working day (HH:MM)
    - end_time: End of the working day (HH:MM)
    """
    is_working_day: bool = False
    start_time: Optional[str] = None
    end_time: Optional[str] = None

def _weekday(start: str = "09:00", end: str = "17:00") -> WorkingDay:
    return WorkingDay(is_working_day=True, start_time=start, end_time=end)

class WorkingHours(BaseModel):
    """Weekly working hours, Monday to Friday 09:00-17:00 by default"""
    monday: WorkingDay = Field(default_factory=_weekday)
    tuesday: WorkingDay = Field(default_factory=_weekday)
    wednesday: WorkingDay = Field(default_factory=_weekday)
    thursday: WorkingDay = Field(default_factory=_weekday)
    friday: WorkingDay = Field(default_factory=_weekday)
    saturday: WorkingDay = Field(default_factory=WorkingDay)
    sunday: WorkingDay = Field(default_factory=WorkingDay)

    def days(self) -> Dict[str, WorkingDay]:
        return {name: getattr(self, name) for name in type(self).model_fields}

class LicenseVerificationResult(BaseModel):
    """
    License Verification Result - Verdict of the license registry

    Fields:
    - is_valid: The registry answered and the lookup was well formed
    - is_verified: A registered medical professional was found
    - verification_source: Registry consulted (e.g. 'sacs')
    - doctor_name: Name registered for the document
    - profession: Registered profession
    - specialty: Registered specialty text
    - license_status: Status reported by the registry
    - confidence: Match confidence between provided and registered names (0-100)
    - verified_at: When the verdict was obtained
    """
    is_valid: bool
    is_verified: bool
    verification_source: str = "sacs"
    document_number: Optional[str] = None
    doctor_name: Optional[str] = None
    profession: Optional[str] = None
    specialty: Optional[str] = None
    license_status: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0, le=100)
    verified_at: Optional[datetime] = None

class IdentityStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    IN_REVIEW = "in_review"
    DECLINED = "declined"
    EXPIRED = "expired"

class AccessLevel(str, Enum):
    FULL = "full"
    LIMITED = "limited"
    NONE = "none"

class IdentityVerificationState(BaseModel):
    """Latest status delivered by the identity verification provider"""
    reference_id: str
    status: IdentityStatus = IdentityStatus.PENDING
    access_level: AccessLevel = AccessLevel.NONE
    updated_at: Optional[datetime] = None

class RegistrationData(BaseModel):
    """
    Registration Data Schema - Fields accumulated across the wizard

    Every field is optional: the data is sparse until each step is completed.
    Field-level rules live in the validation rule table, not here.
    """
    # Personal information
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = None

    # Professional information
    document_type: Optional[DocumentType] = None
    document_number: Optional[str] = None
    university: Optional[str] = None
    graduation_year: Optional[int] = None
    medical_board: Optional[str] = None
    years_of_experience: Optional[int] = None
    bio: Optional[str] = None

    # Verifications
    license_verification: Optional[LicenseVerificationResult] = None
    identity_verification: Optional[IdentityVerificationState] = None

    # Specialty and dashboard
    specialty_id: Optional[str] = None
    sub_specialties: List[str] = Field(default_factory=list)
    selected_features: List[str] = Field(default_factory=list)
    working_hours: WorkingHours = Field(default_factory=WorkingHours)

    # Final review
    terms_accepted: bool = False
    terms_accepted_at: Optional[datetime] = None

SECRET_FIELDS = {"password", "confirm_password"}

class RegistrationDataPublic(RegistrationData):
    """Registration data without the password fields, as returned to clients"""
    password: Optional[str] = Field(None, exclude=True)
    confirm_password: Optional[str] = Field(None, exclude=True)

# ============================================================================
# SESSION
# ============================================================================

class StepValidationState(BaseModel):
    """Outcome of the last successful validation of a step"""
    is_valid: bool
    validated_at: Optional[datetime] = None
    errors: Dict[str, str] = Field(default_factory=dict)

class RegistrationSession(BaseModel):
    """
    Registration Session Schema - Durable state of one onboarding attempt

    Fields:
    - session_id: Opaque id created once per onboarding attempt
    - current_step: Step the user is on
    - completed_steps: Steps completed so far, in completion order, never shrinks
    - data: Accumulated registration fields
    - step_validation: When each completed step last passed its rule
    - created_at: Creation time
    - last_activity_at: Last mutation time, drives expiry
    """
    session_id: str
    current_step: RegistrationStep = RegistrationStep.PERSONAL_INFO
    completed_steps: List[RegistrationStep] = Field(default_factory=list)
    data: RegistrationData = Field(default_factory=RegistrationData)
    step_validation: Dict[RegistrationStep, StepValidationState] = Field(default_factory=dict)
    created_at: datetime
    last_activity_at: datetime

# ============================================================================
# VALIDATION AND CONTROLLER RESULTS
# ============================================================================

class StepValidationResult(BaseModel):
    """Field-level outcome of a validation rule"""
    step: RegistrationStep
    is_valid: bool
    errors: Dict[str, str] = Field(default_factory=dict)

class StepStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"

class StepProgress(BaseModel):
    step: RegistrationStep
    index: int
    title: str
    status: StepStatus
    reachable: bool

class WizardErrorCode(str, Enum):
    VALIDATION_FAILED = "validation_failed"
    VERIFICATION_REQUIRED = "verification_required"
    STEP_NOT_REACHABLE = "step_not_reachable"
    COOLDOWN_ACTIVE = "cooldown_active"
    VERIFICATION_RECORD_MISSING = "verification_record_missing"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    SESSION_EXPIRED = "session_expired"
    INCOMPLETE_REGISTRATION = "incomplete_registration"

class StepResult(BaseModel):
    """Outcome of a navigation request"""
    success: bool
    current_step: RegistrationStep
    error_code: Optional[WizardErrorCode] = None
    errors: Dict[str, str] = Field(default_factory=dict)
    message: Optional[str] = None

class VerificationAttemptResult(BaseModel):
    """Outcome of a code request or a confirmation on one channel"""
    success: bool
    channel: str
    identifier: str
    attempts: int = 0
    retry_after_seconds: int = 0
    error_code: Optional[WizardErrorCode] = None
    message: Optional[str] = None

class LicenseCheckResult(BaseModel):
    """Outcome of a license registry lookup"""
    success: bool
    verdict: Optional[LicenseVerificationResult] = None
    retry_after_seconds: int = 0
    error_code: Optional[WizardErrorCode] = None
    message: Optional[str] = None

class IdentityCheckResult(BaseModel):
    """Outcome of an identity status update or refresh"""
    success: bool
    state: Optional[IdentityVerificationState] = None
    may_proceed: bool = False
    error_code: Optional[WizardErrorCode] = None
    message: Optional[str] = None

class SubmissionResult(BaseModel):
    """Outcome of the final submission"""
    success: bool
    profile_id: Optional[str] = None
    error_code: Optional[WizardErrorCode] = None
    errors: Dict[str, str] = Field(default_factory=dict)
    message: Optional[str] = None

# ============================================================================
# API SCHEMAS
# ============================================================================

class WorkingDayUpdate(BaseModel):
    is_working_day: Optional[bool] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None

class RegistrationDataUpdate(BaseModel):
    """
    Registration Data Update Schema - Partial update sent by a wizard step

    Only the fields present in the request body are merged into the session.
    """
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = None
    document_type: Optional[DocumentType] = None
    document_number: Optional[str] = None
    university: Optional[str] = None
    graduation_year: Optional[int] = None
    medical_board: Optional[str] = None
    years_of_experience: Optional[int] = None
    bio: Optional[str] = None
    specialty_id: Optional[str] = None
    sub_specialties: Optional[List[str]] = None
    selected_features: Optional[List[str]] = None
    working_hours: Optional[Dict[str, WorkingDayUpdate]] = None
    terms_accepted: Optional[bool] = None

class NextStepRequest(BaseModel):
    """Step the client believes it is on, used to absorb duplicate clicks"""
    expected_step: RegistrationStep

class NavigateRequest(BaseModel):
    step: RegistrationStep

class VerificationCodeRequest(BaseModel):
    identifier: str = Field(..., min_length=1, description="Email address or phone number to verify")

class VerificationConfirmRequest(BaseModel):
    identifier: str = Field(..., min_length=1)
    code: str = Field(..., min_length=4, max_length=10, description="Code received on the channel")

class LicenseVerifyRequest(BaseModel):
    document_type: Optional[DocumentType] = None
    document_number: Optional[str] = None

class IdentityStatusUpdate(BaseModel):
    reference_id: str = Field(..., min_length=1)
    status: IdentityStatus

class SessionStateResponse(BaseModel):
    """Wizard state as rendered by the UI"""
    session_id: str
    current_step: RegistrationStep
    completed_steps: List[RegistrationStep]
    data: RegistrationDataPublic
    progress: List[StepProgress]
    completion_percentage: float
    resumed: bool = False
    recovered: bool = False
    expires_at: datetime
