"""
Validation rules for each registration step.

Every rule is a pure function of ``RegistrationData`` returning field-level
errors. Checks that need a collaborator (verification trackers, the profile
store) are applied by the wizard controller on top of these rules.
"""
import re
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional

from pydantic import EmailStr, TypeAdapter, ValidationError

from .schemas import (
    DocumentType,
    IdentityStatus,
    RegistrationData,
    StepValidationResult,
    WorkingDay,
)
from .steps import RegistrationStep

ValidationRule = Callable[[RegistrationData], StepValidationResult]

NAME_PATTERN = re.compile(r"^[a-zA-ZáéíóúÁÉÍÓÚñÑüÜ\s'-]{2,50}$")
PHONE_PATTERN = re.compile(r"^\+58[24]\d{9}$")
TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")

# Venezuelan medical boards accepted as matricula prefixes
MEDICAL_BOARDS = ("MPPS", "CMC", "CMDM", "CMDC", "CMDT", "CMDZ", "CMDA", "CMDB", "CMDL")

DOCUMENT_PATTERNS = {
    DocumentType.CEDULA_IDENTIDAD: re.compile(r"^[VE]-\d{7,8}$"),
    DocumentType.CEDULA_EXTRANJERA: re.compile(r"^E-\d{7,8}$"),
    DocumentType.MATRICULA: re.compile(rf"^({'|'.join(MEDICAL_BOARDS)})-\d{{4,6}}$", re.IGNORECASE),
}

DOCUMENT_FORMAT_HINTS = {
    DocumentType.CEDULA_IDENTIDAD: "Cedula must look like V-12345678 or E-12345678",
    DocumentType.CEDULA_EXTRANJERA: "Foreign cedula must look like E-12345678",
    DocumentType.MATRICULA: "Matricula must look like BOARD-NUMBER (e.g. MPPS-12345)",
}

BIO_CONTACT_WORDS = (
    "teléfono", "telefono", "phone", "celular", "dirección", "direccion",
    "address", "whatsapp", "instagram", "facebook", "twitter", "gmail", "hotmail",
)

MAX_SUB_SPECIALTIES = 3
MAX_FEATURES = 10
MAX_WORKING_HOURS_PER_DAY = 12
PROCEEDING_IDENTITY_STATUSES = {IdentityStatus.APPROVED, IdentityStatus.IN_REVIEW}

_email_adapter = TypeAdapter(EmailStr)

def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()

def _result(step: RegistrationStep, errors: Dict[str, str]) -> StepValidationResult:
    return StepValidationResult(step=step, is_valid=not errors, errors=errors)

def is_valid_email(value: Optional[str]) -> bool:
    if _blank(value):
        return False
    try:
        _email_adapter.validate_python(value)
    except ValidationError:
        return False
    return True

def validate_document_format(document_type: Optional[DocumentType], document_number: Optional[str]) -> Optional[str]:
    """
    Check a document number against the format of its type.

    Returns:
        Error message, or None when the number is well formed
    """
    if document_type is None:
        return "Document type is required"
    if _blank(document_number):
        return "Document number is required"
    pattern = DOCUMENT_PATTERNS[DocumentType(document_type)]
    if not pattern.match(document_number.strip()):
        return DOCUMENT_FORMAT_HINTS[DocumentType(document_type)]
    return None

def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)

def validate_working_day(day: WorkingDay) -> Optional[str]:
    if not day.is_working_day:
        return None
    if not day.start_time or not day.end_time:
        return "Working days need a start and an end time"
    if not TIME_PATTERN.match(day.start_time) or not TIME_PATTERN.match(day.end_time):
        return "Times must use the HH:MM format"
    start, end = _minutes(day.start_time), _minutes(day.end_time)
    if start >= end:
        return "Start time must be before end time"
    if end - start > MAX_WORKING_HOURS_PER_DAY * 60:
        return f"A working day cannot exceed {MAX_WORKING_HOURS_PER_DAY} hours"
    return None

# ============================================================================
# STEP RULES
# ============================================================================

def validate_personal_info(data: RegistrationData) -> StepValidationResult:
    errors: Dict[str, str] = {}
    for field in ("first_name", "last_name"):
        value = getattr(data, field)
        if _blank(value):
            errors[field] = "This field is required"
        elif not NAME_PATTERN.match(value.strip()):
            errors[field] = "Use 2 to 50 letters"

    if _blank(data.email):
        errors["email"] = "Email is required"
    elif not is_valid_email(data.email):
        errors["email"] = "Invalid email format"

    if _blank(data.phone):
        errors["phone"] = "Phone is required"
    elif not PHONE_PATTERN.match(data.phone.strip()):
        errors["phone"] = "Must be a Venezuelan mobile number (+58XXXXXXXXXX)"

    password = data.password or ""
    if not password:
        errors["password"] = "Password is required"
    elif len(password) < 8:
        errors["password"] = "Password must be at least 8 characters"
    elif not (re.search(r"[a-z]", password) and re.search(r"[A-Z]", password) and re.search(r"\d", password)):
        errors["password"] = "Password needs an uppercase letter, a lowercase letter and a number"

    if password and data.confirm_password != password:
        errors["confirm_password"] = "Passwords do not match"

    return _result(RegistrationStep.PERSONAL_INFO, errors)

def validate_professional_info(data: RegistrationData) -> StepValidationResult:
    errors: Dict[str, str] = {}
    document_error = validate_document_format(data.document_type, data.document_number)
    if document_error:
        field = "document_type" if data.document_type is None else "document_number"
        errors[field] = document_error

    if _blank(data.university):
        errors["university"] = "Select the university you graduated from"
    if _blank(data.medical_board):
        errors["medical_board"] = "Select your medical board"

    current_year = datetime.now(timezone.utc).year
    if data.graduation_year is not None and not 1950 <= data.graduation_year <= current_year:
        errors["graduation_year"] = f"Graduation year must be between 1950 and {current_year}"

    if data.years_of_experience is not None:
        if not 0 <= data.years_of_experience <= 60:
            errors["years_of_experience"] = "Years of experience must be between 0 and 60"
        elif data.graduation_year is not None and data.years_of_experience > current_year - data.graduation_year:
            errors["years_of_experience"] = "Experience cannot exceed the years since graduation"

    if data.bio:
        if len(data.bio) > 1000:
            errors["bio"] = "Biography cannot exceed 1000 characters"
        else:
            found = [word for word in BIO_CONTACT_WORDS if word in data.bio.lower()]
            if found:
                errors["bio"] = f"Biography must not contain personal contact details: {', '.join(found)}"

    return _result(RegistrationStep.PROFESSIONAL_INFO, errors)

def validate_license_verification(data: RegistrationData) -> StepValidationResult:
    errors: Dict[str, str] = {}
    verdict = data.license_verification
    if verdict is None:
        errors["license_verification"] = "Verify your professional license to continue"
    elif not (verdict.is_valid and verdict.is_verified):
        errors["license_verification"] = "No registered medical professional was found for this document"
    elif verdict.document_number and data.document_number and \
            verdict.document_number.upper() != data.document_number.strip().upper():
        errors["license_verification"] = "The license was verified for a different document number"
    return _result(RegistrationStep.LICENSE_VERIFICATION, errors)

def validate_specialty_selection(data: RegistrationData) -> StepValidationResult:
    errors: Dict[str, str] = {}
    if _blank(data.specialty_id):
        errors["specialty_id"] = "Select a medical specialty"
    if len(data.sub_specialties) > MAX_SUB_SPECIALTIES:
        errors["sub_specialties"] = f"Select at most {MAX_SUB_SPECIALTIES} sub-specialties"
    return _result(RegistrationStep.SPECIALTY_SELECTION, errors)

def validate_dashboard_configuration(data: RegistrationData) -> StepValidationResult:
    errors: Dict[str, str] = {}
    if not data.selected_features:
        errors["selected_features"] = "Select at least one dashboard feature"
    elif len(data.selected_features) > MAX_FEATURES:
        errors["selected_features"] = f"Select at most {MAX_FEATURES} features"

    days = data.working_hours.days()
    if not any(day.is_working_day for day in days.values()):
        errors["working_hours"] = "Configure at least one working day"
    for name, day in days.items():
        day_error = validate_working_day(day)
        if day_error:
            errors[f"working_hours.{name}"] = day_error

    return _result(RegistrationStep.DASHBOARD_CONFIGURATION, errors)

def validate_identity_verification(data: RegistrationData) -> StepValidationResult:
    errors: Dict[str, str] = {}
    identity = data.identity_verification
    if identity is None:
        errors["identity_verification"] = "Complete the identity verification"
    elif identity.status not in PROCEEDING_IDENTITY_STATUSES:
        errors["identity_verification"] = f"Identity verification is {identity.status.value}"
    return _result(RegistrationStep.IDENTITY_VERIFICATION, errors)

def validate_final_review(data: RegistrationData) -> StepValidationResult:
    errors: Dict[str, str] = {}
    if not data.terms_accepted:
        errors["terms_accepted"] = "Accept the terms and conditions to finish"
    return _result(RegistrationStep.FINAL_REVIEW, errors)

VALIDATION_RULES: Mapping[RegistrationStep, ValidationRule] = {
    RegistrationStep.PERSONAL_INFO: validate_personal_info,
    RegistrationStep.PROFESSIONAL_INFO: validate_professional_info,
    RegistrationStep.LICENSE_VERIFICATION: validate_license_verification,
    RegistrationStep.SPECIALTY_SELECTION: validate_specialty_selection,
    RegistrationStep.DASHBOARD_CONFIGURATION: validate_dashboard_configuration,
    RegistrationStep.IDENTITY_VERIFICATION: validate_identity_verification,
    RegistrationStep.FINAL_REVIEW: validate_final_review,
}
