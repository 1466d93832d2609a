"""
Registration-specific exceptions.

Expected outcomes (validation failure, cooldown, missing verification record)
come back from the wizard controller as result objects. The plain exceptions
below are raised only for hard failures; the HTTP exceptions are raised by
the router when it translates a failed result into a response.
"""
from typing import Dict, Optional
from fastapi import HTTPException, status

# ============================================================================
# ENGINE EXCEPTIONS
# ============================================================================

class RegistrationError(Exception):
    """Base class for unexpected registration engine failures."""

class SessionNotStarted(RegistrationError):
    """Raised when a session operation is called before a session exists."""
    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Cannot {operation}: no registration session has been started")

class StepValidationRequired(RegistrationError):
    """Raised when a step is completed although its validation rule fails."""
    def __init__(self, step: str, errors: Optional[Dict[str, str]] = None):
        self.step = step
        self.errors = errors or {}
        super().__init__(f"Step '{step}' cannot be completed while its validation fails")

class ProviderUnavailable(RegistrationError):
    """Raised by provider clients when the external service fails or times out."""
    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} is unavailable: {reason}")

class ProfileConflict(RegistrationError):
    """Raised by the profile store when a unique field is already registered."""
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"A profile with this {field} already exists")

# ============================================================================
# HTTP EXCEPTIONS
# ============================================================================

class RegistrationHTTPException(HTTPException):
    """Base class for registration HTTP errors."""
    def __init__(self, status_code: int, detail, headers: Optional[Dict[str, str]] = None):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class ValidationFailedException(RegistrationHTTPException):
    """Exception raised when the current step does not pass its validation rule."""
    def __init__(self, errors: Dict[str, str], message: str = "Please correct the highlighted fields"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail={"message": message, "errors": errors},
        )

class CooldownActiveException(RegistrationHTTPException):
    """Exception raised when a verification code is requested too early."""
    def __init__(self, retry_after_seconds: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "message": f"Please wait {retry_after_seconds} seconds before requesting a new code",
                "retry_after_seconds": retry_after_seconds,
            },
            headers={"Retry-After": str(retry_after_seconds)},
        )

class VerificationRecordMissingException(RegistrationHTTPException):
    """Exception raised when a code is confirmed but its verification record is gone."""
    def __init__(self, detail: str = "Verification expired, please request a new code"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class VerificationRequiredException(RegistrationHTTPException):
    """Exception raised when a step is left before its channels are verified."""
    def __init__(self, errors: Optional[Dict[str, str]] = None, detail: str = "Verification required"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": detail, "errors": errors or {}},
        )

class StepNotReachableException(RegistrationHTTPException):
    """Exception raised when a move targets a step beyond the completed frontier."""
    def __init__(self, detail: str = "Step is not reachable yet"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class ProviderUnavailableException(RegistrationHTTPException):
    """Exception raised when an external provider could not be reached."""
    def __init__(self, detail: str = "Verification service unavailable, please retry"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)

class SessionExpiredException(RegistrationHTTPException):
    """Exception raised when the registration session is missing or expired."""
    def __init__(self, resumable: bool = False):
        message = (
            "Your registration session expired. Start again to resume with your saved data"
            if resumable else "No active registration session"
        )
        super().__init__(
            status_code=status.HTTP_410_GONE,
            detail={"message": message, "resumable": resumable},
        )

class IncompleteRegistrationException(RegistrationHTTPException):
    """Exception raised when submission is attempted before every step is completed."""
    def __init__(self, errors: Optional[Dict[str, str]] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Complete every step before submitting", "errors": errors or {}},
        )
