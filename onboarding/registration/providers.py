"""
External collaborators of the registration wizard.

Each collaborator is an abstract interface with one production
implementation. The HTTP clients translate every transport failure, timeout
or unexpected payload into ``ProviderUnavailable`` so that the wizard can
report it without touching session state.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.security import hash_password
from ..verification.schemas import VerificationChannel
from .exceptions import ProfileConflict, ProviderUnavailable
from .models import DoctorProfile
from .schemas import AccessLevel, IdentityStatus, LicenseVerificationResult, RegistrationData

# Set up logging
logger = logging.getLogger(__name__)

# ============================================================================
# ACCESS POLICY
# ============================================================================

ACCESS_POLICY = {
    IdentityStatus.APPROVED: AccessLevel.FULL,
    IdentityStatus.IN_REVIEW: AccessLevel.LIMITED,
    IdentityStatus.DECLINED: AccessLevel.NONE,
    IdentityStatus.EXPIRED: AccessLevel.NONE,
    IdentityStatus.PENDING: AccessLevel.NONE,
}

def resolve_access_level(status: IdentityStatus) -> AccessLevel:
    return ACCESS_POLICY[IdentityStatus(status)]

def may_proceed(level: AccessLevel) -> bool:
    return AccessLevel(level) in (AccessLevel.FULL, AccessLevel.LIMITED)

# ============================================================================
# INTERFACES
# ============================================================================

class ProfileStore(ABC):
    """Destination of a completed registration."""

    @abstractmethod
    def check_availability(self, field: str, value: str) -> bool:
        """True if no existing profile uses ``value`` for ``field``."""

    @abstractmethod
    def submit_registration(self, data: RegistrationData) -> str:
        """
        Create the profile.

        Returns:
            str: Id of the created profile

        Raises:
            ProfileConflict: If a unique field is already registered
        """


class LicenseRegistryProvider(ABC):
    """Looks up a document number in the professional license registry."""

    @abstractmethod
    async def verify(self, document_type: str, document_number: str) -> LicenseVerificationResult:
        ...


class IdentityVerificationProvider(ABC):
    """Reports the status of an identity verification started by the UI."""

    @abstractmethod
    async def get_status(self, reference_id: str) -> IdentityStatus:
        ...


class VerificationCodeSender(ABC):
    """Asks the delivery gateway to send a code and to check it."""

    @abstractmethod
    async def send_code(self, channel: VerificationChannel, identifier: str) -> None:
        ...

    @abstractmethod
    async def verify_code(self, channel: VerificationChannel, identifier: str, code: str) -> bool:
        ...

# ============================================================================
# SQLALCHEMY PROFILE STORE
# ============================================================================

class SQLAlchemyProfileStore(ProfileStore):
    """Profile store backed by the ``doctor_profiles`` table."""

    UNIQUE_FIELDS = {
        "email": DoctorProfile.email,
        "document_number": DoctorProfile.document_number,
    }

    def __init__(self, db: Session):
        self.db = db

    def check_availability(self, field: str, value: str) -> bool:
        column = self.UNIQUE_FIELDS.get(field)
        if column is None:
            raise ValueError(f"Availability cannot be checked for field '{field}'")
        normalized = value.strip().lower() if field == "email" else value.strip().upper()
        return self.db.query(DoctorProfile).filter(column == normalized).first() is None

    def submit_registration(self, data: RegistrationData) -> str:
        for field in self.UNIQUE_FIELDS:
            if not self.check_availability(field, getattr(data, field)):
                raise ProfileConflict(field)

        identity = data.identity_verification
        identity_status = identity.status if identity else IdentityStatus.PENDING
        profile = DoctorProfile(
            email=data.email.strip().lower(),
            phone=data.phone.strip(),
            password_hash=hash_password(data.password),
            first_name=data.first_name.strip(),
            last_name=data.last_name.strip(),
            document_type=data.document_type,
            document_number=data.document_number.strip().upper(),
            university=data.university,
            graduation_year=data.graduation_year,
            medical_board=data.medical_board,
            years_of_experience=data.years_of_experience,
            bio=data.bio,
            specialty_id=data.specialty_id,
            sub_specialties=data.sub_specialties,
            selected_features=data.selected_features,
            working_hours=data.working_hours.model_dump(mode="json"),
            license_verification=data.license_verification.model_dump(mode="json") if data.license_verification else None,
            identity_status=identity_status,
            access_level=resolve_access_level(identity_status),
            terms_accepted_at=data.terms_accepted_at,
        )
        self.db.add(profile)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Profile insert rejected by a unique constraint: {str(e)}")
            raise ProfileConflict("email or document_number") from e
        self.db.refresh(profile)
        logger.info(f"Doctor profile {profile.id} created for {profile.email}")
        return str(profile.id)

# ============================================================================
# HTTP PROVIDERS
# ============================================================================

class _HttpProvider:
    """Shared request handling of the provider clients."""

    name = "provider"

    def __init__(self, base_url: Optional[str], api_key: Optional[str] = None, timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if not self.base_url:
            raise ProviderUnavailable(self.name, "no endpoint configured")

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=self._headers(),
                transport=self.transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"{self.name} timed out: {str(e)}")
            raise ProviderUnavailable(self.name, "timeout") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"{self.name} answered {e.response.status_code}")
            raise ProviderUnavailable(self.name, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"{self.name} request failed: {str(e)}")
            raise ProviderUnavailable(self.name, str(e)) from e
        except ValueError as e:
            logger.error(f"{self.name} returned an invalid payload: {str(e)}")
            raise ProviderUnavailable(self.name, "invalid response payload") from e

        if not isinstance(body, dict):
            logger.error(f"{self.name} returned a non-object payload")
            raise ProviderUnavailable(self.name, "invalid response payload")
        return body


class HttpLicenseRegistryProvider(_HttpProvider, LicenseRegistryProvider):
    """
    License registry lookup over HTTP.

    The lookup service answers ``POST /verify`` with a JSON body holding at
    least ``found``; name, profession, specialty, status and confidence are
    optional.
    """

    name = "License registry"

    async def verify(self, document_type: str, document_number: str) -> LicenseVerificationResult:
        body = await self._request("POST", "/verify", json={
            "document_type": document_type,
            "document_number": document_number,
        })
        found = bool(body.get("found", False))
        try:
            return LicenseVerificationResult(
                is_valid=True,
                is_verified=found,
                verification_source=body.get("source", "sacs"),
                document_number=document_number,
                doctor_name=body.get("doctor_name"),
                profession=body.get("profession"),
                specialty=body.get("specialty"),
                license_status=body.get("license_status"),
                confidence=body.get("confidence"),
                verified_at=datetime.now(timezone.utc),
            )
        except ValidationError as e:
            logger.error(f"{self.name} returned an unusable verdict: {str(e)}")
            raise ProviderUnavailable(self.name, "invalid response payload") from e


class HttpIdentityVerificationProvider(_HttpProvider, IdentityVerificationProvider):
    """Identity vendor status lookup, ``GET /sessions/{reference_id}``."""

    name = "Identity provider"

    async def get_status(self, reference_id: str) -> IdentityStatus:
        body = await self._request("GET", f"/sessions/{reference_id}")
        raw = str(body.get("status", "")).strip().lower().replace(" ", "_").replace("-", "_")
        try:
            return IdentityStatus(raw)
        except ValueError as e:
            raise ProviderUnavailable(self.name, f"unknown status '{raw}'") from e


class HttpVerificationCodeSender(_HttpProvider, VerificationCodeSender):
    """Code delivery gateway, ``POST /codes`` and ``POST /codes/verify``."""

    name = "Verification gateway"

    async def send_code(self, channel: VerificationChannel, identifier: str) -> None:
        await self._request("POST", "/codes", json={"channel": channel.value, "identifier": identifier})
        logger.info(f"Verification code requested for {channel.value} {identifier}")

    async def verify_code(self, channel: VerificationChannel, identifier: str, code: str) -> bool:
        body = await self._request("POST", "/codes/verify", json={
            "channel": channel.value,
            "identifier": identifier,
            "code": code,
        })
        return bool(body.get("valid", False))
