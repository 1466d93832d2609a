"""
FastAPI dependencies of the registration routes.

A browser client is identified by a cookie; its registration state lives
in its own namespace of the state table. Providers and the clock are
separate dependencies so tests can override them.
"""
import uuid
import logging
from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from ..config import settings
from ..core.clock import Clock, utc_now
from ..core.storage import SQLAlchemyStore
from ..database import get_db
from .controller import WizardController, build_wizard_controller
from .providers import (
    HttpIdentityVerificationProvider,
    HttpLicenseRegistryProvider,
    HttpVerificationCodeSender,
    IdentityVerificationProvider,
    LicenseRegistryProvider,
    ProfileStore,
    SQLAlchemyProfileStore,
    VerificationCodeSender,
)

# Set up logging
logger = logging.getLogger(__name__)

def get_client_id(request: Request, response: Response) -> str:
    """
    Return the client id cookie, issuing a new one on first contact.
    """
    client_id = request.cookies.get(settings.client_cookie_name)
    if not client_id:
        client_id = uuid.uuid4().hex
        logger.debug(f"Issued registration client id {client_id}")
    # Re-set on every response so the cookie lives as long as the client is active
    response.set_cookie(
        key=settings.client_cookie_name,
        value=client_id,
        httponly=True,
        samesite="lax",
        max_age=settings.stale_record_retention_hours * 3600,
    )
    return client_id

def get_clock() -> Clock:
    return utc_now

def get_profile_store(db: Session = Depends(get_db)) -> ProfileStore:
    return SQLAlchemyProfileStore(db)

def get_license_registry() -> LicenseRegistryProvider:
    return HttpLicenseRegistryProvider(
        settings.license_registry_url, settings.provider_api_key, settings.provider_timeout_seconds
    )

def get_identity_provider() -> IdentityVerificationProvider:
    return HttpIdentityVerificationProvider(
        settings.identity_provider_url, settings.provider_api_key, settings.provider_timeout_seconds
    )

def get_code_sender() -> VerificationCodeSender:
    return HttpVerificationCodeSender(
        settings.verification_gateway_url, settings.provider_api_key, settings.provider_timeout_seconds
    )

def get_wizard_controller(
    client_id: str = Depends(get_client_id),
    db: Session = Depends(get_db),
    profile_store: ProfileStore = Depends(get_profile_store),
    license_registry: LicenseRegistryProvider = Depends(get_license_registry),
    identity_provider: IdentityVerificationProvider = Depends(get_identity_provider),
    code_sender: VerificationCodeSender = Depends(get_code_sender),
    clock: Clock = Depends(get_clock),
) -> WizardController:
    """Controller over the state of the calling client, built per request."""
    return build_wizard_controller(
        SQLAlchemyStore(db, client_id),
        profile_store,
        config=settings,
        license_registry=license_registry,
        identity_provider=identity_provider,
        code_sender=code_sender,
        clock=clock,
    )
