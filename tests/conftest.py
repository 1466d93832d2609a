"""
Test configuration for the doctor onboarding backend.
"""
from datetime import datetime, timedelta, timezone
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from onboarding.database import Base, get_db
from onboarding.main import app
from onboarding.core.storage import InMemoryStore
from onboarding.registration.controller import build_wizard_controller
from onboarding.registration.dependencies import (
    get_clock, get_code_sender, get_identity_provider, get_license_registry
)
from onboarding.registration.exceptions import ProfileConflict, ProviderUnavailable
from onboarding.registration.providers import (
    IdentityVerificationProvider, LicenseRegistryProvider, ProfileStore, VerificationCodeSender
)
from onboarding.registration.schemas import IdentityStatus, LicenseVerificationResult

# Test database URL
TEST_DATABASE_URL = "sqlite:///./test.db"

# Create test database engine
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

VALID_CODE = "123456"

# ============================================================================
# FAKES
# ============================================================================

class FakeClock:
    """Clock that only moves when told to."""
    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeCodeSender(VerificationCodeSender):
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send_code(self, channel, identifier):
        if self.fail:
            raise ProviderUnavailable("Verification gateway", "down")
        self.sent.append((channel.value, identifier))

    async def verify_code(self, channel, identifier, code):
        if self.fail:
            raise ProviderUnavailable("Verification gateway", "down")
        return code == VALID_CODE


class FakeLicenseRegistry(LicenseRegistryProvider):
    def __init__(self):
        self.found = True
        self.fail = False
        self.lookups = []

    async def verify(self, document_type, document_number):
        self.lookups.append((document_type, document_number))
        if self.fail:
            raise ProviderUnavailable("License registry", "timeout")
        return LicenseVerificationResult(
            is_valid=True,
            is_verified=self.found,
            document_number=document_number,
            doctor_name="MARIA GONZALEZ" if self.found else None,
            profession="MEDICO CIRUJANO" if self.found else None,
            confidence=95 if self.found else None,
        )


class FakeIdentityProvider(IdentityVerificationProvider):
    def __init__(self):
        self.status = IdentityStatus.APPROVED
        self.fail = False

    async def get_status(self, reference_id):
        if self.fail:
            raise ProviderUnavailable("Identity provider", "down")
        return self.status


class FakeProfileStore(ProfileStore):
    def __init__(self):
        self.taken = {}
        self.submitted = []

    def check_availability(self, field, value):
        return value not in self.taken.get(field, set())

    def submit_registration(self, data):
        for field in ("email", "document_number"):
            if not self.check_availability(field, getattr(data, field)):
                raise ProfileConflict(field)
        self.submitted.append(data)
        return str(len(self.submitted))

# ============================================================================
# ENGINE FIXTURES
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def store():
    return InMemoryStore()

@pytest.fixture
def code_sender():
    return FakeCodeSender()

@pytest.fixture
def license_registry():
    return FakeLicenseRegistry()

@pytest.fixture
def identity_provider():
    return FakeIdentityProvider()

@pytest.fixture
def profile_store():
    return FakeProfileStore()

@pytest.fixture
def controller(store, profile_store, license_registry, identity_provider, code_sender, clock):
    """Wizard controller over an in-memory store and fake providers."""
    return build_wizard_controller(
        store,
        profile_store,
        license_registry=license_registry,
        identity_provider=identity_provider,
        code_sender=code_sender,
        clock=clock,
    )

@pytest.fixture
def personal_info():
    return {
        "first_name": "María",
        "last_name": "González",
        "email": "maria@example.com",
        "phone": "+584121234567",
        "password": "Secreto123",
        "confirm_password": "Secreto123",
    }

@pytest.fixture
def professional_info():
    return {
        "document_type": "cedula_identidad",
        "document_number": "V-12345678",
        "university": "Universidad Central de Venezuela",
        "medical_board": "Colegio de Médicos del Distrito Capital",
        "graduation_year": 2010,
        "years_of_experience": 12,
    }

# ============================================================================
# DATABASE AND HTTP FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def db():
    """
    Create a fresh database for each test.
    """
    # Create tables
    Base.metadata.create_all(bind=engine)

    # Create session
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

    # Drop tables after test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db, clock, code_sender, license_registry, identity_provider):
    """
    Create a test client with a test database session and fake providers.
    """
    def override_get_db():
        try:
            yield db
        finally:
            pass

    # Override the database, clock and provider dependencies
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_code_sender] = lambda: code_sender
    app.dependency_overrides[get_license_registry] = lambda: license_registry
    app.dependency_overrides[get_identity_provider] = lambda: identity_provider

    # Create test client
    with TestClient(app) as client:
        yield client

    # Remove dependency override
    app.dependency_overrides = {}
