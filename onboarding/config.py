"""
Application configuration settings loaded from environment variables.
Uses pydantic_settings for validation and type conversion.
"""
from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    """
    Application settings class with environment variable validation.

    Attributes:
        database_url: SQLAlchemy connection string for the durable store
        log_level: Root logging level

        # Session settings
        registration_session_timeout_minutes: Inactivity window of a registration session
        verification_session_timeout_minutes: Lifetime of a verified channel (longer than the session)

        # Cooldown settings
        verification_cooldown_seconds: Minimum wait between two sends (never below 60)
        verification_backoff_multiplier: Growth factor of the wait per attempt
        verification_max_cooldown_seconds: Upper bound of the wait

        # Provider settings
        provider_timeout_seconds: Timeout applied to every external provider call
        license_registry_url: Endpoint of the license registry lookup service
        identity_provider_url: Endpoint of the identity verification vendor
        verification_gateway_url: Endpoint that delivers email/SMS codes
        provider_api_key: API key sent to the providers (optional)

        # Frontend settings
        client_cookie_name: Cookie identifying a browser client
    """
    # Database settings
    database_url: str = "sqlite:///./onboarding.db"
    log_level: str = "INFO"

    # Session settings
    registration_session_timeout_minutes: int = 30
    verification_session_timeout_minutes: int = 120
    stale_record_retention_hours: int = 24

    # Cooldown settings
    verification_cooldown_seconds: int = 60
    verification_backoff_multiplier: float = 2.0
    verification_max_cooldown_seconds: int = 900

    # Provider settings
    provider_timeout_seconds: float = 15.0
    license_registry_url: Optional[str] = None
    identity_provider_url: Optional[str] = None
    verification_gateway_url: Optional[str] = None
    provider_api_key: Optional[str] = None

    # Frontend settings
    allowed_origins: List[str] = ["http://localhost:3000"]
    client_cookie_name: str = "registration_client_id"

    class Config:
        """Configuration for environment variables loading"""
        env_file = ".env"
        case_sensitive = False

# Create settings instance
settings = Settings()
