"""
Verification Schemas - Pydantic models for the per-channel verification state.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, model_validator

class VerificationChannel(str, Enum):
    """Independent out-of-band confirmation flows."""
    EMAIL = "email"
    PHONE = "phone"
    DOCUMENT = "document"

class VerificationRecord(BaseModel):
    """
    Verification Record Schema - State of one identifier on one channel

    Fields:
    - channel: Channel the record belongs to
    - identifier: Email address, phone number or document number being verified
    - is_verified: True only after an explicit successful confirmation
    - verification_timestamp: When the record became verified (drives expiry)
    - attempts: Send/confirm attempts since the record was (re)started
    - last_attempt_timestamp: Time of the latest attempt (drives the cooldown)
    - last_attempt_payload: Opaque context of the latest attempt
    - started_at: When the record was (re)started
    """
    channel: VerificationChannel
    identifier: str
    is_verified: bool = False
    verification_timestamp: Optional[datetime] = None
    attempts: int = Field(default=0, ge=0)
    last_attempt_timestamp: Optional[datetime] = None
    last_attempt_payload: Optional[Dict[str, Any]] = None
    started_at: datetime

    @model_validator(mode="after")
    def verified_requires_timestamp(self):
        if self.is_verified and self.verification_timestamp is None:
            raise ValueError("a verified record must carry a verification timestamp")
        return self

class VerificationStatusResponse(BaseModel):
    """Channel state as exposed to the UI."""
    channel: VerificationChannel
    identifier: Optional[str] = None
    is_verified: bool = False
    attempts: int = 0
    retry_after_seconds: int = 0
