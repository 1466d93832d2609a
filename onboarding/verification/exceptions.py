"""
Verification-specific exceptions.

Expected conditions (missing record on confirmation, active cooldown) are
reported through return values; only caller bugs raise.
"""

class VerificationError(Exception):
    """Base class for verification tracker errors."""

class NoActiveVerification(VerificationError):
    """Raised when an attempt is recorded for an identifier that was never started."""
    def __init__(self, channel: str, identifier: str):
        self.channel = channel
        self.identifier = identifier
        super().__init__(f"No active {channel} verification for '{identifier}'")
