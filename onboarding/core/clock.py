"""
Time source shared by the session manager and the verification trackers.

Every component takes a ``clock`` callable so tests can drive time
explicitly instead of sleeping.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]

def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
