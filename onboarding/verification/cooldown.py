"""
Cooldown policy for verification sends.

A single formula covers every channel: after the n-th attempt the next one
is allowed ``max(60s, min(max_cooldown, base * multiplier ** (n - 1)))``
after the previous attempt. The 60 second floor can never be configured
away.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..core.clock import utc_now

MIN_COOLDOWN_SECONDS = 60

def next_allowed_attempt_at(
    attempts: int,
    last_attempt_at: Optional[datetime],
    *,
    now: Optional[datetime] = None,
    base_seconds: float = MIN_COOLDOWN_SECONDS,
    multiplier: float = 2.0,
    max_seconds: float = 900,
) -> datetime:
    """
    Compute when the next verification attempt may be made.

    Args:
        attempts: Attempts recorded so far
        last_attempt_at: Time of the latest attempt, None if there was none
        now: Current time, returned when no attempt was made yet
        base_seconds: Wait after the first attempt
        multiplier: Growth factor applied per further attempt
        max_seconds: Upper bound of the backoff (the floor still applies)

    Returns:
        datetime: Earliest time the next attempt is allowed
    """
    if last_attempt_at is None or attempts < 1:
        return now if now is not None else utc_now()

    try:
        backoff = min(max_seconds, base_seconds * (multiplier ** (attempts - 1)))
    except OverflowError:
        # Growth beyond float range is far past the cap
        backoff = max_seconds
    wait = max(MIN_COOLDOWN_SECONDS, backoff)
    return last_attempt_at + timedelta(seconds=wait)


@dataclass(frozen=True)
class CooldownPolicy:
    """Cooldown parameters bound once, shared by all trackers."""
    base_seconds: float = MIN_COOLDOWN_SECONDS
    multiplier: float = 2.0
    max_seconds: float = 900

    def __post_init__(self):
        if self.multiplier < 1:
            raise ValueError("cooldown multiplier must be >= 1 to keep the backoff non-decreasing")

    @classmethod
    def from_settings(cls, settings) -> "CooldownPolicy":
        return cls(
            base_seconds=settings.verification_cooldown_seconds,
            multiplier=settings.verification_backoff_multiplier,
            max_seconds=settings.verification_max_cooldown_seconds,
        )

    def next_allowed_attempt_at(self, attempts: int, last_attempt_at: Optional[datetime], now: datetime) -> datetime:
        return next_allowed_attempt_at(
            attempts,
            last_attempt_at,
            now=now,
            base_seconds=self.base_seconds,
            multiplier=self.multiplier,
            max_seconds=self.max_seconds,
        )

    def retry_after_seconds(self, attempts: int, last_attempt_at: Optional[datetime], now: datetime) -> int:
        """Whole seconds left before the next attempt, 0 when allowed."""
        allowed_at = self.next_allowed_attempt_at(attempts, last_attempt_at, now)
        remaining = (allowed_at - now).total_seconds()
        return max(0, math.ceil(remaining))

    def is_allowed(self, attempts: int, last_attempt_at: Optional[datetime], now: datetime) -> bool:
        return self.retry_after_seconds(attempts, last_attempt_at, now) == 0
