"""Backoff policies and deadline checks shared by the polling loops."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from wildcert.exceptions import CycleTimeout


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff with a bounded number of attempts.

    Attempt numbers are zero-based: the delay after the first failed
    attempt is ``base_delay``, then ``base_delay * multiplier`` and so on,
    capped at ``max_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 5.0
    max_delay: float = 300.0
    multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        """Get the sleep before the attempt following ``attempt``."""
        return min(self.base_delay * (self.multiplier**attempt), self.max_delay)

    def has_attempts_left(self, attempt: int) -> bool:
        """Check whether another attempt is allowed after ``attempt``."""
        return attempt < self.max_attempts - 1

    def total_delay(self) -> float:
        """Upper bound on the time spent sleeping across all attempts."""
        return sum(self.delay(attempt) for attempt in range(self.max_attempts - 1))


def check_deadline(
    deadline: datetime | None, action: str, delay: float = 0.0
) -> None:
    """
    Raise CycleTimeout if the deadline has passed.

    With a delay, also raise if sleeping that long would pass the deadline.
    """
    if deadline is None:
        return
    if datetime.now(UTC) + timedelta(seconds=delay) >= deadline:
        if delay:
            raise CycleTimeout(f"No time left to wait {delay:.0f}s while {action}")
        raise CycleTimeout(f"Deadline passed while {action}")
