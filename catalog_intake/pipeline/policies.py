"""Bounded retry policy owned by the extraction stage runner."""

from __future__ import annotations

from dataclasses import dataclass

from ..utils.config import GlobalSettings, get_settings


@dataclass(slots=True)
class StageRetryPolicy:
    """Encapsulates retry behaviour for extraction attempts.

    ``max_attempts`` counts every attempt, including the first one, so a
    submission with ``attempt_count == max_attempts`` is no longer eligible.
    """

    max_attempts: int
    backoff_seconds: float
    max_backoff_seconds: float

    def __post_init__(self) -> None:
        """Validate policy boundaries to avoid misconfiguration."""

        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least one")
        if self.backoff_seconds <= 0:
            raise ValueError("backoff_seconds must be greater than zero")
        if self.max_backoff_seconds <= 0:
            raise ValueError("max_backoff_seconds must be greater than zero")
        if self.max_backoff_seconds < self.backoff_seconds:
            raise ValueError("max_backoff_seconds must be >= backoff_seconds")

    def allows(self, attempts_made: int) -> bool:
        """Return True when another attempt is permitted after ``attempts_made``."""

        return attempts_made < self.max_attempts

    def next_countdown(self, retry_number: int) -> int:
        """Compute the delay before the next retry attempt."""

        exponent = max(retry_number, 0)
        delay = self.backoff_seconds * (2**exponent)
        return int(min(delay, self.max_backoff_seconds))

    def to_dict(self) -> dict[str, object]:
        """Return a serializable representation for logging."""

        return {
            "max_attempts": self.max_attempts,
            "backoff_seconds": self.backoff_seconds,
            "max_backoff_seconds": self.max_backoff_seconds,
        }

    @classmethod
    def from_settings(cls, settings: GlobalSettings | None = None) -> StageRetryPolicy:
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.retry_max_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
            max_backoff_seconds=settings.retry_max_backoff_seconds,
        )
