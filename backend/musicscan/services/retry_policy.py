"""Retry policy shared by every queue - attempts ceiling plus a fixed delay."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from musicscan.config import settings
from musicscan.models.queue import QueueStatus


@dataclass(frozen=True)
class RetryDecision:
    """Where a failed item goes next."""
    status: str
    scheduled_for: datetime | None = None

    @property
    def will_retry(self) -> bool:
        return self.status == QueueStatus.PENDING.value


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempts ceiling and retry delay.

    ``max_attempts`` is only a default for new rows; each row carries its own
    ``max_attempts`` which is what the decision uses. The delay is fixed: a
    retried item becomes eligible again ``retry_delay_seconds`` after failing.
    """
    max_attempts: int = 3
    retry_delay_seconds: float = 0.0

    @classmethod
    def from_settings(cls, retry_delay_seconds: float = 0.0) -> "RetryPolicy":
        return cls(max_attempts=settings.max_attempts, retry_delay_seconds=retry_delay_seconds)

    def is_exhausted(self, attempts: int, max_attempts: int | None = None) -> bool:
        ceiling = max_attempts if max_attempts is not None else self.max_attempts
        return attempts >= ceiling

    def decide(
        self,
        attempts: int,
        max_attempts: int | None,
        now: datetime,
        permanent: bool = False,
    ) -> RetryDecision:
        """Decide the status of an item that just failed its processing run."""
        if permanent or self.is_exhausted(attempts, max_attempts):
            return RetryDecision(status=QueueStatus.FAILED.value)

        scheduled_for = None
        if self.retry_delay_seconds > 0:
            scheduled_for = now + timedelta(seconds=self.retry_delay_seconds)
        return RetryDecision(status=QueueStatus.PENDING.value, scheduled_for=scheduled_for)
