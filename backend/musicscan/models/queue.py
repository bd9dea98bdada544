"""Shared queue item columns - status, attempts, lease and step ledger."""

from datetime import datetime, UTC
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from musicscan.config import settings


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite DateTime columns do not keep tzinfo."""
    return datetime.now(UTC).replace(tzinfo=None)


class QueueStatus(str, Enum):
    """Status of a queue item."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    QUEUED = "queued"  # handed over to the next queue (staging tables)


TERMINAL_STATUSES = frozenset([
    QueueStatus.COMPLETED.value,
    QueueStatus.FAILED.value,
    QueueStatus.SKIPPED.value,
    QueueStatus.QUEUED.value,
])

# Rows that still represent live or finished work for deduplication
LIVE_STATUSES = (
    QueueStatus.PENDING.value,
    QueueStatus.PROCESSING.value,
    QueueStatus.COMPLETED.value,
    QueueStatus.QUEUED.value,
)


class QueueItemMixin:
    """Columns every queue table carries.

    Domain payload columns (artist, title, discogs ids, URLs) live on the
    concrete model and are opaque to the dispatcher.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(
        String(20), default=QueueStatus.PENDING.value, nullable=False, index=True
    )
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Retry tracking
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(
        Integer, default=lambda: settings.max_attempts, nullable=False
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Lease - who holds the processing claim and until when
    lease_owner: Mapped[str | None] = mapped_column(String(100), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Completed external steps, keyed by step name
    step_ledger: Mapped[dict[str, Any]] = mapped_column(JSON, default=lambda: {}, nullable=False)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Timestamps
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}(id={self.id}, status='{self.status}', "
            f"attempts={self.attempts}/{self.max_attempts})>"
        )
