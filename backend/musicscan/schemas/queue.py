"""Queue schemas for API validation."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class QueueItemResponse(BaseModel):
    """Engine columns of a queue row; domain columns are in ``payload``."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    priority: int
    attempts: int
    max_attempts: int
    error_message: str | None = None
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None
    step_ledger: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    scheduled_for: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None
    started_at: datetime | None = None
    processed_at: datetime | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class QueueStatsResponse(BaseModel):
    queue: str
    total: int
    by_status: dict[str, int]


class RetryFailedRequest(BaseModel):
    """Requeue failed items, all of them or the given ids."""

    ids: list[int] | None = None
    extra_attempts: int = Field(default=3, ge=1, le=10)


class ResetStuckResponse(BaseModel):
    queue: str
    requeued: int
    failed: int


class CleanupResponse(BaseModel):
    queue: str
    status: str
    deleted: int


class DiscoverSinglesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    artist_name: str = Field(..., min_length=1, alias="artistName")
    discogs_artist_id: int = Field(..., gt=0, alias="discogsArtistId")
    artist_id: str | None = Field(default=None, alias="artistId")


class PhotoBatchStartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    photo_url: str = Field(..., min_length=1, alias="photoUrl")


class PhotoBatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    photo_url: str
    total_jobs: int
    completed_jobs: int
    current_job: str | None = None
    attempts: int
    error_message: str | None = None
    result: dict[str, Any] | None = None
    created_at: datetime
    processed_at: datetime | None = None
