"""Pydantic schemas for API request/response validation."""

from musicscan.schemas.common import PaginationParams
from musicscan.schemas.queue import (
    CleanupResponse,
    DiscoverSinglesRequest,
    PhotoBatchResponse,
    PhotoBatchStartRequest,
    QueueItemResponse,
    QueueStatsResponse,
    ResetStuckResponse,
    RetryFailedRequest,
)

__all__ = [
    "PaginationParams",
    "CleanupResponse",
    "DiscoverSinglesRequest",
    "PhotoBatchResponse",
    "PhotoBatchStartRequest",
    "QueueItemResponse",
    "QueueStatsResponse",
    "ResetStuckResponse",
    "RetryFailedRequest",
]
