"""SQLAlchemy models."""

from musicscan.models.queue import (
    LIVE_STATUSES,
    TERMINAL_STATUSES,
    QueueItemMixin,
    QueueStatus,
    utcnow,
)
from musicscan.models.queues import (
    ArtistStoryQueue,
    DiscogsImportQueue,
    MasterSingle,
    PhotoBatch,
    SinglesImportQueue,
    SocialPostQueue,
)
from musicscan.models.content import ArtProduct, ArtistStory, MusicStory
from musicscan.models.cronjob import CronjobExecutionLog
from musicscan.models.auth import AppUser, UserRole

__all__ = [
    "LIVE_STATUSES",
    "TERMINAL_STATUSES",
    "QueueItemMixin",
    "QueueStatus",
    "utcnow",
    "ArtistStoryQueue",
    "DiscogsImportQueue",
    "MasterSingle",
    "PhotoBatch",
    "SinglesImportQueue",
    "SocialPostQueue",
    "ArtProduct",
    "ArtistStory",
    "MusicStory",
    "CronjobExecutionLog",
    "AppUser",
    "UserRole",
]
