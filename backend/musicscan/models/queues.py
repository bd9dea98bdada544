"""Concrete queue tables, one per processing domain."""

from sqlalchemy import Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from musicscan.database import Base
from musicscan.models.queue import QueueItemMixin


class DiscogsImportQueue(QueueItemMixin, Base):
    """Discogs releases waiting to become art products."""

    __tablename__ = "discogs_import_queue"

    discogs_release_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    artist: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Filled in when the product was created
    product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    blog_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_discogs_import_queue_release", "discogs_release_id"),
        Index("ix_discogs_import_queue_pending", "status", "created_at"),
    )


class MasterSingle(QueueItemMixin, Base):
    """Singles discovered on Discogs, staged before story generation.

    Success for this table means the single was handed over to
    singles_import_queue (status ``queued``).
    """

    __tablename__ = "master_singles"

    artist_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    artist_name: Mapped[str] = mapped_column(String(255), nullable=False)
    discogs_artist_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    discogs_release_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    discogs_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    artwork_thumb: Mapped[str | None] = mapped_column(Text, nullable=True)
    artwork_large: Mapped[str | None] = mapped_column(Text, nullable=True)
    format: Mapped[str | None] = mapped_column(String(100), nullable=True)
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    genre: Mapped[str | None] = mapped_column(String(100), nullable=True)


class SinglesImportQueue(QueueItemMixin, Base):
    """Singles waiting for a generated story."""

    __tablename__ = "singles_import_queue"

    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    batch_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    artist: Mapped[str] = mapped_column(String(255), nullable=False)
    single_name: Mapped[str] = mapped_column(String(500), nullable=False)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    genre: Mapped[str | None] = mapped_column(String(100), nullable=True)
    discogs_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    discogs_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    artwork_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    music_story_id: Mapped[int | None] = mapped_column(Integer, nullable=True)


class ArtistStoryQueue(QueueItemMixin, Base):
    """Artists waiting for a generated biography story."""

    __tablename__ = "artist_story_queue"

    artist_name: Mapped[str] = mapped_column(String(255), nullable=False)
    artist_story_id: Mapped[int | None] = mapped_column(Integer, nullable=True)


class PhotoBatch(QueueItemMixin, Base):
    """A user photo turned into a set of merchandise products."""

    __tablename__ = "photo_batch_queue"

    photo_url: Mapped[str] = mapped_column(Text, nullable=False)
    total_jobs: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    completed_jobs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_job: Mapped[str | None] = mapped_column(String(255), nullable=True)


class SocialPostQueue(QueueItemMixin, Base):
    """Scheduled social media posts for published content."""

    __tablename__ = "social_post_queue"

    queue_name: Mapped[str] = mapped_column(String(50), nullable=False)
    content_id: Mapped[int] = mapped_column(Integer, nullable=False)
    artist: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    slug: Mapped[str | None] = mapped_column(String(500), nullable=True)
    artwork_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    post_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        Index("ix_social_post_queue_content", "queue_name", "content_id"),
    )
