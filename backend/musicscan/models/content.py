"""Content tables written by the queue processors."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from musicscan.database import Base
from musicscan.models.queue import utcnow


class MusicStory(Base):
    """A generated story about a single."""

    __tablename__ = "music_stories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    artist_name: Mapped[str] = mapped_column(String(255), nullable=False)
    single_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    slug: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    story_content: Mapped[str] = mapped_column(Text, nullable=False)
    artwork_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    discogs_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_published: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    facebook_posted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<MusicStory(id={self.id}, slug='{self.slug}')>"


class ArtistStory(Base):
    """A generated artist biography."""

    __tablename__ = "artist_stories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    artist_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    story_content: Mapped[str] = mapped_column(Text, nullable=False)

    is_published: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    facebook_posted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ArtistStory(id={self.id}, artist_name='{self.artist_name}')>"


class ArtProduct(Base):
    """A shop product created from a Discogs release."""

    __tablename__ = "art_products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discogs_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    slug: Mapped[str | None] = mapped_column(String(500), nullable=True)
    blog_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    artist: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
