"""Schemas for Discogs API responses."""

from pydantic import BaseModel, ConfigDict, Field


class DiscogsPagination(BaseModel):
    """Pagination block of a Discogs list response."""

    model_config = ConfigDict(extra="ignore")

    page: int = 1
    pages: int = 1
    items: int = 0
    per_page: int = 100


class DiscogsArtistRelease(BaseModel):
    """One entry of /artists/{id}/releases."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: int
    title: str
    year: int | None = None
    thumb: str | None = None
    role: str | None = None
    type: str | None = None
    format: str | None = None
    label: str | None = None
    resource_url: str | None = None

    @property
    def large_artwork(self) -> str | None:
        """Discogs serves the same image in a bigger size under another path."""
        if not self.thumb:
            return None
        return self.thumb.replace("/150x150/", "/500x500/")


class DiscogsArtistReleasesPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    pagination: DiscogsPagination = Field(default_factory=DiscogsPagination)
    releases: list[DiscogsArtistRelease] = Field(default_factory=list)
