"""Deduplication keys and the index of work that already exists.

A dedup key names one logical unit of work independent of which table it
lives in: an artist+title pair, a source URL or a Discogs catalog id. Before
anything is enqueued or claimed, the key is checked against the target
content table and against live queue rows, so at most one live item exists
per key.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.services.queue_repository import QueueError

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

# Query parameters that never change what a URL points at
TRACKING_PARAMS = frozenset([
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "fbclid", "gclid", "ref",
])


class DuplicateCheckError(QueueError):
    """Raised when the existing-work lookup itself fails."""
    pass


def normalize_text(value: str | None) -> str:
    """Lower-case, trim and collapse whitespace."""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value.strip().lower())


def artist_title_key(artist: str | None, title: str | None) -> str | None:
    """Key for an artist + title pair, e.g. ``'queen|bohemian rhapsody'``."""
    artist_norm = normalize_text(artist)
    title_norm = normalize_text(title)
    if not artist_norm or not title_norm:
        return None
    return f"{artist_norm}|{title_norm}"


def artist_key(artist: str | None) -> str | None:
    artist_norm = normalize_text(artist)
    return f"artist:{artist_norm}" if artist_norm else None


def url_key(url: str | None) -> str | None:
    """
    Key for a source URL.

    Scheme and host are lower-cased, fragments, tracking parameters and
    trailing slashes are dropped, remaining query parameters are sorted.
    """
    if not url or not url.strip():
        return None
    parts = urlsplit(url.strip())
    query = urlencode(sorted(
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k.lower() not in TRACKING_PARAMS
    ))
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, ""))


def catalog_key(discogs_id: int | str | None) -> str | None:
    """Key for a Discogs catalog id; only positive integers are valid."""
    if discogs_id is None or isinstance(discogs_id, bool):
        return None
    try:
        value = int(discogs_id)
    except (TypeError, ValueError):
        return None
    if value <= 0:
        return None
    return f"discogs:{value}"


KeyLoader = Callable[[AsyncSession], Awaitable[Iterable[str]]]


@dataclass
class DedupIndex:
    """
    Keys of work that exists or is live, plus keys reserved in this run.

    ``owners`` maps queue keys to the row id that holds them, so a row is
    never treated as a duplicate of itself.
    """
    existing: set[str] = field(default_factory=set)
    owners: dict[str, int] = field(default_factory=dict)
    reserved: set[str] = field(default_factory=set)

    def is_duplicate(self, key: str | None, item_id: int | None = None) -> bool:
        if key is None:
            return False
        if key in self.existing or key in self.reserved:
            return True
        owner = self.owners.get(key)
        return owner is not None and owner != item_id

    def reserve(self, key: str | None) -> None:
        if key is not None:
            self.reserved.add(key)

    def reason(self, key: str) -> str:
        if key in self.existing:
            return f"Already exists: {key}"
        if key in self.reserved:
            return f"Duplicate in batch: {key}"
        return f"Already queued: {key}"


async def build_index(
    session: AsyncSession,
    content_loaders: Iterable[KeyLoader] = (),
    queue_keys: dict[str, int] | None = None,
) -> DedupIndex:
    """
    Collect keys from content tables and live queue rows.

    Any failure while loading is raised as DuplicateCheckError; callers must
    treat that as "skip this run" rather than proceed without the check.
    """
    index = DedupIndex(owners=dict(queue_keys or {}))
    try:
        for loader in content_loaders:
            for key in await loader(session):
                if key:
                    index.existing.add(key)
    except Exception as e:
        logger.error(f"Duplicate check failed: {e}")
        raise DuplicateCheckError(f"Duplicate check failed: {e}") from e

    logger.debug(
        f"Dedup index: {len(index.existing)} existing keys, {len(index.owners)} queued keys"
    )
    return index
