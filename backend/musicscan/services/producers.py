"""Producers - find new work and put it on the queues."""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.models import ArtistStoryQueue, DiscogsImportQueue, MasterSingle
from musicscan.services.dedup import DedupIndex, normalize_text
from musicscan.services.discogs import DiscogsClient
from musicscan.services.dispatcher import load_index
from musicscan.services.enqueue import enqueue_items
from musicscan.services.processors.artist_stories import artist_stories_queue, artist_story_key
from musicscan.services.processors.master_singles import master_singles_queue

logger = logging.getLogger(__name__)


async def discover_artist_singles(
    db: AsyncSession,
    artist_name: str,
    discogs_artist_id: int,
    artist_id: str | None = None,
    client: DiscogsClient | None = None,
) -> dict[str, Any]:
    """
    Stage an artist's singles from Discogs in master_singles.

    Only releases where the artist has the ``Main`` role are kept, and only
    the first release per title. Releases already staged are left alone.
    """
    if not artist_name or not discogs_artist_id:
        raise ValueError("artistName and discogsArtistId are required")

    client = client or DiscogsClient()
    logger.info(f"Discovering singles for {artist_name} (Discogs ID: {discogs_artist_id})")
    releases = await client.artist_singles(discogs_artist_id)

    unique = {}
    for release in releases:
        if release.role != "Main":
            continue
        title = normalize_text(release.title)
        if title and title not in unique:
            unique[title] = release
    singles = list(unique.values())

    result = await db.execute(
        select(MasterSingle.discogs_release_id).where(
            MasterSingle.discogs_release_id.in_([single.id for single in singles])
        )
    )
    staged = set(result.scalars().all())

    rows = [
        MasterSingle(
            artist_id=artist_id,
            artist_name=artist_name,
            discogs_artist_id=discogs_artist_id,
            title=single.title,
            year=single.year or None,
            discogs_release_id=single.id,
            discogs_url=f"https://www.discogs.com/release/{single.id}",
            artwork_thumb=single.thumb or None,
            artwork_large=single.large_artwork,
            format=single.format or "Single",
            label=single.label,
        )
        for single in singles
        if single.id not in staged
    ]
    summary = await enqueue_items(db, master_singles_queue, rows)

    logger.info(
        f"Discovered {len(singles)} singles for {artist_name}: "
        f"{summary.created} inserted, {len(staged) + summary.skipped} skipped"
    )
    return {
        "success": True,
        "artistName": artist_name,
        "totalSingles": len(singles),
        "inserted": summary.created,
        "skipped": len(staged) + summary.skipped,
    }


async def enqueue_artist_stories(db: AsyncSession, limit: int | None = None) -> dict[str, Any]:
    """
    Queue a story for every imported artist that has none yet.

    Artists come from the Discogs import queue. Artists with a story or a
    live queue row are left out rather than recorded as skipped, since this
    runs on a schedule over the same artists again and again.
    """
    result = await db.execute(
        select(DiscogsImportQueue.artist)
        .where(DiscogsImportQueue.artist.is_not(None))
        .distinct()
        .order_by(DiscogsImportQueue.artist)
    )
    artists = [artist for artist in result.scalars().all() if artist and artist.strip()]

    index = await load_index(db, artist_stories_queue)
    rows = []
    for artist in artists:
        row = ArtistStoryQueue(artist_name=artist.strip())
        key = artist_story_key(row)
        if index.is_duplicate(key):
            continue
        index.reserve(key)
        rows.append(row)
        if limit is not None and len(rows) >= limit:
            break

    # Keys are already reserved above, start from a fresh index
    summary = await enqueue_items(db, artist_stories_queue, rows, index=DedupIndex())
    return {"success": True, "artists": len(artists), "queued": summary.created}
