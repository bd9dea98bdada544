"""Master singles staging - hands discovered singles over to story generation.

Flow: discover_artist_singles -> master_singles -> singles_import_queue ->
music_stories. A staged single is ``queued`` once its import row exists.
"""

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.config import settings
from musicscan.models import LIVE_STATUSES, MasterSingle, MusicStory, QueueStatus, SinglesImportQueue
from musicscan.services.dedup import artist_title_key
from musicscan.services.dispatcher import QueueDefinition, register_queue
from musicscan.services.steps import PermanentStepError, Step, StepContext, StepPipeline, StepResult

logger = logging.getLogger(__name__)

QUEUE_NAME = "master-singles"

IMPORT_PRIORITY = 50


def master_single_key(item: MasterSingle) -> str | None:
    return artist_title_key(item.artist_name, item.title)


async def import_queue_keys(db: AsyncSession) -> list[str | None]:
    result = await db.execute(
        select(SinglesImportQueue.artist, SinglesImportQueue.single_name).where(
            SinglesImportQueue.status.in_(LIVE_STATUSES)
        )
    )
    return [artist_title_key(artist, single) for artist, single in result.all()]


async def story_keys(db: AsyncSession) -> list[str | None]:
    result = await db.execute(
        select(MusicStory.artist_name, MusicStory.single_name).where(MusicStory.single_name.is_not(None))
    )
    return [artist_title_key(artist, single) for artist, single in result.all()]


async def hand_over(ctx: StepContext) -> StepResult:
    single: MasterSingle = ctx.item
    if not single.artist_name or not single.title:
        raise PermanentStepError("Artist name and title are required")

    # One batch id per dispatcher run
    batch_id = ctx.params.setdefault("batch_id", str(uuid.uuid4()))
    row = SinglesImportQueue(
        user_id=settings.system_user_id,
        batch_id=batch_id,
        artist=single.artist_name,
        single_name=single.title,
        year=single.year,
        label=single.label,
        genre=single.genre,
        discogs_id=single.discogs_release_id,
        discogs_url=single.discogs_url,
        artwork_url=single.artwork_large or single.artwork_thumb,
        status=QueueStatus.PENDING.value,
        priority=IMPORT_PRIORITY,
    )
    ctx.session.add(row)
    await ctx.session.commit()

    logger.info(f"Queued single for import: {single.artist_name} - {single.title}")
    return StepResult.ok({"singles_import_id": row.id, "batch_id": batch_id})


def candidate_filter(filters: dict[str, Any]) -> list[Any]:
    where = [MasterSingle.artwork_large.is_not(None)]
    if filters.get("artistName"):
        where.append(MasterSingle.artist_name == filters["artistName"])
    return where


master_singles_queue = register_queue(QueueDefinition(
    name=QUEUE_NAME,
    model=MasterSingle,
    pipeline=StepPipeline([Step("hand_over", hand_over)]),
    key_fn=master_single_key,
    content_loaders=[import_queue_keys, story_keys],
    candidate_filter=candidate_filter,
    # Newest releases first, singles without a year last
    order_by=lambda: (
        MasterSingle.year.desc().nulls_last(),
        MasterSingle.created_at.asc(),
        MasterSingle.id.asc(),
    ),
    success_status=QueueStatus.QUEUED.value,
    describe=lambda item: {"artist": item.artist_name, "title": item.title},
))
