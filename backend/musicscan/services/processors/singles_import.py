"""Singles import queue - generates a story per single and schedules a post."""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.models import MusicStory, SinglesImportQueue
from musicscan.schemas.functions import SingleStoryResponse
from musicscan.services.dedup import artist_title_key
from musicscan.services.dispatcher import QueueDefinition, register_queue
from musicscan.services.functions_client import get_functions_client
from musicscan.services.processors.social_post import enqueue_post
from musicscan.services.slugs import unique_slug
from musicscan.services.steps import PermanentStepError, Step, StepContext, StepPipeline, StepResult
from musicscan.utils.text import slugify

logger = logging.getLogger(__name__)

QUEUE_NAME = "singles-import"


def single_key(item: SinglesImportQueue) -> str | None:
    return artist_title_key(item.artist, item.single_name)


async def existing_story_keys(db: AsyncSession) -> list[str | None]:
    result = await db.execute(
        select(MusicStory.artist_name, MusicStory.single_name).where(MusicStory.single_name.is_not(None))
    )
    return [artist_title_key(artist, single) for artist, single in result.all()]


async def generate_story(ctx: StepContext) -> StepResult:
    item: SinglesImportQueue = ctx.item
    if not item.artist or not item.single_name:
        raise PermanentStepError("Artist and single name are required")

    response = await get_functions_client().invoke(
        "generate-single-story",
        {
            "artist": item.artist,
            "singleName": item.single_name,
            "year": item.year,
            "label": item.label,
            "genre": item.genre,
            "discogsId": item.discogs_id,
            "discogsUrl": item.discogs_url,
            "artworkUrl": item.artwork_url,
        },
        schema=SingleStoryResponse,
    )
    logger.info(f"Generated story for {item.artist} - {item.single_name}")
    return StepResult.ok(response.model_dump())


async def store_story(ctx: StepContext) -> StepResult:
    item: SinglesImportQueue = ctx.item
    generated = ctx.outputs["generate_story"]

    slug = generated.get("slug") or slugify(f"{item.artist} {item.single_name}")
    story = MusicStory(
        artist_name=item.artist,
        single_name=item.single_name,
        title=generated.get("title") or f"{item.artist} - {item.single_name}",
        slug=await unique_slug(ctx.session, MusicStory, slug, item.id),
        story_content=generated["story"],
        artwork_url=generated.get("artwork_url") or item.artwork_url,
        year=item.year,
        discogs_id=item.discogs_id,
    )
    ctx.session.add(story)
    await ctx.session.commit()

    await ctx.progress(music_story_id=story.id)
    return StepResult.ok({"music_story_id": story.id, "slug": story.slug})


async def schedule_post(ctx: StepContext) -> StepResult:
    story = await ctx.session.get(MusicStory, ctx.outputs["store_story"]["music_story_id"])
    if story is None:
        raise PermanentStepError("Stored story no longer exists")
    summary = await enqueue_post(ctx.session, "singles", story)
    return StepResult.ok(summary.to_dict())


def candidate_filter(filters: dict[str, Any]) -> list[Any]:
    if filters.get("batchId"):
        return [SinglesImportQueue.batch_id == filters["batchId"]]
    return []


singles_import_queue = register_queue(QueueDefinition(
    name=QUEUE_NAME,
    model=SinglesImportQueue,
    pipeline=StepPipeline([
        Step("generate_story", generate_story),
        Step("store_story", store_story),
        Step("schedule_post", schedule_post, optional=True),
    ]),
    key_fn=single_key,
    content_loaders=[existing_story_keys],
    candidate_filter=candidate_filter,
    order_by=lambda: (
        SinglesImportQueue.priority.desc(),
        SinglesImportQueue.created_at.asc(),
        SinglesImportQueue.id.asc(),
    ),
    describe=lambda item: {"artist": item.artist, "single_name": item.single_name},
))
