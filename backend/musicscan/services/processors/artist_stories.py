"""Artist stories queue - generates one biography per artist."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.models import ArtistStory, ArtistStoryQueue
from musicscan.schemas.functions import ArtistStoryResponse
from musicscan.services.dedup import artist_key
from musicscan.services.dispatcher import QueueDefinition, register_queue
from musicscan.services.functions_client import get_functions_client
from musicscan.services.processors.social_post import enqueue_post
from musicscan.services.slugs import unique_slug
from musicscan.services.steps import PermanentStepError, Step, StepContext, StepPipeline, StepResult
from musicscan.utils.text import slugify

logger = logging.getLogger(__name__)

QUEUE_NAME = "artist-stories"


def artist_story_key(item: ArtistStoryQueue) -> str | None:
    return artist_key(item.artist_name)


async def existing_artist_keys(db: AsyncSession) -> list[str | None]:
    result = await db.execute(select(ArtistStory.artist_name))
    return [artist_key(name) for name in result.scalars().all()]


async def generate_story(ctx: StepContext) -> StepResult:
    item: ArtistStoryQueue = ctx.item
    if not item.artist_name or not item.artist_name.strip():
        raise PermanentStepError("Artist name is required")

    response = await get_functions_client().invoke(
        "generate-artist-story",
        {"artistName": item.artist_name},
        schema=ArtistStoryResponse,
    )
    return StepResult.ok(response.model_dump())


async def store_story(ctx: StepContext) -> StepResult:
    item: ArtistStoryQueue = ctx.item
    generated = ctx.outputs["generate_story"]

    slug = generated.get("slug") or slugify(item.artist_name)
    story = ArtistStory(
        artist_name=item.artist_name,
        slug=await unique_slug(ctx.session, ArtistStory, slug, item.id),
        story_content=generated["story"],
    )
    ctx.session.add(story)
    await ctx.session.commit()

    await ctx.progress(artist_story_id=story.id)
    logger.info(f"Stored artist story {story.id} for {item.artist_name}")
    return StepResult.ok({"artist_story_id": story.id, "slug": story.slug})


async def schedule_post(ctx: StepContext) -> StepResult:
    story = await ctx.session.get(ArtistStory, ctx.outputs["store_story"]["artist_story_id"])
    if story is None:
        raise PermanentStepError("Stored story no longer exists")
    summary = await enqueue_post(ctx.session, "artists", story)
    return StepResult.ok(summary.to_dict())


artist_stories_queue = register_queue(QueueDefinition(
    name=QUEUE_NAME,
    model=ArtistStoryQueue,
    pipeline=StepPipeline([
        Step("generate_story", generate_story),
        Step("store_story", store_story),
        Step("schedule_post", schedule_post, optional=True),
    ]),
    key_fn=artist_story_key,
    content_loaders=[existing_artist_keys],
    describe=lambda item: {"artist_name": item.artist_name},
))
