"""Social post queue - publishes scheduled posts for stories."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.config import settings
from musicscan.models import ArtistStory, MusicStory, QueueStatus, SocialPostQueue, utcnow
from musicscan.schemas.functions import SocialPostResponse
from musicscan.services.dispatcher import QueueDefinition, register_queue
from musicscan.services.enqueue import EnqueueSummary, enqueue_items
from musicscan.services.functions_client import get_functions_client
from musicscan.services.http_client import UpstreamError
from musicscan.services.steps import PermanentStepError, Step, StepContext, StepPipeline, StepResult

logger = logging.getLogger(__name__)

QUEUE_NAME = "social-post"

# New content is posted before recycled content
FRESH_PRIORITY = 10
RECYCLED_PRIORITY = 5


@dataclass(frozen=True)
class SocialQueueConfig:
    """Which content feeds one social queue."""
    name: str
    content_model: type
    content_filter: Callable[[], list[Any]]
    title: Callable[[Any], str]
    artist: Callable[[Any], str | None]
    artwork: Callable[[Any], str | None]


SOCIAL_QUEUES: dict[str, SocialQueueConfig] = {
    "singles": SocialQueueConfig(
        name="singles",
        content_model=MusicStory,
        content_filter=lambda: [MusicStory.is_published.is_(True), MusicStory.single_name.is_not(None)],
        title=lambda story: story.title,
        artist=lambda story: story.artist_name,
        artwork=lambda story: story.artwork_url,
    ),
    "artists": SocialQueueConfig(
        name="artists",
        content_model=ArtistStory,
        content_filter=lambda: [ArtistStory.is_published.is_(True)],
        title=lambda story: story.artist_name,
        artist=lambda story: story.artist_name,
        artwork=lambda story: None,
    ),
}


def social_key(item: SocialPostQueue) -> str | None:
    if not item.queue_name or item.content_id is None:
        return None
    return f"social:{item.queue_name}:{item.content_id}"


def build_post(
    queue_name: str,
    content: Any,
    scheduled_for=None,
    priority: int = FRESH_PRIORITY,
) -> SocialPostQueue:
    """New queue row for a piece of content."""
    config = SOCIAL_QUEUES[queue_name]
    return SocialPostQueue(
        queue_name=queue_name,
        content_id=content.id,
        artist=config.artist(content),
        title=config.title(content),
        slug=content.slug,
        artwork_url=config.artwork(content),
        scheduled_for=scheduled_for,
        priority=priority,
    )


async def enqueue_post(db: AsyncSession, queue_name: str, content: Any) -> EnqueueSummary:
    """Queue a post for content that was just created."""
    return await enqueue_items(db, social_post_queue, [build_post(queue_name, content)])


async def publish(ctx: StepContext) -> StepResult:
    item: SocialPostQueue = ctx.item
    if item.queue_name not in SOCIAL_QUEUES:
        raise PermanentStepError(f"Unknown social queue: {item.queue_name}")

    response = await get_functions_client().invoke(
        "post-to-facebook",
        {
            "content_type": item.queue_name,
            "content_id": item.content_id,
            "title": item.title,
            "artist": item.artist,
            "slug": item.slug,
            "image_url": item.artwork_url,
        },
        schema=SocialPostResponse,
    )
    if not response.success:
        raise UpstreamError(f"post-to-facebook failed: {response.error or 'no details'}")

    await ctx.progress(post_id=response.post_id)
    return StepResult.ok({"post_id": response.post_id})


async def stamp_content(ctx: StepContext) -> StepResult:
    item: SocialPostQueue = ctx.item
    model = SOCIAL_QUEUES[item.queue_name].content_model
    posted_at = utcnow()
    await ctx.session.execute(
        update(model).where(model.id == item.content_id).values(facebook_posted_at=posted_at)
    )
    await ctx.session.commit()
    return StepResult.ok({"posted_at": posted_at.isoformat()})


def candidate_filter(filters: dict[str, Any]) -> list[Any]:
    queue_name = filters.get("queueName") or filters.get("queue_name")
    if queue_name:
        return [SocialPostQueue.queue_name == queue_name]
    return []


social_post_queue = register_queue(QueueDefinition(
    name=QUEUE_NAME,
    model=SocialPostQueue,
    pipeline=StepPipeline([
        Step("post", publish),
        Step("stamp_content", stamp_content),
    ]),
    key_fn=social_key,
    # Posted content may be recycled, so only unfinished rows block it
    live_statuses=(QueueStatus.PENDING.value, QueueStatus.PROCESSING.value),
    candidate_filter=candidate_filter,
    order_by=lambda: (
        SocialPostQueue.priority.desc(),
        SocialPostQueue.scheduled_for.asc(),
        SocialPostQueue.created_at.asc(),
        SocialPostQueue.id.asc(),
    ),
    describe=lambda item: {"queue_name": item.queue_name, "content_id": item.content_id},
))


async def recycle_social_queue(db: AsyncSession, now=None) -> dict[str, Any]:
    """
    Top up every social queue that is running low.

    A queue with fewer than ``social_min_pending`` pending posts gets up to
    ``social_recycle_batch`` new rows: content that was never posted first,
    then content last posted more than ``social_recycle_after_days`` ago,
    oldest post first. Content with a pending or processing post is left
    out. New rows are spaced ``social_slot_minutes`` apart.
    """
    now = now or utcnow()
    results = []

    for config in SOCIAL_QUEUES.values():
        model = config.content_model
        pending = await _pending_count(db, config.name)
        if pending >= settings.social_min_pending:
            results.append({
                "queue": config.name,
                "action": "skipped",
                "reason": f"Already has {pending} pending items",
                "added": 0,
            })
            continue

        live_ids = await _live_content_ids(db, config.name)
        wanted = settings.social_recycle_batch

        never_posted = await _content(
            db,
            config,
            [model.facebook_posted_at.is_(None)],
            (model.created_at.asc(), model.id.asc()),
            live_ids,
            wanted,
        )
        content = list(never_posted)
        if len(content) < wanted:
            threshold = now - timedelta(days=settings.social_recycle_after_days)
            content += await _content(
                db,
                config,
                [model.facebook_posted_at < threshold],
                (model.facebook_posted_at.asc(), model.id.asc()),
                live_ids,
                wanted - len(content),
            )

        if not content:
            results.append({
                "queue": config.name,
                "action": "no_content",
                "reason": "No content available to queue",
                "added": 0,
            })
            continue

        slot = timedelta(minutes=settings.social_slot_minutes)
        rows = [
            build_post(config.name, item, scheduled_for=now + slot * position, priority=RECYCLED_PRIORITY)
            for position, item in enumerate(content)
        ]
        summary = await enqueue_items(db, social_post_queue, rows)
        logger.info(f"Recycled {summary.created} posts into social queue {config.name}")
        results.append({
            "queue": config.name,
            "action": "recycled",
            "added": summary.created,
            "from_never_posted": len(never_posted),
        })

    return {"success": True, "message": "Queue recycling complete", "results": results}


async def _pending_count(db: AsyncSession, queue_name: str) -> int:
    result = await db.execute(
        select(func.count(SocialPostQueue.id)).where(
            SocialPostQueue.queue_name == queue_name,
            SocialPostQueue.status == QueueStatus.PENDING.value,
        )
    )
    return result.scalar() or 0


async def _live_content_ids(db: AsyncSession, queue_name: str) -> set[int]:
    result = await db.execute(
        select(SocialPostQueue.content_id).where(
            SocialPostQueue.queue_name == queue_name,
            SocialPostQueue.status.in_([QueueStatus.PENDING.value, QueueStatus.PROCESSING.value]),
        )
    )
    return set(result.scalars().all())


async def _content(
    db: AsyncSession,
    config: SocialQueueConfig,
    where: list[Any],
    order_by: tuple[Any, ...],
    exclude_ids: set[int],
    limit: int,
) -> list[Any]:
    if limit <= 0:
        return []
    model = config.content_model
    query = select(model).where(*config.content_filter(), *where)
    if exclude_ids:
        query = query.where(model.id.not_in(exclude_ids))
    result = await db.execute(query.order_by(*order_by).limit(limit))
    return list(result.scalars().all())
