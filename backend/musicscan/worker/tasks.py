"""Periodic queue tasks.

Run the consumer with ``huey_consumer musicscan.worker.tasks.huey``.
"""

import asyncio
import logging

from huey import crontab

from musicscan.worker.queue import huey

logger = logging.getLogger(__name__)

QUEUE_SCHEDULE = crontab(minute="*/5")


def run_async(coro):
    """Run an async function in a sync context."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _summaries_to_dict(summaries) -> dict:
    return {name: summary.to_dict() for name, summary in summaries.items()}


@huey.task()
def process_queue(queue_name: str, batch_size: int | None = None) -> dict:
    """Run one batch of a single queue.

    Args:
        queue_name: Registered queue name, e.g. ``singles-import``
        batch_size: Items to process, None for the queue default

    Returns:
        The batch summary
    """
    from musicscan.services.queue_worker import process_queues

    return _summaries_to_dict(run_async(process_queues(batch_size, names=[queue_name])))


@huey.periodic_task(QUEUE_SCHEDULE)
def process_all_queues() -> dict:
    """Run one batch of every registered queue."""
    from musicscan.services.queue_worker import process_queues

    summaries = run_async(process_queues())
    logger.info(
        "Scheduled run: "
        + ", ".join(f"{name}={summary.processed}" for name, summary in summaries.items())
    )
    return _summaries_to_dict(summaries)


@huey.periodic_task(crontab(minute="0"))
def recycle_social_posts() -> dict:
    """Top up social queues once an hour."""
    from musicscan.services.queue_worker import recycle_social

    return run_async(recycle_social())


@huey.periodic_task(crontab(minute="15", hour="3"))
def enqueue_missing_artist_stories() -> dict:
    """Queue stories for newly imported artists once a day."""
    from musicscan.database import session_scope
    from musicscan.services.producers import enqueue_artist_stories

    async def _enqueue():
        async with session_scope() as db:
            return await enqueue_artist_stories(db)

    return run_async(_enqueue())
