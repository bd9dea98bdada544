"""In-process worker loop that runs every registered queue in turn."""

import asyncio
import logging

from musicscan.database import session_scope
from musicscan.services.dispatcher import BatchSummary, Dispatcher, load_queue_definitions
from musicscan.services.processors.social_post import recycle_social_queue

logger = logging.getLogger(__name__)


async def process_queues(
    batch_size: int | None = None,
    names: list[str] | None = None,
) -> dict[str, BatchSummary]:
    """
    Run one batch for each queue.

    A queue whose batch raises is logged and the next queue still runs.
    """
    definitions = load_queue_definitions()
    summaries: dict[str, BatchSummary] = {}

    for name in names or sorted(definitions):
        definition = definitions.get(name)
        if definition is None:
            logger.warning(f"Skipping unknown queue {name}")
            continue
        try:
            summaries[name] = await Dispatcher(definition).run_batch(batch_size=batch_size)
        except Exception as e:
            logger.error(f"[{name}] Batch failed: {e}", exc_info=True)
            summaries[name] = BatchSummary(queue=name, error=str(e))
    return summaries


async def recycle_social() -> dict:
    async with session_scope() as db:
        return await recycle_social_queue(db)


async def run_queue_worker(
    poll_interval: float = 30.0,
    batch_size: int | None = None,
    stop_event: asyncio.Event | None = None,
) -> None:
    """
    Run the queue worker continuously.

    Args:
        poll_interval: Seconds between passes over all queues
        batch_size: Items per queue per pass (None for each queue's default)
        stop_event: Event to signal worker to stop
    """
    logger.info("Queue worker started")

    while True:
        if stop_event and stop_event.is_set():
            logger.info("Queue worker stopping")
            break

        try:
            summaries = await process_queues(batch_size=batch_size)
            for name, summary in summaries.items():
                if summary.processed or summary.skipped:
                    logger.info(
                        f"[{name}] processed={summary.processed} successful={summary.successful} "
                        f"failed={summary.failed} skipped={summary.skipped}"
                    )
        except Exception as e:
            logger.error(f"Queue worker error: {e}")

        if stop_event:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                pass
        else:
            await asyncio.sleep(poll_interval)
