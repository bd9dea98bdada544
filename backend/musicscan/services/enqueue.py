"""Enqueueing with duplicate checks.

Producers hand new rows to ``enqueue_items``; rows whose dedup key already
exists as content or as a live queue row are stored as ``skipped`` with the
reason, so every attempt to enqueue leaves a trace but only one live row per
key exists.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.models.queue import QueueStatus, utcnow
from musicscan.services.dedup import DedupIndex
from musicscan.services.dispatcher import QueueDefinition, load_index
from musicscan.services.queue_repository import QueueError

logger = logging.getLogger(__name__)


@dataclass
class EnqueueSummary:
    created: int = 0
    skipped: int = 0
    items: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "ids": [item.id for item in self.items],
        }


async def enqueue_items(
    session: AsyncSession,
    definition: QueueDefinition,
    items: Iterable[Any],
    index: DedupIndex | None = None,
) -> EnqueueSummary:
    """Insert new queue rows, marking duplicates skipped. Commits once."""
    if index is None:
        index = await load_index(session, definition)

    summary = EnqueueSummary()
    now = utcnow()
    for item in items:
        key = definition.key_fn(item) if definition.key_fn else None
        if index.is_duplicate(key):
            item.status = QueueStatus.SKIPPED.value
            item.error_message = index.reason(key)
            item.processed_at = now
            summary.skipped += 1
            logger.info(f"[{definition.name}] Not enqueueing duplicate {key}")
        else:
            item.status = QueueStatus.PENDING.value
            index.reserve(key)
            summary.created += 1
        session.add(item)
        summary.items.append(item)

    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"[{definition.name}] Enqueue failed: {e}")
        raise QueueError(f"Failed to enqueue items: {e}") from e

    if summary.created or summary.skipped:
        logger.info(
            f"[{definition.name}] Enqueued {summary.created} items, "
            f"{summary.skipped} skipped as duplicates"
        )
    return summary
