"""Dispatcher - polls a queue table and drives pending items through their steps.

One invocation processes one bounded batch, strictly sequentially:

    reclaim expired leases
    -> fetch pending candidates (oldest first)
    -> dedup-filter (collisions are marked skipped)
    -> for each item: claim -> run steps -> mark completed / retry / failed
    -> return a summary

A failure on one item is recorded on that item and the loop moves on to the
next one; nothing an item does can abort the rest of the batch.
"""

import asyncio
import logging
import os
import socket
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.config import settings
from musicscan.database import async_session_maker
from musicscan.models.queue import LIVE_STATUSES, QueueStatus, utcnow
from musicscan.services.cronjob_log import record_execution
from musicscan.services.dedup import DedupIndex, DuplicateCheckError, KeyLoader, build_index
from musicscan.services.queue_repository import ItemNotFoundError, LeaseLostError, QueueRepository
from musicscan.services.retry_policy import RetryPolicy
from musicscan.services.steps import PipelineOutcome, StepContext, StepPipeline

logger = logging.getLogger(__name__)


@dataclass
class QueueDefinition:
    """Everything the dispatcher needs to know about one queue domain."""
    name: str
    model: type
    pipeline: StepPipeline
    key_fn: Callable[[Any], str | None] | None = None
    content_loaders: list[KeyLoader] = field(default_factory=list)
    # Extra WHERE clauses for candidates, given the request filters
    candidate_filter: Callable[[dict[str, Any]], list[Any]] | None = None
    order_by: Callable[[], Iterable[Any]] | None = None
    describe: Callable[[Any], dict[str, Any]] | None = None
    # Statuses whose keys block new work; social posts may be recycled once completed
    live_statuses: tuple[str, ...] = LIVE_STATUSES
    # Extra columns written together with the success status
    completion_values: Callable[[Any, PipelineOutcome], dict[str, Any]] | None = None
    success_status: str = QueueStatus.COMPLETED.value
    default_batch_size: int | None = None
    max_batch_size: int | None = None
    inter_item_delay: float | None = None
    retry_delay_seconds: float = 0.0
    lease_seconds: int | None = None

    def clamp_batch_size(self, batch_size: int | None) -> int:
        """Clamp a requested batch size to [1, max_batch_size]."""
        ceiling = min(self.max_batch_size or settings.max_batch_size, settings.max_batch_size)
        if batch_size is None:
            batch_size = self.default_batch_size or settings.default_batch_size
        return max(1, min(int(batch_size), ceiling))


# Registered queue domains by name
QUEUE_DEFINITIONS: dict[str, QueueDefinition] = {}


def register_queue(definition: QueueDefinition) -> QueueDefinition:
    """Register a queue domain so HTTP and the scheduler can find it."""
    QUEUE_DEFINITIONS[definition.name] = definition
    return definition


def load_queue_definitions() -> dict[str, QueueDefinition]:
    """All registered queue domains."""
    # Importing the processors package registers every domain
    import musicscan.services.processors  # noqa: F401

    return QUEUE_DEFINITIONS


def get_queue_definition(name: str) -> QueueDefinition | None:
    return load_queue_definitions().get(name)


@dataclass
class ItemResult:
    """Per-item entry in the batch summary."""
    item_id: int
    status: str
    success: bool
    attempts: int = 0
    key: str | None = None
    error: str | None = None
    data: dict[str, Any] | None = None
    info: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.item_id,
            "status": self.status,
            "success": self.success,
            "attempts": self.attempts,
        }
        if self.key:
            result["key"] = self.key
        if self.error:
            result["error"] = self.error
        if self.info:
            result.update(self.info)
        if self.data:
            result["data"] = self.data
        return result


@dataclass
class BatchSummary:
    """Result of one dispatcher invocation."""
    queue: str
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    execution_time_ms: int = 0
    results: list[ItemResult] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.error is None,
            "queue": self.queue,
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "executionTimeMs": self.execution_time_ms,
            "results": [r.to_dict() for r in self.results],
        }
        if self.error:
            data["error"] = self.error
        return data


def make_owner_id() -> str:
    """Lease owner identifier for one dispatcher instance."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


async def load_index(session: AsyncSession, definition: QueueDefinition) -> DedupIndex:
    """
    Index of content and live queue keys for a queue domain.

    Raises DuplicateCheckError when any lookup fails; callers must then
    claim or enqueue nothing.
    """
    if definition.key_fn is None:
        return DedupIndex()
    repo = QueueRepository(session, definition.model)
    try:
        queue_keys = await repo.live_keys(definition.key_fn, statuses=definition.live_statuses)
    except Exception as e:
        logger.error(f"[{definition.name}] Loading queued keys failed: {e}")
        raise DuplicateCheckError(f"Duplicate check failed: {e}") from e
    return await build_index(session, definition.content_loaders, queue_keys)


class Dispatcher:
    """Runs batches for one queue definition."""

    def __init__(
        self,
        definition: QueueDefinition,
        session_factory=None,
        policy: RetryPolicy | None = None,
        owner: str | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.definition = definition
        self.session_factory = session_factory or async_session_maker
        self.policy = policy or RetryPolicy.from_settings(definition.retry_delay_seconds)
        self.owner = owner or make_owner_id()
        self.sleep = sleep

    @property
    def lease_seconds(self) -> int:
        return self.definition.lease_seconds or settings.lease_seconds

    @property
    def inter_item_delay(self) -> float:
        if self.definition.inter_item_delay is not None:
            return self.definition.inter_item_delay
        return settings.inter_item_delay

    async def run_batch(
        self,
        batch_size: int | None = None,
        filters: dict[str, Any] | None = None,
    ) -> BatchSummary:
        """Process up to ``batch_size`` pending items."""
        definition = self.definition
        filters = filters or {}
        size = definition.clamp_batch_size(batch_size)
        start = time.monotonic()
        started_at = utcnow()
        summary = BatchSummary(queue=definition.name)

        logger.info(f"[{definition.name}] Starting batch (size={size}, owner={self.owner})")

        async with self.session_factory() as db:
            repo = QueueRepository(db, definition.model)
            await repo.reclaim_expired_leases()

            where = definition.candidate_filter(filters) if definition.candidate_filter else []
            order_by = definition.order_by() if definition.order_by else None
            candidates = await repo.fetch_candidates(
                size * max(1, settings.overfetch_factor), where=where, order_by=order_by
            )

            if not candidates:
                logger.info(f"[{definition.name}] No pending items")
            else:
                try:
                    index = await load_index(db, self.definition)
                except DuplicateCheckError as e:
                    # Without a working duplicate check nothing is claimed
                    summary.error = str(e)
                    index = None

                if index is not None:
                    selected = await self._select(repo, candidates, index, size, summary)

                    for position, item in enumerate(selected):
                        if position > 0 and self.inter_item_delay > 0:
                            await self.sleep(self.inter_item_delay)
                        await self._process_item(db, repo, item, filters, summary)

            summary.execution_time_ms = int((time.monotonic() - start) * 1000)
            await record_execution(
                db,
                function_name=definition.name,
                started_at=started_at,
                status="failed" if summary.error else "completed",
                items_processed=summary.processed,
                details={
                    "processed": summary.processed,
                    "successful": summary.successful,
                    "failed": summary.failed,
                    "skipped": summary.skipped,
                },
                error_message=summary.error,
            )

        logger.info(
            f"[{definition.name}] Batch done: processed={summary.processed}, "
            f"successful={summary.successful}, failed={summary.failed}, "
            f"skipped={summary.skipped}, time={summary.execution_time_ms}ms"
        )
        return summary

    async def process_one(self, item_id: int) -> BatchSummary:
        """
        Process a single pending item immediately, bypassing the batch fetch.

        Raises:
            ItemNotFoundError: If no row has ``item_id``
        """
        start = time.monotonic()
        summary = BatchSummary(queue=self.definition.name)

        async with self.session_factory() as db:
            repo = QueueRepository(db, self.definition.model)
            item = await repo.get(item_id)
            if item is None:
                raise ItemNotFoundError(f"{self.definition.name} item {item_id} not found")
            if item.status != QueueStatus.PENDING.value:
                summary.error = f"Item {item_id} is not pending"
            else:
                try:
                    index = await load_index(db, self.definition)
                except DuplicateCheckError as e:
                    summary.error = str(e)
                else:
                    selected = await self._select(repo, [item], index, 1, summary)
                    for candidate in selected:
                        await self._process_item(db, repo, candidate, {}, summary)

        summary.execution_time_ms = int((time.monotonic() - start) * 1000)
        return summary

    async def _select(
        self,
        repo: QueueRepository,
        candidates: list,
        index: DedupIndex,
        size: int,
        summary: BatchSummary,
    ) -> list:
        """Pick up to ``size`` candidates, marking duplicates skipped on the way."""
        key_fn = self.definition.key_fn
        selected = []
        for item in candidates:
            if len(selected) >= size:
                break
            key = key_fn(item) if key_fn else None
            if index.is_duplicate(key, item.id):
                if await repo.skip(item, index.reason(key)):
                    summary.skipped += 1
                    summary.results.append(ItemResult(
                        item_id=item.id,
                        status=QueueStatus.SKIPPED.value,
                        success=False,
                        attempts=item.attempts,
                        key=key,
                        error=item.error_message,
                        info=self._describe(item),
                    ))
                continue
            index.reserve(key)
            selected.append(item)
        return selected

    async def _process_item(
        self,
        db: AsyncSession,
        repo: QueueRepository,
        item: Any,
        filters: dict[str, Any],
        summary: BatchSummary,
    ) -> None:
        definition = self.definition
        item_id = item.id
        key = definition.key_fn(item) if definition.key_fn else None
        info = self._describe(item)
        claimed = False

        try:
            claimed = await repo.claim(item, self.owner, self.lease_seconds)
            if not claimed:
                return
            summary.processed += 1

            ctx = StepContext(
                session=db,
                item=item,
                repository=repo,
                owner=self.owner,
                params=filters,
                lease_seconds=self.lease_seconds,
            )
            outcome = await definition.pipeline.run(ctx)
            summary.results.append(await self._finish(repo, item, outcome, key, info, summary))

        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"[{definition.name}] Error processing item {item_id}: {error}", exc_info=True)
            if not claimed:
                summary.failed += 1
                summary.results.append(ItemResult(
                    item_id=item_id, status="error", success=False, key=key, error=error, info=info
                ))
                return

            status = await self._record_crash(db, repo, item, error)
            summary.failed += 1
            summary.results.append(ItemResult(
                item_id=item_id,
                status=status,
                success=False,
                attempts=item.attempts,
                key=key,
                error=error,
                info=info,
            ))

    async def _finish(
        self,
        repo: QueueRepository,
        item: Any,
        outcome: PipelineOutcome,
        key: str | None,
        info: dict[str, Any],
        summary: BatchSummary,
    ) -> ItemResult:
        data = outcome.to_dict()

        if outcome.skip_reason:
            await repo.complete(
                item, self.owner, result=data,
                status=QueueStatus.SKIPPED.value, error_message=outcome.skip_reason,
            )
            summary.skipped += 1
            return ItemResult(
                item_id=item.id, status=item.status, success=False, attempts=item.attempts,
                key=key, error=outcome.skip_reason, data=data, info=info,
            )

        if outcome.success:
            extra = {}
            if self.definition.completion_values is not None:
                extra = self.definition.completion_values(item, outcome)
            await repo.complete(
                item, self.owner, result=data, status=self.definition.success_status, **extra
            )
            summary.successful += 1
            return ItemResult(
                item_id=item.id, status=item.status, success=True, attempts=item.attempts,
                key=key, data=data, info=info,
            )

        await repo.fail(
            item, self.owner, outcome.error or "Unknown error", self.policy,
            permanent=outcome.permanent, result=data,
        )
        summary.failed += 1
        return ItemResult(
            item_id=item.id, status=item.status, success=False, attempts=item.attempts,
            key=key, error=outcome.error, data=data, info=info,
        )

    async def _record_crash(self, db: AsyncSession, repo: QueueRepository, item: Any, error: str) -> str:
        """Fail a claimed item after an unexpected exception; returns its new status."""
        try:
            await db.rollback()
            await db.refresh(item)
            decision = await repo.fail(item, self.owner, error, self.policy)
            return decision.status
        except LeaseLostError:
            logger.warning(f"[{self.definition.name}] Lost lease on item {item.id} while failing it")
            return "lease_lost"
        except Exception as e:
            # Row stays processing until its lease expires and it is reclaimed
            logger.error(f"[{self.definition.name}] Could not record failure for item: {e}")
            return QueueStatus.PROCESSING.value

    def _describe(self, item: Any) -> dict[str, Any]:
        if self.definition.describe is None:
            return {}
        try:
            return self.definition.describe(item)
        except Exception:
            return {}
