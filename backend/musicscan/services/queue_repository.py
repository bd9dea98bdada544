"""Generic repository for queue tables.

Every queue table shares the columns of ``QueueItemMixin``, so one repository
class parameterized by the model handles claiming, completion, failure,
skipping and lease recovery for all of them. All state changes are single-row
(or single-statement) conditional updates, so two dispatchers racing for the
same row cannot both win it:

    UPDATE queue SET status='processing', attempts=attempts+1, lease_owner=...
    WHERE id = :id AND status = 'pending'

Completion and failure are conditioned on ``status='processing' AND
lease_owner=:owner``; a row that already reached a terminal state is never
touched again by a dispatcher.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, Iterable, TypeVar

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.config import settings
from musicscan.models.queue import (
    LIVE_STATUSES,
    TERMINAL_STATUSES,
    QueueItemMixin,
    QueueStatus,
    utcnow,
)
from musicscan.services.retry_policy import RetryDecision, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=QueueItemMixin)

MAX_ERROR_LENGTH = 1000


class QueueError(Exception):
    """Base exception for queue operations."""
    pass


class ItemNotFoundError(QueueError):
    """Raised when a queue item cannot be found."""
    pass


class LeaseLostError(QueueError):
    """Raised when a dispatcher writes to a row it no longer holds."""
    pass


def truncate_error(error: str | None) -> str | None:
    if error is None:
        return None
    return error[:MAX_ERROR_LENGTH]


class QueueRepository(Generic[T]):
    """Queue operations for one queue table."""

    def __init__(self, session: AsyncSession, model: type[T]):
        self.session = session
        self.model = model

    @property
    def table_name(self) -> str:
        return self.model.__tablename__

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, item_id: int) -> T | None:
        result = await self.session.execute(select(self.model).where(self.model.id == item_id))
        return result.scalar_one_or_none()

    async def fetch_candidates(
        self,
        limit: int,
        where: Iterable[Any] = (),
        order_by: Iterable[Any] | None = None,
        now: datetime | None = None,
    ) -> list[T]:
        """
        Get pending items that are eligible to run.

        Items scheduled in the future are left alone. Default ordering is
        oldest first, with the id as tiebreaker for rows created in the
        same instant.
        """
        now = now or utcnow()
        query = select(self.model).where(
            self.model.status == QueueStatus.PENDING.value,
            or_(self.model.scheduled_for.is_(None), self.model.scheduled_for <= now),
            *where,
        )
        if order_by is None:
            order_by = (self.model.created_at.asc(), self.model.id.asc())
        query = query.order_by(*order_by).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_items(
        self,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[T]:
        query = select(self.model).order_by(self.model.created_at.desc(), self.model.id.desc())
        if status:
            query = query.where(self.model.status == status)
        result = await self.session.execute(query.offset(offset).limit(limit))
        return list(result.scalars().all())

    async def status_counts(self) -> dict[str, int]:
        """Count rows per status."""
        query = select(self.model.status, func.count(self.model.id)).group_by(self.model.status)
        result = await self.session.execute(query)
        return {status: count for status, count in result.all()}

    async def count(self, status: str | None = None) -> int:
        query = select(func.count(self.model.id))
        if status:
            query = query.where(self.model.status == status)
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def count_pending(self) -> int:
        return await self.count(QueueStatus.PENDING.value)

    async def live_keys(
        self,
        key_fn: Callable[[T], str | None],
        statuses: Iterable[str] = LIVE_STATUSES,
    ) -> dict[str, int]:
        """Map dedup key -> row id for rows that still count as live work."""
        # Oldest row wins the key
        query = (
            select(self.model)
            .where(self.model.status.in_(list(statuses)))
            .order_by(self.model.created_at.asc(), self.model.id.asc())
        )
        result = await self.session.execute(query)

        keys: dict[str, int] = {}
        for item in result.scalars().all():
            key = key_fn(item)
            if key and key not in keys:
                keys[key] = item.id
        return keys

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(self, item: T) -> T:
        """Insert a new pending item."""
        try:
            self.session.add(item)
            await self.session.commit()
            await self.session.refresh(item)
            return item
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to enqueue into {self.table_name}: {e}")
            raise QueueError(f"Failed to enqueue item: {e}") from e

    async def claim(self, item: T, owner: str, lease_seconds: int) -> bool:
        """
        Atomically move a pending item to processing.

        Returns False when the row is no longer pending (another dispatcher
        claimed it, or an admin changed it).
        """
        now = utcnow()
        stmt = (
            update(self.model)
            .where(
                self.model.id == item.id,
                self.model.status == QueueStatus.PENDING.value,
            )
            .values(
                status=QueueStatus.PROCESSING.value,
                attempts=self.model.attempts + 1,
                lease_owner=owner,
                lease_expires_at=now + timedelta(seconds=lease_seconds),
                started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to claim {self.table_name} item {item.id}: {e}")
            raise QueueError(f"Failed to claim item: {e}") from e

        if result.rowcount != 1:
            logger.info(f"{self.table_name} item {item.id} was claimed elsewhere, skipping")
            return False

        await self.session.refresh(item)
        logger.info(
            f"Claimed {self.table_name} item {item.id} "
            f"(attempt {item.attempts}/{item.max_attempts}, owner={owner})"
        )
        return True

    async def update_processing(
        self, item: T, owner: str, lease_seconds: int | None = None, **values: Any
    ) -> None:
        """
        Write progress columns on an item this dispatcher holds.

        Every progress write also renews the lease, so an item that keeps
        reporting progress is never reclaimed while its steps run.
        """
        now = utcnow()
        seconds = lease_seconds if lease_seconds is not None else settings.lease_seconds
        values["updated_at"] = now
        values["lease_expires_at"] = now + timedelta(seconds=seconds)
        await self._guarded_update(item, owner, values)

    async def complete(
        self,
        item: T,
        owner: str,
        result: dict[str, Any] | None = None,
        status: str = QueueStatus.COMPLETED.value,
        **values: Any,
    ) -> None:
        """Mark a held item as successfully processed."""
        now = utcnow()
        final = {
            "status": status,
            "result": result,
            "error_message": None,
            "processed_at": now,
            "updated_at": now,
        }
        final.update(values)
        final.update(lease_owner=None, lease_expires_at=None)
        await self._guarded_update(item, owner, final)
        logger.info(f"{self.table_name} item {item.id} {status}")

    async def fail(
        self,
        item: T,
        owner: str,
        error: str,
        policy: RetryPolicy,
        permanent: bool = False,
        result: dict[str, Any] | None = None,
    ) -> RetryDecision:
        """
        Record a failed processing run.

        Goes back to pending while attempts remain, otherwise (or for a
        permanent failure) to failed.
        """
        now = utcnow()
        decision = policy.decide(item.attempts, item.max_attempts, now, permanent=permanent)
        values: dict[str, Any] = {
            "status": decision.status,
            "error_message": truncate_error(error),
            "scheduled_for": decision.scheduled_for,
            "updated_at": now,
            "lease_owner": None,
            "lease_expires_at": None,
        }
        if result is not None:
            values["result"] = result
        if not decision.will_retry:
            values["processed_at"] = now

        await self._guarded_update(item, owner, values)

        if decision.will_retry:
            logger.warning(
                f"{self.table_name} item {item.id} failed "
                f"(attempt {item.attempts}/{item.max_attempts}), will retry: {error}"
            )
        else:
            logger.warning(
                f"{self.table_name} item {item.id} failed permanently "
                f"after {item.attempts} attempts: {error}"
            )
        return decision

    async def skip(self, item: T, reason: str) -> bool:
        """Mark a pending item as skipped (duplicate or not applicable)."""
        now = utcnow()
        stmt = (
            update(self.model)
            .where(
                self.model.id == item.id,
                self.model.status == QueueStatus.PENDING.value,
            )
            .values(
                status=QueueStatus.SKIPPED.value,
                error_message=truncate_error(reason),
                processed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._execute_write(stmt)
        if result.rowcount != 1:
            return False

        await self.session.refresh(item)
        logger.info(f"Skipped {self.table_name} item {item.id}: {reason}")
        return True

    async def reclaim_expired_leases(self, now: datetime | None = None) -> dict[str, int]:
        """
        Release processing rows whose lease ran out.

        The attempt already counted at claim time stays counted, so a row at
        its ceiling goes to failed rather than back to pending.
        """
        now = now or utcnow()
        expired = and_(
            self.model.status == QueueStatus.PROCESSING.value,
            self.model.lease_expires_at.is_not(None),
            self.model.lease_expires_at < now,
        )
        counts = await self._release(expired, "Lease expired before processing finished", now)
        if counts["requeued"] or counts["failed"]:
            logger.warning(
                f"Reclaimed expired leases on {self.table_name}: "
                f"{counts['requeued']} requeued, {counts['failed']} failed"
            )
        return counts

    async def reset_stuck(self, older_than_seconds: int) -> dict[str, int]:
        """
        Release processing rows that started too long ago and hold no live lease.

        Used by the admin "reset stuck" action for rows left behind by a
        crashed invocation.
        """
        now = utcnow()
        threshold = now - timedelta(seconds=older_than_seconds)
        stuck = and_(
            self.model.status == QueueStatus.PROCESSING.value,
            or_(self.model.started_at.is_(None), self.model.started_at < threshold),
            or_(self.model.lease_expires_at.is_(None), self.model.lease_expires_at < now),
        )
        counts = await self._release(stuck, "Stuck in processing - reset", now)
        logger.info(
            f"Reset stuck {self.table_name} rows: "
            f"{counts['requeued']} requeued, {counts['failed']} failed"
        )
        return counts

    async def retry_failed(self, extra_attempts: int, item_ids: list[int] | None = None) -> int:
        """
        Put failed items back in the queue.

        The attempt counter is kept and the ceiling raised instead, so
        ``attempts`` never decreases.
        """
        now = utcnow()
        stmt = (
            update(self.model)
            .where(self.model.status == QueueStatus.FAILED.value)
            .values(
                status=QueueStatus.PENDING.value,
                max_attempts=self.model.attempts + extra_attempts,
                error_message=None,
                scheduled_for=None,
                processed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if item_ids is not None:
            stmt = stmt.where(self.model.id.in_(item_ids))

        result = await self._execute_write(stmt)
        logger.info(f"Requeued {result.rowcount} failed {self.table_name} items")
        return result.rowcount

    async def cleanup(self, status: str, older_than_days: int = 0) -> int:
        """Delete terminal rows, optionally only those older than N days."""
        if status not in TERMINAL_STATUSES:
            raise QueueError(f"Can only clean up terminal statuses, got '{status}'")

        stmt = delete(self.model).where(self.model.status == status)
        if older_than_days > 0:
            threshold = utcnow() - timedelta(days=older_than_days)
            stmt = stmt.where(self.model.updated_at < threshold)

        result = await self._execute_write(stmt.execution_options(synchronize_session=False))
        logger.info(f"Deleted {result.rowcount} {status} rows from {self.table_name}")
        return result.rowcount

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _guarded_update(self, item: T, owner: str, values: dict[str, Any]) -> None:
        stmt = (
            update(self.model)
            .where(
                self.model.id == item.id,
                self.model.status == QueueStatus.PROCESSING.value,
                self.model.lease_owner == owner,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._execute_write(stmt)
        if result.rowcount != 1:
            raise LeaseLostError(
                f"{self.table_name} item {item.id} is no longer held by {owner}"
            )
        await self.session.refresh(item)

    async def _release(self, condition: Any, reason: str, now: datetime) -> dict[str, int]:
        common = {
            "lease_owner": None,
            "lease_expires_at": None,
            "error_message": reason,
            "updated_at": now,
        }
        failed = await self._execute_write(
            update(self.model)
            .where(condition, self.model.attempts >= self.model.max_attempts)
            .values(status=QueueStatus.FAILED.value, processed_at=now, **common)
            .execution_options(synchronize_session=False)
        )
        requeued = await self._execute_write(
            update(self.model)
            .where(condition, self.model.attempts < self.model.max_attempts)
            .values(status=QueueStatus.PENDING.value, **common)
            .execution_options(synchronize_session=False)
        )
        return {"requeued": requeued.rowcount, "failed": failed.rowcount}

    async def _execute_write(self, stmt: Any) -> Any:
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
            return result
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Write to {self.table_name} failed: {e}")
            raise QueueError(f"Queue write failed: {e}") from e
