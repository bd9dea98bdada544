"""
Tests for QueueRepository.

Covers:
- Atomic claims and lease ownership
- Completion and failure with the attempts ceiling
- Terminal rows staying terminal
- Lease reclaim, reset of stuck rows, retry of failed rows and cleanup
"""

from datetime import timedelta

import pytest

from musicscan.models import ArtistStoryQueue, QueueStatus, utcnow
from musicscan.services.queue_repository import LeaseLostError, QueueError, QueueRepository
from musicscan.services.retry_policy import RetryPolicy

OWNER = "host:1:aaaa"
POLICY = RetryPolicy(max_attempts=3)


async def add_item(db, artist_name="Muse", **values):
    item = ArtistStoryQueue(artist_name=artist_name, **values)
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return item


class TestClaim:
    """Tests for claiming pending items."""

    async def test_claim_moves_item_to_processing(self, db):
        item = await add_item(db)
        repo = QueueRepository(db, ArtistStoryQueue)

        assert await repo.claim(item, OWNER, lease_seconds=300)

        assert item.status == QueueStatus.PROCESSING.value
        assert item.attempts == 1
        assert item.lease_owner == OWNER
        assert item.lease_expires_at > utcnow()
        assert item.started_at is not None

    async def test_second_claim_loses(self, db, session_factory):
        """Test only one of two dispatchers wins the same row."""
        item = await add_item(db)

        async with session_factory() as other:
            other_item = await other.get(ArtistStoryQueue, item.id)
            first = await QueueRepository(db, ArtistStoryQueue).claim(item, OWNER, 300)
            second = await QueueRepository(other, ArtistStoryQueue).claim(other_item, "host:2:bbbb", 300)

        assert first is True
        assert second is False
        await db.refresh(item)
        assert item.lease_owner == OWNER
        assert item.attempts == 1

    async def test_claim_ignores_terminal_rows(self, db):
        item = await add_item(db, status=QueueStatus.COMPLETED.value)

        assert not await QueueRepository(db, ArtistStoryQueue).claim(item, OWNER, 300)


class TestCompleteAndFail:
    """Tests for finishing a held item."""

    async def test_complete_clears_lease(self, db):
        item = await add_item(db)
        repo = QueueRepository(db, ArtistStoryQueue)
        await repo.claim(item, OWNER, 300)

        await repo.complete(item, OWNER, result={"steps": {}}, artist_story_id=4)

        assert item.status == QueueStatus.COMPLETED.value
        assert item.lease_owner is None
        assert item.lease_expires_at is None
        assert item.processed_at is not None
        assert item.artist_story_id == 4
        assert item.result == {"steps": {}}

    async def test_fail_below_ceiling_requeues(self, db):
        item = await add_item(db, max_attempts=3)
        repo = QueueRepository(db, ArtistStoryQueue)
        await repo.claim(item, OWNER, 300)

        decision = await repo.fail(item, OWNER, "HTTP 502", POLICY)

        assert decision.will_retry
        assert item.status == QueueStatus.PENDING.value
        assert item.attempts == 1
        assert item.error_message == "HTTP 502"
        assert item.lease_owner is None

    async def test_fail_at_ceiling_is_terminal(self, db):
        """Test attempts never exceed max_attempts."""
        item = await add_item(db, max_attempts=2)
        repo = QueueRepository(db, ArtistStoryQueue)

        for _ in range(2):
            assert await repo.claim(item, OWNER, 300)
            await repo.fail(item, OWNER, "boom", POLICY)

        assert item.status == QueueStatus.FAILED.value
        assert item.attempts == 2
        assert item.processed_at is not None
        assert not await repo.claim(item, OWNER, 300)
        assert item.attempts == 2

    async def test_permanent_failure(self, db):
        item = await add_item(db, max_attempts=3)
        repo = QueueRepository(db, ArtistStoryQueue)
        await repo.claim(item, OWNER, 300)

        await repo.fail(item, OWNER, "Invalid release ID", POLICY, permanent=True)

        assert item.status == QueueStatus.FAILED.value
        assert item.attempts == 1

    async def test_long_errors_are_truncated(self, db):
        item = await add_item(db)
        repo = QueueRepository(db, ArtistStoryQueue)
        await repo.claim(item, OWNER, 300)

        await repo.fail(item, OWNER, "x" * 5000, POLICY)

        assert len(item.error_message) < 5000


class TestTerminalRows:
    """Tests that finished rows cannot be rewritten by a stale holder."""

    async def test_complete_twice_raises(self, db):
        item = await add_item(db)
        repo = QueueRepository(db, ArtistStoryQueue)
        await repo.claim(item, OWNER, 300)
        await repo.complete(item, OWNER)

        with pytest.raises(LeaseLostError):
            await repo.complete(item, OWNER, status=QueueStatus.FAILED.value)
        with pytest.raises(LeaseLostError):
            await repo.fail(item, OWNER, "late failure", POLICY)

        await db.refresh(item)
        assert item.status == QueueStatus.COMPLETED.value
        assert item.error_message is None

    async def test_other_owner_cannot_write(self, db):
        item = await add_item(db)
        repo = QueueRepository(db, ArtistStoryQueue)
        await repo.claim(item, OWNER, 300)

        with pytest.raises(LeaseLostError):
            await repo.update_processing(item, "someone-else", artist_story_id=1)

    async def test_progress_write_renews_lease(self, db):
        """Test a row that keeps reporting progress outlives its first lease."""
        item = await add_item(db)
        repo = QueueRepository(db, ArtistStoryQueue)
        await repo.claim(item, OWNER, 60)
        first_expiry = item.lease_expires_at

        await repo.update_processing(item, OWNER, lease_seconds=300, step_ledger={"generate": {}})

        assert item.lease_expires_at > first_expiry
        counts = await repo.reclaim_expired_leases(now=utcnow() + timedelta(seconds=90))
        assert counts == {"requeued": 0, "failed": 0}
        await db.refresh(item)
        assert item.status == QueueStatus.PROCESSING.value
        assert item.lease_owner == OWNER
        await repo.complete(item, OWNER)

    async def test_skip_only_touches_pending_rows(self, db):
        item = await add_item(db, status=QueueStatus.COMPLETED.value)
        repo = QueueRepository(db, ArtistStoryQueue)

        assert not await repo.skip(item, "duplicate")
        await db.refresh(item)
        assert item.status == QueueStatus.COMPLETED.value


class TestRecovery:
    """Tests for lease reclaim, reset of stuck rows and retrying failed rows."""

    async def test_reclaim_expired_leases(self, db):
        """Test expired rows go back to pending, or to failed at the ceiling."""
        past = utcnow() - timedelta(minutes=10)
        retryable = await add_item(
            db, "A", status=QueueStatus.PROCESSING.value, attempts=1, max_attempts=3,
            lease_owner="dead", lease_expires_at=past,
        )
        exhausted = await add_item(
            db, "B", status=QueueStatus.PROCESSING.value, attempts=3, max_attempts=3,
            lease_owner="dead", lease_expires_at=past,
        )
        live = await add_item(
            db, "C", status=QueueStatus.PROCESSING.value, attempts=1,
            lease_owner="alive", lease_expires_at=utcnow() + timedelta(minutes=5),
        )

        counts = await QueueRepository(db, ArtistStoryQueue).reclaim_expired_leases()

        assert counts == {"requeued": 1, "failed": 1}
        for item in (retryable, exhausted, live):
            await db.refresh(item)
        assert retryable.status == QueueStatus.PENDING.value
        assert retryable.attempts == 1
        assert retryable.lease_owner is None
        assert exhausted.status == QueueStatus.FAILED.value
        assert live.status == QueueStatus.PROCESSING.value

    async def test_reset_stuck(self, db):
        stuck = await add_item(
            db, "A", status=QueueStatus.PROCESSING.value, attempts=1,
            started_at=utcnow() - timedelta(hours=2),
        )
        recent = await add_item(db, "B", status=QueueStatus.PROCESSING.value, attempts=1, started_at=utcnow())

        counts = await QueueRepository(db, ArtistStoryQueue).reset_stuck(older_than_seconds=1800)

        assert counts == {"requeued": 1, "failed": 0}
        await db.refresh(stuck)
        await db.refresh(recent)
        assert stuck.status == QueueStatus.PENDING.value
        assert recent.status == QueueStatus.PROCESSING.value

    async def test_retry_failed_keeps_attempts(self, db):
        """Test retrying raises the ceiling instead of resetting attempts."""
        failed = await add_item(db, "A", status=QueueStatus.FAILED.value, attempts=3, max_attempts=3,
                                error_message="boom")
        other = await add_item(db, "B", status=QueueStatus.FAILED.value, attempts=2, max_attempts=2)

        count = await QueueRepository(db, ArtistStoryQueue).retry_failed(2, item_ids=[failed.id])

        assert count == 1
        await db.refresh(failed)
        await db.refresh(other)
        assert failed.status == QueueStatus.PENDING.value
        assert failed.attempts == 3
        assert failed.max_attempts == 5
        assert failed.error_message is None
        assert other.status == QueueStatus.FAILED.value


class TestReads:
    """Tests for candidate selection and counts."""

    async def test_fetch_candidates_order_and_schedule(self, db):
        first = await add_item(db, "A")
        await add_item(db, "B", scheduled_for=utcnow() + timedelta(hours=1))
        third = await add_item(db, "C")
        await add_item(db, "D", status=QueueStatus.COMPLETED.value)

        candidates = await QueueRepository(db, ArtistStoryQueue).fetch_candidates(10)

        assert [item.id for item in candidates] == [first.id, third.id]

    async def test_status_counts(self, db):
        await add_item(db, "A")
        await add_item(db, "B")
        await add_item(db, "C", status=QueueStatus.FAILED.value)
        repo = QueueRepository(db, ArtistStoryQueue)

        assert await repo.status_counts() == {"pending": 2, "failed": 1}
        assert await repo.count_pending() == 2
        assert await repo.count() == 3

    async def test_live_keys_oldest_row_owns_key(self, db):
        older = await add_item(db, "Muse")
        await add_item(db, "muse")
        await add_item(db, "Blur", status=QueueStatus.FAILED.value)

        keys = await QueueRepository(db, ArtistStoryQueue).live_keys(
            lambda item: item.artist_name.lower()
        )

        assert keys == {"muse": older.id}


class TestCleanup:
    """Tests for bulk deletion."""

    async def test_deletes_terminal_rows(self, db):
        await add_item(db, "A", status=QueueStatus.COMPLETED.value)
        await add_item(db, "B", status=QueueStatus.COMPLETED.value)
        await add_item(db, "C")
        repo = QueueRepository(db, ArtistStoryQueue)

        assert await repo.cleanup(QueueStatus.COMPLETED.value) == 2
        assert await repo.count() == 1

    async def test_rejects_live_status(self, db):
        with pytest.raises(QueueError):
            await QueueRepository(db, ArtistStoryQueue).cleanup(QueueStatus.PENDING.value)
