"""
Tests for the dispatcher.

Covers:
- Batch selection, ordering and the batch size cap
- Per-item failure isolation and retry bookkeeping
- Duplicate skipping and a failing duplicate check
- Step ledger resume across runs
- Single item processing and the execution log
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from musicscan.config import settings
from musicscan.models import ArtistStory, ArtistStoryQueue, CronjobExecutionLog, QueueStatus
from musicscan.services.dedup import artist_key
from musicscan.services.dispatcher import (
    BatchSummary,
    Dispatcher,
    QueueDefinition,
    get_queue_definition,
    load_queue_definitions,
)
from musicscan.services.queue_repository import ItemNotFoundError
from musicscan.services.steps import PermanentStepError, Step, StepPipeline, StepResult


def artist_name_key(item):
    return artist_key(item.artist_name)


def make_definition(step_func, **overrides):
    values = dict(
        name="test-artists",
        model=ArtistStoryQueue,
        pipeline=StepPipeline([Step("work", step_func)]),
        key_fn=artist_name_key,
        inter_item_delay=0,
    )
    values.update(overrides)
    return QueueDefinition(**values)


async def add_items(db, *names, **values):
    items = []
    for name in names:
        item = ArtistStoryQueue(artist_name=name, **values)
        db.add(item)
        await db.commit()
        await db.refresh(item)
        items.append(item)
    return items


class TestQueueDefinition:
    """Tests for batch size clamping and the registry."""

    def test_clamp_batch_size(self):
        definition = make_definition(AsyncMock(), default_batch_size=5)

        assert definition.clamp_batch_size(None) == 5
        assert definition.clamp_batch_size(0) == 1
        assert definition.clamp_batch_size(-3) == 1
        assert definition.clamp_batch_size(10_000) == settings.max_batch_size

    def test_queue_cap_below_global_cap(self):
        definition = make_definition(AsyncMock(), max_batch_size=3)

        assert definition.clamp_batch_size(20) == 3

    def test_registry_has_every_queue(self):
        assert set(load_queue_definitions()) >= {
            "discogs-import",
            "master-singles",
            "singles-import",
            "artist-stories",
            "photo-batch",
            "social-post",
        }
        assert get_queue_definition("nope") is None


class TestRunBatch:
    """Tests for Dispatcher.run_batch."""

    async def test_failure_of_one_item_does_not_stop_batch(self, db, session_factory):
        """Test A completes, B fails and retries later, C waits for the next run."""
        a, b, c = await add_items(db, "A", "B", "C")

        async def work(ctx):
            if ctx.item.artist_name == "B":
                raise RuntimeError("upstream exploded")
            return StepResult.ok({"done": ctx.item.artist_name})

        summary = await Dispatcher(make_definition(work), session_factory).run_batch(batch_size=2)

        assert summary.processed == 2
        assert summary.successful == 1
        assert summary.failed == 1
        for item in (a, b, c):
            await db.refresh(item)
        assert a.status == QueueStatus.COMPLETED.value
        assert a.attempts == 1
        assert b.status == QueueStatus.PENDING.value
        assert b.attempts == 1
        assert "upstream exploded" in b.error_message
        assert c.status == QueueStatus.PENDING.value
        assert c.attempts == 0

    async def test_database_error_in_step_keeps_its_cause(self, db, session_factory):
        """Test a failed flush inside a step is recorded as itself, not as a dead session."""
        db.add(ArtistStory(artist_name="Other", slug="taken", story_content="..."))
        await db.commit()
        (item,) = await add_items(db, "Muse")

        async def store(ctx):
            ctx.session.add(ArtistStory(artist_name=ctx.item.artist_name, slug="taken", story_content="..."))
            await ctx.session.commit()
            return StepResult.ok()

        summary = await Dispatcher(make_definition(store), session_factory).run_batch()

        assert summary.failed == 1
        await db.refresh(item)
        assert item.status == QueueStatus.PENDING.value
        assert item.attempts == 1
        assert item.lease_owner is None
        assert "UNIQUE constraint failed" in item.error_message

    async def test_exception_outside_steps_is_isolated(self, db, session_factory):
        """Test a crashing pipeline fails only its own item."""
        first, second = await add_items(db, "A", "B")

        class CrashingPipeline:
            async def run(self, ctx):
                if ctx.item.artist_name == "A":
                    raise RuntimeError("boom")
                return await StepPipeline([Step("work", AsyncMock(return_value=StepResult.ok()))]).run(ctx)

        definition = make_definition(AsyncMock(), pipeline=CrashingPipeline())
        summary = await Dispatcher(definition, session_factory).run_batch(batch_size=5)

        assert summary.processed == 2
        assert summary.failed == 1
        assert summary.successful == 1
        await db.refresh(first)
        await db.refresh(second)
        assert first.status == QueueStatus.PENDING.value
        assert first.error_message == "boom"
        assert first.lease_owner is None
        assert second.status == QueueStatus.COMPLETED.value

    async def test_permanent_failure_fails_immediately(self, db, session_factory):
        (item,) = await add_items(db, "A")

        async def work(ctx):
            raise PermanentStepError("Artist name is required")

        summary = await Dispatcher(make_definition(work), session_factory).run_batch()

        assert summary.failed == 1
        await db.refresh(item)
        assert item.status == QueueStatus.FAILED.value
        assert item.attempts == 1

    async def test_item_fails_after_max_attempts(self, db, session_factory):
        (item,) = await add_items(db, "A", max_attempts=2)
        work = AsyncMock(return_value=StepResult.failed("HTTP 500"))
        dispatcher = Dispatcher(make_definition(work), session_factory)

        await dispatcher.run_batch()
        await dispatcher.run_batch()
        summary = await dispatcher.run_batch()

        await db.refresh(item)
        assert item.status == QueueStatus.FAILED.value
        assert item.attempts == 2
        assert summary.processed == 0
        assert work.await_count == 2

    async def test_batch_size_caps_claims(self, db, session_factory):
        await add_items(db, "A", "B", "C", "D")
        work = AsyncMock(return_value=StepResult.ok())

        summary = await Dispatcher(make_definition(work), session_factory).run_batch(batch_size=3)

        assert summary.processed == 3
        assert work.await_count == 3
        assert [r.info for r in summary.results] == [{}, {}, {}]

    async def test_empty_queue(self, session_factory):
        summary = await Dispatcher(make_definition(AsyncMock()), session_factory).run_batch()

        assert summary.to_dict()["success"] is True
        assert summary.processed == 0
        assert summary.results == []

    async def test_sleeps_between_items(self, db, session_factory):
        await add_items(db, "A", "B", "C")
        sleep = AsyncMock()
        definition = make_definition(AsyncMock(return_value=StepResult.ok()), inter_item_delay=2.5)

        await Dispatcher(definition, session_factory, sleep=sleep).run_batch()

        assert sleep.await_count == 2
        sleep.assert_awaited_with(2.5)

    async def test_skip_result_marks_item_skipped(self, db, session_factory):
        (item,) = await add_items(db, "A")
        work = AsyncMock(return_value=StepResult.skipped("Product already exists"))

        summary = await Dispatcher(make_definition(work), session_factory).run_batch()

        assert summary.skipped == 1
        assert summary.processed == 1
        await db.refresh(item)
        assert item.status == QueueStatus.SKIPPED.value
        assert item.error_message == "Product already exists"

    async def test_records_execution(self, db, session_factory):
        await add_items(db, "A")

        await Dispatcher(make_definition(AsyncMock(return_value=StepResult.ok())), session_factory).run_batch()

        result = await db.execute(select(CronjobExecutionLog))
        entry = result.scalar_one()
        assert entry.function_name == "test-artists"
        assert entry.status == "completed"
        assert entry.items_processed == 1


class TestDuplicates:
    """Tests for duplicate handling during a batch."""

    async def test_later_duplicate_is_skipped(self, db, session_factory):
        """Test only the oldest row for a key is processed."""
        older, newer = await add_items(db, "Muse", " muse ")
        work = AsyncMock(return_value=StepResult.ok())

        summary = await Dispatcher(make_definition(work), session_factory).run_batch()

        assert summary.processed == 1
        assert summary.skipped == 1
        await db.refresh(older)
        await db.refresh(newer)
        assert older.status == QueueStatus.COMPLETED.value
        assert newer.status == QueueStatus.SKIPPED.value
        assert newer.error_message == "Already queued: artist:muse"
        assert newer.attempts == 0

    async def test_existing_content_is_skipped(self, db, session_factory):
        (item,) = await add_items(db, "Muse")

        async def loader(session):
            return ["artist:muse"]

        work = AsyncMock()
        definition = make_definition(work, content_loaders=[loader])
        summary = await Dispatcher(definition, session_factory).run_batch()

        assert summary.skipped == 1
        assert summary.processed == 0
        work.assert_not_awaited()
        await db.refresh(item)
        assert item.status == QueueStatus.SKIPPED.value
        assert item.error_message == "Already exists: artist:muse"

    async def test_skipped_duplicates_do_not_use_batch_slots(self, db, session_factory):
        await add_items(db, "Muse", "muse", "Blur")
        work = AsyncMock(return_value=StepResult.ok())

        summary = await Dispatcher(make_definition(work), session_factory).run_batch(batch_size=2)

        assert summary.processed == 2
        assert summary.skipped == 1

    async def test_failed_duplicate_check_skips_run(self, db, session_factory):
        """Test nothing is claimed when the duplicate check itself fails."""
        items = await add_items(db, "A", "B")

        async def broken(session):
            raise RuntimeError("no such table: artist_stories")

        work = AsyncMock()
        definition = make_definition(work, content_loaders=[broken])
        summary = await Dispatcher(definition, session_factory).run_batch()

        assert summary.processed == 0
        assert "Duplicate check failed" in summary.error
        assert summary.to_dict()["success"] is False
        work.assert_not_awaited()
        for item in items:
            await db.refresh(item)
            assert item.status == QueueStatus.PENDING.value
            assert item.attempts == 0

        result = await db.execute(select(CronjobExecutionLog))
        assert result.scalar_one().status == "failed"


class TestResume:
    """Tests for resuming an item from its step ledger."""

    async def test_retry_skips_finished_steps(self, db, session_factory):
        (item,) = await add_items(db, "A")
        generate = AsyncMock(return_value=StepResult.ok({"story": "text"}))
        store = AsyncMock(side_effect=[StepResult.failed("disk full"), StepResult.ok({"id": 1})])
        definition = make_definition(
            AsyncMock(),
            pipeline=StepPipeline([Step("generate", generate), Step("store", store)]),
        )
        dispatcher = Dispatcher(definition, session_factory)

        await dispatcher.run_batch()
        await db.refresh(item)
        assert item.status == QueueStatus.PENDING.value
        assert item.step_ledger == {"generate": {"story": "text"}}

        await dispatcher.run_batch()
        await db.refresh(item)

        assert item.status == QueueStatus.COMPLETED.value
        assert item.attempts == 2
        assert generate.await_count == 1
        assert store.await_count == 2
        assert item.result["resumed"] == ["generate"]


class TestProcessOne:
    """Tests for Dispatcher.process_one."""

    async def test_processes_pending_item(self, db, session_factory):
        _, second = await add_items(db, "A", "B")
        work = AsyncMock(return_value=StepResult.ok())

        summary = await Dispatcher(make_definition(work), session_factory).process_one(second.id)

        assert summary.processed == 1
        assert summary.results[0].item_id == second.id

    async def test_rejects_non_pending_item(self, db, session_factory):
        (item,) = await add_items(db, "A", status=QueueStatus.COMPLETED.value)

        summary = await Dispatcher(make_definition(AsyncMock()), session_factory).process_one(item.id)

        assert summary.error == f"Item {item.id} is not pending"

    async def test_missing_item_raises(self, session_factory):
        dispatcher = Dispatcher(make_definition(AsyncMock()), session_factory)

        with pytest.raises(ItemNotFoundError):
            await dispatcher.process_one(999)


class TestBatchSummary:
    def test_to_dict_shape(self):
        summary = BatchSummary(queue="discogs-import", processed=1, successful=1)

        data = summary.to_dict()

        assert data == {
            "success": True,
            "queue": "discogs-import",
            "processed": 1,
            "successful": 1,
            "failed": 0,
            "skipped": 0,
            "executionTimeMs": 0,
            "results": [],
        }
