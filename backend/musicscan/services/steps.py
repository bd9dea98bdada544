"""External step adapters and the per-item step pipeline.

A step wraps one outbound call (AI generation, image upload, marketplace
lookup, sibling function) behind a uniform contract::

    async def step(ctx: StepContext) -> StepResult

A pipeline runs the steps of a queue domain in order. Each successful step is
written to the row's ``step_ledger`` straight away, so when an item is
retried the steps that already succeeded are not repeated. Nothing is rolled
back: when a later step fails, the earlier side effects stay in place and the
ledger shows how far the item got.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.services.queue_repository import QueueRepository

logger = logging.getLogger(__name__)


class StepError(Exception):
    """Base exception for step failures."""
    permanent = False


class TransientStepError(StepError):
    """Failure worth retrying (network error, non-2xx, rate limit)."""
    permanent = False


class PermanentStepError(StepError):
    """Failure retrying cannot fix (missing field, invalid id)."""
    permanent = True


class SchemaValidationError(PermanentStepError):
    """An external response did not match its expected schema."""
    pass


@dataclass
class StepResult:
    """Outcome of one external step."""
    success: bool
    data: Any = None
    error: str | None = None
    permanent: bool = False
    # Set when the step found the work already done; ends the pipeline
    skip_reason: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "StepResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str, permanent: bool = False) -> "StepResult":
        return cls(success=False, error=error, permanent=permanent)

    @classmethod
    def skipped(cls, reason: str, data: Any = None) -> "StepResult":
        return cls(success=True, data=data, skip_reason=reason)


@dataclass
class StepContext:
    """What a step gets to work with."""
    session: AsyncSession
    item: Any
    repository: QueueRepository
    owner: str
    outputs: dict[str, Any] = field(default_factory=dict)  # earlier step data
    params: dict[str, Any] = field(default_factory=dict)  # request filters
    lease_seconds: int | None = None

    async def progress(self, **values: Any) -> None:
        """Write progress columns (current job, counters) on the held row."""
        await self.repository.update_processing(
            self.item, self.owner, lease_seconds=self.lease_seconds, **values
        )


StepFunc = Callable[[StepContext], Awaitable[StepResult]]


@dataclass
class Step:
    """A named external step.

    Optional steps record their error and let the pipeline continue.
    """
    name: str
    func: StepFunc
    optional: bool = False

    async def __call__(self, ctx: StepContext) -> StepResult:
        try:
            result = await self.func(ctx)
        except StepError as e:
            return StepResult.failed(str(e), permanent=e.permanent)
        except Exception as e:
            logger.error(f"Step {self.name} raised: {e}", exc_info=True)
            # A failed flush leaves the session unusable for the guarded writes that follow
            await ctx.session.rollback()
            await ctx.session.refresh(ctx.item)
            return StepResult.failed(f"{type(e).__name__}: {e}")
        if result is None:
            return StepResult.ok()
        return result


@dataclass
class PipelineOutcome:
    """What happened to one item across all its steps."""
    success: bool
    steps: dict[str, Any] = field(default_factory=dict)
    resumed: list[str] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)
    failed_step: str | None = None
    error: str | None = None
    permanent: bool = False
    skip_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"steps": self.steps}
        if self.resumed:
            data["resumed"] = self.resumed
        if self.errors:
            data["errors"] = self.errors
        if self.failed_step:
            data["failed_step"] = self.failed_step
        if self.skip_reason:
            data["skip_reason"] = self.skip_reason
        return data


class StepPipeline:
    """Runs a domain's steps in order against the step ledger."""

    def __init__(self, steps: list[Step]):
        names = [step.name for step in steps]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate step names: {names}")
        self.steps = steps

    async def run(self, ctx: StepContext) -> PipelineOutcome:
        ledger = dict(ctx.item.step_ledger or {})
        outcome = PipelineOutcome(success=True)

        for step in self.steps:
            if step.name in ledger:
                ctx.outputs[step.name] = ledger[step.name]
                outcome.steps[step.name] = ledger[step.name]
                outcome.resumed.append(step.name)
                logger.debug(f"Step {step.name} already done for item {ctx.item.id}")
                continue

            result = await step(ctx)

            if not result.success:
                if step.optional:
                    logger.warning(f"Optional step {step.name} failed: {result.error}")
                    outcome.errors.append({"step": step.name, "error": result.error or ""})
                    continue
                outcome.success = False
                outcome.failed_step = step.name
                outcome.error = result.error or f"Step {step.name} failed"
                outcome.permanent = result.permanent
                return outcome

            ctx.outputs[step.name] = result.data
            outcome.steps[step.name] = result.data
            ledger[step.name] = result.data
            await ctx.progress(step_ledger=dict(ledger))

            if result.skip_reason:
                outcome.skip_reason = result.skip_reason
                return outcome

        return outcome
