"""Execution log for scheduled and manual processor runs."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.models import CronjobExecutionLog, utcnow

logger = logging.getLogger(__name__)


async def record_execution(
    db: AsyncSession,
    function_name: str,
    started_at: datetime,
    status: str = "completed",
    items_processed: int = 0,
    details: dict[str, Any] | None = None,
    error_message: str | None = None,
) -> None:
    """
    Write one execution log row.

    A failure to write the log is logged and swallowed; the run itself
    already happened and its queue rows are committed.
    """
    completed_at = utcnow()
    entry = CronjobExecutionLog(
        function_name=function_name,
        status=status,
        started_at=started_at,
        completed_at=completed_at,
        execution_time_ms=int((completed_at - started_at).total_seconds() * 1000),
        items_processed=items_processed,
        error_message=error_message,
        details=details,
    )
    try:
        db.add(entry)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to write execution log for {function_name}: {e}")


async def recent_executions(
    db: AsyncSession,
    function_name: str | None = None,
    limit: int = 20,
) -> list[CronjobExecutionLog]:
    query = select(CronjobExecutionLog).order_by(CronjobExecutionLog.id.desc()).limit(limit)
    if function_name:
        query = query.where(CronjobExecutionLog.function_name == function_name)
    result = await db.execute(query)
    return list(result.scalars().all())
