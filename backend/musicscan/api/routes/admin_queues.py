"""Queue administration endpoints (admin role required)."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from musicscan.api.deps import AdminUser, DbSession, Pagination
from musicscan.models import QueueItemMixin, QueueStatus, TERMINAL_STATUSES
from musicscan.schemas.queue import (
    CleanupResponse,
    QueueItemResponse,
    QueueStatsResponse,
    ResetStuckResponse,
    RetryFailedRequest,
)
from musicscan.services.cronjob_log import recent_executions
from musicscan.services.dispatcher import Dispatcher, QueueDefinition, get_queue_definition, load_queue_definitions
from musicscan.services.queue_repository import ItemNotFoundError, QueueError, QueueRepository

logger = logging.getLogger(__name__)

router = APIRouter()

ENGINE_COLUMNS = frozenset(
    name for name in dir(QueueItemMixin) if not name.startswith("_")
)


def _definition(queue_name: str) -> QueueDefinition:
    definition = get_queue_definition(queue_name)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Unknown queue: {queue_name}")
    return definition


def _to_response(item: Any) -> QueueItemResponse:
    payload = {
        column.name: getattr(item, column.key)
        for column in item.__table__.columns
        if column.key not in ENGINE_COLUMNS
    }
    response = QueueItemResponse.model_validate(item)
    response.payload = payload
    return response


async def _stats(db, definition: QueueDefinition) -> QueueStatsResponse:
    counts = await QueueRepository(db, definition.model).status_counts()
    return QueueStatsResponse(queue=definition.name, total=sum(counts.values()), by_status=counts)


@router.get("")
async def list_queues(db: DbSession, admin: AdminUser) -> list[QueueStatsResponse]:
    """Every registered queue with its status counts."""
    definitions = load_queue_definitions()
    return [await _stats(db, definitions[name]) for name in sorted(definitions)]


@router.get("/executions")
async def list_executions(
    db: DbSession,
    admin: AdminUser,
    function_name: str | None = Query(None, description="Filter by queue or function name"),
    limit: int = Query(20, ge=1, le=200),
) -> list[dict]:
    """Recent batch executions."""
    entries = await recent_executions(db, function_name=function_name, limit=limit)
    return [
        {
            "id": entry.id,
            "function_name": entry.function_name,
            "status": entry.status,
            "started_at": entry.started_at,
            "completed_at": entry.completed_at,
            "execution_time_ms": entry.execution_time_ms,
            "items_processed": entry.items_processed,
            "error_message": entry.error_message,
            "details": entry.details,
        }
        for entry in entries
    ]


@router.get("/{queue_name}")
async def get_queue_stats(queue_name: str, db: DbSession, admin: AdminUser) -> QueueStatsResponse:
    """Status counts of one queue."""
    return await _stats(db, _definition(queue_name))


@router.get("/{queue_name}/items")
async def list_queue_items(
    queue_name: str,
    db: DbSession,
    admin: AdminUser,
    pagination: Pagination,
    status: str | None = Query(None, description="Filter by status"),
) -> dict:
    """List queue rows, newest first."""
    definition = _definition(queue_name)
    repo = QueueRepository(db, definition.model)
    items = await repo.list_items(status=status, limit=pagination.per_page, offset=pagination.offset)
    return {
        "items": [_to_response(item) for item in items],
        "total": await repo.count(status),
        "page": pagination.page,
        "per_page": pagination.per_page,
    }


@router.get("/{queue_name}/items/{item_id}")
async def get_queue_item(queue_name: str, item_id: int, db: DbSession, admin: AdminUser) -> QueueItemResponse:
    definition = _definition(queue_name)
    item = await QueueRepository(db, definition.model).get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Queue item not found")
    return _to_response(item)


@router.post("/{queue_name}/items/{item_id}/process")
async def process_queue_item(queue_name: str, item_id: int, admin: AdminUser) -> dict:
    """Process one pending item right away."""
    definition = _definition(queue_name)
    try:
        summary = await Dispatcher(definition).process_one(item_id)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if summary.error:
        raise HTTPException(status_code=400, detail=summary.error)
    return summary.to_dict()


@router.post("/{queue_name}/retry-failed")
async def retry_failed(
    queue_name: str,
    request: RetryFailedRequest,
    db: DbSession,
    admin: AdminUser,
) -> dict:
    """Put failed items back to pending with ``extra_attempts`` more tries."""
    definition = _definition(queue_name)
    count = await QueueRepository(db, definition.model).retry_failed(
        request.extra_attempts, item_ids=request.ids
    )
    logger.info(f"Admin {admin.id} requeued {count} failed {queue_name} items")
    return {"queue": queue_name, "requeued": count}


@router.post("/{queue_name}/reset-stuck")
async def reset_stuck(
    queue_name: str,
    db: DbSession,
    admin: AdminUser,
    older_than_minutes: int = Query(30, ge=1, description="Only rows processing for longer than this"),
) -> ResetStuckResponse:
    """Release processing rows left behind by a crashed run."""
    definition = _definition(queue_name)
    counts = await QueueRepository(db, definition.model).reset_stuck(older_than_minutes * 60)
    return ResetStuckResponse(queue=queue_name, **counts)


@router.delete("/{queue_name}/items")
async def cleanup_items(
    queue_name: str,
    db: DbSession,
    admin: AdminUser,
    status: str = Query(QueueStatus.COMPLETED.value, description="Terminal status to delete"),
    older_than_days: int = Query(0, ge=0),
) -> CleanupResponse:
    """Delete terminal rows in bulk."""
    if status not in TERMINAL_STATUSES:
        raise HTTPException(status_code=400, detail=f"Can only clean up terminal statuses, got '{status}'")

    definition = _definition(queue_name)
    try:
        deleted = await QueueRepository(db, definition.model).cleanup(status, older_than_days)
    except QueueError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return CleanupResponse(queue=queue_name, status=status, deleted=deleted)
