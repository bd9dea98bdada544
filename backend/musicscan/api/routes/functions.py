"""Batch endpoints invoked by the scheduler and the admin UI.

``POST /functions/{queue}`` runs one dispatcher batch for a registered queue.
The producer endpoints put new work on the queues. These endpoints are not
authenticated; they are meant to be reachable by the trusted scheduler only.
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from musicscan.api.deps import DbSession
from musicscan.models import PhotoBatch
from musicscan.schemas.queue import DiscoverSinglesRequest, PhotoBatchResponse, PhotoBatchStartRequest
from musicscan.services.dispatcher import Dispatcher, get_queue_definition
from musicscan.services.processors.photo_batch import start_photo_batch
from musicscan.services.processors.social_post import recycle_social_queue
from musicscan.services.producers import discover_artist_singles, enqueue_artist_stories

logger = logging.getLogger(__name__)

router = APIRouter()


def error_response(error: Exception | str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": str(error)})


async def read_body(request: Request) -> dict[str, Any]:
    """JSON object body, or an empty dict when there is none."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = await request.json()
    except ValueError:
        logger.warning(f"Ignoring malformed JSON body on {request.url.path}")
        return {}
    return body if isinstance(body, dict) else {}


def parse_batch_size(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@router.post("/discover-artist-singles")
async def discover_singles(request: DiscoverSinglesRequest, db: DbSession):
    """Stage an artist's singles from Discogs."""
    try:
        return await discover_artist_singles(
            db,
            artist_name=request.artist_name,
            discogs_artist_id=request.discogs_artist_id,
            artist_id=request.artist_id,
        )
    except Exception as e:
        logger.error(f"discover-artist-singles failed: {e}", exc_info=True)
        return error_response(e)


@router.post("/enqueue-artist-stories")
async def enqueue_stories(request: Request, db: DbSession):
    """Queue stories for imported artists without one."""
    body = await read_body(request)
    try:
        return await enqueue_artist_stories(db, limit=parse_batch_size(body.get("limit")))
    except Exception as e:
        logger.error(f"enqueue-artist-stories failed: {e}", exc_info=True)
        return error_response(e)


@router.post("/recycle-social-queue")
async def recycle_social(db: DbSession):
    """Top up social queues that are running low."""
    try:
        return await recycle_social_queue(db)
    except Exception as e:
        logger.error(f"recycle-social-queue failed: {e}", exc_info=True)
        return error_response(e)


@router.post("/photo-batch/start")
async def start_batch(request: PhotoBatchStartRequest, db: DbSession):
    """Queue a new photo batch."""
    try:
        summary = await start_photo_batch(db, request.photo_url)
    except Exception as e:
        logger.error(f"photo-batch start failed: {e}", exc_info=True)
        return error_response(e)

    batch = summary.items[0]
    return {
        "success": summary.created == 1,
        "batch_id": batch.id,
        "status": batch.status,
        "message": batch.error_message or "Photo batch queued",
    }


@router.get("/photo-batch/{batch_id}", response_model=PhotoBatchResponse)
async def get_batch(batch_id: int, db: DbSession):
    """Progress of a photo batch."""
    batch = await db.get(PhotoBatch, batch_id)
    if batch is None:
        raise HTTPException(status_code=404, detail="Photo batch not found")
    return batch


@router.post("/{queue_name}")
async def run_queue(queue_name: str, request: Request):
    """
    Process one batch of a queue.

    Body: ``{"batchSize": 10, ...filters}``. Responds with the batch summary,
    or ``{"success": false, "error": ...}`` with status 500.
    """
    definition = get_queue_definition(queue_name)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Unknown queue: {queue_name}")

    filters = await read_body(request)
    batch_size = parse_batch_size(filters.pop("batchSize", None))

    try:
        summary = await Dispatcher(definition).run_batch(batch_size=batch_size, filters=filters)
    except Exception as e:
        logger.error(f"[{queue_name}] Batch failed: {e}", exc_info=True)
        return error_response(e)

    if summary.error:
        return JSONResponse(status_code=500, content=summary.to_dict())
    return summary.to_dict()
