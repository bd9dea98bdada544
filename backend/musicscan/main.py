"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from musicscan import __version__
from musicscan.api.routes import api_router
from musicscan.config import settings
from musicscan.database import init_db
from musicscan.middleware import RateLimitMiddleware

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

CORS_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    await init_db()

    queue_task = None
    queue_stop_event = asyncio.Event()
    if settings.embedded_worker:
        from musicscan.services.queue_worker import run_queue_worker

        queue_task = asyncio.create_task(
            run_queue_worker(poll_interval=settings.worker_poll_interval, stop_event=queue_stop_event)
        )

    yield

    if queue_task is not None:
        queue_stop_event.set()
        queue_task.cancel()
        try:
            await queue_task
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title="MusicScan Queue Backend",
    description="Batch processors for the MusicScan content and product queues",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=CORS_HEADERS,
)


@app.middleware("http")
async def answer_preflight(request: Request, call_next):
    """Answer every OPTIONS request with an empty 200, preflight or not."""
    if request.method != "OPTIONS":
        return await call_next(request)

    headers = {
        "Access-Control-Allow-Headers": ", ".join(CORS_HEADERS),
        "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    }
    origin = request.headers.get("Origin")
    if "*" in settings.cors_origins:
        headers["Access-Control-Allow-Origin"] = "*"
    elif origin in settings.cors_origins:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Vary"] = "Origin"
    return Response(status_code=200, headers=headers)


@app.middleware("http")
async def add_security_headers(request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})


app.include_router(api_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "MusicScan Queue Backend",
        "version": __version__,
        "docs": "/docs",
    }
