"""API routes."""

from fastapi import APIRouter

from musicscan.api.routes import admin_queues, functions, health

api_router = APIRouter()

api_router.include_router(health.router, tags=["Health"])
api_router.include_router(functions.router, prefix="/functions", tags=["Functions"])
api_router.include_router(admin_queues.router, prefix="/admin/queues", tags=["Queue Administration"])
