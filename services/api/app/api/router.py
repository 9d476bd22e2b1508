from __future__ import annotations

from fastapi import APIRouter

from app.api.routes import health, streaming

api_router = APIRouter()

# Keep this list in the order you want routes registered.
api_router.include_router(health.router)
api_router.include_router(streaming.router)
