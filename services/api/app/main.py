from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from app.api.router import api_router
from app.core.config import settings
from app.core.otel import init_otel
from app.services.streaming.service import build_lookup_service
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "lookup_service", None) is None:
        service = await build_lookup_service()
        await service.init()
        app.state.lookup_service = service
    try:
        yield
    finally:
        service = app.state.lookup_service
        app.state.lookup_service = None
        await service.shutdown()


app = FastAPI(title=settings.api_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)

init_otel(app)
