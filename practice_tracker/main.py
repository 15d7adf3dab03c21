from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from practice_tracker import dependencies
from practice_tracker.config import Settings
from practice_tracker.controllers import v1
from practice_tracker.db import init_db
from practice_tracker.logger import setup_logging
from practice_tracker.services.gpt import close_chat_provider

settings = Settings()
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await asyncio.to_thread(init_db, settings)
    logger.info(
        "startup",
        extra={"ai_enabled": settings.ai_enabled, "redis": bool(settings.redis_url)},
    )
    yield
    close_chat_provider()
    if dependencies.redis_client is not None:
        await dependencies.redis_client.aclose()


app = FastAPI(
    title="Practice Tracker API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(v1.router)


@app.get("/health")
async def health():
    return {"status": "ok", "ai_enabled": settings.ai_enabled}


Instrumentator().instrument(app).expose(app)
