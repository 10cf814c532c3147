"""FastAPI application entrypoint. No business logic; only wiring and middleware."""

from dotenv import load_dotenv

load_dotenv()

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1 import router as v1_router
from app.core.config import settings
from app.core.database import init_db
from app.services.ingestion import get_ingestion_pipeline
from app.services.store import get_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Create missing tables; optionally start ingestion into an empty store."""
    init_db()
    if settings.INGEST_ON_STARTUP and get_store().count() == 0:
        logger.info("Store empty; starting ingestion", extra={"sources": settings.data_source_list})
        get_ingestion_pipeline().start(settings.data_source_list)
    yield
    pipeline = get_ingestion_pipeline()
    if pipeline.cancel():
        pipeline.wait(timeout=5)


app = FastAPI(
    title="Vulnscope API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials="*" not in settings.cors_origin_list,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
def root() -> dict[str, str]:
    """Root route; minimal payload for discovery."""
    return {"message": "Vulnscope API"}
