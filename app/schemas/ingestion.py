"""Pydantic schemas for chunked dataset manifests and ingestion control/status."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from app.schemas.vulnerability import CamelModel


class ManifestChunk(BaseModel):
    """One shard listed in a manifest; url may be relative to the manifest location."""

    model_config = {"extra": "ignore"}

    url: str = Field(..., min_length=1)
    count: int = Field(default=0, ge=0)
    bytes: int = Field(default=0, ge=0)


class Manifest(BaseModel):
    """Index of gzip-compressed (or plain) chunk files making up one dataset."""

    model_config = {"extra": "ignore"}

    version: int = 1
    total: int = Field(default=0, ge=0)
    chunks: list[ManifestChunk] = Field(default_factory=list)


class IngestionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


class IngestionProgress(CamelModel):
    """Progress snapshot passed to the progress callback after each committed batch."""

    processed: int = 0
    committed: int = 0
    batches: int = 0
    expected_total: int | None = None


class IngestionStatus(CamelModel):
    state: IngestionState = IngestionState.IDLE
    processed: int = 0
    committed: int = 0
    batches: int = 0
    expected_total: int | None = None
    sources: list[str] = Field(default_factory=list)
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class IngestionRequest(CamelModel):
    """Body for triggering an ingestion run over HTTP."""

    sources: list[str] | None = Field(
        default=None,
        description="Candidate sources in priority order; defaults to DATA_SOURCES.",
    )
    force: bool = Field(default=False, description="Ingest even when the store already has records.")
    reset: bool = Field(default=False, description="Clear the store before ingesting.")


class IngestionResponse(CamelModel):
    started: bool
    store_count: int = Field(..., ge=0)
    detail: str | None = None
    status: IngestionStatus


class IngestionOverview(CamelModel):
    """Current ingestion status together with the number of stored records."""

    store_count: int = Field(..., ge=0)
    status: IngestionStatus


class IngestionCancelResponse(CamelModel):
    cancelled: bool
    status: IngestionStatus
