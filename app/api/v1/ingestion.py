"""Ingestion control endpoints: status, trigger and cancel a background ingestion run."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response

from app.core.config import get_settings
from app.schemas.ingestion import (
    IngestionCancelResponse,
    IngestionOverview,
    IngestionRequest,
    IngestionResponse,
    IngestionState,
)
from app.services.ingestion import IngestionPipeline, get_ingestion_pipeline
from app.services.store import VulnerabilityStore, get_store

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=IngestionOverview)
def get_ingestion_status(
    pipeline: Annotated[IngestionPipeline, Depends(get_ingestion_pipeline)],
    store: Annotated[VulnerabilityStore, Depends(get_store)],
) -> IngestionOverview:
    """Status of the current or last run plus the number of stored records."""
    return IngestionOverview(store_count=store.count(), status=pipeline.status())


@router.post("", response_model=IngestionResponse, status_code=202)
def start_ingestion(
    response: Response,
    pipeline: Annotated[IngestionPipeline, Depends(get_ingestion_pipeline)],
    store: Annotated[VulnerabilityStore, Depends(get_store)],
    body: IngestionRequest | None = None,
) -> IngestionResponse:
    """
    Start a background ingestion run.

    Returns 202 when a run was started, 200 with started=false when the store is
    already populated (pass force or reset to re-ingest) and 409 while another
    run is in flight.
    """
    body = body or IngestionRequest()
    if pipeline.state == IngestionState.RUNNING:
        raise HTTPException(status_code=409, detail="Ingestion already running.")

    count = store.count()
    if count and not (body.force or body.reset):
        response.status_code = 200
        return IngestionResponse(
            started=False,
            store_count=count,
            detail="Store already populated; pass force or reset to re-ingest.",
            status=pipeline.status(),
        )

    if body.reset:
        store.reset()

    sources = body.sources or get_settings().data_source_list
    thread = pipeline.start(sources)
    if thread is None:
        raise HTTPException(status_code=409, detail="Ingestion already running.")
    logger.info("Ingestion triggered over HTTP", extra={"sources": sources, "reset": body.reset})
    return IngestionResponse(
        started=True,
        store_count=store.count(),
        status=pipeline.status(),
    )


@router.post("/cancel", response_model=IngestionCancelResponse)
def cancel_ingestion(
    pipeline: Annotated[IngestionPipeline, Depends(get_ingestion_pipeline)],
) -> IngestionCancelResponse:
    """Request cancellation of the running ingestion; committed batches are kept."""
    cancelled = pipeline.cancel()
    return IngestionCancelResponse(cancelled=cancelled, status=pipeline.status())
