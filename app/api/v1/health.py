"""Health check endpoint with database connectivity, store size and ingestion state."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import check_db_connected, get_db
from app.schemas.health import HealthResponse
from app.services.ingestion import IngestionPipeline, get_ingestion_pipeline
from app.services.store import VulnerabilityStore, get_store

router = APIRouter()


@router.get("/", response_model=HealthResponse)
def get_health(
    db: Annotated[Session, Depends(get_db)],
    store: Annotated[VulnerabilityStore, Depends(get_store)],
    pipeline: Annotated[IngestionPipeline, Depends(get_ingestion_pipeline)],
) -> HealthResponse:
    """
    Return service health status and database connectivity.
    Used by load balancers and monitoring.
    """
    settings = get_settings()
    connected = check_db_connected(db)
    records = None
    if connected:
        try:
            records = store.count()
        except SQLAlchemyError:
            # Tables not created yet.
            records = None

    return HealthResponse(
        status="ok",
        environment=settings.APP_ENV,
        database="connected" if connected else "disconnected",
        records=records,
        ingestion=pipeline.state,
        query_engine=settings.QUERY_ENGINE,
    )
