"""Pydantic schemas for health check responses."""

from typing import Literal

from pydantic import Field

from app.schemas.ingestion import IngestionState
from app.schemas.vulnerability import CamelModel


class HealthResponse(CamelModel):
    """Response body for the health check endpoint."""

    status: Literal["ok"] = Field(default="ok", description="Service status")
    environment: str = Field(description="Current app environment (e.g. dev, prod)")
    database: Literal["connected", "disconnected"] | None = Field(
        default=None,
        description="Database connectivity status when check is performed",
    )
    records: int | None = Field(
        default=None,
        description="Records in the store; omitted when the database is unreachable",
    )
    ingestion: IngestionState | None = Field(default=None, description="State of the current or last ingestion run")
    query_engine: Literal["sql", "memory"] | None = None
