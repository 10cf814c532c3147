"""Pydantic request/response schemas."""

from app.schemas.health import HealthResponse
from app.schemas.ingestion import (
    IngestionCancelResponse,
    IngestionOverview,
    IngestionProgress,
    IngestionRequest,
    IngestionResponse,
    IngestionState,
    IngestionStatus,
    Manifest,
    ManifestChunk,
)
from app.schemas.query import (
    FilterSpec,
    Metrics,
    Options,
    QueryResult,
    SortSpec,
    Suggestion,
    SuggestResponse,
)
from app.schemas.vulnerability import (
    SEVERITY_ORDER,
    CanonicalVulnerability,
    SeverityLevel,
    SourceContext,
)

__all__ = [
    "SEVERITY_ORDER",
    "CanonicalVulnerability",
    "FilterSpec",
    "HealthResponse",
    "IngestionCancelResponse",
    "IngestionOverview",
    "IngestionProgress",
    "IngestionRequest",
    "IngestionResponse",
    "IngestionState",
    "IngestionStatus",
    "Manifest",
    "ManifestChunk",
    "Metrics",
    "Options",
    "QueryResult",
    "SeverityLevel",
    "SortSpec",
    "SourceContext",
    "SuggestResponse",
    "Suggestion",
]
