"""Vulnerability query endpoints: filtered page with facets, suggestions, export and single-record lookup."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.schemas.query import FilterSpec, QueryResult, SortSpec, SuggestResponse
from app.schemas.vulnerability import CanonicalVulnerability
from app.services.export import CSV_MEDIA_TYPE, JSON_MEDIA_TYPE, export_csv, export_json
from app.services.memory_engine import snapshot_cache
from app.services.query_engine import QueryEngine
from app.services.query_params import parse_filter_params, parse_page_params, parse_sort_params
from app.services.sql_engine import SqlQueryEngine
from app.services.store import VulnerabilityStore, get_store

logger = logging.getLogger(__name__)
router = APIRouter()

_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def get_query_engine(
    db: Annotated[Session, Depends(get_db)],
    store: Annotated[VulnerabilityStore, Depends(get_store)],
) -> QueryEngine:
    """Query strategy selected by QUERY_ENGINE."""
    if get_settings().QUERY_ENGINE == "memory":
        return snapshot_cache.get(store)
    return SqlQueryEngine(db)


def filter_params(
    severity: str | None = None,
    repo: str | None = None,
    group: str | None = None,
    kai_status: Annotated[str | None, Query(alias="kaiStatus")] = None,
    kai_exclude: Annotated[str | None, Query(alias="kaiExclude")] = None,
    risk_factor: Annotated[str | None, Query(alias="riskFactor")] = None,
    date_from: Annotated[str | None, Query(alias="dateFrom")] = None,
    date_to: Annotated[str | None, Query(alias="dateTo")] = None,
    cvss_min: Annotated[str | None, Query(alias="cvssMin")] = None,
    cvss_max: Annotated[str | None, Query(alias="cvssMax")] = None,
    search: str | None = None,
) -> FilterSpec:
    """Filter dimensions from query parameters; list values are comma-separated."""
    return parse_filter_params(
        severity=severity,
        repo=repo,
        group=group,
        kai_status=kai_status,
        kai_exclude=kai_exclude,
        risk_factor=risk_factor,
        date_from=date_from,
        date_to=date_to,
        cvss_min=cvss_min,
        cvss_max=cvss_max,
        search=search,
    )


def sort_params(sort: str | None = None, direction: str | None = None) -> SortSpec:
    return parse_sort_params(sort, direction)


@router.get("", response_model=QueryResult)
def list_vulnerabilities(
    engine: Annotated[QueryEngine, Depends(get_query_engine)],
    filters: Annotated[FilterSpec, Depends(filter_params)],
    sort: Annotated[SortSpec, Depends(sort_params)],
    page: str | None = None,
    limit: str | None = None,
    include_facets: Annotated[str | None, Query(alias="includeFacets")] = None,
) -> QueryResult:
    """
    Return one page of records matching the filters, plus facets and filter options.

    Malformed parameters impose no constraint. Pass includeFacets=false to skip
    metrics and options.
    """
    settings = get_settings()
    page_number, page_size = parse_page_params(
        page, limit, default_limit=settings.QUERY_DEFAULT_LIMIT, max_limit=settings.QUERY_MAX_LIMIT
    )
    with_facets = (include_facets or "").strip().lower() not in _FALSE_VALUES
    return engine.query(filters, sort, page=page_number, limit=page_size, include_facets=with_facets)


@router.get("/suggest", response_model=SuggestResponse)
def suggest_vulnerabilities(
    engine: Annotated[QueryEngine, Depends(get_query_engine)],
    term: str | None = None,
    limit: str | None = None,
) -> SuggestResponse:
    """Up to `limit` quick-lookup suggestions for a search term (empty term returns none)."""
    settings = get_settings()
    _, size = parse_page_params(
        1, limit, default_limit=settings.SUGGEST_DEFAULT_LIMIT, max_limit=settings.QUERY_MAX_LIMIT
    )
    return SuggestResponse(suggestions=engine.suggest(term or "", size))


@router.get("/export")
def export_vulnerabilities(
    engine: Annotated[QueryEngine, Depends(get_query_engine)],
    filters: Annotated[FilterSpec, Depends(filter_params)],
    sort: Annotated[SortSpec, Depends(sort_params)],
    export_format: Annotated[str, Query(alias="format")] = "csv",
) -> Response:
    """Download the full filtered, sorted record set as CSV or JSON."""
    fmt = export_format.strip().lower()
    if fmt not in ("csv", "json"):
        raise HTTPException(status_code=422, detail="format must be csv or json.")
    records = list(engine.filtered_records(filters, sort))
    logger.info("Export requested", extra={"export_format": fmt, "rows": len(records)})
    if fmt == "json":
        body, media_type = export_json(records), JSON_MEDIA_TYPE
    else:
        body, media_type = export_csv(records), CSV_MEDIA_TYPE
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="vulnerabilities.{fmt}"'},
    )


@router.get("/{identifier:path}", response_model=CanonicalVulnerability)
def get_vulnerability(
    identifier: str,
    engine: Annotated[QueryEngine, Depends(get_query_engine)],
) -> CanonicalVulnerability:
    """Look up one record by id, falling back to CVE (as given, upper- or lower-cased)."""
    if not identifier.strip():
        raise HTTPException(status_code=400, detail="Identifier is required.")
    record = engine.lookup(identifier)
    if record is None:
        raise HTTPException(status_code=404, detail="Not found")
    return record
