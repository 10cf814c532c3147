"""Pydantic schemas for vulnerability queries: filter/sort specs, facets, options and suggestions."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.vulnerability import CamelModel, CanonicalVulnerability

SortKey = Literal["severity", "cvss", "published", "repoName", "packageName"]
SortDirection = Literal["asc", "desc"]

SORT_KEYS: frozenset[str] = frozenset({"severity", "cvss", "published", "repoName", "packageName"})


class FilterSpec(BaseModel):
    """
    Declarative filter. Every non-empty dimension is ANDed; empty dimensions impose no constraint.
    Dates are naive UTC.
    """

    model_config = ConfigDict(frozen=True)

    severities: frozenset[str] = frozenset()
    repo: str | None = None
    group: str | None = None
    kai_statuses: frozenset[str] = frozenset()
    kai_exclude: frozenset[str] = frozenset()
    risk_factors: frozenset[str] = frozenset()
    date_from: datetime | None = None
    date_to: datetime | None = None
    cvss_min: float | None = None
    cvss_max: float | None = None
    search: str | None = None


class SortSpec(BaseModel):
    """Sort field and direction; ordering always ends with id ascending."""

    model_config = ConfigDict(frozen=True)

    key: SortKey = "severity"
    direction: SortDirection = "desc"


class NameCount(CamelModel):
    name: str
    value: int


class TrendPoint(CamelModel):
    """Per-month counts per severity bucket."""

    month: str = Field(..., description="YYYY-MM of the published date.")
    critical: int = Field(default=0, alias="CRITICAL")
    high: int = Field(default=0, alias="HIGH")
    medium: int = Field(default=0, alias="MEDIUM")
    low: int = Field(default=0, alias="LOW")
    unknown: int = Field(default=0, alias="UNKNOWN")
    total: int = 0


class AiManualPoint(CamelModel):
    label: str
    ai: int = 0
    manual: int = 0


class Kpis(CamelModel):
    total: int = Field(..., ge=0, description="Records in the store, unfiltered.")
    remain: int = Field(..., ge=0, description="Records matching the filter.")
    removed: int = Field(..., ge=0, description="total - remain.")
    pct_remain: float = Field(..., ge=0, description="remain / total, 0 when the store is empty.")


class Metrics(CamelModel):
    """Facet bundle computed over the filtered set, independent of pagination."""

    severity_counts: list[NameCount]
    risk_factors: list[NameCount]
    trend: list[TrendPoint]
    ai_manual: list[AiManualPoint]
    highlights: list[CanonicalVulnerability]
    repo_summary: list[NameCount]
    kpis: Kpis


class CvssRange(CamelModel):
    min: float = 0.0
    max: float = 10.0


class Options(CamelModel):
    """Distinct values used to populate further filtering."""

    kai_statuses: list[str] = Field(default_factory=list)
    risk_factors: list[str] = Field(default_factory=list)
    repos: list[str] = Field(default_factory=list)
    groups: list[str] = Field(default_factory=list)
    packages: list[str] = Field(default_factory=list)
    cvss_range: CvssRange = Field(default_factory=CvssRange)


class QueryResult(CamelModel):
    """One page of records plus total count and, optionally, facets and options."""

    data: list[CanonicalVulnerability]
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    metrics: Metrics | None = None
    options: Options | None = None


class SuggestionMeta(CamelModel):
    repo_name: str | None = None
    package_name: str | None = None
    image_name: str | None = None


class Suggestion(CamelModel):
    value: str
    label: str
    meta: SuggestionMeta


class SuggestResponse(CamelModel):
    suggestions: list[Suggestion] = Field(default_factory=list)
