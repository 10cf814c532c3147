"""
Query/facet engine interface and the vocabulary both strategies share.

SqlQueryEngine evaluates a request as database aggregations; MemoryQueryEngine
reduces an in-memory list of the same canonical records. Both derive ordering,
limits and option cleanup from this module so their results agree.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from app.schemas.query import FilterSpec, QueryResult, SortSpec, Suggestion, SuggestionMeta
from app.schemas.vulnerability import CANONICAL_KAI_STATUSES, CanonicalVulnerability

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500
# Keeps (page - 1) * limit well inside a signed 64-bit OFFSET.
MAX_PAGE = 2**31 - 1
DEFAULT_SUGGEST_LIMIT = 12
RISK_FACTOR_FACET_LIMIT = 25
REPO_FACET_LIMIT = 15
HIGHLIGHT_LIMIT = 3
# A review status containing this marker (case-insensitive) counts as AI-reviewed.
AI_STATUS_MARKER = "ai"
CVSS_RANGE_DEFAULT = (0.0, 10.0)

# Fields matched by free-text search and by suggestions.
SEARCH_FIELDS: tuple[str, ...] = ("cve", "package_name", "repo_name", "image_name", "group_name", "summary")
SUGGEST_FIELDS: tuple[str, ...] = ("cve", "id", "package_name", "repo_name", "image_name")

# Sort key -> record attribute (same name on the ORM row and the pydantic record).
SORT_FIELDS: dict[str, str] = {
    "severity": "severity_rank",
    "cvss": "cvss",
    "published": "published_at",
    "repoName": "repo_name",
    "packageName": "package_name",
}
NULLABLE_SORT_FIELDS = frozenset({"cvss", "published_at", "package_name"})
TEXT_SORT_FIELDS = frozenset({"id", "repo_name", "package_name"})


@dataclass(frozen=True)
class SortTerm:
    field: str
    descending: bool


def sort_plan(sort: SortSpec) -> list[SortTerm]:
    """
    Ordered sort terms for a request; every plan ends with id ascending.

    Severity "asc" means least severe first, i.e. the highest rank number first,
    so the rank comparison is inverted relative to the requested direction.
    Missing values sort lowest.
    """
    if sort.key == "severity":
        return [
            SortTerm("severity_rank", descending=sort.direction == "asc"),
            SortTerm("cvss", descending=True),
            SortTerm("id", descending=False),
        ]
    return [
        SortTerm(SORT_FIELDS[sort.key], descending=sort.direction == "desc"),
        SortTerm("severity_rank", descending=False),
        SortTerm("id", descending=False),
    ]


def clean_options(values: Iterable[str | None]) -> list[str]:
    """Strip, drop empties and duplicates, sort by code point."""
    cleaned = {v.strip() for v in values if isinstance(v, str) and v.strip()}
    return sorted(cleaned)


def canonical_kai_options(values: Iterable[str | None]) -> list[str]:
    """Review-status options restricted to the two canonical exclusion tags."""
    return [v for v in clean_options(values) if v.lower() in CANONICAL_KAI_STATUSES]


def pct_remain(total: int, remain: int) -> float:
    return remain / total if total else 0.0


def build_suggestion(record_key: str, package_name: str | None, repo_name: str | None, image_name: str | None) -> Suggestion:
    """Label is 'key • package • repo' with absent parts left out."""
    parts = [record_key]
    if package_name:
        parts.append(package_name)
    if repo_name:
        parts.append(repo_name)
    return Suggestion(
        value=record_key,
        label=" • ".join(parts),
        meta=SuggestionMeta(repo_name=repo_name, package_name=package_name, image_name=image_name),
    )


def lookup_candidates(identifier: str) -> list[str]:
    """CVE spellings tried for a single-record lookup, in order."""
    return list(dict.fromkeys([identifier, identifier.upper(), identifier.lower()]))


class QueryEngine(Protocol):
    """Interface implemented by both query strategies."""

    def query(
        self,
        filters: FilterSpec,
        sort: SortSpec,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        include_facets: bool = True,
    ) -> QueryResult: ...

    def filtered_records(self, filters: FilterSpec, sort: SortSpec) -> Iterable[CanonicalVulnerability]: ...

    def suggest(self, term: str, limit: int = DEFAULT_SUGGEST_LIMIT) -> list[Suggestion]: ...

    def lookup(self, identifier: str) -> CanonicalVulnerability | None: ...
