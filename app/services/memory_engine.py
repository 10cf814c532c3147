"""In-memory query strategy: filter, sort and reduce a list of canonical records."""

import heapq
import logging
import threading
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from app.schemas.query import (
    AiManualPoint,
    CvssRange,
    FilterSpec,
    Kpis,
    Metrics,
    NameCount,
    Options,
    QueryResult,
    SortSpec,
    Suggestion,
    TrendPoint,
)
from app.schemas.vulnerability import SEVERITY_ORDER, CanonicalVulnerability
from app.services.query_engine import (
    AI_STATUS_MARKER,
    CVSS_RANGE_DEFAULT,
    DEFAULT_PAGE_SIZE,
    DEFAULT_SUGGEST_LIMIT,
    HIGHLIGHT_LIMIT,
    REPO_FACET_LIMIT,
    RISK_FACTOR_FACET_LIMIT,
    SEARCH_FIELDS,
    SUGGEST_FIELDS,
    build_suggestion,
    canonical_kai_options,
    clean_options,
    lookup_candidates,
    pct_remain,
    sort_plan,
)
from app.services.store import VulnerabilityStore

logger = logging.getLogger(__name__)

Predicate = Callable[[CanonicalVulnerability], bool]


def _contains(record: CanonicalVulnerability, fields: tuple[str, ...], term: str) -> bool:
    return any(term in (getattr(record, f) or "").lower() for f in fields)


def build_predicate(filters: FilterSpec) -> Predicate:
    """Compose one record predicate from every non-empty filter dimension."""
    checks: list[Predicate] = []
    if filters.severities:
        checks.append(lambda r: r.severity_normalized in filters.severities)
    if filters.repo:
        checks.append(lambda r: r.repo_name == filters.repo)
    if filters.group:
        checks.append(lambda r: r.group_name == filters.group)
    if filters.kai_statuses:
        checks.append(lambda r: r.kai_status in filters.kai_statuses)
    if filters.kai_exclude:
        checks.append(
            lambda r: not (r.kai_status or "").strip() or r.kai_status not in filters.kai_exclude
        )
    if filters.risk_factors:
        checks.append(lambda r: not filters.risk_factors.isdisjoint(r.risk_factors))
    if filters.date_from is not None:
        checks.append(lambda r: r.published_at is not None and r.published_at >= filters.date_from)
    if filters.date_to is not None:
        checks.append(lambda r: r.published_at is not None and r.published_at <= filters.date_to)
    if filters.cvss_min is not None:
        checks.append(lambda r: r.cvss is not None and r.cvss >= filters.cvss_min)
    if filters.cvss_max is not None:
        checks.append(lambda r: r.cvss is not None and r.cvss <= filters.cvss_max)
    term = (filters.search or "").strip().lower()
    if term:
        checks.append(lambda r: _contains(r, SEARCH_FIELDS, term))
    return lambda record: all(check(record) for check in checks)


def _missing_lowest(value: Any) -> tuple[bool, Any]:
    return (value is not None, value if value is not None else 0)


def sort_records(records: Iterable[CanonicalVulnerability], sort: SortSpec) -> list[CanonicalVulnerability]:
    """Stable multi-pass sort, least significant term first."""
    ordered = list(records)
    for term in reversed(sort_plan(sort)):
        ordered.sort(key=lambda r, f=term.field: _missing_lowest(getattr(r, f)), reverse=term.descending)
    return ordered


def _highlight_key(record: CanonicalVulnerability) -> tuple[int, float, str]:
    cvss = record.cvss if record.cvss is not None else -1.0
    return (record.severity_rank, -cvss, record.id)


def _top(counter: Counter[str], limit: int) -> list[NameCount]:
    ranked = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    return [NameCount(name=name, value=value) for name, value in ranked[:limit]]


def _is_ai(kai_status: str | None) -> bool:
    return AI_STATUS_MARKER in (kai_status or "").lower()


class MemoryQueryEngine:
    """Query strategy over a snapshot of records held in memory."""

    def __init__(self, records: Iterable[CanonicalVulnerability]) -> None:
        self._records = sorted(records, key=lambda r: r.id)
        self._by_id = {r.id: r for r in self._records}

    def __len__(self) -> int:
        return len(self._records)

    def filtered_records(self, filters: FilterSpec, sort: SortSpec) -> list[CanonicalVulnerability]:
        predicate = build_predicate(filters)
        return sort_records((r for r in self._records if predicate(r)), sort)

    def query(
        self,
        filters: FilterSpec,
        sort: SortSpec,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        include_facets: bool = True,
    ) -> QueryResult:
        matched = self.filtered_records(filters, sort)
        offset = (page - 1) * limit
        result = QueryResult(data=matched[offset:offset + limit], page=page, limit=limit, total=len(matched))
        if not include_facets:
            return result
        return result.model_copy(update={"metrics": self._metrics(matched), "options": self._options(matched)})

    def _metrics(self, matched: list[CanonicalVulnerability]) -> Metrics:
        severity = Counter(r.severity_normalized for r in matched)
        factors: Counter[str] = Counter(name for r in matched for name in r.risk_factors)
        repos: Counter[str] = Counter(r.repo_name for r in matched)

        months: dict[str, Counter[str]] = defaultdict(Counter)
        for r in matched:
            if r.published_at is not None:
                months[f"{r.published_at.year:04d}-{r.published_at.month:02d}"][r.severity_normalized] += 1

        ai_manual = {level: [0, 0] for level in SEVERITY_ORDER}
        for r in matched:
            ai_manual[r.severity_normalized][0 if _is_ai(r.kai_status) else 1] += 1

        total = len(self._records)
        remain = len(matched)
        return Metrics(
            severity_counts=[NameCount(name=level, value=severity[level]) for level in SEVERITY_ORDER],
            risk_factors=_top(factors, RISK_FACTOR_FACET_LIMIT),
            trend=[
                TrendPoint(
                    month=month,
                    critical=counts["CRITICAL"],
                    high=counts["HIGH"],
                    medium=counts["MEDIUM"],
                    low=counts["LOW"],
                    unknown=counts["UNKNOWN"],
                    total=sum(counts.values()),
                )
                for month, counts in sorted(months.items())
            ],
            ai_manual=[
                AiManualPoint(label=level, ai=ai, manual=manual)
                for level, (ai, manual) in ai_manual.items()
            ],
            highlights=heapq.nsmallest(HIGHLIGHT_LIMIT, matched, key=_highlight_key),
            repo_summary=_top(repos, REPO_FACET_LIMIT),
            kpis=Kpis(
                total=total,
                remain=remain,
                removed=max(total - remain, 0),
                pct_remain=pct_remain(total, remain),
            ),
        )

    def _options(self, matched: list[CanonicalVulnerability]) -> Options:
        scores = [r.cvss for r in matched if r.cvss is not None]
        low, high = (min(scores), max(scores)) if scores else CVSS_RANGE_DEFAULT
        return Options(
            kai_statuses=canonical_kai_options(r.kai_status for r in self._records),
            risk_factors=clean_options(name for r in self._records for name in r.risk_factors),
            repos=clean_options(r.repo_name for r in self._records),
            groups=clean_options(r.group_name for r in self._records),
            packages=clean_options(r.package_name for r in self._records),
            cvss_range=CvssRange(min=low, max=high),
        )

    def suggest(self, term: str, limit: int = DEFAULT_SUGGEST_LIMIT) -> list[Suggestion]:
        needle = (term or "").strip().lower()
        if not needle:
            return []
        if limit < 1:
            limit = DEFAULT_SUGGEST_LIMIT
        suggestions: list[Suggestion] = []
        seen: set[str] = set()
        for record in self._records:
            if not _contains(record, SUGGEST_FIELDS, needle):
                continue
            key = record.cve or record.id
            if key in seen:
                continue
            seen.add(key)
            suggestions.append(build_suggestion(key, record.package_name, record.repo_name, record.image_name))
            if len(suggestions) >= limit:
                break
        return suggestions

    def lookup(self, identifier: str) -> CanonicalVulnerability | None:
        key = (identifier or "").strip()
        if not key:
            return None
        if key in self._by_id:
            return self._by_id[key]
        candidates = set(lookup_candidates(key))
        return next((r for r in self._records if r.cve in candidates), None)

    def __iter__(self) -> Iterator[CanonicalVulnerability]:
        return iter(self._records)


class SnapshotCache:
    """
    Holds one MemoryQueryEngine built from the store; rebuilt whenever the
    store revision moves (any committed batch or reset).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._engine: MemoryQueryEngine | None = None
        self._revision = -1

    def get(self, store: VulnerabilityStore) -> MemoryQueryEngine:
        revision = store.revision()
        with self._lock:
            if self._engine is None or revision != self._revision:
                self._engine = MemoryQueryEngine(store.iter_records())
                self._revision = revision
                logger.info("In-memory snapshot rebuilt", extra={"records": len(self._engine)})
            return self._engine


snapshot_cache = SnapshotCache()
