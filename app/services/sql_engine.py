"""
SQL query strategy: filters, ordering and facets evaluated by the database.

Results match MemoryQueryEngine for the same records. Text ordering uses
code-point collation (SQLite BINARY; COLLATE "C" on PostgreSQL).
"""

from collections.abc import Iterator

from sqlalchemy import Float, Select, and_, case, exists, func, literal, literal_column, or_, select
from sqlalchemy.orm import Session, aliased
from sqlalchemy.sql.elements import ColumnElement

from app.models import Vulnerability, VulnerabilityRiskFactor
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
    NULLABLE_SORT_FIELDS,
    REPO_FACET_LIMIT,
    RISK_FACTOR_FACET_LIMIT,
    SEARCH_FIELDS,
    SUGGEST_FIELDS,
    TEXT_SORT_FIELDS,
    build_suggestion,
    canonical_kai_options,
    clean_options,
    lookup_candidates,
    pct_remain,
    sort_plan,
)
from app.services.store import row_to_record


def build_conditions(filters: FilterSpec) -> list[ColumnElement[bool]]:
    """WHERE clauses for every non-empty filter dimension."""
    v = Vulnerability
    conditions: list[ColumnElement[bool]] = []
    if filters.severities:
        conditions.append(v.severity_normalized.in_(sorted(filters.severities)))
    if filters.repo:
        conditions.append(v.repo_name == filters.repo)
    if filters.group:
        conditions.append(v.group_name == filters.group)
    if filters.kai_statuses:
        conditions.append(v.kai_status.in_(sorted(filters.kai_statuses)))
    if filters.kai_exclude:
        conditions.append(
            or_(
                v.kai_status.is_(None),
                func.trim(v.kai_status) == "",
                v.kai_status.not_in(sorted(filters.kai_exclude)),
            )
        )
    if filters.risk_factors:
        # Aliased: must not correlate with the FROM of the risk-factor facet query.
        factor = aliased(VulnerabilityRiskFactor)
        conditions.append(
            exists().where(
                factor.vulnerability_id == v.id,
                factor.name.in_(sorted(filters.risk_factors)),
            )
        )
    if filters.date_from is not None:
        conditions.append(v.published_at >= filters.date_from)
    if filters.date_to is not None:
        conditions.append(v.published_at <= filters.date_to)
    if filters.cvss_min is not None:
        conditions.append(v.cvss >= filters.cvss_min)
    if filters.cvss_max is not None:
        conditions.append(v.cvss <= filters.cvss_max)
    term = (filters.search or "").strip()
    if term:
        conditions.append(
            or_(*(getattr(v, f).icontains(term, autoescape=True) for f in SEARCH_FIELDS))
        )
    return conditions


class SqlQueryEngine:
    """Query strategy backed by the vulnerabilities tables."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._dialect = session.get_bind().dialect.name

    def _text(self, column):
        if self._dialect == "postgresql":
            return column.collate("C")
        return column

    def _month(self, column):
        # Inlined format: SELECT and GROUP BY must render the same expression.
        if self._dialect == "postgresql":
            return func.to_char(column, literal_column("'YYYY-MM'"))
        return func.strftime(literal_column("'%Y-%m'"), column)

    def _order_by(self, sort: SortSpec) -> list:
        clauses = []
        for term in sort_plan(sort):
            column = getattr(Vulnerability, term.field)
            if term.field in TEXT_SORT_FIELDS:
                column = self._text(column)
            clause = column.desc() if term.descending else column.asc()
            if term.field in NULLABLE_SORT_FIELDS:
                # Missing values are the lowest value in either direction.
                clause = clause.nulls_last() if term.descending else clause.nulls_first()
            clauses.append(clause)
        return clauses

    def _filtered(self, conditions: list[ColumnElement[bool]]) -> Select:
        return select(Vulnerability).where(*conditions)

    def _count(self, conditions: list[ColumnElement[bool]]) -> int:
        stmt = select(func.count()).select_from(Vulnerability).where(*conditions)
        return self.session.scalar(stmt) or 0

    def filtered_records(self, filters: FilterSpec, sort: SortSpec) -> Iterator[CanonicalVulnerability]:
        stmt = self._filtered(build_conditions(filters)).order_by(*self._order_by(sort))
        for row in self.session.scalars(stmt.execution_options(yield_per=1000)):
            yield row_to_record(row)

    def query(
        self,
        filters: FilterSpec,
        sort: SortSpec,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        include_facets: bool = True,
    ) -> QueryResult:
        conditions = build_conditions(filters)
        total = self._count(conditions)
        offset = (page - 1) * limit
        data: list[CanonicalVulnerability] = []
        if offset < total:
            stmt = (
                self._filtered(conditions)
                .order_by(*self._order_by(sort))
                .offset(offset)
                .limit(limit)
            )
            data = [row_to_record(row) for row in self.session.scalars(stmt)]
        result = QueryResult(data=data, page=page, limit=limit, total=total)
        if not include_facets:
            return result
        return result.model_copy(
            update={
                "metrics": self._metrics(conditions, total),
                "options": self._options(conditions),
            }
        )

    def _severity_counts(self, conditions) -> list[NameCount]:
        stmt = (
            select(Vulnerability.severity_normalized, func.count())
            .where(*conditions)
            .group_by(Vulnerability.severity_normalized)
        )
        counts = dict(self.session.execute(stmt).all())
        return [NameCount(name=level, value=counts.get(level, 0)) for level in SEVERITY_ORDER]

    def _risk_factor_counts(self, conditions) -> list[NameCount]:
        name = VulnerabilityRiskFactor.name
        value = func.count()
        stmt = (
            select(name, value)
            .join(Vulnerability, Vulnerability.id == VulnerabilityRiskFactor.vulnerability_id)
            .where(*conditions)
            .group_by(name)
            .order_by(value.desc(), self._text(name).asc())
            .limit(RISK_FACTOR_FACET_LIMIT)
        )
        return [NameCount(name=n, value=c) for n, c in self.session.execute(stmt).all()]

    def _repo_counts(self, conditions) -> list[NameCount]:
        repo = Vulnerability.repo_name
        value = func.count()
        stmt = (
            select(repo, value)
            .where(*conditions)
            .group_by(repo)
            .order_by(value.desc(), self._text(repo).asc())
            .limit(REPO_FACET_LIMIT)
        )
        return [NameCount(name=n, value=c) for n, c in self.session.execute(stmt).all()]

    def _trend(self, conditions) -> list[TrendPoint]:
        month = self._month(Vulnerability.published_at).label("month")
        stmt = (
            select(month, Vulnerability.severity_normalized, func.count())
            .where(Vulnerability.published_at.is_not(None), *conditions)
            .group_by(month, Vulnerability.severity_normalized)
        )
        months: dict[str, dict[str, int]] = {}
        for month_value, level, count in self.session.execute(stmt).all():
            months.setdefault(month_value, {})[level] = count
        return [
            TrendPoint(
                month=month_value,
                critical=counts.get("CRITICAL", 0),
                high=counts.get("HIGH", 0),
                medium=counts.get("MEDIUM", 0),
                low=counts.get("LOW", 0),
                unknown=counts.get("UNKNOWN", 0),
                total=sum(counts.values()),
            )
            for month_value, counts in sorted(months.items())
        ]

    def _ai_manual(self, conditions) -> list[AiManualPoint]:
        is_ai = func.lower(func.coalesce(Vulnerability.kai_status, "")).like(f"%{AI_STATUS_MARKER}%")
        stmt = (
            select(
                Vulnerability.severity_normalized,
                func.sum(case((is_ai, 1), else_=0)),
                func.sum(case((is_ai, 0), else_=1)),
            )
            .where(*conditions)
            .group_by(Vulnerability.severity_normalized)
        )
        rows = {level: (ai or 0, manual or 0) for level, ai, manual in self.session.execute(stmt).all()}
        points = []
        for level in SEVERITY_ORDER:
            ai, manual = rows.get(level, (0, 0))
            points.append(AiManualPoint(label=level, ai=ai, manual=manual))
        return points

    def _highlights(self, conditions) -> list[CanonicalVulnerability]:
        stmt = (
            self._filtered(conditions)
            .order_by(
                Vulnerability.severity_rank.asc(),
                func.coalesce(Vulnerability.cvss, literal(-1.0, Float)).desc(),
                self._text(Vulnerability.id).asc(),
            )
            .limit(HIGHLIGHT_LIMIT)
        )
        return [row_to_record(row) for row in self.session.scalars(stmt)]

    def _metrics(self, conditions, remain: int) -> Metrics:
        total = self._count([])
        return Metrics(
            severity_counts=self._severity_counts(conditions),
            risk_factors=self._risk_factor_counts(conditions),
            trend=self._trend(conditions),
            ai_manual=self._ai_manual(conditions),
            highlights=self._highlights(conditions),
            repo_summary=self._repo_counts(conditions),
            kpis=Kpis(
                total=total,
                remain=remain,
                removed=max(total - remain, 0),
                pct_remain=pct_remain(total, remain),
            ),
        )

    def _distinct(self, column) -> list[str | None]:
        return list(self.session.scalars(select(column).distinct()))

    def _options(self, conditions) -> Options:
        low, high = self.session.execute(
            select(func.min(Vulnerability.cvss), func.max(Vulnerability.cvss)).where(
                Vulnerability.cvss.is_not(None), *conditions
            )
        ).one()
        if low is None or high is None:
            low, high = CVSS_RANGE_DEFAULT
        return Options(
            kai_statuses=canonical_kai_options(self._distinct(Vulnerability.kai_status)),
            risk_factors=clean_options(self._distinct(VulnerabilityRiskFactor.name)),
            repos=clean_options(self._distinct(Vulnerability.repo_name)),
            groups=clean_options(self._distinct(Vulnerability.group_name)),
            packages=clean_options(self._distinct(Vulnerability.package_name)),
            cvss_range=CvssRange(min=float(low), max=float(high)),
        )

    def suggest(self, term: str, limit: int = DEFAULT_SUGGEST_LIMIT) -> list[Suggestion]:
        needle = (term or "").strip()
        if not needle:
            return []
        if limit < 1:
            limit = DEFAULT_SUGGEST_LIMIT
        v = Vulnerability
        stmt = (
            select(v.id, v.cve, v.package_name, v.repo_name, v.image_name)
            .where(or_(*(getattr(v, f).icontains(needle, autoescape=True) for f in SUGGEST_FIELDS)))
            .order_by(self._text(v.id).asc())
            .execution_options(yield_per=500)
        )
        suggestions: list[Suggestion] = []
        seen: set[str] = set()
        result = self.session.execute(stmt)
        try:
            for record_id, cve, package_name, repo_name, image_name in result:
                key = cve or record_id
                if key in seen:
                    continue
                seen.add(key)
                suggestions.append(build_suggestion(key, package_name, repo_name, image_name))
                if len(suggestions) >= limit:
                    break
        finally:
            result.close()
        return suggestions

    def lookup(self, identifier: str) -> CanonicalVulnerability | None:
        key = (identifier or "").strip()
        if not key:
            return None
        row = self.session.get(Vulnerability, key)
        if row is None:
            row = self.session.scalars(
                select(Vulnerability)
                .where(and_(Vulnerability.cve.is_not(None), Vulnerability.cve.in_(lookup_candidates(key))))
                .order_by(self._text(Vulnerability.id).asc())
                .limit(1)
            ).first()
        return row_to_record(row) if row is not None else None
