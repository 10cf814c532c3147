"""Parse discrete request parameters into FilterSpec/SortSpec. Malformed input means "no constraint"."""

import math
from collections.abc import Sequence
from datetime import datetime

from app.schemas.query import SORT_KEYS, FilterSpec, SortSpec
from app.services.normalize import parse_date
from app.services.query_engine import DEFAULT_PAGE_SIZE, MAX_PAGE, MAX_PAGE_SIZE

ListParam = str | Sequence[str] | None


def parse_list_param(value: ListParam) -> list[str]:
    """Comma-separated string (or repeated values) -> trimmed, non-empty items."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [part for v in value for part in str(v).split(",")]
    return [item.strip() for item in items if item.strip()]


def parse_number(value: str | float | None) -> float | None:
    """Finite float or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_date_param(value: str | float | None) -> datetime | None:
    """Epoch milliseconds (what the dashboard sends) or an ISO-8601 date."""
    number = parse_number(value)
    if number is not None:
        return parse_date(number)
    if isinstance(value, str):
        return parse_date(value)
    return None


def _text_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_filter_params(
    *,
    severity: ListParam = None,
    repo: str | None = None,
    group: str | None = None,
    kai_status: ListParam = None,
    kai_exclude: ListParam = None,
    risk_factor: ListParam = None,
    date_from: str | float | None = None,
    date_to: str | float | None = None,
    cvss_min: str | float | None = None,
    cvss_max: str | float | None = None,
    search: str | None = None,
) -> FilterSpec:
    """Build a FilterSpec; unparseable numbers and dates are dropped rather than rejected."""
    return FilterSpec(
        severities=frozenset(s.upper() for s in parse_list_param(severity)),
        repo=_text_or_none(repo),
        group=_text_or_none(group),
        kai_statuses=frozenset(parse_list_param(kai_status)),
        kai_exclude=frozenset(parse_list_param(kai_exclude)),
        risk_factors=frozenset(parse_list_param(risk_factor)),
        date_from=parse_date_param(date_from),
        date_to=parse_date_param(date_to),
        cvss_min=parse_number(cvss_min),
        cvss_max=parse_number(cvss_max),
        search=_text_or_none(search),
    )


def parse_sort_params(sort: str | None = None, direction: str | None = None) -> SortSpec:
    """Unknown keys fall back to severity, unknown directions to desc."""
    key = (sort or "").strip()
    if key not in SORT_KEYS:
        key = "severity"
    direction_value = (direction or "").strip().lower()
    if direction_value not in ("asc", "desc"):
        direction_value = "desc"
    return SortSpec(key=key, direction=direction_value)


def parse_page_params(
    page: str | int | None,
    limit: str | int | None,
    default_limit: int = DEFAULT_PAGE_SIZE,
    max_limit: int = MAX_PAGE_SIZE,
) -> tuple[int, int]:
    """1-based page in [1, MAX_PAGE] and a page size in [1, max_limit]."""
    page_number = parse_number(page)
    page_value = int(page_number) if page_number is not None else 1
    limit_number = parse_number(limit)
    limit_value = int(limit_number) if limit_number is not None else default_limit
    if page_value < 1:
        page_value = 1
    page_value = min(page_value, MAX_PAGE)
    if limit_value < 1:
        limit_value = default_limit
    return page_value, min(limit_value, max_limit)
