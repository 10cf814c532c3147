"""Normalize raw nested vulnerability entries into canonical records."""

import math
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from app.schemas.vulnerability import (
    KAI_STATUS_AI_INVALID,
    KAI_STATUS_INVALID,
    SEVERITY_ORDER,
    CanonicalVulnerability,
    SeverityLevel,
    SourceContext,
)

_DEFAULT_SEVERITY: SeverityLevel = "UNKNOWN"

# Substring (upper-cased) -> bucket; checked in order, first hit wins.
_SEVERITY_MARKERS: tuple[tuple[str, SeverityLevel], ...] = (
    ("CRIT", "CRITICAL"),
    ("HIGH", "HIGH"),
    ("MED", "MEDIUM"),
    ("LOW", "LOW"),
)

# Upstream keys consulted for CVSS, in priority order.
_CVSS_KEYS = ("cvss", "cvssScore", "cvssBaseScore")

# Known review-status spellings (after canonicalisation) -> canonical tag.
_KAI_STATUS_VARIANTS: dict[str, str] = {
    "ai-invalid-norisk": KAI_STATUS_AI_INVALID,
    "ai invalid norisk": KAI_STATUS_AI_INVALID,
    "ai-invalid - norisk": KAI_STATUS_AI_INVALID,
    "invalid - norisk": KAI_STATUS_INVALID,
    "invalid-norisk": KAI_STATUS_INVALID,
    "invalid norisk": KAI_STATUS_INVALID,
}

_WHITESPACE = re.compile(r"\s+")


def normalize_severity(raw_severity: Any) -> SeverityLevel:
    """Map a free-form severity string to one of the five buckets by case-insensitive substring."""
    if raw_severity is None:
        return _DEFAULT_SEVERITY
    upper = str(raw_severity).upper()
    for marker, level in _SEVERITY_MARKERS:
        if marker in upper:
            return level
    return _DEFAULT_SEVERITY


def severity_rank(level: str) -> int:
    """Position of level in SEVERITY_ORDER; unknown labels rank with UNKNOWN."""
    try:
        return SEVERITY_ORDER.index(level)  # type: ignore[arg-type]
    except ValueError:
        return len(SEVERITY_ORDER) - 1


def _to_score(value: Any) -> float | None:
    """Coerce a number or numeric string to a finite float in [0, 10], else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(score) or not 0 <= score <= 10:
        return None
    return score


def coerce_cvss(entry: Mapping[str, Any]) -> float | None:
    """
    First usable score among cvss, cvssScore, cvssBaseScore.
    Out-of-range scores are treated as absent (provider error), not clamped.
    """
    for key in _CVSS_KEYS:
        score = _to_score(entry.get(key))
        if score is not None:
            return score
    return None


def extract_risk_factors(value: Any) -> list[str]:
    """
    Flatten the risk-factor field to a deduplicated list of names.

    Upstream sends either a list of names or an object whose keys are the names
    (values flag presence). Anything else yields an empty list.
    """
    if not value:
        return []
    if isinstance(value, Mapping):
        names = [key for key, flag in value.items() if key and flag]
    elif isinstance(value, (list, tuple)):
        names = [item for item in value if item]
    else:
        return []
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        text = str(name).strip()
        if text and text not in seen:
            seen.add(text)
            result.append(text)
    return result


def canonical_review_status(raw_status: Any) -> tuple[str | None, str | None]:
    """
    Return (kai_status, passthrough) for a raw review status.

    Known spellings map to one of the two canonical exclusion tags; anything else
    is returned verbatim as passthrough so it is kept but never matches the
    canonical exclusion filters.
    """
    if raw_status is None or raw_status == "":
        return None, None
    key = _WHITESPACE.sub(" ", str(raw_status).lower().replace("_", "-")).strip()
    if key in _KAI_STATUS_VARIANTS:
        return _KAI_STATUS_VARIANTS[key], None
    return None, str(raw_status)


def parse_date(value: Any) -> datetime | None:
    """
    Parse an ISO-8601 string or epoch milliseconds into a naive UTC datetime.
    Unparseable input returns None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def _str_or_none(value: Any) -> str | None:
    """Return string or None; coerce non-str scalars to str."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return None
    return str(value)


def _key_or_none(value: Any) -> str | None:
    """Like _str_or_none, but falsy upstream values (0, False) are absent."""
    return _str_or_none(value) if value else None


def _first(entry: Mapping[str, Any], *keys: str) -> Any:
    """Value of the first key that is present and not None/empty."""
    for key in keys:
        value = entry.get(key)
        if value is not None and value != "":
            return value
    return None


def build_record_id(context: SourceContext, base_key: str, ordinal: int) -> str:
    """group|repo|image|baseKey|ordinal; the ordinal suffix keeps ids unique when upstream ids collide."""
    return f"{context.group}|{context.repo}|{context.image}|{base_key}|{ordinal}"


def normalize(
    raw_entry: Any,
    context: SourceContext,
    ordinal: int,
) -> CanonicalVulnerability:
    """
    Convert one raw entry plus its group/repo/image context into a canonical record.

    Total: malformed or missing fields degrade to defaults (UNKNOWN severity,
    absent CVSS, no risk factors). Callers must pass a monotonically increasing
    ordinal per ingestion run so derived ids stay unique.
    """
    entry: Mapping[str, Any] = raw_entry if isinstance(raw_entry, Mapping) else {}

    source_id = _str_or_none(entry.get("id"))
    cve = _str_or_none(entry.get("cve"))
    base_key = _key_or_none(entry.get("id")) or _key_or_none(entry.get("cve")) or f"row-{ordinal}"

    severity_normalized = normalize_severity(entry.get("severity"))
    kai_status, status_passthrough = canonical_review_status(entry.get("kaiStatus"))

    return CanonicalVulnerability(
        id=build_record_id(context, base_key, ordinal),
        source_id=source_id,
        cve=cve,
        severity_raw=_str_or_none(entry.get("severity")),
        severity_normalized=severity_normalized,
        severity_rank=severity_rank(severity_normalized),
        cvss=coerce_cvss(entry),
        kai_status=kai_status,
        status=_str_or_none(entry.get("status")) or status_passthrough,
        risk_factors=extract_risk_factors(entry.get("riskFactors")),
        group_name=context.group or "",
        repo_name=context.repo or "",
        image_name=context.image or "",
        package_name=_str_or_none(_first(entry, "packageName", "package")),
        package_version=_str_or_none(_first(entry, "version", "packageVersion")),
        summary=_str_or_none(_first(entry, "summary", "description")),
        published_at=parse_date(entry.get("publishedAt")) or parse_date(entry.get("published")),
        fix_date=parse_date(entry.get("fixDate")),
    )
