"""CSV/JSON export of a filtered record set."""

import csv
import io
import json
from collections.abc import Iterable, Iterator
from datetime import datetime

from app.schemas.vulnerability import CanonicalVulnerability

CSV_HEADERS: tuple[str, ...] = (
    "id",
    "cve",
    "severity",
    "cvss",
    "groupName",
    "repoName",
    "imageName",
    "package",
    "kaiStatus",
    "riskFactors",
    "publishedAt",
)
RISK_FACTOR_SEPARATOR = "; "
CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
JSON_MEDIA_TYPE = "application/json; charset=utf-8"


def _format_date(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ") if value is not None else ""


def csv_row(record: CanonicalVulnerability) -> list[str]:
    return [
        record.id,
        record.cve or "",
        record.severity_normalized,
        f"{record.cvss:g}" if record.cvss is not None else "",
        record.group_name,
        record.repo_name,
        record.image_name,
        record.package_name or "",
        record.kai_status or "",
        RISK_FACTOR_SEPARATOR.join(record.risk_factors),
        _format_date(record.published_at),
    ]


def iter_csv(records: Iterable[CanonicalVulnerability]) -> Iterator[str]:
    """
    Yield CSV text: header first, then one line per record. Lines end in CRLF;
    fields are quoted only when they contain a comma, quote, CR or LF.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\r\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(CSV_HEADERS)
    yield buffer.getvalue()
    for record in records:
        buffer.seek(0)
        buffer.truncate()
        writer.writerow(csv_row(record))
        yield buffer.getvalue()


def export_csv(records: Iterable[CanonicalVulnerability]) -> str:
    # No line terminator after the last row.
    return "".join(iter_csv(records)).removesuffix("\r\n")


def export_json(records: Iterable[CanonicalVulnerability]) -> str:
    """Records as a pretty-printed JSON array of camelCase objects."""
    return json.dumps(
        [r.model_dump(mode="json", by_alias=True) for r in records],
        indent=2,
        ensure_ascii=False,
    )
