"""Pydantic schemas for canonical vulnerability records and the source context they are flattened from."""

from datetime import datetime
from typing import Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Fixed severity buckets; position is the severity rank (0 = most severe).
SeverityLevel = Literal["CRITICAL", "HIGH", "MEDIUM", "LOW", "UNKNOWN"]

SEVERITY_ORDER: tuple[SeverityLevel, ...] = ("CRITICAL", "HIGH", "MEDIUM", "LOW", "UNKNOWN")

# The two canonical analysis-exclusion review statuses.
KAI_STATUS_AI_INVALID = "ai-invalid-norisk"
KAI_STATUS_INVALID = "invalid - norisk"
CANONICAL_KAI_STATUSES: frozenset[str] = frozenset({KAI_STATUS_AI_INVALID, KAI_STATUS_INVALID})


class CamelModel(BaseModel):
    """Base for API-facing models: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SourceContext(NamedTuple):
    """Group/repository/image a raw entry was found under."""

    group: str = ""
    repo: str = ""
    image: str = ""


class CanonicalVulnerability(CamelModel):
    """Flattened, normalized representation of one vulnerability finding."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Derived key group|repo|image|baseKey|ordinal; unique within the store.",
    )
    source_id: str | None = Field(
        default=None,
        description="Upstream identifier, kept for traceability (not unique).",
    )
    cve: str | None = Field(default=None, description="CVE identifier, if supplied.")
    severity_raw: str | None = Field(default=None, description="Severity as supplied upstream.")
    severity_normalized: SeverityLevel = Field(
        default="UNKNOWN",
        description="Severity bucket derived from severity_raw.",
    )
    severity_rank: int = Field(
        default=4,
        ge=0,
        le=4,
        description="Index of severity_normalized in SEVERITY_ORDER.",
    )
    cvss: float | None = Field(default=None, description="CVSS score in range 0.0–10.0.")
    kai_status: str | None = Field(
        default=None,
        description="Canonical review status (one of the analysis-exclusion tags) or None.",
    )
    status: str | None = Field(
        default=None,
        description="Upstream status, or the verbatim review status when it is not canonical.",
    )
    risk_factors: list[str] = Field(
        default_factory=list,
        description="Deduplicated, non-empty risk factor names in source order.",
    )
    group_name: str = ""
    repo_name: str = ""
    image_name: str = ""
    package_name: str | None = None
    package_version: str | None = None
    summary: str | None = None
    published_at: datetime | None = None
    fix_date: datetime | None = None

    @field_validator("cvss")
    @classmethod
    def validate_cvss(cls, v: float | None) -> float | None:
        if v is not None and not 0 <= v <= 10:
            raise ValueError("cvss must be between 0 and 10")
        return v

    @model_validator(mode="after")
    def validate_severity_rank(self) -> "CanonicalVulnerability":
        if SEVERITY_ORDER[self.severity_rank] != self.severity_normalized:
            raise ValueError(
                f"severity_rank {self.severity_rank} does not match {self.severity_normalized!r}"
            )
        return self
