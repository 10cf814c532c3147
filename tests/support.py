"""Shared builders for tests: in-memory SQLite stores and canonical records."""

from datetime import datetime
from typing import Any

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.database import build_engine, init_db
from app.schemas.vulnerability import CanonicalVulnerability
from app.services.normalize import severity_rank
from app.services.store import VulnerabilityStore


def make_engine() -> Engine:
    """Fresh in-memory SQLite database with all tables created."""
    engine = build_engine("sqlite://")
    init_db(engine)
    return engine


def make_store() -> tuple[VulnerabilityStore, sessionmaker[Session], Engine]:
    engine = make_engine()
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return VulnerabilityStore(session_factory), session_factory, engine


def record(
    record_id: str,
    severity: str = "UNKNOWN",
    cvss: float | None = None,
    published_at: datetime | None = None,
    **fields: Any,
) -> CanonicalVulnerability:
    """Canonical record with a consistent severity rank."""
    return CanonicalVulnerability(
        id=record_id,
        severity_normalized=severity,
        severity_rank=severity_rank(severity),
        cvss=cvss,
        published_at=published_at,
        **fields,
    )
