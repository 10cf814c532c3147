"""SQLAlchemy ORM models."""

from app.models.vulnerability import Base, StoreRevision, Vulnerability, VulnerabilityRiskFactor

__all__ = ["Base", "StoreRevision", "Vulnerability", "VulnerabilityRiskFactor"]
