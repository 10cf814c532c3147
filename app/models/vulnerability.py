"""ORM models for canonical vulnerability records, their risk factors and the store revision."""

from sqlalchemy import JSON, BigInteger, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class Vulnerability(Base):
    """
    One canonical vulnerability record, keyed by its derived id.

    Rows are written only by the ingestion pipeline (upsert by id) and removed
    only by a full store reset.
    """

    __tablename__ = "vulnerabilities"

    # Upstream strings are unbounded; only normalized columns have fixed widths.
    id = Column(Text, primary_key=True)
    source_id = Column(Text, nullable=True)
    cve = Column(Text, nullable=True, index=True)
    severity_raw = Column(Text, nullable=True)
    severity_normalized = Column(String(16), nullable=False, index=True)
    severity_rank = Column(Integer, nullable=False)
    cvss = Column(Float, nullable=True)
    kai_status = Column(String(64), nullable=True, index=True)
    status = Column(Text, nullable=True)
    # Ordered list for display; filtering uses vulnerability_risk_factors.
    risk_factors = Column(JSON, nullable=False, default=list)
    group_name = Column(Text, nullable=False, default="", index=True)
    repo_name = Column(Text, nullable=False, default="", index=True)
    image_name = Column(Text, nullable=False, default="", index=True)
    package_name = Column(Text, nullable=True)
    package_version = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    published_at = Column(DateTime, nullable=True, index=True)
    fix_date = Column(DateTime, nullable=True)


class VulnerabilityRiskFactor(Base):
    """One (record, risk factor) pair; lets risk-factor filters and facets run in SQL."""

    __tablename__ = "vulnerability_risk_factors"

    vulnerability_id = Column(
        Text,
        ForeignKey("vulnerabilities.id", ondelete="CASCADE"),
        primary_key=True,
    )
    name = Column(Text, primary_key=True, index=True)


class StoreRevision(Base):
    """Single row whose revision increments with every committed write to the store."""

    __tablename__ = "store_revision"

    id = Column(Integer, primary_key=True)
    revision = Column(BigInteger, nullable=False, default=0)
