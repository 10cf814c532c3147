"""Persistent keyed store for canonical vulnerability records."""

import logging
from collections.abc import Iterator, Sequence
from functools import lru_cache
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from app.core.database import SessionLocal
from app.models import StoreRevision, Vulnerability, VulnerabilityRiskFactor
from app.schemas.vulnerability import CanonicalVulnerability
from app.services.errors import DuplicateKeyCollision

logger = logging.getLogger(__name__)

# Columns copied between CanonicalVulnerability and the vulnerabilities table.
RECORD_COLUMNS: tuple[str, ...] = (
    "id",
    "source_id",
    "cve",
    "severity_raw",
    "severity_normalized",
    "severity_rank",
    "cvss",
    "kai_status",
    "status",
    "risk_factors",
    "group_name",
    "repo_name",
    "image_name",
    "package_name",
    "package_version",
    "summary",
    "published_at",
    "fix_date",
)

_REVISION_ROW_ID = 1

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def record_to_row(record: CanonicalVulnerability) -> dict[str, Any]:
    return {column: getattr(record, column) for column in RECORD_COLUMNS}


def row_to_record(row: Vulnerability) -> CanonicalVulnerability:
    data = {column: getattr(row, column) for column in RECORD_COLUMNS}
    data["risk_factors"] = list(data["risk_factors"] or [])
    return CanonicalVulnerability.model_validate(data)


class VulnerabilityStore:
    """
    Keyed store over the vulnerabilities tables.

    Each upsert_batch call is one transaction, so concurrent readers see either
    none or all of a batch. Records are replaced by id; nothing else mutates them.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def count(self) -> int:
        """Number of records currently persisted."""
        with self._session_factory() as session:
            return session.scalar(select(func.count()).select_from(Vulnerability)) or 0

    def revision(self) -> int:
        """Counter bumped in the same transaction as every upsert_batch and reset."""
        with self._session_factory() as session:
            stmt = select(StoreRevision.revision).where(StoreRevision.id == _REVISION_ROW_ID)
            return session.scalar(stmt) or 0

    @staticmethod
    def _bump_revision(session: Session) -> None:
        bumped = session.execute(
            update(StoreRevision)
            .where(StoreRevision.id == _REVISION_ROW_ID)
            .values(revision=StoreRevision.revision + 1)
        ).rowcount
        if not bumped:
            session.add(StoreRevision(id=_REVISION_ROW_ID, revision=1))

    def upsert_batch(self, records: Sequence[CanonicalVulnerability]) -> int:
        """
        Insert or replace records by id in one transaction, refreshing their risk-factor rows.

        Raises DuplicateKeyCollision if the batch repeats an id.
        """
        if not records:
            return 0
        rows = [record_to_row(r) for r in records]
        ids = [row["id"] for row in rows]
        seen: set[str] = set()
        for record_id in ids:
            if record_id in seen:
                raise DuplicateKeyCollision(
                    f"Record id repeated within one batch: {record_id}", record_id
                )
            seen.add(record_id)
        factor_rows = [
            {"vulnerability_id": record.id, "name": name}
            for record in records
            for name in record.risk_factors
        ]

        with self._session_factory() as session, session.begin():
            self._upsert_rows(session, rows)
            session.execute(
                delete(VulnerabilityRiskFactor).where(VulnerabilityRiskFactor.vulnerability_id.in_(ids))
            )
            if factor_rows:
                session.execute(VulnerabilityRiskFactor.__table__.insert(), factor_rows)
            self._bump_revision(session)
        return len(rows)

    @staticmethod
    def _upsert_rows(session: Session, rows: list[dict[str, Any]]) -> None:
        insert = _UPSERT_DIALECTS.get(session.get_bind().dialect.name)
        if insert is None:
            for row in rows:
                session.merge(Vulnerability(**row))
            return
        stmt = insert(Vulnerability)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Vulnerability.id],
            set_={column: stmt.excluded[column] for column in RECORD_COLUMNS if column != "id"},
        )
        session.execute(stmt, rows)

    def get(self, record_id: str) -> CanonicalVulnerability | None:
        with self._session_factory() as session:
            row = session.get(Vulnerability, record_id)
            return row_to_record(row) if row is not None else None

    def iter_records(self, chunk_size: int = 1000) -> Iterator[CanonicalVulnerability]:
        """All records in id order, fetched chunk_size rows at a time."""
        with self._session_factory() as session:
            result = session.execute(
                select(Vulnerability).order_by(Vulnerability.id).execution_options(yield_per=chunk_size)
            )
            for row in result.scalars():
                yield row_to_record(row)

    def reset(self) -> int:
        """Delete every record. Returns the number removed."""
        with self._session_factory() as session, session.begin():
            session.execute(delete(VulnerabilityRiskFactor))
            deleted = session.execute(delete(Vulnerability)).rowcount or 0
            self._bump_revision(session)
        logger.info("Store reset", extra={"records_deleted": deleted})
        return deleted


@lru_cache
def get_store() -> VulnerabilityStore:
    """Process-wide store bound to the application database (safe to call from dependencies)."""
    return VulnerabilityStore(SessionLocal)
