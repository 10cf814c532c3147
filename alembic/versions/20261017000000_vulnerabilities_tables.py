"""Vulnerabilities table, risk-factor association table and store revision row.

Revision ID: 20261017000000
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261017000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_INDEXED_COLUMNS = (
    "cve",
    "severity_normalized",
    "kai_status",
    "group_name",
    "repo_name",
    "image_name",
    "published_at",
)


def upgrade() -> None:
    op.create_table(
        "vulnerabilities",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("source_id", sa.Text(), nullable=True),
        sa.Column("cve", sa.Text(), nullable=True),
        sa.Column("severity_raw", sa.Text(), nullable=True),
        sa.Column("severity_normalized", sa.String(length=16), nullable=False),
        sa.Column("severity_rank", sa.Integer(), nullable=False),
        sa.Column("cvss", sa.Float(), nullable=True),
        sa.Column("kai_status", sa.String(length=64), nullable=True),
        sa.Column("status", sa.Text(), nullable=True),
        sa.Column("risk_factors", sa.JSON(), nullable=False),
        sa.Column("group_name", sa.Text(), nullable=False, server_default=""),
        sa.Column("repo_name", sa.Text(), nullable=False, server_default=""),
        sa.Column("image_name", sa.Text(), nullable=False, server_default=""),
        sa.Column("package_name", sa.Text(), nullable=True),
        sa.Column("package_version", sa.Text(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.Column("fix_date", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in _INDEXED_COLUMNS:
        op.create_index(
            op.f(f"ix_vulnerabilities_{column}"),
            "vulnerabilities",
            [column],
            unique=False,
        )
    op.create_table(
        "vulnerability_risk_factors",
        sa.Column("vulnerability_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(
            ["vulnerability_id"],
            ["vulnerabilities.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("vulnerability_id", "name"),
    )
    op.create_index(
        op.f("ix_vulnerability_risk_factors_name"),
        "vulnerability_risk_factors",
        ["name"],
        unique=False,
    )
    op.create_table(
        "store_revision",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("revision", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("store_revision")
    op.drop_index(
        op.f("ix_vulnerability_risk_factors_name"),
        table_name="vulnerability_risk_factors",
    )
    op.drop_table("vulnerability_risk_factors")
    for column in reversed(_INDEXED_COLUMNS):
        op.drop_index(op.f(f"ix_vulnerabilities_{column}"), table_name="vulnerabilities")
    op.drop_table("vulnerabilities")
