"""ruleset_snapshots

Revision ID: 001_ruleset_snapshots
Revises:
Create Date: 2026-10-18 00:00:00.000000 UTC

Creates the ruleset_snapshots table: one append-only row per fresh RuleSet
resolution, so any breakdown can be reproduced from the rules in force.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_ruleset_snapshots"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "ruleset_snapshots",
        sa.Column("id", sa.String(36), nullable=False, comment="UUID row identifier"),
        sa.Column(
            "fiscal_year", sa.String(16), nullable=False,
            comment="Fiscal year the rules apply to, e.g. '2025-26'",
        ),
        sa.Column(
            "source", sa.String(32), nullable=False,
            comment="'remote', 'fiscal-default' or 'generic-default'",
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "rules_data",
            sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql"),
            nullable=False,
            comment="Full RuleSet as resolved and validated",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_ruleset_snapshots_fiscal_year",
        "ruleset_snapshots",
        ["fiscal_year"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_ruleset_snapshots_fiscal_year", table_name="ruleset_snapshots")
    op.drop_table("ruleset_snapshots")
