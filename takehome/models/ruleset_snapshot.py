"""
models/ruleset_snapshot.py — SQLAlchemy ORM model for resolved ruleset snapshots.

Table: ruleset_snapshots
Append-only: one row per fresh resolution (cache hits are not recorded), so any
historical breakdown can be reproduced from the rules that were in force.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from takehome.database import Base


class RuleSetSnapshotORM(Base):
    """
    ORM model for one resolved RuleSet.

    rules_data: Full RuleSet serialized as JSONB on PostgreSQL (plain JSON elsewhere).
    source / resolved_at: the provenance reported in calculate() metadata.
    """
    __tablename__ = "ruleset_snapshots"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    fiscal_year: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        index=True,
        comment="Fiscal year the rules apply to, e.g. '2025-26'",
    )
    source: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="'remote', 'fiscal-default' or 'generic-default'",
    )
    resolved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    rules_data: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        comment="Full RuleSet as resolved and validated",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
