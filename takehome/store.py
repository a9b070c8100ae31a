"""
store.py — Data access facade for ruleset snapshots.

Provides a consistent, high-level API for persisting and retrieving resolved rules.
Routes and the RuleSetProvider use these functions — nothing else touches SQLAlchemy directly.

Design principles:
  - All functions are async and accept an AsyncSession parameter
  - No raw SQL: ORM-only queries
  - Logs only fiscal_year / source / snapshot id — never rule payloads
  - Returns domain Pydantic objects (not ORM instances) so callers are persistence-agnostic

The core never stores calculation results — only the rules that produced them.
"""
import logging
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from takehome.models.ruleset_snapshot import RuleSetSnapshotORM
from takehome.rules.schemas import ResolvedRuleSet

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Snapshot operations
# ---------------------------------------------------------------------------

async def save_ruleset_snapshot(db: AsyncSession, resolved: ResolvedRuleSet) -> str:
    """
    Append a snapshot of a freshly resolved RuleSet.

    Returns the snapshot id.
    Uses flush() (not commit()) — caller / get_db() dependency handles commit.
    """
    orm = RuleSetSnapshotORM(
        fiscal_year=resolved.rules.fiscal_year,
        source=resolved.source,
        resolved_at=resolved.resolved_at,
        rules_data=resolved.rules.model_dump(mode="json"),
    )
    db.add(orm)
    await db.flush()
    logger.info(
        "Saved ruleset snapshot id=%s fiscal_year=%s source=%s",
        orm.id, resolved.rules.fiscal_year, resolved.source,
    )
    return orm.id


async def get_latest_snapshot(
    db: AsyncSession,
    fiscal_year: str,
) -> Optional[ResolvedRuleSet]:
    """
    Retrieve the most recently resolved snapshot for fiscal_year.
    Returns None if none was ever persisted (caller raises 404).
    """
    result = await db.execute(
        select(RuleSetSnapshotORM)
        .where(RuleSetSnapshotORM.fiscal_year == fiscal_year)
        .order_by(RuleSetSnapshotORM.resolved_at.desc(), RuleSetSnapshotORM.created_at.desc())
        .limit(1)
    )
    orm = result.scalar_one_or_none()
    if orm is None:
        return None
    return ResolvedRuleSet.model_validate(
        {"rules": orm.rules_data, "source": orm.source, "resolved_at": orm.resolved_at}
    )


def make_snapshot_sink(session_factory: Callable[[], AsyncSession]):
    """
    Build the RuleSetProvider snapshot sink: each call opens its own session,
    saves one snapshot and commits. Used from the lifespan with AsyncSessionLocal.
    """
    async def _sink(resolved: ResolvedRuleSet) -> None:
        async with session_factory() as session:
            await save_ruleset_snapshot(session, resolved)
            await session.commit()

    return _sink
