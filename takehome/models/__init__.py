"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.
"""
from takehome.models.ruleset_snapshot import RuleSetSnapshotORM

__all__ = ["RuleSetSnapshotORM"]
