"""
provider.py — RuleSetProvider: fiscal year → validated RuleSet with provenance.

Resolution order for a fiscal year (first success wins):
  1. In-process cache, entry younger than the TTL (default 7 days) — no I/O
  2. Shared Redis tier (optional), re-validated on read
  3. Remote structured document (settings.ruleset_remote_url)
  4. Bundled tax-rules-<FY>.json            → source "fiscal-default"
  5. Bundled tax-rules-default.json         → source "generic-default"

Every candidate document is validated before it is accepted; a candidate that
fails validation is skipped exactly like one that could not be fetched. If all
of 3–5 fail, RuleSetUnavailable carries one reason per source.

Single-flight: concurrent misses for the same fiscal year share one asyncio
Task, so steps 2–5 run once and every waiter gets the same ResolvedRuleSet (or
the same exception). Misses for different fiscal years do not wait on each other.

After a fresh resolution the result is written to Redis and handed to the
snapshot sink (store.save_ruleset_snapshot in the app) for reproducibility.
Both are best-effort: a failure there is logged, the caller still gets rules.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from takehome import cache
from takehome.config import settings
from takehome.errors import RemoteRulesError, RuleSetInvalid, RuleSetUnavailable
from takehome.rules import fetcher
from takehome.rules.schemas import (
    SOURCE_FISCAL_DEFAULT,
    SOURCE_GENERIC_DEFAULT,
    SOURCE_REMOTE,
    ResolvedRuleSet,
    RuleSource,
)
from takehome.rules.validator import validate_rules

logger = logging.getLogger(__name__)

SnapshotSink = Callable[[ResolvedRuleSet], Awaitable[None]]
RemoteFetch = Callable[[str], Awaitable[Optional[dict]]]


@dataclass(frozen=True)
class _CacheEntry:
    resolved: ResolvedRuleSet
    loaded_at: float   # epoch seconds, same clock as the provider


class RuleSetProvider:
    """
    Resolves and caches RuleSets per fiscal year.

    One instance per process (created in the FastAPI lifespan, stored on
    app.state.rules_provider). All collaborators are injectable so tests can
    drive the fallback chain without network, Redis or a database.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        redis_client=None,
        snapshot_sink: Optional[SnapshotSink] = None,
        remote_fetch: RemoteFetch = fetcher.fetch_remote_rules,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = float(ttl_seconds if ttl_seconds is not None else settings.ruleset_cache_ttl_seconds)
        self._redis = redis_client
        self._snapshot_sink = snapshot_sink
        self._remote_fetch = remote_fetch
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    @property
    def ttl_ms(self) -> int:
        return int(self._ttl * 1000)

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def resolve(self, fiscal_year: str) -> ResolvedRuleSet:
        """
        Return the RuleSet for fiscal_year.

        Raises:
            RuleSetUnavailable: remote, fiscal-year default and generic default
                all failed to produce a valid document.
        """
        entry = self._entries.get(fiscal_year)
        if entry is not None and self._clock() - entry.loaded_at < self._ttl:
            logger.debug("Ruleset memory cache hit fy=%s", fiscal_year)
            return entry.resolved

        task = self._inflight.get(fiscal_year)
        if task is None:
            task = asyncio.ensure_future(self._resolve_uncached(fiscal_year))
            self._inflight[fiscal_year] = task
            task.add_done_callback(functools.partial(self._forget_inflight, fiscal_year))
        else:
            logger.debug("Joining in-flight ruleset resolution fy=%s", fiscal_year)
        # shield: one impatient caller must not cancel the load for everyone else
        return await asyncio.shield(task)

    async def invalidate(self, fiscal_year: str) -> None:
        """Drop fiscal_year from the in-process cache and the shared tier."""
        self._entries.pop(fiscal_year, None)
        await self._delete_shared(fiscal_year)
        logger.info("Ruleset cache invalidated fy=%s", fiscal_year)

    async def invalidate_all(self) -> None:
        self._entries.clear()
        await self._delete_shared(None)
        logger.info("Ruleset cache invalidated for all fiscal years")

    async def refresh(self, fiscal_year: str) -> ResolvedRuleSet:
        """Force a reload: invalidate, then resolve."""
        await self.invalidate(fiscal_year)
        return await self.resolve(fiscal_year)

    def status(self) -> Dict[str, dict]:
        """Per fiscal year: age, TTL and whether the entry has expired (milliseconds)."""
        now = self._clock()
        report = {}
        for fiscal_year in sorted(self._entries):
            age = now - self._entries[fiscal_year].loaded_at
            report[fiscal_year] = {
                "age_ms": int(age * 1000),
                "ttl_ms": self.ttl_ms,
                "expired": age >= self._ttl,
            }
        return report

    # -----------------------------------------------------------------------
    # Resolution (runs once per fiscal year per miss: single-flight task body)
    # -----------------------------------------------------------------------

    def _forget_inflight(self, fiscal_year: str, task: asyncio.Task) -> None:
        if self._inflight.get(fiscal_year) is task:
            del self._inflight[fiscal_year]
        if not task.cancelled():
            task.exception()   # mark retrieved; waiters re-raise it themselves

    async def _resolve_uncached(self, fiscal_year: str) -> ResolvedRuleSet:
        shared = await self._read_shared(fiscal_year)
        if shared is not None:
            self._entries[fiscal_year] = _CacheEntry(shared, shared.resolved_at.timestamp())
            return shared

        logger.info("Resolving tax rules fy=%s", fiscal_year)
        resolved = await self._load_from_sources(fiscal_year)
        self._entries[fiscal_year] = _CacheEntry(resolved, resolved.resolved_at.timestamp())
        logger.info(
            "Resolved tax rules fy=%s source=%s regimes=%s",
            fiscal_year, resolved.source, ",".join(resolved.rules.regimes),
        )
        await self._write_shared(resolved)
        await self._persist_snapshot(resolved)
        return resolved

    def _accept(self, document: dict, fiscal_year: str, source: RuleSource) -> ResolvedRuleSet:
        rules = validate_rules(document, fiscal_year, source)
        resolved_at = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return ResolvedRuleSet(rules=rules, source=source, resolved_at=resolved_at)

    async def _load_from_sources(self, fiscal_year: str) -> ResolvedRuleSet:
        reasons: List[str] = []

        # --- 1. Remote structured document ---
        try:
            document = await self._remote_fetch(fiscal_year)
        except RemoteRulesError as exc:
            logger.warning("Remote tax rules unavailable fy=%s: %s", fiscal_year, exc)
            reasons.append(f"{SOURCE_REMOTE}: {exc}")
        else:
            if document is None:
                reasons.append(f"{SOURCE_REMOTE}: not configured")
            else:
                try:
                    return self._accept(document, fiscal_year, SOURCE_REMOTE)
                except RuleSetInvalid as exc:
                    reasons.append(f"{SOURCE_REMOTE}: {exc.reason}")

        # --- 2. Bundled fiscal-year document ---
        try:
            document = fetcher.load_fiscal_default(fiscal_year)
        except (OSError, ValueError) as exc:
            logger.warning("Bundled tax rules for fy=%s unreadable: %s", fiscal_year, exc)
            reasons.append(f"{SOURCE_FISCAL_DEFAULT}: {exc}")
        else:
            if document is None:
                reasons.append(f"{SOURCE_FISCAL_DEFAULT}: not bundled")
            else:
                try:
                    return self._accept(document, fiscal_year, SOURCE_FISCAL_DEFAULT)
                except RuleSetInvalid as exc:
                    reasons.append(f"{SOURCE_FISCAL_DEFAULT}: {exc.reason}")

        # --- 3. Bundled generic document ---
        try:
            document = fetcher.load_generic_default()
            return self._accept(document, fiscal_year, SOURCE_GENERIC_DEFAULT)
        except RuleSetInvalid as exc:
            reasons.append(f"{SOURCE_GENERIC_DEFAULT}: {exc.reason}")
        except (OSError, ValueError) as exc:
            logger.error("Generic bundled tax rules unreadable: %s", exc)
            reasons.append(f"{SOURCE_GENERIC_DEFAULT}: {exc}")

        logger.error("No valid tax rules for fy=%s: %s", fiscal_year, " | ".join(reasons))
        raise RuleSetUnavailable(fiscal_year, reasons)

    # -----------------------------------------------------------------------
    # Best-effort side channels: shared cache + snapshot
    # -----------------------------------------------------------------------

    async def _read_shared(self, fiscal_year: str) -> Optional[ResolvedRuleSet]:
        if self._redis is None:
            return None
        try:
            raw = await cache.get_cached_ruleset(self._redis, fiscal_year)
        except RedisError as exc:
            logger.warning("Redis read failed fy=%s — treating as miss: %s", fiscal_year, exc)
            return None
        if raw is None:
            return None
        try:
            resolved = ResolvedRuleSet.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding malformed cached ruleset fy=%s: %s", fiscal_year, exc)
            return None
        if resolved.rules.fiscal_year != fiscal_year:
            logger.warning("Discarding cached ruleset for wrong FY %s under key fy=%s",
                           resolved.rules.fiscal_year, fiscal_year)
            return None
        if self._clock() - resolved.resolved_at.timestamp() >= self._ttl:
            return None
        return resolved

    async def _write_shared(self, resolved: ResolvedRuleSet) -> None:
        if self._redis is None:
            return
        try:
            await cache.set_cached_ruleset(
                self._redis, resolved.rules.fiscal_year, resolved.model_dump_json(), int(self._ttl)
            )
        except RedisError as exc:
            logger.warning("Redis write failed fy=%s: %s", resolved.rules.fiscal_year, exc)

    async def _delete_shared(self, fiscal_year: Optional[str]) -> None:
        if self._redis is None:
            return
        try:
            await cache.delete_cached_ruleset(self._redis, fiscal_year)
        except RedisError as exc:
            logger.warning("Redis delete failed fy=%s: %s", fiscal_year or "*", exc)

    async def _persist_snapshot(self, resolved: ResolvedRuleSet) -> None:
        if self._snapshot_sink is None:
            return
        try:
            await self._snapshot_sink(resolved)
        except Exception:
            logger.warning(
                "Ruleset snapshot not persisted fy=%s source=%s",
                resolved.rules.fiscal_year, resolved.source, exc_info=True,
            )


__all__ = ["RuleSetProvider", "SnapshotSink"]
