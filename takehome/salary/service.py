"""
service.py — salary operations, transport-agnostic.

Every function takes the RuleSetProvider explicitly so it can be driven from
FastAPI routes, scripts or tests alike. HTTP status codes live in main.py /
routes.py; this module raises domain exceptions only:
  - ValueError            business-rule violations (JSON list of {field, issue})
  - UnknownRegimeError    every requested regime is unknown
  - RuleSetUnavailable    no rule source produced a valid document

Unknown regime policy is partial success: known regimes are computed and each
unknown key is reported in CalculationResult.errors. Only a request whose keys
are ALL unknown fails as a whole.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from takehome.config import settings
from takehome.errors import UnknownRegimeError
from takehome.rules.provider import RuleSetProvider
from takehome.salary.regimes import RegimeEvaluator
from takehome.salary.schemas import (
    ALL_REGIMES,
    CacheEntryStatus,
    CacheStatus,
    CalculationMetadata,
    CalculationResult,
    ClearCacheResult,
    CompensationProfile,
    DeductionLimitsListing,
    Disclaimer,
    RefreshResult,
    RegimeError,
    RegimeListing,
    RegimeSummary,
    StateListing,
)
from takehome.salary.tax_engine import calculate_shared_components, compute_regime_breakdown
from takehome.salary.validator import validate_business_rules

logger = logging.getLogger(__name__)

DISCLAIMER_MESSAGE = (
    "This calculation is for estimation purposes only. Please consult a Chartered "
    "Accountant or verify with the Income Tax Department for final tax calculations."
)
DISCLAIMER_SOURCE = "Income Tax Department of India"


def _fiscal_year(fiscal_year: Optional[str]) -> str:
    return fiscal_year or settings.default_fiscal_year


# ---------------------------------------------------------------------------
# calculate
# ---------------------------------------------------------------------------

async def calculate(
    provider: RuleSetProvider,
    profile: CompensationProfile,
    regimes: Optional[Iterable[str]] = None,
    fiscal_year: Optional[str] = None,
) -> CalculationResult:
    """
    One Breakdown per requested regime, plus the shared stages and provenance.

    Raises:
        ValueError: profile violates a business rule.
        UnknownRegimeError: none of the requested regimes exist for the fiscal year.
        RuleSetUnavailable: rules for the fiscal year could not be resolved.
    """
    validate_business_rules(profile)

    fiscal_year = _fiscal_year(fiscal_year)
    resolved = await provider.resolve(fiscal_year)
    rules = resolved.rules

    evaluator = RegimeEvaluator(rules)
    known, unknown = evaluator.select(regimes or [ALL_REGIMES])
    if not known:
        raise UnknownRegimeError(unknown, evaluator.keys)
    if unknown:
        logger.warning("Skipping unknown regime(s) fy=%s: %s", fiscal_year, ",".join(unknown))

    shared = calculate_shared_components(profile, rules)
    breakdowns = {
        regime: compute_regime_breakdown(profile, rules, regime, shared, evaluator)
        for regime in known
    }
    errors = [
        RegimeError(
            regime=key,
            issue=f"Unknown regime '{key}'. Available: {', '.join(evaluator.keys)}",
        )
        for key in unknown
    ]

    logger.info(
        "Calculated fy=%s regimes=%s source=%s",
        fiscal_year, ",".join(known), resolved.source,
    )

    return CalculationResult(
        fiscal_year=fiscal_year,
        regimes=breakdowns,
        errors=errors,
        breakdown=shared,
        metadata=CalculationMetadata(
            rules_source=resolved.source,
            rules_fiscal_year=rules.fiscal_year,
            rules_version=rules.version,
            resolved_at=resolved.resolved_at,
            calculated_at=datetime.now(timezone.utc),
        ),
        disclaimer=Disclaimer(
            message=DISCLAIMER_MESSAGE,
            source=DISCLAIMER_SOURCE,
            last_updated=resolved.resolved_at,
        ),
    )


# ---------------------------------------------------------------------------
# Rule lookups
# ---------------------------------------------------------------------------

async def list_regimes(provider: RuleSetProvider, fiscal_year: Optional[str] = None) -> RegimeListing:
    fiscal_year = _fiscal_year(fiscal_year)
    rules = (await provider.resolve(fiscal_year)).rules
    return RegimeListing(
        fiscal_year=fiscal_year,
        regimes=[RegimeSummary(key=key, name=rules.regime_name(key)) for key in rules.regimes],
    )


async def list_states(provider: RuleSetProvider, fiscal_year: Optional[str] = None) -> StateListing:
    fiscal_year = _fiscal_year(fiscal_year)
    rules = (await provider.resolve(fiscal_year)).rules
    return StateListing(fiscal_year=fiscal_year, states=rules.states)


async def get_deduction_limits(
    provider: RuleSetProvider, fiscal_year: Optional[str] = None
) -> DeductionLimitsListing:
    fiscal_year = _fiscal_year(fiscal_year)
    rules = (await provider.resolve(fiscal_year)).rules
    return DeductionLimitsListing(fiscal_year=fiscal_year, deduction_limits=dict(rules.deduction_limits))


# ---------------------------------------------------------------------------
# Cache management
# ---------------------------------------------------------------------------

async def refresh_rule_set(provider: RuleSetProvider, fiscal_year: Optional[str] = None) -> RefreshResult:
    fiscal_year = _fiscal_year(fiscal_year)
    resolved = await provider.refresh(fiscal_year)
    logger.info("Refreshed tax rules fy=%s source=%s", fiscal_year, resolved.source)
    return RefreshResult(
        fiscal_year=fiscal_year,
        source=resolved.source,
        resolved_at=resolved.resolved_at,
        regimes=list(resolved.rules.regimes),
    )


def cache_status(provider: RuleSetProvider) -> CacheStatus:
    return CacheStatus(
        cache={fy: CacheEntryStatus(**entry) for fy, entry in provider.status().items()},
        ttl_ms=provider.ttl_ms,
    )


async def clear_cache(provider: RuleSetProvider, fiscal_year: Optional[str] = None) -> ClearCacheResult:
    """Clears one fiscal year, or every fiscal year when none is given."""
    if fiscal_year:
        await provider.invalidate(fiscal_year)
        return ClearCacheResult(cleared=fiscal_year, message=f"Cache cleared for FY {fiscal_year}")
    await provider.invalidate_all()
    return ClearCacheResult(cleared="all", message="Cache cleared for all fiscal years")


__all__ = [
    "calculate",
    "list_regimes",
    "list_states",
    "get_deduction_limits",
    "refresh_rule_set",
    "cache_status",
    "clear_cache",
    "DISCLAIMER_MESSAGE",
]
