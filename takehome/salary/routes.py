"""
Salary HTTP routes — prefix /api/salary

  POST /calculate                   → one Breakdown per requested regime
  GET  /regimes                     → regime keys + display names
  GET  /states                      → professional-tax states
  GET  /deduction-limits            → Chapter VI-A caps
  POST /refresh-rules               → invalidate + resolve
  GET  /cache-status                → per-FY age / TTL / expired
  POST /clear-cache                 → drop one FY or all
  GET  /sample-calculations         → illustrative profiles
  GET  /rules/{fiscal_year}/snapshot → latest persisted RuleSet snapshot

Business logic lives in service.py; this module only maps HTTP onto it.
Domain exceptions (RuleSetUnavailable, UnknownRegimeError) propagate to the
handlers registered in main.py.
"""
from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from takehome.database import get_db
from takehome.errors import UnknownRegimeError
from takehome.rules.provider import RuleSetProvider
from takehome.salary import service
from takehome.salary.samples import SAMPLE_PROFILES
from takehome.salary.schemas import (
    FISCAL_YEAR_REGEX,
    CalculateRequest,
    ErrorBody,
    ErrorDetail,
    ErrorResponse,
    FiscalYearRequest,
)
from takehome.store import get_latest_snapshot

router = APIRouter(prefix="/api/salary", tags=["salary"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_rules_provider(request: Request) -> RuleSetProvider:
    """
    The process-wide provider created in the lifespan. Apps started without the
    lifespan (scripts, some tests) get a memory-only provider on first use.
    """
    provider = getattr(request.app.state, "rules_provider", None)
    if provider is None:
        logger.warning("rules_provider not initialised — creating a memory-only provider")
        provider = RuleSetProvider()
        request.app.state.rules_provider = provider
    return provider


def _make_validation_error_response(violations_json: str) -> JSONResponse:
    """Parse JSON-encoded violations and return standard 422 error envelope."""
    try:
        violations: list[dict] = json.loads(violations_json)
    except (json.JSONDecodeError, ValueError):
        violations = [{"field": None, "issue": violations_json}]
    details = [ErrorDetail(field=v.get("field"), issue=v["issue"]) for v in violations]
    body = ErrorResponse(
        error=ErrorBody(
            code="VALIDATION_ERROR",
            message="Profile validation failed",
            details=details,
        )
    )
    return JSONResponse(status_code=422, content=body.model_dump())


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------

@router.post("/calculate")
async def calculate_salary(
    payload: CalculateRequest,
    provider: RuleSetProvider = Depends(get_rules_provider),
) -> JSONResponse:
    """
    Calculate take-home salary and income tax for the requested regimes.

    Returns:
      200: {fiscal_year, regimes, errors, breakdown, metadata, disclaimer}
      422: VALIDATION_ERROR (profile) or UNKNOWN_REGIME (no requested regime exists)
      503: RULESET_UNAVAILABLE
    """
    try:
        result = await service.calculate(
            provider, payload.profile, payload.regimes, payload.fiscal_year
        )
    except UnknownRegimeError:
        raise
    except ValueError as exc:
        return _make_validation_error_response(str(exc))

    return JSONResponse(status_code=200, content=result.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Rule lookups
# ---------------------------------------------------------------------------

@router.get("/regimes")
async def get_regimes(
    fiscal_year: Optional[str] = Query(default=None, pattern=FISCAL_YEAR_REGEX),
    provider: RuleSetProvider = Depends(get_rules_provider),
) -> JSONResponse:
    listing = await service.list_regimes(provider, fiscal_year)
    return JSONResponse(status_code=200, content=listing.model_dump(mode="json"))


@router.get("/states")
async def get_states(
    fiscal_year: Optional[str] = Query(default=None, pattern=FISCAL_YEAR_REGEX),
    provider: RuleSetProvider = Depends(get_rules_provider),
) -> JSONResponse:
    listing = await service.list_states(provider, fiscal_year)
    return JSONResponse(status_code=200, content=listing.model_dump(mode="json"))


@router.get("/deduction-limits")
async def get_deduction_limits(
    fiscal_year: Optional[str] = Query(default=None, pattern=FISCAL_YEAR_REGEX),
    provider: RuleSetProvider = Depends(get_rules_provider),
) -> JSONResponse:
    listing = await service.get_deduction_limits(provider, fiscal_year)
    return JSONResponse(status_code=200, content=listing.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Cache management
# ---------------------------------------------------------------------------

@router.post("/refresh-rules")
async def refresh_rules(
    payload: Optional[FiscalYearRequest] = Body(default=None),
    provider: RuleSetProvider = Depends(get_rules_provider),
) -> JSONResponse:
    """Force a reload of the tax rules for one fiscal year (default FY if omitted)."""
    fiscal_year = payload.fiscal_year if payload else None
    result = await service.refresh_rule_set(provider, fiscal_year)
    return JSONResponse(status_code=200, content=result.model_dump(mode="json"))


@router.get("/cache-status")
async def get_cache_status(
    provider: RuleSetProvider = Depends(get_rules_provider),
) -> JSONResponse:
    status = service.cache_status(provider)
    return JSONResponse(status_code=200, content=status.model_dump(mode="json"))


@router.post("/clear-cache")
async def clear_cache(
    payload: Optional[FiscalYearRequest] = Body(default=None),
    provider: RuleSetProvider = Depends(get_rules_provider),
) -> JSONResponse:
    fiscal_year = payload.fiscal_year if payload else None
    result = await service.clear_cache(provider, fiscal_year)
    return JSONResponse(status_code=200, content=result.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Samples & snapshots
# ---------------------------------------------------------------------------

@router.get("/sample-calculations")
async def get_sample_calculations() -> JSONResponse:
    """Illustrative profiles; POST any `profile` back to /calculate."""
    return JSONResponse(
        status_code=200,
        content={"samples": [sample.model_dump(mode="json") for sample in SAMPLE_PROFILES]},
    )


@router.get("/rules/{fiscal_year}/snapshot")
async def get_ruleset_snapshot(
    fiscal_year: str = Path(..., pattern=FISCAL_YEAR_REGEX),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """
    Latest persisted RuleSet for fiscal_year, with its provenance.

    Returns:
      200: {rules, source, resolved_at}
      404: NOT_FOUND — no resolution was ever persisted for this fiscal year
    """
    snapshot = await get_latest_snapshot(db, fiscal_year)
    if snapshot is None:
        raise HTTPException(
            status_code=404,
            detail=f"No ruleset snapshot for FY '{fiscal_year}'",
        )
    return JSONResponse(status_code=200, content=snapshot.model_dump(mode="json"))
