"""
Service-layer tests — the operations behind the routes, called without HTTP.
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from takehome.errors import RemoteRulesError, UnknownRegimeError
from takehome.rules.provider import RuleSetProvider
from takehome.salary import service
from takehome.salary.samples import SAMPLE_PROFILES
from takehome.salary.schemas import CompensationProfile


@pytest.mark.asyncio
async def test_calculate_twice_gives_byte_identical_breakdowns(provider: RuleSetProvider) -> None:
    profile = SAMPLE_PROFILES[2].profile
    first = await service.calculate(provider, profile)
    second = await service.calculate(provider, profile)

    assert {k: b.model_dump_json() for k, b in first.regimes.items()} == {
        k: b.model_dump_json() for k, b in second.regimes.items()
    }
    assert first.metadata.resolved_at == second.metadata.resolved_at


@pytest.mark.asyncio
async def test_remote_outage_still_produces_breakdowns(clock) -> None:
    provider = RuleSetProvider(
        ttl_seconds=60,
        remote_fetch=AsyncMock(side_effect=RemoteRulesError("Remote rules fetch failed: ReadTimeout")),
        clock=clock,
    )

    result = await service.calculate(provider, SAMPLE_PROFILES[0].profile, ["all"], "2025-26")

    assert result.metadata.rules_source == "fiscal-default"
    assert set(result.regimes) == {"old", "new"}
    for b in result.regimes.values():
        assert sum(m.amount for m in b.monthly_withholding_schedule) == b.income_tax.total


@pytest.mark.asyncio
async def test_unbundled_year_computes_with_generic_rules(provider: RuleSetProvider) -> None:
    result = await service.calculate(provider, SAMPLE_PROFILES[1].profile, fiscal_year="2031-32")
    assert result.fiscal_year == "2031-32"
    assert result.metadata.rules_source == "generic-default"
    assert result.metadata.rules_fiscal_year == "2031-32"


@pytest.mark.asyncio
async def test_partial_and_total_regime_failure(provider: RuleSetProvider) -> None:
    profile = CompensationProfile(basic=500_000, hra=0, special_allowances=0)

    partial = await service.calculate(provider, profile, ["new", "old", "new", "legacy"])
    assert list(partial.regimes) == ["new", "old"]
    assert [e.regime for e in partial.errors] == ["legacy"]

    with pytest.raises(UnknownRegimeError):
        await service.calculate(provider, profile, ["legacy"])


@pytest.mark.asyncio
async def test_business_rules_checked_before_rules_resolved(provider: RuleSetProvider, remote_unavailable) -> None:
    profile = CompensationProfile(basic=500_000, hra=0, special_allowances=0, lta=0, lta_exemption=1)

    with pytest.raises(ValueError):
        await service.calculate(provider, profile)
    remote_unavailable.assert_not_awaited()


@pytest.mark.asyncio
async def test_lookups_and_cache_operations(provider: RuleSetProvider) -> None:
    regimes = await service.list_regimes(provider)
    assert regimes.keys == ["old", "new"]

    states = await service.list_states(provider)
    assert "default" not in states.states

    limits = await service.get_deduction_limits(provider)
    assert limits.deduction_limits["80CCD(1B)"] == 50_000

    status = service.cache_status(provider)
    assert set(status.cache) == {"2025-26"}
    assert status.ttl_ms == 3_600_000

    cleared = await service.clear_cache(provider)
    assert cleared.cleared == "all"
    assert service.cache_status(provider).cache == {}


@pytest.mark.parametrize("payload", [
    '{"basic": true, "hra": 0, "special_allowances": 0}',
    '{"basic": 500000, "hra": "200000", "special_allowances": 0}',
    '{"basic": 500000, "hra": 0, "special_allowances": 0, "investments": {"80C": "150000"}}',
])
def test_profile_amounts_are_never_coerced(payload: str) -> None:
    with pytest.raises(ValidationError):
        CompensationProfile.model_validate_json(payload)
