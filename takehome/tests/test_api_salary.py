"""
End-to-end API tests for /api/salary/* and /api/health.

Tests the full stack: HTTP request → schema validation → business-rule validation
→ RuleSetProvider → tax engine → HTTP response.

No live services needed: the provider's remote fetch is an AsyncMock, the shared
Redis tier is off, and get_db is overridden with an in-memory aiosqlite session.
The lifespan is not run (ASGITransport does not send lifespan events); the
fixture installs the provider on app.state the way the lifespan does.
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from takehome.database import get_db
from takehome.main import app
from takehome.rules import fetcher
from takehome.rules.provider import RuleSetProvider
from takehome.store import make_snapshot_sink
from takehome.tests.demo_profiles import (
    ILLUSTRATIVE_FY,
    SAMPLE_EXPECTED,
    WORKED_EXPECTED,
    WORKED_PROFILE,
    illustrative_rules,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _remote(fiscal_year: str):
    """Remote source that only publishes the illustrative fiscal year."""
    return illustrative_rules() if fiscal_year == ILLUSTRATIVE_FY else None


@pytest_asyncio.fixture
async def client(session_factory):
    """Async httpx client using ASGI transport — no live server needed."""
    async def _get_test_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.state.rules_provider = RuleSetProvider(
        ttl_seconds=3600,
        remote_fetch=AsyncMock(side_effect=_remote),
        snapshot_sink=make_snapshot_sink(session_factory),
    )
    app.dependency_overrides[get_db] = _get_test_db
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
    app.state.rules_provider = None


def _body(profile: dict, **kwargs) -> dict:
    return {"profile": profile, **kwargs}


# ---------------------------------------------------------------------------
# Test Group 1: Health
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# ---------------------------------------------------------------------------
# Test Group 2: POST /api/salary/calculate
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_calculate_worked_scenario(client: AsyncClient) -> None:
    response = await client.post(
        "/api/salary/calculate",
        json=_body(WORKED_PROFILE, fiscal_year=ILLUSTRATIVE_FY, regimes=["old"]),
    )
    assert response.status_code == 200, response.text
    result = response.json()

    old = result["regimes"]["old"]
    assert old["taxable_income"]["final"] == WORKED_EXPECTED["taxable_income"]
    assert old["income_tax"]["total"] == WORKED_EXPECTED["total_tax"]
    assert [m["amount"] for m in old["monthly_withholding_schedule"]] == WORKED_EXPECTED["schedule"]
    assert old["take_home_yearly"] == WORKED_EXPECTED["take_home_yearly"]
    assert old["take_home_monthly"] == WORKED_EXPECTED["take_home_monthly"]

    assert result["fiscal_year"] == ILLUSTRATIVE_FY
    assert result["errors"] == []
    assert result["breakdown"]["gross_salary"]["total"] == WORKED_EXPECTED["gross_salary"]
    assert result["breakdown"]["professional_tax"]["yearly"] == WORKED_EXPECTED["professional_tax_yearly"]


@pytest.mark.asyncio
async def test_calculate_reports_provenance_and_disclaimer(client: AsyncClient) -> None:
    response = await client.post(
        "/api/salary/calculate",
        json=_body(WORKED_PROFILE, fiscal_year=ILLUSTRATIVE_FY),
    )
    result = response.json()

    assert result["metadata"]["rules_source"] == "remote"
    assert result["metadata"]["rules_fiscal_year"] == ILLUSTRATIVE_FY
    assert result["metadata"]["resolved_at"]
    assert result["metadata"]["calculated_at"]
    assert "estimation purposes only" in result["disclaimer"]["message"]
    assert result["disclaimer"]["last_updated"] == result["metadata"]["resolved_at"]


@pytest.mark.asyncio
@pytest.mark.parametrize("name", list(SAMPLE_EXPECTED))
async def test_calculate_defaults_to_bundled_fiscal_year(client: AsyncClient, name: str) -> None:
    samples = (await client.get("/api/salary/sample-calculations")).json()["samples"]
    profile = next(s["profile"] for s in samples if s["name"] == name)

    response = await client.post("/api/salary/calculate", json=_body(profile))
    assert response.status_code == 200, response.text
    result = response.json()

    assert result["fiscal_year"] == "2025-26"
    assert result["metadata"]["rules_source"] == "fiscal-default"
    assert list(result["regimes"]) == ["old", "new"]
    for regime, expected in SAMPLE_EXPECTED[name].items():
        assert result["regimes"][regime]["income_tax"]["total"] == expected["total_tax"]
        assert result["regimes"][regime]["take_home_yearly"] == expected["take_home_yearly"]


@pytest.mark.asyncio
async def test_calculate_partial_success_for_unknown_regime(client: AsyncClient) -> None:
    response = await client.post(
        "/api/salary/calculate",
        json=_body(WORKED_PROFILE, fiscal_year=ILLUSTRATIVE_FY, regimes=["old", "nonexistent"]),
    )
    assert response.status_code == 200
    result = response.json()
    assert list(result["regimes"]) == ["old"]
    assert [e["regime"] for e in result["errors"]] == ["nonexistent"]


@pytest.mark.asyncio
async def test_calculate_all_regimes_unknown(client: AsyncClient) -> None:
    response = await client.post(
        "/api/salary/calculate",
        json=_body(WORKED_PROFILE, regimes=["bogus", "nonexistent"]),
    )
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "UNKNOWN_REGIME"
    assert len(error["details"]) == 2


@pytest.mark.asyncio
async def test_calculate_is_idempotent(client: AsyncClient) -> None:
    body = _body(WORKED_PROFILE, fiscal_year=ILLUSTRATIVE_FY)
    first = (await client.post("/api/salary/calculate", json=body)).json()
    second = (await client.post("/api/salary/calculate", json=body)).json()
    assert first["regimes"] == second["regimes"]
    assert first["metadata"]["resolved_at"] == second["metadata"]["resolved_at"]


# ---------------------------------------------------------------------------
# Test Group 3: Validation errors
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
@pytest.mark.parametrize("profile,field", [
    ({"hra": 0, "special_allowances": 0}, "profile.basic"),
    ({"basic": "abc", "hra": 0, "special_allowances": 0}, "profile.basic"),
    ({"basic": True, "hra": 0, "special_allowances": 0}, "profile.basic"),
    ({"basic": 100, "hra": "500000", "special_allowances": 0}, "profile.hra"),
    ({"basic": 100, "hra": 0, "special_allowances": 0, "investments": {"80C": "150000"}}, "profile.investments.80C"),
    ({"basic": 100, "hra": -1, "special_allowances": 0}, "profile.hra"),
    ({"basic": 100, "hra": 0, "special_allowances": 0, "employee_pf_percent": 150}, "profile.employee_pf_percent"),
    ({"basic": 100, "hra": 0, "special_allowances": 0, "ctc": 1}, "profile.ctc"),
])
async def test_calculate_rejects_malformed_profile(client: AsyncClient, profile: dict, field: str) -> None:
    response = await client.post("/api/salary/calculate", json=_body(profile))
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert field in [d["field"] for d in error["details"]]


@pytest.mark.asyncio
async def test_calculate_business_rule_violation(client: AsyncClient) -> None:
    profile = {"basic": 500_000, "hra": 0, "special_allowances": 0, "lta": 10_000, "lta_exemption": 20_000}
    response = await client.post("/api/salary/calculate", json=_body(profile))
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["details"][0]["field"] == "profile.lta_exemption"


@pytest.mark.asyncio
async def test_malformed_fiscal_year_rejected(client: AsyncClient) -> None:
    response = await client.get("/api/salary/regimes", params={"fiscal_year": "2025"})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_ruleset_unavailable_is_503(client: AsyncClient, monkeypatch) -> None:
    def _missing() -> dict:
        raise FileNotFoundError("tax-rules-default.json")

    monkeypatch.setattr(fetcher, "load_generic_default", _missing)

    response = await client.get("/api/salary/regimes", params={"fiscal_year": "2031-32"})
    assert response.status_code == 503
    error = response.json()["error"]
    assert error["code"] == "RULESET_UNAVAILABLE"
    assert len(error["details"]) == 3


# ---------------------------------------------------------------------------
# Test Group 4: Rule lookups
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_regimes(client: AsyncClient) -> None:
    response = await client.get("/api/salary/regimes")
    assert response.status_code == 200
    assert response.json() == {
        "fiscal_year": "2025-26",
        "regimes": [
            {"key": "old", "name": "Old Regime"},
            {"key": "new", "name": "New Regime (Section 115BAC)"},
        ],
    }


@pytest.mark.asyncio
async def test_list_states_excludes_default(client: AsyncClient) -> None:
    states = (await client.get("/api/salary/states")).json()["states"]
    assert "default" not in states
    assert states == sorted(states)
    assert "Maharashtra" in states


@pytest.mark.asyncio
async def test_deduction_limits(client: AsyncClient) -> None:
    limits = (await client.get("/api/salary/deduction-limits")).json()["deduction_limits"]
    assert limits["80C"] == 150_000
    assert limits["80D"] == 25_000


# ---------------------------------------------------------------------------
# Test Group 5: Cache management
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cache_status_refresh_and_clear(client: AsyncClient) -> None:
    assert (await client.get("/api/salary/cache-status")).json() == {"cache": {}, "ttl_ms": 3_600_000}

    await client.get("/api/salary/regimes")
    status = (await client.get("/api/salary/cache-status")).json()
    assert status["cache"]["2025-26"]["expired"] is False
    assert status["cache"]["2025-26"]["ttl_ms"] == 3_600_000

    refreshed = await client.post("/api/salary/refresh-rules", json={"fiscal_year": "2025-26"})
    assert refreshed.status_code == 200
    assert refreshed.json()["source"] == "fiscal-default"
    assert refreshed.json()["regimes"] == ["old", "new"]

    cleared = await client.post("/api/salary/clear-cache", json={"fiscal_year": "2025-26"})
    assert cleared.json()["cleared"] == "2025-26"
    assert (await client.get("/api/salary/cache-status")).json()["cache"] == {}


@pytest.mark.asyncio
async def test_refresh_and_clear_without_body_use_defaults(client: AsyncClient) -> None:
    refreshed = await client.post("/api/salary/refresh-rules")
    assert refreshed.status_code == 200
    assert refreshed.json()["fiscal_year"] == "2025-26"

    await client.get("/api/salary/regimes", params={"fiscal_year": ILLUSTRATIVE_FY})
    cleared = await client.post("/api/salary/clear-cache")
    assert cleared.json()["cleared"] == "all"
    assert (await client.get("/api/salary/cache-status")).json()["cache"] == {}


# ---------------------------------------------------------------------------
# Test Group 6: Samples and snapshots
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sample_calculations(client: AsyncClient) -> None:
    samples = (await client.get("/api/salary/sample-calculations")).json()["samples"]
    assert [s["name"] for s in samples] == list(SAMPLE_EXPECTED)
    assert all("basic" in s["profile"] for s in samples)


@pytest.mark.asyncio
async def test_snapshot_persisted_after_resolution(client: AsyncClient) -> None:
    missing = await client.get("/api/salary/rules/2025-26/snapshot")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"

    await client.get("/api/salary/regimes")

    response = await client.get("/api/salary/rules/2025-26/snapshot")
    assert response.status_code == 200
    snapshot = response.json()
    assert snapshot["source"] == "fiscal-default"
    assert snapshot["rules"]["fiscal_year"] == "2025-26"
    assert snapshot["rules"]["regimes"]["old"]["standard_deduction"] == 50_000
