"""
schemas.py — RuleSet Pydantic v2 data contracts.

Defines:
  - Slab, SurchargeTier, Rebate        (per-regime building blocks)
  - RegimeRules                        (everything one regime needs: slabs, std deduction, 87A, surcharge, cess)
  - ProfessionalTaxBracket             (one monthly professional-tax bracket)
  - RuleSet                            (one fiscal year, all regimes — the versioned rule document)
  - ResolvedRuleSet                    (RuleSet + provenance: which source, when)

Validation is deliberately unforgiving:
  - numbers must be JSON numbers — "50000" or true are rejected, never coerced
  - missing standard_deduction / rebate / cess_percent is a hard failure, never 0
  - slab and surcharge bounds ascend strictly, only the last entry is open-ended (upto=null)

A document that fails any of these is rejected by the provider, which then moves
on to the next source in the fallback chain.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, confloat, model_validator

# Non-negative real number. Strict → ints are fine, strings and booleans are not.
Amount = confloat(strict=True, ge=0, allow_inf_nan=False)
Percent = confloat(strict=True, ge=0, le=100, allow_inf_nan=False)

RuleSource = Literal["remote", "fiscal-default", "generic-default"]

SOURCE_REMOTE: RuleSource = "remote"
SOURCE_FISCAL_DEFAULT: RuleSource = "fiscal-default"
SOURCE_GENERIC_DEFAULT: RuleSource = "generic-default"

DEFAULT_STATE_KEY = "default"


def _check_open_ended(bounds: List[Optional[float]], what: str) -> None:
    """Bounds ascend strictly and only the last one is None (open-ended)."""
    if bounds[-1] is not None:
        raise ValueError(f"last {what} entry must be open-ended (upto=null)")
    closed = bounds[:-1]
    if any(b is None for b in closed):
        raise ValueError(f"only the last {what} entry may be open-ended")
    for lower, upper in zip(closed, closed[1:]):
        if upper <= lower:
            raise ValueError(f"{what} bounds must be strictly ascending ({lower} then {upper})")


# ---------------------------------------------------------------------------
# Regime building blocks
# ---------------------------------------------------------------------------

class Slab(BaseModel):
    """Income up to `upto` (inclusive) taxed at `rate` percent. upto=None → no ceiling."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    upto: Optional[Amount]
    rate: Percent


class SurchargeTier(BaseModel):
    """Total income up to `upto` attracts `rate` percent surcharge on tax after rebate."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    upto: Optional[Amount]
    rate: Percent


class Rebate(BaseModel):
    """Section 87A: if total income <= threshold, tax is reduced by up to `amount`."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    threshold: Amount
    amount: Amount


class RegimeRules(BaseModel):
    """
    Complete rule block for one regime.

    allowed_deductions and special_rate_income_excluded_from_rebate are the only
    regime-specific policy the pipeline needs — see salary/regimes.py.
    An empty surcharge_tiers list means the regime levies no surcharge.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: Optional[StrictStr] = None
    slabs: List[Slab] = Field(..., min_length=1)
    standard_deduction: Amount
    rebate: Rebate
    surcharge_tiers: List[SurchargeTier] = Field(default_factory=list)
    cess_percent: Percent
    allowed_deductions: List[StrictStr] = Field(default_factory=list)
    special_rate_income_excluded_from_rebate: StrictBool = False

    @model_validator(mode="after")
    def validate_bounds(self) -> "RegimeRules":
        _check_open_ended([s.upto for s in self.slabs], "slab")
        if self.surcharge_tiers:
            _check_open_ended([t.upto for t in self.surcharge_tiers], "surcharge tier")
        return self


class ProfessionalTaxBracket(BaseModel):
    """Monthly gross up to `monthly_upto` pays `monthly_amount` per month."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    monthly_upto: Optional[Amount]
    monthly_amount: Amount


# ---------------------------------------------------------------------------
# RuleSet: one fiscal year
# ---------------------------------------------------------------------------

class RuleSet(BaseModel):
    """
    Versioned rule document for a single fiscal year.

    professional_tax maps state name → ordered brackets and must carry a
    "default" entry used for states that are not listed.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    fiscal_year: StrictStr
    version: Optional[StrictStr] = None      # publisher's revision label, informational only
    regimes: Dict[StrictStr, RegimeRules] = Field(..., min_length=1)
    deduction_limits: Dict[StrictStr, Amount] = Field(default_factory=dict)
    professional_tax: Dict[StrictStr, List[ProfessionalTaxBracket]]

    @model_validator(mode="after")
    def validate_cross_references(self) -> "RuleSet":
        if DEFAULT_STATE_KEY not in self.professional_tax:
            raise ValueError("professional_tax must contain a 'default' bracket list")
        for state, brackets in self.professional_tax.items():
            if not brackets:
                raise ValueError(f"professional_tax[{state!r}] must not be empty")
            _check_open_ended([b.monthly_upto for b in brackets], f"professional tax ({state})")
        for key, regime in self.regimes.items():
            missing = [c for c in regime.allowed_deductions if c not in self.deduction_limits]
            if missing:
                raise ValueError(
                    f"regime {key!r} allows deductions without a cap in deduction_limits: "
                    f"{', '.join(missing)}"
                )
        return self

    def regime_name(self, key: str) -> str:
        """Display name for a regime, falling back to a title-cased key."""
        name = self.regimes[key].name
        return name or key.replace("_", " ").title()

    @property
    def states(self) -> List[str]:
        return sorted(s for s in self.professional_tax if s != DEFAULT_STATE_KEY)


class ResolvedRuleSet(BaseModel):
    """A validated RuleSet plus the provenance reported back to callers."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    rules: RuleSet
    source: RuleSource
    resolved_at: datetime


__all__ = [
    "Slab",
    "SurchargeTier",
    "Rebate",
    "RegimeRules",
    "ProfessionalTaxBracket",
    "RuleSet",
    "ResolvedRuleSet",
    "RuleSource",
    "SOURCE_REMOTE",
    "SOURCE_FISCAL_DEFAULT",
    "SOURCE_GENERIC_DEFAULT",
    "DEFAULT_STATE_KEY",
]
