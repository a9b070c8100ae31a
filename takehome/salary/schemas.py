"""
schemas.py — salary calculator Pydantic v2 data contracts.

Defines:
  - CompensationProfile   (the input contract — one employee's annual package + declarations)
  - Breakdown and parts   (the per-regime output, built once and never mutated)
  - CalculateRequest / CalculationResult   (request boundary shapes)
  - ErrorDetail, ErrorBody, ErrorResponse  (cross-cutting error envelope)

All monetary fields are INR and ANNUAL unless the name says monthly.
Every computed amount is a whole rupee (int); input amounts may carry paise.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, confloat

from takehome.rules.schemas import RuleSource

FISCAL_YEAR_REGEX = r"^\d{4}-\d{2}$"
ALL_REGIMES = "all"

DeclaredAmount = confloat(strict=True, ge=0, allow_inf_nan=False)


# ---------------------------------------------------------------------------
# CompensationProfile: input contract
# ---------------------------------------------------------------------------

class CompensationProfile(BaseModel):
    """
    Annual compensation profile for a salaried taxpayer.

    basic, hra and special_allowances are required; every other amount defaults to 0.
    Amounts are strict numbers: booleans and numeric strings are rejected, never coerced.
    extra='forbid' ensures unknown fields from client requests cause a 422 error.
    """
    model_config = ConfigDict(extra="forbid", frozen=True, allow_inf_nan=False)

    # --- Required salary components ---
    basic: float = Field(..., strict=True, ge=0, description="Annual basic salary.")
    hra: float = Field(..., strict=True, ge=0, description="Annual House Rent Allowance received.")
    special_allowances: float = Field(..., strict=True, ge=0, description="Annual special allowance.")

    # --- Optional salary components ---
    conveyance: float = Field(default=0, strict=True, ge=0)
    lta: float = Field(default=0, strict=True, ge=0, description="Leave Travel Allowance received.")
    bonus: float = Field(default=0, strict=True, ge=0)
    other_taxable: float = Field(default=0, strict=True, ge=0, description="Any other taxable salary component.")
    dearness_allowance: float = Field(
        default=0, strict=True, ge=0,
        description="DA forming part of salary. Added to basic for the HRA and PF bases only.",
    )

    # --- Income outside salary ---
    other_income: float = Field(default=0, strict=True, ge=0, description="Income from other sources.")
    stcg: float = Field(default=0, strict=True, ge=0, description="Short-term capital gains.")
    ltcg: float = Field(default=0, strict=True, ge=0, description="Long-term capital gains.")

    # --- Employee contributions ---
    employee_pf_percent: float = Field(
        default=12, strict=True, ge=0, le=100,
        description="Employee PF as a percentage of basic + DA.",
    )
    nps_employee: float = Field(default=0, strict=True, ge=0, description="Employee NPS contribution.")
    other_deductions: float = Field(default=0, strict=True, ge=0, description="Other payroll deductions.")

    # --- Exemption inputs ---
    rent_paid: float = Field(default=0, strict=True, ge=0, description="Annual rent paid.")
    lives_in_metro: bool = Field(default=False, description="Metro → 50% of basic+DA HRA cap, else 40%.")
    lta_exemption: float = Field(
        default=0, strict=True, ge=0,
        description="Declared LTA exemption, passed through as-is (no travel-proof modelling).",
    )

    # --- Chapter VI-A declarations ---
    investments: Dict[str, DeclaredAmount] = Field(
        default_factory=dict,
        description="Deduction section code → declared amount, e.g. {'80C': 150000}.",
    )

    # --- Profile metadata ---
    age: Optional[int] = Field(default=None, ge=0, le=120)
    state: str = Field(
        default="default",
        description="State for professional tax. Unknown states use the 'default' brackets.",
    )

    @property
    def basic_plus_da(self) -> float:
        return self.basic + self.dearness_allowance


# ---------------------------------------------------------------------------
# Shared (regime-independent) stages
# ---------------------------------------------------------------------------

class SalaryComponents(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    basic: float
    hra: float
    conveyance: float
    special_allowances: float
    lta: float
    bonus: float
    other_taxable: float


class GrossSalary(BaseModel):
    """Stage 1. total = salary components + other income + STCG + LTCG, rounded once."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    components: SalaryComponents
    other_income: float
    stcg: float
    ltcg: float
    total: int


class EmployeeContributions(BaseModel):
    """Stage 2. employee_pf = round((basic + DA) × pf% / 100)."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    employee_pf: int
    nps_employee: float
    other_deductions: float
    total: int


class Exemptions(BaseModel):
    """Stage 3. HRA min-of-three + declared LTA exemption."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    hra: int
    lta: int
    total: int


class ProfessionalTax(BaseModel):
    """Stage 4. state is the bracket list actually used ('default' for unknown states)."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    state: str
    monthly_gross: float
    monthly: float
    yearly: int


class SharedComponents(BaseModel):
    """Stages 1–4, identical for every regime in one call."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    gross_salary: GrossSalary
    employee_contributions: EmployeeContributions
    exemptions: Exemptions
    professional_tax: ProfessionalTax


# ---------------------------------------------------------------------------
# Per-regime stages
# ---------------------------------------------------------------------------

class ChapterVIADeductions(BaseModel):
    """Allowed, capped declarations only. Codes not allowed by the regime never appear."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    breakdown: Dict[str, int] = Field(default_factory=dict)
    total: int = 0


class TaxableIncome(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    before_standard_deduction: int    # gross − contributions − exemptions (floored at 0)
    standard_deduction: int
    chapter_via_deductions: int
    final: int


class SlabTaxLine(BaseModel):
    """Tax on the part of taxable income inside (lower, upper]."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    lower: float
    upper: Optional[float]
    rate: float
    taxable_amount: float
    tax: int


class RebateDetail(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    eligible: bool
    threshold: float
    max_amount: float
    amount: int
    total_income: int
    special_rate_income_excluded: bool


class SurchargeDetail(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    rate: float
    amount: int


class CessDetail(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    percent: float
    amount: int


class IncomeTax(BaseModel):
    """
    Computation sequence (order determines correctness):
      1. slab tax, each slab rounded before summing      → before_rebate
      2. 87A rebate on total gross income                 → before_surcharge
      3. surcharge on tax after rebate                    → before_cess
      4. cess on (tax after rebate + surcharge)
      5. total = before_cess + cess
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    slabs: List[SlabTaxLine]
    before_rebate: int
    rebate: RebateDetail
    before_surcharge: int
    surcharge: SurchargeDetail
    before_cess: int
    cess: CessDetail
    total: int


class MonthlyInstalment(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    month: int       # 1–12
    amount: int


class Breakdown(BaseModel):
    """
    Complete salary/tax breakdown for one regime.
    sum(monthly_withholding_schedule) == income_tax.total, always.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    regime: str
    regime_name: str
    gross_salary: int
    employee_contributions: int
    exemptions: int
    deductions: ChapterVIADeductions
    taxable_income: TaxableIncome
    income_tax: IncomeTax
    monthly_withholding_schedule: List[MonthlyInstalment]
    professional_tax_yearly: int
    take_home_yearly: int
    take_home_monthly: int


# ---------------------------------------------------------------------------
# Request boundary
# ---------------------------------------------------------------------------

class CalculateRequest(BaseModel):
    """Body of POST /api/salary/calculate."""
    model_config = ConfigDict(extra="forbid")

    fiscal_year: Optional[str] = Field(default=None, pattern=FISCAL_YEAR_REGEX)
    regimes: List[str] = Field(default_factory=lambda: [ALL_REGIMES], min_length=1)
    profile: CompensationProfile


class FiscalYearRequest(BaseModel):
    """Body of POST /refresh-rules and /clear-cache."""
    model_config = ConfigDict(extra="forbid")

    fiscal_year: Optional[str] = Field(default=None, pattern=FISCAL_YEAR_REGEX)


class RegimeError(BaseModel):
    """A requested regime that could not be computed (unknown key)."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    regime: str
    issue: str


class CalculationMetadata(BaseModel):
    """Provenance: which rules produced these numbers, and when."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    rules_source: RuleSource
    rules_fiscal_year: str
    rules_version: Optional[str] = None
    resolved_at: datetime
    calculated_at: datetime


class Disclaimer(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    message: str
    source: str
    last_updated: datetime


class CalculationResult(BaseModel):
    """Output of service.calculate() — one Breakdown per computed regime."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    fiscal_year: str
    regimes: Dict[str, Breakdown]
    errors: List[RegimeError] = Field(default_factory=list)
    breakdown: SharedComponents
    metadata: CalculationMetadata
    disclaimer: Disclaimer


# ---------------------------------------------------------------------------
# Rule lookup / cache management responses
# ---------------------------------------------------------------------------

class RegimeSummary(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    key: str
    name: str


class RegimeListing(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    fiscal_year: str
    regimes: List[RegimeSummary]

    @property
    def keys(self) -> List[str]:
        return [regime.key for regime in self.regimes]


class StateListing(BaseModel):
    """Professional-tax states, sorted, 'default' excluded."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    fiscal_year: str
    states: List[str]


class DeductionLimitsListing(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    fiscal_year: str
    deduction_limits: Dict[str, float]


class RefreshResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    fiscal_year: str
    source: RuleSource
    resolved_at: datetime
    regimes: List[str]


class CacheEntryStatus(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    age_ms: int
    ttl_ms: int
    expired: bool


class CacheStatus(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    cache: Dict[str, CacheEntryStatus]
    ttl_ms: int


class ClearCacheResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    cleared: str          # the fiscal year, or "all"
    message: str


# ---------------------------------------------------------------------------
# Error response models: used by main.py exception handlers (cross-cutting)
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single field-level validation or business-rule error."""
    model_config = ConfigDict(extra="forbid")

    field: Optional[str] = None   # Dot-notation field path, e.g. "profile.basic"
    issue: str                     # Human-readable description of the problem


class ErrorBody(BaseModel):
    """Error envelope body."""
    model_config = ConfigDict(extra="forbid")

    code: str                                      # VALIDATION_ERROR, UNKNOWN_REGIME, etc.
    message: str                                   # High-level error description
    details: List[ErrorDetail] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """
    Standard error response format for all endpoints.

    Structure: {"error": {"code": "...", "message": "...", "details": [...]}}
    """
    model_config = ConfigDict(extra="forbid")

    error: ErrorBody


__all__ = [
    "CompensationProfile",
    "SalaryComponents",
    "GrossSalary",
    "EmployeeContributions",
    "Exemptions",
    "ProfessionalTax",
    "SharedComponents",
    "ChapterVIADeductions",
    "TaxableIncome",
    "SlabTaxLine",
    "RebateDetail",
    "SurchargeDetail",
    "CessDetail",
    "IncomeTax",
    "MonthlyInstalment",
    "Breakdown",
    "CalculateRequest",
    "FiscalYearRequest",
    "RegimeError",
    "CalculationMetadata",
    "Disclaimer",
    "CalculationResult",
    "RegimeSummary",
    "RegimeListing",
    "StateListing",
    "DeductionLimitsListing",
    "RefreshResult",
    "CacheEntryStatus",
    "CacheStatus",
    "ClearCacheResult",
    "ErrorDetail",
    "ErrorBody",
    "ErrorResponse",
    "ALL_REGIMES",
    "FISCAL_YEAR_REGEX",
]
