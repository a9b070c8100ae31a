"""
Take-home Tax Engine — rule-driven, per-regime salary breakdown.
Pure Python, no I/O, deterministic. Same profile + same RuleSet → same Breakdown.

All numbers come from the RuleSet (slabs, standard deduction, 87A, surcharge,
cess, deduction caps, professional-tax brackets). Regime differences are read
through RegimeEvaluator — nothing here tests a regime's name.

Stage order (CRITICAL — order and per-stage rounding determine correctness):
  1. gross salary            salary components + other income + STCG + LTCG, rounded
  2. employee contributions  round(PF) + NPS + other deductions
  3. exemptions              HRA min-of-three (each term rounded first) + declared LTA
  4. professional tax        first matching monthly bracket × 12
  5. per regime:
     a. Chapter VI-A         allowed codes only, each min(declared, cap)
     b. taxable income       floored at 0, rounded
     c. slab tax             EACH slab rounded before summing — do not round only the total
     d. 87A rebate           eligibility on total gross income, not taxable income
     e. surcharge            rate of the tier the total income falls in
     f. cess                 on tax after rebate + surcharge
  6. withholding             12 instalments, first `remainder` months get +1
  7. take-home               gross − contributions − tax − professional tax

Rounding is half-up to whole rupees at every stage (round_rupees), never
Python's banker's rounding.
"""
from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from takehome.errors import UnknownRegimeError
from takehome.rules.schemas import (
    DEFAULT_STATE_KEY,
    ProfessionalTaxBracket,
    RegimeRules,
    RuleSet,
    Slab,
    SurchargeTier,
)
from takehome.salary.regimes import RegimeEvaluator, RegimePolicy
from takehome.salary.schemas import (
    Breakdown,
    CessDetail,
    ChapterVIADeductions,
    CompensationProfile,
    EmployeeContributions,
    Exemptions,
    GrossSalary,
    IncomeTax,
    MonthlyInstalment,
    ProfessionalTax,
    RebateDetail,
    SalaryComponents,
    SharedComponents,
    SlabTaxLine,
    SurchargeDetail,
    TaxableIncome,
)

# ===========================================================================
# STATUTORY PERCENTAGES NOT CARRIED BY THE RULESET
# ===========================================================================

HRA_RENT_EXCESS_PERCENT = 10    # rent paid − 10% of (basic + DA)
HRA_METRO_PERCENT       = 50    # metro cap: 50% of (basic + DA)
HRA_NON_METRO_PERCENT   = 40    # non-metro cap: 40% of (basic + DA)

MONTHS_IN_YEAR = 12

_ONE_RUPEE = Decimal("1")


# ===========================================================================
# INTERNAL HELPERS (pure functions: no side effects, no I/O)
# ===========================================================================

def round_rupees(amount: float) -> int:
    """Round half-up to a whole rupee (2.5 → 3, 3.5 → 4)."""
    return int(Decimal(repr(amount)).quantize(_ONE_RUPEE, rounding=ROUND_HALF_UP))


def _percent_of(amount: float, percent: float) -> float:
    return amount * percent / 100


# ===========================================================================
# STAGES 1–4: regime independent
# ===========================================================================

def calculate_gross_salary(profile: CompensationProfile) -> GrossSalary:
    components = SalaryComponents(
        basic=profile.basic,
        hra=profile.hra,
        conveyance=profile.conveyance,
        special_allowances=profile.special_allowances,
        lta=profile.lta,
        bonus=profile.bonus,
        other_taxable=profile.other_taxable,
    )
    total = (
        sum(components.model_dump().values())
        + profile.other_income
        + profile.stcg
        + profile.ltcg
    )
    return GrossSalary(
        components=components,
        other_income=profile.other_income,
        stcg=profile.stcg,
        ltcg=profile.ltcg,
        total=round_rupees(total),
    )


def calculate_employee_contributions(profile: CompensationProfile) -> EmployeeContributions:
    employee_pf = round_rupees(_percent_of(profile.basic_plus_da, profile.employee_pf_percent))
    total = employee_pf + profile.nps_employee + profile.other_deductions
    return EmployeeContributions(
        employee_pf=employee_pf,
        nps_employee=profile.nps_employee,
        other_deductions=profile.other_deductions,
        total=round_rupees(total),
    )


def calculate_hra_exemption(profile: CompensationProfile) -> int:
    """
    HRA exemption under Section 10(13A), Rule 2A — minimum of:
      1. HRA received
      2. rent paid − 10% of (basic + DA), clipped at 0   ← MUST clip at 0
      3. 50% (metro) / 40% (non-metro) of (basic + DA)
    Each term is rounded to a whole rupee before taking the minimum.
    """
    basis = profile.basic_plus_da
    metro_pct = HRA_METRO_PERCENT if profile.lives_in_metro else HRA_NON_METRO_PERCENT

    received = round_rupees(profile.hra)
    rent_excess = round_rupees(max(0.0, profile.rent_paid - _percent_of(basis, HRA_RENT_EXCESS_PERCENT)))
    salary_cap = round_rupees(_percent_of(basis, metro_pct))
    return max(0, min(received, rent_excess, salary_cap))


def calculate_lta_exemption(profile: CompensationProfile) -> int:
    """Declared LTA exemption, passed through (travel proofs and block years are not modelled)."""
    return round_rupees(profile.lta_exemption)


def calculate_exemptions(profile: CompensationProfile) -> Exemptions:
    hra = calculate_hra_exemption(profile)
    lta = calculate_lta_exemption(profile)
    return Exemptions(hra=hra, lta=lta, total=hra + lta)


def _professional_tax_brackets(
    rules: RuleSet, state: str
) -> Tuple[str, List[ProfessionalTaxBracket]]:
    """Exact state key first, then a case-insensitive match, then 'default'."""
    if state in rules.professional_tax:
        return state, rules.professional_tax[state]
    wanted = state.strip().lower()
    for key, brackets in rules.professional_tax.items():
        if key.lower() == wanted:
            return key, brackets
    return DEFAULT_STATE_KEY, rules.professional_tax[DEFAULT_STATE_KEY]


def calculate_professional_tax(profile: CompensationProfile, rules: RuleSet) -> ProfessionalTax:
    """
    monthly_gross = (basic + HRA + special allowances) / 12.
    The first bracket whose monthly_upto is null or >= monthly_gross applies.
    """
    monthly_gross = (profile.basic + profile.hra + profile.special_allowances) / MONTHS_IN_YEAR
    state, brackets = _professional_tax_brackets(rules, profile.state)

    monthly = 0.0
    for bracket in brackets:
        if bracket.monthly_upto is None or monthly_gross <= bracket.monthly_upto:
            monthly = bracket.monthly_amount
            break

    return ProfessionalTax(
        state=state,
        monthly_gross=monthly_gross,
        monthly=monthly,
        yearly=round_rupees(monthly * MONTHS_IN_YEAR),
    )


def calculate_shared_components(profile: CompensationProfile, rules: RuleSet) -> SharedComponents:
    """Stages 1–4. Computed once per call and reused by every regime."""
    return SharedComponents(
        gross_salary=calculate_gross_salary(profile),
        employee_contributions=calculate_employee_contributions(profile),
        exemptions=calculate_exemptions(profile),
        professional_tax=calculate_professional_tax(profile, rules),
    )


# ===========================================================================
# STAGE 5: per regime
# ===========================================================================

def calculate_chapter_via_deductions(
    profile: CompensationProfile, rules: RuleSet, policy: RegimePolicy
) -> ChapterVIADeductions:
    """
    For each code the regime allows and the profile declares: min(declared, cap).
    Declared codes the regime does not allow are ignored for this regime only.
    """
    breakdown: Dict[str, int] = {}
    for code in sorted(policy.allowed_deductions):
        declared = profile.investments.get(code, 0)
        if declared <= 0:
            continue
        breakdown[code] = round_rupees(min(declared, rules.deduction_limits[code]))
    return ChapterVIADeductions(breakdown=breakdown, total=sum(breakdown.values()))


def calculate_taxable_income(
    shared: SharedComponents, regime_rules: RegimeRules, deductions: ChapterVIADeductions
) -> TaxableIncome:
    before_std = max(
        0,
        shared.gross_salary.total
        - shared.employee_contributions.total
        - shared.exemptions.total,
    )
    standard_deduction = round_rupees(regime_rules.standard_deduction)
    final = max(0, before_std - standard_deduction - deductions.total)
    return TaxableIncome(
        before_standard_deduction=before_std,
        standard_deduction=standard_deduction,
        chapter_via_deductions=deductions.total,
        final=round_rupees(final),
    )


def calculate_slab_tax(taxable_income: float, slabs: List[Slab]) -> Tuple[int, List[SlabTaxLine]]:
    """
    Progressive slab tax. The part of taxable_income inside (previous upto, upto]
    is taxed at that slab's rate; each slab's tax is rounded before it is added.
    Stops at the first slab whose ceiling covers taxable_income.
    """
    total = 0
    lines: List[SlabTaxLine] = []
    lower = 0.0
    for slab in slabs:
        ceiling = math.inf if slab.upto is None else slab.upto
        portion = min(taxable_income, ceiling) - lower
        if portion > 0:
            tax = round_rupees(_percent_of(portion, slab.rate))
            lines.append(SlabTaxLine(
                lower=lower, upper=slab.upto, rate=slab.rate, taxable_amount=portion, tax=tax,
            ))
            total += tax
        if taxable_income <= ceiling:
            break
        lower = ceiling
    return total, lines


def calculate_rebate(
    tax_before_rebate: int,
    total_income: int,
    regime_rules: RegimeRules,
    profile: CompensationProfile,
    excludes_special_rate_income: bool,
) -> RebateDetail:
    """
    Section 87A. Eligible when total gross income <= threshold; a regime that
    excludes special-rate income loses eligibility whenever STCG + LTCG > 0.
    Rebate = min(max rebate, tax before rebate).
    """
    special_rate_excluded = excludes_special_rate_income and (profile.stcg + profile.ltcg) > 0
    eligible = total_income <= regime_rules.rebate.threshold and not special_rate_excluded
    amount = round_rupees(min(regime_rules.rebate.amount, tax_before_rebate)) if eligible else 0
    return RebateDetail(
        eligible=eligible,
        threshold=regime_rules.rebate.threshold,
        max_amount=regime_rules.rebate.amount,
        amount=amount,
        total_income=total_income,
        special_rate_income_excluded=special_rate_excluded,
    )


def surcharge_rate(total_income: int, tiers: List[SurchargeTier]) -> float:
    """Rate of the first tier whose upto is null or >= total_income. No tiers → 0."""
    for tier in tiers:
        if tier.upto is None or total_income <= tier.upto:
            return tier.rate
    return 0.0


def calculate_surcharge(tax_after_rebate: int, total_income: int, tiers: List[SurchargeTier]) -> SurchargeDetail:
    rate = surcharge_rate(total_income, tiers)
    return SurchargeDetail(rate=rate, amount=round_rupees(_percent_of(tax_after_rebate, rate)))


def calculate_cess(tax_after_surcharge: int, cess_percent: float) -> CessDetail:
    return CessDetail(
        percent=cess_percent,
        amount=round_rupees(_percent_of(tax_after_surcharge, cess_percent)),
    )


def calculate_income_tax(
    taxable_income: int,
    total_income: int,
    regime_rules: RegimeRules,
    policy: RegimePolicy,
    profile: CompensationProfile,
) -> IncomeTax:
    before_rebate, slab_lines = calculate_slab_tax(taxable_income, regime_rules.slabs)

    rebate = calculate_rebate(
        before_rebate, total_income, regime_rules, profile,
        policy.special_rate_income_excluded_from_rebate,
    )
    before_surcharge = max(0, before_rebate - rebate.amount)

    surcharge = calculate_surcharge(before_surcharge, total_income, regime_rules.surcharge_tiers)
    before_cess = before_surcharge + surcharge.amount

    # Cess on post-87A, post-surcharge tax: NOT on slab tax
    cess = calculate_cess(before_cess, regime_rules.cess_percent)

    return IncomeTax(
        slabs=slab_lines,
        before_rebate=before_rebate,
        rebate=rebate,
        before_surcharge=before_surcharge,
        surcharge=surcharge,
        before_cess=before_cess,
        cess=cess,
        total=before_cess + cess.amount,
    )


# ===========================================================================
# STAGES 6–7
# ===========================================================================

def build_withholding_schedule(total_tax: int) -> List[MonthlyInstalment]:
    """
    Spread total_tax over 12 months: base = floor(total / 12); the first
    `remainder` months (1-indexed) pay base + 1. Sums to total_tax exactly.
    """
    base, remainder = divmod(total_tax, MONTHS_IN_YEAR)
    return [
        MonthlyInstalment(month=month, amount=base + (1 if month <= remainder else 0))
        for month in range(1, MONTHS_IN_YEAR + 1)
    ]


def calculate_take_home(
    gross_salary: int, employee_contributions: int, total_tax: int, professional_tax_yearly: int
) -> Tuple[int, int]:
    """Returns (yearly, monthly). Never negative."""
    yearly = max(0, gross_salary - employee_contributions - total_tax - professional_tax_yearly)
    return yearly, round_rupees(yearly / MONTHS_IN_YEAR)


# ===========================================================================
# PUBLIC API
# ===========================================================================

def compute_regime_breakdown(
    profile: CompensationProfile,
    rules: RuleSet,
    regime: str,
    shared: Optional[SharedComponents] = None,
    evaluator: Optional[RegimeEvaluator] = None,
) -> Breakdown:
    """
    Full breakdown for one regime.

    Raises:
        UnknownRegimeError: regime is not defined in rules.
    """
    evaluator = evaluator or RegimeEvaluator(rules)
    policy = evaluator.policy(regime)
    regime_rules = rules.regimes[regime]
    shared = shared or calculate_shared_components(profile, rules)

    deductions = calculate_chapter_via_deductions(profile, rules, policy)
    taxable = calculate_taxable_income(shared, regime_rules, deductions)
    total_income = shared.gross_salary.total
    income_tax = calculate_income_tax(taxable.final, total_income, regime_rules, policy, profile)

    take_home_yearly, take_home_monthly = calculate_take_home(
        shared.gross_salary.total,
        shared.employee_contributions.total,
        income_tax.total,
        shared.professional_tax.yearly,
    )

    return Breakdown(
        regime=regime,
        regime_name=rules.regime_name(regime),
        gross_salary=shared.gross_salary.total,
        employee_contributions=shared.employee_contributions.total,
        exemptions=shared.exemptions.total,
        deductions=deductions,
        taxable_income=taxable,
        income_tax=income_tax,
        monthly_withholding_schedule=build_withholding_schedule(income_tax.total),
        professional_tax_yearly=shared.professional_tax.yearly,
        take_home_yearly=take_home_yearly,
        take_home_monthly=take_home_monthly,
    )


def compute(
    profile: CompensationProfile, rules: RuleSet, regimes: Iterable[str]
) -> Dict[str, Breakdown]:
    """
    One Breakdown per requested regime ("all" expands to every regime).

    Raises:
        UnknownRegimeError: any requested key is not in rules. Callers that want
            partial results split keys with RegimeEvaluator.select() first.
    """
    evaluator = RegimeEvaluator(rules)
    known, unknown = evaluator.select(regimes)
    if unknown:
        raise UnknownRegimeError(unknown, evaluator.keys)
    shared = calculate_shared_components(profile, rules)
    return {
        regime: compute_regime_breakdown(profile, rules, regime, shared, evaluator)
        for regime in known
    }


__all__ = [
    "round_rupees",
    "calculate_gross_salary",
    "calculate_employee_contributions",
    "calculate_hra_exemption",
    "calculate_lta_exemption",
    "calculate_exemptions",
    "calculate_professional_tax",
    "calculate_shared_components",
    "calculate_chapter_via_deductions",
    "calculate_taxable_income",
    "calculate_slab_tax",
    "calculate_rebate",
    "surcharge_rate",
    "calculate_surcharge",
    "calculate_cess",
    "calculate_income_tax",
    "build_withholding_schedule",
    "calculate_take_home",
    "compute_regime_breakdown",
    "compute",
]
