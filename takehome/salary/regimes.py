"""
Regime policy lookup.

The pipeline never branches on a regime's name. Everything that differs between
regimes is data on the RuleSet; this module only exposes the two policy bits the
pipeline asks about, keyed by regime:
  - which Chapter VI-A codes the regime allows
  - whether STCG/LTCG (special-rate income) disqualifies the 87A rebate

Adding a regime or a fiscal year is a rule-document change, not a code change.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Tuple

from takehome.errors import UnknownRegimeError
from takehome.rules.schemas import RuleSet
from takehome.salary.schemas import ALL_REGIMES


@dataclass(frozen=True)
class RegimePolicy:
    key: str
    allowed_deductions: FrozenSet[str]
    special_rate_income_excluded_from_rebate: bool


class RegimeEvaluator:
    """Tagged lookup table: regime key → RegimePolicy, built from one RuleSet."""

    def __init__(self, rules: RuleSet) -> None:
        self._policies: Dict[str, RegimePolicy] = {
            key: RegimePolicy(
                key=key,
                allowed_deductions=frozenset(regime.allowed_deductions),
                special_rate_income_excluded_from_rebate=regime.special_rate_income_excluded_from_rebate,
            )
            for key, regime in rules.regimes.items()
        }

    @property
    def keys(self) -> List[str]:
        return list(self._policies)

    def policy(self, regime: str) -> RegimePolicy:
        try:
            return self._policies[regime]
        except KeyError:
            raise UnknownRegimeError([regime], self._policies) from None

    def select(self, requested: Iterable[str]) -> Tuple[List[str], List[str]]:
        """
        Split requested keys into (known, unknown), preserving request order and
        dropping duplicates. "all" expands to every regime in RuleSet order.
        """
        known: List[str] = []
        unknown: List[str] = []
        for key in requested:
            candidates = self.keys if key == ALL_REGIMES else [key]
            for candidate in candidates:
                bucket = known if candidate in self._policies else unknown
                if candidate not in bucket:
                    bucket.append(candidate)
        return known, unknown


__all__ = ["RegimePolicy", "RegimeEvaluator"]
