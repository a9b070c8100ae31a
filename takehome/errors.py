"""
errors.py — domain exceptions shared by the rules provider, the salary
pipeline and the HTTP layer.

main.py maps each of these onto the standard {error: {code, message, details}}
envelope; nothing below knows about HTTP.
"""
from __future__ import annotations

from typing import Iterable


class RuleSetInvalid(ValueError):
    """A candidate rule document failed structural validation."""

    def __init__(self, fiscal_year: str, source: str, reason: str):
        super().__init__(f"Rule document for FY {fiscal_year} from {source} is invalid: {reason}")
        self.fiscal_year = fiscal_year
        self.source = source
        self.reason = reason


class RuleSetUnavailable(RuntimeError):
    """Every rule source (remote, fiscal-year default, generic default) failed."""

    def __init__(self, fiscal_year: str, reasons: Iterable[str] = ()):
        self.fiscal_year = fiscal_year
        self.reasons = list(reasons)
        super().__init__(f"No valid tax rules available for FY {fiscal_year}")


class RemoteRulesError(Exception):
    """Raised when the remote rule document cannot be fetched or decoded."""


class UnknownRegimeError(ValueError):
    """None of the requested regime keys exist in the resolved RuleSet."""

    def __init__(self, regimes: Iterable[str], available: Iterable[str]):
        self.regimes = list(regimes)
        self.available = sorted(available)
        super().__init__(
            f"Unknown regime(s) {', '.join(self.regimes)}; "
            f"available: {', '.join(self.available) or 'none'}"
        )


__all__ = [
    "RuleSetInvalid",
    "RuleSetUnavailable",
    "RemoteRulesError",
    "UnknownRegimeError",
]
