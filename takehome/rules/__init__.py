"""
rules — versioned tax RuleSets: schemas, sources, validation and the cached provider.
"""
from takehome.rules.provider import RuleSetProvider
from takehome.rules.schemas import ResolvedRuleSet, RuleSet

__all__ = ["RuleSetProvider", "ResolvedRuleSet", "RuleSet"]
