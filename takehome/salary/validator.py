"""
Compensation profile business-rule validator.

Runs AFTER Pydantic structural validation has already passed (non-negative,
finite, known fields). Collects all violations in a single pass and raises
ValueError with a JSON-encoded list of {field, issue} dicts so the route can
build the standard error envelope.

Rules enforced:
  1. lta_exemption        <= lta received
  2. investments keys     non-blank section codes
  3. state                non-blank (unknown states are fine — they use 'default')

Codes that the resolved RuleSet does not know are NOT errors here: a regime
that does not allow a code simply ignores it.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from takehome.salary.schemas import CompensationProfile

logger = logging.getLogger(__name__)


def validate_business_rules(profile: CompensationProfile) -> None:
    """
    Validate profile against the cross-field rules Pydantic cannot express.

    Raises:
        ValueError: If any rule is violated. The message is a JSON string
            containing a list of {"field": str, "issue": str} dicts.
    """
    violations: list[dict[str, Any]] = []

    # ---- 1. LTA exemption cannot exceed LTA received -----------------------
    if profile.lta_exemption > profile.lta:
        violations.append({
            "field": "profile.lta_exemption",
            "issue": (
                f"Declared LTA exemption ₹{profile.lta_exemption:,.0f} exceeds "
                f"LTA received ₹{profile.lta:,.0f}."
            ),
        })

    # ---- 2. Investment section codes ---------------------------------------
    for code in profile.investments:
        if not code.strip():
            violations.append({
                "field": "profile.investments",
                "issue": "Deduction section code must not be blank.",
            })

    # ---- 3. State ----------------------------------------------------------
    if not profile.state.strip():
        violations.append({
            "field": "profile.state",
            "issue": "State must not be blank. Omit it to use the default professional tax.",
        })

    if violations:
        logger.info("Business-rule validation failed with %d violation(s)", len(violations))
        raise ValueError(json.dumps(violations))
