"""
RuleSet structural validator.

Turns a raw rule document (dict) into a RuleSet or raises RuleSetInvalid.
Pydantic does the structural work (schemas.py); this module adds the
fiscal-year consistency check and flattens pydantic's error list into a
single readable reason for logs and the RuleSetUnavailable report.
"""
from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from takehome.errors import RuleSetInvalid
from takehome.rules.schemas import SOURCE_GENERIC_DEFAULT, RuleSet, RuleSource

logger = logging.getLogger(__name__)


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error["loc"]) or "<document>"
        parts.append(f"{loc}: {error['msg']}")
    return "; ".join(parts)


def validate_rules(document: Any, fiscal_year: str, source: RuleSource) -> RuleSet:
    """
    Validate a rule document resolved for fiscal_year from source.

    The generic default is not tied to a year, so its fiscal_year is replaced by
    the requested one. Any other source must describe the year that was asked for.

    Raises:
        RuleSetInvalid: structure is missing or malformed. Nothing is ever
            defaulted — a regime without standard_deduction fails here.
    """
    if not isinstance(document, dict):
        raise RuleSetInvalid(fiscal_year, source, "document is not a JSON object")

    if source == SOURCE_GENERIC_DEFAULT:
        document = {**document, "fiscal_year": fiscal_year}

    try:
        rules = RuleSet.model_validate(document)
    except ValidationError as exc:
        reason = _format_errors(exc)
        logger.warning("Rejected %s tax rules fy=%s: %s", source, fiscal_year, reason)
        raise RuleSetInvalid(fiscal_year, source, reason) from exc

    if rules.fiscal_year != fiscal_year:
        reason = f"document describes FY {rules.fiscal_year}, expected {fiscal_year}"
        logger.warning("Rejected %s tax rules: %s", source, reason)
        raise RuleSetInvalid(fiscal_year, source, reason)

    return rules


__all__ = ["validate_rules"]
