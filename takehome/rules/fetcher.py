"""
fetcher.py — raw rule-document sources.

Two kinds of source, both returning an unvalidated dict:
  - fetch_remote_rules()     structured JSON document over HTTP (httpx)
  - load_fiscal_default()    bundled tax-rules-<FY>.json
    load_generic_default()   bundled tax-rules-default.json

No HTML scraping: a remote response that is not a JSON object is treated exactly
like a network failure. Validation happens in validator.py, not here.
"""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Optional

import httpx

from takehome.config import settings
from takehome.errors import RemoteRulesError

logger = logging.getLogger(__name__)

# "2025-26": also guards the bundled-file lookup against path tricks
FISCAL_YEAR_PATTERN = re.compile(r"^\d{4}-\d{2}$")

_BUNDLED_DATA_DIR = Path(__file__).parent / "data"
GENERIC_DEFAULT_FILENAME = "tax-rules-default.json"


def is_valid_fiscal_year(fiscal_year: str) -> bool:
    return bool(FISCAL_YEAR_PATTERN.match(fiscal_year or ""))


def data_dir() -> Path:
    """Folder holding the bundled rule documents (settings override wins)."""
    if settings.ruleset_data_dir:
        return Path(settings.ruleset_data_dir)
    return _BUNDLED_DATA_DIR


def fiscal_default_path(fiscal_year: str) -> Path:
    return data_dir() / f"tax-rules-{fiscal_year}.json"


# ---------------------------------------------------------------------------
# Remote source
# ---------------------------------------------------------------------------

def remote_is_configured() -> bool:
    return bool(settings.ruleset_remote_url)


async def fetch_remote_rules(
    fiscal_year: str, transport: Optional[httpx.AsyncBaseTransport] = None
) -> Optional[dict]:
    """
    Fetch the structured rule document for fiscal_year.

    Returns None when no remote URL is configured (source unavailable).
    transport is only for tests (httpx.MockTransport).
    Raises RemoteRulesError on a bad URL template or URL, transport errors,
    non-2xx status, non-JSON content or a JSON payload that is not an object.
    """
    if not remote_is_configured():
        logger.debug("Remote rules URL not configured — skipping remote fetch fy=%s", fiscal_year)
        return None

    try:
        url = settings.ruleset_remote_url.format(fiscal_year=fiscal_year)
    except (KeyError, IndexError, ValueError) as exc:
        raise RemoteRulesError(f"Remote rules URL template is invalid: {type(exc).__name__}: {exc}") from exc

    async with httpx.AsyncClient(timeout=settings.ruleset_remote_timeout, transport=transport) as client:
        try:
            resp = await client.get(url, headers={"Accept": "application/json"})
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RemoteRulesError(f"Remote rules fetch failed: HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise RemoteRulesError(f"Remote rules fetch failed: {type(exc).__name__}: {exc}") from exc

    content_type = resp.headers.get("content-type", "")
    if "json" not in content_type.lower():
        raise RemoteRulesError(
            f"Remote rules source returned non-JSON content ({content_type or 'no content-type'})"
        )
    try:
        document = resp.json()
    except ValueError as exc:
        raise RemoteRulesError("Remote rules source returned malformed JSON") from exc
    if not isinstance(document, dict):
        raise RemoteRulesError("Remote rules document must be a JSON object")

    logger.info("Fetched remote tax rules fy=%s", fiscal_year)
    return document


# ---------------------------------------------------------------------------
# Bundled sources
# ---------------------------------------------------------------------------

def _read_json(path: Path) -> dict:
    with path.open(encoding="utf-8") as f:
        document = json.load(f)
    if not isinstance(document, dict):
        raise ValueError(f"{path.name} must contain a JSON object")
    return document


def load_fiscal_default(fiscal_year: str) -> Optional[dict]:
    """
    Load the bundled document for this fiscal year.
    Returns None if the year is malformed or no such file is bundled.
    """
    if not is_valid_fiscal_year(fiscal_year):
        logger.warning("Malformed fiscal year %r — no fiscal-year default looked up", fiscal_year)
        return None
    path = fiscal_default_path(fiscal_year)
    if not path.is_file():
        logger.info("No bundled tax-rules-%s.json — falling back to generic default", fiscal_year)
        return None
    logger.info("Loaded bundled tax rules from %s", path.name)
    return _read_json(path)


def load_generic_default() -> dict:
    """Load the generic bundled document. Raises OSError/ValueError if missing or unreadable."""
    path = data_dir() / GENERIC_DEFAULT_FILENAME
    document = _read_json(path)
    logger.info("Loaded generic bundled tax rules from %s", path.name)
    return document


__all__ = [
    "FISCAL_YEAR_PATTERN",
    "is_valid_fiscal_year",
    "remote_is_configured",
    "fetch_remote_rules",
    "load_fiscal_default",
    "load_generic_default",
]
