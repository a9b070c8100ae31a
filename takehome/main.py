"""
main.py — take-home salary calculator FastAPI application entry point.

Start with: uvicorn takehome.main:app --reload --port 8000
(run from the repository root, where alembic.ini lives)
"""
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from takehome.config import settings
from takehome.errors import RuleSetUnavailable, UnknownRegimeError

# ---------------------------------------------------------------------------
# Logging: configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Run Alembic migrations (ruleset_snapshots table)
      2. Initialize Redis connection pool (None when REDIS_URL is empty)
      3. Create the process-wide RuleSetProvider with the snapshot sink
    Shutdown:
      1. Close Redis pool
      2. Dispose the database engine
    """
    # --- 1. Database: run Alembic migrations ---
    project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=project_root,
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    msg = result.stdout.strip() or "No pending migrations"
    logger.info("Alembic: %s", msg)

    # --- 2. Redis: shared ruleset cache tier ---
    from takehome.cache import create_redis_pool
    app.state.redis = await create_redis_pool()

    # --- 3. RuleSetProvider: one per process, shared by every request ---
    from takehome.database import AsyncSessionLocal, async_engine
    from takehome.rules.provider import RuleSetProvider
    from takehome.store import make_snapshot_sink

    app.state.rules_provider = RuleSetProvider(
        redis_client=app.state.redis,
        snapshot_sink=make_snapshot_sink(AsyncSessionLocal),
    )
    logger.info(
        "RuleSetProvider ready (ttl=%ss, remote=%s, shared cache=%s)",
        settings.ruleset_cache_ttl_seconds,
        "on" if settings.ruleset_remote_url else "off",
        "on" if app.state.redis is not None else "off",
    )

    logger.info("Take-home calculator v%s starting up", settings.app_version)
    yield

    # --- Shutdown ---
    if app.state.redis is not None:
        await app.state.redis.aclose()
        logger.info("Redis connection pool closed")
    await async_engine.dispose()
    logger.info("Take-home calculator shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Take-home Salary Calculator API",
    version=settings.app_version,
    description=(
        "Rule-driven Indian salary and income-tax breakdown. Computes gross salary, "
        "exemptions, slab tax, 87A rebate, surcharge, cess, monthly TDS and take-home "
        "pay for every regime defined in the fiscal year's tax rules."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# CORS middleware: restricted to frontend origins from settings
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers: registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Converts Pydantic / FastAPI 422 validation errors to standard format.
    Returns ALL field violations in one response.
    """
    details = []
    for error in exc.errors():
        # Build dot-notation field path, excluding the top-level 'body' loc
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """
    Converts FastAPI HTTPException to standard error format with semantic code.
    """
    code_map = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        422: "VALIDATION_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(UnknownRegimeError)
async def unknown_regime_handler(
    request: Request, exc: UnknownRegimeError
) -> JSONResponse:
    """Every requested regime is unknown for the fiscal year — caller error."""
    details = [
        {"field": "regimes", "issue": f"Unknown regime '{regime}'"}
        for regime in exc.regimes
    ]
    return _make_error_response(
        code="UNKNOWN_REGIME",
        message=f"No requested regime exists. Available: {', '.join(exc.available)}",
        details=details,
        status_code=422,
    )


@app.exception_handler(RuleSetUnavailable)
async def ruleset_unavailable_handler(
    request: Request, exc: RuleSetUnavailable
) -> JSONResponse:
    """No rule source produced a valid document. Reasons are per source."""
    logger.error("Ruleset unavailable fy=%s on %s", exc.fiscal_year, request.url.path)
    return _make_error_response(
        code="RULESET_UNAVAILABLE",
        message=str(exc),
        details=[{"field": None, "issue": reason} for reason in exc.reasons],
        status_code=503,
    )


@app.exception_handler(ValueError)
async def value_error_handler(
    request: Request, exc: ValueError
) -> JSONResponse:
    """
    Catches explicit ValueError raises from business logic (validator.py, service.py).
    Surfaces as 422 VALIDATION_ERROR so the caller understands it's a data issue.
    """
    return _make_error_response(
        code="VALIDATION_ERROR",
        message=str(exc),
        status_code=422,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors.
    DEBUG=true  → includes exception type & message in details (dev only).
    DEBUG=false → generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint (no auth required)
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check() -> dict:
    """Returns service health status."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from takehome.salary.routes import router as salary_router  # noqa: E402

app.include_router(salary_router)
