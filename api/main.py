"""
Agency Bulk Import FastAPI Backend.

Serves the spreadsheet and PDF import flows plus loss-ratio analytics.
Run with: uvicorn api.main:app --reload --port 8002
"""

import os
import time
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from agency_import import __version__
from agency_import.config import load_config
from .auth import access_token_from_request
from .routers import imports, analytics

logger = logging.getLogger(__name__)


def get_rate_limit_key(request: Request) -> str:
    """Per-session key when a token is present, else the client IP."""
    token = access_token_from_request(request)
    if token:
        # Token hash, so the limiter never needs a user lookup
        return f"session:{hash(token)}"
    return get_remote_address(request)


limiter = Limiter(key_func=get_rate_limit_key)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 60)
    logger.info(f"Agency Bulk Import {__version__} starting up...")

    try:
        config = load_config()
    except ValueError as e:
        logger.error(f"Invalid import configuration: {e}")
    else:
        logger.info(
            f"Import settings: diagnostics={config.max_diagnostics}, "
            f"company suffix='{config.company_suffix}', claim prefix='{config.claim_number_prefix}', "
            f"files={'/'.join(config.allowed_extensions)}"
        )

    for name in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY"):
        if not os.environ.get(name):
            logger.warning(f"{name} is not set; store access will fail")

    logger.info("=" * 60)
    yield
    logger.info("Agency Bulk Import shutting down...")


app = FastAPI(
    title="Agency Bulk Import API",
    description="Bulk policy, claim and policy document imports for insurance agencies",
    version=__version__,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Comma-separated ALLOWED_ORIGINS in production
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:8002").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


class UploadTimingMiddleware(BaseHTTPMiddleware):
    """Log how long each import request took."""

    async def dispatch(self, request: Request, call_next):
        if request.method != "POST" or not request.url.path.startswith("/api/imports"):
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.url.path} -> {response.status_code} in {elapsed_ms:.0f} ms")
        return response


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(UploadTimingMiddleware)

app.include_router(imports.router, prefix="/api/imports", tags=["Imports"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["Analytics"])


@app.get("/health")
async def health():
    """Health check for monitoring."""
    return {"status": "healthy", "version": __version__}
