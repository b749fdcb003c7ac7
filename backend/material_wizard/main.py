"""
Material Entry Wizard API
FastAPI service hosting material entry wizards server-side; reference data
and material creation go through the construction REST backend.
"""
import os
import logging
import time
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from material_wizard.config import (
    BACKEND_BASE_URL,
    BACKEND_TIMEOUT_SECONDS,
    REFERENCE_CACHE_TTL_SECONDS,
    SESSION_IDLE_TTL_SECONDS,
)
from material_wizard.services.logging_config import setup_logging
from material_wizard.services.middleware import RequestTimingMiddleware
from material_wizard.services.perf_monitor import tracker as perf_tracker
from material_wizard.services.reference_data import ReferenceCache
from material_wizard.services.session_store import SessionStore

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("material-wizard")

# Record process start time for uptime calculation
_PROCESS_START = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.http = httpx.AsyncClient(base_url=BACKEND_BASE_URL, timeout=BACKEND_TIMEOUT_SECONDS)
    app.state.reference_cache = ReferenceCache(ttl_seconds=REFERENCE_CACHE_TTL_SECONDS)
    app.state.sessions = SessionStore(
        idle_ttl_seconds=SESSION_IDLE_TTL_SECONDS,
        reference_cache=app.state.reference_cache,
    )
    logger.info(f"Backend: {BACKEND_BASE_URL} (timeout {BACKEND_TIMEOUT_SECONDS}s)")

    yield

    await app.state.sessions.close_all()
    await app.state.http.aclose()


app = FastAPI(
    title="Material Entry Wizard API",
    version="1.0.0",
    description="Multi-step material entry for construction projects",
    lifespan=lifespan,
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Security headers on every response; wizard state is never cached."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
        return response


_cors_default = "http://localhost:3000"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
)
app.add_middleware(SecurityHeadersMiddleware)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

from material_wizard.api.wizard_routes import router as wizard_router

app.include_router(wizard_router)


@app.get("/health")
async def health_check(request: Request):
    return {
        "status": "active",
        "version": "1.0.0",
        "backend_base_url": BACKEND_BASE_URL,
        "active_sessions": len(request.app.state.sessions),
    }


@app.get("/metrics")
async def metrics():
    """Session and backend-call metrics from the in-process tracker."""
    snapshot = perf_tracker.get_metrics()
    return {
        "uptime_seconds": round(time.monotonic() - _PROCESS_START, 1),
        **snapshot,
    }
