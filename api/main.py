"""
api/main.py -- FastAPI application entry point for the portal gateway.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. preflight             -- answers every OPTIONS with 204 + CORS headers,
                              before authentication or host checks
  2. log_requests          -- method, path, status, latency, client
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  4. CORSMiddleware        -- echoes the caller's Origin, credentials allowed
  5. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (document store, seed data, portal store, SSO
handshake, integration cache, purge task) and shutdown (cancel purge task,
close stores) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse, Response
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.directory import router as directory_router
from api.routes.v1.integrations import API_VERSION
from api.routes.v1.integrations import router as integrations_router
from api.routes.v1.portal import router as portal_router
from api.routes.v1.sso import router as sso_router
from api.routes.v1.webhooks import router as webhooks_router
from auth.dependencies import build_verifiers, get_current_principal
from auth.models import Principal
from auth.sso import SSOHandshake
from cache.store import IntegrationCache
from core.config import Settings, get_settings
from portal.documents import DEFAULT_DB_URL, DocumentStore
from portal.seed import seed_defaults
from portal.store import PortalStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gateway.api")

_PURGE_INTERVAL_SECONDS = 10 * 60
_PREFLIGHT_MAX_AGE = "86400"

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired documents (SSO states) every 10 minutes.

    Expired rows already read as missing; this only reclaims space.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        removed = await asyncio.to_thread(app.state.documents.purge_expired)
        if removed:
            logger.info("Purged %d expired documents", removed)


# ---------------------------------------------------------------------------
# State wiring
# ---------------------------------------------------------------------------


def init_state(
    app: FastAPI,
    settings: Settings,
    documents: DocumentStore,
    cache: IntegrationCache,
) -> None:
    """Attach the settings, verifier chain and stores to app.state.

    Shared by the production lifespan and the test lifespan so both wire the
    application identically.
    """
    app.state.settings = settings
    app.state.verifiers = build_verifiers(settings)
    app.state.documents = documents
    if settings.seed_demo_data:
        seed_defaults(documents)
    app.state.portal = PortalStore(documents, goals_visible_to_clients=settings.goals_visible_to_clients)
    app.state.sso = SSOHandshake(documents, settings.tool_urls, ttl_seconds=settings.sso_state_ttl_seconds)
    app.state.cache = cache


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Document store first -- the portal store and SSO handshake wrap it.
      2. Cache second -- depends on nothing.
      3. Purge task last -- references app.state.documents.
    """
    settings = get_settings()
    logger.info("Portal gateway starting up")
    documents = DocumentStore(settings.database_url or DEFAULT_DB_URL)
    cache = (
        IntegrationCache(settings.cache_db_path, ttl=settings.integration_cache_ttl_seconds)
        if settings.cache_db_path
        else IntegrationCache(ttl=settings.integration_cache_ttl_seconds)
    )
    init_state(app, settings, documents, cache)
    logger.info(
        "Gateway initialized (federated=%s, github=%s, tools=%s)",
        settings.federated_enabled,
        settings.github_enabled,
        ",".join(sorted(settings.tool_urls)) or "none",
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    # Shutdown
    app.state.purge_task.cancel()
    app.state.cache.close()
    app.state.documents.close()
    logger.info("Portal gateway shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="Portal Gateway",
    description="Identity, access control, SSO launches and cached integrations for the client portal.",
    version=API_VERSION,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc so we can add auth protection.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the LAST registration is the
# OUTERMOST layer. Register innermost first: SlowAPI -> CORS -> TrustedHost,
# then the two @app.middleware("http") functions below.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

# The portal frontend is served from several origins (marketing site, preview
# deployments); any origin is echoed back and credentials are allowed.
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=".*",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Every request passes through
# this coroutine before reaching any route handler. Tokens and cookies are
# never logged -- only method, path, status, latency and client address.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Preflight middleware
#
# Registered last, so it is outermost: OPTIONS never reaches authentication,
# rate limiting or routing, and always gets 204.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def preflight(request: Request, call_next):
    if request.method != "OPTIONS":
        return await call_next(request)
    headers = {
        "Access-Control-Allow-Methods": "GET, POST, PATCH, OPTIONS",
        "Access-Control-Allow-Headers": request.headers.get(
            "Access-Control-Request-Headers", "Content-Type, Authorization"
        ),
        "Access-Control-Max-Age": _PREFLIGHT_MAX_AGE,
        "Vary": "Origin",
    }
    origin = request.headers.get("Origin")
    if origin:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
    else:
        headers["Access-Control-Allow-Origin"] = "*"
    return Response(status_code=204, headers=headers)


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(portal_router, prefix="/api", tags=["Portal"])
app.include_router(directory_router, prefix="/api", tags=["Directory"])
app.include_router(sso_router, prefix="/api", tags=["SSO"])
app.include_router(integrations_router, prefix="/api", tags=["Integrations"])
app.include_router(webhooks_router, prefix="/api", tags=["Webhooks"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(principal: Principal = Depends(get_current_principal)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Portal Gateway")


@app.get("/redoc", include_in_schema=False)
async def redoc(principal: Principal = Depends(get_current_principal)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="Portal Gateway")


# ---------------------------------------------------------------------------
# Error taxonomy
#
#   400 validation_error | unknown_provider | invalid_state
#   401 unauthorized     -- no credential, or one that does not verify
#   403 forbidden        -- verified, but the role may not do this
#   404 not_found        -- missing, or hidden from this principal
#   409 conflict         -- the document changed under every retry
#   429 rate_limited     -- login throttle, with Retry-After
#   500 internal_error   -- never carries exception text
#
# Routes raise HTTPException with a {"code", "message"} dict; the handlers
# below wrap everything else in the same {"error": {...}} envelope.
# ---------------------------------------------------------------------------


def _error(
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Login throttle tripped. Retry-After tells the client when to try again."""
    retry_after = int(getattr(exc, "retry_after", 60))
    return _error(
        429,
        "rate_limited",
        "Too many requests.",
        detail=str(exc),
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """A body or query param that fails its model is a 400, never FastAPI's 422.

    This covers UpdatePatch's protected fields, nulls and bad enum values.
    """
    return _error(400, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Pass a route's {"code", "message"} detail through as the error body.

    Framework-raised errors (unknown path, wrong method) carry a plain string
    detail and get a code derived from the status.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    code = "not_found" if exc.status_code == 404 else f"http_{exc.status_code}"
    return _error(exc.status_code, code, str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected: logged with its traceback, reported as a bare 500."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")
