"""
api/main.py -- SiteGuard HTTP service.

Serves the authentication core under /api/v1: account routes in
api/routes/v1/auth.py, account administration in api/routes/v1/admin.py, and
/api/v1/health here. Other services of the platform mount their own routers
on this app and gate them with auth.dependencies.authorize(<role>).

Run with:  uvicorn api.main:app --reload

Request path through the middleware (first to last):
  TrustedHostMiddleware -- Host header must match ALLOWED_HOSTS
  CORSMiddleware        -- browser origins from CORS_ORIGINS, credentials allowed
  SlowAPIMiddleware     -- per-route limits declared in the route modules

Lifespan builds the Authenticator (engine, stores, hasher) once, runs the
hasher self-test, and attaches both Settings and the Authenticator to
app.state. Request handlers reach them only through the Depends() helpers in
auth/dependencies.py. Shutdown cancels the session sweep and disposes the
engine.
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
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from auth.authenticator import Authenticator
from auth.dependencies import get_current_principal
from auth.errors import AuthError, StorageUnavailable
from auth.models import Principal
from core.config import get_settings

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("siteguard.api")

_settings = get_settings()

_PURGE_INTERVAL_SECONDS = 6 * 60 * 60

# ---------------------------------------------------------------------------
# Background session sweep
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired sessions every 6 hours.

    Expiry is enforced lazily on every lookup; this only keeps the table
    small. The sweep runs in a worker thread because it is a blocking DB call.
    A failed sweep is logged and retried next round; the loop ends only on
    cancellation at shutdown.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        try:
            removed = await asyncio.to_thread(app.state.authenticator.sessions.purge_expired)
        except StorageUnavailable:
            logger.warning("Session sweep skipped: auth store unavailable")
            continue
        except Exception:
            logger.exception("Session sweep failed; trying again next round")
            continue
        logger.info("Session sweep removed %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire the auth core into app.state for the life of the server.

    Startup order:
      1. Authenticator -- creates the engine and tables.
      2. Hasher self-test -- a broken entropy source or work factor aborts
         startup here, before any request can store an unusable hash.
      3. Sweep task last -- references app.state.authenticator.
    """
    logger.info("SiteGuard API starting up")
    settings = get_settings()
    authenticator = Authenticator.from_settings(settings)
    authenticator.hasher.self_test()
    app.state.settings = settings
    app.state.authenticator = authenticator
    if not authenticator.principals.has_principals():
        logger.warning("No accounts exist yet. Create the first admin with: python main.py create-admin EMAIL")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.authenticator.close()
    logger.info("SiteGuard API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SiteGuard API",
    description="Authentication, sessions, password reset and role-based authorization.",
    version=__version__,
    lifespan=lifespan,
    # /docs and /redoc are re-registered below behind get_current_principal.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack (see module docstring for order)
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPIMiddleware finds the limiter on app.state.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Logs method, path, status, latency and client address. Never logs headers
# or bodies: they carry session ids, passwords and reset tokens.
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
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
def docs(principal: Principal = Depends(get_current_principal)):
    """Swagger UI for signed-in principals."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="SiteGuard API")


@app.get("/redoc", include_in_schema=False)
def redoc(principal: Principal = Depends(get_current_principal)):
    """ReDoc for signed-in principals."""
    return get_redoc_html(openapi_url="/openapi.json", title="SiteGuard API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves as {"error": {"code", "message", "detail"}}.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map every auth.errors exception to its status code and a generic message.

    The message is the class-level generic text (or an equally generic
    override); internal detail never reaches the client.
    StorageUnavailable carries Retry-After because it is the one retryable kind.
    """
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    response.headers["Cache-Control"] = "no-store"
    if exc.retryable:
        response.headers["Retry-After"] = "5"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with the rate_limited code. Retry-After defaults to one minute."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc.detail) if getattr(exc, "detail", None) else None,
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with the failing field locations.

    Only loc/type/msg are echoed back; the rejected input values are dropped
    because they may be passwords.
    """
    fields = [{"loc": list(e.get("loc", ())), "type": e.get("type"), "msg": e.get("msg")} for e in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(fields),
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap Starlette HTTP errors (404 on unknown paths, 405, ...) in the envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback server-side and answer with a bare 500."""
    logger.exception("Unexpected error while serving %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Public and unlimited. Probes the auth store with a cheap COUNT.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and whether the auth store answers."""
    database = "ok"
    try:
        request.app.state.authenticator.principals.has_principals()
    except StorageUnavailable:
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": database},
    )
