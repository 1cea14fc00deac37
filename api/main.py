"""
api/main.py -- FastAPI application entry point for Atlas.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- CORS headers for allowed browser origins (credentials on)
  3. SlowAPIMiddleware     -- per-route rate limits from api.limiter

Lifespan owns every long-lived resource: the user store, the audit log, the
token codec and the AuthService built from them. They are opened once on
startup, published on app.state, and closed on shutdown. Nothing else in the
codebase opens its own database handle.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

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
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.audit import router as audit_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.audit import AuditLog
from auth.dependencies import get_current_user
from auth.errors import AuthError, InternalError
from auth.models import AuthContext
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("atlas.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open stores and build the auth service on startup; close them on shutdown.

    The token codec gets the secret from the settings object here, once.
    get_settings() has already failed start-up if SECRET_KEY is missing in
    production.
    """
    logger.info("Atlas API starting up")
    settings = get_settings()
    app.state.user_store = UserStore(settings.database_url)
    app.state.audit_log = AuditLog(settings.database_url)
    app.state.token_codec = TokenCodec(
        settings.secret_key,
        settings.jwt_algorithm,
        timedelta(seconds=settings.token_expire_seconds),
    )
    app.state.auth_service = AuthService(
        app.state.user_store,
        app.state.audit_log,
        app.state.token_codec,
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    if not app.state.user_store.has_users():
        logger.warning("No user accounts exist. Create one with: python main.py create-user")
    logger.info("Auth initialized (token ttl=%ss, bcrypt rounds=%s)", settings.token_expire_seconds, settings.bcrypt_rounds)

    yield

    app.state.audit_log.close()
    app.state.user_store.close()
    logger.info("Atlas API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Atlas API",
    description="Travel-agency operations and analytics -- authentication and access control.",
    version=API_VERSION,
    lifespan=lifespan,
    # Built-in /docs, /redoc and /openapi.json are replaced below by auth-protected routes.
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
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

# SlowAPIMiddleware reads the limiter from app.state.
app.state.limiter = limiter


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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(audit_router, prefix="/api/v1", tags=["Audit"])


@app.get("/openapi.json", include_in_schema=False)
def openapi_schema(identity: AuthContext = Depends(get_current_user)) -> JSONResponse:
    """The API schema, readable by signed-in callers only."""
    return JSONResponse(app.openapi())


@app.get("/docs", include_in_schema=False)
def docs(identity: AuthContext = Depends(get_current_user)):
    """Swagger UI, behind the same token check as the API."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Atlas API")


@app.get("/redoc", include_in_schema=False)
def redoc(identity: AuthContext = Depends(get_current_user)):
    """ReDoc, behind the same token check as the API."""
    return get_redoc_html(openapi_url="/openapi.json", title="Atlas API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error leaves as {"message": ..., "code": ...} so clients parse one
# shape regardless of status.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, body: dict, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(**body).model_dump(exclude_none=True),
        headers=headers,
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render auth-core errors. 401s advertise the Bearer scheme."""
    if exc.status_code >= 500:
        logger.error("Internal auth error on %s %s: %r", request.method, request.url.path, exc)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return _error_response(exc.status_code, exc.to_body(), headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    return _error_response(
        429,
        {"message": "Too many requests.", "code": "RATE_LIMITED"},
        {"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with field-level detail when the body or query fails validation."""
    fields: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields[".".join(loc) or "body"] = err.get("msg", "invalid")
    return _error_response(400, {"message": "Request validation failed", "code": "VALIDATION_ERROR", "fields": fields})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured errors for HTTPException. A dict detail is used as the body directly."""
    if isinstance(exc.detail, dict) and "message" in exc.detail:
        body = {"code": f"HTTP_{exc.status_code}", **exc.detail}
    else:
        body = {"message": str(exc.detail), "code": f"HTTP_{exc.status_code}"}
    return _error_response(exc.status_code, body, getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the server log only; the client gets a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, InternalError().to_body())


# ---------------------------------------------------------------------------
# Health endpoint -- no auth, no rate limit
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Liveness check. Does not touch the database."""
    return HealthResponse(version=API_VERSION)
