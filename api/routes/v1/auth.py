"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login            -- password login; sets auth cookie, returns token
  POST /api/v1/auth/logout           -- clears cookie; always 200
  GET  /api/v1/auth/me               -- resolved identity (requires auth)
  POST /api/v1/auth/change-password  -- change own password (requires auth)

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  Login failures return one body for every cause. AuthService decides and
  auth_error_handler in api/main.py renders it.
  Cache-Control: no-store on responses that carry a token.

Handlers that reach bcrypt are plain `def` so FastAPI runs them in the
thread pool instead of on the event loop.

@limiter.limit sits under @router.post so FastAPI registers the rate-limited
function. Annotations here are not postponed: FastAPI resolves them against
the wrapper's module globals.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    ChangePasswordRequest,
    ErrorResponse,
    IdentityResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    SuccessResponse,
    UserProfile,
)
from auth.dependencies import extract_token, get_client_ip, get_current_user, get_user_agent
from auth.models import AuthContext
from auth.service import AuthService
from auth.tokens import clear_auth_cookie, set_auth_cookie
from core.config import get_settings

logger = logging.getLogger("atlas.api.auth")

# Auth policy:
# - POST /api/v1/auth/login:           public
# - POST /api/v1/auth/logout:          public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:              requires auth (get_current_user)
# - POST /api/v1/auth/change-password: requires auth (get_current_user)
router = APIRouter()


@router.post("/auth/login", response_model=LoginResponse, responses={401: {"model": ErrorResponse}})
@limiter.limit(login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the auth cookie and return the token."""
    service: AuthService = request.app.state.auth_service
    settings = get_settings()
    # InvalidCredentials propagates to auth_error_handler like every other 401.
    result = service.login(body.email, body.password, get_client_ip(request), get_user_agent(request))
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(user=UserProfile.from_user(result.user), token=result.token).model_dump(by_alias=True),
    )
    set_auth_cookie(
        resp,
        result.token,
        cookie_name=settings.auth_cookie_name,
        max_age=settings.token_expire_seconds,
        secure=settings.secure_cookies,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=SuccessResponse)
def logout(request: Request) -> JSONResponse:
    """Record the logout if the token is still valid, then clear the cookie.

    Always 200. The token itself stays valid until it expires -- there is no
    server-side session to revoke.
    """
    service: AuthService = request.app.state.auth_service
    settings = get_settings()
    try:
        service.logout(extract_token(request), get_client_ip(request), get_user_agent(request))
    except Exception:
        # Logout must stay idempotent for the client whatever happens server-side.
        logger.exception("Logout bookkeeping failed")
    resp = JSONResponse(content=SuccessResponse(message="Logged out successfully").model_dump())
    clear_auth_cookie(resp, settings.auth_cookie_name, secure=settings.secure_cookies)
    return resp


@router.get("/auth/me", response_model=MeResponse, responses={401: {"model": ErrorResponse}})
def me(identity: AuthContext = Depends(get_current_user)) -> MeResponse:
    """Return the resolved identity of the caller, including derived permissions."""
    return MeResponse(user=IdentityResponse.from_context(identity))


@router.post(
    "/auth/change-password",
    response_model=SuccessResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: AuthContext = Depends(get_current_user),
) -> SuccessResponse:
    """Change the caller's password. Policy and mismatch errors come back as 400."""
    service: AuthService = request.app.state.auth_service
    service.change_password(
        identity.id,
        body.current_password,
        body.new_password,
        body.confirm_password,
        ip=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return SuccessResponse(message="Password changed successfully")
