"""
auth/dependencies.py -- FastAPI Depends() guards for authentication and permissions.

Token sources, in priority order:
  1. "auth-token" cookie -- set by POST /api/v1/auth/login (httpOnly).
  2. Authorization: Bearer <token> header -- API clients.
A request carrying both is judged by the cookie alone.

Per-request flow:
  get_current_user()      verify token -> load profile -> AuthContext, or 401
  require_permissions()   get_current_user() first, then every permission, or 403
  require_any_permission() same, but one permission is enough
  require_branch_access() get_current_user() first, then the requested branch, or 403

Because the permission guards take get_current_user as a sub-dependency,
FastAPI resolves authentication first. An invalid token therefore always
ends in 401 and never reaches the permission check.

The token is verified before any store access, so forged or expired tokens
cost no database round trip.

The resolved identity is returned to the route as a parameter:
    @router.get("/reports")
    def reports(identity: AuthContext = Depends(require_permissions(Permission.VIEW_ANALYTICS))): ...
Nothing is written onto request.state.

Layer rule: no imports from api/. fastapi is allowed because this module is
part of the dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, Request

from auth.audit import write_audit_entry
from auth.errors import BranchAccessDenied, PermissionDenied, TokenError, ValidationError
from auth.models import AuditAction, AuditEntry, AuthContext
from auth.permissions import PERMISSION_MATRIX, Permission, can_access_branch
from core.config import get_settings

logger = logging.getLogger("atlas.auth.guard")


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def extract_token(request: Request) -> str | None:
    """Return the raw token from the auth cookie, else the Bearer header, else None."""
    token = request.cookies.get(get_settings().auth_cookie_name)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def get_client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer, else "unknown"."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded.split(",")[0].strip():
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def get_user_agent(request: Request) -> str:
    return request.headers.get("User-Agent") or "unknown"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def get_current_user(request: Request) -> AuthContext:
    """Require a valid token. Raises TokenError (rendered as 401) otherwise.

    Authority comes from the token: role and branch are taken from the signed
    claims. The store is read only for profile fields, and a token whose
    account has since been deleted or deactivated is rejected.
    """
    token = extract_token(request)
    if not token:
        raise TokenError("no token")

    codec = request.app.state.token_codec
    try:
        claims = codec.verify(token)
    except TokenError as exc:
        logger.info(
            "Rejected token (%s) on %s %s from %s",
            exc.reason,
            request.method,
            request.url.path,
            get_client_ip(request),
        )
        raise

    user = request.app.state.user_store.find_by_id(claims.sub)
    if user is None or not user.is_active:
        logger.info("Rejected token for missing or inactive account %s", claims.sub)
        raise TokenError("account unavailable")

    return AuthContext(
        id=user.id,
        email=user.email,
        name=user.name,
        role=claims.role,
        branch_id=claims.branch_id,
        agent_number=user.agent_number,
        permissions=PERMISSION_MATRIX.permissions_for(claims.role),
        is_active=user.is_active,
        created_at=user.created_at,
        updated_at=user.updated_at,
        last_login_at=user.last_login_at,
        claims=claims,
    )


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


def _deny(request: Request, identity: AuthContext, required: tuple[Permission, ...], mode: str) -> PermissionDenied:
    logger.warning(
        "Permission denied for %s (role=%s) on %s %s: needs %s of %s",
        identity.id,
        identity.role,
        request.method,
        request.url.path,
        mode,
        ",".join(p.value for p in required),
    )
    write_audit_entry(
        getattr(request.app.state, "audit_log", None),
        AuditEntry(
            actor=identity.id,
            action=AuditAction.PERMISSION_DENIED,
            success=False,
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
            reason="missing_permission",
            details={
                "path": request.url.path,
                "method": request.method,
                "required": [p.value for p in required],
                "mode": mode,
            },
        ),
    )
    return PermissionDenied()


def require_permissions(*permissions: Permission) -> Callable[..., AuthContext]:
    """Build a dependency that requires every listed permission.

    Usage:
        @router.get("/branches")
        def branches(identity: AuthContext = Depends(require_permissions(Permission.MANAGE_BRANCHES))): ...
    """
    required = tuple(permissions)

    def permission_checker(request: Request, identity: AuthContext = Depends(get_current_user)) -> AuthContext:
        for permission in required:
            if not PERMISSION_MATRIX.has_permission(identity.role, permission):
                raise _deny(request, identity, required, "all")
        return identity

    return permission_checker


def require_any_permission(*permissions: Permission) -> Callable[..., AuthContext]:
    """Build a dependency that requires at least one of the listed permissions."""
    required = tuple(permissions)

    def any_permission_checker(request: Request, identity: AuthContext = Depends(get_current_user)) -> AuthContext:
        if not PERMISSION_MATRIX.has_any(identity.role, required):
            raise _deny(request, identity, required, "any")
        return identity

    return any_permission_checker


def require_branch_access(get_branch_id: Callable[[Request], str | None]) -> Callable[..., AuthContext]:
    """Build a dependency that requires access to the branch named by the request.

    get_branch_id pulls the requested branch out of the request (path, query,
    ...). A request naming no branch is a 400; a branch outside the caller's
    scope is a 403 BRANCH_ACCESS_DENIED and an audit entry.

    Usage:
        @router.get("/branches/{branch_id}/analytics")
        def branch_analytics(
            identity: AuthContext = Depends(require_branch_access(lambda r: r.path_params.get("branch_id"))),
        ): ...
    """

    def branch_checker(request: Request, identity: AuthContext = Depends(get_current_user)) -> AuthContext:
        branch_id = get_branch_id(request)
        if not branch_id:
            raise ValidationError({"branch_id": "This field is required"}, "Branch ID is required")
        if can_access_branch(identity, branch_id):
            return identity

        logger.warning(
            "Branch access denied for %s (branch=%s) on %s %s: requested %s",
            identity.id,
            identity.branch_id,
            request.method,
            request.url.path,
            branch_id,
        )
        write_audit_entry(
            getattr(request.app.state, "audit_log", None),
            AuditEntry(
                actor=identity.id,
                action=AuditAction.BRANCH_ACCESS_DENIED,
                success=False,
                ip_address=get_client_ip(request),
                user_agent=get_user_agent(request),
                reason="branch_out_of_scope",
                details={
                    "path": request.url.path,
                    "method": request.method,
                    "requested_branch_id": branch_id,
                    "user_branch_id": identity.branch_id,
                },
            ),
        )
        raise BranchAccessDenied()

    return branch_checker
