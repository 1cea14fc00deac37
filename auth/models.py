"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the service and
routes do the work; these only own the shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from auth.permissions import Permission


@dataclass
class User:
    """A stored account.

    email is always stored lowercased and trimmed; the store normalizes on
    write and on lookup so uniqueness is case-insensitive.

    role is kept as the raw stored string. A value outside the Role enum is
    possible after a bad migration; the permission matrix then grants nothing.

    id is None before the record is written to the database.
    """

    email: str
    name: str
    role: str
    password_hash: str
    id: str | None = None
    branch_id: str | None = None
    agent_number: str | None = None
    is_active: bool = True
    created_at: str | None = None  # ISO 8601, set by store
    updated_at: str | None = None
    last_login_at: str | None = None  # None until the first successful login
    created_by: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """The claim set carried by an access token. Immutable once issued."""

    sub: str
    email: str
    role: str
    branch_id: str | None
    iat: int
    exp: int


@dataclass(frozen=True)
class AuthContext:
    """Resolved identity for one request.

    Built once by the guard dependency and passed into the route handler as a
    parameter. Never stored on the request object or in module state.
    """

    id: str
    email: str
    name: str
    role: str
    branch_id: str | None
    agent_number: str | None
    permissions: frozenset[Permission]
    is_active: bool
    created_at: str | None
    updated_at: str | None
    last_login_at: str | None
    claims: TokenClaims | None = None


@dataclass(frozen=True)
class LoginResult:
    """Successful login outcome: the user (with refreshed last_login_at) and token."""

    user: User
    token: str


class AuditAction(str, Enum):
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    CHANGE_PASSWORD = "CHANGE_PASSWORD"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    BRANCH_ACCESS_DENIED = "BRANCH_ACCESS_DENIED"


@dataclass(frozen=True)
class AuditEntry:
    """An append-only record of an auth-relevant action.

    actor is the user id, or "unknown" when a login names no known account.
    reason is a machine code ("invalid_password", "account_inactive", ...) and
    is only ever written to the audit table, never returned to a client.
    """

    actor: str
    action: AuditAction
    success: bool
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    reason: str | None = None
    details: dict = field(default_factory=dict)
    timestamp: str = ""  # ISO 8601, filled by AuditLog.record() when empty
    id: int | None = None
