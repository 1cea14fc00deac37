"""
API request and response models for the Atlas REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

JSON field names are camelCase on the wire (branchId, lastLoginAt, ...).
Request models accept either the camelCase alias or the snake_case name.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import AuditEntry, AuthContext, User
from auth.permissions import Role

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_email(v: str) -> str:
    v = v.strip().lower()
    if not _EMAIL_RE.match(v):
        raise ValueError("Invalid email format")
    return v


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(_CamelModel):
    """Credentials for POST /api/v1/auth/login."""

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _check_email(v)


class ChangePasswordRequest(_CamelModel):
    """Body for POST /api/v1/auth/change-password.

    All fields are optional at this layer so that a missing field reaches
    AuthService.change_password, which reports every missing field at once.
    """

    current_password: Optional[str] = Field(default=None, max_length=128)
    new_password: Optional[str] = Field(default=None, max_length=128)
    confirm_password: Optional[str] = Field(default=None, max_length=128)


class UserCreate(_CamelModel):
    """Body for POST /api/v1/users."""

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=128)
    name: str = Field(min_length=2, max_length=255)
    role: Role
    branch_id: Optional[str] = Field(default=None, max_length=36)
    agent_number: Optional[str] = Field(default=None, max_length=64)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserProfile(_CamelModel):
    """Public part of a user returned on login. Never carries the password hash."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    email: str
    name: str
    role: str
    branch_id: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(id=user.id, email=user.email, name=user.name, role=user.role, branch_id=user.branch_id)


class LoginResponse(_CamelModel):
    success: bool = True
    user: UserProfile
    token: str


class IdentityResponse(_CamelModel):
    """The resolved identity of the caller (GET /api/v1/auth/me)."""

    id: str
    email: str
    name: str
    role: str
    branch_id: Optional[str] = None
    agent_number: Optional[str] = None
    permissions: list[str]
    is_active: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_login_at: Optional[str] = None

    @classmethod
    def from_context(cls, identity: AuthContext) -> "IdentityResponse":
        return cls(
            id=identity.id,
            email=identity.email,
            name=identity.name,
            role=identity.role,
            branch_id=identity.branch_id,
            agent_number=identity.agent_number,
            permissions=sorted(p.value for p in identity.permissions),
            is_active=identity.is_active,
            created_at=identity.created_at,
            updated_at=identity.updated_at,
            last_login_at=identity.last_login_at,
        )


class MeResponse(_CamelModel):
    success: bool = True
    user: IdentityResponse


class UserResponse(_CamelModel):
    """A user as listed by the user-management endpoints."""

    id: str
    email: str
    name: str
    role: str
    branch_id: Optional[str] = None
    agent_number: Optional[str] = None
    is_active: bool
    created_at: Optional[str] = None
    last_login_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            branch_id=user.branch_id,
            agent_number=user.agent_number,
            is_active=user.is_active,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
        )


class AuditEntryResponse(_CamelModel):
    id: int
    actor: str
    action: str
    success: bool
    reason: Optional[str] = None
    ip_address: str
    user_agent: str
    details: dict
    timestamp: str

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            actor=entry.actor,
            action=entry.action.value,
            success=entry.success,
            reason=entry.reason,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            details=entry.details,
            timestamp=entry.timestamp,
        )


class SuccessResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error envelope returned on every 4xx/5xx.

    fields is present for validation errors, category for WEAK_PASSWORD.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    code: str
    fields: Optional[dict[str, str]] = None
    category: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
