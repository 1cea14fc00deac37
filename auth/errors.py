"""
auth/errors.py -- Exception hierarchy for authentication and authorization.

Every error carries the HTTP status, a stable machine code, and the message a
client is allowed to see. The api/ layer renders them; auth/ never builds HTTP
responses itself.

Disclosure rules:
  - Credential failures (unknown email, wrong password, inactive account)
    all render as InvalidCredentials. AccountInactive exists only so the
    audit log and server logs can tell them apart.
  - Token failures (malformed, bad signature, expired) all render as
    "Authentication required". The subclass and .reason are for logs.
  - Validation errors may name fields and the password-policy category,
    which reveals nothing about stored accounts.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Subclasses set status_code, code and message."""

    status_code: int = 400
    code: str = "AUTH_ERROR"
    message: str = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_body(self) -> dict:
        """Client-safe JSON body."""
        return {"message": self.message, "code": self.code}


class InvalidCredentials(AuthError):
    status_code = 401
    code = "INVALID_CREDENTIALS"
    message = "Invalid credentials"


class AccountInactive(InvalidCredentials):
    """Deactivated account. Renders exactly like InvalidCredentials."""


class TokenError(AuthError):
    """Any token verification failure.

    reason is one of "malformed", "invalid_signature", "expired" and is kept
    for server-side logging only. to_body() never includes it.
    """

    status_code = 401
    code = "UNAUTHENTICATED"
    message = "Authentication required"
    reason = "missing"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__()
        self.detail = detail


class TokenMalformed(TokenError):
    reason = "malformed"


class InvalidSignature(TokenError):
    reason = "invalid_signature"


class TokenExpired(TokenError):
    reason = "expired"


class PermissionDenied(AuthError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Forbidden"


class BranchAccessDenied(PermissionDenied):
    code = "BRANCH_ACCESS_DENIED"
    message = "Access denied to this branch"


class WeakPassword(AuthError):
    """New password violates the policy. category names the rule, not the character."""

    status_code = 400
    code = "WEAK_PASSWORD"

    _MESSAGES = {
        "length": "Password must be at least 8 characters long",
        "uppercase": "Password must contain an uppercase letter",
        "lowercase": "Password must contain a lowercase letter",
        "digit": "Password must contain a number",
        "special": "Password must contain a special character",
        "too_long": "Password must be at most 72 bytes long",
    }

    def __init__(self, category: str) -> None:
        self.category = category
        super().__init__(self._MESSAGES.get(category, "Password does not meet the password policy"))

    def to_body(self) -> dict:
        return {"message": self.message, "code": self.code, "category": self.category}


class PasswordMismatch(AuthError):
    status_code = 400
    code = "PASSWORD_MISMATCH"
    message = "New passwords do not match"


class ValidationError(AuthError):
    """Malformed request input. fields maps field name -> problem."""

    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Request validation failed"

    def __init__(self, fields: dict[str, str], message: str | None = None) -> None:
        self.fields = dict(fields)
        super().__init__(message)

    def to_body(self) -> dict:
        return {"message": self.message, "code": self.code, "fields": self.fields}


class InternalError(AuthError):
    status_code = 500
    code = "INTERNAL_ERROR"
    message = "An unexpected error occurred."
