"""
auth/service.py -- Login, logout and password change.

AuthService is the only component that reads or writes the credential store
and the only one that emits audit entries for these actions. It is built once
in the application lifespan with its collaborators injected:

    service = AuthService(user_store, audit_log, token_codec, bcrypt_rounds=12)

Security notes:
  Login never reveals whether an email exists. Unknown email, inactive
  account and wrong password all raise InvalidCredentials (AccountInactive is
  a subclass that renders identically), and bcrypt runs on every path -- a
  dummy hash at the configured cost stands in when there is no account -- so
  response time does not separate the cases either.

  Auditing is best effort. write_audit_entry() swallows and logs failures so
  a broken audit table never blocks a login.

  All methods are synchronous and CPU-heavy (bcrypt). FastAPI runs the sync
  route handlers that call them in its thread pool, off the event loop.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace

from auth.audit import AuditLog, write_audit_entry
from auth.errors import (
    AccountInactive,
    InvalidCredentials,
    PasswordMismatch,
    TokenError,
    ValidationError,
    WeakPassword,
)
from auth.models import AuditAction, AuditEntry, LoginResult
from auth.store import UserStore, normalize_email
from auth.tokens import TokenCodec, hash_password, verify_password

logger = logging.getLogger("atlas.auth")

UNKNOWN_ACTOR = "unknown"

# ---------------------------------------------------------------------------
# Password policy
# ---------------------------------------------------------------------------

PASSWORD_MIN_LENGTH = 8
# bcrypt input limit, in UTF-8 bytes.
PASSWORD_MAX_BYTES = 72
PASSWORD_SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'

_POLICY_RULES: tuple[tuple[str, re.Pattern], ...] = (
    ("uppercase", re.compile(r"[A-Z]")),
    ("lowercase", re.compile(r"[a-z]")),
    ("digit", re.compile(r"\d")),
    ("special", re.compile("[" + re.escape(PASSWORD_SPECIAL_CHARS) + "]")),
)


def check_password_policy(password: str) -> None:
    """Raise WeakPassword naming the first rule password breaks.

    Rules are checked in a fixed order (length, byte limit, uppercase,
    lowercase, digit, special) so the same password always reports the same
    category.
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        raise WeakPassword("length")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise WeakPassword("too_long")
    for category, pattern in _POLICY_RULES:
        if not pattern.search(password):
            raise WeakPassword(category)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AuthService:
    def __init__(
        self,
        user_store: UserStore,
        audit_log: AuditLog | None,
        token_codec: TokenCodec,
        bcrypt_rounds: int = 12,
    ) -> None:
        self.user_store = user_store
        self.audit_log = audit_log
        self.token_codec = token_codec
        self.bcrypt_rounds = bcrypt_rounds
        # Same cost as real hashes so a miss takes as long as a hit.
        self._dummy_hash = hash_password("atlas-timing-equalizer", rounds=bcrypt_rounds)

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, ip: str = "unknown", user_agent: str = "unknown") -> LoginResult:
        """Verify credentials and issue a token.

        Raises InvalidCredentials (or AccountInactive) on any failure. A
        failure audit entry is written before raising.
        """
        normalized = normalize_email(email or "")
        user = self.user_store.find_by_email(normalized) if normalized else None

        if user is None:
            verify_password(password or "", self._dummy_hash)
            self._audit(UNKNOWN_ACTOR, AuditAction.LOGIN, False, ip, user_agent, reason="unknown_email")
            logger.info("Login failed: unknown email from %s", ip)
            raise InvalidCredentials()

        password_ok = verify_password(password or "", user.password_hash)
        if not user.is_active:
            self._audit(user.id, AuditAction.LOGIN, False, ip, user_agent, reason="account_inactive")
            logger.info("Login refused for inactive account %s from %s", user.id, ip)
            raise AccountInactive()
        if not password_ok:
            self._audit(user.id, AuditAction.LOGIN, False, ip, user_agent, reason="invalid_password")
            logger.info("Login failed: bad password for %s from %s", user.id, ip)
            raise InvalidCredentials()

        stamp = self.user_store.update_last_login(user.id)
        user = replace(user, last_login_at=stamp)
        token = self.token_codec.issue(user)
        self._audit(user.id, AuditAction.LOGIN, True, ip, user_agent)
        logger.info("Login succeeded for %s from %s", user.id, ip)
        return LoginResult(user=user, token=token)

    def logout(self, token: str | None, ip: str = "unknown", user_agent: str = "unknown") -> bool:
        """Record a logout if token is valid. Always returns True.

        Tokens are stateless, so there is nothing to revoke server-side: the
        client discards the token and the route clears the cookie. A missing,
        forged or expired token is not an error here.
        """
        if not token:
            return True
        try:
            claims = self.token_codec.verify(token)
        except TokenError as exc:
            logger.debug("Logout with unusable token (%s)", exc.reason)
            return True
        self._audit(claims.sub, AuditAction.LOGOUT, True, ip, user_agent)
        return True

    # ------------------------------------------------------------------
    # Password change
    # ------------------------------------------------------------------

    def change_password(
        self,
        user_id: str,
        current_password: str | None,
        new_password: str | None,
        confirm_password: str | None,
        ip: str = "unknown",
        user_agent: str = "unknown",
    ) -> bool:
        """Replace the password of user_id after checking policy and the current password.

        Checks, in order: all fields present, confirmation matches, policy,
        current password. Raises ValidationError, PasswordMismatch,
        WeakPassword or InvalidCredentials respectively.
        """
        missing = {
            name: "This field is required"
            for name, value in (
                ("current_password", current_password),
                ("new_password", new_password),
                ("confirm_password", confirm_password),
            )
            if not value
        }
        if missing:
            raise ValidationError(missing, "All password fields are required")
        if new_password != confirm_password:
            raise PasswordMismatch()
        check_password_policy(new_password)

        user = self.user_store.find_by_id(user_id)
        if user is None or not user.is_active:
            verify_password(current_password, self._dummy_hash)
            self._audit(user_id, AuditAction.CHANGE_PASSWORD, False, ip, user_agent, reason="unknown_user")
            raise InvalidCredentials()
        if not verify_password(current_password, user.password_hash):
            self._audit(user.id, AuditAction.CHANGE_PASSWORD, False, ip, user_agent, reason="invalid_password")
            raise InvalidCredentials()

        self.user_store.update_password_hash(user.id, hash_password(new_password, rounds=self.bcrypt_rounds))
        self._audit(user.id, AuditAction.CHANGE_PASSWORD, True, ip, user_agent)
        logger.info("Password changed for %s", user.id)
        return True

    # ------------------------------------------------------------------
    # Registration helper
    # ------------------------------------------------------------------

    def hash_new_password(self, password: str) -> str:
        """Policy-check and hash a password for a new account."""
        check_password_policy(password)
        return hash_password(password, rounds=self.bcrypt_rounds)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _audit(
        self,
        actor: str | None,
        action: AuditAction,
        success: bool,
        ip: str,
        user_agent: str,
        reason: str | None = None,
    ) -> None:
        write_audit_entry(
            self.audit_log,
            AuditEntry(
                actor=actor or UNKNOWN_ACTOR,
                action=action,
                success=success,
                ip_address=ip or "unknown",
                user_agent=user_agent or "unknown",
                reason=reason,
            ),
        )
