"""
auth/tokens.py -- JWT codec, password hashing, and auth cookie helpers.

Security design decisions:
  JWT: python-jose with an HMAC algorithm (HS256 by default). TokenCodec is
       constructed once at start-up with the secret from core.config and
       handed to whoever needs it -- it never reads configuration itself.

       verify() checks, in this order:
         1. structure   -- three segments, JSON header and claims, required
                           claims present with the right types
         2. signature   -- header alg must equal the configured alg (no
                           "none", no RS/HS confusion), then HMAC check
         3. expiry      -- now <= exp
       Each step raises its own TokenError subclass so logs can say what
       went wrong. Clients only ever see "Authentication required".

  Passwords: bcrypt used directly (no passlib). The work factor is passed in
       by the caller so registration and password changes hash at the same
       configured cost.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.errors import InvalidSignature, TokenExpired, TokenMalformed
from auth.models import TokenClaims, User

logger = logging.getLogger("atlas.auth.tokens")

_REQUIRED_STR_CLAIMS = ("sub", "email", "role")
_REQUIRED_INT_CLAIMS = ("iat", "exp")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of plain at the given work factor.

    bcrypt refuses input longer than 72 bytes (bcrypt 5 raises ValueError),
    so callers run check_password_policy() first, which rejects such
    passwords as WeakPassword("too_long").
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if plain matches the bcrypt hash. bcrypt.checkpw compares in constant time."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        # Corrupt or non-bcrypt hash in the store: treat as a mismatch.
        return False


# ---------------------------------------------------------------------------
# JWT codec
# ---------------------------------------------------------------------------


class TokenCodec:
    """Signs and verifies access tokens.

    Usage:
        codec = TokenCodec(settings.secret_key, settings.jwt_algorithm,
                           timedelta(seconds=settings.token_expire_seconds))
        token = codec.issue(user)
        claims = codec.verify(token)   # raises TokenError subclasses
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256", default_ttl: timedelta = timedelta(hours=24)) -> None:
        if not secret_key:
            raise ValueError("TokenCodec requires a non-empty secret key")
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.default_ttl = default_ttl

    def issue(self, user: User, ttl: timedelta | None = None) -> str:
        """Encode a signed token for user, expiring at now + ttl."""
        if user.id is None:
            raise ValueError("Cannot issue a token for an unsaved user")
        now = datetime.now(timezone.utc)
        iat = int(now.timestamp())
        exp = int((now + (ttl if ttl is not None else self.default_ttl)).timestamp())
        payload = {
            "sub": user.id,
            "email": user.email,
            "role": user.role,
            "branch_id": user.branch_id,
            "iat": iat,
            "exp": exp,
        }
        return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    def verify(self, token: str | None) -> TokenClaims:
        """Return the claims of a valid token or raise a TokenError subclass."""
        claims = self._check_structure(token)
        self._check_signature(token)
        now = datetime.now(timezone.utc).timestamp()
        if now > claims.exp:
            raise TokenExpired(f"expired at {claims.exp}")
        return claims

    # ------------------------------------------------------------------
    # Verification steps
    # ------------------------------------------------------------------

    def _check_structure(self, token: str | None) -> TokenClaims:
        if not token or not isinstance(token, str) or token.count(".") != 2:
            raise TokenMalformed("not a compact JWS")
        try:
            header = jwt.get_unverified_header(token)
            raw = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed(str(exc)) from exc
        if not isinstance(header, dict) or not isinstance(raw, dict):
            raise TokenMalformed("header or claims are not JSON objects")
        for name in _REQUIRED_STR_CLAIMS:
            if not isinstance(raw.get(name), str) or not raw[name]:
                raise TokenMalformed(f"missing claim {name!r}")
        for name in _REQUIRED_INT_CLAIMS:
            # bool is an int subclass; a boolean exp is not a timestamp.
            if not isinstance(raw.get(name), int) or isinstance(raw[name], bool):
                raise TokenMalformed(f"missing claim {name!r}")
        branch_id = raw.get("branch_id")
        if branch_id is not None and not isinstance(branch_id, str):
            raise TokenMalformed("branch_id must be a string")
        return TokenClaims(
            sub=raw["sub"],
            email=raw["email"],
            role=raw["role"],
            branch_id=branch_id,
            iat=raw["iat"],
            exp=raw["exp"],
        )

    def _check_signature(self, token: str) -> None:
        alg = jwt.get_unverified_header(token).get("alg")
        if alg != self.algorithm:
            raise InvalidSignature(f"unexpected alg {alg!r}")
        try:
            # Expiry is checked separately so it can be reported as its own reason.
            jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False},
            )
        except JWTError as exc:
            raise InvalidSignature(str(exc)) from exc


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, cookie_name: str, max_age: int, secure: bool = False) -> None:
    """Write the access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie.
    samesite="strict": never sent on cross-site requests.
    max_age matches the token lifetime so both expire together.
    """
    response.set_cookie(
        cookie_name,
        value=token,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=max_age,
        path="/",
    )


def clear_auth_cookie(response, cookie_name: str, secure: bool = False) -> None:
    """Expire the auth cookie. Attributes must match set_auth_cookie for browsers to drop it."""
    response.delete_cookie(cookie_name, path="/", secure=secure, httponly=True, samesite="strict")
