"""
tests/conftest.py -- Shared test fixtures for the Atlas test suite.

This module provides:
  - make_db_url(): a unique named shared-memory SQLite URL
  - stores / codec / service: isolated auth core for unit tests
  - api: TestClient over the real app with a patched lifespan and seeded users
  - client: the api TestClient with its cookie jar emptied before each test
  - account_factory: adds an account to the api harness database
  - /api/v1/guarded/*: permission-guarded handlers mounted on the app for guard tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment must be set before any auth/core/api import:
  DEBUG=true           -> get_settings() generates SECRET_KEY instead of raising
  BCRYPT_ROUNDS=4      -> keeps bcrypt fast in tests
  LOGIN_RATE_LIMIT     -> high enough that the suite never trips it
  ALLOWED_HOSTS        -> TestClient sends Host: testserver
"""

from __future__ import annotations

import os

# CRITICAL: set before any import of core.config (settings are cached).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta

import pytest
from fastapi import APIRouter, Depends
from fastapi.testclient import TestClient

from api.main import app
from auth.audit import AuditLog
from auth.dependencies import require_any_permission, require_branch_access, require_permissions
from auth.models import AuthContext, User
from auth.permissions import Permission
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenCodec, hash_password

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"
TEST_ROUNDS = 4

# Seeded accounts for the API harness: key -> (email, password, role, branch_id, active)
SEED_USERS = {
    "super": ("super@atlas.com", "Sup3r!Secret", "SUPER_ADMIN", None, True),
    "admin": ("admin@atlas.com", "password123", "ADMIN", None, True),
    "manager": ("manager@atlas.com", "Manag3r!Pass", "BRANCH_MANAGER", "branch-istanbul", True),
    "viewer": ("viewer@atlas.com", "Vi3wer!Pass", "VIEWER", None, True),
    "inactive": ("former@atlas.com", "F0rmer!Pass", "ANALYST", None, False),
}


def make_db_url(prefix: str = "test") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_user(store: UserStore, email: str, password: str, role: str, branch_id: str | None = None, active: bool = True) -> User:
    uid = store.create_user(
        User(
            email=email,
            name=email.split("@")[0].title(),
            role=role,
            password_hash=hash_password(password, rounds=TEST_ROUNDS),
            branch_id=branch_id,
            is_active=active,
        )
    )
    return store.find_by_id(uid)


# ---------------------------------------------------------------------------
# Guarded routes: stand-ins for feature handlers that declare a permission
# ---------------------------------------------------------------------------

guarded_router = APIRouter()


@guarded_router.get("/guarded/analytics")
def analytics_handler(identity: AuthContext = Depends(require_permissions(Permission.VIEW_ANALYTICS))):
    return {"id": identity.id, "role": identity.role}


@guarded_router.get("/guarded/branches")
def branches_handler(identity: AuthContext = Depends(require_permissions(Permission.MANAGE_BRANCHES))):
    return {"id": identity.id, "role": identity.role}


@guarded_router.get("/guarded/export")
def export_handler(
    identity: AuthContext = Depends(require_permissions(Permission.VIEW_ANALYTICS, Permission.EXPORT_DATA)),
):
    return {"id": identity.id}


@guarded_router.get("/guarded/reports")
def reports_handler(
    identity: AuthContext = Depends(require_any_permission(Permission.VIEW_MEDIA_REPORTS, Permission.VIEW_SALES_REPORTS)),
):
    return {"id": identity.id}


@guarded_router.get("/guarded/branch-report")
def branch_report_handler(
    identity: AuthContext = Depends(require_branch_access(lambda request: request.query_params.get("branch_id"))),
):
    return {"id": identity.id, "branch_id": identity.branch_id}


app.include_router(guarded_router, prefix="/api/v1")


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[UserStore, AuditLog], None, None]:
    """A fresh (UserStore, AuditLog) pair sharing one in-memory database."""
    url = make_db_url("unit")
    user_store = UserStore(url)
    audit_log = AuditLog(url)
    yield user_store, audit_log
    audit_log.close()
    user_store.close()


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(TEST_SECRET, "HS256", timedelta(hours=1))


@pytest.fixture
def service(stores, codec) -> AuthService:
    user_store, audit_log = stores
    return AuthService(user_store, audit_log, codec, bcrypt_rounds=TEST_ROUNDS)


# ---------------------------------------------------------------------------
# API harness
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    codec: TokenCodec
    user_store: UserStore
    audit_log: AuditLog
    users: dict[str, User] = field(default_factory=dict)

    def token_for(self, key: str, ttl: timedelta | None = None) -> str:
        return self.codec.issue(self.users[key], ttl=ttl)

    def bearer(self, key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token_for(key)}"}


def _patch_lifespan(user_store: UserStore, audit_log: AuditLog, codec: TokenCodec):
    """Return a lifespan that wires pre-built test stores into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.audit_log = audit_log
        app.state.token_codec = codec
        app.state.auth_service = AuthService(user_store, audit_log, codec, bcrypt_rounds=TEST_ROUNDS)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api() -> Generator[ApiHarness, None, None]:
    """One TestClient per test module over the real app with seeded accounts."""
    url = make_db_url("api")
    user_store = UserStore(url)
    audit_log = AuditLog(url)
    codec = TokenCodec(TEST_SECRET, "HS256", timedelta(hours=1))
    users = {
        key: make_user(user_store, email, password, role, branch_id, active)
        for key, (email, password, role, branch_id, active) in SEED_USERS.items()
    }

    app.router.lifespan_context = _patch_lifespan(user_store, audit_log, codec)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, codec=codec, user_store=user_store, audit_log=audit_log, users=users)

    audit_log.close()
    user_store.close()


@pytest.fixture
def client(api: ApiHarness) -> TestClient:
    """The harness client with no cookies left over from earlier tests."""
    api.client.cookies.clear()
    return api.client


@pytest.fixture
def account_factory(api: ApiHarness):
    """Return a function that adds an account to the harness database.

    Emails must be unique per module; the database lives as long as the module.
    """

    def _create(email: str, password: str, role: str = "VIEWER", branch_id: str | None = None, active: bool = True) -> User:
        return make_user(api.user_store, email, password, role, branch_id, active)

    return _create
