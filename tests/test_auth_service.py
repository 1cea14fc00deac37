"""Unit tests for auth/service.py (AuthService and the password policy).

Covers:
- Login success updates last_login_at, issues a verifiable token, audits success
- Unknown email, wrong password and inactive account are indistinguishable to callers
- Every login failure is audited with its own reason
- A broken audit log never blocks login
- Logout is idempotent and never fails
- Password change ordering: required fields, confirmation, policy, current password
- Password policy categories
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from auth.errors import AccountInactive, InvalidCredentials, PasswordMismatch, ValidationError, WeakPassword
from auth.models import AuditAction, User
from auth.service import AuthService, check_password_policy
from auth.tokens import hash_password, verify_password

PASSWORD = "Curr3nt!Pass"
# Both pass every character rule but exceed bcrypt's 72-byte input limit.
LONG_ASCII = "Str0ng!Pass" + "x" * 70
LONG_MULTIBYTE = "Str0ng!Pass" + "\u00e9" * 31

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _add_user(store, email="agent@atlas.com", password=PASSWORD, role="SALES_AGENT", active=True) -> User:
    uid = store.create_user(
        User(
            email=email,
            name="Agent",
            role=role,
            password_hash=hash_password(password, rounds=4),
            branch_id="branch-istanbul",
            is_active=active,
        )
    )
    return store.find_by_id(uid)


@pytest.fixture
def agent(stores) -> User:
    user_store, _ = stores
    return _add_user(user_store)


# ---------------------------------------------------------------------------
# TestLogin
# ---------------------------------------------------------------------------


class TestLogin:
    def test_success_returns_user_and_token(self, service, codec, agent):
        result = service.login("agent@atlas.com", PASSWORD, ip="10.0.0.5", user_agent="pytest")
        assert result.user.id == agent.id
        assert result.user.last_login_at is not None
        claims = codec.verify(result.token)
        assert claims.sub == agent.id
        assert claims.role == "SALES_AGENT"
        assert claims.branch_id == "branch-istanbul"

    def test_success_persists_last_login(self, service, stores, agent):
        user_store, _ = stores
        assert agent.last_login_at is None
        result = service.login("agent@atlas.com", PASSWORD)
        assert user_store.find_by_id(agent.id).last_login_at == result.user.last_login_at

    def test_success_is_audited(self, service, stores, agent):
        _, audit_log = stores
        service.login("agent@atlas.com", PASSWORD, ip="10.0.0.5", user_agent="pytest")
        entry = audit_log.recent(limit=1)[0]
        assert entry.action is AuditAction.LOGIN
        assert entry.success is True
        assert entry.actor == agent.id
        assert entry.ip_address == "10.0.0.5"
        assert entry.user_agent == "pytest"

    def test_email_is_normalized(self, service, agent):
        assert service.login("  Agent@ATLAS.com ", PASSWORD).user.id == agent.id

    def test_unknown_email(self, service, stores):
        _, audit_log = stores
        with pytest.raises(InvalidCredentials) as exc_info:
            service.login("nobody@atlas.com", PASSWORD)
        assert type(exc_info.value) is InvalidCredentials
        entry = audit_log.recent(limit=1)[0]
        assert entry.actor == "unknown"
        assert entry.success is False
        assert entry.reason == "unknown_email"

    def test_wrong_password(self, service, stores, agent):
        _, audit_log = stores
        with pytest.raises(InvalidCredentials):
            service.login("agent@atlas.com", "Wr0ng!Pass")
        entry = audit_log.recent(limit=1)[0]
        assert entry.actor == agent.id
        assert entry.reason == "invalid_password"

    def test_inactive_account_with_correct_password(self, service, stores):
        user_store, audit_log = stores
        _add_user(user_store, email="former@atlas.com", active=False)
        with pytest.raises(AccountInactive):
            service.login("former@atlas.com", PASSWORD)
        assert audit_log.recent(limit=1)[0].reason == "account_inactive"

    def test_failures_are_indistinguishable(self, service, stores, agent):
        """Unknown email, wrong password and inactive account render the same."""
        user_store, _ = stores
        _add_user(user_store, email="former@atlas.com", active=False)
        rendered = []
        for email, password in (
            ("nobody@atlas.com", PASSWORD),
            ("agent@atlas.com", "Wr0ng!Pass"),
            ("former@atlas.com", PASSWORD),
        ):
            with pytest.raises(InvalidCredentials) as exc_info:
                service.login(email, password)
            rendered.append((exc_info.value.status_code, exc_info.value.to_body()))
        assert rendered[0] == rendered[1] == rendered[2]
        assert rendered[0] == (401, {"message": "Invalid credentials", "code": "INVALID_CREDENTIALS"})

    def test_failed_login_does_not_touch_last_login(self, service, stores, agent):
        user_store, _ = stores
        with pytest.raises(InvalidCredentials):
            service.login("agent@atlas.com", "Wr0ng!Pass")
        assert user_store.find_by_id(agent.id).last_login_at is None

    def test_empty_password(self, service, agent):
        with pytest.raises(InvalidCredentials):
            service.login("agent@atlas.com", "")

    def test_broken_audit_log_does_not_block_login(self, stores, codec, agent):
        user_store, _ = stores
        broken = MagicMock()
        broken.record.side_effect = RuntimeError("audit table gone")
        service = AuthService(user_store, broken, codec, bcrypt_rounds=4)
        result = service.login("agent@atlas.com", PASSWORD)
        assert result.user.id == agent.id
        broken.record.assert_called_once()

    def test_no_audit_log(self, stores, codec, agent):
        user_store, _ = stores
        service = AuthService(user_store, None, codec, bcrypt_rounds=4)
        assert service.login("agent@atlas.com", PASSWORD).user.id == agent.id


# ---------------------------------------------------------------------------
# TestLogout
# ---------------------------------------------------------------------------


class TestLogout:
    def test_valid_token_is_audited(self, service, stores, codec, agent):
        _, audit_log = stores
        assert service.logout(codec.issue(agent), ip="10.0.0.5") is True
        entry = audit_log.recent(limit=1)[0]
        assert entry.action is AuditAction.LOGOUT
        assert entry.actor == agent.id

    def test_logout_twice_succeeds(self, service, codec, agent):
        token = codec.issue(agent)
        assert service.logout(token) is True
        assert service.logout(token) is True

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_unusable_token_is_not_an_error(self, service, stores, token):
        _, audit_log = stores
        assert service.logout(token) is True
        assert audit_log.recent() == []


# ---------------------------------------------------------------------------
# TestChangePassword
# ---------------------------------------------------------------------------


class TestChangePassword:
    def test_success_replaces_hash(self, service, stores, agent):
        user_store, audit_log = stores
        assert service.change_password(agent.id, PASSWORD, "Str0ng!Pass", "Str0ng!Pass") is True
        stored = user_store.find_by_id(agent.id)
        assert verify_password("Str0ng!Pass", stored.password_hash)
        assert not verify_password(PASSWORD, stored.password_hash)
        entry = audit_log.recent(limit=1)[0]
        assert entry.action is AuditAction.CHANGE_PASSWORD
        assert entry.success is True

    def test_new_password_works_for_login(self, service, agent):
        service.change_password(agent.id, PASSWORD, "Str0ng!Pass", "Str0ng!Pass")
        assert service.login("agent@atlas.com", "Str0ng!Pass").user.id == agent.id
        with pytest.raises(InvalidCredentials):
            service.login("agent@atlas.com", PASSWORD)

    @pytest.mark.parametrize(
        "new_password,category",
        [
            ("short1!", "length"),
            ("alllowercase1!", "uppercase"),
            ("ALLUPPER123!", "lowercase"),
            ("NoDigitsHere!", "digit"),
            ("NoSpecialChar1", "special"),
        ],
    )
    def test_weak_password_reports_category(self, service, stores, agent, new_password, category):
        user_store, _ = stores
        with pytest.raises(WeakPassword) as exc_info:
            service.change_password(agent.id, PASSWORD, new_password, new_password)
        assert exc_info.value.category == category
        assert exc_info.value.to_body()["code"] == "WEAK_PASSWORD"
        assert verify_password(PASSWORD, user_store.find_by_id(agent.id).password_hash)

    @pytest.mark.parametrize("new_password", [LONG_ASCII, LONG_MULTIBYTE])
    def test_password_over_bcrypt_limit(self, service, stores, agent, new_password):
        user_store, _ = stores
        with pytest.raises(WeakPassword) as exc_info:
            service.change_password(agent.id, PASSWORD, new_password, new_password)
        assert exc_info.value.category == "too_long"
        assert verify_password(PASSWORD, user_store.find_by_id(agent.id).password_hash)

    def test_mismatch(self, service, agent):
        with pytest.raises(PasswordMismatch):
            service.change_password(agent.id, PASSWORD, "Str0ng!Pass", "Str0ng!Pas")

    def test_missing_fields_are_all_reported(self, service, agent):
        with pytest.raises(ValidationError) as exc_info:
            service.change_password(agent.id, "", None, "x")
        assert set(exc_info.value.fields) == {"current_password", "new_password"}

    def test_policy_checked_before_current_password(self, service, agent):
        with pytest.raises(WeakPassword):
            service.change_password(agent.id, "Wr0ng!Pass", "weak", "weak")

    def test_wrong_current_password(self, service, stores, agent):
        user_store, audit_log = stores
        with pytest.raises(InvalidCredentials):
            service.change_password(agent.id, "Wr0ng!Pass", "Str0ng!Pass", "Str0ng!Pass")
        assert verify_password(PASSWORD, user_store.find_by_id(agent.id).password_hash)
        entry = audit_log.recent(limit=1)[0]
        assert entry.success is False
        assert entry.reason == "invalid_password"

    def test_unknown_user(self, service):
        with pytest.raises(InvalidCredentials):
            service.change_password("no-such-id", PASSWORD, "Str0ng!Pass", "Str0ng!Pass")


# ---------------------------------------------------------------------------
# TestPasswordPolicy
# ---------------------------------------------------------------------------


class TestPasswordPolicy:
    @pytest.mark.parametrize("password", ["Str0ng!Pass", "Aa1!aaaa", 'Quote"d1x', "Br4ce{}xx"])
    def test_accepts(self, password):
        check_password_policy(password)

    def test_length_is_checked_first(self):
        with pytest.raises(WeakPassword) as exc_info:
            check_password_policy("a")
        assert exc_info.value.category == "length"

    def test_byte_limit_counts_utf8_bytes(self):
        check_password_policy("Str0ng!Pass" + "x" * 61)
        check_password_policy("Str0ng!P\u00e4ss")
        for password in (LONG_ASCII, LONG_MULTIBYTE):
            with pytest.raises(WeakPassword) as exc_info:
                check_password_policy(password)
            assert exc_info.value.category == "too_long"

    def test_hash_new_password_rejects_long_password(self, service):
        with pytest.raises(WeakPassword):
            service.hash_new_password(LONG_MULTIBYTE)

    def test_underscore_is_not_special(self):
        with pytest.raises(WeakPassword) as exc_info:
            check_password_policy("Under_score1")
        assert exc_info.value.category == "special"

    def test_hash_new_password_enforces_policy(self, service):
        with pytest.raises(WeakPassword):
            service.hash_new_password("weakpass")
        assert verify_password("Str0ng!Pass", service.hash_new_password("Str0ng!Pass"))
