"""
Tests for the protected login flow and the auth provider client.

Verifies:
- Wrong password and unknown email produce the same message
- Warning suffix near the lockout threshold
- Lockout and rate-limit rejections never reach the provider
- Provider outage is reported without counting a failure
- Store errors while recording the outcome stay structured
- Success clears failures and picks the redirect by role
- HttpAuthProvider maps provider responses onto its error types
"""

from dataclasses import replace
from unittest.mock import Mock

import httpx
import pytest

from portal_guard.auth.provider import (
    AuthenticatedUser,
    AuthProviderUnavailableError,
    HttpAuthProvider,
    InvalidCredentialsError,
)
from portal_guard.security.kv_store import KeyValueStoreError
from portal_guard.security.lockout import LockoutGuard
from portal_guard.security.login import (
    INVALID_CREDENTIALS_MESSAGE,
    MISSING_FIELDS_MESSAGE,
    UNAVAILABLE_MESSAGE,
    LoginFailureReason,
    LoginGuard,
)
from portal_guard.security.rate_limit import RateLimiter

EMAIL = "student@example.com"
IP = "203.0.113.7"


@pytest.fixture
def lockout_guard(kv, clock, settings):
    return LockoutGuard(
        rate_limiter=RateLimiter(store=kv, clock=clock, settings=settings),
        store=kv,
        clock=clock,
        settings=settings,
    )


@pytest.fixture
def provider():
    return Mock()


@pytest.fixture
def login_guard(provider, lockout_guard):
    return LoginGuard(provider, lockout_guard=lockout_guard)


class TestLoginGuard:

    def test_success(self, login_guard, provider):
        provider.sign_in.return_value = AuthenticatedUser("u-1", EMAIL, role="member")

        outcome = login_guard.login(EMAIL, "pw", IP)

        assert outcome.success is True
        assert outcome.redirect_path == "/members"

    def test_admin_redirect(self, login_guard, provider):
        provider.sign_in.return_value = AuthenticatedUser("u-1", EMAIL, role="admin")

        assert login_guard.login(EMAIL, "pw", IP).redirect_path == "/dashboard"

    def test_missing_fields(self, login_guard, provider):
        outcome = login_guard.login("  ", "", IP)

        assert outcome.error == MISSING_FIELDS_MESSAGE
        assert outcome.reason is LoginFailureReason.INVALID_INPUT
        provider.sign_in.assert_not_called()

    def test_wrong_password_and_unknown_email_look_the_same(self, login_guard, provider):
        provider.sign_in.side_effect = InvalidCredentialsError()
        wrong_password = login_guard.login(EMAIL, "pw", IP)

        provider.sign_in.side_effect = InvalidCredentialsError(unknown_email=True)
        unknown_email = login_guard.login("ghost@example.com", "pw", IP)

        assert wrong_password.error == unknown_email.error == INVALID_CREDENTIALS_MESSAGE
        assert wrong_password.reason is LoginFailureReason.INVALID_PASSWORD
        assert unknown_email.reason is LoginFailureReason.UNKNOWN_EMAIL

    def test_warning_near_threshold(self, login_guard, lockout_guard, provider):
        provider.sign_in.side_effect = InvalidCredentialsError()
        for _ in range(6):
            lockout_guard.record_failure(EMAIL, IP)

        outcome = login_guard.login(EMAIL, "pw", IP)

        assert outcome.error.startswith(INVALID_CREDENTIALS_MESSAGE)
        assert "3 attempts left" in outcome.error

    def test_failure_that_reaches_threshold_reports_lockout(self, login_guard, lockout_guard, provider):
        provider.sign_in.side_effect = InvalidCredentialsError()
        for _ in range(9):
            lockout_guard.record_failure(EMAIL, IP)

        outcome = login_guard.login(EMAIL, "pw", IP)

        assert outcome.error == "Account temporarily locked. Try again in 30 minutes."
        assert outcome.lockout_remaining == 30 * 60

    def test_locked_out_skips_provider(self, login_guard, lockout_guard, provider):
        for _ in range(10):
            lockout_guard.record_failure(EMAIL, IP)

        outcome = login_guard.login(EMAIL, "pw", IP)

        assert outcome.reason is LoginFailureReason.LOCKED_OUT
        assert "30 minutes" in outcome.error
        provider.sign_in.assert_not_called()

    def test_rate_limited_skips_provider(self, login_guard, provider):
        provider.sign_in.side_effect = InvalidCredentialsError()
        for _ in range(5):
            login_guard.login(EMAIL, "pw", IP)
        provider.sign_in.reset_mock()

        outcome = login_guard.login(EMAIL, "pw", IP)

        assert outcome.reason is LoginFailureReason.RATE_LIMITED
        assert outcome.error == "Too many attempts. Please wait 15 minutes."
        assert outcome.retry_after == 15 * 60
        provider.sign_in.assert_not_called()

    def test_provider_outage_not_counted(self, login_guard, lockout_guard, provider):
        provider.sign_in.side_effect = AuthProviderUnavailableError("down")

        outcome = login_guard.login(EMAIL, "pw", IP)

        assert outcome.error == UNAVAILABLE_MESSAGE
        assert lockout_guard.consecutive_failures(EMAIL) == 0

    def test_success_clears_failures_and_window(self, login_guard, lockout_guard, provider):
        provider.sign_in.side_effect = InvalidCredentialsError()
        for _ in range(4):
            login_guard.login(EMAIL, "pw", IP)

        provider.sign_in.side_effect = None
        provider.sign_in.return_value = AuthenticatedUser("u-1", EMAIL)
        assert login_guard.login(EMAIL, "pw", IP).success

        assert lockout_guard.consecutive_failures(EMAIL) == 0
        assert lockout_guard.check_login_with_lockout(f"{EMAIL}-{IP}").remaining_attempts == 4

    def test_password_never_logged(self, login_guard, provider, caplog):
        provider.sign_in.side_effect = InvalidCredentialsError()

        with caplog.at_level("DEBUG"):
            login_guard.login(EMAIL, "hunter2-secret", IP)

        assert "hunter2-secret" not in caplog.text
        for record in caplog.records:
            assert "hunter2-secret" not in str(record.__dict__)

    def test_store_failure_while_counting_returns_generic_message(self, login_guard, lockout_guard, provider, monkeypatch):
        provider.sign_in.side_effect = InvalidCredentialsError(unknown_email=True)
        monkeypatch.setattr(lockout_guard, "record_failure", Mock(side_effect=KeyValueStoreError("down")))

        outcome = login_guard.login(EMAIL, "pw", IP)

        assert outcome.success is False
        assert outcome.error == INVALID_CREDENTIALS_MESSAGE
        assert outcome.reason == LoginFailureReason.UNKNOWN_EMAIL

    def test_store_failure_after_success_still_signs_in(self, login_guard, lockout_guard, provider, monkeypatch):
        provider.sign_in.return_value = AuthenticatedUser("u-1", EMAIL)
        monkeypatch.setattr(lockout_guard, "record_success", Mock(side_effect=KeyValueStoreError("down")))

        assert login_guard.login(EMAIL, "pw", IP).success is True


def _provider(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpAuthProvider("https://auth.example.com/", "anon-key", client=client)


class TestHttpAuthProvider:

    def test_sign_in_success(self):
        def handler(request):
            assert request.url.path == "/auth/v1/token"
            assert request.url.params["grant_type"] == "password"
            assert request.headers["apikey"] == "anon-key"
            return httpx.Response(200, json={
                "user": {"id": "u-1", "email": EMAIL, "user_metadata": {"role": "admin"}},
            })

        user = _provider(handler).sign_in(EMAIL, "pw")

        assert user.user_id == "u-1"
        assert user.is_admin

    def test_invalid_credentials(self):
        provider = _provider(lambda request: httpx.Response(400, json={"error_code": "invalid_credentials"}))

        with pytest.raises(InvalidCredentialsError) as exc_info:
            provider.sign_in(EMAIL, "pw")

        assert exc_info.value.unknown_email is False

    def test_unknown_email(self):
        provider = _provider(lambda request: httpx.Response(400, json={"error_code": "user_not_found"}))

        with pytest.raises(InvalidCredentialsError) as exc_info:
            provider.sign_in(EMAIL, "pw")

        assert exc_info.value.unknown_email is True

    def test_server_error_is_unavailable(self):
        provider = _provider(lambda request: httpx.Response(502))

        with pytest.raises(AuthProviderUnavailableError):
            provider.sign_in(EMAIL, "pw")

    def test_timeout_is_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(AuthProviderUnavailableError):
            _provider(handler).sign_in(EMAIL, "pw")

    def test_from_settings_requires_configuration(self, settings):
        unconfigured = replace(settings, auth_provider_url=None, auth_provider_api_key=None)

        with pytest.raises(AuthProviderUnavailableError):
            HttpAuthProvider.from_settings(unconfigured)
