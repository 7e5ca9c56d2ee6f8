"""
Unit tests for the OAuth credential lifecycle.

Token endpoints are served by an in-process httpx mock transport.
"""

import json
import tempfile
from datetime import timedelta
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from provider_fallback.core.credentials import CredentialResolver, CredentialStore, format_timestamp
from provider_fallback.core.errors import AuthError, AuthErrorKind
from provider_fallback.core.oauth import CredentialManager, OAuthStateStore

from conftest import NOW, Clock, TokenEndpoint, make_catalog


class OAuthTestBase:
    """Shared wiring for credential manager tests."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.catalog = make_catalog()
        self.clock = Clock()
        self.store = CredentialStore(Path(self.temp_dir) / "auth.json", now=self.clock)
        self.state_store = OAuthStateStore(Path(self.temp_dir) / "tokens.json", now=self.clock)
        self.endpoint = TokenEndpoint()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _manager(self, environ=None) -> CredentialManager:
        resolver = CredentialResolver(self.catalog, self.store, environ=environ or {}, now=self.clock)
        return CredentialManager(
            self.catalog,
            resolver,
            self.store,
            self.state_store,
            token_client=self.endpoint.client(),
            now=self.clock,
        )

    def _store_oauth(self, expires_in=timedelta(hours=1), **extra):
        fields = {
            "accessToken": "old-access",
            "refreshToken": "old-refresh",
            "expiresAt": format_timestamp(NOW + expires_in),
            "clientId": "cid",
            "clientSecret": "csecret",
        }
        fields.update(extra)
        self.store.set_credentials("alpha-oauth", {k: v for k, v in fields.items() if v is not None})


class TestEnsureValid(OAuthTestBase):
    """Test reactive refresh on use."""

    def test_not_configured(self):
        """Test a provider without credentials fails with NOT_CONFIGURED."""
        with pytest.raises(AuthError) as exc_info:
            self._manager().ensure_valid("alpha-api")

        assert exc_info.value.kind == AuthErrorKind.NOT_CONFIGURED
        assert exc_info.value.provider_id == "alpha-api"

    def test_api_credential_returned_unchanged(self):
        """Test non-OAuth credentials pass straight through."""
        credential = self._manager({"ALPHA_API_KEY": "k"}).ensure_valid("alpha-api")

        assert credential.secret == "k"
        assert self.endpoint.requests == []

    def test_fresh_token_not_refreshed(self):
        """Test a token outside the refresh buffer is used as is."""
        self._store_oauth(expires_in=timedelta(hours=1))

        credential = self._manager().ensure_valid("alpha-oauth")

        assert credential.access_token == "old-access"
        assert self.endpoint.requests == []

    def test_token_near_expiry_is_refreshed(self):
        """Test a token two minutes from expiry is refreshed before use."""
        self._store_oauth(expires_in=timedelta(minutes=2))
        manager = self._manager()
        assert manager.resolve_credential("alpha-oauth").needs_refresh is True

        credential = manager.ensure_valid("alpha-oauth")

        assert credential.access_token == "new-access"
        assert credential.needs_refresh is False
        assert self.endpoint.requests == [{
            "grant_type": "refresh_token",
            "client_id": "cid",
            "client_secret": "csecret",
            "refresh_token": "old-refresh",
        }]
        stored = self.store.get("alpha-oauth")
        assert stored["accessToken"] == "new-access"
        assert stored["expiresAt"] == format_timestamp(NOW + timedelta(hours=1))

    def test_failed_refresh_of_live_token_returns_stale(self):
        """Test a refresh failure is tolerated while the token is still valid."""
        self._store_oauth(expires_in=timedelta(minutes=2))
        self.endpoint.status_code = 400
        self.endpoint.body = {"error": "invalid_grant"}

        credential = self._manager().ensure_valid("alpha-oauth")

        assert credential.access_token == "old-access"
        assert credential.needs_refresh is True

    def test_out_of_range_lifetime_returns_stale(self):
        """Test an unusable expires_in is handled like any failed refresh."""
        self._store_oauth(expires_in=timedelta(minutes=2))
        self.endpoint.body = {"access_token": "x", "expires_in": 10 ** 12}

        credential = self._manager().ensure_valid("alpha-oauth")

        assert credential.access_token == "old-access"

    def test_failed_refresh_of_expired_token_raises(self):
        """Test an expired token that cannot be refreshed is an error."""
        self._store_oauth(expires_in=timedelta(minutes=-1))
        self.endpoint.status_code = 400
        self.endpoint.body = {"error": "invalid_grant", "error_description": "Refresh token revoked"}

        with pytest.raises(AuthError) as exc_info:
            self._manager().ensure_valid("alpha-oauth")

        assert exc_info.value.kind == AuthErrorKind.REFRESH_FAILED
        assert "Refresh token revoked" in str(exc_info.value)
        assert exc_info.value.__cause__.kind == AuthErrorKind.TOKEN_ENDPOINT_ERROR


class TestRefresh(OAuthTestBase):
    """Test refresh-token grants."""

    def test_no_refresh_token(self):
        """Test refresh without a refresh token."""
        self._store_oauth(refreshToken=None)

        with pytest.raises(AuthError) as exc_info:
            self._manager().refresh("alpha-oauth")

        assert exc_info.value.kind == AuthErrorKind.NO_REFRESH_TOKEN
        assert self.endpoint.requests == []

    def test_missing_client_credentials(self):
        """Test refresh without a client id and secret."""
        self._store_oauth(clientId=None, clientSecret=None)

        with pytest.raises(AuthError) as exc_info:
            self._manager().refresh("alpha-oauth")

        assert exc_info.value.kind == AuthErrorKind.MISSING_CLIENT_CREDENTIALS

    def test_client_credentials_from_environment(self):
        """Test env client credentials win over stored ones."""
        self._store_oauth()

        self._manager({"ALPHA_CLIENT_ID": "env-id", "ALPHA_CLIENT_SECRET": "env-secret"}).refresh("alpha-oauth")

        assert self.endpoint.requests[0]["client_id"] == "env-id"
        assert self.endpoint.requests[0]["client_secret"] == "env-secret"

    def test_refresh_token_kept_when_not_rotated(self):
        """Test the old refresh token survives a response without one."""
        self._store_oauth()
        self.endpoint.body = {"access_token": "new-access", "expires_in": 600}

        credential = self._manager().refresh("alpha-oauth")

        assert credential.refresh_token == "old-refresh"
        assert credential.get("tokenType") == "Bearer"
        stored = self.store.get("alpha-oauth")
        assert stored["refreshToken"] == "old-refresh"
        assert stored["expiresAt"] == format_timestamp(NOW + timedelta(minutes=10))
        assert stored["refreshedAt"] == format_timestamp(NOW)

    def test_rotated_refresh_token_stored(self):
        """Test a new refresh token replaces the old one."""
        self._store_oauth()

        self._manager().refresh("alpha-oauth")

        assert self.store.get("alpha-oauth")["refreshToken"] == "new-refresh"

    def test_default_lifetime(self):
        """Test a response without expires_in gets a one hour lifetime."""
        self._store_oauth()
        self.endpoint.body = {"access_token": "new-access"}

        credential = self._manager().refresh("alpha-oauth")

        assert credential.expires_at == NOW + timedelta(hours=1)

    def test_non_oauth_provider(self):
        """Test refresh is refused for providers without OAuth."""
        with pytest.raises(ValueError, match="does not support OAuth"):
            self._manager({"ALPHA_API_KEY": "k"}).refresh("alpha-api")

    def test_unparseable_response(self):
        """Test a non-JSON response is a token endpoint error."""
        self._store_oauth()
        self.endpoint.body = "<html>oops</html>"

        with pytest.raises(AuthError, match="Failed to parse token response") as exc_info:
            self._manager().refresh("alpha-oauth")

        assert exc_info.value.kind == AuthErrorKind.TOKEN_ENDPOINT_ERROR

    def test_http_error_without_error_field(self):
        """Test an HTTP error status is a token endpoint error."""
        self._store_oauth()
        self.endpoint.status_code = 500
        self.endpoint.body = {"message": "down"}

        with pytest.raises(AuthError, match="HTTP 500") as exc_info:
            self._manager().refresh("alpha-oauth")

        assert exc_info.value.kind == AuthErrorKind.TOKEN_ENDPOINT_ERROR

    def test_missing_access_token(self):
        """Test a success response without a token is rejected."""
        self._store_oauth()
        self.endpoint.body = {"token_type": "Bearer"}

        with pytest.raises(AuthError, match="missing access_token"):
            self._manager().refresh("alpha-oauth")

    @pytest.mark.parametrize("body", [
        {"access_token": "x", "expires_in": 10 ** 12},
        {"access_token": "x", "expires_in": -60},
        '{"access_token": "x", "expires_in": 1e400}',
    ])
    def test_expires_in_out_of_range(self, body):
        """Test an absurd token lifetime is a token endpoint error."""
        self._store_oauth()
        self.endpoint.body = body

        with pytest.raises(AuthError, match="expires_in out of range") as exc_info:
            self._manager().refresh("alpha-oauth")

        assert exc_info.value.kind == AuthErrorKind.TOKEN_ENDPOINT_ERROR
        assert self.store.get("alpha-oauth")["accessToken"] == "old-access"

    @pytest.mark.parametrize("error", [
        lambda request: httpx.ConnectError("connection refused", request=request),
        lambda request: httpx.ReadTimeout("timed out", request=request),
    ])
    def test_network_failure(self, error):
        """Test transport failures are reported as network failures."""
        self._store_oauth()
        self.endpoint.error = error

        with pytest.raises(AuthError) as exc_info:
            self._manager().refresh("alpha-oauth")

        assert exc_info.value.kind == AuthErrorKind.NETWORK_FAILURE
        assert self.store.get("alpha-oauth")["accessToken"] == "old-access"


class TestAuthorizationFlow(OAuthTestBase):
    """Test the authorization-code flow."""

    def test_start_builds_authorization_url(self):
        """Test the URL carries the client, scopes and a state token."""
        request = self._manager().start_authorization_flow("alpha-oauth", "cid", "csecret")

        parsed = urlparse(request.auth_url)
        query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://auth.alpha.test/oauth/authorize"
        assert query == {
            "client_id": "cid",
            "redirect_uri": "http://localhost:19284/callback",
            "response_type": "code",
            "scope": "read write",
            "state": request.state,
            "access_type": "offline",
            "prompt": "consent",
        }
        assert len(request.state) >= 32

    def test_state_persisted_privately(self):
        """Test the pending state is stored with the client credentials."""
        request = self._manager().start_authorization_flow("alpha-oauth", "cid", "csecret")

        with open(Path(self.temp_dir) / "tokens.json") as f:
            data = json.load(f)
        assert data["oauth_state_alpha-oauth"]["state"] == request.state
        assert data["oauth_state_alpha-oauth"]["clientSecret"] == "csecret"

    def test_states_are_unique(self):
        """Test every flow gets a fresh state token."""
        manager = self._manager()

        first = manager.start_authorization_flow("alpha-oauth", "cid", "csecret")
        second = manager.start_authorization_flow("alpha-oauth", "cid", "csecret")

        assert first.state != second.state

    def test_start_rejects_non_oauth_provider(self):
        """Test only OAuth providers can start the flow."""
        with pytest.raises(ValueError, match="does not support OAuth"):
            self._manager().start_authorization_flow("alpha-api", "cid", "csecret")

    def test_complete_exchanges_code(self):
        """Test a valid callback stores tokens and client credentials."""
        manager = self._manager()
        request = manager.start_authorization_flow("alpha-oauth", "cid", "csecret")

        credential = manager.complete_authorization_flow("alpha-oauth", "the-code", request.state)

        assert credential.access_token == "new-access"
        assert self.endpoint.requests == [{
            "grant_type": "authorization_code",
            "client_id": "cid",
            "client_secret": "csecret",
            "code": "the-code",
            "redirect_uri": "http://localhost:19284/callback",
        }]
        stored = self.store.get("alpha-oauth")
        assert stored["refreshToken"] == "new-refresh"
        assert stored["clientId"] == "cid"
        assert stored["clientSecret"] == "csecret"
        assert stored["createdAt"] == format_timestamp(NOW)
        assert self.state_store.get("alpha-oauth") is None

    def test_complete_schedules_proactive_refresh(self):
        """Test an attached scheduler is asked to arm a refresh."""
        manager = self._manager()
        calls = []

        class RecordingScheduler:
            def schedule(self, provider_id, buffer_minutes=None):
                calls.append(provider_id)

        manager.scheduler = RecordingScheduler()
        request = manager.start_authorization_flow("alpha-oauth", "cid", "csecret")

        manager.complete_authorization_flow("alpha-oauth", "the-code", request.state)

        assert calls == ["alpha-oauth"]

    def test_invalid_state_rejected(self):
        """Test a mismatched state fails and stores nothing."""
        manager = self._manager()
        manager.start_authorization_flow("alpha-oauth", "cid", "csecret")

        with pytest.raises(AuthError) as exc_info:
            manager.complete_authorization_flow("alpha-oauth", "the-code", "forged-state")

        assert exc_info.value.kind == AuthErrorKind.INVALID_STATE
        assert self.endpoint.requests == []
        assert self.store.get("alpha-oauth") == {}
        assert self.state_store.get("alpha-oauth") is not None

    def test_no_pending_state(self):
        """Test completing a flow that was never started."""
        with pytest.raises(AuthError) as exc_info:
            self._manager().complete_authorization_flow("alpha-oauth", "the-code", "anything")

        assert exc_info.value.kind == AuthErrorKind.INVALID_STATE

    def test_stale_state_rejected(self):
        """Test a state older than five minutes is no longer accepted."""
        manager = self._manager()
        request = manager.start_authorization_flow("alpha-oauth", "cid", "csecret")
        self.clock.advance(minutes=6)

        with pytest.raises(AuthError, match="expired") as exc_info:
            manager.complete_authorization_flow("alpha-oauth", "the-code", request.state)

        assert exc_info.value.kind == AuthErrorKind.INVALID_STATE
        assert self.store.get("alpha-oauth") == {}

    def test_failed_exchange_keeps_state(self):
        """Test a token endpoint error leaves the flow retryable."""
        manager = self._manager()
        request = manager.start_authorization_flow("alpha-oauth", "cid", "csecret")
        self.endpoint.status_code = 400
        self.endpoint.body = {"error": "invalid_request", "error_description": "Bad code"}

        with pytest.raises(AuthError, match="Bad code"):
            manager.complete_authorization_flow("alpha-oauth", "the-code", request.state)

        assert self.state_store.get("alpha-oauth") is not None
        assert self.store.get("alpha-oauth") == {}
