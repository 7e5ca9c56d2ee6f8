"""
Tests for the OAuth redirect listener.

The listener binds an ephemeral port; callbacks are sent with httpx from the
test thread while the listener waits in a background thread.
"""

import tempfile
import threading
from pathlib import Path

import httpx
import pytest

from provider_fallback.core.callback import CallbackListener
from provider_fallback.core.credentials import CredentialResolver, CredentialStore
from provider_fallback.core.errors import AuthError, AuthErrorKind
from provider_fallback.core.oauth import CredentialManager, OAuthStateStore

from conftest import Clock, TokenEndpoint, make_catalog


class TestCallbackListener:
    """Test the one-shot authorization callback wait."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.catalog = make_catalog()
        self.clock = Clock()
        self.store = CredentialStore(Path(self.temp_dir) / "auth.json", now=self.clock)
        self.endpoint = TokenEndpoint()
        resolver = CredentialResolver(self.catalog, self.store, environ={}, now=self.clock)
        self.manager = CredentialManager(
            self.catalog,
            resolver,
            self.store,
            OAuthStateStore(Path(self.temp_dir) / "tokens.json", now=self.clock),
            token_client=self.endpoint.client(),
            now=self.clock,
        )

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _wait_in_background(self, listener, timeout=10):
        outcome = {}

        def run():
            try:
                outcome["credential"] = listener.wait(timeout)
            except AuthError as e:
                outcome["error"] = e

        thread = threading.Thread(target=run, daemon=True)
        thread.start()
        return thread, outcome

    def test_callback_completes_flow(self):
        """Test a callback with a valid code and state stores the credential."""
        state = self.manager.start_authorization_flow("alpha-oauth", "cid", "csecret").state
        listener = CallbackListener(self.manager, "alpha-oauth", host="127.0.0.1", port=0)
        thread, outcome = self._wait_in_background(listener)

        response = httpx.get(listener.callback_url, params={"code": "the-code", "state": state})
        thread.join(10)

        assert response.status_code == 200
        assert "Success!" in response.text
        assert outcome["credential"].access_token == "new-access"
        assert self.store.get("alpha-oauth")["accessToken"] == "new-access"
        assert self.endpoint.requests[0]["code"] == "the-code"

    def test_other_paths_ignored(self):
        """Test requests to other paths do not end the wait."""
        state = self.manager.start_authorization_flow("alpha-oauth", "cid", "csecret").state
        listener = CallbackListener(self.manager, "alpha-oauth", host="127.0.0.1", port=0)
        thread, outcome = self._wait_in_background(listener)
        base = listener.callback_url.rsplit("/", 1)[0]

        missing = httpx.get(f"{base}/favicon.ico")
        httpx.get(listener.callback_url, params={"code": "c", "state": state})
        thread.join(10)

        assert missing.status_code == 404
        assert "credential" in outcome

    def test_provider_error(self):
        """Test an error parameter from the provider ends the wait as denied."""
        self.manager.start_authorization_flow("alpha-oauth", "cid", "csecret")
        listener = CallbackListener(self.manager, "alpha-oauth", host="127.0.0.1", port=0)
        thread, outcome = self._wait_in_background(listener)

        response = httpx.get(listener.callback_url, params={"error": "access_denied"})
        thread.join(10)

        assert response.status_code == 400
        assert "access_denied" in response.text
        assert outcome["error"].kind == AuthErrorKind.AUTHORIZATION_DENIED
        assert self.endpoint.requests == []

    def test_forged_state(self):
        """Test a callback with the wrong state is refused and nothing is stored."""
        self.manager.start_authorization_flow("alpha-oauth", "cid", "csecret")
        listener = CallbackListener(self.manager, "alpha-oauth", host="127.0.0.1", port=0)
        thread, outcome = self._wait_in_background(listener)

        response = httpx.get(listener.callback_url, params={"code": "c", "state": "forged"})
        thread.join(10)

        assert response.status_code == 500
        assert outcome["error"].kind == AuthErrorKind.INVALID_STATE
        assert self.store.get("alpha-oauth") == {}

    def test_timeout(self):
        """Test the wait is abandoned when no callback arrives."""
        listener = CallbackListener(self.manager, "alpha-oauth", host="127.0.0.1", port=0)

        with pytest.raises(AuthError) as exc_info:
            listener.wait(timeout=0.2)

        assert exc_info.value.kind == AuthErrorKind.AUTHORIZATION_TIMEOUT

    def test_defaults_to_redirect_uri(self):
        """Test the callback path comes from the provider's redirect URI."""
        listener = CallbackListener(self.manager, "alpha-oauth", host="127.0.0.1", port=0)
        try:
            assert listener.callback_path == "/callback"
            assert listener.callback_url.endswith("/callback")
        finally:
            listener.server_close()

    def test_non_oauth_provider(self):
        """Test only OAuth providers can be listened for."""
        with pytest.raises(ValueError, match="does not support OAuth"):
            CallbackListener(self.manager, "alpha-api", port=0)
