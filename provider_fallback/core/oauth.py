"""
OAuth credential lifecycle.

Reactive refresh on use, refresh-token grants against provider token
endpoints, and the authorization-code flow used for first-time setup.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

import httpx

from provider_fallback.core.catalog import AuthType, Provider, ProviderCatalog
from provider_fallback.core.credentials import (
    Credential,
    CredentialResolver,
    CredentialStore,
    format_timestamp,
    parse_timestamp,
)
from provider_fallback.core.errors import AuthError, AuthErrorKind, ConfigError
from provider_fallback.storage.files import read_json, write_json
from provider_fallback.storage.models import utc_now

logger = logging.getLogger(__name__)

TOKEN_REQUEST_TIMEOUT = 30.0
DEFAULT_TOKEN_LIFETIME = 3600
MAX_TOKEN_LIFETIME = 10 * 365 * 24 * 3600
AUTHORIZATION_TIMEOUT = timedelta(minutes=5)
STATE_KEY_PREFIX = "oauth_state_"


@dataclass(frozen=True)
class AuthorizationRequest:
    """URL the user must visit and the state token bound to it."""
    auth_url: str
    state: str


class OAuthStateStore:
    """Pending authorization states, one per provider."""

    def __init__(self, path: Path, now: Callable[[], datetime] = utc_now):
        self.path = Path(path)
        self.now = now

    def _load(self) -> Dict[str, Any]:
        try:
            data = read_json(self.path, default={})
        except ConfigError as e:
            logger.warning("Discarding unreadable OAuth state file: %s", e)
            return {}
        return data if isinstance(data, dict) else {}

    def put(self, provider_id: str, state: str, client_id: str, client_secret: str) -> None:
        data = self._load()
        data[STATE_KEY_PREFIX + provider_id] = {
            "state": state,
            "clientId": client_id,
            "clientSecret": client_secret,
            "createdAt": format_timestamp(self.now()),
        }
        write_json(self.path, data, private=True)

    def get(self, provider_id: str) -> Optional[Dict[str, Any]]:
        entry = self._load().get(STATE_KEY_PREFIX + provider_id)
        return entry if isinstance(entry, dict) else None

    def delete(self, provider_id: str) -> None:
        data = self._load()
        if data.pop(STATE_KEY_PREFIX + provider_id, None) is not None:
            write_json(self.path, data, private=True)


class TokenEndpointClient:
    """Posts form-encoded grants to OAuth token endpoints."""

    def __init__(self, http_client: Optional[httpx.Client] = None, timeout: float = TOKEN_REQUEST_TIMEOUT):
        self.http_client = http_client
        self.timeout = timeout

    def request_tokens(self, provider_id: str, token_url: str, params: Dict[str, str]) -> Dict[str, Any]:
        """Send a token request and return the parsed response body.

        Raises:
            AuthError: NETWORK_FAILURE on transport errors or timeouts,
                TOKEN_ENDPOINT_ERROR on error or unparseable responses
        """
        headers = {"Accept": "application/json"}
        try:
            if self.http_client is not None:
                response = self.http_client.post(token_url, data=params, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(token_url, data=params, headers=headers)
        except httpx.TimeoutException as e:
            raise AuthError(
                f"Token request for {provider_id} timed out", AuthErrorKind.NETWORK_FAILURE, provider_id
            ) from e
        except httpx.RequestError as e:
            raise AuthError(
                f"Token request for {provider_id} failed: {e}", AuthErrorKind.NETWORK_FAILURE, provider_id
            ) from e

        try:
            body = response.json()
        except ValueError as e:
            raise AuthError(
                f"Failed to parse token response: {e}", AuthErrorKind.TOKEN_ENDPOINT_ERROR, provider_id
            ) from e
        if not isinstance(body, dict):
            raise AuthError(
                "Failed to parse token response: expected a JSON object",
                AuthErrorKind.TOKEN_ENDPOINT_ERROR,
                provider_id,
            )

        if body.get("error"):
            message = body.get("error_description") or body["error"]
            raise AuthError(str(message), AuthErrorKind.TOKEN_ENDPOINT_ERROR, provider_id)
        if response.is_error:
            raise AuthError(
                f"Token endpoint returned HTTP {response.status_code}",
                AuthErrorKind.TOKEN_ENDPOINT_ERROR,
                provider_id,
            )
        if not body.get("access_token"):
            raise AuthError(
                "Token response missing access_token", AuthErrorKind.TOKEN_ENDPOINT_ERROR, provider_id
            )
        return body


class CredentialManager:
    """Keeps provider credentials usable.

    Resolves credentials, refreshes OAuth tokens on demand and runs the
    authorization-code exchange. Proactive refresh is delegated to an
    attached RefreshScheduler.
    """

    def __init__(
        self,
        catalog: ProviderCatalog,
        resolver: CredentialResolver,
        store: CredentialStore,
        state_store: OAuthStateStore,
        token_client: Optional[TokenEndpointClient] = None,
        environ: Optional[Mapping[str, str]] = None,
        now: Callable[[], datetime] = utc_now,
        authorization_timeout: timedelta = AUTHORIZATION_TIMEOUT,
    ):
        self.catalog = catalog
        self.resolver = resolver
        self.store = store
        self.state_store = state_store
        self.token_client = token_client or TokenEndpointClient()
        self.environ = resolver.environ if environ is None else environ
        self.now = now
        self.authorization_timeout = authorization_timeout
        self.scheduler = None

    def resolve_credential(self, provider_id: str) -> Optional[Credential]:
        return self.resolver.resolve(provider_id)

    def ensure_valid(self, provider_id: str) -> Credential:
        """Return a usable credential, refreshing an OAuth token that is near expiry.

        A failed refresh of a token that has not yet expired is tolerated:
        the stale token is returned and a warning logged.

        Raises:
            AuthError: NOT_CONFIGURED if nothing resolves, REFRESH_FAILED if
                the token has expired and could not be refreshed
        """
        credential = self.resolver.resolve(provider_id)
        if credential is None:
            raise AuthError(
                f"Provider {provider_id} is not configured", AuthErrorKind.NOT_CONFIGURED, provider_id
            )

        if credential.auth_type != AuthType.OAUTH or not credential.needs_refresh:
            return credential

        logger.info("Token for %s needs refresh", provider_id)
        try:
            return self.refresh(provider_id)
        except AuthError as e:
            logger.error("Failed to refresh token for %s: %s", provider_id, e)
            if credential.is_expired:
                raise AuthError(
                    f"Token expired and refresh failed for {provider_id}: {e}",
                    AuthErrorKind.REFRESH_FAILED,
                    provider_id,
                ) from e
            logger.warning("Using potentially stale token for %s", provider_id)
            return credential

    def _oauth_provider(self, provider_id: str) -> Provider:
        provider = self.catalog.get_provider(provider_id)
        if provider.auth_type != AuthType.OAUTH or provider.oauth is None:
            raise ValueError(f"Provider {provider_id} does not support OAuth")
        return provider

    def client_credentials(self, provider_id: str):
        """Client id and secret, environment first and stored values second."""
        provider = self.catalog.get_provider(provider_id)
        prefix = provider.vendor.upper().replace("-", "_")
        stored = self.store.get(provider_id)
        client_id = self.environ.get(f"{prefix}_CLIENT_ID") or stored.get("clientId")
        client_secret = self.environ.get(f"{prefix}_CLIENT_SECRET") or stored.get("clientSecret")
        return client_id, client_secret

    def _token_fields(self, provider_id: str, response: Dict[str, Any]) -> Dict[str, Any]:
        try:
            lifetime = int(response.get("expires_in", DEFAULT_TOKEN_LIFETIME))
        except (TypeError, ValueError):
            lifetime = DEFAULT_TOKEN_LIFETIME
        except OverflowError:
            lifetime = None
        if lifetime is None or not 0 <= lifetime <= MAX_TOKEN_LIFETIME:
            raise AuthError(
                f"Failed to parse token response: expires_in out of range ({response.get('expires_in')!r})",
                AuthErrorKind.TOKEN_ENDPOINT_ERROR,
                provider_id,
            )
        return {
            "accessToken": response["access_token"],
            "refreshToken": response.get("refresh_token"),
            "expiresAt": format_timestamp(self.now() + timedelta(seconds=lifetime)),
            "tokenType": response.get("token_type") or "Bearer",
            "scope": response.get("scope"),
        }

    def refresh(self, provider_id: str) -> Credential:
        """Exchange the stored refresh token for a new access token.

        Returns:
            The refreshed credential, already persisted

        Raises:
            ValueError: If the provider does not support OAuth
            AuthError: NO_REFRESH_TOKEN, MISSING_CLIENT_CREDENTIALS,
                TOKEN_ENDPOINT_ERROR or NETWORK_FAILURE
        """
        provider = self._oauth_provider(provider_id)
        credential = self.resolver.resolve(provider_id)
        if credential is None or not credential.refresh_token:
            raise AuthError(
                f"No refresh token available for {provider_id}", AuthErrorKind.NO_REFRESH_TOKEN, provider_id
            )

        client_id, client_secret = self.client_credentials(provider_id)
        if not client_id or not client_secret:
            raise AuthError(
                f"Client credentials not found for {provider_id}",
                AuthErrorKind.MISSING_CLIENT_CREDENTIALS,
                provider_id,
            )

        response = self.token_client.request_tokens(provider_id, provider.oauth.token_url, {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": credential.refresh_token,
        })

        updates = self._token_fields(provider_id, response)
        if not updates["refreshToken"]:
            updates["refreshToken"] = credential.refresh_token
        updates["refreshedAt"] = format_timestamp(self.now())
        updates = {k: v for k, v in updates.items() if v is not None}
        self.store.set_credentials(provider_id, updates)

        logger.info("Refreshed token for %s, expires: %s", provider_id, updates["expiresAt"])
        return self.resolver.with_flags(provider_id, {**credential.fields, **updates})

    def schedule_proactive_refresh(self, provider_id: str, buffer_minutes: Optional[float] = None):
        """Arm a proactive refresh through the attached scheduler, if any."""
        if self.scheduler is None:
            logger.debug("No refresh scheduler attached; not scheduling %s", provider_id)
            return None
        return self.scheduler.schedule(provider_id, buffer_minutes)

    def start_authorization_flow(self, provider_id: str, client_id: str, client_secret: str) -> AuthorizationRequest:
        """Begin the authorization-code flow for a provider.

        Raises:
            ValueError: If the provider does not support OAuth
        """
        provider = self._oauth_provider(provider_id)
        endpoints = provider.oauth
        state = secrets.token_urlsafe(24)

        params = urlencode({
            "client_id": client_id,
            "redirect_uri": endpoints.redirect_uri,
            "response_type": "code",
            "scope": " ".join(endpoints.scopes),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        })
        self.state_store.put(provider_id, state, client_id, client_secret)
        return AuthorizationRequest(auth_url=f"{endpoints.auth_url}?{params}", state=state)

    def complete_authorization_flow(self, provider_id: str, code: str, state: str) -> Credential:
        """Finish the authorization-code flow and store the resulting tokens.

        Raises:
            AuthError: INVALID_STATE if no fresh matching state is pending,
                or any token endpoint error
        """
        provider = self._oauth_provider(provider_id)
        pending = self.state_store.get(provider_id)
        if (pending is None or not state or
                not secrets.compare_digest(str(pending.get("state", "")), state)):
            raise AuthError(
                "Invalid OAuth state - possible CSRF attack", AuthErrorKind.INVALID_STATE, provider_id
            )

        created_at = parse_timestamp(pending.get("createdAt"))
        if created_at is None or self.now() - created_at > self.authorization_timeout:
            raise AuthError(
                f"OAuth state for {provider_id} has expired", AuthErrorKind.INVALID_STATE, provider_id
            )

        client_id = pending.get("clientId")
        client_secret = pending.get("clientSecret")
        response = self.token_client.request_tokens(provider_id, provider.oauth.token_url, {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": provider.oauth.redirect_uri,
        })

        fields = self._token_fields(provider_id, response)
        fields.update({
            "clientId": client_id,
            "clientSecret": client_secret,
            "createdAt": format_timestamp(self.now()),
        })
        fields = {k: v for k, v in fields.items() if v is not None}
        self.store.set_credentials(provider_id, fields)
        self.state_store.delete(provider_id)
        logger.info("Stored OAuth credentials for %s", provider_id)

        self.schedule_proactive_refresh(provider_id)
        return self.resolver.with_flags(provider_id, fields)
