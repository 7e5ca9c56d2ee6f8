"""
Shared helpers for Provider Fallback tests.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx

from provider_fallback.core.catalog import (
    AuthType,
    ModelEntry,
    OAuthEndpoints,
    Provider,
    ProviderCatalog,
    RateLimit,
)
from provider_fallback.core.oauth import TokenEndpointClient

NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)

TOKEN_URL = "https://auth.alpha.test/oauth/token"

OAUTH_FIELDS = ("accessToken", "refreshToken", "expiresAt", "clientId", "clientSecret")


def make_provider(provider_id, auth_type, tokens_per_day=1000, vendor="alpha", env=(), store=("apiKey",), oauth=None):
    return Provider(
        id=provider_id,
        name=provider_id.title(),
        vendor=vendor,
        auth_type=auth_type,
        rate_limit=RateLimit(requests_per_minute=60, tokens_per_day=tokens_per_day),
        base_url=f"https://{provider_id}.test/v1",
        env_fields=tuple(env),
        store_fields=tuple(store),
        oauth=oauth,
    )


def make_catalog():
    """Small catalog: one vendor with all three auth types plus two API-only vendors."""
    providers = [
        make_provider("alpha-api", AuthType.API, env=[("ALPHA_API_KEY", "apiKey")]),
        make_provider("alpha-oauth", AuthType.OAUTH,
                      env=[("ALPHA_OAUTH_TOKEN", "accessToken")],
                      store=OAUTH_FIELDS,
                      oauth=OAuthEndpoints(
                          auth_url="https://auth.alpha.test/oauth/authorize",
                          token_url=TOKEN_URL,
                          scopes=("read", "write"))),
        make_provider("alpha-sub", AuthType.SUBSCRIPTION,
                      env=[("ALPHA_SESSION", "sessionToken"), ("ALPHA_SESSION_OLD", "sessionToken")],
                      store=("sessionToken",)),
        make_provider("beta-api", AuthType.API, vendor="beta", env=[("BETA_API_KEY", "apiKey")]),
        make_provider("gamma-api", AuthType.API, vendor="gamma", env=[("GAMMA_API_KEY", "apiKey")]),
    ]
    models = [
        ModelEntry("alpha-large", "alpha", {
            "alpha-sub": "alpha-large-2024",
            "alpha-oauth": "alpha-large-2024",
            "alpha-api": "alpha-large-2024",
            "gamma-api": "vendor/alpha-large",
        }),
        ModelEntry("beta-small", "beta", {"beta-api": "beta-small-v1"}),
    ]
    return ProviderCatalog(providers, models)


class Clock:
    """Mutable clock; set ``now`` to move time."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class TokenEndpoint:
    """Programmable OAuth token endpoint recording the grants it receives."""

    def __init__(self, status_code=200, body=None, error=None):
        self.status_code = status_code
        self.body = body if body is not None else {
            "access_token": "new-access",
            "refresh_token": "new-refresh",
            "expires_in": 3600,
            "token_type": "Bearer",
        }
        self.error = error
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
        if self.error is not None:
            raise self.error(request)
        if isinstance(self.body, str):
            return httpx.Response(self.status_code, text=self.body)
        return httpx.Response(self.status_code, json=self.body)

    def client(self) -> TokenEndpointClient:
        return TokenEndpointClient(self.http_client())

    def http_client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


class FakeTimer:
    def __init__(self, delay, callback, args):
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.callback(*self.args)


class FakeTimers:
    """Timer factory recording every armed timer instead of starting threads."""

    def __init__(self):
        self.armed = []

    def __call__(self, delay, callback, args):
        timer = FakeTimer(delay, callback, args)
        self.armed.append(timer)
        return timer

    @property
    def last(self):
        return self.armed[-1]
