"""
Provider and model catalog.

Static provider metadata and the per-model provider compatibility map.
The catalog is built explicitly and passed to every component that needs it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class AuthType(Enum):
    """How a provider authenticates."""
    SUBSCRIPTION = "subscription"
    OAUTH = "oauth"
    API = "api"


# Fixed weight per auth type - seeds default ordering, never a live score
AUTH_PRIORITY: Dict[AuthType, int] = {
    AuthType.SUBSCRIPTION: 100,
    AuthType.OAUTH: 50,
    AuthType.API: 10,
}


@dataclass(frozen=True)
class RateLimit:
    """Declared provider rate limits."""
    requests_per_minute: int
    tokens_per_day: int


@dataclass(frozen=True)
class OAuthEndpoints:
    """OAuth authorization and token endpoints for a provider."""
    auth_url: str
    token_url: str
    scopes: Tuple[str, ...]
    redirect_uri: str = "http://localhost:19284/callback"


@dataclass(frozen=True)
class Provider:
    """Immutable catalog entry for one upstream provider.

    ``env_fields`` maps environment variable names to credential field
    names, in precedence order. ``store_fields`` lists the fields read from
    the persisted credential store.
    """
    id: str
    name: str
    vendor: str
    auth_type: AuthType
    rate_limit: RateLimit
    base_url: str
    env_fields: Tuple[Tuple[str, str], ...] = ()
    store_fields: Tuple[str, ...] = ()
    oauth: Optional[OAuthEndpoints] = None

    @property
    def base_priority_weight(self) -> int:
        return AUTH_PRIORITY[self.auth_type]


@dataclass(frozen=True)
class ModelEntry:
    """Canonical model with its provider-specific identifiers."""
    name: str
    family: str
    providers: Dict[str, str] = field(default_factory=dict)


class ProviderCatalog:
    """Read-only registry of providers and models."""

    def __init__(self, providers: List[Provider], models: List[ModelEntry]):
        self._providers: Dict[str, Provider] = {}
        for provider in providers:
            if provider.id in self._providers:
                raise ValueError(f"Duplicate provider id: {provider.id}")
            self._providers[provider.id] = provider
        self._models: Dict[str, ModelEntry] = {m.name: m for m in models}

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    @property
    def provider_ids(self) -> List[str]:
        return list(self._providers)

    @property
    def providers(self) -> List[Provider]:
        return list(self._providers.values())

    @property
    def models(self) -> List[ModelEntry]:
        return list(self._models.values())

    def get_provider(self, provider_id: str) -> Provider:
        """Get a provider by id.

        Raises:
            ValueError: If the provider is unknown
        """
        if provider_id not in self._providers:
            raise ValueError(f"Unknown provider: {provider_id}")
        return self._providers[provider_id]

    def get_model(self, model: str) -> Optional[ModelEntry]:
        return self._models.get(model)

    def providers_for_model(self, model: str) -> List[str]:
        """Provider ids declared compatible with a model (empty if undeclared)."""
        entry = self._models.get(model)
        if entry is None:
            return []
        return list(entry.providers)

    def provider_model_id(self, model: str, provider_id: str) -> str:
        """Vendor-specific model id, falling back to the canonical name."""
        entry = self._models.get(model)
        if entry is None:
            return model
        return entry.providers.get(provider_id, model)

    def by_auth_priority(self, provider_ids: Optional[List[str]] = None) -> List[Provider]:
        """Providers sorted by descending auth weight, stable by catalog order."""
        if provider_ids is None:
            selected = self.providers
        else:
            selected = [self._providers[p] for p in provider_ids if p in self._providers]
        return sorted(selected, key=lambda p: -p.base_priority_weight)

    def default_priority(self) -> List[str]:
        return [p.id for p in self.by_auth_priority()]

    def oauth_providers(self) -> List[Provider]:
        return [p for p in self.providers if p.auth_type == AuthType.OAUTH]


_OAUTH_FIELDS = ("accessToken", "refreshToken", "expiresAt", "clientId", "clientSecret")


def _provider(id, name, vendor, auth_type, rpm, tpd, base_url, env=(), store=("apiKey",), oauth=None):
    return Provider(
        id=id,
        name=name,
        vendor=vendor,
        auth_type=auth_type,
        rate_limit=RateLimit(requests_per_minute=rpm, tokens_per_day=tpd),
        base_url=base_url,
        env_fields=tuple(env),
        store_fields=tuple(store),
        oauth=oauth,
    )


def default_catalog() -> ProviderCatalog:
    """Build the bundled provider and model catalog."""
    sub, oauth, api = AuthType.SUBSCRIPTION, AuthType.OAUTH, AuthType.API
    providers = [
        # Anthropic
        _provider("anthropic-subscription", "Anthropic Pro/Max Subscription", "anthropic", sub,
                  1000, 5_000_000, "https://api.anthropic.com",
                  env=[("ANTHROPIC_SESSION_TOKEN", "sessionToken"),
                       ("ANTHROPIC_SUBSCRIPTION_KEY", "sessionToken")],
                  store=("sessionToken", "organizationId")),
        _provider("anthropic-oauth", "Anthropic OAuth", "anthropic", oauth,
                  500, 1_000_000, "https://api.anthropic.com",
                  env=[("ANTHROPIC_OAUTH_TOKEN", "accessToken")],
                  store=_OAUTH_FIELDS,
                  oauth=OAuthEndpoints(
                      auth_url="https://console.anthropic.com/oauth/authorize",
                      token_url="https://console.anthropic.com/oauth/token",
                      scopes=("read", "write"))),
        _provider("anthropic-api", "Anthropic API Key", "anthropic", api,
                  1000, 10_000_000, "https://api.anthropic.com",
                  env=[("ANTHROPIC_API_KEY", "apiKey")]),
        # OpenAI
        _provider("openai-subscription", "ChatGPT Plus/Pro Subscription", "openai", sub,
                  500, 3_000_000, "https://api.openai.com/v1",
                  env=[("OPENAI_SESSION_TOKEN", "sessionToken"),
                       ("OPENAI_SUBSCRIPTION_KEY", "sessionToken")],
                  store=("sessionToken", "accessToken")),
        _provider("openai-oauth", "OpenAI OAuth", "openai", oauth,
                  200, 500_000, "https://api.openai.com/v1",
                  env=[("OPENAI_OAUTH_TOKEN", "accessToken")],
                  store=_OAUTH_FIELDS,
                  oauth=OAuthEndpoints(
                      auth_url="https://auth.openai.com/authorize",
                      token_url="https://auth.openai.com/oauth/token",
                      scopes=("openid", "profile", "model.read", "model.request"))),
        _provider("openai-api", "OpenAI API Key", "openai", api,
                  10000, 100_000_000, "https://api.openai.com/v1",
                  env=[("OPENAI_API_KEY", "apiKey")]),
        # Google
        _provider("google-subscription", "Google One AI Premium", "google", sub,
                  60, 1_500_000, "https://generativelanguage.googleapis.com",
                  env=[("GOOGLE_AI_SESSION", "authToken"),
                       ("GOOGLE_AI_SUBSCRIPTION", "authToken")],
                  store=("authToken", "accountId")),
        _provider("google-oauth", "Google OAuth", "google", oauth,
                  60, 500_000, "https://generativelanguage.googleapis.com",
                  env=[("GOOGLE_OAUTH_TOKEN", "accessToken"),
                       ("GOOGLE_ACCESS_TOKEN", "accessToken")],
                  store=_OAUTH_FIELDS,
                  oauth=OAuthEndpoints(
                      auth_url="https://accounts.google.com/o/oauth2/v2/auth",
                      token_url="https://oauth2.googleapis.com/token",
                      scopes=("https://www.googleapis.com/auth/generative-language.retriever",
                              "https://www.googleapis.com/auth/cloud-platform"))),
        _provider("google-api", "Google AI Studio API Key", "google", api,
                  1500, 50_000_000, "https://generativelanguage.googleapis.com/v1beta/openai",
                  env=[("GOOGLE_API_KEY", "apiKey"), ("GEMINI_API_KEY", "apiKey")]),
        # xAI
        _provider("xai-subscription", "X Premium+ (Grok)", "xai", sub,
                  60, 1_000_000, "https://api.x.ai/v1",
                  env=[("XAI_SESSION_TOKEN", "sessionToken")],
                  store=("sessionToken",)),
        _provider("xai-api", "xAI API Key", "xai", api,
                  60, 10_000_000, "https://api.x.ai/v1",
                  env=[("XAI_API_KEY", "apiKey")]),
        # Specialty
        _provider("github-copilot", "GitHub Copilot", "github", oauth,
                  100, 2_000_000, "https://api.githubcopilot.com",
                  env=[("GITHUB_COPILOT_TOKEN", "accessToken"),
                       ("GITHUB_TOKEN", "accessToken")],
                  store=_OAUTH_FIELDS,
                  oauth=OAuthEndpoints(
                      auth_url="https://github.com/login/oauth/authorize",
                      token_url="https://github.com/login/oauth/access_token",
                      scopes=("copilot",))),
        _provider("opencode-antigravity-auth", "OpenCode Antigravity Auth", "opencode", oauth,
                  200, 10_000_000, "https://api.opencode.ai",
                  env=[("OPENCODE_ANTIGRAVITY_TOKEN", "accessToken"),
                       ("ANTIGRAVITY_AUTH_TOKEN", "accessToken"),
                       ("OC_ANTIGRAVITY_KEY", "accessToken")],
                  store=_OAUTH_FIELDS,
                  oauth=OAuthEndpoints(
                      auth_url="https://auth.opencode.ai/oauth/authorize",
                      token_url="https://auth.opencode.ai/oauth/token",
                      scopes=("models", "inference"))),
        # Cloud
        _provider("bedrock", "AWS Bedrock", "aws", api,
                  1000, 50_000_000, "https://bedrock-runtime.us-east-1.amazonaws.com",
                  env=[("AWS_ACCESS_KEY_ID", "accessKeyId"),
                       ("AWS_SECRET_ACCESS_KEY", "secretAccessKey"),
                       ("AWS_REGION", "region")],
                  store=("accessKeyId", "secretAccessKey", "region")),
        _provider("vertex", "Google Vertex AI (Claude)", "gcp", api,
                  1000, 50_000_000, "https://us-east5-aiplatform.googleapis.com",
                  env=[("GOOGLE_APPLICATION_CREDENTIALS", "serviceAccountKey"),
                       ("GOOGLE_CLOUD_PROJECT", "projectId")],
                  store=("projectId", "location", "serviceAccountKey")),
        _provider("azure", "Azure OpenAI", "microsoft", api,
                  1000, 50_000_000, "https://example.openai.azure.com",
                  env=[("AZURE_OPENAI_API_KEY", "apiKey"),
                       ("AZURE_OPENAI_ENDPOINT", "endpoint")],
                  store=("apiKey", "endpoint", "deploymentName")),
        # Aggregators and other APIs
        _provider("openrouter", "OpenRouter", "openrouter", api,
                  500, 20_000_000, "https://openrouter.ai/api/v1",
                  env=[("OPENROUTER_API_KEY", "apiKey")]),
        _provider("together", "Together AI", "together", api,
                  600, 10_000_000, "https://api.together.xyz/v1",
                  env=[("TOGETHER_API_KEY", "apiKey")]),
        _provider("groq", "Groq", "groq", api,
                  30, 500_000, "https://api.groq.com/openai/v1",
                  env=[("GROQ_API_KEY", "apiKey")]),
        _provider("mistral-api", "Mistral AI", "mistral", api,
                  100, 10_000_000, "https://api.mistral.ai/v1",
                  env=[("MISTRAL_API_KEY", "apiKey")]),
        _provider("deepseek-api", "DeepSeek", "deepseek", api,
                  60, 5_000_000, "https://api.deepseek.com",
                  env=[("DEEPSEEK_API_KEY", "apiKey")]),
    ]

    claude_direct = ("anthropic-subscription", "anthropic-oauth", "anthropic-api")
    models = [
        ModelEntry("claude-4-sonnet", "claude", {
            **{p: "claude-sonnet-4-20250514" for p in claude_direct},
            "bedrock": "anthropic.claude-sonnet-4-20250514-v1:0",
            "vertex": "claude-sonnet-4@20250514",
            "github-copilot": "claude-sonnet-4",
            "openrouter": "anthropic/claude-sonnet-4",
        }),
        ModelEntry("claude-4-opus", "claude", {
            **{p: "claude-opus-4-20250514" for p in claude_direct},
            "bedrock": "anthropic.claude-opus-4-20250514-v1:0",
            "vertex": "claude-opus-4@20250514",
            "openrouter": "anthropic/claude-opus-4",
        }),
        ModelEntry("claude-4.5-haiku", "claude", {
            **{p: "claude-haiku-4-5-20251001" for p in claude_direct},
            "bedrock": "anthropic.claude-haiku-4-5-20251001-v1:0",
            "vertex": "claude-haiku-4-5@20251001",
            "github-copilot": "claude-haiku-4.5",
            "openrouter": "anthropic/claude-4.5-haiku",
        }),
        ModelEntry("gpt-4o", "gpt", {
            "openai-subscription": "gpt-4o",
            "openai-oauth": "gpt-4o",
            "openai-api": "gpt-4o",
            "azure": "gpt-4o",
            "github-copilot": "gpt-4o",
            "openrouter": "openai/gpt-4o",
        }),
        ModelEntry("gpt-4o-mini", "gpt", {
            "openai-subscription": "gpt-4o-mini",
            "openai-oauth": "gpt-4o-mini",
            "openai-api": "gpt-4o-mini",
            "azure": "gpt-4o-mini",
            "openrouter": "openai/gpt-4o-mini",
        }),
        ModelEntry("gemini-2.5-pro", "gemini", {
            "google-subscription": "gemini-2.5-pro",
            "google-oauth": "gemini-2.5-pro",
            "google-api": "gemini-2.5-pro",
            "openrouter": "google/gemini-2.5-pro",
        }),
        ModelEntry("gemini-2.5-flash", "gemini", {
            "google-subscription": "gemini-2.5-flash",
            "google-oauth": "gemini-2.5-flash",
            "google-api": "gemini-2.5-flash",
            "openrouter": "google/gemini-2.5-flash",
        }),
        ModelEntry("grok-3", "grok", {
            "xai-subscription": "grok-3",
            "xai-api": "grok-3",
            "openrouter": "x-ai/grok-3",
        }),
        ModelEntry("llama-3.3-70b", "llama", {
            "groq": "llama-3.3-70b-versatile",
            "together": "meta-llama/Llama-3.3-70B-Instruct-Turbo",
            "openrouter": "meta-llama/llama-3.3-70b-instruct",
        }),
        ModelEntry("deepseek-v3", "deepseek", {
            "deepseek-api": "deepseek-chat",
            "together": "deepseek-ai/DeepSeek-V3",
            "openrouter": "deepseek/deepseek-chat",
        }),
        ModelEntry("mistral-large", "mistral", {
            "mistral-api": "mistral-large-latest",
            "openrouter": "mistralai/mistral-large",
        }),
    ]
    return ProviderCatalog(providers, models)
