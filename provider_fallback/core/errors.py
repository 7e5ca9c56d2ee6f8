"""
Error types for provider selection and credential handling.
"""

from enum import Enum, auto


class ProviderFallbackError(Exception):
    """Base class for all provider fallback errors."""


class ConfigError(ProviderFallbackError):
    """Raised when a persisted file is malformed.

    Loaders recover from this locally by falling back to defaults.
    """


class AuthErrorKind(Enum):
    """Reasons a credential operation can fail."""
    NOT_CONFIGURED = auto()
    NO_REFRESH_TOKEN = auto()
    MISSING_CLIENT_CREDENTIALS = auto()
    INVALID_STATE = auto()
    TOKEN_ENDPOINT_ERROR = auto()
    NETWORK_FAILURE = auto()
    REFRESH_FAILED = auto()
    AUTHORIZATION_DENIED = auto()
    AUTHORIZATION_TIMEOUT = auto()


class AuthError(ProviderFallbackError):
    """Raised when a credential cannot be resolved, refreshed or exchanged."""
    def __init__(self, message: str, kind: AuthErrorKind, provider_id: str = None):
        super().__init__(message)
        self.kind = kind
        self.provider_id = provider_id
