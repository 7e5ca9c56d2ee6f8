"""
Credential storage and resolution.

Credentials come from environment variables first and the persisted,
owner-only ``auth.json`` second.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from provider_fallback.core.catalog import AuthType, ProviderCatalog
from provider_fallback.core.errors import ConfigError
from provider_fallback.storage.files import read_json, write_json
from provider_fallback.storage.models import utc_now

logger = logging.getLogger(__name__)

REACTIVE_REFRESH_BUFFER = timedelta(minutes=5)

# Field names checked, in order, for the opaque secret of a credential
SECRET_FIELDS = ("apiKey", "sessionToken", "accessToken", "authToken")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Credential:
    """Resolved credential for one provider."""
    provider_id: str
    auth_type: AuthType
    fields: Dict[str, Any] = field(default_factory=dict)
    needs_refresh: bool = False
    is_expired: bool = False

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    @property
    def secret(self) -> Optional[str]:
        """The opaque secret used to authenticate requests."""
        for name in SECRET_FIELDS:
            if self.fields.get(name):
                return self.fields[name]
        return None

    @property
    def access_token(self) -> Optional[str]:
        return self.fields.get("accessToken")

    @property
    def refresh_token(self) -> Optional[str]:
        return self.fields.get("refreshToken")

    @property
    def expires_at(self) -> Optional[datetime]:
        return parse_timestamp(self.fields.get("expiresAt"))


class CredentialStore:
    """Persisted credentials, written with owner-only permissions."""

    def __init__(self, path: Path, now: Callable[[], datetime] = utc_now):
        self.path = Path(path)
        self.now = now

    def load(self) -> Dict[str, Any]:
        """Load the store, returning an empty one if it is missing or malformed."""
        try:
            data = read_json(self.path)
        except ConfigError as e:
            logger.error("Error loading credentials: %s", e)
            data = None
        if not isinstance(data, dict) or not isinstance(data.get("providers"), dict):
            return {"providers": {}, "defaultPreference": "subscription"}
        data.setdefault("defaultPreference", "subscription")
        return data

    def save(self, data: Dict[str, Any]) -> None:
        write_json(self.path, data, private=True)

    def get(self, provider_id: str) -> Dict[str, Any]:
        entry = self.load()["providers"].get(provider_id)
        return dict(entry) if isinstance(entry, dict) else {}

    def set_credentials(self, provider_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Merge fields into a provider's stored credentials."""
        data = self.load()
        entry = dict(data["providers"].get(provider_id) or {})
        entry.update(values)
        entry["updatedAt"] = format_timestamp(self.now())
        data["providers"][provider_id] = entry
        self.save(data)
        return entry

    def remove_credentials(self, provider_id: str) -> bool:
        """Delete a provider's stored credentials; returns whether any existed."""
        data = self.load()
        existed = data["providers"].pop(provider_id, None) is not None
        if existed:
            self.save(data)
        return existed


class CredentialResolver:
    """Merges environment variables and stored credentials per provider."""

    def __init__(
        self,
        catalog: ProviderCatalog,
        store: CredentialStore,
        environ: Optional[Mapping[str, str]] = None,
        now: Callable[[], datetime] = utc_now,
        refresh_buffer: timedelta = REACTIVE_REFRESH_BUFFER,
    ):
        self.catalog = catalog
        self.store = store
        self.environ = os.environ if environ is None else environ
        self.now = now
        self.refresh_buffer = refresh_buffer

    def resolve(self, provider_id: str) -> Optional[Credential]:
        """Resolve a provider's credential.

        Environment variables listed for the provider win outright; fields
        they do not cover are filled from the store.

        Args:
            provider_id: Provider to resolve

        Returns:
            The credential, or None if nothing is configured

        Raises:
            ValueError: If the provider is unknown
        """
        provider = self.catalog.get_provider(provider_id)

        fields: Dict[str, Any] = {}
        for env_name, field_name in provider.env_fields:
            value = self.environ.get(env_name)
            if value and field_name not in fields:
                fields[field_name] = value

        stored = self.store.get(provider_id)
        for name in provider.store_fields:
            if name not in fields and stored.get(name):
                fields[name] = stored[name]

        if not fields:
            return None

        # Token metadata travels with a stored access token
        if provider.auth_type == AuthType.OAUTH:
            for name in ("tokenType", "scope"):
                if name not in fields and stored.get(name):
                    fields[name] = stored[name]

        return self.with_flags(provider_id, fields)

    def with_flags(self, provider_id: str, fields: Dict[str, Any]) -> Credential:
        """Build a credential, computing its refresh and expiry flags."""
        provider = self.catalog.get_provider(provider_id)
        needs_refresh = False
        is_expired = False
        if provider.auth_type == AuthType.OAUTH:
            expires_at = parse_timestamp(fields.get("expiresAt"))
            if expires_at is not None:
                current = self.now()
                needs_refresh = current > expires_at - self.refresh_buffer
                is_expired = current > expires_at
        return Credential(
            provider_id=provider_id,
            auth_type=provider.auth_type,
            fields=fields,
            needs_refresh=needs_refresh,
            is_expired=is_expired,
        )

    def is_configured(self, provider_id: str) -> bool:
        return self.resolve(provider_id) is not None
