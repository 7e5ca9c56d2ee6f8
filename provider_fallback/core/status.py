"""
Provider status reporting.

Per-provider view of configuration, auth state and usage for CLI and
reporting tools.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from provider_fallback.config.loader import FallbackConfig
from provider_fallback.core.capacity import has_capacity
from provider_fallback.core.catalog import Provider, ProviderCatalog
from provider_fallback.core.credentials import CredentialResolver
from provider_fallback.storage.models import UsageLedger


@dataclass(frozen=True)
class ProviderStatus:
    """Status of one provider."""
    id: str
    name: str
    vendor: str
    auth_type: str
    configured: bool
    priority: Optional[int]  # 1-based position, None if not in the priority list
    needs_refresh: bool
    is_expired: bool
    expires_at: Optional[datetime]
    has_refresh_token: bool
    daily_tokens: int
    monthly_tokens: int
    daily_limit: Optional[int]
    monthly_limit: Optional[int]
    available: bool


def provider_status(
    catalog: ProviderCatalog,
    config: FallbackConfig,
    usage: UsageLedger,
    resolver: CredentialResolver,
) -> Dict[str, ProviderStatus]:
    """Build the status of every catalog provider."""
    statuses = {}
    for provider in catalog.providers:
        credential = resolver.resolve(provider.id)
        limits = config.limits_for(provider.id)
        record = usage.get(provider.id)
        priority = (config.provider_priority.index(provider.id) + 1
                    if provider.id in config.provider_priority else None)
        statuses[provider.id] = ProviderStatus(
            id=provider.id,
            name=provider.name,
            vendor=provider.vendor,
            auth_type=provider.auth_type.value,
            configured=credential is not None,
            priority=priority,
            needs_refresh=bool(credential and credential.needs_refresh),
            is_expired=bool(credential and credential.is_expired),
            expires_at=credential.expires_at if credential else None,
            has_refresh_token=bool(credential and credential.refresh_token),
            daily_tokens=record.daily_tokens if record else 0,
            monthly_tokens=record.monthly_tokens if record else 0,
            daily_limit=limits.daily_tokens if limits else None,
            monthly_limit=limits.monthly_tokens if limits else None,
            available=credential is not None and has_capacity(provider.id, limits, record),
        )
    return statuses


def configured_by_priority(
    catalog: ProviderCatalog,
    resolver: CredentialResolver,
    vendor: Optional[str] = None,
) -> List[Provider]:
    """Configured providers ordered by auth priority, optionally for one vendor."""
    return [
        p for p in catalog.by_auth_priority()
        if (vendor is None or p.vendor == vendor) and resolver.is_configured(p.id)
    ]


def best_provider_for_vendor(
    catalog: ProviderCatalog,
    resolver: CredentialResolver,
    vendor: str,
) -> Optional[Provider]:
    """Highest auth-priority configured provider of a vendor."""
    providers = configured_by_priority(catalog, resolver, vendor)
    return providers[0] if providers else None
