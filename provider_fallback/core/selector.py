"""
Failover provider selection.

Walks the priority list and returns the first provider that supports the
model, has credentials and still has capacity.
"""

from typing import Dict, List, Optional

from provider_fallback.config.loader import UsageLimits
from provider_fallback.core.capacity import has_capacity
from provider_fallback.core.catalog import ProviderCatalog
from provider_fallback.core.credentials import CredentialResolver
from provider_fallback.storage.models import UsageLedger


def compatible_providers(model: str, catalog: ProviderCatalog) -> set:
    """Provider ids declared for a model; empty means no restriction."""
    return set(catalog.providers_for_model(model))


def select_provider(
    model: str,
    priority_list: List[str],
    catalog: ProviderCatalog,
    usage: UsageLedger,
    limits: Dict[str, UsageLimits],
    resolver: CredentialResolver,
) -> Optional[str]:
    """Pick the provider that should serve a model request.

    Filters, applied in priority order:
    1. Model compatibility - skipped if the model declares other providers
    2. Authentication - skipped if no credential resolves
    3. Capacity - skipped if daily or monthly usage is at its limit

    Args:
        model: Canonical model name
        priority_list: Provider ids in preference order
        catalog: Provider catalog
        usage: Current usage ledger
        limits: Configured usage limits per provider
        resolver: Credential resolver

    Returns:
        The first provider id passing every filter, or None
    """
    compatible = compatible_providers(model, catalog)
    for provider_id in priority_list:
        if provider_id not in catalog:
            continue
        if compatible and provider_id not in compatible:
            continue
        if not resolver.is_configured(provider_id):
            continue
        if has_capacity(provider_id, limits.get(provider_id), usage.get(provider_id)):
            return provider_id
    return None
