"""
Capacity checks against configured usage limits.
"""

from typing import Optional

from provider_fallback.config.loader import UsageLimits
from provider_fallback.storage.models import UsageRecord


def has_capacity(
    provider_id: str,
    limits: Optional[UsageLimits],
    usage: Optional[UsageRecord],
) -> bool:
    """Whether a provider is still below both its daily and monthly ceilings.

    Missing limits or usage for the provider count as capacity available,
    so an unconfigured provider is never silently disabled.

    Args:
        provider_id: Provider being checked
        limits: Configured ceilings for the provider, if any
        usage: Current usage record for the provider, if any

    Returns:
        True if the provider can accept more load
    """
    if limits is None or usage is None:
        return True
    return (usage.daily_tokens < limits.daily_tokens and
            usage.monthly_tokens < limits.monthly_tokens)
