"""
Rate-limit fallback handling.

When a provider reports a rate-limit or quota error it is marked exhausted
for the rest of the day and the next viable provider is promoted to the
front of the priority list.

State transitions:
    ACTIVE(current) -> EXHAUSTED(current) -> RESELECTING
        -> ACTIVE(next) | ALL_EXHAUSTED
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional

from provider_fallback.config.loader import FallbackConfig, promote_provider
from provider_fallback.config.local import ProjectConfigStore
from provider_fallback.core.capacity import has_capacity
from provider_fallback.core.catalog import ProviderCatalog
from provider_fallback.core.credentials import CredentialResolver
from provider_fallback.core.selector import compatible_providers
from provider_fallback.storage.ledger import UsageLedgerStore

logger = logging.getLogger(__name__)

REMEDIATION = (
    "All providers exhausted. Consider:\n"
    "  1. Adding more providers (subscription auth has the highest priority)\n"
    "  2. Increasing usage limits for an existing provider\n"
    "  3. Waiting for the daily usage reset"
)


class FallbackState(Enum):
    """States of the rate-limit fallback state machine."""
    ACTIVE = auto()
    EXHAUSTED = auto()
    RESELECTING = auto()
    ALL_EXHAUSTED = auto()


@dataclass(frozen=True)
class FallbackResult:
    """Outcome of handling one rate-limit signal."""
    state: FallbackState
    previous_provider: str
    provider: Optional[str]
    priority: List[str] = field(default_factory=list)
    message: str = ""

    @property
    def switched(self) -> bool:
        return self.state == FallbackState.ACTIVE and self.provider != self.previous_provider


class FallbackHandler:
    """Reacts to rate-limit signals by demoting the exhausted provider."""

    def __init__(
        self,
        catalog: ProviderCatalog,
        config_store: ProjectConfigStore,
        ledger_store: UsageLedgerStore,
        resolver: CredentialResolver,
    ):
        self.catalog = catalog
        self.config_store = config_store
        self.ledger_store = ledger_store
        self.resolver = resolver

    def handle_rate_limit(
        self,
        current_provider_id: str,
        model: str,
        config: Optional[FallbackConfig] = None,
    ) -> FallbackResult:
        """Mark ``current_provider_id`` exhausted and promote the next viable provider.

        Candidates are configured providers in descending auth priority
        (subscription, oauth, api) that support the model and have capacity.
        The priority list is left untouched when no candidate exists.

        Args:
            current_provider_id: Provider that returned the rate-limit error
            model: Canonical model that was requested
            config: Effective configuration; loaded from the store if omitted

        Returns:
            FallbackResult in state ACTIVE or ALL_EXHAUSTED
        """
        if config is None:
            config = self.config_store.load()

        usage = self.ledger_store.mark_exhausted(current_provider_id, config.limits_for(current_provider_id))
        logger.debug("%s: %s", FallbackState.EXHAUSTED.name, current_provider_id)

        logger.debug("%s for model %s", FallbackState.RESELECTING.name, model)
        compatible = compatible_providers(model, self.catalog)
        listed = set(config.provider_priority)
        next_provider = None
        for provider in self.catalog.by_auth_priority():
            if provider.id == current_provider_id or provider.id not in listed:
                continue
            if compatible and provider.id not in compatible:
                continue
            if not self.resolver.is_configured(provider.id):
                continue
            if has_capacity(provider.id, config.limits_for(provider.id), usage.get(provider.id)):
                next_provider = provider
                break

        if next_provider is None:
            logger.error("Rate limit hit on %s. %s", current_provider_id, REMEDIATION)
            return FallbackResult(
                state=FallbackState.ALL_EXHAUSTED,
                previous_provider=current_provider_id,
                provider=None,
                priority=list(config.provider_priority),
                message=REMEDIATION,
            )

        priority = promote_provider(config.provider_priority, next_provider.id)
        self.config_store.save_priority(priority)
        message = (
            f"Rate limit hit on {current_provider_id}. Switched to "
            f"{next_provider.name} [{next_provider.auth_type.value}]. Please retry the last request."
        )
        logger.info(message)
        return FallbackResult(
            state=FallbackState.ACTIVE,
            previous_provider=current_provider_id,
            provider=next_provider.id,
            priority=priority,
            message=message,
        )
