"""
Session-start and rate-limit hooks.

Entry points run by the host tool at the start of a session and when a
rate-limit notification is observed.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from provider_fallback.core.capacity import has_capacity
from provider_fallback.core.errors import AuthError
from provider_fallback.core.fallback import REMEDIATION, FallbackResult
from provider_fallback.core.runtime import FallbackRuntime
from provider_fallback.core.selector import select_provider

logger = logging.getLogger(__name__)


@dataclass
class SessionReport:
    """What happened during a session-start check."""
    enabled: bool = True
    active_provider: Optional[str] = None
    refreshed: List[str] = field(default_factory=list)
    refresh_errors: Dict[str, str] = field(default_factory=dict)
    switched_from: Optional[str] = None
    all_exhausted: bool = False


def on_session_start(runtime: FallbackRuntime, schedule_refresh: bool = False) -> SessionReport:
    """Validate OAuth credentials and make sure the top provider has capacity.

    Args:
        runtime: Wired components
        schedule_refresh: Also arm proactive refresh timers (long-lived processes)

    Returns:
        SessionReport describing refreshes and any provider switch
    """
    config = runtime.effective_config()
    if not config.enabled:
        logger.info("Provider fallback disabled for this project")
        return SessionReport(enabled=False)

    report = SessionReport()

    for provider in runtime.catalog.oauth_providers():
        credential = runtime.resolver.resolve(provider.id)
        if credential is None:
            continue
        try:
            valid = runtime.manager.ensure_valid(provider.id)
        except AuthError as e:
            logger.warning("Failed to refresh %s: %s", provider.name, e)
            report.refresh_errors[provider.id] = str(e)
            continue
        if credential.needs_refresh and not valid.needs_refresh:
            report.refreshed.append(provider.id)

    if schedule_refresh:
        runtime.scheduler.schedule_all()

    if not config.provider_priority:
        logger.warning("Provider priority list is empty")
        return report

    current = config.provider_priority[0]
    report.active_provider = current
    usage = runtime.ledger.load()

    if has_capacity(current, config.limits_for(current), usage.get(current)):
        return report

    if not config.auto_switch:
        logger.warning("%s has reached its limit (auto-switch disabled)", current)
        return report

    next_provider = select_provider(
        config.default_model,
        config.provider_priority,
        runtime.catalog,
        usage,
        config.usage_limits,
        runtime.resolver,
    )
    if next_provider is None:
        logger.warning(REMEDIATION)
        report.all_exhausted = True
        return report

    runtime.project_config.promote(next_provider)
    report.active_provider = next_provider
    report.switched_from = current
    if config.notify_on_switch:
        logger.info("Auto-switched from %s to %s (limit reached)", current, next_provider)
    return report


def on_rate_limit(
    runtime: FallbackRuntime,
    current_provider_id: Optional[str] = None,
    model: Optional[str] = None,
) -> Optional[FallbackResult]:
    """Handle a rate-limit notification.

    Defaults to the top-priority provider and the configured default model.

    Returns:
        The fallback result, or None when switching is disabled
    """
    config = runtime.effective_config()
    if not config.enabled:
        logger.info("Provider fallback disabled for this project")
        return None
    if not config.auto_switch:
        logger.info("Rate limit detected but auto-switch is disabled")
        return None

    provider_id = current_provider_id or (config.provider_priority[0] if config.provider_priority else None)
    if provider_id is None:
        logger.warning("Rate limit detected but no provider is active")
        return None
    return runtime.handler.handle_rate_limit(provider_id, model or config.default_model, config=config)
