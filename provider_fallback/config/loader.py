"""
Configuration management and loading.

Handles the global provider priority, per-provider usage limits and the
switching flags persisted in ``config.json``.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from provider_fallback.core.catalog import ProviderCatalog
from provider_fallback.core.errors import ConfigError
from provider_fallback.storage.files import read_json, write_json

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "PROVIDER_FALLBACK_HOME"
DEFAULT_MODEL = "claude-4-sonnet"
MONTHLY_LIMIT_MULTIPLIER = 30

CONFIG_FILE = "config.json"
USAGE_FILE = "usage.json"
AUTH_FILE = "auth.json"
TOKENS_FILE = "tokens.json"


def get_config_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Directory holding all persisted state files."""
    environ = os.environ if environ is None else environ
    override = environ.get(HOME_ENV_VAR)
    if override:
        return Path(override)
    return Path.home() / ".claude" / "provider-fallback"


@dataclass(frozen=True)
class UsageLimits:
    """Token ceilings for one provider."""
    daily_tokens: int
    monthly_tokens: Optional[int] = None

    def __post_init__(self):
        """Validate limits and default the monthly figure."""
        if self.daily_tokens < 0:
            raise ValueError("daily_tokens must be >= 0")
        if self.monthly_tokens is None:
            object.__setattr__(self, "monthly_tokens", self.daily_tokens * MONTHLY_LIMIT_MULTIPLIER)
        elif self.monthly_tokens < 0:
            raise ValueError("monthly_tokens must be >= 0")

    def to_dict(self) -> Dict[str, int]:
        return {"dailyTokens": self.daily_tokens, "monthlyTokens": self.monthly_tokens}


@dataclass(frozen=True)
class FallbackConfig:
    """Complete global configuration."""
    provider_priority: List[str]
    default_model: str = DEFAULT_MODEL
    usage_limits: Dict[str, UsageLimits] = field(default_factory=dict)
    auto_switch: bool = True
    notify_on_switch: bool = True
    enabled: bool = True

    def limits_for(self, provider_id: str) -> Optional[UsageLimits]:
        return self.usage_limits.get(provider_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providerPriority": list(self.provider_priority),
            "defaultModel": self.default_model,
            "usageLimits": {pid: lim.to_dict() for pid, lim in self.usage_limits.items()},
            "autoSwitch": self.auto_switch,
            "notifyOnSwitch": self.notify_on_switch,
        }


def default_config(catalog: ProviderCatalog) -> FallbackConfig:
    """Defaults derived from the catalog: auth-weighted priority, declared limits."""
    return FallbackConfig(
        provider_priority=catalog.default_priority(),
        usage_limits={
            p.id: UsageLimits(daily_tokens=p.rate_limit.tokens_per_day)
            for p in catalog.providers
        },
    )


def sanitize_priority(priority: List[str], catalog: ProviderCatalog) -> List[str]:
    """Drop unknown and duplicate ids, keeping first occurrences in order."""
    seen = set()
    cleaned = []
    for provider_id in priority:
        if provider_id not in catalog:
            logger.warning("Ignoring unknown provider '%s' in priority list", provider_id)
            continue
        if provider_id in seen:
            continue
        seen.add(provider_id)
        cleaned.append(provider_id)
    return cleaned


def parse_config(raw: Dict[str, Any], catalog: ProviderCatalog) -> FallbackConfig:
    """Merge a raw config document over the catalog defaults.

    Args:
        raw: Parsed ``config.json`` content
        catalog: Provider catalog used for defaults and id validation

    Returns:
        Validated FallbackConfig

    Raises:
        ConfigError: If any section has the wrong shape
    """
    if not isinstance(raw, dict):
        raise ConfigError("Configuration must be an object")

    defaults = default_config(catalog)

    priority = raw.get("providerPriority", defaults.provider_priority)
    if not isinstance(priority, list) or not all(isinstance(p, str) for p in priority):
        raise ConfigError("'providerPriority' must be a list of provider ids")

    default_model = raw.get("defaultModel", defaults.default_model)
    if not isinstance(default_model, str) or not default_model:
        raise ConfigError("'defaultModel' must be a non-empty string")

    limits_data = raw.get("usageLimits", {})
    if not isinstance(limits_data, dict):
        raise ConfigError("'usageLimits' must be an object")

    limits = dict(defaults.usage_limits)
    for provider_id, entry in limits_data.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"Usage limits for '{provider_id}' must be an object")
        daily = entry.get("dailyTokens")
        if daily is None and provider_id in limits:
            daily = limits[provider_id].daily_tokens
        monthly = entry.get("monthlyTokens")
        try:
            limits[provider_id] = UsageLimits(daily_tokens=int(daily), monthly_tokens=(
                None if monthly is None else int(monthly)))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid usage limits for '{provider_id}': {e}") from e

    for key in ("autoSwitch", "notifyOnSwitch"):
        if key in raw and not isinstance(raw[key], bool):
            raise ConfigError(f"'{key}' must be a boolean")

    return FallbackConfig(
        provider_priority=sanitize_priority(priority, catalog),
        default_model=default_model,
        usage_limits=limits,
        auto_switch=raw.get("autoSwitch", defaults.auto_switch),
        notify_on_switch=raw.get("notifyOnSwitch", defaults.notify_on_switch),
    )


class ConfigStore:
    """Reads and writes the global configuration file."""

    def __init__(self, path: Path, catalog: ProviderCatalog):
        self.path = Path(path)
        self.catalog = catalog

    def load(self) -> FallbackConfig:
        """Load configuration, falling back to defaults on any error."""
        try:
            raw = read_json(self.path)
            if raw is None:
                return default_config(self.catalog)
            return parse_config(raw, self.catalog)
        except ConfigError as e:
            logger.warning("Using default configuration: %s", e)
            return default_config(self.catalog)

    def save(self, config: FallbackConfig) -> None:
        write_json(self.path, config.to_dict())

    def set_priority(self, priority: List[str]) -> FallbackConfig:
        """Replace the provider priority list.

        Raises:
            ValueError: If the list names an unknown provider or repeats one
        """
        unknown = [p for p in priority if p not in self.catalog]
        if unknown:
            raise ValueError(f"Unknown providers: {unknown}")
        if len(set(priority)) != len(priority):
            raise ValueError("Priority list contains duplicate providers")
        config = replace(self.load(), provider_priority=list(priority))
        self.save(config)
        return config

    def save_priority(self, priority: List[str]) -> None:
        """Persist an already validated priority list."""
        self.save(replace(self.load(), provider_priority=list(priority)))

    def promote(self, provider_id: str) -> FallbackConfig:
        """Move a provider to the front, keeping the rest in order."""
        self.catalog.get_provider(provider_id)
        config = self.load()
        config = replace(config, provider_priority=promote_provider(config.provider_priority, provider_id))
        self.save(config)
        return config

    def set_usage_limit(
        self,
        provider_id: str,
        daily_tokens: Optional[int] = None,
        monthly_tokens: Optional[int] = None,
    ) -> FallbackConfig:
        """Update one provider's limits; omitted values keep their current setting."""
        provider = self.catalog.get_provider(provider_id)
        config = self.load()
        current = config.limits_for(provider_id) or UsageLimits(provider.rate_limit.tokens_per_day)
        limits = UsageLimits(
            daily_tokens=current.daily_tokens if daily_tokens is None else daily_tokens,
            monthly_tokens=current.monthly_tokens if monthly_tokens is None else monthly_tokens,
        )
        config = replace(config, usage_limits={**config.usage_limits, provider_id: limits})
        self.save(config)
        return config


def promote_provider(priority: List[str], provider_id: str) -> List[str]:
    """New priority list with ``provider_id`` first and the rest in stable order."""
    return [provider_id] + [p for p in priority if p != provider_id]
