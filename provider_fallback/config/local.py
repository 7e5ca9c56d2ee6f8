"""
Project-local configuration overrides.

Reads YAML frontmatter from ``.claude/provider-fallback.local.md`` in the
project directory and layers it over the global configuration.
"""

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Tuple

import yaml

from provider_fallback.config.loader import ConfigStore, FallbackConfig, promote_provider, sanitize_priority
from provider_fallback.core.catalog import ProviderCatalog
from provider_fallback.core.errors import ConfigError

logger = logging.getLogger(__name__)

LOCAL_SETTINGS_PATH = Path(".claude") / "provider-fallback.local.md"


@dataclass(frozen=True)
class LocalSettings:
    """Overrides for a single project; None means keep the global value."""
    enabled: bool = True
    default_model: Optional[str] = None
    auto_switch: Optional[bool] = None
    notify_on_switch: Optional[bool] = None
    provider_priority: Optional[List[str]] = None


def _split_frontmatter(text: str) -> Optional[Tuple[str, str]]:
    """(frontmatter, body) of a markdown document, or None without frontmatter."""
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != "---":
        return None
    for index, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            return "".join(lines[1:index]), "".join(lines[index + 1:])
    return None


def _frontmatter(text: str) -> Optional[str]:
    parts = _split_frontmatter(text)
    return parts[0] if parts else None


def load_local_settings(project_dir: Path) -> Optional[LocalSettings]:
    """Load project-local settings, if the project has any.

    Unreadable or malformed files are logged and ignored.

    Args:
        project_dir: Project root to look in

    Returns:
        LocalSettings, or None if there is no usable settings file
    """
    path = Path(project_dir) / LOCAL_SETTINGS_PATH
    if not path.exists():
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            block = _frontmatter(f.read())
        if block is None:
            return None
        data = yaml.safe_load(block) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to parse local settings %s: %s", path, e)
        return None

    if not isinstance(data, dict):
        logger.warning("Ignoring local settings %s: frontmatter is not a mapping", path)
        return None

    def _flag(key):
        value = data.get(key)
        if value is not None and not isinstance(value, bool):
            logger.warning("Ignoring non-boolean '%s' in %s", key, path)
            return None
        return value

    priority = data.get("provider_priority")
    if priority is not None and not (isinstance(priority, list) and all(isinstance(p, str) for p in priority)):
        logger.warning("Ignoring invalid 'provider_priority' in %s", path)
        priority = None

    default_model = data.get("default_model")
    enabled = _flag("enabled")
    return LocalSettings(
        enabled=True if enabled is None else enabled,
        default_model=str(default_model) if default_model else None,
        auto_switch=_flag("auto_switch"),
        notify_on_switch=_flag("notify_on_switch"),
        provider_priority=priority,
    )


def apply_local_settings(
    config: FallbackConfig,
    settings: Optional[LocalSettings],
    catalog: ProviderCatalog,
) -> FallbackConfig:
    """Layer project-local overrides on top of the global configuration."""
    if settings is None:
        return config
    updates = {"enabled": settings.enabled}
    if settings.default_model:
        updates["default_model"] = settings.default_model
    if settings.auto_switch is not None:
        updates["auto_switch"] = settings.auto_switch
    if settings.notify_on_switch is not None:
        updates["notify_on_switch"] = settings.notify_on_switch
    if settings.provider_priority:
        updates["provider_priority"] = sanitize_priority(settings.provider_priority, catalog)
    return replace(config, **updates)


def save_local_priority(project_dir: Path, priority: List[str]) -> None:
    """Rewrite ``provider_priority`` in the project's frontmatter, keeping other keys and the body.

    Raises:
        ConfigError: If the settings file has no readable frontmatter
    """
    path = Path(project_dir) / LOCAL_SETTINGS_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            parts = _split_frontmatter(f.read())
        if parts is None:
            raise ConfigError(f"No frontmatter in {path}")
        data = yaml.safe_load(parts[0]) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Frontmatter in {path} is not a mapping")

    data["provider_priority"] = list(priority)
    with open(path, "w", encoding="utf-8") as f:
        f.write("---\n")
        f.write(yaml.safe_dump(data, sort_keys=False, default_flow_style=False))
        f.write("---\n")
        f.write(parts[1])


class ProjectConfigStore:
    """Global configuration as seen from one project.

    Reads apply the project's local overrides. Priority changes are written
    where the effective list comes from: the project file when it sets
    ``provider_priority``, the global configuration otherwise.
    """

    def __init__(self, config_store: ConfigStore, catalog: ProviderCatalog, project_dir: Optional[Path] = None):
        self.config_store = config_store
        self.catalog = catalog
        self.project_dir = Path(project_dir) if project_dir is not None else None

    def local_settings(self) -> Optional[LocalSettings]:
        if self.project_dir is None:
            return None
        return load_local_settings(self.project_dir)

    def load(self) -> FallbackConfig:
        return apply_local_settings(self.config_store.load(), self.local_settings(), self.catalog)

    def save_priority(self, priority: List[str]) -> None:
        settings = self.local_settings()
        if settings is not None and settings.provider_priority:
            try:
                save_local_priority(self.project_dir, priority)
                logger.debug("Saved project priority: %s", priority)
                return
            except ConfigError as e:
                logger.warning("Could not update project priority, saving globally: %s", e)
        self.config_store.save_priority(priority)

    def promote(self, provider_id: str) -> FallbackConfig:
        """Move a provider to the front of the effective priority list."""
        self.catalog.get_provider(provider_id)
        self.save_priority(promote_provider(self.load().provider_priority, provider_id))
        return self.load()
