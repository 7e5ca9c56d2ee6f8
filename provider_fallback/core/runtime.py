"""
Component wiring.

Builds the catalog, stores and services over one config directory.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Mapping, Optional

import httpx

from provider_fallback.config.loader import (
    AUTH_FILE,
    CONFIG_FILE,
    TOKENS_FILE,
    USAGE_FILE,
    ConfigStore,
    FallbackConfig,
    get_config_dir,
)
from provider_fallback.config.local import ProjectConfigStore
from provider_fallback.core.catalog import ProviderCatalog, default_catalog
from provider_fallback.core.credentials import CredentialResolver, CredentialStore
from provider_fallback.core.fallback import FallbackHandler
from provider_fallback.core.oauth import CredentialManager, OAuthStateStore, TokenEndpointClient
from provider_fallback.core.scheduler import RefreshScheduler, RetryPolicy, thread_timer
from provider_fallback.storage.ledger import UsageLedgerStore
from provider_fallback.storage.models import utc_now


@dataclass
class FallbackRuntime:
    """All components sharing one catalog and config directory."""
    home: Path
    catalog: ProviderCatalog
    config_store: ConfigStore
    project_config: ProjectConfigStore
    ledger: UsageLedgerStore
    credential_store: CredentialStore
    resolver: CredentialResolver
    manager: CredentialManager
    scheduler: RefreshScheduler
    handler: FallbackHandler

    @classmethod
    def from_home(
        cls,
        home: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
        catalog: Optional[ProviderCatalog] = None,
        project_dir: Optional[Path] = None,
        http_client: Optional[httpx.Client] = None,
        timer_factory: Callable = thread_timer,
        retry_policy: RetryPolicy = RetryPolicy(),
        now: Callable[[], datetime] = utc_now,
    ) -> "FallbackRuntime":
        """Wire every component over ``home`` (defaults to the user config dir)."""
        home = Path(home) if home is not None else get_config_dir(environ)
        catalog = catalog or default_catalog()

        config_store = ConfigStore(home / CONFIG_FILE, catalog)
        ledger = UsageLedgerStore(home / USAGE_FILE, catalog, now=now)
        credential_store = CredentialStore(home / AUTH_FILE, now=now)
        resolver = CredentialResolver(catalog, credential_store, environ=environ, now=now)
        manager = CredentialManager(
            catalog,
            resolver,
            credential_store,
            OAuthStateStore(home / TOKENS_FILE, now=now),
            token_client=TokenEndpointClient(http_client),
            now=now,
        )
        scheduler = RefreshScheduler(manager, retry_policy=retry_policy, timer_factory=timer_factory, now=now)
        project_config = ProjectConfigStore(config_store, catalog, project_dir)
        handler = FallbackHandler(catalog, project_config, ledger, resolver)

        return cls(
            home=home,
            catalog=catalog,
            config_store=config_store,
            project_config=project_config,
            ledger=ledger,
            credential_store=credential_store,
            resolver=resolver,
            manager=manager,
            scheduler=scheduler,
            handler=handler,
        )

    @property
    def project_dir(self) -> Optional[Path]:
        return self.project_config.project_dir

    def effective_config(self) -> FallbackConfig:
        """Global configuration with project-local overrides applied."""
        return self.project_config.load()
