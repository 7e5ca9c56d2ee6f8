"""
Usage ledger persistence.

Tracks tokens consumed per provider against daily and monthly periods,
resetting counters lazily when a period boundary has passed.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from provider_fallback.config.loader import UsageLimits
from provider_fallback.core.catalog import ProviderCatalog
from provider_fallback.core.errors import ConfigError
from provider_fallback.storage.files import read_json, write_json
from provider_fallback.storage.models import (
    UsageLedger,
    UsageRecord,
    day_marker,
    month_marker,
    utc_now,
)

logger = logging.getLogger(__name__)


class UsageLedgerStore:
    """Store for the per-provider usage ledger.

    Every mutation is persisted immediately so a crash loses at most the
    accounting of the request in flight.
    """

    def __init__(
        self,
        path: Path,
        catalog: ProviderCatalog,
        now: Callable[[], datetime] = utc_now,
    ):
        """Initialize the store.

        Args:
            path: Location of ``usage.json``
            catalog: Provider catalog; every provider gets a record
            now: Clock returning an aware UTC datetime
        """
        self.path = Path(path)
        self.catalog = catalog
        self.now = now

    def new_ledger(self) -> UsageLedger:
        """Freshly initialized ledger with zeroed counters."""
        current = self.now()
        return UsageLedger(
            last_reset_daily=day_marker(current),
            last_reset_monthly=month_marker(current),
            providers={pid: UsageRecord() for pid in self.catalog.provider_ids},
        )

    def load(self) -> UsageLedger:
        """Load the ledger, applying any pending daily or monthly reset.

        Never raises: unreadable or malformed files yield a fresh ledger.
        """
        try:
            raw = read_json(self.path)
            if raw is None:
                return self.new_ledger()
            ledger = UsageLedger.from_dict(raw)
        except (ConfigError, ValueError) as e:
            logger.warning("Starting a fresh usage ledger: %s", e)
            return self.new_ledger()

        current = self.now()
        today = day_marker(current)
        this_month = month_marker(current)

        if ledger.last_reset_daily != today:
            for record in ledger.providers.values():
                record.daily_tokens = 0
            ledger.last_reset_daily = today

        if ledger.last_reset_monthly != this_month:
            for record in ledger.providers.values():
                record.monthly_tokens = 0
            ledger.last_reset_monthly = this_month

        for provider_id in self.catalog.provider_ids:
            ledger.providers.setdefault(provider_id, UsageRecord())

        return ledger

    def save(self, ledger: UsageLedger) -> None:
        write_json(self.path, ledger.to_dict())

    def record(self, provider_id: str, tokens: int) -> UsageLedger:
        """Add consumed tokens to a provider's daily and monthly counters.

        Args:
            provider_id: Provider that served the request
            tokens: Tokens consumed by the request

        Returns:
            The updated ledger

        Raises:
            ValueError: If tokens is negative or the provider is unknown
        """
        if tokens < 0:
            raise ValueError("tokens must be >= 0")
        self.catalog.get_provider(provider_id)

        ledger = self.load()
        record = ledger.providers.setdefault(provider_id, UsageRecord())
        record.daily_tokens += tokens
        record.monthly_tokens += tokens
        self.save(ledger)
        return ledger

    def reset(self, provider_id: Optional[str] = None) -> UsageLedger:
        """Zero one provider's counters, or every provider's if none given."""
        ledger = self.load()
        if provider_id is None:
            for pid in ledger.providers:
                ledger.providers[pid] = UsageRecord()
        else:
            self.catalog.get_provider(provider_id)
            ledger.providers[provider_id] = UsageRecord()
        self.save(ledger)
        return ledger

    def mark_exhausted(self, provider_id: str, limits: Optional[UsageLimits]) -> UsageLedger:
        """Force a provider's daily usage up to its daily limit.

        The provider stays exhausted until the next daily reset, whatever
        its true consumption was.
        """
        ledger = self.load()
        record = ledger.get(provider_id)
        if limits is None or record is None:
            logger.warning("No limits configured for '%s'; usage left unchanged", provider_id)
            return ledger
        record.daily_tokens = max(record.daily_tokens, limits.daily_tokens)
        self.save(ledger)
        return ledger
