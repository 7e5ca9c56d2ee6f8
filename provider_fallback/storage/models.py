"""
Data models for the usage ledger.

Per-provider token counters and the period reset markers.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def day_marker(now: datetime) -> str:
    """UTC date marker, e.g. ``2024-01-31``."""
    return now.strftime("%Y-%m-%d")


def month_marker(now: datetime) -> str:
    """UTC year-month marker, e.g. ``2024-01``."""
    return now.strftime("%Y-%m")


def _counter(value: Any) -> int:
    # JSON writers may emit 1000.0 for an integral count
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"usage counter must be a non-negative integer, got {value!r}")
    return value


@dataclass
class UsageRecord:
    """Tokens consumed by one provider in the current day and month."""
    daily_tokens: int = 0
    monthly_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"dailyTokens": self.daily_tokens, "monthlyTokens": self.monthly_tokens}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageRecord":
        if not isinstance(data, dict):
            raise ValueError("usage record must be an object")
        return cls(
            daily_tokens=_counter(data.get("dailyTokens", 0)),
            monthly_tokens=_counter(data.get("monthlyTokens", 0)),
        )


@dataclass
class UsageLedger:
    """Usage counters for every provider plus the last reset markers.

    Counters only grow within a period. They are zeroed when the load path
    sees that the UTC date or month has moved past the stored marker.
    """
    last_reset_daily: str
    last_reset_monthly: str
    providers: Dict[str, UsageRecord] = field(default_factory=dict)

    def get(self, provider_id: str) -> UsageRecord:
        return self.providers.get(provider_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastReset": {
                "daily": self.last_reset_daily,
                "monthly": self.last_reset_monthly,
            },
            "providers": {pid: rec.to_dict() for pid, rec in self.providers.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageLedger":
        """Parse the persisted usage document.

        A malformed provider entry is dropped on its own; the caller fills
        missing providers with zeroed records.

        Raises:
            ValueError: If required sections are missing or malformed
        """
        if not isinstance(data, dict):
            raise ValueError("usage document must be an object")
        last_reset = data.get("lastReset")
        if not isinstance(last_reset, dict):
            raise ValueError("missing 'lastReset' section")
        providers = data.get("providers", {})
        if not isinstance(providers, dict):
            raise ValueError("'providers' must be an object")

        records = {}
        for provider_id, entry in providers.items():
            try:
                records[provider_id] = UsageRecord.from_dict(entry)
            except ValueError as e:
                logger.warning("Dropping usage for %s: %s", provider_id, e)
        return cls(
            last_reset_daily=str(last_reset.get("daily", "")),
            last_reset_monthly=str(last_reset.get("monthly", "")),
            providers=records,
        )
