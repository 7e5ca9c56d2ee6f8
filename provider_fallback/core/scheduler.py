"""
Proactive OAuth token refresh.

One-shot timers fire a refresh shortly before each token expires. Failed
refreshes are retried according to a RetryPolicy.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from provider_fallback.core.catalog import AuthType
from provider_fallback.core.errors import ProviderFallbackError
from provider_fallback.storage.models import utc_now

logger = logging.getLogger(__name__)

PROACTIVE_REFRESH_BUFFER_MINUTES = 10


@dataclass(frozen=True)
class RetryPolicy:
    """How long to wait after a failed refresh, and how often to try.

    ``max_attempts`` of None retries until a refresh succeeds.
    """
    interval_seconds: float = 60.0
    max_attempts: Optional[int] = None

    def __post_init__(self):
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


def thread_timer(delay: float, callback: Callable, args: tuple = ()):
    """Start a daemon one-shot timer; the returned object has ``cancel()``."""
    timer = threading.Timer(delay, callback, args=args)
    timer.daemon = True
    timer.start()
    return timer


class RefreshScheduler:
    """Schedules refreshes for OAuth providers through a CredentialManager.

    ``timer_factory(delay_seconds, callback, args)`` must start a one-shot
    timer and return an object with a ``cancel()`` method.
    """

    def __init__(
        self,
        manager,
        buffer_minutes: float = PROACTIVE_REFRESH_BUFFER_MINUTES,
        retry_policy: RetryPolicy = RetryPolicy(),
        timer_factory: Callable = thread_timer,
        now: Callable[[], datetime] = utc_now,
    ):
        self.manager = manager
        self.buffer_minutes = buffer_minutes
        self.retry_policy = retry_policy
        self.timer_factory = timer_factory
        self.now = now
        self._timers: Dict[str, object] = {}
        self._failures: Dict[str, int] = {}
        self._lock = threading.Lock()
        manager.scheduler = self

    def _arm(self, provider_id: str, delay: float, callback: Callable, *args):
        with self._lock:
            previous = self._timers.pop(provider_id, None)
            if previous is not None:
                previous.cancel()
            timer = self.timer_factory(delay, callback, args)
            self._timers[provider_id] = timer
        return timer

    def _delay_until_refresh(self, provider_id: str, buffer_minutes: float) -> Optional[float]:
        credential = self.manager.resolve_credential(provider_id)
        if credential is None or credential.auth_type != AuthType.OAUTH:
            return None
        expires_at = credential.expires_at
        if expires_at is None:
            return None
        refresh_at = expires_at - timedelta(minutes=buffer_minutes)
        return (refresh_at - self.now()).total_seconds()

    def schedule(self, provider_id: str, buffer_minutes: Optional[float] = None):
        """Arm a refresh ``buffer_minutes`` before the provider's token expires.

        Refreshes immediately when that moment has already passed.

        Returns:
            The armed timer, or None if nothing was scheduled
        """
        buffer_minutes = self.buffer_minutes if buffer_minutes is None else buffer_minutes
        self.cancel(provider_id)
        delay = self._delay_until_refresh(provider_id, buffer_minutes)
        if delay is None:
            return None
        if delay <= 0:
            self._run_refresh(provider_id, buffer_minutes)
            return self._timers.get(provider_id)

        logger.info("Scheduled token refresh for %s in %d minutes", provider_id, round(delay / 60))
        return self._arm(provider_id, delay, self._run_refresh, provider_id, buffer_minutes)

    def _run_refresh(self, provider_id: str, buffer_minutes: float) -> None:
        with self._lock:
            self._timers.pop(provider_id, None)
        try:
            self.manager.refresh(provider_id)
        except (ProviderFallbackError, ValueError, OSError) as e:
            failures = self._failures.get(provider_id, 0) + 1
            self._failures[provider_id] = failures
            logger.error("Scheduled refresh failed for %s: %s", provider_id, e)
            limit = self.retry_policy.max_attempts
            if limit is not None and failures >= limit:
                logger.error("Giving up on scheduled refresh for %s after %d attempts", provider_id, failures)
                return
            self._arm(provider_id, self.retry_policy.interval_seconds, self.schedule, provider_id, buffer_minutes)
            return

        self._failures.pop(provider_id, None)
        delay = self._delay_until_refresh(provider_id, buffer_minutes)
        if delay is None:
            return
        # Tokens shorter-lived than the buffer wait one interval instead of looping
        if delay <= 0:
            delay = self.retry_policy.interval_seconds
        logger.info("Next token refresh for %s in %d minutes", provider_id, round(delay / 60))
        self._arm(provider_id, delay, self._run_refresh, provider_id, buffer_minutes)

    def schedule_all(self) -> List[str]:
        """Schedule every configured OAuth provider that holds a refresh token."""
        scheduled = []
        for provider in self.manager.catalog.oauth_providers():
            credential = self.manager.resolve_credential(provider.id)
            if credential is None or not credential.refresh_token:
                continue
            self.schedule(provider.id)
            scheduled.append(provider.id)
        return scheduled

    def cancel(self, provider_id: str) -> None:
        with self._lock:
            timer = self._timers.pop(provider_id, None)
        if timer is not None:
            timer.cancel()

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def pending(self) -> List[str]:
        with self._lock:
            return list(self._timers)
