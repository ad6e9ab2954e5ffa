"""Fixed-window rate limiting for the public bug-report path.

Each (identifier, hour) pair gets a counter. Bursts straddling a window
boundary can reach twice the limit; that is accepted in exchange for a
counter that fits in one table row.
"""
from datetime import datetime, timedelta
from threading import Lock
from typing import Dict, Optional, Tuple

from swarm_tickets.core.clock import ensure_utc
from swarm_tickets.core.errors import RateLimitExceeded

ANONYMOUS_IDENTIFIER = "anonymous"
ANONYMOUS_LIMIT = 10
API_KEY_LIMIT = 1000
WINDOW = timedelta(hours=1)
RETENTION = timedelta(hours=1)


def resolve_identifier(api_key: Optional[str], client_ip: Optional[str]) -> str:
    return api_key or client_ip or ANONYMOUS_IDENTIFIER


def limit_for(api_key: Optional[str]) -> int:
    return API_KEY_LIMIT if api_key else ANONYMOUS_LIMIT


def window_start(now: datetime) -> datetime:
    return ensure_utc(now).replace(minute=0, second=0, microsecond=0)


def retention_cutoff(now: datetime) -> datetime:
    """Windows that started before this instant may be pruned."""
    return ensure_utc(now) - RETENTION


def exceeded(identifier: str, limit: int, window: datetime, now: datetime) -> RateLimitExceeded:
    retry_after = max(1, int((window + WINDOW - ensure_utc(now)).total_seconds()))
    return RateLimitExceeded(
        identifier=identifier,
        limit=limit,
        window_start=window,
        retry_after=retry_after,
    )


def enforce(identifier: str, count: int, limit: int, window: datetime, now: datetime) -> None:
    """Raise RateLimitExceeded when ``count`` already reached ``limit``."""
    if count >= limit:
        raise exceeded(identifier, limit, window, now)


class InMemoryRateLimiter:
    """Window counters for adapters with nowhere durable to keep them.

    Counters reset when the process restarts. ``consume`` checks and counts
    under one lock, so concurrent requests cannot overshoot the limit.
    """

    def __init__(self) -> None:
        self.windows: Dict[Tuple[str, datetime], int] = {}
        self._lock = Lock()

    def consume(self, identifier: str, window: datetime, limit: int, now: datetime) -> int:
        with self._lock:
            enforce(identifier, self.count(identifier, window), limit, window, now)
            return self.increment(identifier, window)

    def count(self, identifier: str, window: datetime) -> int:
        return self.windows.get((identifier, window), 0)

    def increment(self, identifier: str, window: datetime) -> int:
        key = (identifier, window)
        self.windows[key] = self.windows.get(key, 0) + 1
        return self.windows[key]

    def prune(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [key for key in self.windows if key[1] < cutoff]
            for key in stale:
                del self.windows[key]
            return len(stale)
