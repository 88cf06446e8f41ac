"""Per-user quota state and the storage backends that hold it.

The rate limiter reads state objects, mutates them and writes them back with
the ``put_*`` methods, so a shared backend only has to persist whole objects.
The in-memory store returns live objects; ``put_*`` there is a plain assign.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator

MINUTE = "minute"
HOURLY = "hourly"
DAILY = "daily"

WINDOW_SECONDS: dict[str, float] = {
    MINUTE: 60.0,
    HOURLY: 3600.0,
    DAILY: 86400.0,
}


@dataclass
class TokenBucket:
    tokens: float
    last_refill: float
    capacity: float
    refill_rate: float

    def refill(self, now: float) -> None:
        """Add tokens for the time elapsed since the last refill, clamped to capacity."""
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, max(0.0, self.tokens + elapsed * self.refill_rate))
        self.last_refill = now


@dataclass(frozen=True)
class WindowEntry:
    timestamp: float
    weight: float


@dataclass
class WindowCounter:
    entries: deque[WindowEntry] = field(default_factory=deque)
    total_weight: float = 0.0

    def prune(self, now: float, window_seconds: float) -> None:
        """Drop entries at or before ``now - window_seconds`` and recompute the total."""
        cutoff = now - window_seconds
        while self.entries and self.entries[0].timestamp <= cutoff:
            self.entries.popleft()
        self.total_weight = sum(entry.weight for entry in self.entries)

    def live_weight(self, now: float, window_seconds: float) -> float:
        """Total weight inside the window without mutating the counter."""
        cutoff = now - window_seconds
        return sum(entry.weight for entry in self.entries if entry.timestamp > cutoff)

    def oldest_live(self, now: float, window_seconds: float) -> WindowEntry | None:
        cutoff = now - window_seconds
        for entry in self.entries:
            if entry.timestamp > cutoff:
                return entry
        return None

    def add(self, timestamp: float, weight: float) -> None:
        self.entries.append(WindowEntry(timestamp=timestamp, weight=weight))
        self.total_weight += weight


class QuotaStore(ABC):
    """Storage for token buckets, window counters and concurrency counts."""

    @abstractmethod
    def get_bucket(self, user_id: str) -> TokenBucket | None:
        ...

    @abstractmethod
    def put_bucket(self, user_id: str, bucket: TokenBucket) -> None:
        ...

    @abstractmethod
    def delete_bucket(self, user_id: str) -> None:
        ...

    @abstractmethod
    def iter_buckets(self) -> Iterator[tuple[str, TokenBucket]]:
        ...

    @abstractmethod
    def get_window(self, user_id: str, kind: str) -> WindowCounter | None:
        ...

    @abstractmethod
    def put_window(self, user_id: str, kind: str, counter: WindowCounter) -> None:
        ...

    @abstractmethod
    def delete_window(self, user_id: str, kind: str) -> None:
        ...

    @abstractmethod
    def iter_windows(self) -> Iterator[tuple[str, str, WindowCounter]]:
        ...

    @abstractmethod
    def get_concurrent(self, user_id: str) -> int:
        ...

    @abstractmethod
    def set_concurrent(self, user_id: str, count: int) -> None:
        ...

    @abstractmethod
    def delete_concurrent(self, user_id: str) -> None:
        ...

    @abstractmethod
    def iter_concurrent(self) -> Iterator[tuple[str, int]]:
        ...

    def clear_user(self, user_id: str) -> None:
        """Remove every piece of state held for one user."""
        self.delete_bucket(user_id)
        for kind in WINDOW_SECONDS:
            self.delete_window(user_id, kind)
        self.delete_concurrent(user_id)


class InMemoryQuotaStore(QuotaStore):
    """Process-local store. State is lost on restart."""

    def __init__(self) -> None:
        self._buckets: dict[str, TokenBucket] = {}
        self._windows: dict[tuple[str, str], WindowCounter] = {}
        self._concurrent: dict[str, int] = {}

    def get_bucket(self, user_id: str) -> TokenBucket | None:
        return self._buckets.get(user_id)

    def put_bucket(self, user_id: str, bucket: TokenBucket) -> None:
        self._buckets[user_id] = bucket

    def delete_bucket(self, user_id: str) -> None:
        self._buckets.pop(user_id, None)

    def iter_buckets(self) -> Iterator[tuple[str, TokenBucket]]:
        # Snapshot so callers may delete while iterating.
        return iter(list(self._buckets.items()))

    def get_window(self, user_id: str, kind: str) -> WindowCounter | None:
        return self._windows.get((user_id, kind))

    def put_window(self, user_id: str, kind: str, counter: WindowCounter) -> None:
        self._windows[(user_id, kind)] = counter

    def delete_window(self, user_id: str, kind: str) -> None:
        self._windows.pop((user_id, kind), None)

    def iter_windows(self) -> Iterator[tuple[str, str, WindowCounter]]:
        return iter([(user_id, kind, counter) for (user_id, kind), counter in self._windows.items()])

    def get_concurrent(self, user_id: str) -> int:
        return self._concurrent.get(user_id, 0)

    def set_concurrent(self, user_id: str, count: int) -> None:
        self._concurrent[user_id] = count

    def delete_concurrent(self, user_id: str) -> None:
        self._concurrent.pop(user_id, None)

    def iter_concurrent(self) -> Iterator[tuple[str, int]]:
        return iter(list(self._concurrent.items()))
