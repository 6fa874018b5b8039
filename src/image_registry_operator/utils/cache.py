"""TTL cache for credentials that are expensive to fetch from a cloud API."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import OrderedDict
from typing import Callable, NamedTuple, Protocol

from .. import metrics

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = float(os.getenv("AZURE_KEY_CACHE_TTL_SECONDS", "300"))
DEFAULT_MAX_ENTRIES = int(os.getenv("AZURE_KEY_CACHE_MAX_ENTRIES", "1"))


class CacheKey(NamedTuple):
    """Identifies a storage account credential."""

    resource_group: str
    account: str


class CredentialFetcher(Protocol):
    """Fetches a credential from the remote API."""

    def fetch_credential(self, resource_group: str, account: str) -> str:
        """Return the current credential for the account."""
        ...


class _Entry(NamedTuple):
    value: str
    expire_at: float


class CredentialCache:
    """Process-wide credential cache shared by cloud drivers.

    Lookups are serialized by a single lock that is also held while the
    fetcher runs, so concurrent misses for the same key fetch only once.
    Entries expire lazily on access. When ``max_entries`` is reached the
    oldest entry is evicted; with the default bound of one, asking for a
    different key replaces the cached credential.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[CacheKey, _Entry] = OrderedDict()

    def get(self, fetcher: CredentialFetcher, key: CacheKey) -> str:
        """Return the cached credential for ``key``, fetching it on a miss.

        Args:
            fetcher: Remote source used on a cache miss
            key: Resource group and account the credential belongs to

        Returns:
            The credential value

        Raises:
            Whatever the fetcher raises. Failed fetches are not cached.
        """
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None and now < entry.expire_at:
                metrics.azure_key_cache_requests_total.labels(result="hit").inc()
                return entry.value

            metrics.azure_key_cache_requests_total.labels(result="miss").inc()
            value = fetcher.fetch_credential(key.resource_group, key.account)

            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicting cached credential for account {evicted.account}")
            self._entries[key] = _Entry(value, self._clock() + self.ttl)
            return value

    def invalidate(self, key: CacheKey | None = None) -> None:
        """Drop one cached credential, or all of them when ``key`` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
