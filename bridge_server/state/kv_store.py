"""
TTL-backed key-value storage.

The state and session stores only rely on this small async contract, so
the backing technology can change without touching them. MemoryBackend
keeps everything in-process and expires keys lazily on read plus on
periodic sweeps.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple
import logging
import time

logger = logging.getLogger(__name__)


class KeyValueBackend(ABC):
    """Async key-value storage with per-key expiry. Values are JSON text."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value, or None if the key is absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        """Store a value and (re)start its time-to-live."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> List[str]:
        """List live keys starting with ``prefix``."""

    async def purge_expired(self) -> int:
        """Drop expired keys. Returns how many were removed."""
        return 0


class MemoryBackend(KeyValueBackend):
    """In-process backend with monotonic-clock expiry"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        # key -> (value, expires_at)
        self._data: Dict[str, Tuple[str, float]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        self._data[key] = (value, self._clock() + ttl)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> List[str]:
        return [key for key in list(self._data) if key.startswith(prefix) and self._live(key) is not None]

    async def ttl(self, key: str) -> Optional[float]:
        """Seconds left before ``key`` expires, or None if absent."""
        if self._live(key) is None:
            return None
        return self._data[key][1] - self._clock()

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._data.items() if expires_at <= now]
        for key in expired:
            del self._data[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired keys")
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)
