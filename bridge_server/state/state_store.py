"""
Authoritative game state storage.

One JSON document per session under ``game_state:<sessionId>``, with an
optimistic-concurrency version. A save carries the version it was read
at; if the stored document has moved on since, the save is rejected as
a conflict and the caller re-fetches and retries.

Storage failures never propagate: they are logged and reported as
``None`` / a failed result.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional
import asyncio
import json
import logging
import weakref

from bridge_server.config import DEFAULT_SAVE_RETRIES, DEFAULT_STATE_TTL
from bridge_server.protocol import encode_json

from .kv_store import KeyValueBackend
from .models import GameState, utc_now
from .schema import merge_patch

logger = logging.getLogger(__name__)


class SaveStatus(Enum):
    SAVED = "saved"
    CONFLICT = "conflict"   # Stored version differs from the version the caller read
    FAILED = "failed"       # Backend error


@dataclass
class SaveResult:
    """Outcome of a save; ``state`` is the stored document when saved"""
    status: SaveStatus
    state: Optional[GameState] = None

    @property
    def ok(self) -> bool:
        return self.status == SaveStatus.SAVED


class StateStore:
    """TTL-backed GameState documents with compare-and-swap saves"""

    STATE_KEY_PREFIX = "game_state:"

    def __init__(
        self,
        backend: KeyValueBackend,
        ttl: int = DEFAULT_STATE_TTL,
        clock: Callable[[], datetime] = utc_now,
        max_update_retries: int = DEFAULT_SAVE_RETRIES,
    ):
        self.backend = backend
        self.ttl = ttl
        self.clock = clock
        self.max_update_retries = max_update_retries
        # Entries vanish once no holder or waiter references the lock
        self._locks = weakref.WeakValueDictionary()

    def _key(self, session_id: str) -> str:
        return self.STATE_KEY_PREFIX + session_id

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def _read(self, session_id: str) -> Optional[GameState]:
        raw = await self.backend.get(self._key(session_id))
        if raw is None:
            return None
        return GameState.from_dict(json.loads(raw))

    async def get_state(self, session_id: str) -> Optional[GameState]:
        """
        Get the current state of a session.

        Returns:
            The stored GameState, or None if the session is unknown or the
            backend failed. An unknown session never yields a default state.
        """
        try:
            return await self._read(session_id)
        except Exception as e:
            logger.error(f"Error getting game state for {session_id}: {e}", exc_info=True)
            return None

    async def save_state(self, state: GameState) -> SaveResult:
        """
        Save a state read at ``state.version``.

        Stamps ``timestamp`` (never earlier than the stored one), stores
        ``version + 1`` and refreshes the TTL. Rejected as a conflict if
        another save landed since the state was read.
        """
        session_id = state.session_id
        async with self._lock(session_id):
            try:
                current = await self._read(session_id)
                if current is not None and current.version != state.version:
                    logger.warning(
                        f"Version conflict on {session_id}: stored v{current.version}, "
                        f"save based on v{state.version}"
                    )
                    return SaveResult(SaveStatus.CONFLICT)

                now = self.clock()
                if current is not None and now < current.timestamp:
                    now = current.timestamp

                stored = state.copy()
                stored.timestamp = now
                stored.version = state.version + 1
                await self.backend.set(self._key(session_id), encode_json(stored.to_dict()), self.ttl)
            except Exception as e:
                logger.error(f"Error saving game state for {session_id}: {e}", exc_info=True)
                return SaveResult(SaveStatus.FAILED)

        logger.debug(f"Saved state {session_id} v{stored.version}")
        return SaveResult(SaveStatus.SAVED, stored)

    async def update_state(self, session_id: str, changes: dict) -> Optional[GameState]:
        """
        Merge a partial document into the current state and save it.

        Retries on version conflicts up to ``max_update_retries`` times.

        Raises:
            PatchError: If ``changes`` does not match the state's shape

        Returns:
            The saved state, or None if the state does not exist, the
            backend failed or every attempt conflicted
        """
        for attempt in range(1, self.max_update_retries + 1):
            current = await self.get_state(session_id)
            if current is None:
                logger.info(f"Cannot update {session_id}: no game state")
                return None

            result = await self.save_state(merge_patch(current, changes))
            if result.ok:
                return result.state
            if result.status == SaveStatus.FAILED:
                return None
            logger.info(f"Retrying update of {session_id} (attempt {attempt} conflicted)")

        logger.warning(f"Giving up update of {session_id} after {self.max_update_retries} conflicts")
        return None

    async def delete_state(self, session_id: str) -> bool:
        """Delete a session's state. Deleting an absent state succeeds."""
        try:
            await self.backend.delete(self._key(session_id))
        except Exception as e:
            logger.error(f"Error deleting game state for {session_id}: {e}", exc_info=True)
            return False
        return True
