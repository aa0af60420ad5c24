"""
Session metadata, player rosters and the connection index.

Keys:
    session:<sessionId>   -> GameSession
    players:<sessionId>   -> list of Player (with resume tokens)
    socket:<connectionId> -> Player bound to that connection (no token)

Roster changes for one session are serialized with a per-session lock,
so capacity and station exclusivity are checked against the roster they
are written back to. Rejections are returned as ``(None, ErrorCode)``.
"""

from datetime import datetime
from typing import Callable, List, Optional, Tuple
import asyncio
import json
import logging
import secrets
import uuid
import weakref

from bridge_server.config import DEFAULT_MAX_PLAYERS, DEFAULT_SESSION_TTL
from bridge_server.protocol import ErrorCode, encode_json
from bridge_server.stations.station_types import (
    PlayerRole,
    PlayerStatus,
    StationType,
    is_exclusive,
)

from .factory import create_initial_state
from .kv_store import KeyValueBackend
from .models import GameSession, GameSettings, Player, SessionStatus, players_to_list, utc_now
from .state_store import StateStore

logger = logging.getLogger(__name__)

JoinResult = Tuple[Optional[Player], Optional[ErrorCode]]


def _new_id() -> str:
    return str(uuid.uuid4())


def _new_token() -> str:
    return secrets.token_urlsafe(24)


def _occupies_seat(player: Player) -> bool:
    return player.status != PlayerStatus.DISCONNECTED and player.role != PlayerRole.SPECTATOR


class SessionStore:
    """TTL-backed sessions, rosters and connection lookups"""

    SESSION_KEY_PREFIX = "session:"
    PLAYERS_KEY_PREFIX = "players:"
    SOCKET_KEY_PREFIX = "socket:"

    def __init__(
        self,
        backend: KeyValueBackend,
        state_store: StateStore,
        ttl: int = DEFAULT_SESSION_TTL,
        max_players: int = DEFAULT_MAX_PLAYERS,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = _new_id,
        token_factory: Callable[[], str] = _new_token,
    ):
        self.backend = backend
        self.state_store = state_store
        self.ttl = ttl
        self.max_players = max_players
        self.clock = clock
        self.id_factory = id_factory
        self.token_factory = token_factory
        # Entries vanish once no holder or waiter references the lock
        self._locks = weakref.WeakValueDictionary()

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Raw reads and writes (raise on backend failure)
    # ------------------------------------------------------------------

    async def _read_session(self, session_id: str) -> Optional[GameSession]:
        raw = await self.backend.get(self.SESSION_KEY_PREFIX + session_id)
        return GameSession.from_dict(json.loads(raw)) if raw is not None else None

    async def _write_session(self, session: GameSession) -> None:
        session.updated_at = self.clock()
        await self.backend.set(self.SESSION_KEY_PREFIX + session.id, encode_json(session.to_dict()), self.ttl)

    async def _read_players(self, session_id: str) -> List[Player]:
        raw = await self.backend.get(self.PLAYERS_KEY_PREFIX + session_id)
        if raw is None:
            return []
        return [Player.from_dict(item) for item in json.loads(raw)]

    async def _write_players(self, session_id: str, players: List[Player]) -> None:
        await self.backend.set(
            self.PLAYERS_KEY_PREFIX + session_id,
            encode_json(players_to_list(players, include_token=True)),
            self.ttl,
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(
        self,
        name: str,
        creator_id: Optional[str],
        session_id: Optional[str] = None,
    ) -> Tuple[Optional[GameSession], Optional[ErrorCode]]:
        """
        Create a session together with its initial game state.

        The state is written first; if the session record then fails to
        save, the state is removed again so neither exists without the
        other.

        Returns:
            (session, None) on success, (None, error code) otherwise
        """
        session_id = session_id or self.id_factory()
        async with self._lock(session_id):
            try:
                if await self._read_session(session_id) is not None:
                    return None, ErrorCode.SESSION_EXISTS

                # A state outliving its session is stale; start from a fresh ship
                await self.state_store.delete_state(session_id)
                saved = await self.state_store.save_state(create_initial_state(session_id, now=self.clock()))
                if not saved.ok:
                    logger.error(f"Could not create game state for session {session_id}")
                    return None, ErrorCode.SESSION_CREATE_FAILED

                now = self.clock()
                session = GameSession(
                    id=session_id,
                    name=name or session_id,
                    status=SessionStatus.WAITING,
                    max_players=self.max_players,
                    settings=GameSettings(),
                    created_by=creator_id,
                    created_at=now,
                    updated_at=now,
                )
                await self._write_session(session)
                await self._write_players(session_id, [])
            except Exception as e:
                logger.error(f"Error creating session {session_id}: {e}", exc_info=True)
                await self.state_store.delete_state(session_id)
                return None, ErrorCode.SESSION_CREATE_FAILED

        logger.info(f"Created session {session_id} ({session.name})")
        return session, None

    async def get_session(self, session_id: str) -> Optional[GameSession]:
        try:
            return await self._read_session(session_id)
        except Exception as e:
            logger.error(f"Error getting session {session_id}: {e}", exc_info=True)
            return None

    async def save_session(self, session: GameSession) -> bool:
        """Save session metadata, refreshing ``updatedAt`` and the TTL."""
        try:
            await self._write_session(session)
            return True
        except Exception as e:
            logger.error(f"Error saving session {session.id}: {e}", exc_info=True)
            return False

    async def list_sessions(self) -> List[GameSession]:
        try:
            keys = await self.backend.keys(self.SESSION_KEY_PREFIX)
            sessions = []
            for key in sorted(keys):
                session = await self._read_session(key[len(self.SESSION_KEY_PREFIX):])
                if session is not None:
                    sessions.append(session)
            return sessions
        except Exception as e:
            logger.error(f"Error listing sessions: {e}", exc_info=True)
            return []

    async def update_session_status(self, session_id: str, status: SessionStatus) -> Optional[GameSession]:
        async with self._lock(session_id):
            try:
                session = await self._read_session(session_id)
                if session is None:
                    return None
                session.status = status
                await self._write_session(session)
            except Exception as e:
                logger.error(f"Error updating status of session {session_id}: {e}", exc_info=True)
                return None
        logger.info(f"Session {session_id} is now {status.value}")
        return session

    async def delete_session(self, session_id: str) -> bool:
        """Remove a session, its roster and its game state."""
        async with self._lock(session_id):
            try:
                await self.backend.delete(self.SESSION_KEY_PREFIX + session_id)
                await self.backend.delete(self.PLAYERS_KEY_PREFIX + session_id)
            except Exception as e:
                logger.error(f"Error deleting session {session_id}: {e}", exc_info=True)
                return False
        return await self.state_store.delete_state(session_id)

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    async def add_player(
        self,
        session_id: str,
        user_id: str,
        station: StationType,
        role: PlayerRole = PlayerRole.PLAYER,
        name: str = "Player",
    ) -> JoinResult:
        """
        Add a player to a session's roster.

        Enforces that the session exists, that there is a free seat
        (spectators excepted) and that no other connected player holds
        an exclusive station. Creating missing sessions is the caller's
        job.

        Returns:
            (player, None) on success, (None, reason) on rejection
        """
        async with self._lock(session_id):
            try:
                session = await self._read_session(session_id)
                if session is None:
                    return None, ErrorCode.SESSION_NOT_FOUND
                players = await self._read_players(session_id)

                if role == PlayerRole.SPECTATOR:
                    if not session.settings.allow_spectators:
                        return None, ErrorCode.SPECTATORS_DISABLED
                else:
                    seated = sum(1 for p in players if _occupies_seat(p))
                    if seated >= session.max_players:
                        return None, ErrorCode.SESSION_FULL
                    if role == PlayerRole.PLAYER and self._station_taken(players, station):
                        return None, ErrorCode.STATION_OCCUPIED

                now = self.clock()
                player = Player(
                    id=self.id_factory(),
                    session_id=session_id,
                    user_id=user_id,
                    station=station,
                    role=role,
                    status=PlayerStatus.CONNECTED,
                    name=name or "Player",
                    token=self.token_factory(),
                    joined_at=now,
                    last_activity=now,
                )
                players.append(player)
                await self._write_players(session_id, players)
                await self._write_session(session)
            except Exception as e:
                logger.error(f"Error adding player to session {session_id}: {e}", exc_info=True)
                return None, ErrorCode.STORAGE_ERROR

        logger.info(f"Player {player.id} joined {session_id} as {station.value} ({role.value})")
        return player, None

    @staticmethod
    def _station_taken(players: List[Player], station: StationType, ignore_id: Optional[str] = None) -> bool:
        if not is_exclusive(station):
            return False
        return any(
            p.station == station and p.is_connected and p.role == PlayerRole.PLAYER and p.id != ignore_id
            for p in players
        )

    async def resume_player(self, session_id: str, token: str, user_id: str) -> JoinResult:
        """
        Rebind an existing roster entry to a new connection.

        The entry keeps its id, station and role; its status returns to
        connected and ``userId`` points at the new connection.
        """
        async with self._lock(session_id):
            try:
                session = await self._read_session(session_id)
                if session is None:
                    return None, ErrorCode.SESSION_NOT_FOUND
                players = await self._read_players(session_id)

                player = next(
                    (p for p in players if p.token and secrets.compare_digest(p.token, token)),
                    None,
                )
                if player is None:
                    return None, ErrorCode.INVALID_TOKEN

                if player.role != PlayerRole.SPECTATOR and not _occupies_seat(player):
                    seated = sum(1 for p in players if _occupies_seat(p))
                    if seated >= session.max_players:
                        return None, ErrorCode.SESSION_FULL
                if player.role == PlayerRole.PLAYER and self._station_taken(players, player.station, player.id):
                    return None, ErrorCode.STATION_OCCUPIED

                player.user_id = user_id
                player.status = PlayerStatus.CONNECTED
                player.last_activity = self.clock()
                await self._write_players(session_id, players)
                await self._write_session(session)
            except Exception as e:
                logger.error(f"Error resuming player in session {session_id}: {e}", exc_info=True)
                return None, ErrorCode.STORAGE_ERROR

        logger.info(f"Player {player.id} resumed {session_id} as {player.station.value}")
        return player, None

    async def remove_player(self, session_id: str, player_id: str) -> Optional[Player]:
        """
        Remove a player from the roster.

        Returns:
            The removed player, or None if it was not in the roster
        """
        async with self._lock(session_id):
            try:
                players = await self._read_players(session_id)
                removed = next((p for p in players if p.id == player_id), None)
                if removed is None:
                    return None
                await self._write_players(session_id, [p for p in players if p.id != player_id])
            except Exception as e:
                logger.error(f"Error removing player {player_id} from {session_id}: {e}", exc_info=True)
                return None
        logger.info(f"Removed player {player_id} from {session_id}")
        return removed

    async def update_player_status(
        self,
        session_id: str,
        player_id: str,
        status: PlayerStatus,
        expected_user_id: Optional[str] = None,
    ) -> Optional[Player]:
        """
        Set a player's status and ``lastActivity``.

        Args:
            expected_user_id: Only update if the player is still bound to
                this connection (a resumed player is left alone)

        Returns:
            The updated player, or None if unknown or rebound elsewhere
        """
        async with self._lock(session_id):
            try:
                players = await self._read_players(session_id)
                player = next((p for p in players if p.id == player_id), None)
                if player is None:
                    return None
                if expected_user_id is not None and player.user_id != expected_user_id:
                    logger.debug(f"Player {player_id} is bound to another connection, status unchanged")
                    return None
                player.status = status
                player.last_activity = self.clock()
                await self._write_players(session_id, players)
            except Exception as e:
                logger.error(f"Error updating player {player_id} in {session_id}: {e}", exc_info=True)
                return None
        return player

    async def record_activity(self, session_id: str, player_id: str) -> bool:
        """Stamp ``lastActivity`` and keep the session's keys alive."""
        async with self._lock(session_id):
            try:
                session = await self._read_session(session_id)
                if session is None:
                    return False
                players = await self._read_players(session_id)
                for player in players:
                    if player.id == player_id:
                        player.last_activity = self.clock()
                await self._write_players(session_id, players)
                await self._write_session(session)
                return True
            except Exception as e:
                logger.error(f"Error recording activity in {session_id}: {e}", exc_info=True)
                return False

    async def get_session_players(self, session_id: str) -> List[Player]:
        try:
            return await self._read_players(session_id)
        except Exception as e:
            logger.error(f"Error getting players for {session_id}: {e}", exc_info=True)
            return []

    async def get_player(self, session_id: str, player_id: str) -> Optional[Player]:
        for player in await self.get_session_players(session_id):
            if player.id == player_id:
                return player
        return None

    # ------------------------------------------------------------------
    # Connection index
    # ------------------------------------------------------------------

    async def get_player_by_socket_id(self, connection_id: str) -> Optional[Player]:
        try:
            raw = await self.backend.get(self.SOCKET_KEY_PREFIX + connection_id)
            return Player.from_dict(json.loads(raw)) if raw is not None else None
        except Exception as e:
            logger.error(f"Error looking up connection {connection_id}: {e}", exc_info=True)
            return None

    async def set_player_socket_id(self, connection_id: str, player: Player) -> bool:
        try:
            await self.backend.set(self.SOCKET_KEY_PREFIX + connection_id, encode_json(player.to_dict()), self.ttl)
            return True
        except Exception as e:
            logger.error(f"Error indexing connection {connection_id}: {e}", exc_info=True)
            return False

    async def remove_player_socket_id(self, connection_id: str) -> bool:
        try:
            await self.backend.delete(self.SOCKET_KEY_PREFIX + connection_id)
            return True
        except Exception as e:
            logger.error(f"Error removing connection {connection_id}: {e}", exc_info=True)
            return False
