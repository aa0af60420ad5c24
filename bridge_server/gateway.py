"""
Real-time connection gateway for bridge consoles.

Accepts WebSocket connections, scopes them into session and station
rooms, routes inbound envelopes to the session store, the action
processor and the state store, and fans resulting state out to the
session room.

Connection lifecycle:
    connected (unjoined) -> joined(session, station) -> disconnected

Every mutation of a session's state goes through fetch -> mutate ->
save. A save that lost a race with another writer is retried from a
fresh fetch a bounded number of times before the client is told.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from typing import Any, Callable, Dict, List, Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from bridge_server.config import ServerConfig
from bridge_server.protocol import (
    ErrorCode,
    EventType,
    WSEnvelope,
    default_message,
    parse_message,
)
from bridge_server.rooms import RoomRegistry, session_room, station_room
from bridge_server.state.kv_store import KeyValueBackend, MemoryBackend
from bridge_server.state.models import GameState, Player, SessionStatus
from bridge_server.state.factory import create_initial_state
from bridge_server.state.schema import PatchError, merge_patch
from bridge_server.state.session_store import SessionStore
from bridge_server.state.state_store import SaveStatus, StateStore
from bridge_server.stations.action_processor import ActionProcessor
from bridge_server.stations.station_types import (
    PlayerRole,
    PlayerStatus,
    StationType,
    get_gm_notification,
    parse_station,
    role_for_station,
)

logger = logging.getLogger(__name__)

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
MAX_NAME_LENGTH = 32


def new_connection_id() -> str:
    return f"conn_{uuid.uuid4().hex[:12]}"


class GatewayError(Exception):
    """Rejects the current request with a typed error for its sender only"""

    def __init__(self, code: ErrorCode, message: Optional[str] = None):
        self.code = code
        self.message = message or default_message(code)
        super().__init__(f"{code.value}: {self.message}")


class ClientConnection:
    """One console connection and the (session, station) it joined"""

    def __init__(self, websocket, connection_id: Optional[str] = None):
        self.websocket = websocket
        self.id = connection_id or new_connection_id()
        self.session_id: Optional[str] = None
        self.player_id: Optional[str] = None
        self.station: Optional[StationType] = None
        self.state_version = 0  # Highest state version sent on this connection

    @property
    def joined(self) -> bool:
        return self.session_id is not None

    @property
    def remote_address(self):
        return getattr(self.websocket, "remote_address", None)

    def bind(self, player: Player):
        self.session_id = player.session_id
        self.player_id = player.id
        self.station = player.station

    def unbind(self):
        self.session_id = None
        self.player_id = None
        self.station = None
        self.state_version = 0

    async def send(self, envelope: WSEnvelope) -> bool:
        """Send an envelope; a closed connection is reported, not raised."""
        try:
            await self.websocket.send(envelope.to_wire())
            return True
        except ConnectionClosed:
            logger.debug(f"Connection {self.id} closed before send of {envelope.type.value}")
            return False

    async def send_state(self, state: GameState) -> bool:
        """Send a state snapshot unless this connection already has a newer one."""
        if state.version <= self.state_version:
            logger.debug(f"Skipping stale state v{state.version} for {self.id} (has v{self.state_version})")
            return False
        self.state_version = state.version
        return await self.send(WSEnvelope.event(EventType.STATE_UPDATE, state.to_dict()))


class ConnectionGateway:
    """
    Routes console envelopes to the stores and broadcasts the results.

    Responsibilities:
    - Accept WebSocket connections and announce their connection id
    - Join, resume, leave and remove players, keeping rooms in step
    - Apply station actions and GM patches with bounded conflict retry
    - Broadcast state, roster and session changes to session rooms
    - Mark players disconnected when their transport closes
    - Periodically purge expired storage keys
    """

    def __init__(
        self,
        config: ServerConfig,
        state_store: StateStore,
        session_store: SessionStore,
        processor: Optional[ActionProcessor] = None,
        backend: Optional[KeyValueBackend] = None,
    ):
        self.config = config
        self.state_store = state_store
        self.session_store = session_store
        self.processor = processor or ActionProcessor()
        self.backend = backend
        self.connections: Dict[str, ClientConnection] = {}
        self.rooms = RoomRegistry()
        self._server: Optional[Server] = None
        self._sweep_task: Optional[asyncio.Task] = None

        self._handlers: Dict[EventType, Callable[[ClientConnection, Dict[str, Any]], Any]] = {
            EventType.JOIN_SESSION: self.handle_join_session,
            EventType.CREATE_SESSION: self.handle_create_session,
            EventType.LEAVE_SESSION: self.handle_leave_session,
            EventType.PLAYER_ACTION: self.handle_player_action,
            EventType.GM_UPDATE: self.handle_gm_update,
            EventType.SET_SESSION_STATUS: self.handle_set_session_status,
            EventType.REMOVE_PLAYER: self.handle_remove_player,
            EventType.PING: self.handle_ping,
        }

    @classmethod
    def from_config(cls, config: ServerConfig, backend: Optional[KeyValueBackend] = None) -> "ConnectionGateway":
        """Build a gateway with stores on ``backend`` (in-memory by default)."""
        if backend is None:
            backend = MemoryBackend()
        state_store = StateStore(
            backend,
            ttl=config.state_ttl_seconds,
            max_update_retries=config.max_save_retries,
        )
        session_store = SessionStore(
            backend,
            state_store,
            ttl=config.session_ttl_seconds,
            max_players=config.max_players_per_session,
        )
        return cls(config, state_store, session_store, backend=backend)

    # ------------------------------------------------------------------
    # Server lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Start listening and the expiry sweep."""
        self._server = await serve(
            self.handle_connection,
            self.config.host,
            self.config.ws_port,
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_timeout,
        )
        if self.backend is not None and self.config.sweep_interval_seconds > 0:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(f"Gateway listening on ws://{self.config.host}:{self.config.ws_port}")

    async def serve_forever(self):
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    async def stop(self):
        """Stop the sweep and close the server and every connection."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("Gateway stopped")

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.config.sweep_interval_seconds)
            try:
                removed = await self.backend.purge_expired()
                logger.debug(f"Sweep removed {removed} expired keys")
            except Exception as e:
                logger.error(f"Expiry sweep failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def handle_connection(self, websocket: ServerConnection):
        """Serve one console connection until it closes."""
        conn = ClientConnection(websocket)
        await self.on_connect(conn)
        try:
            async for message in websocket:
                await self.handle_message(conn, message)
        except ConnectionClosed:
            pass
        finally:
            await self.handle_disconnect(conn)

    async def on_connect(self, conn: ClientConnection):
        self.connections[conn.id] = conn
        logger.info(f"Client connected: {conn.id} {conn.remote_address} (total: {len(self.connections)})")
        await conn.send(WSEnvelope.event(EventType.CONNECTED, {"socketId": conn.id}))

    async def handle_message(self, conn: ClientConnection, raw):
        """Parse one frame and run its handler, answering failures to the sender only."""
        try:
            message = parse_message(raw)
        except LookupError as e:
            await conn.send(WSEnvelope.error(ErrorCode.UNKNOWN_EVENT, f"Unknown event: {e}"))
            return
        except ValueError as e:
            await conn.send(WSEnvelope.error(ErrorCode.BAD_REQUEST, str(e)))
            return

        handler = self._handlers[message.type]
        try:
            await handler(conn, message.data)
        except GatewayError as e:
            logger.info(f"Rejected {message.type.value} from {conn.id}: {e.code.value} ({e.message})")
            await conn.send(WSEnvelope.error(e.code, e.message))
        except Exception as e:
            logger.error(f"Error handling {message.type.value} from {conn.id}: {e}", exc_info=True)
            await conn.send(WSEnvelope.error(ErrorCode.INTERNAL_ERROR, f"{message.type.value} failed"))

    async def handle_disconnect(self, conn: ClientConnection):
        """
        Mark the connection's player disconnected and tell the session.

        The roster entry is kept so the player can resume. Safe to call
        more than once for the same connection.
        """
        if self.connections.pop(conn.id, None) is not None:
            logger.info(f"Client disconnected: {conn.id} (total: {len(self.connections)})")
        self.rooms.leave_all(conn.id)

        player = await self._resolve_player(conn, reindex=False)
        conn.unbind()
        if player is None:
            return

        await self.session_store.remove_player_socket_id(conn.id)
        updated = await self.session_store.update_player_status(
            player.session_id,
            player.id,
            PlayerStatus.DISCONNECTED,
            expected_user_id=conn.id,
        )
        if updated is None:
            return

        logger.info(f"Player {player.id} ({player.station.value}) disconnected from {player.session_id}")
        await self.broadcast(session_room(player.session_id), WSEnvelope.event(EventType.PLAYER_LEFT, {"playerId": player.id}))

    # ------------------------------------------------------------------
    # Broadcast helpers
    # ------------------------------------------------------------------

    async def broadcast(self, room: str, envelope: WSEnvelope, exclude: Optional[ClientConnection] = None):
        """Send an envelope to every connection in a room."""
        targets = [
            self.connections[cid]
            for cid in self.rooms.members(room)
            if cid in self.connections and (exclude is None or cid != exclude.id)
        ]
        if targets:
            await asyncio.gather(*(conn.send(envelope) for conn in targets), return_exceptions=True)

    async def broadcast_state(self, state: GameState):
        """Send a saved state to every connection in its session."""
        targets = [
            self.connections[cid]
            for cid in self.rooms.members(session_room(state.session_id))
            if cid in self.connections
        ]
        if targets:
            await asyncio.gather(*(conn.send_state(state) for conn in targets), return_exceptions=True)

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _resolve_player(self, conn: ClientConnection, reindex: bool = True) -> Optional[Player]:
        """Find the player bound to a connection via the index, then the roster."""
        player = await self.session_store.get_player_by_socket_id(conn.id)
        if player is None and conn.joined:
            player = await self.session_store.get_player(conn.session_id, conn.player_id)
            if player is not None and player.user_id != conn.id:
                player = None
            if player is not None and reindex:
                await self.session_store.set_player_socket_id(conn.id, player.public())
        return player

    async def _require_player(self, conn: ClientConnection) -> Player:
        player = await self._resolve_player(conn)
        if player is None:
            raise GatewayError(ErrorCode.NOT_JOINED)
        return player

    async def _load_state(self, session_id: str) -> GameState:
        """
        Current state of an existing session.

        A session whose state has expired gets a fresh ship rather than
        being left without one, and every console in it is sent that ship.
        """
        state = await self.state_store.get_state(session_id)
        if state is not None:
            return state

        logger.warning(f"Session {session_id} has no game state, reinitializing")
        result = await self.state_store.save_state(create_initial_state(session_id))
        if result.ok:
            # Versions restart with the fresh ship
            for cid in self.rooms.members(session_room(session_id)):
                if cid in self.connections:
                    self.connections[cid].state_version = 0
            await self.broadcast_state(result.state)
            return result.state
        if result.status == SaveStatus.CONFLICT:
            state = await self.state_store.get_state(session_id)
            if state is not None:
                return state
        raise GatewayError(ErrorCode.STATE_NOT_FOUND)

    async def _mutate_state(self, session_id: str, mutate: Callable[[GameState], Optional[GameState]]) -> Optional[GameState]:
        """
        Run fetch -> mutate -> save, retrying on version conflicts.

        Returns:
            The saved state, or None if ``mutate`` had nothing to change
        """
        for attempt in range(1, self.config.max_save_retries + 1):
            state = await self._load_state(session_id)

            updated = mutate(state)
            if updated is None:
                return None

            result = await self.state_store.save_state(updated)
            if result.ok:
                return result.state
            if result.status == SaveStatus.FAILED:
                raise GatewayError(ErrorCode.STORAGE_ERROR)
            logger.info(f"State of {session_id} changed during update, retrying (attempt {attempt})")

        raise GatewayError(ErrorCode.STATE_CONFLICT)

    def _detach(self, conn: ClientConnection):
        self.rooms.leave_all(conn.id)
        conn.unbind()

    @staticmethod
    def _session_id_param(data: Dict[str, Any], required: bool = True) -> Optional[str]:
        session_id = data.get("sessionId")
        if session_id is None or session_id == "":
            if required:
                raise GatewayError(ErrorCode.MISSING_PARAM, "sessionId is required")
            return None
        if not isinstance(session_id, str) or not SESSION_ID_PATTERN.match(session_id):
            raise GatewayError(ErrorCode.INVALID_PARAM, "sessionId must be 1-64 letters, digits, '-' or '_'")
        return session_id

    @staticmethod
    def _name_param(data: Dict[str, Any], default: str) -> str:
        name = data.get("name")
        if isinstance(name, str) and name.strip():
            return name.strip()[:MAX_NAME_LENGTH]
        return default

    # ------------------------------------------------------------------
    # Inbound envelope handlers
    # ------------------------------------------------------------------

    async def handle_join_session(self, conn: ClientConnection, data: Dict[str, Any]):
        """
        Join (or resume) a session at a station.

        Creates the session when it does not exist and auto-creation is
        enabled. The current state goes to the joining connection only.
        """
        if conn.joined:
            raise GatewayError(ErrorCode.ALREADY_JOINED)

        session_id = self._session_id_param(data)
        if data.get("station") is None:
            raise GatewayError(ErrorCode.MISSING_PARAM, "station is required")
        station = parse_station(data.get("station"))
        if station is None:
            raise GatewayError(ErrorCode.INVALID_PARAM, f"Unknown station: {data.get('station')}")

        role = role_for_station(station)
        requested_role = data.get("role")
        if requested_role == PlayerRole.SPECTATOR.value:
            role = PlayerRole.SPECTATOR
        elif requested_role is not None and requested_role != role.value:
            raise GatewayError(ErrorCode.INVALID_PARAM, f"Role {requested_role} is not available at {station.value}")

        token = data.get("token")
        if token is not None and not isinstance(token, str):
            raise GatewayError(ErrorCode.INVALID_PARAM, "token must be a string")

        session = await self.session_store.get_session(session_id)
        if session is None:
            if token or not self.config.auto_create_sessions:
                raise GatewayError(ErrorCode.SESSION_NOT_FOUND)
            created, code = await self.session_store.create_session(session_id, conn.id, session_id)
            if created is None and code != ErrorCode.SESSION_EXISTS:
                raise GatewayError(code)

        # Fail before taking a roster slot if no state can be had
        await self._load_state(session_id)

        if token:
            player, code = await self.session_store.resume_player(session_id, token, conn.id)
        else:
            name = self._name_param(data, "Player")
            player, code = await self.session_store.add_player(session_id, conn.id, station, role, name)
        if player is None:
            raise GatewayError(code or ErrorCode.JOIN_FAILED)

        conn.bind(player)
        if not await self.session_store.set_player_socket_id(conn.id, player.public()):
            logger.warning(f"Could not index connection {conn.id}; falling back to roster lookups")

        session = await self.session_store.get_session(session_id)
        roster = await self.session_store.get_session_players(session_id)
        await conn.send(WSEnvelope.event(EventType.SESSION_JOINED, {
            "player": player.to_dict(),
            "token": player.token,
            "session": session.to_dict() if session else None,
            "players": [p.to_dict() for p in roster],
        }))

        # Read the snapshot only once in the rooms: any save after this
        # point is either in the read or in a broadcast we receive
        self.rooms.join(conn.id, session_room(session_id))
        self.rooms.join(conn.id, station_room(session_id, player.station))
        state = await self._load_state(session_id)
        await conn.send_state(state)
        await self.broadcast(
            session_room(session_id),
            WSEnvelope.event(EventType.PLAYER_JOINED, player.public().to_dict()),
            exclude=conn,
        )
        logger.info(f"{conn.id} joined {session_id} as {player.station.value} (player {player.id})")

    async def handle_create_session(self, conn: ClientConnection, data: Dict[str, Any]):
        session_id = self._session_id_param(data, required=False)
        name = self._name_param(data, session_id or "")
        session, code = await self.session_store.create_session(name, conn.id, session_id)
        if session is None:
            raise GatewayError(code or ErrorCode.SESSION_CREATE_FAILED)
        await conn.send(WSEnvelope.event(EventType.SESSION_CREATED, {"session": session.to_dict()}))

    async def handle_leave_session(self, conn: ClientConnection, data: Dict[str, Any]):
        """Leave the joined session, giving up the roster entry."""
        player = await self._require_player(conn)
        session_id = player.session_id

        await self.session_store.remove_player(session_id, player.id)
        await self.session_store.remove_player_socket_id(conn.id)
        self._detach(conn)

        await conn.send(WSEnvelope.event(EventType.SESSION_LEFT, {"sessionId": session_id}))
        await self.broadcast(session_room(session_id), WSEnvelope.event(EventType.PLAYER_LEFT, {"playerId": player.id}))
        logger.info(f"Player {player.id} left {session_id}")

    async def handle_player_action(self, conn: ClientConnection, data: Dict[str, Any]):
        """Apply a station action and broadcast the new state."""
        player = await self._require_player(conn)

        action = data.get("action")
        if not isinstance(action, str) or not action:
            raise GatewayError(ErrorCode.MISSING_PARAM, "action is required")
        raw_station = data.get("station", player.station.value)
        station = parse_station(raw_station)
        if station is None:
            raise GatewayError(ErrorCode.INVALID_PARAM, f"Unknown station: {raw_station}")

        if player.role == PlayerRole.SPECTATOR:
            raise GatewayError(ErrorCode.UNAUTHORIZED, "Spectators cannot act")
        if station != player.station and player.role != PlayerRole.GM:
            raise GatewayError(ErrorCode.UNAUTHORIZED)

        value = data.get("value")
        state = await self._mutate_state(
            player.session_id,
            lambda current: self.processor.process(current, station, action, value),
        )
        if state is None:
            logger.debug(f"{station.value}.{action} from {conn.id} changed nothing")
            return

        logger.info(f"Action in {player.session_id}: {station.value}.{action} = {value!r} (v{state.version})")
        await self.broadcast_state(state)
        await self.session_store.record_activity(player.session_id, player.id)

        notification = get_gm_notification(station, action)
        if notification:
            await self.broadcast(
                station_room(player.session_id, StationType.GM),
                WSEnvelope.event(EventType.GM_NOTIFICATION, {
                    "type": notification,
                    "station": station.value,
                    "action": action,
                    "value": value,
                }),
            )

    async def handle_gm_update(self, conn: ClientConnection, data: Dict[str, Any]):
        """Patch the state directly (GM only) and broadcast it."""
        player = await self._require_player(conn)
        if player.role != PlayerRole.GM:
            raise GatewayError(ErrorCode.GM_REQUIRED)

        changes = data.get("changes")
        if changes is None:
            raise GatewayError(ErrorCode.MISSING_PARAM, "changes is required")

        try:
            state = await self._mutate_state(player.session_id, lambda current: merge_patch(current, changes))
        except PatchError as e:
            raise GatewayError(ErrorCode.INVALID_PATCH, str(e))

        logger.info(f"GM {player.id} updated state in {player.session_id} (v{state.version})")
        await self.broadcast_state(state)
        await self.session_store.record_activity(player.session_id, player.id)

    async def handle_set_session_status(self, conn: ClientConnection, data: Dict[str, Any]):
        player = await self._require_player(conn)
        is_commander = player.role == PlayerRole.PLAYER and player.station == StationType.COMMANDER
        if player.role != PlayerRole.GM and not is_commander:
            raise GatewayError(ErrorCode.UNAUTHORIZED, "Only the GM or commander can change session status")

        try:
            status = SessionStatus(data.get("status"))
        except ValueError:
            allowed = ", ".join(s.value for s in SessionStatus)
            raise GatewayError(ErrorCode.INVALID_PARAM, f"status must be one of {allowed}")

        session = await self.session_store.update_session_status(player.session_id, status)
        if session is None:
            raise GatewayError(ErrorCode.SESSION_NOT_FOUND)
        await self.broadcast(session_room(player.session_id), WSEnvelope.event(EventType.SESSION_UPDATE, {"session": session.to_dict()}))

    async def handle_remove_player(self, conn: ClientConnection, data: Dict[str, Any]):
        """Remove a roster entry (GM only), detaching its connection if live."""
        player = await self._require_player(conn)
        if player.role != PlayerRole.GM:
            raise GatewayError(ErrorCode.GM_REQUIRED)

        target_id = data.get("playerId")
        if not isinstance(target_id, str) or not target_id:
            raise GatewayError(ErrorCode.MISSING_PARAM, "playerId is required")

        removed = await self.session_store.remove_player(player.session_id, target_id)
        if removed is None:
            raise GatewayError(ErrorCode.PLAYER_NOT_FOUND)

        target_conn = self.connections.get(removed.user_id)
        if target_conn is not None and target_conn.player_id == removed.id:
            await self.session_store.remove_player_socket_id(target_conn.id)
            self._detach(target_conn)
            await target_conn.send(WSEnvelope.event(EventType.SESSION_LEFT, {
                "sessionId": player.session_id,
                "reason": "removed",
            }))

        await self.broadcast(session_room(player.session_id), WSEnvelope.event(EventType.PLAYER_LEFT, {"playerId": removed.id}))
        logger.info(f"GM {player.id} removed player {removed.id} from {player.session_id}")

    async def handle_ping(self, conn: ClientConnection, data: Dict[str, Any]):
        await conn.send(WSEnvelope.pong(data.get("timestamp")))

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    async def session_summaries(self) -> List[Dict[str, Any]]:
        """Summary of every live session for the HTTP listing."""
        summaries = []
        for session in await self.session_store.list_sessions():
            players = await self.session_store.get_session_players(session.id)
            summaries.append({
                "id": session.id,
                "name": session.name,
                "status": session.status.value,
                "players": sum(1 for p in players if p.is_connected),
            })
        return summaries
