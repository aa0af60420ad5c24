"""Tests for sessions, rosters and the connection index"""

import asyncio
import gc
from itertools import count

import pytest

from bridge_server.protocol import ErrorCode
from bridge_server.state.kv_store import MemoryBackend
from bridge_server.state.models import GameSettings, SessionStatus
from bridge_server.state.session_store import SessionStore
from bridge_server.state.state_store import StateStore
from bridge_server.stations.station_types import PlayerRole, PlayerStatus, StationType


class FailingSetBackend(MemoryBackend):
    """Accepts writes until ``fail_prefix`` is written"""

    def __init__(self, fail_prefix):
        super().__init__()
        self.fail_prefix = fail_prefix

    async def set(self, key, value, ttl):
        if key.startswith(self.fail_prefix):
            raise ConnectionError("write failed")
        await super().set(key, value, ttl)


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def state_store(backend):
    return StateStore(backend)


@pytest.fixture
def store(backend, state_store):
    ids = count(1)
    tokens = count(1)
    return SessionStore(
        backend,
        state_store,
        max_players=3,
        id_factory=lambda: f"player-{next(ids)}",
        token_factory=lambda: f"token-{next(tokens)}",
    )


async def _new_session(store, session_id="bridge-alpha-1"):
    session, code = await store.create_session("Alpha", "conn_creator", session_id)
    assert code is None
    return session


class TestCreateSession:

    @pytest.mark.asyncio
    async def test_creates_session_and_state_together(self, store, state_store):
        session = await _new_session(store)

        assert session.id == "bridge-alpha-1"
        assert session.status == SessionStatus.WAITING
        assert session.max_players == 3
        assert session.created_by == "conn_creator"
        assert await store.get_session("bridge-alpha-1") == session
        state = await state_store.get_state("bridge-alpha-1")
        assert state is not None and state.is_complete()
        assert await store.get_session_players("bridge-alpha-1") == []

    @pytest.mark.asyncio
    async def test_allocates_id_when_absent(self, store):
        session, code = await store.create_session("Unnamed", None)
        assert code is None
        assert session.id == "player-1"

    @pytest.mark.asyncio
    async def test_existing_id_rejected(self, store):
        await _new_session(store)
        session, code = await store.create_session("Again", "conn_2", "bridge-alpha-1")
        assert session is None
        assert code == ErrorCode.SESSION_EXISTS

    @pytest.mark.asyncio
    async def test_concurrent_creates_yield_one_session(self, store):
        results = await asyncio.gather(*(store.create_session("A", f"c{i}", "race") for i in range(3)))
        created = [s for s, _ in results if s is not None]
        assert len(created) == 1
        assert sorted(code.value for _, code in results if code) == ["SESSION_EXISTS", "SESSION_EXISTS"]

    @pytest.mark.asyncio
    async def test_stale_state_replaced_with_fresh_ship(self, store, state_store):
        await _new_session(store)
        await state_store.update_state("bridge-alpha-1", {"alertLevel": "red"})
        await store.backend.delete("session:bridge-alpha-1")

        await _new_session(store)

        assert (await state_store.get_state("bridge-alpha-1")).alert_level.value == "green"

    @pytest.mark.asyncio
    async def test_failed_session_write_removes_state(self):
        backend = FailingSetBackend("session:")
        state_store = StateStore(backend)
        store = SessionStore(backend, state_store)

        session, code = await store.create_session("Alpha", "c1", "doomed")

        assert session is None
        assert code == ErrorCode.SESSION_CREATE_FAILED
        assert await state_store.get_state("doomed") is None


class TestAddPlayer:

    @pytest.mark.asyncio
    async def test_add_player(self, store):
        await _new_session(store)

        player, code = await store.add_player("bridge-alpha-1", "conn_1", StationType.PILOT, name="Riley")

        assert code is None
        assert player.id == "player-1"
        assert player.user_id == "conn_1"
        assert player.station == StationType.PILOT
        assert player.role == PlayerRole.PLAYER
        assert player.status == PlayerStatus.CONNECTED
        assert player.name == "Riley"
        assert player.token == "token-1"
        assert await store.get_session_players("bridge-alpha-1") == [player]

    @pytest.mark.asyncio
    async def test_unknown_session(self, store):
        player, code = await store.add_player("missing", "conn_1", StationType.PILOT)
        assert player is None
        assert code == ErrorCode.SESSION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_station_exclusive_while_connected(self, store):
        await _new_session(store)
        await store.add_player("bridge-alpha-1", "conn_1", StationType.PILOT)

        player, code = await store.add_player("bridge-alpha-1", "conn_2", StationType.PILOT)

        assert player is None
        assert code == ErrorCode.STATION_OCCUPIED
        assert len(await store.get_session_players("bridge-alpha-1")) == 1

    @pytest.mark.asyncio
    async def test_station_free_after_disconnect(self, store):
        await _new_session(store)
        first, _ = await store.add_player("bridge-alpha-1", "conn_1", StationType.PILOT)
        await store.update_player_status("bridge-alpha-1", first.id, PlayerStatus.DISCONNECTED)

        second, code = await store.add_player("bridge-alpha-1", "conn_2", StationType.PILOT)

        assert code is None
        assert second.station == StationType.PILOT

    @pytest.mark.asyncio
    async def test_gm_station_not_exclusive(self, store):
        await _new_session(store)
        await store.add_player("bridge-alpha-1", "conn_1", StationType.GM, PlayerRole.GM)
        player, code = await store.add_player("bridge-alpha-1", "conn_2", StationType.GM, PlayerRole.GM)
        assert code is None
        assert player.role == PlayerRole.GM

    @pytest.mark.asyncio
    async def test_capacity(self, store):
        await _new_session(store)
        for i, station in enumerate((StationType.PILOT, StationType.GUNNER, StationType.ENGINEER)):
            await store.add_player("bridge-alpha-1", f"conn_{i}", station)

        player, code = await store.add_player("bridge-alpha-1", "conn_9", StationType.COMMS)

        assert player is None
        assert code == ErrorCode.SESSION_FULL

    @pytest.mark.asyncio
    async def test_disconnected_players_free_capacity(self, store):
        await _new_session(store)
        players = []
        for i, station in enumerate((StationType.PILOT, StationType.GUNNER, StationType.ENGINEER)):
            player, _ = await store.add_player("bridge-alpha-1", f"conn_{i}", station)
            players.append(player)
        await store.update_player_status("bridge-alpha-1", players[0].id, PlayerStatus.DISCONNECTED)

        player, code = await store.add_player("bridge-alpha-1", "conn_9", StationType.COMMS)

        assert code is None

    @pytest.mark.asyncio
    async def test_spectators_bypass_capacity_and_exclusivity(self, store):
        await _new_session(store)
        for i, station in enumerate((StationType.PILOT, StationType.GUNNER, StationType.ENGINEER)):
            await store.add_player("bridge-alpha-1", f"conn_{i}", station)

        player, code = await store.add_player("bridge-alpha-1", "conn_9", StationType.PILOT, PlayerRole.SPECTATOR)

        assert code is None
        assert player.role == PlayerRole.SPECTATOR

    @pytest.mark.asyncio
    async def test_spectators_can_be_disabled(self, store):
        session = await _new_session(store)
        session.settings = GameSettings(allow_spectators=False)
        await store.save_session(session)

        player, code = await store.add_player("bridge-alpha-1", "conn_1", StationType.PILOT, PlayerRole.SPECTATOR)

        assert player is None
        assert code == ErrorCode.SPECTATORS_DISABLED

    @pytest.mark.asyncio
    async def test_concurrent_joins_for_one_station(self, store):
        await _new_session(store)

        results = await asyncio.gather(*(
            store.add_player("bridge-alpha-1", f"conn_{i}", StationType.GUNNER) for i in range(3)
        ))

        assert sum(1 for player, _ in results if player is not None) == 1
        roster = await store.get_session_players("bridge-alpha-1")
        assert [p.station for p in roster] == [StationType.GUNNER]


class TestResumePlayer:

    @pytest.mark.asyncio
    async def test_resume_rebinds_connection(self, store):
        await _new_session(store)
        player, _ = await store.add_player("bridge-alpha-1", "conn_1", StationType.PILOT)
        await store.update_player_status("bridge-alpha-1", player.id, PlayerStatus.DISCONNECTED)

        resumed, code = await store.resume_player("bridge-alpha-1", player.token, "conn_2")

        assert code is None
        assert resumed.id == player.id
        assert resumed.user_id == "conn_2"
        assert resumed.status == PlayerStatus.CONNECTED
        assert resumed.station == StationType.PILOT
        assert len(await store.get_session_players("bridge-alpha-1")) == 1

    @pytest.mark.asyncio
    async def test_unknown_token(self, store):
        await _new_session(store)
        player, code = await store.resume_player("bridge-alpha-1", "forged", "conn_2")
        assert player is None
        assert code == ErrorCode.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_token_from_other_session(self, store):
        await _new_session(store, "alpha")
        await _new_session(store, "beta")
        player, _ = await store.add_player("alpha", "conn_1", StationType.PILOT)

        resumed, code = await store.resume_player("beta", player.token, "conn_2")

        assert resumed is None
        assert code == ErrorCode.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_resume_blocked_when_station_taken(self, store):
        await _new_session(store)
        first, _ = await store.add_player("bridge-alpha-1", "conn_1", StationType.PILOT)
        await store.update_player_status("bridge-alpha-1", first.id, PlayerStatus.DISCONNECTED)
        await store.add_player("bridge-alpha-1", "conn_2", StationType.PILOT)

        resumed, code = await store.resume_player("bridge-alpha-1", first.token, "conn_3")

        assert resumed is None
        assert code == ErrorCode.STATION_OCCUPIED


class TestRosterUpdates:

    @pytest.mark.asyncio
    async def test_remove_player(self, store):
        await _new_session(store)
        player, _ = await store.add_player("bridge-alpha-1", "conn_1", StationType.PILOT)

        removed = await store.remove_player("bridge-alpha-1", player.id)

        assert removed.id == player.id
        assert await store.get_session_players("bridge-alpha-1") == []
        assert await store.remove_player("bridge-alpha-1", player.id) is None

    @pytest.mark.asyncio
    async def test_update_player_status(self, store):
        await _new_session(store)
        player, _ = await store.add_player("bridge-alpha-1", "conn_1", StationType.PILOT)

        updated = await store.update_player_status("bridge-alpha-1", player.id, PlayerStatus.AWAY)

        assert updated.status == PlayerStatus.AWAY
        assert updated.last_activity >= player.last_activity
        assert (await store.get_player("bridge-alpha-1", player.id)).status == PlayerStatus.AWAY

    @pytest.mark.asyncio
    async def test_update_unknown_player(self, store):
        await _new_session(store)
        assert await store.update_player_status("bridge-alpha-1", "ghost", PlayerStatus.AWAY) is None

    @pytest.mark.asyncio
    async def test_update_skipped_for_rebound_player(self, store):
        await _new_session(store)
        player, _ = await store.add_player("bridge-alpha-1", "conn_1", StationType.PILOT)
        await store.resume_player("bridge-alpha-1", player.token, "conn_2")

        result = await store.update_player_status(
            "bridge-alpha-1", player.id, PlayerStatus.DISCONNECTED, expected_user_id="conn_1",
        )

        assert result is None
        assert (await store.get_player("bridge-alpha-1", player.id)).status == PlayerStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_update_session_status(self, store):
        await _new_session(store)
        session = await store.update_session_status("bridge-alpha-1", SessionStatus.ACTIVE)
        assert session.status == SessionStatus.ACTIVE
        assert (await store.get_session("bridge-alpha-1")).status == SessionStatus.ACTIVE
        assert await store.update_session_status("missing", SessionStatus.ACTIVE) is None

    @pytest.mark.asyncio
    async def test_list_and_delete_sessions(self, store, state_store):
        await _new_session(store, "alpha")
        await _new_session(store, "beta")

        assert [s.id for s in await store.list_sessions()] == ["alpha", "beta"]
        assert await store.delete_session("alpha") is True
        assert [s.id for s in await store.list_sessions()] == ["beta"]
        assert await state_store.get_state("alpha") is None

    @pytest.mark.asyncio
    async def test_delete_does_not_replace_a_held_lock(self, store):
        await _new_session(store, "alpha")
        lock = store._lock("alpha")
        async with lock:
            delete = asyncio.create_task(store.delete_session("alpha"))
            await asyncio.sleep(0)
            assert store._lock("alpha") is lock
            assert not delete.done()
        assert await delete is True

    @pytest.mark.asyncio
    async def test_idle_locks_are_released(self, store, state_store):
        await _new_session(store, "alpha")
        await store.delete_session("alpha")
        gc.collect()
        assert len(store._locks) == 0
        assert len(state_store._locks) == 0


class TestConnectionIndex:

    @pytest.mark.asyncio
    async def test_index_round_trip_without_token(self, store):
        await _new_session(store)
        player, _ = await store.add_player("bridge-alpha-1", "conn_1", StationType.PILOT)

        assert await store.set_player_socket_id("conn_1", player)
        indexed = await store.get_player_by_socket_id("conn_1")

        assert indexed.id == player.id
        assert indexed.token is None

    @pytest.mark.asyncio
    async def test_remove_index(self, store):
        await _new_session(store)
        player, _ = await store.add_player("bridge-alpha-1", "conn_1", StationType.PILOT)
        await store.set_player_socket_id("conn_1", player)

        assert await store.remove_player_socket_id("conn_1")
        assert await store.get_player_by_socket_id("conn_1") is None
        assert await store.remove_player_socket_id("conn_1")
