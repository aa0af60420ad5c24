"""
Authoritative session state: the data model, initial ship construction,
and the TTL-backed stores for game state, sessions and rosters.
"""

from .models import (
    AlertLevel,
    GameSession,
    GameSettings,
    GameState,
    MissionStatus,
    Player,
    SessionStatus,
    SUBSYSTEM_KEYS,
)

from .factory import create_initial_state
from .kv_store import KeyValueBackend, MemoryBackend
from .schema import PatchError, merge_patch, validate_patch
from .state_store import SaveResult, SaveStatus, StateStore
from .session_store import SessionStore

__all__ = [
    'AlertLevel',
    'GameSession',
    'GameSettings',
    'GameState',
    'MissionStatus',
    'Player',
    'SessionStatus',
    'SUBSYSTEM_KEYS',
    'create_initial_state',
    'KeyValueBackend',
    'MemoryBackend',
    'PatchError',
    'merge_patch',
    'validate_patch',
    'SaveResult',
    'SaveStatus',
    'StateStore',
    'SessionStore',
]
