"""
Session data model.

GameState, GameSession and Player records, with their camelCase JSON
document form. Subsystem sub-documents stay plain dictionaries (the
shape is owned by the state factory); every date/time field inside them
is revived into an aware datetime when a document is read back.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import copy

from bridge_server.stations.station_types import (
    PlayerRole,
    PlayerStatus,
    StationType,
)


class MissionStatus(Enum):
    INITIALIZE = "initialize"
    BRIEFING = "briefing"
    ACTIVE = "active"
    CRITICAL = "critical"
    COMPLETED = "completed"
    FAILED = "failed"


class AlertLevel(Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"
    BLACK = "black"


class SessionStatus(Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class GameMode(Enum):
    CAMPAIGN = "campaign"
    SCENARIO = "scenario"
    SANDBOX = "sandbox"


class Difficulty(Enum):
    EASY = "easy"
    NORMAL = "normal"
    HARD = "hard"
    NIGHTMARE = "nightmare"


# The seven named sub-documents that together describe the ship
SUBSYSTEM_KEYS = (
    "systems",
    "navigation",
    "weapons",
    "communications",
    "engineering",
    "command",
    "environment",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Revive an ISO-8601 string (or pass through a datetime) as an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Not a date/time value: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _revive_items(items: Any, key: str) -> None:
    if not isinstance(items, list):
        return
    for item in items:
        if isinstance(item, dict) and item.get(key) is not None:
            item[key] = parse_datetime(item[key])


def revive_subsystem_datetimes(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Convert known date/time fields of a state document in place."""
    systems = doc.get("systems")
    if isinstance(systems, dict):
        for component in systems.values():
            if isinstance(component, dict) and component.get("lastDamaged") is not None:
                component["lastDamaged"] = parse_datetime(component["lastDamaged"])

    communications = doc.get("communications")
    if isinstance(communications, dict):
        _revive_items(communications.get("messageQueue"), "timestamp")

    engineering = doc.get("engineering")
    if isinstance(engineering, dict):
        _revive_items(engineering.get("diagnostics"), "timestamp")

    command = doc.get("command")
    if isinstance(command, dict):
        _revive_items(command.get("missionObjectives"), "timeLimit")
        display = command.get("tacticalDisplay")
        if isinstance(display, dict):
            _revive_items(display.get("contacts"), "lastUpdate")
    return doc


@dataclass
class GameState:
    """The single authoritative document describing one session's ship"""
    session_id: str
    mission_status: MissionStatus = MissionStatus.INITIALIZE
    alert_level: AlertLevel = AlertLevel.GREEN
    systems: Dict[str, Any] = field(default_factory=dict)
    navigation: Dict[str, Any] = field(default_factory=dict)
    weapons: Dict[str, Any] = field(default_factory=dict)
    communications: Dict[str, Any] = field(default_factory=dict)
    engineering: Dict[str, Any] = field(default_factory=dict)
    command: Dict[str, Any] = field(default_factory=dict)
    environment: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)
    version: int = 1

    def copy(self) -> "GameState":
        """Deep copy, so callers can mutate freely."""
        return copy.deepcopy(self)

    def is_complete(self) -> bool:
        return all(isinstance(getattr(self, key), dict) and getattr(self, key) for key in SUBSYSTEM_KEYS)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase document used on the wire and in storage"""
        return {
            "sessionId": self.session_id,
            "missionStatus": self.mission_status.value,
            "alertLevel": self.alert_level.value,
            "systems": self.systems,
            "navigation": self.navigation,
            "weapons": self.weapons,
            "communications": self.communications,
            "engineering": self.engineering,
            "command": self.command,
            "environment": self.environment,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameState":
        doc = copy.deepcopy(data)
        revive_subsystem_datetimes(doc)
        return cls(
            session_id=doc["sessionId"],
            mission_status=MissionStatus(doc.get("missionStatus", MissionStatus.INITIALIZE.value)),
            alert_level=AlertLevel(doc.get("alertLevel", AlertLevel.GREEN.value)),
            systems=doc.get("systems") or {},
            navigation=doc.get("navigation") or {},
            weapons=doc.get("weapons") or {},
            communications=doc.get("communications") or {},
            engineering=doc.get("engineering") or {},
            command=doc.get("command") or {},
            environment=doc.get("environment") or {},
            timestamp=parse_datetime(doc.get("timestamp")) or utc_now(),
            version=int(doc.get("version", 1)),
        )


@dataclass
class GameSettings:
    """Session policy flags"""
    allow_spectators: bool = True
    voice_chat_enabled: bool = False
    auto_save: bool = True
    pause_on_disconnect: bool = False
    max_session_duration: int = 90   # minutes
    station_lock_timeout: int = 30   # seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowSpectators": self.allow_spectators,
            "voiceChatEnabled": self.voice_chat_enabled,
            "autoSave": self.auto_save,
            "pauseOnDisconnect": self.pause_on_disconnect,
            "maxSessionDuration": self.max_session_duration,
            "stationLockTimeout": self.station_lock_timeout,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameSettings":
        defaults = cls()
        return cls(
            allow_spectators=data.get("allowSpectators", defaults.allow_spectators),
            voice_chat_enabled=data.get("voiceChatEnabled", defaults.voice_chat_enabled),
            auto_save=data.get("autoSave", defaults.auto_save),
            pause_on_disconnect=data.get("pauseOnDisconnect", defaults.pause_on_disconnect),
            max_session_duration=data.get("maxSessionDuration", defaults.max_session_duration),
            station_lock_timeout=data.get("stationLockTimeout", defaults.station_lock_timeout),
        )


@dataclass
class GameSession:
    """Per-session metadata; the roster is stored separately"""
    id: str
    name: str
    status: SessionStatus = SessionStatus.WAITING
    max_players: int = 8
    game_mode: GameMode = GameMode.SANDBOX
    difficulty: Difficulty = Difficulty.NORMAL
    settings: GameSettings = field(default_factory=GameSettings)
    created_by: Optional[str] = None
    current_scenario: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "maxPlayers": self.max_players,
            "gameMode": self.game_mode.value,
            "difficulty": self.difficulty.value,
            "settings": self.settings.to_dict(),
            "createdBy": self.created_by,
            "currentScenario": self.current_scenario,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameSession":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            status=SessionStatus(data.get("status", SessionStatus.WAITING.value)),
            max_players=int(data.get("maxPlayers", 8)),
            game_mode=GameMode(data.get("gameMode", GameMode.SANDBOX.value)),
            difficulty=Difficulty(data.get("difficulty", Difficulty.NORMAL.value)),
            settings=GameSettings.from_dict(data.get("settings") or {}),
            created_by=data.get("createdBy"),
            current_scenario=data.get("currentScenario"),
            created_at=parse_datetime(data.get("createdAt")) or utc_now(),
            updated_at=parse_datetime(data.get("updatedAt")) or utc_now(),
        )


@dataclass
class Player:
    """A participant's roster entry in one session"""
    id: str
    session_id: str
    user_id: str                 # Transport connection currently bound to the player
    station: StationType
    role: PlayerRole = PlayerRole.PLAYER
    status: PlayerStatus = PlayerStatus.CONNECTED
    name: str = "Player"
    token: Optional[str] = None  # Stable resume token, only ever sent to its owner
    joined_at: datetime = field(default_factory=utc_now)
    last_activity: datetime = field(default_factory=utc_now)

    @property
    def is_connected(self) -> bool:
        return self.status == PlayerStatus.CONNECTED

    def public(self) -> "Player":
        """Copy of this player without the resume token."""
        return Player(**{**self.__dict__, "token": None})

    def to_dict(self, include_token: bool = False) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        result = {
            "id": self.id,
            "sessionId": self.session_id,
            "userId": self.user_id,
            "station": self.station.value,
            "role": self.role.value,
            "status": self.status.value,
            "name": self.name,
            "joinedAt": self.joined_at.isoformat(),
            "lastActivity": self.last_activity.isoformat(),
        }
        if include_token and self.token is not None:
            result["token"] = self.token
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Player":
        return cls(
            id=data["id"],
            session_id=data["sessionId"],
            user_id=data["userId"],
            station=StationType(data["station"]),
            role=PlayerRole(data.get("role", PlayerRole.PLAYER.value)),
            status=PlayerStatus(data.get("status", PlayerStatus.CONNECTED.value)),
            name=data.get("name", "Player"),
            token=data.get("token"),
            joined_at=parse_datetime(data.get("joinedAt")) or utc_now(),
            last_activity=parse_datetime(data.get("lastActivity")) or utc_now(),
        )


def players_to_list(players: List[Player], include_token: bool = False) -> List[Dict[str, Any]]:
    return [p.to_dict(include_token=include_token) for p in players]
