"""
Bridge Protocol v1 - Message Envelope Definitions.

This module formalizes the wire protocol between station consoles and
the session server. Every frame in either direction is one JSON object
wrapped in the same envelope for reliable parsing and forward
compatibility:

    {"type": "<event name>", "data": <payload>, "timestamp": <epoch>, "version": "1.0"}

Transport: WebSocket text frames, one envelope per frame.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional
import json
import time

from .config import PROTOCOL_VERSION


class EventType(Enum):
    """Names of the envelopes exchanged over the real-time channel."""
    # Client -> server
    JOIN_SESSION = "join_session"
    CREATE_SESSION = "create_session"
    LEAVE_SESSION = "leave_session"
    PLAYER_ACTION = "player_action"
    GM_UPDATE = "gm_update"
    SET_SESSION_STATUS = "set_session_status"
    REMOVE_PLAYER = "remove_player"
    PING = "ping"

    # Server -> client
    CONNECTED = "connected"
    STATE_UPDATE = "state_update"
    SESSION_JOINED = "session_joined"
    SESSION_CREATED = "session_created"
    SESSION_LEFT = "session_left"
    SESSION_UPDATE = "session_update"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    GM_NOTIFICATION = "gm_notification"
    ERROR = "error"
    PONG = "pong"


INBOUND_EVENTS = frozenset({
    EventType.JOIN_SESSION,
    EventType.CREATE_SESSION,
    EventType.LEAVE_SESSION,
    EventType.PLAYER_ACTION,
    EventType.GM_UPDATE,
    EventType.SET_SESSION_STATUS,
    EventType.REMOVE_PLAYER,
    EventType.PING,
})


class ErrorCode(Enum):
    """Standardized error codes carried by ``error`` envelopes."""
    # Request shape (4xx equivalent)
    BAD_REQUEST = "BAD_REQUEST"             # Malformed frame
    MISSING_PARAM = "MISSING_PARAM"         # Required field missing
    INVALID_PARAM = "INVALID_PARAM"         # Field value invalid
    UNKNOWN_EVENT = "UNKNOWN_EVENT"         # Envelope name not recognized

    # Membership
    ALREADY_JOINED = "ALREADY_JOINED"       # Connection already belongs to a session
    NOT_JOINED = "NOT_JOINED"               # No player bound to this connection
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_EXISTS = "SESSION_EXISTS"
    STATE_NOT_FOUND = "STATE_NOT_FOUND"
    PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
    SESSION_FULL = "SESSION_FULL"
    STATION_OCCUPIED = "STATION_OCCUPIED"
    SPECTATORS_DISABLED = "SPECTATORS_DISABLED"
    INVALID_TOKEN = "INVALID_TOKEN"

    # Authorization
    UNAUTHORIZED = "UNAUTHORIZED"           # Station not owned and not GM
    GM_REQUIRED = "GM_REQUIRED"

    # State mutation
    INVALID_PATCH = "INVALID_PATCH"
    STATE_CONFLICT = "STATE_CONFLICT"       # Version moved on; retries exhausted

    # Server errors (5xx equivalent)
    SESSION_CREATE_FAILED = "SESSION_CREATE_FAILED"
    JOIN_FAILED = "JOIN_FAILED"
    STORAGE_ERROR = "STORAGE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Human readable defaults for rejection codes relayed to a single client
ERROR_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.SESSION_NOT_FOUND: "Session not found",
    ErrorCode.STATE_NOT_FOUND: "Game state not found",
    ErrorCode.PLAYER_NOT_FOUND: "Player not found",
    ErrorCode.SESSION_FULL: "Session is full",
    ErrorCode.STATION_OCCUPIED: "Station already occupied",
    ErrorCode.SPECTATORS_DISABLED: "Spectators are not allowed in this session",
    ErrorCode.INVALID_TOKEN: "Resume token does not match a player in this session",
    ErrorCode.NOT_JOINED: "Join a session first",
    ErrorCode.ALREADY_JOINED: "Connection already joined a session",
    ErrorCode.UNAUTHORIZED: "Unauthorized station access",
    ErrorCode.GM_REQUIRED: "GM access required",
    ErrorCode.STATE_CONFLICT: "State changed concurrently, please retry",
    ErrorCode.STORAGE_ERROR: "Storage unavailable",
    ErrorCode.JOIN_FAILED: "Could not join session",
}


def default_message(code: ErrorCode) -> str:
    return ERROR_MESSAGES.get(code, code.value.replace("_", " ").capitalize())


@dataclass
class WSEnvelope:
    """
    WebSocket envelope.

    Wraps every payload with its event name and a server timestamp so
    browser consoles can dispatch on ``type``.
    """
    type: EventType
    data: Any = None
    timestamp: Optional[float] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = time.time()

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp,
            "version": PROTOCOL_VERSION,
        }

    def to_wire(self) -> str:
        """Serialize to wire format (JSON)."""
        return json.dumps(self.to_dict(), default=json_default)

    @classmethod
    def event(cls, event_type: EventType, data: Any = None) -> "WSEnvelope":
        return cls(type=event_type, data=data)

    @classmethod
    def error(cls, code: ErrorCode, message: Optional[str] = None) -> "WSEnvelope":
        """Create an error envelope for the requesting connection."""
        return cls(
            type=EventType.ERROR,
            data={"message": message or default_message(code), "code": code.value},
        )

    @classmethod
    def pong(cls, client_timestamp: Optional[float] = None) -> "WSEnvelope":
        """Create a pong response for latency measurement."""
        return cls(
            type=EventType.PONG,
            data={"timestamp": client_timestamp, "serverTime": time.time()},
        )


@dataclass
class InboundMessage:
    """A parsed client frame."""
    type: EventType
    data: Dict[str, Any]


def json_default(value: Any) -> Any:
    """
    Default JSON serializer for complex types.

    Handles datetimes, enums, sets and objects exposing ``to_dict``.
    """
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_dict") and callable(value.to_dict):
        return value.to_dict()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_json(payload: Any) -> str:
    """Serialize a document for storage or the wire."""
    return json.dumps(payload, default=json_default, separators=(",", ":"))


def parse_message(raw) -> InboundMessage:
    """
    Parse a client frame.

    Accepts ``type`` or ``event`` as the envelope name. When there is no
    ``data`` object the remaining top-level keys are taken as the payload.

    Raises:
        ValueError: If JSON is invalid, the name is missing, or the payload
            is not an object
        LookupError: If the envelope name is not a known inbound event
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValueError(f"Invalid UTF-8: {e}")
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}")

    if not isinstance(frame, dict):
        raise ValueError("Frame must be a JSON object")

    name = frame.get("type") or frame.get("event")
    if not name:
        raise ValueError("Missing 'type' field")

    try:
        event_type = EventType(name)
    except ValueError:
        raise LookupError(name)
    if event_type not in INBOUND_EVENTS:
        raise LookupError(name)

    if "data" in frame:
        data = frame["data"]
        if data is None:
            data = {}
    else:
        data = {k: v for k, v in frame.items() if k not in ("type", "event", "timestamp", "version")}
    if not isinstance(data, dict):
        raise ValueError("Payload must be a JSON object")

    return InboundMessage(type=event_type, data=data)
