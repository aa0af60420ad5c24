"""
Contract tests for Bridge Protocol v1.

These tests verify that the envelope format is correct and stable.
Any breaking changes to these tests indicate a protocol version bump is needed.
"""

import json
import time
from datetime import datetime, timezone

import pytest

from bridge_server.config import PROTOCOL_VERSION
from bridge_server.protocol import (
    ErrorCode,
    EventType,
    INBOUND_EVENTS,
    WSEnvelope,
    encode_json,
    json_default,
    parse_message,
)
from bridge_server.state.models import AlertLevel


class TestProtocolVersion:
    """Contract tests for protocol version."""

    def test_protocol_version_is_1_0(self):
        """Protocol version should be 1.0 for this implementation."""
        assert PROTOCOL_VERSION == "1.0"


class TestWSEnvelope:
    """Contract tests for WebSocket envelope format."""

    def test_event_envelope_format(self):
        """Envelope should carry type, data, timestamp and version."""
        env = WSEnvelope.event(EventType.CONNECTED, {"socketId": "conn_abc"})
        d = env.to_dict()
        assert d["type"] == "connected"
        assert d["data"] == {"socketId": "conn_abc"}
        assert d["version"] == "1.0"
        assert isinstance(d["timestamp"], float)

    def test_error_envelope_format(self):
        """Error envelope should carry message and code."""
        env = WSEnvelope.error(ErrorCode.STATION_OCCUPIED)
        d = env.to_dict()
        assert d["type"] == "error"
        assert d["data"]["code"] == "STATION_OCCUPIED"
        assert d["data"]["message"] == "Station already occupied"

    def test_error_envelope_custom_message(self):
        env = WSEnvelope.error(ErrorCode.INVALID_PARAM, "station must be one of pilot, gunner")
        assert env.to_dict()["data"]["message"] == "station must be one of pilot, gunner"

    def test_error_envelope_without_registered_message(self):
        """Codes without a registered message still get readable text."""
        env = WSEnvelope.error(ErrorCode.BAD_REQUEST)
        assert env.to_dict()["data"]["message"] == "Bad request"

    def test_pong_envelope_format(self):
        """Pong envelope should echo the client timestamp."""
        client_ts = time.time()
        d = WSEnvelope.pong(client_ts).to_dict()
        assert d["type"] == "pong"
        assert d["data"]["timestamp"] == client_ts
        assert "serverTime" in d["data"]

    def test_to_wire_serializes_datetimes_and_enums(self):
        when = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        env = WSEnvelope.event(EventType.STATE_UPDATE, {"at": when, "alert": AlertLevel.RED})
        data = json.loads(env.to_wire())
        assert data["data"]["at"] == "2024-05-01T12:00:00+00:00"
        assert data["data"]["alert"] == "red"


class TestParseMessage:
    """Contract tests for inbound frame parsing."""

    def test_parse_type_and_data(self):
        msg = parse_message('{"type": "join_session", "data": {"sessionId": "bridge-alpha-1", "station": "pilot"}}')
        assert msg.type == EventType.JOIN_SESSION
        assert msg.data == {"sessionId": "bridge-alpha-1", "station": "pilot"}

    def test_parse_event_alias(self):
        """'event' is accepted as an alternative to 'type'."""
        msg = parse_message('{"event": "ping", "data": {"timestamp": 1}}')
        assert msg.type == EventType.PING
        assert msg.data == {"timestamp": 1}

    def test_parse_top_level_payload(self):
        """Without a data object the other top-level keys are the payload."""
        msg = parse_message('{"type": "player_action", "action": "set_speed", "value": 50, "station": "pilot"}')
        assert msg.data == {"action": "set_speed", "value": 50, "station": "pilot"}

    def test_parse_bytes(self):
        msg = parse_message(b'{"type": "leave_session"}')
        assert msg.type == EventType.LEAVE_SESSION
        assert msg.data == {}

    def test_null_data_is_empty_payload(self):
        assert parse_message('{"type": "ping", "data": null}').data == {}

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError):
            parse_message("not json")

    def test_non_object_frame_raises(self):
        with pytest.raises(ValueError):
            parse_message("[1, 2, 3]")

    def test_missing_type_raises(self):
        with pytest.raises(ValueError):
            parse_message('{"data": {}}')

    def test_non_object_payload_raises(self):
        with pytest.raises(ValueError):
            parse_message('{"type": "gm_update", "data": [1]}')

    def test_unknown_event_raises_lookup_error(self):
        with pytest.raises(LookupError):
            parse_message('{"type": "self_destruct"}')

    def test_outbound_event_is_not_accepted_inbound(self):
        """Clients cannot send server-side events such as state_update."""
        with pytest.raises(LookupError):
            parse_message('{"type": "state_update", "data": {}}')


class TestEventNames:
    """The event names are part of the wire contract."""

    def test_inbound_events(self):
        assert {e.value for e in INBOUND_EVENTS} == {
            "join_session",
            "create_session",
            "leave_session",
            "player_action",
            "gm_update",
            "set_session_status",
            "remove_player",
            "ping",
        }

    def test_outbound_events_exist(self):
        for name in ("connected", "state_update", "player_joined", "player_left",
                     "error", "gm_notification", "session_joined", "session_update"):
            assert EventType(name)


class TestErrorCodes:
    """Contract tests for standardized error codes."""

    def test_all_error_codes_are_strings(self):
        for code in ErrorCode:
            assert isinstance(code.value, str)
            assert code.value == code.name

    def test_error_codes_required_set(self):
        """These error codes must exist for protocol compliance."""
        required_codes = [
            "BAD_REQUEST",
            "UNKNOWN_EVENT",
            "NOT_JOINED",
            "SESSION_NOT_FOUND",
            "SESSION_FULL",
            "STATION_OCCUPIED",
            "UNAUTHORIZED",
            "GM_REQUIRED",
            "INVALID_PATCH",
            "STATE_CONFLICT",
            "INTERNAL_ERROR",
        ]
        existing = {code.value for code in ErrorCode}
        for code in required_codes:
            assert code in existing, f"Missing required error code: {code}"


class TestJsonEncoding:

    def test_json_default_handles_sets_and_tuples(self):
        decoded = json.loads(json.dumps({"tuple": (1, 2), "set": {"a", "b"}}, default=json_default))
        assert decoded["tuple"] == [1, 2]
        assert sorted(decoded["set"]) == ["a", "b"]

    def test_json_default_uses_to_dict(self):
        class Thing:
            def to_dict(self):
                return {"ok": True}

        assert json.loads(encode_json({"thing": Thing()})) == {"thing": {"ok": True}}

    def test_json_default_rejects_unknown_types(self):
        with pytest.raises(TypeError):
            encode_json({"x": object()})

    def test_encode_json_is_compact(self):
        assert encode_json({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'
