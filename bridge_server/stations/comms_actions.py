"""
Communications station action handlers.

Frequencies, the message queue, the emergency beacon and signal
conditions. Only ``communications`` is touched.
"""

from typing import Any
import logging

from bridge_server.state.models import GameState

from .action_processor import as_mapping, as_number, as_text, clamp, field_or_value
from .station_types import StationType

logger = logging.getLogger(__name__)

MESSAGE_PRIORITIES = ("low", "normal", "high", "emergency")
DEFAULT_SENDER = "Bridge"
DEFAULT_RECIPIENT = "All Stations"


def register_comms_actions(processor):
    """Register comms actions with the processor."""

    def set_frequency(state: GameState, value: Any) -> bool:
        frequency = as_number(field_or_value(value, "frequency", "value"))
        if frequency is None or frequency <= 0:
            return False
        state.communications["primaryFrequency"] = frequency
        return True

    def send_message(state: GameState, value: Any) -> bool:
        request = as_mapping(value)
        if request is None or as_text(request.get("content")) is None:
            return False

        priority = request.get("priority")
        state.communications["messageQueue"].append({
            "id": f"msg_{processor.id_factory()}",
            "from": as_text(request.get("from")) or DEFAULT_SENDER,
            "to": as_text(request.get("to")) or DEFAULT_RECIPIENT,
            "content": request["content"],
            "timestamp": processor.clock(),
            "priority": priority if priority in MESSAGE_PRIORITIES else "normal",
            "encrypted": request.get("encrypted") is True,
            "acknowledged": False,
        })
        return True

    def toggle_emergency_beacon(state: GameState, value: Any) -> bool:
        state.communications["emergencyBeacon"] = not state.communications["emergencyBeacon"]
        return True

    def _percent_setter(field: str):
        def set_percent(state: GameState, value: Any) -> bool:
            level = as_number(field_or_value(value, field, "value"))
            if level is None:
                return False
            state.communications[field] = clamp(level, 0, 100)
            return True
        return set_percent

    processor.register_action(StationType.COMMS, "set_frequency", set_frequency)
    processor.register_action(StationType.COMMS, "send_message", send_message)
    processor.register_action(StationType.COMMS, "toggle_emergency_beacon", toggle_emergency_beacon)
    processor.register_action(StationType.COMMS, "set_signal_strength", _percent_setter("signalStrength"))
    processor.register_action(StationType.COMMS, "set_interference", _percent_setter("interference"))

    logger.debug("Registered comms actions")
