"""
Pilot station action handlers.

Speed, heading, autopilot and hyperspace. Only ``navigation`` is touched.
"""

from typing import Any
import logging

from bridge_server.state.models import GameState

from .action_processor import as_number, clamp, field_or_value
from .station_types import StationType

logger = logging.getLogger(__name__)

MAX_SPEED = 100


def register_pilot_actions(processor):
    """Register pilot actions with the processor."""

    def set_speed(state: GameState, value: Any) -> bool:
        speed = as_number(field_or_value(value, "speed", "value"))
        if speed is None:
            return False
        state.navigation["speed"] = clamp(speed, 0, MAX_SPEED)
        return True

    def _heading_setter(axis: str):
        def set_heading(state: GameState, value: Any) -> bool:
            heading = as_number(field_or_value(value, axis, "value"))
            if heading is None:
                return False
            state.navigation["heading"][axis] = heading
            return True
        return set_heading

    def toggle_autopilot(state: GameState, value: Any) -> bool:
        state.navigation["autopilot"] = not state.navigation["autopilot"]
        return True

    def initiate_hyperspace(state: GameState, value: Any) -> bool:
        if state.navigation["hyperspaceStatus"] != "ready":
            return False
        state.navigation["hyperspaceStatus"] = "charging"
        return True

    processor.register_action(StationType.PILOT, "set_speed", set_speed)
    for axis in ("x", "y", "z"):
        processor.register_action(StationType.PILOT, f"set_heading_{axis}", _heading_setter(axis))
    processor.register_action(StationType.PILOT, "toggle_autopilot", toggle_autopilot)
    processor.register_action(StationType.PILOT, "initiate_hyperspace", initiate_hyperspace)

    logger.debug("Registered pilot actions")
