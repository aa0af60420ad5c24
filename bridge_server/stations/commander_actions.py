"""
Commander station action handlers.

Alert level, mission status, battle stations and the tactical display.
Touches ``alertLevel``, ``missionStatus`` and ``command`` only.
"""

from typing import Any
import logging

from bridge_server.state.models import AlertLevel, GameState, MissionStatus

from .action_processor import as_number, clamp, field_or_value
from .station_types import StationType

logger = logging.getLogger(__name__)

MIN_ZOOM = 0.1
MAX_ZOOM = 10


def _enum_value(enum_type, value):
    try:
        return enum_type(value)
    except (TypeError, ValueError):
        return None


def register_commander_actions(processor):
    """Register commander actions with the processor."""

    def set_alert_level(state: GameState, value: Any) -> bool:
        level = _enum_value(AlertLevel, field_or_value(value, "alertLevel", "level", "value"))
        if level is None:
            return False
        state.alert_level = level
        return True

    def toggle_battle_stations(state: GameState, value: Any) -> bool:
        state.command["battleStations"] = not state.command["battleStations"]
        return True

    def set_mission_status(state: GameState, value: Any) -> bool:
        status = _enum_value(MissionStatus, field_or_value(value, "missionStatus", "status", "value"))
        if status is None:
            return False
        state.mission_status = status
        return True

    def update_tactical_zoom(state: GameState, value: Any) -> bool:
        zoom = as_number(field_or_value(value, "zoom", "value"))
        if zoom is None:
            return False
        state.command["tacticalDisplay"]["zoom"] = clamp(zoom, MIN_ZOOM, MAX_ZOOM)
        return True

    processor.register_action(StationType.COMMANDER, "set_alert_level", set_alert_level)
    processor.register_action(StationType.COMMANDER, "toggle_battle_stations", toggle_battle_stations)
    processor.register_action(StationType.COMMANDER, "set_mission_status", set_mission_status)
    processor.register_action(StationType.COMMANDER, "update_tactical_zoom", update_tactical_zoom)

    logger.debug("Registered commander actions")
