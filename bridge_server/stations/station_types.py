"""
Station types and definitions for the bridge crew.

Defines the crew stations, the roles a participant can hold, and which
actions each station's console may send.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional


class StationType(Enum):
    """Bridge consoles - each player station can be held by one connected player"""
    PILOT = "pilot"          # Navigation, speed, heading, hyperspace
    GUNNER = "gunner"        # Turbolasers, missiles, targeting
    ENGINEER = "engineer"    # Power distribution, repairs, diagnostics
    COMMANDER = "commander"  # Alert level, battle stations, mission status
    COMMS = "comms"          # Frequencies, messages, emergency beacon
    GM = "gm"                # Game master console, exempt from exclusivity


class PlayerRole(Enum):
    """Authority a participant holds in a session"""
    PLAYER = "player"        # Acts for their own station only
    GM = "gm"                # May act for any station and patch state directly
    SPECTATOR = "spectator"  # Receives state, cannot act


class PlayerStatus(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    AWAY = "away"


@dataclass(frozen=True)
class StationDefinition:
    """Defines what a station console can do"""
    station_type: StationType
    actions: FrozenSet[str]                  # Actions the processor recognizes
    gm_notifications: Dict[str, str] = field(default_factory=dict)  # action -> notification type
    exclusive: bool = True                   # At most one connected player


# Station definitions - this is the source of truth for station capabilities
STATION_DEFINITIONS: Dict[StationType, StationDefinition] = {
    StationType.PILOT: StationDefinition(
        station_type=StationType.PILOT,
        actions=frozenset({
            "set_speed",
            "set_heading_x",
            "set_heading_y",
            "set_heading_z",
            "toggle_autopilot",
            "initiate_hyperspace",
        }),
        gm_notifications={
            "set_speed": "navigation_update",
            "set_heading_x": "navigation_update",
            "set_heading_y": "navigation_update",
            "set_heading_z": "navigation_update",
        },
    ),

    StationType.GUNNER: StationDefinition(
        station_type=StationType.GUNNER,
        actions=frozenset({
            "fire_turbolaser",
            "select_target",
            "launch_missile",
            "select_missile_type",
        }),
    ),

    StationType.ENGINEER: StationDefinition(
        station_type=StationType.ENGINEER,
        actions=frozenset({
            "set_power_allocation",
            "initiate_repair",
            "toggle_emergency_power",
            "run_diagnostics",
            "clear_diagnostics",
        }),
    ),

    StationType.COMMANDER: StationDefinition(
        station_type=StationType.COMMANDER,
        actions=frozenset({
            "set_alert_level",
            "toggle_battle_stations",
            "set_mission_status",
            "update_tactical_zoom",
        }),
    ),

    StationType.COMMS: StationDefinition(
        station_type=StationType.COMMS,
        actions=frozenset({
            "set_frequency",
            "send_message",
            "toggle_emergency_beacon",
            "set_signal_strength",
            "set_interference",
        }),
    ),

    StationType.GM: StationDefinition(
        station_type=StationType.GM,
        actions=frozenset(),
        exclusive=False,
    ),
}


def parse_station(value) -> Optional[StationType]:
    """Return the StationType named by ``value`` or None."""
    if isinstance(value, StationType):
        return value
    try:
        return StationType(value)
    except ValueError:
        return None


def get_station_actions(station: StationType) -> FrozenSet[str]:
    """
    Get all actions a station's console may send.

    Args:
        station: The station type

    Returns:
        Set of action names the processor handles for this station
    """
    return STATION_DEFINITIONS[station].actions


def get_gm_notification(station: StationType, action: str) -> Optional[str]:
    """
    Get the GM notification type raised by an action, if any.

    Args:
        station: Station the action was applied to
        action: Action name

    Returns:
        Notification type for the GM console, or None for quiet actions
    """
    return STATION_DEFINITIONS[station].gm_notifications.get(action)


def is_exclusive(station: StationType) -> bool:
    """Whether only one connected player may hold the station."""
    return STATION_DEFINITIONS[station].exclusive


def role_for_station(station: StationType) -> PlayerRole:
    """Default role granted when joining a station."""
    return PlayerRole.GM if station == StationType.GM else PlayerRole.PLAYER
