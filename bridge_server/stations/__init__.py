"""
Bridge crew stations.

Station and role definitions live here; the per-station action handlers
and the ActionProcessor that dispatches to them are in
``bridge_server.stations.action_processor``.
"""

from .station_types import (
    StationType,
    PlayerRole,
    PlayerStatus,
    StationDefinition,
    STATION_DEFINITIONS,
    parse_station,
    get_station_actions,
    get_gm_notification,
    is_exclusive,
    role_for_station,
)

__all__ = [
    'StationType',
    'PlayerRole',
    'PlayerStatus',
    'StationDefinition',
    'STATION_DEFINITIONS',
    'parse_station',
    'get_station_actions',
    'get_gm_notification',
    'is_exclusive',
    'role_for_station',
]
