"""
Broadcast scopes.

A connection that joined a session belongs to two rooms: the whole
session, and the (session, station) sub-room used for console-specific
notifications such as the GM feed.
"""

from typing import Dict, Set

from bridge_server.stations.station_types import StationType


def session_room(session_id: str) -> str:
    return session_id


def station_room(session_id: str, station: StationType) -> str:
    return f"{session_id}:{station.value}"


class RoomRegistry:
    """Tracks room membership by connection id"""

    def __init__(self):
        self._members: Dict[str, Set[str]] = {}
        self._rooms_of: Dict[str, Set[str]] = {}

    def join(self, connection_id: str, room: str):
        self._members.setdefault(room, set()).add(connection_id)
        self._rooms_of.setdefault(connection_id, set()).add(room)

    def leave(self, connection_id: str, room: str):
        members = self._members.get(room)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._members[room]
        rooms = self._rooms_of.get(connection_id)
        if rooms is not None:
            rooms.discard(room)
            if not rooms:
                del self._rooms_of[connection_id]

    def leave_all(self, connection_id: str) -> Set[str]:
        """Remove a connection from every room. Returns the rooms it left."""
        rooms = set(self._rooms_of.get(connection_id, ()))
        for room in rooms:
            self.leave(connection_id, room)
        return rooms

    def members(self, room: str) -> Set[str]:
        return set(self._members.get(room, ()))

    def rooms_of(self, connection_id: str) -> Set[str]:
        return set(self._rooms_of.get(connection_id, ()))

    def room_count(self) -> int:
        return len(self._members)
