"""
Station action processing.

Maps ``(state, station, action, value)`` to a new state. Each station
registers one handler per action it understands; a handler mutates a
private copy of the state and reports whether it changed anything.

Unknown actions and values of the wrong shape are ignored rather than
rejected, so newer consoles can send actions this server does not know
yet. ``process`` returns None whenever there is nothing to save.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional
import logging
import math
import uuid

from bridge_server.state.models import GameState, utc_now

from .station_types import StationType, get_station_actions

logger = logging.getLogger(__name__)

# Signature: (working_state, value) -> applied
ActionHandler = Callable[[GameState, Any], bool]


def _new_id() -> str:
    return str(uuid.uuid4())


# ----------------------------------------------------------------------
# Value coercion shared by the station handlers
# ----------------------------------------------------------------------

def as_number(value: Any) -> Optional[float]:
    """Return ``value`` as a finite number, or None if it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return None
    else:
        return None
    if isinstance(number, float) and not math.isfinite(number):
        return None
    return number


def clamp(value, low, high):
    return max(low, min(high, value))


def as_text(value: Any) -> Optional[str]:
    """Return a non-empty string, or None."""
    if isinstance(value, str) and value.strip():
        return value
    return None


def as_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    return value if isinstance(value, Mapping) else None


def field_or_value(value: Any, *names: str) -> Any:
    """
    Accept either a bare value or an object carrying it.

    ``5`` and ``{"value": 5}`` both yield 5 for ``field_or_value(v, "value")``.
    """
    if isinstance(value, Mapping):
        for name in names:
            if name in value:
                return value[name]
        return None
    return value


class ActionProcessor:
    """
    Dispatches station actions to registered handlers.

    Handlers are registered per station by the ``register_*_actions``
    functions of the station modules.
    """

    def __init__(
        self,
        id_factory: Callable[[], str] = _new_id,
        clock: Callable[[], datetime] = utc_now,
        register_defaults: bool = True,
    ):
        self.id_factory = id_factory
        self.clock = clock
        self.handlers: Dict[StationType, Dict[str, ActionHandler]] = {}
        if register_defaults:
            register_station_actions(self)

    def register_action(self, station: StationType, action: str, handler: ActionHandler):
        """
        Register the handler for one station action.

        Raises:
            ValueError: If the station's definition does not list the action
        """
        if action not in get_station_actions(station):
            raise ValueError(f"{action} is not an action of station {station.value}")
        self.handlers.setdefault(station, {})[action] = handler

    def has_action(self, station: StationType, action: str) -> bool:
        return action in self.handlers.get(station, {})

    def handles_station(self, station: StationType) -> bool:
        return bool(self.handlers.get(station))

    def process(self, state: GameState, station: StationType, action: str, value: Any) -> Optional[GameState]:
        """
        Apply one station action.

        Args:
            state: Current state (not modified)
            station: Station domain the action belongs to
            action: Action name
            value: Action payload as sent by the console

        Returns:
            The new state, or None if the station has no actions, the
            action is unknown, or the handler ignored the value
        """
        station_handlers = self.handlers.get(station)
        if not station_handlers:
            logger.debug(f"No action handlers for station {getattr(station, 'value', station)}")
            return None

        handler = station_handlers.get(action)
        if handler is None:
            logger.debug(f"Ignoring unknown {station.value} action {action!r}")
            return None

        working = state.copy()
        if not handler(working, value):
            logger.debug(f"{station.value}.{action} ignored value {value!r}")
            return None
        return working


def register_station_actions(processor: ActionProcessor):
    """Register the handlers of every crew station."""
    from .pilot_actions import register_pilot_actions
    from .gunner_actions import register_gunner_actions
    from .engineer_actions import register_engineer_actions
    from .commander_actions import register_commander_actions
    from .comms_actions import register_comms_actions

    register_pilot_actions(processor)
    register_gunner_actions(processor)
    register_engineer_actions(processor)
    register_commander_actions(processor)
    register_comms_actions(processor)
