"""
Gunner station action handlers.

Turbolaser fire, target selection and the missile rack. Only
``weapons`` is touched.
"""

from typing import Any, Mapping
import logging

from bridge_server.state.factory import MISSILE_AMMO_FIELDS
from bridge_server.state.models import GameState

from .action_processor import as_text, field_or_value
from .station_types import StationType

logger = logging.getLogger(__name__)

TURBOLASER_HEAT_PER_SHOT = 20
MAX_HEAT = 100


def register_gunner_actions(processor):
    """Register gunner actions with the processor."""

    def fire_turbolaser(state: GameState, value: Any) -> bool:
        weapon_id = as_text(field_or_value(value, "weaponId", "id"))
        if weapon_id is None:
            return False
        weapon = next((w for w in state.weapons["turbolasers"] if w.get("id") == weapon_id), None)
        if weapon is None or weapon["status"] != "ready":
            return False
        weapon["status"] = "firing"
        weapon["heat"] = min(MAX_HEAT, weapon["heat"] + TURBOLASER_HEAT_PER_SHOT)
        return True

    def select_target(state: GameState, value: Any) -> bool:
        # A target object, a target id, or null to clear the lock
        if isinstance(value, Mapping):
            target = dict(value)
        elif value is None or as_text(value) is not None:
            target = value
        else:
            return False
        state.weapons["targeting"]["currentTarget"] = target
        return True

    def launch_missile(state: GameState, value: Any) -> bool:
        missiles = state.weapons["missiles"]
        if missiles["launcherStatus"] != "ready":
            return False
        ammo_field = MISSILE_AMMO_FIELDS.get(missiles["selectedMissileType"])
        if ammo_field is None or missiles[ammo_field] <= 0:
            return False
        missiles[ammo_field] -= 1
        return True

    def select_missile_type(state: GameState, value: Any) -> bool:
        missile_type = field_or_value(value, "type", "missileType")
        if not isinstance(missile_type, str) or missile_type not in MISSILE_AMMO_FIELDS:
            return False
        state.weapons["missiles"]["selectedMissileType"] = missile_type
        return True

    processor.register_action(StationType.GUNNER, "fire_turbolaser", fire_turbolaser)
    processor.register_action(StationType.GUNNER, "select_target", select_target)
    processor.register_action(StationType.GUNNER, "launch_missile", launch_missile)
    processor.register_action(StationType.GUNNER, "select_missile_type", select_missile_type)

    logger.debug("Registered gunner actions")
