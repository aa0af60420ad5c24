"""
Engineer station action handlers.

Power distribution, repair queue, emergency power and diagnostics. Only
``engineering`` is touched.

Power allocations are kept within the reactor ceiling: ``totalPower``,
doubled while emergency power is on. Raising one allocation past the
ceiling scales the other consumers down proportionally.
"""

from typing import Any, Dict, Iterable
import logging
import math

from bridge_server.state.factory import POWER_SYSTEMS
from bridge_server.state.models import GameState

from .action_processor import as_mapping, as_number, as_text, clamp
from .station_types import StationType

logger = logging.getLogger(__name__)

MAX_ALLOCATION = 100
EMERGENCY_POWER_MULTIPLIER = 2
REPAIR_PRIORITIES = ("low", "normal", "high", "critical")
DEFAULT_REPAIR_MINUTES = 10


def power_ceiling(power: Dict[str, Any]) -> float:
    multiplier = EMERGENCY_POWER_MULTIPLIER if power["emergencyPower"] else 1
    return power["totalPower"] * multiplier


def _scale_down(allocations: Dict[str, Any], names: Iterable[str], budget: float) -> None:
    """Shrink ``names`` proportionally so they sum to at most ``budget``."""
    names = list(names)
    current = sum(allocations[name] for name in names)
    if current <= budget:
        return
    factor = max(budget, 0) / current
    for name in names:
        allocations[name] = math.floor(allocations[name] * factor * 100) / 100


def diagnostic_status(health: float) -> str:
    if health >= 75:
        return "healthy"
    if health >= 50:
        return "warning"
    if health >= 25:
        return "error"
    return "critical"


def register_engineer_actions(processor):
    """Register engineer actions with the processor."""

    def set_power_allocation(state: GameState, value: Any) -> bool:
        request = as_mapping(value)
        if request is None:
            return False
        system = request.get("system")
        power = as_number(request.get("power"))
        if system not in POWER_SYSTEMS or power is None:
            return False

        distribution = state.engineering["powerDistribution"]
        allocations = distribution["powerAllocations"]
        ceiling = power_ceiling(distribution)
        requested = clamp(power, 0, min(MAX_ALLOCATION, ceiling))

        others = [name for name in POWER_SYSTEMS if name != system]
        _scale_down(allocations, others, ceiling - requested)
        allocations[system] = requested
        return True

    def initiate_repair(state: GameState, value: Any) -> bool:
        request = as_mapping(value)
        system = as_text(request.get("system")) if request is not None else as_text(value)
        if system is None:
            return False
        request = request or {}

        priority = request.get("priority")
        estimated = as_number(request.get("estimatedTime"))
        state.engineering["repairQueue"].append({
            "id": f"repair_{processor.id_factory()}",
            "system": system,
            "priority": priority if priority in REPAIR_PRIORITIES else "normal",
            "estimatedTime": estimated if estimated and estimated > 0 else DEFAULT_REPAIR_MINUTES,
            "progress": 0,
            "assignedCrew": 1,
            "requiredParts": [],
            "status": "queued",
        })
        return True

    def toggle_emergency_power(state: GameState, value: Any) -> bool:
        distribution = state.engineering["powerDistribution"]
        distribution["emergencyPower"] = not distribution["emergencyPower"]
        if not distribution["emergencyPower"]:
            _scale_down(distribution["powerAllocations"], POWER_SYSTEMS, power_ceiling(distribution))
        return True

    def run_diagnostics(state: GameState, value: Any) -> bool:
        now = processor.clock()
        report = []
        for name, component in state.systems.items():
            health = component.get("health", 0)
            report.append({
                "system": name,
                "status": diagnostic_status(health),
                "message": f"{name} at {health}% integrity, {component.get('status', 'unknown')}",
                "timestamp": now,
                "autoRepair": False,
            })
        state.engineering["diagnostics"] = report
        return True

    def clear_diagnostics(state: GameState, value: Any) -> bool:
        state.engineering["diagnostics"] = []
        return True

    processor.register_action(StationType.ENGINEER, "set_power_allocation", set_power_allocation)
    processor.register_action(StationType.ENGINEER, "initiate_repair", initiate_repair)
    processor.register_action(StationType.ENGINEER, "toggle_emergency_power", toggle_emergency_power)
    processor.register_action(StationType.ENGINEER, "run_diagnostics", run_diagnostics)
    processor.register_action(StationType.ENGINEER, "clear_diagnostics", clear_diagnostics)

    logger.debug("Registered engineer actions")
