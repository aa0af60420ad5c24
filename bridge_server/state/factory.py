"""
Initial game state construction.

This module is the single source of truth for what a brand-new ship
looks like. Every subsystem sub-document is built here; action handlers
and consoles never invent missing shapes on the fly.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import uuid

from .models import AlertLevel, GameState, MissionStatus, utc_now

# Consumers sharing the reactor; the defaults below sum to DEFAULT_TOTAL_POWER
POWER_SYSTEMS = ("weapons", "shields", "engines", "sensors", "lifeSupport", "communications")

DEFAULT_TOTAL_POWER = 100
DEFAULT_POWER_ALLOCATIONS = {
    "weapons": 20,
    "shields": 25,
    "engines": 25,
    "sensors": 10,
    "lifeSupport": 15,
    "communications": 5,
}

SHIP_SYSTEMS = (
    "hull",
    "shields",
    "weapons",
    "engines",
    "power",
    "communications",
    "sensors",
    "lifeSupport",
)

MISSILE_AMMO_FIELDS = {
    "proton": "protonTorpedoes",
    "concussion": "concussionMissiles",
    "ion": "ionTorpedoes",
}

EMERGENCY_FREQUENCY = 121.5
COMMAND_FREQUENCY = 243.0

# Placeholder for date/time slots in the item shapes below
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Shape of one item of each list the ship starts with empty, by document
# path. Lists that start with items take their first item as the shape.
LIST_ITEM_SHAPES = {
    "communications.messageQueue": {
        "id": "",
        "from": "",
        "to": "",
        "content": "",
        "timestamp": EPOCH,
        "priority": "normal",
        "encrypted": False,
        "acknowledged": False,
    },
    "engineering.repairQueue": {
        "id": "",
        "system": "",
        "priority": "normal",
        "estimatedTime": 0,
        "progress": 0,
        "assignedCrew": 0,
        "requiredParts": [],
        "status": "queued",
    },
    "engineering.diagnostics": {
        "system": "",
        "status": "healthy",
        "message": "",
        "timestamp": EPOCH,
        "autoRepair": False,
    },
    "command.tacticalDisplay.contacts": {
        "id": "",
        "type": "unknown",
        "position": {"x": 0, "y": 0, "z": 0},
        "velocity": {"x": 0, "y": 0, "z": 0},
        "classification": "",
        "threat": "none",
        "lastUpdate": EPOCH,
    },
}


def _new_id() -> str:
    return str(uuid.uuid4())


def _vector(x: float = 0, y: float = 0, z: float = 0) -> Dict[str, float]:
    return {"x": x, "y": y, "z": z}


def create_system_component() -> Dict[str, Any]:
    return {
        "health": 100,
        "power": 100,
        "efficiency": 100,
        "temperature": 25,
        "status": "operational",
        "lastDamaged": None,
    }


def create_initial_systems() -> Dict[str, Any]:
    return {name: create_system_component() for name in SHIP_SYSTEMS}


def create_initial_navigation() -> Dict[str, Any]:
    return {
        "position": _vector(),
        "heading": _vector(),
        "velocity": _vector(),
        "speed": 0,
        "altitude": 1000,
        "hyperspaceStatus": "ready",
        "hyperspaceCharge": 100,
        "fuel": 100,
        "autopilot": False,
        "navigationLock": False,
        "proximityAlerts": [],
    }


def _weapon(weapon_type: str, range_: int, accuracy: int, damage: int,
            cooldown: int, id_factory: Callable[[], str]) -> Dict[str, Any]:
    return {
        "id": id_factory(),
        "type": weapon_type,
        "status": "ready",
        "charge": 100,
        "heat": 0,
        "range": range_,
        "accuracy": accuracy,
        "damage": damage,
        "cooldownTime": cooldown,
    }


def create_initial_weapons(id_factory: Callable[[], str] = _new_id) -> Dict[str, Any]:
    return {
        "turbolasers": [
            _weapon("turbolaser", 5000, 85, 50, 3, id_factory),
            _weapon("turbolaser", 5000, 85, 50, 3, id_factory),
        ],
        "missiles": {
            "protonTorpedoes": 12,
            "concussionMissiles": 8,
            "ionTorpedoes": 4,
            "launcherStatus": "ready",
            "lockStatus": "none",
            "selectedMissileType": "proton",
        },
        "ionCannons": [
            _weapon("ion_cannon", 3000, 75, 30, 5, id_factory),
        ],
        "targeting": {
            "currentTarget": None,
            "availableTargets": [],
            "scannerRange": 10000,
            "resolution": 85,
            "jamming": 0,
        },
    }


def create_initial_communications() -> Dict[str, Any]:
    return {
        "primaryFrequency": EMERGENCY_FREQUENCY,
        "secondaryFrequency": COMMAND_FREQUENCY,
        "signalStrength": 100,
        "interference": 0,
        "transmissionStatus": "standby",
        "messageQueue": [],
        "activeChannels": [
            {
                "frequency": EMERGENCY_FREQUENCY,
                "name": "Command",
                "encrypted": False,
                "participants": [],
                "active": True,
            },
        ],
        "emergencyBeacon": False,
    }


def create_initial_engineering() -> Dict[str, Any]:
    return {
        "powerDistribution": {
            "totalPower": DEFAULT_TOTAL_POWER,
            "reactorOutput": 100,
            "powerAllocations": dict(DEFAULT_POWER_ALLOCATIONS),
            "batteryBackup": 100,
            "emergencyPower": False,
        },
        "repairQueue": [],
        "diagnostics": [],
    }


def create_initial_command(id_factory: Callable[[], str] = _new_id) -> Dict[str, Any]:
    return {
        "battleStations": False,
        "generalQuarters": False,
        "commandOverride": False,
        "tacticalDisplay": {
            "zoom": 1.0,
            "center": _vector(),
            "overlays": {
                "threats": True,
                "friendlies": True,
                "navigation": True,
                "communications": False,
            },
            "contacts": [],
        },
        "missionObjectives": [
            {
                "id": id_factory(),
                "title": "System Initialization",
                "description": "Bring all ship systems online and prepare for mission briefing",
                "status": "active",
                "priority": "normal",
                "timeLimit": None,
                "rewards": ["Experience Points"],
            },
        ],
        "crewStatus": [],
    }


def create_initial_environment(id_factory: Callable[[], str] = _new_id) -> Dict[str, Any]:
    return {
        "sector": "Coruscant System",
        "region": "Core Worlds",
        "hazards": [],
        "celestialBodies": [
            {
                "id": id_factory(),
                "name": "Coruscant",
                "type": "planet",
                "position": _vector(0, 0, -50000),
                "mass": 1.0,
                "radius": 6371,
                "gravitationalPull": 9.8,
            },
        ],
        "spatialAnomalies": [],
    }


def create_initial_state(
    session_id: str,
    now: Optional[datetime] = None,
    id_factory: Callable[[], str] = _new_id,
) -> GameState:
    """
    Create the initial game state for a new session.

    Args:
        session_id: Session the state belongs to
        now: Creation time (defaults to the current UTC time)
        id_factory: Generator for weapon, objective and body ids

    Returns:
        A fully formed GameState at version 1
    """
    if not session_id:
        raise ValueError("session_id is required")
    return GameState(
        session_id=session_id,
        mission_status=MissionStatus.INITIALIZE,
        alert_level=AlertLevel.GREEN,
        systems=create_initial_systems(),
        navigation=create_initial_navigation(),
        weapons=create_initial_weapons(id_factory),
        communications=create_initial_communications(),
        engineering=create_initial_engineering(),
        command=create_initial_command(id_factory),
        environment=create_initial_environment(id_factory),
        timestamp=now or utc_now(),
        version=1,
    )
