"""Tests for gunner station actions"""

import pytest

from bridge_server.state.factory import create_initial_state
from bridge_server.stations.action_processor import ActionProcessor
from bridge_server.stations.station_types import StationType


@pytest.fixture
def processor():
    return ActionProcessor()


@pytest.fixture
def state():
    return create_initial_state("bridge-alpha-1")


def gunner(processor, state, action, value=None):
    return processor.process(state, StationType.GUNNER, action, value)


def test_fire_turbolaser(processor, state):
    weapon_id = state.weapons["turbolasers"][0]["id"]

    result = gunner(processor, state, "fire_turbolaser", {"weaponId": weapon_id})

    fired = result.weapons["turbolasers"][0]
    assert fired["status"] == "firing"
    assert fired["heat"] == 20
    assert result.weapons["turbolasers"][1]["status"] == "ready"


def test_fire_accepts_bare_id(processor, state):
    weapon_id = state.weapons["turbolasers"][1]["id"]
    result = gunner(processor, state, "fire_turbolaser", weapon_id)
    assert result.weapons["turbolasers"][1]["status"] == "firing"


def test_fire_requires_ready_weapon(processor, state):
    weapon_id = state.weapons["turbolasers"][0]["id"]
    fired = gunner(processor, state, "fire_turbolaser", {"weaponId": weapon_id})
    assert gunner(processor, fired, "fire_turbolaser", {"weaponId": weapon_id}) is None


def test_fire_heat_capped(processor, state):
    weapon = state.weapons["turbolasers"][0]
    weapon["heat"] = 95
    result = gunner(processor, state, "fire_turbolaser", {"weaponId": weapon["id"]})
    assert result.weapons["turbolasers"][0]["heat"] == 100


@pytest.mark.parametrize("value", [None, {}, {"weaponId": "nope"}, 42])
def test_fire_ignores_unknown_weapon(processor, state, value):
    assert gunner(processor, state, "fire_turbolaser", value) is None


def test_select_target(processor, state):
    target = {"id": "tie-1", "type": "ship", "threat": "high"}
    result = gunner(processor, state, "select_target", target)
    assert result.weapons["targeting"]["currentTarget"] == target


def test_select_target_by_id_and_clear(processor, state):
    locked = gunner(processor, state, "select_target", "tie-1")
    assert locked.weapons["targeting"]["currentTarget"] == "tie-1"
    cleared = gunner(processor, locked, "select_target", None)
    assert cleared.weapons["targeting"]["currentTarget"] is None


def test_select_target_ignores_numbers(processor, state):
    assert gunner(processor, state, "select_target", 7) is None


def test_launch_missile_uses_selected_type(processor, state):
    result = gunner(processor, state, "launch_missile")
    assert result.weapons["missiles"]["protonTorpedoes"] == 11
    assert result.weapons["missiles"]["concussionMissiles"] == 8


def test_launch_missile_needs_ammo(processor, state):
    state.weapons["missiles"]["protonTorpedoes"] = 0
    assert gunner(processor, state, "launch_missile") is None


def test_launch_missile_needs_ready_launcher(processor, state):
    state.weapons["missiles"]["launcherStatus"] = "reloading"
    assert gunner(processor, state, "launch_missile") is None


def test_select_missile_type_then_launch(processor, state):
    ion = gunner(processor, state, "select_missile_type", "ion")
    assert ion.weapons["missiles"]["selectedMissileType"] == "ion"
    launched = gunner(processor, ion, "launch_missile")
    assert launched.weapons["missiles"]["ionTorpedoes"] == 3


@pytest.mark.parametrize("value", ["plasma", None, ["ion"], {"type": "antimatter"}])
def test_select_missile_type_rejects_unknown(processor, state, value):
    assert gunner(processor, state, "select_missile_type", value) is None
