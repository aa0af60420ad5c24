"""
Shape checks for game master patches.

A GM patch may override anything, but only in the shape the document
already has: top-level keys are limited to the two enumerations and the
seven subsystems, subsystem objects are merged recursively, and every
leaf must keep its JSON type. Lists are replaced wholesale, and every
item of a new list must be complete in the shape of the items the list
already holds (or the shape declared for lists that start out empty).
"""

from datetime import datetime
from typing import Any, Dict
import copy

from .factory import LIST_ITEM_SHAPES
from .models import SUBSYSTEM_KEYS, AlertLevel, GameState, MissionStatus, parse_datetime

ENUM_FIELDS = {
    "missionStatus": MissionStatus,
    "alertLevel": AlertLevel,
}

PATCHABLE_KEYS = frozenset(ENUM_FIELDS) | frozenset(SUBSYSTEM_KEYS)


class PatchError(ValueError):
    """A patch does not match the shape of the state it targets"""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}" if path else reason)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _json_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if _is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, datetime):
        return "datetime"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _check_item(path: str, shape: Any, value: Any) -> None:
    """Check a whole list item, which replaces rather than merges."""
    if shape is None:
        return
    if isinstance(shape, dict):
        if not isinstance(value, dict):
            raise PatchError(path, f"expected object, got {_json_kind(value)}")
        for key in value:
            if key not in shape:
                raise PatchError(f"{path}.{key}", "unknown field")
        for key, sub_shape in shape.items():
            if key in value:
                _check_item(f"{path}.{key}", sub_shape, value[key])
            elif sub_shape is not None:
                raise PatchError(f"{path}.{key}", "missing field")
    elif isinstance(shape, list):
        _check_list(path, shape, value, None)
    else:
        _check_value(path, shape, value)


def _check_list(path: str, current: list, value: Any, shape: Any) -> None:
    if not isinstance(value, list):
        raise PatchError(path, f"expected array, got {_json_kind(value)}")
    if current:
        shape = current[0]
    if shape is None:
        return
    for index, item in enumerate(value):
        _check_item(f"{path}[{index}]", shape, item)


def _check_value(path: str, current: Any, value: Any) -> None:
    # Nullable slots accept anything
    if current is None:
        return

    kind = _json_kind(current)
    if kind == "object":
        if not isinstance(value, dict):
            raise PatchError(path, f"expected object, got {_json_kind(value)}")
        for key, sub_value in value.items():
            if key not in current:
                raise PatchError(f"{path}.{key}", "unknown field")
            _check_value(f"{path}.{key}", current[key], sub_value)
    elif kind == "array":
        _check_list(path, current, value, LIST_ITEM_SHAPES.get(path))
    elif kind == "datetime":
        try:
            parse_datetime(value)
        except (TypeError, ValueError):
            raise PatchError(path, "expected ISO-8601 date/time")
    elif _json_kind(value) != kind:
        raise PatchError(path, f"expected {kind}, got {_json_kind(value)}")


def validate_patch(state: GameState, changes: Any) -> None:
    """
    Check that ``changes`` can be merged into ``state``.

    Raises:
        PatchError: On the first field that does not fit
    """
    if not isinstance(changes, dict):
        raise PatchError("", "changes must be an object")
    if not changes:
        raise PatchError("", "changes must not be empty")

    for key, value in changes.items():
        if key not in PATCHABLE_KEYS:
            raise PatchError(key, "field cannot be patched")
        if key in ENUM_FIELDS:
            enum_type = ENUM_FIELDS[key]
            try:
                enum_type(value)
            except ValueError:
                allowed = ", ".join(member.value for member in enum_type)
                raise PatchError(key, f"must be one of {allowed}")
        else:
            _check_value(key, getattr(state, key), value)


def _deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _deep_merge(base[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def merge_patch(state: GameState, changes: Dict[str, Any]) -> GameState:
    """
    Return a new state with ``changes`` applied.

    The result keeps the version of ``state``, so it can be saved against it.

    Raises:
        PatchError: If the patch does not match the state's shape
    """
    validate_patch(state, changes)
    doc = state.to_dict()
    for key, value in changes.items():
        if key in ENUM_FIELDS:
            doc[key] = value
        else:
            doc[key] = _deep_merge(doc[key], value)
    try:
        return GameState.from_dict(doc)
    except (KeyError, TypeError, ValueError) as e:
        raise PatchError("", f"patched state is not readable: {e}")
