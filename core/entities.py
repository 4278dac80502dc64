"""
Entity vocabulary and canonical constructors.

Dialogs never look at a recognizer's wire format: everything arrives as an
`Entity(type, value, normalized_value)`, whether it came from an utterance or
was synthesized by code (e.g. the post-login follow-up).
"""
from __future__ import annotations

from typing import Any, Optional

from models.schemas import Entity, Intent


class EntityType:
    ACTION = "Action"
    TITLE = "Title"
    DATETIME = "builtin.datetimeV2.datetime"
    DATE = "builtin.datetimeV2.date"
    TIME = "builtin.datetimeV2.time"
    DATETIME_RANGE = "builtin.datetimeV2.datetimerange"
    NUMBER = "builtin.number"


class ActionValue:
    SET = "set"
    GET = "get"


def wrap_entity(entity_type: str, value: Any, normalized_value: Any = None) -> Entity:
    """Build a canonical entity from code, e.g. wrap_entity("Action", "set")."""
    return Entity(type=entity_type, value=str(value), normalized_value=normalized_value)


def synthesize_intent(name: str, *entities: Entity) -> Intent:
    """An argument bag shaped exactly like a recognized utterance."""
    return Intent(name=name, entities=list(entities), score=1.0)


def _first_resolution(resolution: Any) -> Optional[Any]:
    if not isinstance(resolution, dict):
        return None
    values = resolution.get("values")
    if isinstance(values, list) and values:
        first = values[0]
        if isinstance(first, dict):
            # datetimeV2: {"timex": ..., "type": "datetime", "value": "2026-10-20 12:00:00"}
            if "value" in first:
                return first["value"]
            if "start" in first:
                return {"start": first.get("start"), "end": first.get("end")}
            return first.get("timex")
        return first
    return resolution.get("value")


def entity_from_luis(raw: dict[str, Any]) -> Entity:
    """
    Map one entity of the recognizer's v2 response to the canonical shape.

    List entities carry the canonical value in resolution.values[0];
    builtin types carry theirs in resolution.value or resolution.values[].value.
    """
    return Entity(
        type=str(raw.get("type", "")),
        value=str(raw.get("entity", "")),
        normalized_value=_first_resolution(raw.get("resolution")),
        start_index=raw.get("startIndex"),
        end_index=raw.get("endIndex"),
        score=raw.get("score"),
    )
