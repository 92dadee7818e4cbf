"""
Ability normalization for NPC content items.

Content items come from several sources and expose their activities in
different shapes: an ordered mapping of ``id -> activity``, a serialized
list of ``[id, activity]`` pairs, or a plain list of activity records.
Damage parts are either positional ``[formula, type]`` pairs or labeled
objects. This module decodes all of them once, at the boundary, into the
canonical ``RawAction`` shape; nothing downstream branches on input shape.

Items without any activities are excluded entirely. A malformed item is
logged and skipped without aborting the rest of the batch.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import Item

logger = logging.getLogger("npc-tactician")

DEFAULT_ACTIVATION = "action"
MULTIPLE_ACTIVATION = "multiple"

DESCRIPTION_MAX_LENGTH = 100
NO_DESCRIPTION = "No description available"

_TAG_RE = re.compile(r"<[^>]*>")
_ENRICHER_RE = re.compile(r"@\w+\[[^\]]*\](?:\{([^}]*)\})?")
_INLINE_ROLL_RE = re.compile(r"\[\[/\w+\s*([^\]]*)\]\]")
_WHITESPACE_RE = re.compile(r"\s+")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DamagePart(_CamelModel):
    """One damage component of an activity."""
    formula: str = Field(description="Dice formula, e.g. 2d6+3")
    type: str = Field(default="", description="Damage type, e.g. piercing")


class RangeInfo(_CamelModel):
    value: Any = None
    units: str | None = None
    long: Any = None


class TargetInfo(_CamelModel):
    count: Any = None
    type: str | None = None


class SaveInfo(_CamelModel):
    ability: str | None = None
    dc: Any = None


class ActivityDetail(_CamelModel):
    """Canonical view of one activity on an item. Every detail is optional."""
    id: str = Field(description="Activity identifier within the item")
    type: str | None = Field(default=None, description="Activity kind: attack, save, heal, ...")
    activation_type: str | None = Field(default=None, description="Activation cost of this activity")
    damage: list[DamagePart] | None = None
    range: RangeInfo | None = None
    target: TargetInfo | None = None
    save: SaveInfo | None = None
    healing: dict[str, Any] | None = None


class RawAction(_CamelModel):
    """Normalized ability extracted from one content item."""
    name: str = Field(description="Item name")
    item_type: str = Field(description="Item type tag: weapon, spell, feat, ...")
    activation_time: str = Field(description="Collapsed activation type of the item")
    raw_description: str = Field(default="", description="Markup-bearing source description")
    activities: list[ActivityDetail] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Shape decoding
# ---------------------------------------------------------------------------


def _decode_activities(container: Any) -> list[tuple[str, Mapping]]:
    """Decode any accepted activities container into ordered (id, activity) pairs.

    Raises:
        ValueError: If the container or one of its entries has an unknown shape.
    """
    if container is None:
        return []

    if isinstance(container, Mapping):
        entries = list(container.items())
    elif isinstance(container, (list, tuple)):
        entries = []
        for index, entry in enumerate(container):
            if isinstance(entry, (list, tuple)) and len(entry) == 2:
                entries.append((entry[0], entry[1]))
            elif isinstance(entry, Mapping):
                entries.append((entry.get("_id", entry.get("id", index)), entry))
            else:
                raise ValueError(f"Unrecognized activity entry: {entry!r}")
    else:
        raise ValueError(f"Unsupported activities container: {type(container).__name__}")

    decoded = []
    for activity_id, activity in entries:
        if not isinstance(activity, Mapping):
            raise ValueError(f"Activity {activity_id!r} is not a record")
        decoded.append((str(activity_id), activity))
    return decoded


def _get(record: Any, key: str) -> Any:
    return record.get(key) if isinstance(record, Mapping) else None


def _decode_damage_part(part: Any) -> DamagePart | None:
    if isinstance(part, (list, tuple)):
        if not part or not part[0]:
            return None
        damage_type = part[1] if len(part) > 1 and part[1] else ""
        return DamagePart(formula=str(part[0]), type=str(damage_type))

    if isinstance(part, Mapping):
        formula = part.get("formula") or _get(part.get("custom"), "formula")
        if not formula and part.get("number") and part.get("denomination"):
            formula = f"{part['number']}d{part['denomination']}"
            if part.get("bonus"):
                formula += f" + {part['bonus']}"
        damage_type = part.get("type")
        if not damage_type and isinstance(part.get("types"), (list, tuple, set)):
            damage_type = ", ".join(sorted(str(t) for t in part["types"]))
        if not formula:
            return None
        return DamagePart(formula=str(formula), type=str(damage_type or ""))

    return None


def extract_damage(activity: Mapping) -> list[DamagePart] | None:
    """Decode damage parts from either pair or labeled-object shapes."""
    parts = _get(activity.get("damage"), "parts")
    if isinstance(parts, Mapping):
        parts = list(parts.values())
    if not isinstance(parts, (list, tuple)) or not parts:
        return None

    decoded = [p for p in (_decode_damage_part(part) for part in parts) if p is not None]
    return decoded or None


def extract_range(activity: Mapping) -> RangeInfo | None:
    range_data = activity.get("range")
    if not isinstance(range_data, Mapping):
        return None
    return RangeInfo(
        value=range_data.get("value"),
        units=range_data.get("units"),
        long=range_data.get("long"),
    )


def extract_target(activity: Mapping) -> TargetInfo | None:
    affects = _get(activity.get("target"), "affects")
    if not isinstance(affects, Mapping):
        return None
    return TargetInfo(count=affects.get("count"), type=affects.get("type"))


def extract_save(activity: Mapping) -> SaveInfo | None:
    save = activity.get("save")
    if not isinstance(save, Mapping):
        return None

    ability = save.get("ability")
    if isinstance(ability, (list, tuple, set)):
        ability = "/".join(sorted(str(a) for a in ability)) or None

    dc = save.get("dc")
    if isinstance(dc, Mapping):
        dc = dc.get("value") if dc.get("value") is not None else dc.get("formula")

    return SaveInfo(ability=ability, dc=dc)


def extract_healing(activity: Mapping) -> dict[str, Any] | None:
    healing = activity.get("healing")
    if isinstance(healing, Mapping):
        return dict(healing)
    return None


def collapse_activation_types(types: Iterable[str | None]) -> str:
    """Collapse per-activity activation types into one item-level tag.

    One distinct value wins, two or more distinct values become
    ``"multiple"``, and no values default to ``"action"``.
    """
    distinct = list(dict.fromkeys(t for t in types if t))
    if not distinct:
        return DEFAULT_ACTIVATION
    if len(distinct) == 1:
        return distinct[0]
    return MULTIPLE_ACTIVATION


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_item(item: Item | Mapping) -> RawAction | None:
    """Normalize one content item.

    Returns:
        The RawAction, or None when the item has no activities.

    Raises:
        ValueError: If the item's activity data is structurally unexpected.
        pydantic.ValidationError: If a raw item record cannot be read at all.
    """
    if not isinstance(item, Item):
        item = Item.model_validate(item)

    entries = _decode_activities(item.activities)
    if not entries:
        return None

    activities = [
        ActivityDetail(
            id=activity_id,
            type=activity.get("type"),
            activation_type=_get(activity.get("activation"), "type"),
            damage=extract_damage(activity),
            range=extract_range(activity),
            target=extract_target(activity),
            save=extract_save(activity),
            healing=extract_healing(activity),
        )
        for activity_id, activity in entries
    ]

    return RawAction(
        name=item.name,
        item_type=item.type,
        activation_time=collapse_activation_types(a.activation_type for a in activities),
        raw_description=item.description or "",
        activities=activities,
    )


def normalize_items(items: Iterable[Item | Mapping] | None) -> list[RawAction]:
    """Normalize an entity's items into RawActions, skipping items without activities.

    Args:
        items: Item models or raw item records, in any accepted shape.

    Returns:
        RawActions in input order. Malformed items are logged and skipped.
    """
    raw_actions: list[RawAction] = []
    if not items:
        return raw_actions

    for item in items:
        try:
            action = normalize_item(item)
        except Exception as e:
            name = item.name if isinstance(item, Item) else _get(item, "name")
            logger.warning(f"Skipping item {name!r}: could not extract actions ({e})")
            continue
        if action is not None:
            raw_actions.append(action)

    return raw_actions


def clean_description(description: str | None, max_length: int = DESCRIPTION_MAX_LENGTH) -> str:
    """Strip markup from a description and cap it at ``max_length`` characters.

    HTML tags become spaces, entities are unescaped, inline enrichers such as
    ``@UUID[...]{Label}`` keep only their label and inline rolls such as
    ``[[/r 1d6]]`` keep only their formula.
    """
    if not description:
        return NO_DESCRIPTION

    cleaned = _TAG_RE.sub(" ", description)
    cleaned = html.unescape(cleaned)
    cleaned = _ENRICHER_RE.sub(lambda m: m.group(1) or "", cleaned)
    cleaned = _INLINE_ROLL_RE.sub(lambda m: m.group(1), cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()

    if not cleaned:
        return NO_DESCRIPTION
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3] + "..."
    return cleaned


__all__ = [
    "DESCRIPTION_MAX_LENGTH",
    "DamagePart",
    "RangeInfo",
    "TargetInfo",
    "SaveInfo",
    "ActivityDetail",
    "RawAction",
    "collapse_activation_types",
    "normalize_item",
    "normalize_items",
    "clean_description",
]
