"""
Read-only game-state records consumed by npc-tactician.

These models are a snapshot of whatever the host game engine exposes for a
combat: entities with their items, vitals, positions and ownership, plus
the combat itself (round, turn, combatants, recent actions). Nothing in
this package mutates them.

Items arrive in two shapes: flat records (``activities`` and
``description`` at top level) and host-shaped records where both live
under ``system`` (``system.activities``, ``system.description.value``).
Both are lifted into the same ``Item`` fields at validation time.
"""

from typing import Any

from pydantic import BaseModel, Field, model_validator


class Point(BaseModel):
    """Position on the battle map, in canvas units (not grid squares)."""
    x: float = Field(description="Horizontal coordinate")
    y: float = Field(description="Vertical coordinate")


class HitPoints(BaseModel):
    """Current and maximum hit points."""
    current: int = Field(default=0, description="Current hit points")
    max: int = Field(default=1, description="Maximum hit points")

    @property
    def percentage(self) -> int:
        """Current HP as a rounded percentage of maximum."""
        if self.max <= 0:
            return 0
        return round(self.current / self.max * 100)

    def __str__(self) -> str:
        return f"{self.current}/{self.max}"


class Condition(BaseModel):
    """An active effect or condition on an entity."""
    name: str = Field(description="Condition name")
    description: str = Field(default="Active condition", description="Condition summary")
    disabled: bool = Field(default=False, description="Suppressed effects are ignored")


class Resource(BaseModel):
    """A limited-use resource such as a spell slot level or a class pool."""
    current: int = Field(default=0, description="Remaining uses")
    max: int = Field(default=0, description="Maximum uses")
    label: str | None = Field(default=None, description="Display label")


class Item(BaseModel):
    """A content item (weapon, spell, feature) carried by an entity.

    ``activities`` is kept in its raw host shape; the action normalizer
    is the single place that decodes it.
    """
    name: str = Field(description="Item name")
    type: str = Field(default="feat", description="Item type tag: weapon, spell, feat, ...")
    description: str = Field(default="", description="Markup-bearing description")
    activities: Any = Field(default=None, description="Raw activities container")

    @model_validator(mode="before")
    @classmethod
    def _lift_system_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "system" not in data:
            return data
        data = dict(data)
        system = data.pop("system")
        if not isinstance(system, dict):
            system = {}
        if "activities" not in data and "activities" in system:
            data["activities"] = system["activities"]
        if "description" not in data:
            description = system.get("description")
            if isinstance(description, dict):
                description = description.get("value")
            data["description"] = description or ""
        return data


class Entity(BaseModel):
    """A combat participant as exposed by the host game."""
    id: str = Field(description="Stable unique identifier")
    name: str = Field(description="Display name")
    type: str = Field(default="npc", description="Entity type tag, e.g. npc or character")
    items: list[Item] = Field(default_factory=list, description="Carried content items")
    hp: HitPoints = Field(default_factory=HitPoints, description="Hit points")
    ac: int = Field(default=10, description="Armor class")
    speed: int = Field(default=30, description="Walking speed in feet")
    conditions: list[Condition] = Field(default_factory=list, description="Active conditions")
    resources: dict[str, Resource] = Field(
        default_factory=dict,
        description="Spell slots and other limited resources keyed by name",
    )
    player_controlled: bool = Field(default=False, description="Owned by a player")

    @property
    def active_conditions(self) -> list[Condition]:
        """Conditions that are not disabled."""
        return [c for c in self.conditions if not c.disabled]


class Combatant(BaseModel):
    """An entity's seat in a combat: initiative and token position."""
    id: str = Field(description="Combatant identifier (distinct from the entity id)")
    entity: Entity | None = Field(default=None, description="The participating entity, if any")
    initiative: float | None = Field(default=None, description="Initiative value")
    position: Point | None = Field(default=None, description="Token position on the map")

    @property
    def name(self) -> str:
        return self.entity.name if self.entity else "Unknown"


class RecentAction(BaseModel):
    """One entry of the combat action log."""
    actor: str = Field(description="Who acted")
    action: str = Field(description="What they did")


class Combat(BaseModel):
    """Snapshot of an ongoing combat encounter."""
    id: str = Field(default="combat", description="Combat identifier")
    round: int = Field(default=1, description="Current round")
    turn: int = Field(default=0, description="Index of the active combatant in turn order")
    combatants: list[Combatant] = Field(default_factory=list, description="Participants in turn order")
    grid_size: float = Field(default=100.0, gt=0, description="Canvas units per grid square")
    action_log: list[RecentAction] = Field(default_factory=list, description="Oldest first")

    @property
    def active(self) -> Combatant | None:
        """The combatant whose turn it is."""
        if 0 <= self.turn < len(self.combatants):
            return self.combatants[self.turn]
        return None

    def get_combatant(self, combatant_id: str) -> Combatant | None:
        """Find a combatant by combatant id or entity id."""
        for combatant in self.combatants:
            if combatant.id == combatant_id:
                return combatant
            if combatant.entity and combatant.entity.id == combatant_id:
                return combatant
        return None

    def npcs(self) -> list[Combatant]:
        """Combatants backed by a non-player-controlled entity."""
        return [
            c for c in self.combatants
            if c.entity is not None and not c.entity.player_controlled
        ]


__all__ = [
    "Point",
    "HitPoints",
    "Condition",
    "Resource",
    "Item",
    "Entity",
    "Combatant",
    "RecentAction",
    "Combat",
]
