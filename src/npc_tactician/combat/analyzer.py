"""
Combat situation analysis for NPC turns.

Builds a read-only snapshot of the battlefield from the acting NPC's point
of view: its own vitals and resources, the initiative order, its cached
abilities, and every other combatant classified as enemy or ally by
ownership (player-controlled versus not) with a straight-line distance.

Distance convention:
- Token positions are canvas coordinates.
- Euclidean distance is divided by the grid size and multiplied by 5 ft
  per square, then rounded to the nearest foot.
"""

from __future__ import annotations

import logging
import math

from pydantic import BaseModel, Field

from ..action_cache import ActionCache
from ..llm.parser import FinalAction
from ..models import Combat, Combatant, Condition, HitPoints, Point, RecentAction, Resource

logger = logging.getLogger("npc-tactician")

FEET_PER_SQUARE = 5


# ---------------------------------------------------------------------------
# Snapshot models
# ---------------------------------------------------------------------------


class NPCSnapshot(BaseModel):
    """The acting NPC's own state."""
    id: str
    name: str
    type: str
    hp: HitPoints
    ac: int
    speed: int
    position: Point | None = None
    conditions: list[Condition] = Field(default_factory=list)
    resources: dict[str, Resource] = Field(default_factory=dict)


class InitiativeEntry(BaseModel):
    name: str
    initiative: float | None = None
    hp: str = "Unknown"
    is_npc: bool = False
    is_active: bool = False


class CombatantSummary(BaseModel):
    """Another combatant as seen from the acting NPC."""
    name: str
    hp: str
    hp_percentage: int
    ac: int
    distance_ft: int | None = Field(default=None, description="None when either position is unknown")
    conditions: list[str] = Field(default_factory=list)
    unconscious: bool = False
    position: Point | None = None

    @property
    def distance_label(self) -> str:
        return f"{self.distance_ft} ft" if self.distance_ft is not None else "Unknown"


class CombatSituation(BaseModel):
    """Everything the recommendation prompt needs for one NPC turn."""
    current_npc: NPCSnapshot
    round: int
    turn: int
    initiative_order: list[InitiativeEntry] = Field(default_factory=list)
    available_actions: list[FinalAction] = Field(default_factory=list)
    enemies: list[CombatantSummary] = Field(default_factory=list)
    allies: list[CombatantSummary] = Field(default_factory=list)
    recent_actions: list[RecentAction] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Distance
# ---------------------------------------------------------------------------


def grid_distance(a: Point, b: Point, grid_size: float) -> int:
    """Straight-line distance in feet between two canvas positions.

    Args:
        a: First position.
        b: Second position.
        grid_size: Canvas units per grid square.

    Returns:
        Distance in feet, rounded to the nearest integer.
    """
    squares = math.hypot(a.x - b.x, a.y - b.y) / grid_size
    return round(squares * FEET_PER_SQUARE)


def _initiative_key(c: Combatant) -> tuple[bool, float]:
    # Highest first; combatants without initiative go last.
    return (c.initiative is None, -(c.initiative or 0))


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------


class CombatAnalyzer:
    """Builds CombatSituation snapshots for NPC turns.

    Args:
        action_cache: Source of the NPC's described abilities.
        include_player_names: When False, player-controlled combatants are
            shown as "Player Character N".
        context_turns: Number of recent log entries to include.
    """

    def __init__(
        self,
        action_cache: ActionCache,
        include_player_names: bool = False,
        context_turns: int = 3,
    ) -> None:
        self.action_cache = action_cache
        self.include_player_names = include_player_names
        self.context_turns = context_turns

    async def analyze(self, combat: Combat, combatant: Combatant) -> CombatSituation:
        """Snapshot the combat from ``combatant``'s point of view.

        Suspends only on the action cache (cache-miss generation).

        Raises:
            ValueError: If the combatant has no entity.
        """
        entity = combatant.entity
        if entity is None:
            raise ValueError(f"Combatant {combatant.id} has no entity to analyze")

        available_actions = await self.action_cache.get_entity_actions(entity)
        names = self._display_names(combat)

        situation = CombatSituation(
            current_npc=NPCSnapshot(
                id=entity.id,
                name=entity.name,
                type=entity.type,
                hp=entity.hp,
                ac=entity.ac,
                speed=entity.speed,
                position=combatant.position,
                conditions=entity.active_conditions,
                resources={k: r for k, r in entity.resources.items() if r.max > 0},
            ),
            round=combat.round,
            turn=combat.turn,
            initiative_order=self.initiative_order(combat, names),
            available_actions=available_actions,
            enemies=self._others(combat, combatant, names, enemies=True),
            allies=self._others(combat, combatant, names, enemies=False),
            recent_actions=self.recent_actions(combat),
        )

        logger.debug(
            f"Combat situation analyzed for {entity.name}: "
            f"{len(situation.enemies)} enemies, {len(situation.allies)} allies, "
            f"{len(available_actions)} actions"
        )
        return situation

    def initiative_order(self, combat: Combat, names: dict[str, str] | None = None) -> list[InitiativeEntry]:
        """Combatants sorted by initiative, highest first; ties keep input order."""
        names = names if names is not None else self._display_names(combat)
        active = combat.active
        ordered = sorted(combat.combatants, key=_initiative_key)
        return [
            InitiativeEntry(
                name=names.get(c.id, c.name),
                initiative=c.initiative,
                hp=str(c.entity.hp) if c.entity is not None else "Unknown",
                is_npc=c.entity is not None and not c.entity.player_controlled,
                is_active=active is not None and c.id == active.id,
            )
            for c in ordered
        ]

    def recent_actions(self, combat: Combat) -> list[RecentAction]:
        if self.context_turns <= 0:
            return []
        return list(combat.action_log[-self.context_turns:])

    def _display_names(self, combat: Combat) -> dict[str, str]:
        """Combatant id -> name to show, anonymizing player characters if configured."""
        names: dict[str, str] = {}
        pc_number = 0
        for c in sorted(combat.combatants, key=_initiative_key):
            if c.entity is not None and c.entity.player_controlled and not self.include_player_names:
                pc_number += 1
                names[c.id] = f"Player Character {pc_number}"
            else:
                names[c.id] = c.name
        return names

    def _others(
        self,
        combat: Combat,
        current: Combatant,
        names: dict[str, str],
        enemies: bool,
    ) -> list[CombatantSummary]:
        acting = current.entity
        summaries = []
        for c in combat.combatants:
            if c.entity is None or c.id == current.id:
                continue
            opposed = c.entity.player_controlled != acting.player_controlled
            if opposed != enemies:
                continue

            distance = None
            if c.position is not None and current.position is not None:
                distance = grid_distance(c.position, current.position, combat.grid_size)

            summaries.append(CombatantSummary(
                name=names.get(c.id, c.name),
                hp=str(c.entity.hp),
                hp_percentage=c.entity.hp.percentage,
                ac=c.entity.ac,
                distance_ft=distance,
                conditions=[cond.name for cond in c.entity.active_conditions],
                unconscious=c.entity.hp.current <= 0,
                position=c.position,
            ))
        return summaries


__all__ = [
    "FEET_PER_SQUARE",
    "NPCSnapshot",
    "InitiativeEntry",
    "CombatantSummary",
    "CombatSituation",
    "CombatAnalyzer",
    "grid_distance",
]
