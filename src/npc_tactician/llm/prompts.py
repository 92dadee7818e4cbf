"""
Prompt templates for the two LLM calls.

``build_description_prompt`` asks the action-cache model to turn raw
ability data into short tactical descriptions. ``build_recommendation_prompt``
asks the combat model for a ranked plan for one NPC turn. Both are pure
functions of their inputs.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from ..config import Difficulty
from ..normalizer import DESCRIPTION_MAX_LENGTH, RawAction
from .parser import FinalAction

if TYPE_CHECKING:
    from ..combat.analyzer import CombatantSummary, CombatSituation


ACTIVATION_CATEGORIES = ("action", "bonus", "reaction", "legendary", "lair", "other")

CATEGORY_LABELS = {
    "action": "Actions",
    "bonus": "Bonus Actions",
    "reaction": "Reactions",
    "legendary": "Legendary Actions",
    "lair": "Lair Actions",
    "other": "Other Abilities",
}

STANDARD_ACTIONS = (
    ("Attack", "Make a weapon or spell attack"),
    ("Dash", "Move up to your speed again"),
    ("Disengage", "Movement doesn't provoke opportunity attacks"),
    ("Dodge", "Attacks against you have disadvantage"),
    ("Help", "Give an ally advantage on their next check"),
    ("Hide", "Make a Stealth check"),
    ("Ready", "Prepare an action for a specific trigger"),
    ("Search", "Look for something"),
)

DIFFICULTY_DIRECTIVES: dict[Difficulty, str] = {
    Difficulty.EASY: (
        "Play defensively and make suboptimal choices. Focus on simple attacks "
        "and avoid complex tactics."
    ),
    Difficulty.NORMAL: (
        "Play tactically but not optimally. Make reasonable choices with "
        "occasional mistakes."
    ),
    Difficulty.HARD: (
        "Play optimally using all available abilities and tactics. Focus on efficiency."
    ),
    Difficulty.DEADLY: (
        "Play with ruthless efficiency. Use every advantage and tactical option available."
    ),
    Difficulty.TPK: (
        "Play to win at all costs. Use meta-knowledge and perfect tactics to "
        "maximize lethality."
    ),
}


DESCRIPTION_PROMPT_TEMPLATE = """\
You are helping to create concise, tactical descriptions of D&D 5e creature abilities for combat AI decision-making.

For the creature "{entity_name}", analyze the following abilities and write a clear description of each (at most {max_length} characters) that focuses on:
1. What the ability does mechanically
2. Key tactical considerations (damage, range, targets, saves, special effects)
3. If one item has multiple distinct activities, note them separately

Here is the raw ability data:
{actions_json}

Respond with a JSON array where each entry has:
{{
    "name": "ability name",
    "description": "concise tactical description",
    "activationTime": "action/bonus/reaction/multiple",
    "itemType": "feat/spell/weapon"
}}

If a single item has multiple materially different uses (like a staff that can cast fireball AND lightning bolt), create a separate entry for each distinct use.

Respond ONLY with valid JSON, no additional text."""


RECOMMENDATION_PROMPT_TEMPLATE = """\
You are controlling an NPC in a D&D 5e combat encounter. Play at the "{difficulty}" difficulty level.

Difficulty Guidelines: {directive}

Current NPC:
- Name: {npc_name} ({npc_type})
- HP: {npc_hp} ({npc_hp_pct}%)
- AC: {npc_ac}
- Speed: {npc_speed} ft
- Position: {npc_position}
- Conditions: {npc_conditions}
- Resources: {npc_resources}

Available Actions:
{available_actions}

Combat State:
- Round: {round}
- Initiative Order: {initiative}

Recent Actions:
{recent_actions}

Enemy Analysis:
{enemies}

Ally Analysis:
{allies}

Recommend the top {count} options for each of these categories: {categories}. Consider:
1. The difficulty level specified
2. The current tactical situation
3. Available resources and abilities
4. Positioning and battlefield control

Respond with a JSON object keyed by category, where each value is a list ordered by priority (1 = best):
{example}

Respond ONLY with valid JSON, no additional text."""


def build_description_prompt(entity_name: str, raw_actions: Sequence[RawAction]) -> str:
    """Build the description-generation prompt for one entity's abilities."""
    actions_json = json.dumps(
        [a.model_dump(by_alias=True, exclude_none=True) for a in raw_actions],
        indent=2,
    )
    return DESCRIPTION_PROMPT_TEMPLATE.format(
        entity_name=entity_name,
        max_length=DESCRIPTION_MAX_LENGTH,
        actions_json=actions_json,
    )


def activation_category(activation_time: str | None) -> str:
    """Map an activation type onto one of ACTIVATION_CATEGORIES."""
    if activation_time in ACTIVATION_CATEGORIES:
        return activation_time
    return "other"


def group_actions_by_activation(actions: Iterable[FinalAction]) -> dict[str, list[FinalAction]]:
    """Group actions by activation category, omitting empty categories.

    Categories come out in ACTIVATION_CATEGORIES order; actions keep their
    input order within a category.
    """
    grouped: dict[str, list[FinalAction]] = {c: [] for c in ACTIVATION_CATEGORIES}
    for action in actions:
        grouped[activation_category(action.activation_time)].append(action)
    return {c: entries for c, entries in grouped.items() if entries}


def _format_available_actions(grouped: dict[str, list[FinalAction]]) -> str:
    lines = ["Standard actions: " + ", ".join(name for name, _ in STANDARD_ACTIONS)]
    for category, actions in grouped.items():
        lines.append(f"{CATEGORY_LABELS[category]}:")
        lines.extend(f"- {a.name} ({a.item_type}): {a.description}" for a in actions)
    return "\n".join(lines)


def _format_combatants(combatants: Sequence[CombatantSummary], empty: str) -> str:
    if not combatants:
        return empty
    lines = []
    for c in combatants:
        status = " [UNCONSCIOUS]" if c.unconscious else ""
        conditions = f", Conditions: {', '.join(c.conditions)}" if c.conditions else ""
        lines.append(
            f"- {c.name}: {c.hp} HP ({c.hp_percentage}%), AC {c.ac}, "
            f"Distance: {c.distance_label}{conditions}{status}"
        )
    return "\n".join(lines)


def _response_example(categories: Sequence[str]) -> str:
    example = {
        category: [{"action": "action name", "reasoning": "brief reasoning", "priority": 1}]
        for category in categories
    }
    return json.dumps(example, indent=2)


def build_recommendation_prompt(
    situation: CombatSituation,
    difficulty: Difficulty | str,
    grouped_actions: dict[str, list[FinalAction]],
    count: int = 3,
) -> str:
    """Build the per-turn recommendation prompt.

    Args:
        situation: Snapshot produced by the combat analyzer.
        difficulty: Difficulty tier driving the behavioral directive.
        grouped_actions: Cached actions grouped by activation category.
        count: Recommendations requested per category.
    """
    difficulty = Difficulty(difficulty)
    npc = situation.current_npc
    categories = ["action", *(c for c in grouped_actions if c != "action")]

    position = f"({npc.position.x:g}, {npc.position.y:g})" if npc.position else "Unknown"
    resources = ", ".join(
        f"{key} {r.current}/{r.max}" for key, r in npc.resources.items()
    ) or "None"
    initiative = ", ".join(
        f"{entry.name} ({entry.hp}){' <- acting' if entry.is_active else ''}"
        for entry in situation.initiative_order
    )
    recent = "\n".join(
        f"- {entry.actor}: {entry.action}" for entry in situation.recent_actions
    ) or "- None recorded"

    return RECOMMENDATION_PROMPT_TEMPLATE.format(
        difficulty=difficulty.value,
        directive=DIFFICULTY_DIRECTIVES[difficulty],
        npc_name=npc.name,
        npc_type=npc.type,
        npc_hp=npc.hp,
        npc_hp_pct=npc.hp.percentage,
        npc_ac=npc.ac,
        npc_speed=npc.speed,
        npc_position=position,
        npc_conditions=", ".join(c.name for c in npc.conditions) or "None",
        npc_resources=resources,
        available_actions=_format_available_actions(grouped_actions),
        round=situation.round,
        initiative=initiative,
        recent_actions=recent,
        enemies=_format_combatants(situation.enemies, "- No enemies"),
        allies=_format_combatants(situation.allies, "- No allies"),
        count=count,
        categories=", ".join(categories),
        example=_response_example(categories),
    )


__all__ = [
    "ACTIVATION_CATEGORIES",
    "STANDARD_ACTIONS",
    "DIFFICULTY_DIRECTIVES",
    "build_description_prompt",
    "activation_category",
    "group_actions_by_activation",
    "build_recommendation_prompt",
]
