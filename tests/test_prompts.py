"""
Tests for prompt construction.
"""

import json

from npc_tactician.combat.analyzer import CombatantSummary, CombatSituation, InitiativeEntry, NPCSnapshot
from npc_tactician.config import Difficulty
from npc_tactician.llm.parser import FinalAction
from npc_tactician.llm.prompts import (
    DIFFICULTY_DIRECTIVES,
    activation_category,
    build_description_prompt,
    build_recommendation_prompt,
    group_actions_by_activation,
)
from npc_tactician.models import Condition, HitPoints, Point, RecentAction, Resource
from npc_tactician.normalizer import normalize_items


def make_situation(**overrides) -> CombatSituation:
    data = dict(
        current_npc=NPCSnapshot(
            id="goblin-1",
            name="Goblin Boss",
            type="npc",
            hp=HitPoints(current=12, max=21),
            ac=17,
            speed=30,
            position=Point(x=200, y=100),
            conditions=[Condition(name="Frightened")],
            resources={"spell1": Resource(current=1, max=2)},
        ),
        round=2,
        turn=1,
        initiative_order=[
            InitiativeEntry(name="Player Character 1", initiative=18, hp="30/30"),
            InitiativeEntry(name="Goblin Boss", initiative=12, hp="12/21", is_npc=True, is_active=True),
        ],
        enemies=[
            CombatantSummary(name="Player Character 1", hp="0/30", hp_percentage=0, ac=15,
                             distance_ft=10, unconscious=True),
        ],
        allies=[],
        recent_actions=[RecentAction(actor="Player Character 1", action="attacked Goblin Boss")],
    )
    data.update(overrides)
    return CombatSituation(**data)


class TestDescriptionPrompt:

    def test_embeds_entity_and_raw_actions(self):
        raw_actions = normalize_items([{
            "name": "Scimitar",
            "type": "weapon",
            "activities": {"a1": {"activation": {"type": "action"},
                                  "damage": {"parts": [["1d6", "slashing"]]}}},
        }])

        prompt = build_description_prompt("Goblin-1", raw_actions)

        assert '"Goblin-1"' in prompt
        assert '"name": "Scimitar"' in prompt
        assert '"activationTime": "action"' in prompt
        assert '"formula": "1d6"' in prompt
        assert "Respond ONLY with valid JSON" in prompt

    def test_is_deterministic(self):
        raw_actions = normalize_items([{"name": "Bite", "activities": {"a1": {}}}])
        assert build_description_prompt("Wolf", raw_actions) == build_description_prompt("Wolf", raw_actions)


class TestGrouping:

    def test_activation_category(self):
        assert activation_category("bonus") == "bonus"
        assert activation_category("multiple") == "other"
        assert activation_category(None) == "other"

    def test_groups_in_category_order_and_omits_empty(self):
        actions = [
            FinalAction(name="Tail", description="x", activation_time="legendary"),
            FinalAction(name="Bite", description="x", activation_time="action"),
            FinalAction(name="Staff", description="x", activation_time="multiple"),
            FinalAction(name="Claw", description="x", activation_time="action"),
        ]

        grouped = group_actions_by_activation(actions)

        assert list(grouped) == ["action", "legendary", "other"]
        assert [a.name for a in grouped["action"]] == ["Bite", "Claw"]


class TestRecommendationPrompt:

    def test_contains_situation(self):
        actions = [
            FinalAction(name="Scimitar", description="1d6 slashing"),
            FinalAction(name="Nimble Escape", description="Disengage", activation_time="bonus"),
        ]
        situation = make_situation(available_actions=actions)

        prompt = build_recommendation_prompt(
            situation, Difficulty.DEADLY, group_actions_by_activation(actions), count=2
        )

        assert '"deadly"' in prompt
        assert DIFFICULTY_DIRECTIVES[Difficulty.DEADLY] in prompt
        assert "Goblin Boss (npc)" in prompt
        assert "HP: 12/21 (57%)" in prompt
        assert "Position: (200, 100)" in prompt
        assert "Conditions: Frightened" in prompt
        assert "spell1 1/2" in prompt
        assert "- Scimitar (feat): 1d6 slashing" in prompt
        assert "Bonus Actions:" in prompt
        assert "Distance: 10 ft" in prompt
        assert "[UNCONSCIOUS]" in prompt
        assert "- Player Character 1: attacked Goblin Boss" in prompt
        assert "- No allies" in prompt
        assert "top 2 options" in prompt
        assert "categories: action, bonus" in prompt

    def test_example_lists_requested_categories(self):
        actions = [FinalAction(name="Parry", description="+2 AC", activation_time="reaction")]
        prompt = build_recommendation_prompt(
            make_situation(), "easy", group_actions_by_activation(actions)
        )

        start = prompt.index("(1 = best):\n") + len("(1 = best):\n")
        end = prompt.index("\n\nRespond ONLY")
        example = json.loads(prompt[start:end])
        assert list(example) == ["action", "reaction"]

    def test_unknown_position(self):
        situation = make_situation()
        situation.current_npc.position = None
        prompt = build_recommendation_prompt(situation, Difficulty.NORMAL, {})
        assert "Position: Unknown" in prompt
