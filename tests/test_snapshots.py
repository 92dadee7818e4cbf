"""
Tests for combat snapshot loading and the game-state models.
"""

import json

import pytest

from npc_tactician.models import Combat, HitPoints, Item
from npc_tactician.snapshots import SnapshotError, load_combat


SNAPSHOT = {
    "id": "ambush",
    "round": 1,
    "turn": 1,
    "grid_size": 100,
    "combatants": [
        {
            "id": "c0",
            "initiative": 17,
            "position": {"x": 0, "y": 0},
            "entity": {"id": "pc-1", "name": "Aria", "type": "character", "player_controlled": True},
        },
        {
            "id": "c1",
            "initiative": 12,
            "position": {"x": 100, "y": 0},
            "entity": {
                "id": "goblin-1",
                "name": "Goblin",
                "hp": {"current": 7, "max": 7},
                "ac": 15,
                "items": [{
                    "name": "Scimitar",
                    "type": "weapon",
                    "system": {
                        "description": {"value": "<p>Slash</p>"},
                        "activities": {"a1": {"activation": {"type": "action"}}},
                    },
                }],
            },
        },
    ],
    "action_log": [{"actor": "Aria", "action": "drew her sword"}],
}


class TestLoadCombat:

    def test_json(self, tmp_path):
        path = tmp_path / "combat.json"
        path.write_text(json.dumps(SNAPSHOT), encoding="utf-8")

        combat = load_combat(path)

        assert combat.id == "ambush"
        assert combat.active.entity.name == "Goblin"
        assert combat.combatants[1].entity.items[0].description == "<p>Slash</p>"

    def test_yaml(self, tmp_path):
        path = tmp_path / "combat.yaml"
        path.write_text(
            "id: yaml-fight\n"
            "combatants:\n"
            "  - id: c0\n"
            "    entity: {id: wolf-1, name: Wolf}\n",
            encoding="utf-8",
        )

        combat = load_combat(str(path))

        assert combat.id == "yaml-fight"
        assert [c.name for c in combat.npcs()] == ["Wolf"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(SnapshotError, match="not found"):
            load_combat(tmp_path / "nope.json")

    def test_unparseable(self, tmp_path):
        path = tmp_path / "combat.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(SnapshotError, match="Could not parse"):
            load_combat(path)

    def test_not_a_record(self, tmp_path):
        path = tmp_path / "combat.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(SnapshotError):
            load_combat(path)

    def test_invalid_record(self, tmp_path):
        path = tmp_path / "combat.json"
        path.write_text(json.dumps({"grid_size": 0}), encoding="utf-8")
        with pytest.raises(SnapshotError, match="Invalid"):
            load_combat(path)


class TestModels:

    def test_get_combatant_by_either_id(self):
        combat = Combat.model_validate(SNAPSHOT)
        assert combat.get_combatant("c1").entity.id == "goblin-1"
        assert combat.get_combatant("goblin-1").id == "c1"
        assert combat.get_combatant("missing") is None

    def test_active_out_of_range(self):
        assert Combat(turn=5).active is None

    def test_hit_points(self):
        assert str(HitPoints(current=3, max=12)) == "3/12"
        assert HitPoints(current=3, max=12).percentage == 25
        assert HitPoints(current=3, max=0).percentage == 0

    def test_item_flat_and_host_shapes_agree(self):
        flat = Item.model_validate({"name": "Bite", "description": "d6", "activities": {"a": {}}})
        host = Item.model_validate({
            "name": "Bite",
            "system": {"description": {"value": "d6"}, "activities": {"a": {}}},
        })
        assert flat == host
