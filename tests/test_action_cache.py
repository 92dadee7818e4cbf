"""
Tests for ActionCache.

Tests cover:
- Freshness: repeated lookups inside the window reuse the stored result
- Expiry: stale entries are regenerated and re-timestamped
- Invalidation of one entity and of the whole cache
- Generator failure fallback and its idempotence
- Entities with no abilities are never cached
- Sweeping expired entries
- At most one in-flight generation per entity
- Statistics tracking
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from npc_tactician.action_cache import ActionCache, ActionCacheStats
from npc_tactician.llm.client import MockLLMClient
from npc_tactician.llm.parser import FinalAction
from npc_tactician.models import Entity, Item

pytestmark = pytest.mark.anyio


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FailingLLMClient:
    """LLM client that always raises a network error."""

    def __init__(self) -> None:
        self.call_count = 0

    async def generate(self, prompt: str, max_tokens: int | None = None) -> str:
        self.call_count += 1
        raise ConnectionError("Network unreachable")


class GatedLLMClient:
    """LLM client that blocks until released, to hold a generation in flight."""

    def __init__(self, response: str) -> None:
        self.response = response
        self.release = asyncio.Event()
        self.call_count = 0

    async def generate(self, prompt: str, max_tokens: int | None = None) -> str:
        self.call_count += 1
        await self.release.wait()
        return self.response


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_items() -> list[dict[str, Any]]:
    return [
        {
            "name": "Scimitar",
            "type": "weapon",
            "description": "<p>Melee Weapon Attack: <strong>+4</strong> to hit, reach 5 ft.</p>",
            "activities": {"a1": {"type": "attack", "activation": {"type": "action"}}},
        },
        {
            "name": "Nimble Escape",
            "type": "feat",
            "description": "<p>The goblin can take the Disengage or Hide action as a bonus action "
                           "on each of its turns, which makes it very hard to pin down in a fight.</p>",
            "activities": {"b1": {"type": "utility", "activation": {"type": "bonus"}}},
        },
        {"name": "Leather Armor", "type": "equipment", "description": "Armor."},
    ]


def described(*names: str) -> str:
    return json.dumps([
        {"name": name, "description": f"{name} described", "activationTime": "action", "itemType": "feat"}
        for name in names
    ])


def make_entity(entity_id: str = "goblin-1", name: str = "Goblin") -> Entity:
    return Entity(id=entity_id, name=name, items=[Item.model_validate(i) for i in make_items()])


# ============================================================================
# Freshness and expiry
# ============================================================================


class TestFreshness:

    async def test_second_lookup_within_window_is_cached(self, clock):
        """Two lookups inside the window make one generation call and agree field-for-field."""
        llm = MockLLMClient(responses=[described("Scimitar", "Nimble Escape")])
        cache = ActionCache(generator=llm, ttl=3600, clock=clock)

        first = await cache.get_actions("goblin-1", make_items(), name="Goblin")
        clock.advance(3599)
        second = await cache.get_actions("goblin-1", make_items(), name="Goblin")

        assert llm.call_count == 1
        assert first == second
        assert [a.name for a in first] == ["Scimitar", "Nimble Escape"]

    async def test_expired_entry_is_regenerated(self, clock):
        """Once the window elapses the next lookup regenerates and re-timestamps."""
        llm = MockLLMClient(responses=[described("Old"), described("New")])
        cache = ActionCache(generator=llm, ttl=3600, clock=clock)

        await cache.get_actions("goblin-1", make_items())
        first_timestamp = cache.peek("goblin-1").timestamp

        clock.advance(3600)
        actions = await cache.get_actions("goblin-1", make_items())

        assert llm.call_count == 2
        assert [a.name for a in actions] == ["New"]
        assert cache.peek("goblin-1").timestamp == clock.now
        assert cache.peek("goblin-1").timestamp > first_timestamp

    async def test_returns_copy(self, clock):
        cache = ActionCache(generator=MockLLMClient(responses=[described("Bite")]), clock=clock)

        actions = await cache.get_actions("wolf", make_items())
        actions.append(FinalAction(name="Injected", description="x"))

        assert [a.name for a in cache.peek("wolf").actions] == ["Bite"]

    async def test_prompt_names_the_entity(self, clock):
        llm = MockLLMClient(responses=[described("Scimitar")])
        cache = ActionCache(generator=llm, clock=clock)

        await cache.get_entity_actions(make_entity(name="Goblin Boss"))

        assert '"Goblin Boss"' in llm.calls[0]["prompt"]
        assert "Leather Armor" not in llm.calls[0]["prompt"]

    async def test_per_call_generator_override(self, clock):
        default = MockLLMClient(responses=[described("Default")])
        override = MockLLMClient(responses=[described("Override")])
        cache = ActionCache(generator=default, clock=clock)

        actions = await cache.get_actions("goblin-1", make_items(), generator=override)

        assert [a.name for a in actions] == ["Override"]
        assert default.call_count == 0


# ============================================================================
# Invalidation and sweeping
# ============================================================================


class TestInvalidation:

    async def test_invalidate_forces_regeneration(self, clock):
        llm = MockLLMClient(responses=[described("Scimitar")])
        cache = ActionCache(generator=llm, clock=clock)

        await cache.get_actions("goblin-1", make_items())
        assert cache.invalidate("goblin-1") == 1
        await cache.get_actions("goblin-1", make_items())

        assert llm.call_count == 2

    async def test_invalidate_unknown_entity(self, clock):
        cache = ActionCache(clock=clock)
        assert cache.invalidate("nobody") == 0

    async def test_invalidate_all(self, clock):
        cache = ActionCache(generator=MockLLMClient(responses=[described("Bite")]), clock=clock)
        await cache.get_actions("wolf-1", make_items())
        await cache.get_actions("wolf-2", make_items())

        assert cache.invalidate() == 2
        assert cache.size == 0
        assert "wolf-1" not in cache

    async def test_sweep_expired(self, clock):
        cache = ActionCache(generator=MockLLMClient(responses=[described("Bite")]), ttl=100, clock=clock)
        await cache.get_actions("old", make_items())
        clock.advance(60)
        await cache.get_actions("new", make_items())
        clock.advance(40)

        assert cache.sweep_expired() == 1
        assert "old" not in cache
        assert "new" in cache
        assert cache.sweep_expired() == 0

    async def test_lookup_does_not_sweep(self, clock):
        cache = ActionCache(generator=MockLLMClient(responses=[described("Bite")]), ttl=100, clock=clock)
        await cache.get_actions("old", make_items())
        clock.advance(200)
        await cache.get_actions("new", make_items())

        assert "old" in cache


# ============================================================================
# Fallbacks
# ============================================================================


class TestFallback:

    async def test_network_error_returns_cleaned_raw_descriptions(self, clock):
        """A failing generator yields one cleaned entry per ability and still stores it."""
        llm = FailingLLMClient()
        cache = ActionCache(generator=llm, clock=clock)

        actions = await cache.get_actions("goblin-1", make_items(), name="Goblin")

        assert len(actions) == 2
        assert actions[0].name == "Scimitar"
        assert actions[0].description == "Melee Weapon Attack: +4 to hit, reach 5 ft."
        assert actions[1].activation_time == "bonus"
        assert "<" not in actions[1].description
        assert len(actions[1].description) == 100
        assert actions[1].description.endswith("...")

        entry = cache.peek("goblin-1")
        assert entry is not None
        assert entry.timestamp == clock.now
        assert entry.actions == actions

    async def test_fallback_is_idempotent(self, clock):
        llm = FailingLLMClient()
        cache = ActionCache(generator=llm, ttl=10, clock=clock)

        results = []
        for _ in range(3):
            results.append(await cache.get_actions("goblin-1", make_items()))
            clock.advance(10)

        assert results[0] == results[1] == results[2]
        assert llm.call_count == 3

    async def test_unparseable_response_falls_back(self, clock):
        cache = ActionCache(generator=MockLLMClient(responses=["I refuse."]), clock=clock)

        actions = await cache.get_actions("goblin-1", make_items())

        assert [a.name for a in actions] == ["Scimitar", "Nimble Escape"]

    async def test_no_generator_uses_raw_descriptions(self, clock):
        cache = ActionCache(clock=clock)

        actions = await cache.get_actions("goblin-1", make_items())

        assert [a.item_type for a in actions] == ["weapon", "feat"]
        assert cache.get_stats().fallback_count == 1


# ============================================================================
# Empty entities
# ============================================================================


class TestEmptyEntities:

    async def test_entity_without_abilities_is_not_cached(self, clock):
        llm = MockLLMClient(responses=[described("Bite")])
        cache = ActionCache(generator=llm, clock=clock)
        items = [{"name": "Rock", "type": "loot", "activities": {}}]

        assert await cache.get_actions("rock", items) == []
        assert await cache.get_actions("rock", items) == []

        assert llm.call_count == 0
        assert "rock" not in cache

    async def test_no_items(self, clock):
        cache = ActionCache(generator=MockLLMClient(), clock=clock)
        assert await cache.get_actions("empty", None) == []
        assert cache.size == 0


# ============================================================================
# Concurrency
# ============================================================================


class TestInFlightDeduplication:

    async def test_concurrent_lookups_share_one_generation(self, clock):
        llm = GatedLLMClient(described("Scimitar"))
        cache = ActionCache(generator=llm, clock=clock)

        first = asyncio.ensure_future(cache.get_actions("goblin-1", make_items()))
        second = asyncio.ensure_future(cache.get_actions("goblin-1", make_items()))
        await asyncio.sleep(0)
        llm.release.set()
        results = await asyncio.gather(first, second)

        assert llm.call_count == 1
        assert results[0] == results[1]
        assert cache.size == 1

    async def test_different_entities_generate_independently(self, clock):
        llm = GatedLLMClient(described("Scimitar"))
        cache = ActionCache(generator=llm, clock=clock)

        tasks = [
            asyncio.ensure_future(cache.get_actions(f"goblin-{i}", make_items()))
            for i in range(3)
        ]
        await asyncio.sleep(0)
        llm.release.set()
        await asyncio.gather(*tasks)

        assert llm.call_count == 3
        assert cache.size == 3

    async def test_cancelled_caller_does_not_cancel_generation(self, clock):
        llm = GatedLLMClient(described("Scimitar"))
        cache = ActionCache(generator=llm, clock=clock)

        waiter = asyncio.ensure_future(cache.get_actions("goblin-1", make_items()))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        joined = asyncio.ensure_future(cache.get_actions("goblin-1", make_items()))
        await asyncio.sleep(0)
        llm.release.set()
        actions = await joined

        assert [a.name for a in actions] == ["Scimitar"]
        assert llm.call_count == 1

    async def test_lookup_after_invalidate_starts_new_generation(self, clock):
        llm = GatedLLMClient(described("Scimitar"))
        cache = ActionCache(generator=llm, clock=clock)

        first = asyncio.ensure_future(cache.get_actions("goblin-1", make_items()))
        await asyncio.sleep(0)
        cache.invalidate("goblin-1")
        second = asyncio.ensure_future(cache.get_actions("goblin-1", make_items()))
        await asyncio.sleep(0)
        llm.release.set()
        await asyncio.gather(first, second)

        assert llm.call_count == 2
        assert cache.size == 1

    async def test_invalidate_all_discards_running_generation(self, clock):
        llm = GatedLLMClient(described("Scimitar"))
        cache = ActionCache(generator=llm, clock=clock)

        pending = asyncio.ensure_future(cache.get_actions("goblin-1", make_items()))
        await asyncio.sleep(0)
        cache.invalidate()
        llm.release.set()
        actions = await pending

        assert [a.name for a in actions] == ["Scimitar"]
        assert cache.size == 0
        assert "goblin-1" not in cache

    async def test_detached_generation_keeps_newer_one_registered(self, clock):
        llm = GatedLLMClient(described("Scimitar"))
        cache = ActionCache(generator=llm, clock=clock)

        first = asyncio.ensure_future(cache.get_actions("goblin-1", make_items()))
        await asyncio.sleep(0)
        cache.invalidate("goblin-1")
        second = asyncio.ensure_future(cache.get_actions("goblin-1", make_items()))
        await asyncio.sleep(0)
        third = asyncio.ensure_future(cache.get_actions("goblin-1", make_items()))
        await asyncio.sleep(0)
        llm.release.set()
        await asyncio.gather(first, second, third)

        assert llm.call_count == 2
        assert cache.size == 1


# ============================================================================
# Statistics
# ============================================================================


class TestStats:

    async def test_stats(self, clock):
        llm = MockLLMClient(responses=[described("Scimitar")])
        cache = ActionCache(generator=llm, ttl=100, clock=clock)

        await cache.get_actions("goblin-1", make_items())
        await cache.get_actions("goblin-1", make_items())
        await cache.get_actions("goblin-1", make_items())
        cache.invalidate("goblin-1")

        stats = cache.get_stats()
        assert isinstance(stats, ActionCacheStats)
        assert stats.hit_count == 2
        assert stats.miss_count == 1
        assert stats.generation_count == 1
        assert stats.fallback_count == 0
        assert stats.invalidated_count == 1
        assert stats.total_entries == 0
        assert stats.hit_rate == pytest.approx(2 / 3)

    async def test_empty_stats(self):
        stats = ActionCache().get_stats()
        assert stats.hit_rate == 0.0
        assert stats.total_entries == 0
