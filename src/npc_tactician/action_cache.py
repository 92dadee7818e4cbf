"""
TTL-based cache for LLM-generated action descriptions.

Each entity's abilities are normalized, described by the action-cache LLM
and stored under the entity id for a freshness window (default one hour).
Lookups inside the window return the stored descriptions without touching
the LLM. Generation failures and unparseable responses fall back to
cleaned raw descriptions, so callers never see a generation error as long
as the entity has at least one ability.

At most one generation per entity is in flight at a time: concurrent
lookups for the same stale key await the same refresh task.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass

from .llm.client import LLMClient
from .llm.parser import FinalAction, fallback_actions, parse_action_descriptions
from .llm.prompts import build_description_prompt
from .models import Entity, Item
from .normalizer import RawAction, normalize_items

logger = logging.getLogger("npc-tactician")

DEFAULT_TTL = 3600.0


@dataclass
class CacheEntry:
    """Stored descriptions for one entity.

    Attributes:
        actions: Descriptions in generation order.
        timestamp: Clock reading when the entry was (re)generated.
    """
    actions: list[FinalAction]
    timestamp: float


@dataclass
class ActionCacheStats:
    """Statistics for the action cache.

    Attributes:
        total_entries: Number of entries currently in cache.
        hit_count: Lookups answered from a fresh entry.
        miss_count: Lookups that needed a refresh.
        generation_count: Calls made to the LLM.
        fallback_count: Refreshes that skipped or failed generation.
        expired_count: Entries removed by sweeps.
        invalidated_count: Entries explicitly invalidated.
        hit_rate: Ratio of hits to total lookups (0.0-1.0).
    """
    total_entries: int
    hit_count: int
    miss_count: int
    generation_count: int
    fallback_count: int
    expired_count: int
    invalidated_count: int
    hit_rate: float


class ActionCache:
    """Per-entity, time-bounded memoization of action descriptions.

    Usage:
        cache = ActionCache(generator=action_cache_llm, ttl=3600)

        actions = await cache.get_actions(entity.id, entity.items, name=entity.name)

        cache.invalidate(entity.id)   # one entity
        cache.invalidate()            # everything
        removed = cache.sweep_expired()

    Args:
        generator: Default LLM client used for description generation.
        ttl: Freshness window in seconds.
        clock: Monotonic-enough time source; injectable for tests.
    """

    def __init__(
        self,
        generator: LLMClient | None = None,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.generator = generator
        self.ttl = ttl
        self._clock = clock
        self._cache: dict[str, CacheEntry] = {}
        self._in_flight: dict[str, asyncio.Task] = {}
        self._hit_count = 0
        self._miss_count = 0
        self._generation_count = 0
        self._fallback_count = 0
        self._expired_count = 0
        self._invalidated_count = 0

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_actions(
        self,
        entity_id: str,
        items: Iterable[Item | Mapping] | None,
        name: str | None = None,
        generator: LLMClient | None = None,
    ) -> list[FinalAction]:
        """Return descriptions for an entity, generating them if stale or missing.

        Args:
            entity_id: Cache key; unique and stable for the process lifetime.
            items: The entity's content items, in any shape the normalizer accepts.
            name: Entity display name used in the prompt (defaults to the id).
            generator: LLM client overriding the cache's default for this call.

        Returns:
            The cached or freshly generated descriptions. Empty when the
            entity has no abilities; no entry is stored in that case.
        """
        entry = self._cache.get(entity_id)
        if entry is not None and self._is_fresh(entry):
            self._hit_count += 1
            logger.debug(f"Action cache: hit for '{entity_id}' ({len(entry.actions)} actions)")
            return list(entry.actions)

        self._miss_count += 1
        task = self._in_flight.get(entity_id)
        if task is None:
            logger.debug(f"Action cache: generating action descriptions for '{name or entity_id}'")
            task = asyncio.ensure_future(
                self._refresh(entity_id, list(items or []), name or entity_id, generator or self.generator)
            )
            self._in_flight[entity_id] = task
            task.add_done_callback(lambda t, key=entity_id: self._release(key, t))
        else:
            logger.debug(f"Action cache: joining in-flight generation for '{entity_id}'")

        actions = await asyncio.shield(task)
        return list(actions)

    async def get_entity_actions(
        self,
        entity: Entity,
        generator: LLMClient | None = None,
    ) -> list[FinalAction]:
        """Convenience wrapper keyed by ``entity.id``."""
        return await self.get_actions(entity.id, entity.items, name=entity.name, generator=generator)

    async def _refresh(
        self,
        entity_id: str,
        items: list,
        name: str,
        generator: LLMClient | None,
    ) -> list[FinalAction]:
        raw_actions = normalize_items(items)
        if not raw_actions:
            logger.debug(f"Action cache: '{name}' has no usable abilities, nothing cached")
            return []

        actions = await self._describe(name, raw_actions, generator)
        if self._in_flight.get(entity_id) is not asyncio.current_task():
            logger.debug(f"Action cache: '{entity_id}' was invalidated during generation, not stored")
            return actions
        self._cache[entity_id] = CacheEntry(actions=list(actions), timestamp=self._clock())
        logger.debug(f"Action cache: stored {len(actions)} actions for '{entity_id}'")
        return actions

    def _release(self, entity_id: str, task: asyncio.Task) -> None:
        if self._in_flight.get(entity_id) is task:
            del self._in_flight[entity_id]

    async def _describe(
        self,
        name: str,
        raw_actions: Sequence[RawAction],
        generator: LLMClient | None,
    ) -> list[FinalAction]:
        if generator is None:
            logger.warning(f"No action-cache LLM configured, using raw descriptions for {name}")
            self._fallback_count += 1
            return fallback_actions(raw_actions)

        prompt = build_description_prompt(name, raw_actions)
        self._generation_count += 1
        try:
            response = await generator.generate(prompt)
        except Exception as e:
            logger.error(f"Error generating action descriptions for {name}: {e}")
            self._fallback_count += 1
            return fallback_actions(raw_actions)

        actions = parse_action_descriptions(response, raw_actions)
        logger.debug(f"Generated {len(actions)} action descriptions for {name}")
        return actions

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def invalidate(self, entity_id: str | None = None) -> int:
        """Remove one entity's entry, or every entry when no id is given.

        A generation already running for a removed key is detached: its
        callers still receive its result, but it is not stored.

        Returns:
            Number of entries removed.
        """
        if entity_id is None:
            count = len(self._cache)
            self._cache.clear()
            self._in_flight.clear()
            self._invalidated_count += count
            logger.debug(f"Action cache: cleared {count} entries")
            return count

        self._in_flight.pop(entity_id, None)
        if self._cache.pop(entity_id, None) is None:
            return 0
        self._invalidated_count += 1
        logger.debug(f"Action cache: cleared entry for '{entity_id}'")
        return 1

    def sweep_expired(self) -> int:
        """Remove every entry whose age has reached the freshness window.

        Never called from the lookup path.

        Returns:
            Number of expired entries removed.
        """
        expired_keys = [key for key, entry in self._cache.items() if not self._is_fresh(entry)]
        for key in expired_keys:
            del self._cache[key]
        self._expired_count += len(expired_keys)

        if expired_keys:
            logger.debug(f"Action cache: swept {len(expired_keys)} expired entries")
        return len(expired_keys)

    def peek(self, entity_id: str) -> CacheEntry | None:
        """Return the stored entry without freshness checks or stats."""
        return self._cache.get(entity_id)

    def get_stats(self) -> ActionCacheStats:
        total_lookups = self._hit_count + self._miss_count
        hit_rate = self._hit_count / total_lookups if total_lookups > 0 else 0.0

        return ActionCacheStats(
            total_entries=len(self._cache),
            hit_count=self._hit_count,
            miss_count=self._miss_count,
            generation_count=self._generation_count,
            fallback_count=self._fallback_count,
            expired_count=self._expired_count,
            invalidated_count=self._invalidated_count,
            hit_rate=hit_rate,
        )

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return (self._clock() - entry.timestamp) < self.ttl

    @property
    def size(self) -> int:
        """Return the number of entries currently in the cache."""
        return len(self._cache)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._cache


__all__ = [
    "ActionCache",
    "CacheEntry",
    "ActionCacheStats",
    "DEFAULT_TTL",
]
