"""
Recommendation orchestration for NPC turns.

Drives one NPC turn through a small state machine:

    IDLE -> ANALYZING -> RECOMMENDING -> IDLE

ANALYZING builds the combat snapshot (and may wait on action-description
generation). RECOMMENDING builds the prompt, calls the combat LLM and
parses the answer. Every step has a fallback: a failed analysis or a
failed LLM call produces the static recommendation set for the current
difficulty, so the display always receives a complete set. Only a
breakdown of the orchestrator itself reaches the user, as one error
notice, and it never writes to the action cache.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from ..action_cache import ActionCache
from ..config import Difficulty, TacticianConfig
from ..llm.client import LLMClient
from ..llm.parser import DEFAULT_CATEGORY, Recommendation, RecommendationsByType, parse_recommendations
from ..llm.prompts import build_recommendation_prompt, group_actions_by_activation
from ..models import Combat, Combatant
from .analyzer import CombatAnalyzer, CombatSituation
from .display import RecommendationDisplay

logger = logging.getLogger("npc-tactician")


class TurnState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    RECOMMENDING = "recommending"


FALLBACK_RECOMMENDATIONS: dict[Difficulty, list[tuple[str, str]]] = {
    Difficulty.EASY: [
        ("Move and Attack", "Simple melee attack"),
        ("Dodge", "Defensive action"),
        ("Dash", "Reposition safely"),
    ],
    Difficulty.NORMAL: [
        ("Attack strongest enemy", "Focus fire on threats"),
        ("Use class feature", "Utilize special abilities"),
        ("Tactical movement", "Improve positioning"),
    ],
    Difficulty.HARD: [
        ("Multi-attack on weakest", "Eliminate low HP targets"),
        ("Use powerful ability", "Maximize damage potential"),
        ("Control battlefield", "Use terrain and positioning"),
    ],
    Difficulty.DEADLY: [
        ("Focus fire spellcaster", "Eliminate primary threats"),
        ("Use legendary action", "Maximize action economy"),
        ("Coordinate with allies", "Tactical team play"),
    ],
    Difficulty.TPK: [
        ("Target unconscious PCs", "Force death saves"),
        ("Use environment", "Maximize all advantages"),
        ("Perfect positioning", "Optimal tactical placement"),
    ],
}


def fallback_recommendations(difficulty: Difficulty | str, count: int = 3) -> RecommendationsByType:
    """Static recommendation set for a difficulty, keyed like an LLM answer."""
    entries = FALLBACK_RECOMMENDATIONS[Difficulty(difficulty)][:max(count, 1)]
    return {
        DEFAULT_CATEGORY: [
            Recommendation(action=action, reasoning=reasoning, priority=index)
            for index, (action, reasoning) in enumerate(entries, start=1)
        ]
    }


@dataclass
class TurnResult:
    """Outcome of one handled NPC turn."""
    entity_id: str
    entity_name: str
    difficulty: Difficulty
    recommendations: RecommendationsByType
    used_fallback: bool = False
    situation: CombatSituation | None = field(default=None, repr=False)


class RecommendationOrchestrator:
    """Handles NPC turns end to end.

    Args:
        config: Tactician settings (difficulty, counts, privacy, toggles).
        action_cache: Shared action description cache.
        combat_client: LLM client for recommendations; None always falls back.
        display: Receives finished recommendation sets and error notices.
        analyzer: Situation analyzer; built from ``config`` if omitted.
    """

    def __init__(
        self,
        config: TacticianConfig,
        action_cache: ActionCache,
        combat_client: LLMClient | None,
        display: RecommendationDisplay,
        analyzer: CombatAnalyzer | None = None,
    ) -> None:
        self.config = config
        self.action_cache = action_cache
        self.combat_client = combat_client
        self.display = display
        self.analyzer = analyzer or CombatAnalyzer(
            action_cache,
            include_player_names=config.include_player_names,
            context_turns=config.context_turns,
        )
        self.state = TurnState.IDLE
        self.current_combat: Combat | None = None
        self.combat_history: list[TurnResult] = []

    @property
    def difficulty(self) -> Difficulty:
        return self.config.difficulty

    def set_difficulty(self, difficulty: Difficulty | str) -> Difficulty:
        """Change the difficulty tier for subsequent turns."""
        self.config = self.config.model_copy(update={"difficulty": Difficulty(difficulty)})
        logger.info(f"AI difficulty set to {self.config.difficulty.value.upper()}")
        return self.config.difficulty

    # ------------------------------------------------------------------
    # Turn handling
    # ------------------------------------------------------------------

    async def handle_npc_turn(self, combat: Combat, combatant: Combatant) -> TurnResult | None:
        """Produce and display recommendations for one NPC turn.

        Returns:
            The TurnResult, or None when the turn could not be handled at all
            (in which case the display received an error notice).
        """
        try:
            entity = combatant.entity
            if entity is None:
                raise ValueError(f"Combatant {combatant.id} has no entity")
            logger.info(f"Processing AI turn for: {entity.name}")
            self.current_combat = combat
            difficulty = self.difficulty

            self.state = TurnState.ANALYZING
            try:
                situation = await self.analyzer.analyze(combat, combatant)
            except Exception as e:
                logger.error(f"Combat analysis failed for {entity.name}: {e}")
                situation = None

            self.state = TurnState.RECOMMENDING
            if situation is None:
                recommendations = fallback_recommendations(difficulty, self.config.num_recommendations)
                used_fallback = True
            else:
                recommendations, used_fallback = await self.generate_recommendations(situation, difficulty)

            result = TurnResult(
                entity_id=entity.id,
                entity_name=entity.name,
                difficulty=difficulty,
                recommendations=recommendations,
                used_fallback=used_fallback,
                situation=situation,
            )
            self.combat_history.append(result)

            try:
                self.display.show_recommendations(entity, recommendations, difficulty)
            except Exception as e:
                logger.error(f"Display failed for {entity.name}: {e}")

            return result

        except Exception as e:
            logger.error(f"Error processing NPC turn: {e}")
            try:
                self.display.notify_error("Failed to generate AI recommendations")
            except Exception as notify_error:
                logger.error(f"Error notification failed: {notify_error}")
            return None

        finally:
            self.state = TurnState.IDLE

    async def generate_recommendations(
        self,
        situation: CombatSituation,
        difficulty: Difficulty | str,
    ) -> tuple[RecommendationsByType, bool]:
        """Ask the combat LLM for recommendations.

        Returns:
            (recommendations, used_fallback). The static set for the
            difficulty is used when there is no client or the call fails.
        """
        difficulty = Difficulty(difficulty)
        count = self.config.num_recommendations
        if self.combat_client is None:
            logger.warning("No combat LLM configured, using fallback recommendations")
            return fallback_recommendations(difficulty, count), True

        grouped = group_actions_by_activation(situation.available_actions)
        prompt = build_recommendation_prompt(situation, difficulty, grouped, count)
        try:
            response = await self.combat_client.generate(prompt)
        except Exception as e:
            logger.error(f"LLM generation failed: {e}")
            return fallback_recommendations(difficulty, count), True

        return parse_recommendations(response), False

    # ------------------------------------------------------------------
    # Combat lifecycle
    # ------------------------------------------------------------------

    async def precache_combat(self, combat: Combat) -> int:
        """Generate action descriptions for every NPC in the combat concurrently.

        One request per distinct NPC entity; failures are logged and do not
        stop the others.

        Returns:
            Number of NPC entities successfully cached.
        """
        entities = {c.entity.id: c.entity for c in combat.npcs()}
        if not entities:
            return 0

        results = await asyncio.gather(
            *(self.action_cache.get_entity_actions(entity) for entity in entities.values()),
            return_exceptions=True,
        )

        cached = 0
        for entity, result in zip(entities.values(), results):
            if isinstance(result, Exception):
                logger.error(f"Failed to cache actions for {entity.name}: {result}")
            else:
                cached += 1
                logger.debug(f"Cached {len(result)} actions for {entity.name}")
        logger.info(f"Pre-cached actions for {cached}/{len(entities)} NPCs")
        return cached

    async def on_combat_start(self, combat: Combat) -> int:
        """Start tracking a combat and pre-cache its NPCs' actions."""
        self.current_combat = combat
        self.combat_history = []
        logger.info("Combat tracking started")
        return await self.precache_combat(combat)

    async def on_turn_change(self, combat: Combat, turn_index: int | None = None) -> TurnResult | None:
        """Handle a turn change; only NPC turns with AI enabled are processed."""
        index = combat.turn if turn_index is None else turn_index
        if not 0 <= index < len(combat.combatants):
            return None
        combatant = combat.combatants[index]
        if combatant.entity is None or combatant.entity.player_controlled:
            return None
        if not self.config.enable_ai:
            return None

        logger.info(f"NPC turn detected: {combatant.entity.name}")
        return await self.handle_npc_turn(combat, combatant)

    def on_combat_end(self, combat: Combat | None = None) -> int:
        """Stop tracking the combat and sweep expired cache entries."""
        self.current_combat = None
        logger.info("Combat tracking ended")
        return self.action_cache.sweep_expired()


__all__ = [
    "TurnState",
    "TurnResult",
    "FALLBACK_RECOMMENDATIONS",
    "fallback_recommendations",
    "RecommendationOrchestrator",
]
