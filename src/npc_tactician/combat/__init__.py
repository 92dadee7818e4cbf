"""
Combat-turn pipeline for npc-tactician.

Components:
- CombatAnalyzer: builds the per-turn battlefield snapshot
- RecommendationOrchestrator: IDLE -> ANALYZING -> RECOMMENDING state machine
- MarkdownDisplay: renders finished recommendation sets

Usage:
    from npc_tactician.combat import RecommendationOrchestrator, MarkdownDisplay

    orchestrator = RecommendationOrchestrator(config, cache, combat_llm, MarkdownDisplay())
    await orchestrator.on_combat_start(combat)
    result = await orchestrator.on_turn_change(combat)
"""

from .analyzer import CombatAnalyzer, CombatantSummary, CombatSituation, grid_distance
from .display import MarkdownDisplay, RecommendationDisplay, format_recommendations
from .orchestrator import (
    RecommendationOrchestrator,
    TurnResult,
    TurnState,
    fallback_recommendations,
)

__all__ = [
    # Analyzer
    "CombatAnalyzer",
    "CombatSituation",
    "CombatantSummary",
    "grid_distance",
    # Orchestrator
    "RecommendationOrchestrator",
    "TurnResult",
    "TurnState",
    "fallback_recommendations",
    # Display
    "RecommendationDisplay",
    "MarkdownDisplay",
    "format_recommendations",
]
