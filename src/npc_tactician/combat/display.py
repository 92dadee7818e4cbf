"""
Display collaborators for finished recommendation sets.

The orchestrator hands every finished set to a ``RecommendationDisplay``.
``MarkdownDisplay`` renders sets as Markdown and keeps them for the tool
surface to return.
"""

from __future__ import annotations

import logging
from typing import Protocol

from ..config import Difficulty
from ..llm.parser import RecommendationsByType
from ..llm.prompts import ACTIVATION_CATEGORIES, CATEGORY_LABELS
from ..models import Entity

logger = logging.getLogger("npc-tactician")


class RecommendationDisplay(Protocol):
    """Receives finished recommendation sets and user-facing errors."""

    def show_recommendations(
        self,
        entity: Entity,
        recommendations: RecommendationsByType,
        difficulty: Difficulty,
    ) -> None:
        ...

    def notify_error(self, message: str) -> None:
        ...


def format_recommendations(
    entity_name: str,
    recommendations: RecommendationsByType,
    difficulty: Difficulty | str,
) -> str:
    """Render a recommendation set as Markdown, one section per category."""
    difficulty = Difficulty(difficulty)
    lines = [
        f"## AI Recommendations for {entity_name}",
        f"**Difficulty:** {difficulty.value.upper()}",
    ]

    known = [c for c in ACTIVATION_CATEGORIES if c in recommendations]
    extra = [c for c in recommendations if c not in ACTIVATION_CATEGORIES]
    for category in known + extra:
        entries = sorted(recommendations[category], key=lambda r: r.priority)
        if not entries:
            continue
        lines.append("")
        lines.append(f"### {CATEGORY_LABELS.get(category, category.title())}")
        for index, rec in enumerate(entries, start=1):
            lines.append(f"{index}. **{rec.action}** - {rec.reasoning}")

    return "\n".join(lines)


class MarkdownDisplay:
    """Collects rendered recommendation sets and error notices."""

    def __init__(self) -> None:
        self.rendered: list[str] = []
        self.errors: list[str] = []

    def show_recommendations(
        self,
        entity: Entity,
        recommendations: RecommendationsByType,
        difficulty: Difficulty,
    ) -> None:
        self.rendered.append(format_recommendations(entity.name, recommendations, difficulty))

    def notify_error(self, message: str) -> None:
        logger.error(message)
        self.errors.append(message)

    @property
    def last(self) -> str | None:
        return self.rendered[-1] if self.rendered else None


__all__ = [
    "RecommendationDisplay",
    "MarkdownDisplay",
    "format_recommendations",
]
