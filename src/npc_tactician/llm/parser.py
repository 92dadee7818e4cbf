"""
Best-effort parsing of free-form LLM responses.

LLMs asked for JSON often wrap it in prose or code fences. The parser
locates the first JSON array or object substring, decodes exactly that
substring strictly, and validates its shape. Failures fall through a
fixed chain of tiers and never raise:

1. JSON extraction + shape validation.
2. Legacy wrap: an array where an object was expected is placed under
   the default ``"action"`` category.
3. Numbered list (``"1. Name - reasoning"``), recommendations only.
4. Deterministic fallback: raw-derived action descriptions for the
   description path, a single parse-error sentinel otherwise.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..normalizer import RawAction, clean_description

logger = logging.getLogger("npc-tactician")

DEFAULT_CATEGORY = "action"
PARSE_ERROR_NAME = "Parse Error"
PARSE_ERROR_REASONING = "Could not parse the AI response."

_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_NUMBERED_LINE_RE = re.compile(r"^\s*\d+[.)]")
_NUMBERED_ITEM_RE = re.compile(r"^\s*\d+[.)]\s*\[?([^\]]+?)\]?(?:\s+[-–—]|:)\s+(.+)$")


class FinalAction(BaseModel):
    """Tactical description of one ability, as cached and shown in prompts."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(description="Ability name")
    description: str = Field(description="Concise tactical description")
    activation_time: str = Field(default="action", description="action, bonus, reaction, ...")
    item_type: str = Field(default="feat", description="feat, spell, weapon, ...")


class Recommendation(BaseModel):
    """One recommended action for an NPC turn."""
    action: str = Field(description="What to do")
    reasoning: str = Field(description="Why")
    priority: int = Field(default=1, ge=1, description="1 is the strongest recommendation")


RecommendationsByType = dict[str, list[Recommendation]]


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------


def extract_json(text: str, pattern: re.Pattern = _ARRAY_RE) -> Any | None:
    """Decode the first JSON-delimited substring of ``text``.

    Args:
        text: Free-form response text.
        pattern: ``[...]`` or ``{...}`` delimiter pattern.

    Returns:
        The decoded value, or None when nothing matches or decoding fails.
    """
    if not text:
        return None
    match = pattern.search(text)
    if not match:
        return None
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.debug(f"Embedded JSON did not decode: {e}")
        return None


def extract_json_array(text: str) -> Any | None:
    return extract_json(text, _ARRAY_RE)


def extract_json_object(text: str) -> Any | None:
    return extract_json(text, _OBJECT_RE)


# ---------------------------------------------------------------------------
# Shape validation
# ---------------------------------------------------------------------------


def _validate_actions(value: Any) -> list[FinalAction] | None:
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        return None
    try:
        return [FinalAction.model_validate(v, strict=True) for v in value]
    except ValidationError as e:
        logger.debug(f"Action descriptions have the wrong shape: {e}")
        return None


def _validate_recommendation_list(value: Any) -> list[Recommendation] | None:
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        return None
    try:
        recommendations = []
        for index, entry in enumerate(value):
            entry = {"priority": index + 1, **entry}
            recommendations.append(Recommendation.model_validate(entry, strict=True))
        return recommendations
    except ValidationError as e:
        logger.debug(f"Recommendations have the wrong shape: {e}")
        return None


def _validate_recommendations(value: Any) -> RecommendationsByType | None:
    if not isinstance(value, dict) or not value:
        return None
    grouped: RecommendationsByType = {}
    for category, entries in value.items():
        recommendations = _validate_recommendation_list(entries)
        if recommendations is None:
            return None
        grouped[str(category)] = recommendations
    return grouped


# ---------------------------------------------------------------------------
# Fallbacks
# ---------------------------------------------------------------------------


def fallback_actions(raw_actions: Sequence[RawAction]) -> list[FinalAction]:
    """Build generator-independent descriptions from raw actions."""
    return [
        FinalAction(
            name=action.name,
            description=clean_description(action.raw_description),
            activation_time=action.activation_time,
            item_type=action.item_type,
        )
        for action in raw_actions
    ]


def parse_error_actions() -> list[FinalAction]:
    return [FinalAction(name=PARSE_ERROR_NAME, description=PARSE_ERROR_REASONING)]


def parse_error_recommendations() -> RecommendationsByType:
    return {
        DEFAULT_CATEGORY: [
            Recommendation(action=PARSE_ERROR_NAME, reasoning=PARSE_ERROR_REASONING, priority=1)
        ]
    }


def is_parse_error(recommendations: RecommendationsByType) -> bool:
    """True when the result is the parse-error sentinel."""
    entries = recommendations.get(DEFAULT_CATEGORY, [])
    return len(recommendations) == 1 and len(entries) == 1 and entries[0].action == PARSE_ERROR_NAME


def parse_numbered_list(text: str) -> list[Recommendation]:
    """Parse ``"1. Name - reasoning"`` lines.

    Lines without a separator keep the whole text as the action with a
    generic reasoning.
    """
    recommendations = []
    for line in (text or "").splitlines():
        if not _NUMBERED_LINE_RE.match(line):
            continue
        match = _NUMBERED_ITEM_RE.match(line)
        if match:
            action, reasoning = match.group(1).strip(), match.group(2).strip()
        else:
            action = _NUMBERED_LINE_RE.sub("", line, count=1).strip().strip("[]")
            reasoning = "AI recommendation"
        if action:
            recommendations.append(
                Recommendation(action=action, reasoning=reasoning, priority=len(recommendations) + 1)
            )
    return recommendations


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_action_descriptions(
    response: str,
    raw_actions: Sequence[RawAction] | None = None,
) -> list[FinalAction]:
    """Parse a description-generation response into FinalActions.

    Args:
        response: Free-form LLM response expected to contain a JSON array.
        raw_actions: Source actions used to build the fallback result.

    Returns:
        Parsed actions, or raw-derived fallback descriptions, or the
        parse-error sentinel when there is nothing to fall back on.
    """
    actions = _validate_actions(extract_json_array(response))
    if actions:
        return actions

    logger.warning("Failed to parse action descriptions, falling back to raw descriptions")
    if raw_actions:
        return fallback_actions(raw_actions)
    return parse_error_actions()


def parse_recommendations(response: str) -> RecommendationsByType:
    """Parse a recommendation response into categorized recommendations.

    Returns:
        Recommendations keyed by activation category. Never raises; the
        parse-error sentinel is returned when every strategy fails.
    """
    grouped = _validate_recommendations(extract_json_object(response))
    if grouped is not None:
        return grouped

    legacy = _validate_recommendation_list(extract_json_array(response))
    if legacy:
        logger.debug("Wrapping legacy recommendation array under the default category")
        return {DEFAULT_CATEGORY: legacy}

    numbered = parse_numbered_list(response)
    if numbered:
        logger.debug(f"Parsed {len(numbered)} recommendations from a numbered list")
        return {DEFAULT_CATEGORY: numbered}

    logger.warning("Failed to parse AI recommendations")
    return parse_error_recommendations()


__all__ = [
    "DEFAULT_CATEGORY",
    "FinalAction",
    "Recommendation",
    "RecommendationsByType",
    "extract_json",
    "extract_json_array",
    "extract_json_object",
    "fallback_actions",
    "is_parse_error",
    "parse_numbered_list",
    "parse_action_descriptions",
    "parse_recommendations",
]
