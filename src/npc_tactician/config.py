"""
Configuration for npc-tactician.

Two LLM roles are configured independently: ``action_cache`` turns raw
ability data into short tactical descriptions (cheap, runs once per NPC per
hour), and ``combat`` produces the per-turn recommendations. Backend
selection, model, endpoint and credentials are opaque to the core and are
passed through verbatim to the transport adapters.

Configuration is read from an optional YAML file; missing API keys are
taken from ``OPENAI_API_KEY`` / ``ANTHROPIC_API_KEY``.
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger("npc-tactician")

API_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


class Difficulty(str, Enum):
    """Behavioral presets, ordered from most cautious to most lethal."""
    EASY = "easy"
    NORMAL = "normal"
    HARD = "hard"
    DEADLY = "deadly"
    TPK = "tpk"


class LLMBackendConfig(BaseModel):
    """Transport settings for one LLM role."""
    provider: Literal["openai", "anthropic", "local"] = Field(
        default="openai", description="Backend provider"
    )
    api_key: str = Field(default="", description="API key (unused for local)")
    model: str = Field(default="gpt-4o-mini", description="Model identifier")
    max_tokens: int = Field(default=500, ge=1, description="Maximum tokens in the response")
    reasoning_effort: Literal["low", "medium", "high"] | None = Field(
        default=None, description="Reasoning effort hint (OpenAI only)"
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    local_endpoint: str = Field(
        default="http://localhost:11434", description="Base URL of a local LLM server"
    )


def _default_action_cache_llm() -> LLMBackendConfig:
    return LLMBackendConfig(
        provider="local",
        model="llama3.2",
        max_tokens=1000,
        reasoning_effort="low",
    )


def _default_combat_llm() -> LLMBackendConfig:
    return LLMBackendConfig(
        provider="openai",
        model="gpt-4o-mini",
        max_tokens=2000,
        reasoning_effort="medium",
    )


class TacticianConfig(BaseModel):
    """Top-level settings for the tactician."""
    enable_ai: bool = Field(default=True, description="Produce recommendations on NPC turns")
    difficulty: Difficulty = Field(default=Difficulty.NORMAL, description="AI difficulty tier")
    num_recommendations: int = Field(
        default=3, ge=1, le=5, description="Recommendations requested per category"
    )
    include_player_names: bool = Field(
        default=False, description="Send player character names to the LLM"
    )
    context_turns: int = Field(
        default=3, ge=0, le=10, description="Recent log entries included in prompts"
    )
    request_timeout: float = Field(
        default=30.0, gt=0, description="Advisory request timeout in seconds, enforced by transports"
    )
    debug_mode: bool = Field(default=False, description="Verbose logging")
    cache_ttl: float = Field(
        default=3600.0, gt=0, description="Action description freshness window in seconds"
    )
    action_cache_llm: LLMBackendConfig = Field(default_factory=_default_action_cache_llm)
    combat_llm: LLMBackendConfig = Field(default_factory=_default_combat_llm)


def _fill_api_key(backend: LLMBackendConfig) -> LLMBackendConfig:
    env_var = API_KEY_ENV_VARS.get(backend.provider)
    if backend.api_key or env_var is None:
        return backend
    api_key = os.getenv(env_var, "")
    if not api_key:
        return backend
    return backend.model_copy(update={"api_key": api_key})


def load_config(path: Path | str | None = None) -> TacticianConfig:
    """Load configuration from a YAML file, falling back to defaults.

    Args:
        path: Path to a YAML settings file. Missing files yield defaults.

    Returns:
        Validated TacticianConfig with API keys filled from the environment.

    Raises:
        pydantic.ValidationError: If the file contains invalid values.
    """
    data: dict = {}
    if path is not None:
        path = Path(path)
        if path.exists():
            with open(path, encoding="utf-8") as fh:
                loaded = yaml.safe_load(fh)
            if isinstance(loaded, dict):
                data = loaded
            else:
                logger.warning(f"Ignoring invalid settings file {path}, using defaults")
        else:
            logger.info(f"Settings file {path} not found, using defaults")

    config = TacticianConfig.model_validate(data)
    return config.model_copy(update={
        "action_cache_llm": _fill_api_key(config.action_cache_llm),
        "combat_llm": _fill_api_key(config.combat_llm),
    })


__all__ = [
    "Difficulty",
    "LLMBackendConfig",
    "TacticianConfig",
    "load_config",
]
