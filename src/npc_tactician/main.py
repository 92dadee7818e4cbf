"""
NPC Tactician MCP Server
Tactical turn recommendations for NPCs, exposed as FastMCP tools.
"""

import logging
import os
from dataclasses import asdict
from typing import Annotated, Literal

from dotenv import load_dotenv
from fastmcp import FastMCP
from pydantic import Field

from .action_cache import ActionCache
from .combat import MarkdownDisplay, RecommendationOrchestrator, TurnResult, format_recommendations
from .config import LLMBackendConfig, TacticianConfig, load_config
from .llm.client import LLMClient, LLMConfigurationError, check_connection, create_client
from .llm.parser import FinalAction
from .logutils import configure_logging
from .snapshots import SnapshotError, load_combat

logger = logging.getLogger("npc-tactician")

logging.basicConfig(
    level=logging.INFO,
    )

if not load_dotenv():
    logger.debug(".env file not found, using the process environment only")

config: TacticianConfig = load_config(os.getenv("NPC_TACTICIAN_CONFIG"))
configure_logging(config.debug_mode)
logger.debug(f"Difficulty: {config.difficulty.value}, recommendations: {config.num_recommendations}")

mcp = FastMCP(
    name="npc-tactician"
)

_clients: dict[str, LLMClient | None] = {}
_action_cache: ActionCache | None = None
_orchestrator: RecommendationOrchestrator | None = None
display = MarkdownDisplay()


def _backend_for(role: str) -> LLMBackendConfig:
    return config.action_cache_llm if role == "action_cache" else config.combat_llm


def get_client(role: Literal["action_cache", "combat"]) -> LLMClient | None:
    """Build (once) the client for a role; None when the backend is not usable."""
    if role not in _clients:
        try:
            _clients[role] = create_client(_backend_for(role), timeout=config.request_timeout)
        except LLMConfigurationError as e:
            logger.warning(f"LLM role '{role}' unavailable, fallbacks will be used: {e}")
            _clients[role] = None
    return _clients[role]


def get_action_cache() -> ActionCache:
    global _action_cache
    if _action_cache is None:
        _action_cache = ActionCache(generator=get_client("action_cache"), ttl=config.cache_ttl)
    return _action_cache


def get_orchestrator() -> RecommendationOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = RecommendationOrchestrator(
            config=config,
            action_cache=get_action_cache(),
            combat_client=get_client("combat"),
            display=display,
        )
    return _orchestrator


def _format_turn_result(result: TurnResult) -> str:
    text = format_recommendations(result.entity_name, result.recommendations, result.difficulty)
    if result.used_fallback:
        text += "\n\n_AI unavailable: showing default recommendations for this difficulty._"
    return text


def _format_actions(entity_name: str, actions: list[FinalAction]) -> str:
    if not actions:
        return f"📭 {entity_name} has no usable abilities."

    lines = [f"**Abilities of {entity_name}:**"]
    lines.extend(
        f"• **{a.name}** ({a.activation_time}, {a.item_type}): {a.description}" for a in actions
    )
    return "\n".join(lines)


# ----------------------------------------------------------------------
# Tools
# ----------------------------------------------------------------------

@mcp.tool
async def recommend_npc_turn(
    combat_file: Annotated[str, Field(description="Path to a combat snapshot (JSON or YAML)")],
    combatant_id: Annotated[str | None, Field(description="Combatant or entity id; defaults to the active combatant")] = None,
) -> str:
    """Generate tactical recommendations for an NPC's turn."""
    try:
        combat = load_combat(combat_file)
    except SnapshotError as e:
        return f"❌ {e}"

    combatant = combat.get_combatant(combatant_id) if combatant_id else combat.active
    if combatant is None or combatant.entity is None:
        return f"❌ Combatant '{combatant_id or combat.turn}' not found in combat '{combat.id}'"
    if combatant.entity.player_controlled:
        return f"❌ {combatant.entity.name} is player-controlled; recommendations are for NPCs only"

    result = await get_orchestrator().handle_npc_turn(combat, combatant)
    if result is None:
        return "❌ Failed to generate AI recommendations"

    return _format_turn_result(result)


@mcp.tool
async def describe_npc_actions(
    combat_file: Annotated[str, Field(description="Path to a combat snapshot (JSON or YAML)")],
    combatant_id: Annotated[str, Field(description="Combatant or entity id")],
) -> str:
    """Show the cached tactical descriptions of an NPC's abilities, generating them if needed."""
    try:
        combat = load_combat(combat_file)
    except SnapshotError as e:
        return f"❌ {e}"

    combatant = combat.get_combatant(combatant_id)
    if combatant is None or combatant.entity is None:
        return f"❌ Combatant '{combatant_id}' not found in combat '{combat.id}'"

    entity = combatant.entity
    actions = await get_action_cache().get_entity_actions(entity)
    return _format_actions(entity.name, actions)


@mcp.tool
async def start_combat_tracking(
    combat_file: Annotated[str, Field(description="Path to a combat snapshot (JSON or YAML)")],
) -> str:
    """Start tracking a combat and pre-generate action descriptions for all of its NPCs."""
    try:
        combat = load_combat(combat_file)
    except SnapshotError as e:
        return f"❌ {e}"

    cached = await get_orchestrator().on_combat_start(combat)
    return f"⚔️ Tracking combat '{combat.id}': pre-cached actions for {cached}/{len(combat.npcs())} NPCs"


@mcp.tool
def end_combat_tracking() -> str:
    """Stop tracking the current combat and sweep expired action descriptions."""
    removed = get_orchestrator().on_combat_end()
    return f"🏁 Combat tracking ended ({removed} expired cache entries removed)"


@mcp.tool
def set_ai_difficulty(
    difficulty: Annotated[
        Literal["easy", "normal", "hard", "deadly", "tpk"],
        Field(description="Difficulty tier for NPC recommendations")
    ],
) -> str:
    """Change the AI difficulty for subsequent NPC turns."""
    global config
    new_difficulty = get_orchestrator().set_difficulty(difficulty)
    config = config.model_copy(update={"difficulty": new_difficulty})
    return f"🎚️ AI difficulty set to {new_difficulty.value.upper()}"


@mcp.tool
def clear_action_cache(
    entity_id: Annotated[str | None, Field(description="Entity id to clear; clears everything when omitted")] = None,
) -> str:
    """Clear cached action descriptions for one entity or for all entities."""
    removed = get_action_cache().invalidate(entity_id)
    if entity_id:
        return f"🧹 Cleared {removed} cached entry for '{entity_id}'"
    return f"🧹 Cleared {removed} cached entries"


@mcp.tool
def sweep_action_cache() -> str:
    """Remove expired action descriptions from the cache."""
    removed = get_action_cache().sweep_expired()
    return f"🧹 Removed {removed} expired entries"


@mcp.tool
def get_action_cache_stats() -> dict:
    """Get action cache statistics (entries, hits, misses, generations, fallbacks)."""
    return asdict(get_action_cache().get_stats())


@mcp.tool
async def check_llm_connection(
    role: Annotated[
        Literal["action_cache", "combat"],
        Field(description="Which configured LLM to test")
    ] = "combat",
) -> str:
    """Send a trivial prompt to a configured LLM and report whether it answered."""
    client = get_client(role)
    if client is None:
        return f"❌ No usable LLM configured for '{role}'"

    result = await check_connection(client)
    if result.success:
        return f"✅ Connection to the '{role}' LLM successful: {result.response}"
    return f"❌ Connection to the '{role}' LLM failed: {result.error}"


@mcp.tool
def get_tactician_settings() -> dict:
    """Show the current settings (API keys omitted)."""
    return config.model_dump(
        mode="json",
        exclude={"action_cache_llm": {"api_key"}, "combat_llm": {"api_key"}},
    )


def main() -> None:
    """Main entry point for the NPC Tactician MCP Server."""
    mcp.run()

if __name__ == "__main__":
    main()
