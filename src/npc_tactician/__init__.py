"""
NPC Tactician - tactical turn recommendations for NPCs in D&D 5e combat, built with FastMCP.
"""

from .action_cache import ActionCache, ActionCacheStats
from .config import Difficulty, TacticianConfig, load_config
from .models import *

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("npc-tactician")
except Exception:
    __version__ = "0.1.0"  # Fallback if metadata unavailable
__all__ = ["ActionCache", "ActionCacheStats", "Difficulty", "TacticianConfig", "load_config"]
