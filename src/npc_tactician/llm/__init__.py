"""
LLM layer for npc-tactician.

- client: transport adapters (OpenAI, Anthropic, local) behind one protocol
- prompts: prompt construction for descriptions and recommendations
- parser: tolerant extraction of structured data from free-form responses
"""

from .client import (
    AnthropicLLMClient,
    ConnectionTestResult,
    LLMAPIError,
    LLMClient,
    LLMClientError,
    LLMConfigurationError,
    LLMRateLimitError,
    LLMTimeoutError,
    LocalLLMClient,
    MockLLMClient,
    MultiModelClient,
    OpenAILLMClient,
    check_connection,
    create_client,
)
from .parser import (
    FinalAction,
    Recommendation,
    RecommendationsByType,
    parse_action_descriptions,
    parse_recommendations,
)
from .prompts import build_description_prompt, build_recommendation_prompt

__all__ = [
    # Clients
    "LLMClient",
    "MockLLMClient",
    "OpenAILLMClient",
    "AnthropicLLMClient",
    "LocalLLMClient",
    "MultiModelClient",
    "create_client",
    "check_connection",
    "ConnectionTestResult",
    # Errors
    "LLMClientError",
    "LLMConfigurationError",
    "LLMAPIError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    # Parsing
    "FinalAction",
    "Recommendation",
    "RecommendationsByType",
    "parse_action_descriptions",
    "parse_recommendations",
    # Prompts
    "build_description_prompt",
    "build_recommendation_prompt",
]
