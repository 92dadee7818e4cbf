"""
Text-generation clients for npc-tactician.

Every client implements the ``LLMClient`` protocol: one async ``generate``
call, prompt in, text out. Clients make a single attempt and surface any
failure as an ``LLMClientError`` subclass; retries and fallbacks are the
caller's business.

Backends:
- OpenAI chat completions (over httpx)
- Anthropic Messages (via the anthropic SDK)
- A local server, tried first as an OpenAI-compatible endpoint and then
  as an Ollama ``/api/generate`` endpoint (over httpx)
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import anthropic
import httpx
from pydantic import BaseModel

from ..config import LLMBackendConfig

logger = logging.getLogger("npc-tactician")

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
SYSTEM_PROMPT = (
    "You are a helpful D&D 5e Dungeon Master assistant that provides "
    "tactical combat advice for NPCs."
)
CONNECTION_TEST_PROMPT = 'Respond with "Connection successful" if you can read this.'


# ---------------------------------------------------------------------------
# Custom Exceptions
# ---------------------------------------------------------------------------


class LLMClientError(Exception):
    """Base exception for LLM client errors."""
    pass


class LLMConfigurationError(LLMClientError):
    """Raised when an LLM client is misconfigured."""
    pass


class LLMAPIError(LLMClientError):
    """Raised when the LLM API returns an error or an unreadable response."""
    pass


class LLMRateLimitError(LLMClientError):
    """Raised when rate limit is exceeded."""
    pass


class LLMTimeoutError(LLMClientError):
    """Raised when the backend does not answer within the request timeout."""
    pass


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class LLMClient(Protocol):
    """Protocol for text generation, enabling easy mocking in tests."""

    async def generate(self, prompt: str, max_tokens: int | None = None) -> str:
        """Generate text from a prompt.

        Args:
            prompt: The full prompt to send to the LLM.
            max_tokens: Maximum tokens in the response.

        Returns:
            The generated text.
        """
        ...


# ---------------------------------------------------------------------------
# Mock LLM Client (for testing)
# ---------------------------------------------------------------------------


class MockLLMClient:
    """Mock LLM client returning configurable canned responses.

    Args:
        responses: Responses to return in order, cycling when exhausted.
        default_response: Returned when ``responses`` is empty.

    Example:
        >>> mock = MockLLMClient(responses=["First response", "Second response"])
        >>> await mock.generate("prompt")
        'First response'
    """

    def __init__(
        self,
        responses: list[str] | None = None,
        default_response: str = "Mock LLM response.",
    ) -> None:
        self.responses = responses or []
        self.default_response = default_response
        self.call_count = 0
        self.calls: list[dict[str, Any]] = []

    async def generate(self, prompt: str, max_tokens: int | None = None) -> str:
        self.calls.append({"prompt": prompt, "max_tokens": max_tokens})
        self.call_count += 1

        if not self.responses:
            return self.default_response

        response_index = (self.call_count - 1) % len(self.responses)
        return self.responses[response_index]

    def reset(self) -> None:
        """Reset call history."""
        self.call_count = 0
        self.calls.clear()


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


async def _post_json(
    client: httpx.AsyncClient,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    backend: str,
) -> dict[str, Any]:
    """POST a JSON payload and return the decoded JSON body.

    Raises:
        LLMTimeoutError: On request timeout.
        LLMRateLimitError: On HTTP 429.
        LLMAPIError: On any other HTTP or transport error.
    """
    try:
        response = await client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as e:
        raise LLMTimeoutError(f"{backend} request timed out: {e}") from e
    except httpx.RequestError as e:
        raise LLMAPIError(f"Failed to connect to {backend}: {e}") from e

    if response.status_code == 429:
        raise LLMRateLimitError(f"{backend} rate limit exceeded: {response.text}")
    if response.is_error:
        raise LLMAPIError(f"{backend} API error: {response.status_code} - {response.text}")

    try:
        return response.json()
    except ValueError as e:
        raise LLMAPIError(f"{backend} returned invalid JSON: {e}") from e


def _chat_messages(prompt: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def _chat_content(data: dict[str, Any], backend: str) -> str:
    try:
        return data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise LLMAPIError(f"Unexpected {backend} response shape: {e}") from e


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------


class OpenAILLMClient:
    """OpenAI chat completions client.

    Args:
        api_key: OpenAI API key.
        model: Model identifier, e.g. "gpt-4o-mini".
        default_max_tokens: Used when ``generate`` gets no ``max_tokens``.
        reasoning_effort: Optional reasoning effort hint (low/medium/high).
        timeout: Request timeout in seconds.
        http_client: Optional preconfigured ``httpx.AsyncClient`` (tests).

    Raises:
        LLMConfigurationError: If the API key is missing.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        default_max_tokens: int = 500,
        reasoning_effort: str | None = None,
        timeout: float = 30.0,
        url: str = OPENAI_CHAT_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise LLMConfigurationError(
                "No API key configured for OpenAI. Set it in the settings file "
                "or the OPENAI_API_KEY environment variable."
            )
        self.api_key = api_key
        self.model = model
        self.default_max_tokens = default_max_tokens
        self.reasoning_effort = reasoning_effort
        self.url = url
        self.client = http_client or httpx.AsyncClient(timeout=timeout)

        logger.info(f"Initialized OpenAILLMClient with model={model}")

    async def generate(self, prompt: str, max_tokens: int | None = None) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": _chat_messages(prompt),
            "max_completion_tokens": max_tokens or self.default_max_tokens,
        }
        if self.reasoning_effort:
            payload["reasoning_effort"] = self.reasoning_effort

        logger.debug(f"OpenAI request: model={self.model}, prompt={len(prompt)} chars")
        data = await _post_json(
            self.client,
            self.url,
            payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
            backend="OpenAI",
        )
        return _chat_content(data, "OpenAI")


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicLLMClient:
    """Anthropic Messages API client using the anthropic SDK.

    Args:
        api_key: Anthropic API key.
        model: Model identifier.
        temperature: Sampling temperature.
        default_max_tokens: Used when ``generate`` gets no ``max_tokens``.
        timeout: Request timeout in seconds, passed to the SDK.

    Raises:
        LLMConfigurationError: If the API key is missing.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-haiku-20240307",
        temperature: float = 0.7,
        default_max_tokens: int = 500,
        timeout: float = 30.0,
    ) -> None:
        if not api_key:
            raise LLMConfigurationError(
                "No API key configured for Anthropic. Set it in the settings file "
                "or the ANTHROPIC_API_KEY environment variable."
            )
        self.model = model
        self.temperature = temperature
        self.default_max_tokens = default_max_tokens
        self.client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)

        logger.info(
            f"Initialized AnthropicLLMClient with model={model}, "
            f"temperature={temperature}, default_max_tokens={default_max_tokens}"
        )

    async def generate(self, prompt: str, max_tokens: int | None = None) -> str:
        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens or self.default_max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as e:
            logger.error(f"Rate limit exceeded: {e}")
            raise LLMRateLimitError(f"Rate limit exceeded: {e}") from e
        except anthropic.APITimeoutError as e:
            raise LLMTimeoutError(f"Anthropic request timed out: {e}") from e
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise LLMAPIError(f"API error: {e}") from e

        response_text = "".join(
            block.text for block in message.content if hasattr(block, "text")
        )
        logger.debug(
            f"Generated {len(response_text)} chars with model {self.model} "
            f"(tokens: {message.usage.input_tokens} in, {message.usage.output_tokens} out)"
        )
        return response_text


# ---------------------------------------------------------------------------
# Local (OpenAI-compatible or Ollama)
# ---------------------------------------------------------------------------


class LocalLLMClient:
    """Client for a local LLM server such as Ollama or LM Studio.

    Tries the OpenAI-compatible ``/v1/chat/completions`` route first and
    falls back to Ollama's ``/api/generate``. This is route discovery
    within one attempt, not a retry.

    Raises:
        LLMConfigurationError: If no endpoint is configured.
    """

    def __init__(
        self,
        endpoint: str,
        model: str = "llama3.2",
        default_max_tokens: int = 500,
        temperature: float = 0.7,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not endpoint:
            raise LLMConfigurationError("Local LLM endpoint not configured")
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self.default_max_tokens = default_max_tokens
        self.temperature = temperature
        self.client = http_client or httpx.AsyncClient(timeout=timeout)

        logger.info(f"Initialized LocalLLMClient at {self.endpoint} with model={model}")

    async def generate(self, prompt: str, max_tokens: int | None = None) -> str:
        try:
            data = await _post_json(
                self.client,
                f"{self.endpoint}/v1/chat/completions",
                {
                    "model": self.model or "default",
                    "messages": _chat_messages(prompt),
                    "max_tokens": max_tokens or self.default_max_tokens,
                    "temperature": self.temperature,
                },
                headers={},
                backend="local OpenAI-compatible server",
            )
            return _chat_content(data, "local OpenAI-compatible server")
        except LLMClientError as e:
            logger.warning(f"OpenAI-compatible API failed ({e}), trying Ollama format")

        try:
            data = await _post_json(
                self.client,
                f"{self.endpoint}/api/generate",
                {"model": self.model or "llama2", "prompt": prompt, "stream": False},
                headers={},
                backend="Ollama",
            )
        except LLMClientError as e:
            raise LLMAPIError(f"Failed to connect to local LLM endpoint: {e}") from e

        if "response" not in data:
            raise LLMAPIError("Unexpected Ollama response shape: missing 'response'")
        return data["response"]


# ---------------------------------------------------------------------------
# Factory and helpers
# ---------------------------------------------------------------------------


def create_client(backend: LLMBackendConfig, timeout: float = 30.0) -> LLMClient:
    """Build the transport adapter for a backend configuration.

    Args:
        backend: Provider, model, endpoint and credential settings.
        timeout: Request timeout in seconds, enforced by the transport.

    Raises:
        LLMConfigurationError: If the provider is unknown or a key is missing.
    """
    if backend.provider == "openai":
        return OpenAILLMClient(
            api_key=backend.api_key,
            model=backend.model,
            default_max_tokens=backend.max_tokens,
            reasoning_effort=backend.reasoning_effort,
            timeout=timeout,
        )
    if backend.provider == "anthropic":
        return AnthropicLLMClient(
            api_key=backend.api_key,
            model=backend.model,
            temperature=backend.temperature,
            default_max_tokens=backend.max_tokens,
            timeout=timeout,
        )
    if backend.provider == "local":
        return LocalLLMClient(
            endpoint=backend.local_endpoint,
            model=backend.model,
            default_max_tokens=backend.max_tokens,
            temperature=backend.temperature,
            timeout=timeout,
        )
    raise LLMConfigurationError(f"Unsupported LLM provider: {backend.provider}")


class ConnectionTestResult(BaseModel):
    """Outcome of a connection test."""
    success: bool
    response: str | None = None
    error: str | None = None


async def check_connection(client: LLMClient) -> ConnectionTestResult:
    """Send a trivial prompt and report whether the backend answered."""
    try:
        response = await client.generate(CONNECTION_TEST_PROMPT)
    except Exception as e:
        return ConnectionTestResult(success=False, error=str(e))
    return ConnectionTestResult(success=True, response=response)


class MultiModelClient:
    """Maps LLM roles ("action_cache", "combat") to clients.

    Example:
        >>> multi = MultiModelClient({"combat": combat_client, "action_cache": cache_client})
        >>> client = multi.get_client("combat")
    """

    def __init__(self, clients: dict[str, LLMClient]) -> None:
        self.clients = clients
        logger.info(f"Initialized MultiModelClient with roles: {list(clients.keys())}")

    def get_client(self, role: str) -> LLMClient:
        """Get the client for a role.

        Raises:
            LLMConfigurationError: If the role is not configured.
        """
        if role not in self.clients:
            raise LLMConfigurationError(
                f"No LLM client configured for role '{role}'. "
                f"Available roles: {list(self.clients.keys())}"
            )
        return self.clients[role]

    def has_role(self, role: str) -> bool:
        return role in self.clients

    def list_roles(self) -> list[str]:
        return list(self.clients.keys())


__all__ = [
    "LLMClientError",
    "LLMConfigurationError",
    "LLMAPIError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "LLMClient",
    "MockLLMClient",
    "OpenAILLMClient",
    "AnthropicLLMClient",
    "LocalLLMClient",
    "create_client",
    "ConnectionTestResult",
    "check_connection",
    "MultiModelClient",
]
