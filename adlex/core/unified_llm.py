"""OpenAI-compatible client shared by the chat, vision and embedding stages.

OpenAI, OpenRouter and LM Studio all expose the same ``/chat/completions``
and ``/embeddings`` endpoints; they differ in base URL, credentials and
whether function calling is available.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from adlex.config import LLMSettings
from adlex.core.base_llm_client import BaseLLMClient
from adlex.core.exceptions import APIClientError, ConfigurationError
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class LLMProvider(str, Enum):
    """Supported OpenAI-compatible providers."""
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    LMSTUDIO = "lmstudio"

    @property
    def supports_function_calling(self) -> bool:
        return self in (LLMProvider.OPENAI, LLMProvider.OPENROUTER)


class OpenAICompatibleClient(BaseLLMClient):
    """Chat-completion and embedding calls against one provider."""

    def __init__(
        self,
        provider: Union[str, LLMProvider],
        api_key: str,
        base_url: str,
        timeout: float = 60,
        max_attempts: int = 3,
        retry_delay: float = 2,
    ):
        super().__init__(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_attempts=max_attempts,
            retry_delay=retry_delay,
        )
        self.provider = LLMProvider(provider)

    @property
    def supports_function_calling(self) -> bool:
        return self.provider.supports_function_calling

    async def chat_completion(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Union[str, Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Create a chat completion and return the raw response body.

        Args:
            model: Model identifier for the provider
            messages: OpenAI-style message list
            tools: Optional function-calling tool definitions
            tool_choice: Optional forced tool selection
            temperature: Sampling temperature
            max_tokens: Completion token limit

        Returns:
            Response JSON containing ``choices``

        Raises:
            APIClientError: If the call fails or returns no choices
        """
        payload: Dict[str, Any] = {"model": model, "messages": messages}
        if tools and self.supports_function_calling:
            payload["tools"] = tools
            if tool_choice is not None:
                payload["tool_choice"] = tool_choice
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        headers = {"X-Title": "AdLex"} if self.provider == LLMProvider.OPENROUTER else None
        response = await self.post_json("/chat/completions", payload, headers=headers)

        if not response.get("choices"):
            raise APIClientError(f"{self.provider.value} returned no choices")
        return response

    async def create_embedding(
        self, model: str, text: str, dimensions: Optional[int] = None
    ) -> List[float]:
        """Embed a single text.

        Raises:
            APIClientError: If the call fails or the response carries no vector
        """
        payload: Dict[str, Any] = {"model": model, "input": text}
        if dimensions and self.provider == LLMProvider.OPENAI:
            payload["dimensions"] = dimensions

        response = await self.post_json("/embeddings", payload)
        data = response.get("data") or []
        if not data or not data[0].get("embedding"):
            raise APIClientError(f"{self.provider.value} returned no embedding")
        return data[0]["embedding"]


def _provider_credentials(provider: LLMProvider, llm_settings: LLMSettings) -> Dict[str, str]:
    if provider == LLMProvider.OPENAI:
        if not llm_settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for the openai provider")
        return {"api_key": llm_settings.openai_api_key, "base_url": llm_settings.openai_api_url}
    if provider == LLMProvider.OPENROUTER:
        if not llm_settings.openrouter_api_key:
            raise ConfigurationError("OPENROUTER_API_KEY is required for the openrouter provider")
        return {"api_key": llm_settings.openrouter_api_key, "base_url": llm_settings.openrouter_api_url}
    return {"api_key": llm_settings.lmstudio_api_key, "base_url": llm_settings.lmstudio_api_url}


def create_llm_client_from_settings(
    llm_settings: LLMSettings, provider: Optional[str] = None, max_attempts: Optional[int] = None
) -> OpenAICompatibleClient:
    """Create a client for the configured (or given) provider.

    Args:
        llm_settings: LLM settings section
        provider: Override for ``llm_settings.provider``
        max_attempts: Override for ``llm_settings.http_max_attempts``

    Raises:
        ConfigurationError: If the provider is unknown or lacks credentials
    """
    name = provider or llm_settings.provider
    try:
        resolved = LLMProvider(name)
    except ValueError as e:
        raise ConfigurationError(f"Unsupported AI provider: {name}", original_error=e) from e

    client = OpenAICompatibleClient(
        provider=resolved,
        timeout=llm_settings.request_timeout,
        max_attempts=max_attempts if max_attempts is not None else llm_settings.http_max_attempts,
        **_provider_credentials(resolved, llm_settings),
    )
    LOGGER.info(f"Initialized {resolved.value} client", extra={"base_url": client.base_url})
    return client
