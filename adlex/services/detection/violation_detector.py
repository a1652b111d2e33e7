import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from adlex.core.exceptions import APIClientError, ChatCompletionError
from adlex.core.retry import retry_async
from adlex.core.unified_llm import OpenAICompatibleClient
from adlex.prompts.system_prompts import (
    DETECTION_TOOL,
    DETECTION_TOOL_CHOICE,
    RAW_OUTPUT_INSTRUCTIONS,
    STRUCTURED_OUTPUT_INSTRUCTIONS,
    VIOLATION_DETECTION_SYSTEM_PROMPT,
    format_reference_block,
)
from adlex.schemas.pipeline import DetectionResult, ReferencePhrase
from adlex.services.detection.response_normalizer import classify_completion, normalize_completion
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ViolationDetector:
    """Asks the chat model for violations and a compliant rewrite.

    Each call is retried with exponential backoff; every attempt is a full
    request-and-parse cycle, so a malformed response is retried the same way
    as a transport failure.
    """

    def __init__(
        self,
        client: OpenAICompatibleClient,
        model: str,
        max_retries: int = 2,
        base_delay: float = 1.5,
        temperature: float = 0.1,
        max_tokens: int = 2000,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize the detector.

        Args:
            client: Chat-completion client for the configured provider
            model: Chat model name
            max_retries: Retries after the first attempt
            base_delay: Backoff base delay in seconds
            temperature: Sampling temperature
            max_tokens: Completion token limit
            sleep: Optional backoff sleep override
        """
        self.client = client
        self.model = model
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._sleep = sleep

    def build_messages(self, text: str, references: Sequence[ReferencePhrase]) -> List[Dict[str, Any]]:
        instructions = (
            STRUCTURED_OUTPUT_INSTRUCTIONS
            if self.client.supports_function_calling
            else RAW_OUTPUT_INSTRUCTIONS
        )
        system_prompt = VIOLATION_DETECTION_SYSTEM_PROMPT.format(
            reference_block=format_reference_block(references),
            output_instructions=instructions,
        )
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": text},
        ]

    async def detect(
        self,
        text: str,
        references: Sequence[ReferencePhrase],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DetectionResult:
        """Detect violations in ``text``.

        Args:
            text: Text to analyze
            references: NG dictionary entries to ground the analysis
            cancel_event: Aborts pending retries when set

        Returns:
            Normalized detection result (offsets not yet validated)

        Raises:
            ChatCompletionError: If every attempt fails
        """
        messages = self.build_messages(text, references)

        async def attempt() -> DetectionResult:
            return await self._detect_once(messages, text)

        try:
            return await retry_async(
                attempt,
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                retry_on=(APIClientError, ChatCompletionError),
                cancel_event=cancel_event,
                sleep=self._sleep,
                operation_name="Violation detection",
            )
        except (APIClientError, ChatCompletionError) as e:
            LOGGER.error(
                f"Violation detection failed after {self.max_retries + 1} attempts: {e}",
                extra={"provider": self.client.provider.value, "model": self.model},
            )
            raise ChatCompletionError(
                f"Chat completion failed after {self.max_retries + 1} attempts: {e}",
                original_error=e,
            ) from e

    async def _detect_once(self, messages: List[Dict[str, Any]], text: str) -> DetectionResult:
        use_tools = self.client.supports_function_calling
        response = await self.client.chat_completion(
            model=self.model,
            messages=messages,
            tools=[DETECTION_TOOL] if use_tools else None,
            tool_choice=DETECTION_TOOL_CHOICE if use_tools else None,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        completion = classify_completion(response)
        result = normalize_completion(completion, original_text=text)
        LOGGER.info(
            "Violation detection succeeded",
            extra={"kind": completion.kind.value, "violation_count": len(result.violations)},
        )
        return result
