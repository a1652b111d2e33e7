import time

from adlex.core.exceptions import APIClientError, ImageProcessingError, OCRError
from adlex.core.unified_llm import OpenAICompatibleClient
from adlex.prompts.system_prompts import OCR_SYSTEM_PROMPT, OCR_USER_PROMPT
from adlex.services.ocr.ocr_base import BaseOCRService, OCRResult
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)

SUPPORTED_URL_PREFIXES = ("http://", "https://", "data:image/")


class VisionOCRService(BaseOCRService):
    """OCR through a vision-capable chat model."""

    def __init__(self, client: OpenAICompatibleClient, model: str, max_tokens: int = 4000):
        super().__init__()
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    def get_service_name(self) -> str:
        return f"{self.client.provider.value}-vision"

    def validate(self, image_url: str) -> None:
        if not image_url or not image_url.strip():
            raise ImageProcessingError("Image URL is missing")
        if not image_url.startswith(SUPPORTED_URL_PREFIXES):
            raise ImageProcessingError(f"Unsupported image reference: {image_url[:50]}")

    async def run(self, image_url: str) -> OCRResult:
        started = time.monotonic()
        messages = [
            {"role": "system", "content": OCR_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": OCR_USER_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            },
        ]

        try:
            response = await self.client.chat_completion(
                model=self.model,
                messages=messages,
                temperature=0,
                max_tokens=self.max_tokens,
            )
        except APIClientError as e:
            raise OCRError(f"Vision model request failed: {e}", original_error=e) from e

        message = response["choices"][0].get("message") or {}
        text = (message.get("content") or "").strip()
        if not text:
            raise OCRError("OCR returned no text")

        processing_time_ms = int((time.monotonic() - started) * 1000)
        LOGGER.info(
            "OCR extraction completed",
            extra={"characters": len(text), "processing_time_ms": processing_time_ms},
        )
        return OCRResult(
            text=text,
            metadata={
                "provider": self.client.provider.value,
                "model": self.model,
                "processing_time_ms": processing_time_ms,
            },
        )
