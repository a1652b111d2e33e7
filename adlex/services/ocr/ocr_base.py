"""Base OCR service interface for pluggable OCR implementations."""

from abc import abstractmethod
from typing import Any, Dict, Optional

from adlex.services.base_service import BaseService


class OCRResult:
    """OCR extraction result container.

    Attributes:
        text: Extracted text content, stripped
        metadata: Provider details (provider, model, processing_time_ms, ...)
    """

    def __init__(self, text: str, metadata: Optional[Dict[str, Any]] = None):
        self.text = text
        self.metadata = metadata or {}


class BaseOCRService(BaseService):
    """Abstract base class for OCR service implementations."""

    async def extract_text(self, image_url: str) -> OCRResult:
        """Extract text from an image.

        Args:
            image_url: Public or data URL of the image

        Returns:
            OCRResult: Extracted text and metadata

        Raises:
            ImageProcessingError: If the image reference is unusable
            OCRError: If extraction fails or yields no text
        """
        return await self.execute(image_url)

    @abstractmethod
    def get_service_name(self) -> str:
        pass
