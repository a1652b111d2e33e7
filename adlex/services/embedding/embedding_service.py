import asyncio
import threading
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from adlex.config import LLMSettings
from adlex.core.exceptions import APIClientError, ConfigurationError, EmbeddingServiceError
from adlex.core.unified_llm import OpenAICompatibleClient, create_llm_client_from_settings
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class EmbeddingService(ABC):
    """Turns text into a fixed-length vector for dictionary search."""

    model_name: str

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed ``text``.

        Raises:
            EmbeddingServiceError: On any provider failure
        """
        pass


class RemoteEmbeddingService(EmbeddingService):
    """Embeddings from an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(self, client: OpenAICompatibleClient, model_name: str, dimensions: Optional[int] = None):
        self.client = client
        self.model_name = model_name
        self.dimensions = dimensions

    async def embed(self, text: str) -> List[float]:
        try:
            vector = await self.client.create_embedding(self.model_name, text, dimensions=self.dimensions)
        except APIClientError as e:
            raise EmbeddingServiceError(f"Embedding request failed: {e}", original_error=e) from e

        if self.dimensions and len(vector) != self.dimensions:
            raise EmbeddingServiceError(
                f"Embedding has {len(vector)} dimensions, expected {self.dimensions}"
            )
        return vector


class LocalEmbeddingService(EmbeddingService):
    """Embeddings from a local sentence-transformers model.

    The model is loaded on first use. Loading and encoding both run in a
    worker thread so the event loop never blocks on them.
    Requires the ``local-embeddings`` extra.
    """

    def __init__(self, model_name: str):
        self.model_name = model_name
        self._model: Any = None
        self._load_lock = threading.Lock()

    @property
    def model(self) -> Any:
        """Lazy loader for the SentenceTransformer model."""
        with self._load_lock:
            if self._model is None:
                self._model = self._load_model()
        return self._model

    def _load_model(self) -> Any:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ConfigurationError(
                "EMBEDDING_PROVIDER=local requires the local-embeddings extra", original_error=e
            ) from e
        LOGGER.info(f"Loading embedding model: {self.model_name}")
        return SentenceTransformer(self.model_name)

    def _encode(self, text: str) -> Any:
        return self.model.encode(text, normalize_embeddings=True)

    async def embed(self, text: str) -> List[float]:
        try:
            vector = await asyncio.to_thread(self._encode, text)
        except Exception as e:
            raise EmbeddingServiceError(f"Local embedding failed: {e}", original_error=e) from e
        return [float(x) for x in vector]


def create_embedding_service_from_settings(llm_settings: LLMSettings) -> EmbeddingService:
    """Build the embedding service selected by ``EMBEDDING_PROVIDER``."""
    if llm_settings.embedding_provider == "local":
        return LocalEmbeddingService(llm_settings.local_embedding_model)

    client = create_llm_client_from_settings(
        llm_settings,
        provider=llm_settings.embedding_provider,
        max_attempts=llm_settings.embedding_http_max_attempts,
    )
    return RemoteEmbeddingService(
        client,
        model_name=llm_settings.embedding_model,
        dimensions=llm_settings.embedding_dimensions,
    )
