from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from adlex.config import CacheSettings, PipelineSettings
from adlex.core.cache import CacheKeys, CacheService, fingerprint
from adlex.core.exceptions import EmbeddingServiceError, RepositoryError
from adlex.repositories.dictionary_repository import DictionaryRepository
from adlex.schemas.pipeline import ReferencePhrase
from adlex.services.embedding.embedding_service import EmbeddingService
from adlex.services.retrieval.result_merger import ResultMergerService
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class SimilarityService:
    """Finds the NG dictionary entries most similar to a text.

    Both the embedding and the merged search result are cached per text
    fingerprint, so identical text submitted twice within the similarity TTL
    triggers neither an embedding call nor a dictionary query.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        cache: CacheService,
        session_factory: Callable[[], AsyncSession],
        pipeline_settings: PipelineSettings,
        cache_settings: CacheSettings,
        merger: Optional[ResultMergerService] = None,
    ):
        """Initialize the service.

        Args:
            embedding_service: Provider used on embedding cache misses
            cache: Shared cache instance
            session_factory: Produces short-lived sessions for dictionary queries
            pipeline_settings: Thresholds and limits
            cache_settings: TTLs
            merger: Result merger (default instance if omitted)
        """
        self.embedding_service = embedding_service
        self.cache = cache
        self.session_factory = session_factory
        self.pipeline_settings = pipeline_settings
        self.cache_settings = cache_settings
        self.merger = merger or ResultMergerService()

    async def find_reference_entries(self, organization_id: UUID, text: str) -> List[ReferencePhrase]:
        """Top NG entries for ``text``; empty when the embedding is unavailable.

        Args:
            organization_id: Dictionary owner
            text: Text being checked

        Returns:
            At most ``max_reference_entries`` NG entries, best first
        """
        text_fingerprint = fingerprint(text)
        similar_key = CacheKeys.similar_phrases(organization_id, text_fingerprint)

        phrases: Optional[List[ReferencePhrase]] = self.cache.get(similar_key)
        if phrases is not None:
            LOGGER.debug("Similar phrases served from cache", extra={"organization_id": str(organization_id)})
        else:
            embedding = await self.get_embedding(text, text_fingerprint)
            if embedding is None:
                return []
            try:
                phrases = await self.search(organization_id, text, embedding)
            except RepositoryError as e:
                LOGGER.error(
                    f"Dictionary search failed, continuing without references: {e}",
                    extra={"organization_id": str(organization_id)},
                )
                return []
            self.cache.set(similar_key, phrases, ttl=self.cache_settings.similarity_ttl)

        return self.merger.select_references(phrases, self.pipeline_settings.max_reference_entries)

    async def get_embedding(self, text: str, text_fingerprint: Optional[str] = None) -> Optional[List[float]]:
        """Cached embedding of ``text``, or None if the provider failed."""
        key = CacheKeys.embedding(text_fingerprint or fingerprint(text))
        embedding = self.cache.get(key)
        if embedding is not None:
            return embedding

        limit = self.pipeline_settings.embedding_text_limit
        embedding_input = text[:limit] if len(text) > limit else text
        try:
            embedding = await self.embedding_service.embed(embedding_input)
        except EmbeddingServiceError as e:
            LOGGER.warning(
                f"Embedding generation failed, falling back to AI-only analysis: {e}",
                extra={"model": self.embedding_service.model_name},
            )
            return None

        self.cache.set(key, embedding, ttl=self.cache_settings.embedding_ttl)
        return embedding

    async def search(self, organization_id: UUID, text: str, embedding: List[float]) -> List[ReferencePhrase]:
        """Hybrid lexical + vector search, merged and ranked.

        Long text is searched by its prefix with a smaller result cap and a
        relaxed vector threshold.
        """
        cfg = self.pipeline_settings
        is_long = len(text) > cfg.long_text_threshold
        search_text = text[: cfg.long_text_threshold] if is_long else text
        limit = cfg.long_text_max_search_results if is_long else cfg.max_search_results
        vector_threshold = cfg.long_text_vector_threshold if is_long else cfg.vector_threshold

        async with self.session_factory() as session:
            repository = DictionaryRepository(session)
            lexical = await repository.find_lexical_matches(
                organization_id, search_text, threshold=cfg.trgm_threshold, limit=limit
            )
            vector = await repository.find_vector_matches(
                organization_id, embedding, threshold=vector_threshold, limit=limit
            )

        merged = self.merger.merge(lexical, vector)[:limit]
        LOGGER.info(
            "Dictionary search completed",
            extra={
                "organization_id": str(organization_id),
                "lexical_matches": len(lexical),
                "vector_matches": len(vector),
                "merged": len(merged),
                "long_text": is_long,
            },
        )
        return merged
