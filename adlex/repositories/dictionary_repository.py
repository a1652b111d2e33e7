from typing import List
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adlex.core.exceptions import RepositoryError
from adlex.database.models import DictionaryEntry
from adlex.repositories.base_repository import BaseRepository
from adlex.schemas.pipeline import ReferencePhrase


class DictionaryRepository(BaseRepository[DictionaryEntry]):
    """Read-side queries over an organization's phrase dictionary.

    Lexical matching uses pg_trgm ``similarity()``; semantic matching uses
    pgvector cosine distance. Each path returns its own scores; merging is
    left to the retrieval service.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, DictionaryEntry)

    async def find_lexical_matches(
        self,
        organization_id: UUID,
        text: str,
        threshold: float,
        limit: int,
    ) -> List[ReferencePhrase]:
        """Entries whose trigram similarity to ``text`` is at least ``threshold``.

        Args:
            organization_id: Dictionary owner
            text: Search text (already truncated for long input)
            threshold: Minimum pg_trgm similarity in [0, 1]
            limit: Maximum number of rows

        Returns:
            Matches ordered by similarity, highest first
        """
        score = func.similarity(DictionaryEntry.phrase, text).label("trgm_similarity")
        query = (
            select(DictionaryEntry.id, DictionaryEntry.phrase, DictionaryEntry.category, score)
            .where(DictionaryEntry.organization_id == organization_id)
            .where(func.similarity(DictionaryEntry.phrase, text) >= threshold)
            .order_by(score.desc())
            .limit(limit)
        )
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            self.logger.error(f"Lexical dictionary search failed: {e}", exc_info=True)
            raise RepositoryError("Lexical dictionary search failed", original_error=e) from e

        return [
            ReferencePhrase(
                id=row.id,
                phrase=row.phrase,
                category=row.category,
                trgm_similarity=float(row.trgm_similarity),
            )
            for row in result.all()
        ]

    async def find_vector_matches(
        self,
        organization_id: UUID,
        embedding: List[float],
        threshold: float,
        limit: int,
    ) -> List[ReferencePhrase]:
        """Entries whose cosine similarity to ``embedding`` is at least ``threshold``.

        Args:
            organization_id: Dictionary owner
            embedding: Query embedding
            threshold: Minimum cosine similarity in [0, 1]
            limit: Maximum number of rows

        Returns:
            Matches ordered by similarity, highest first
        """
        distance = DictionaryEntry.vector.cosine_distance(embedding)
        query = (
            select(
                DictionaryEntry.id,
                DictionaryEntry.phrase,
                DictionaryEntry.category,
                (1 - distance).label("vector_similarity"),
            )
            .where(DictionaryEntry.organization_id == organization_id)
            .where(DictionaryEntry.vector.is_not(None))
            .where(distance <= 1 - threshold)
            .order_by(distance)
            .limit(limit)
        )
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            self.logger.error(f"Vector dictionary search failed: {e}", exc_info=True)
            raise RepositoryError("Vector dictionary search failed", original_error=e) from e

        return [
            ReferencePhrase(
                id=row.id,
                phrase=row.phrase,
                category=row.category,
                vector_similarity=float(row.vector_similarity),
            )
            for row in result.all()
        ]
