from typing import Dict, List, Sequence
from uuid import UUID

from adlex.core.constants import DictionaryCategory
from adlex.schemas.pipeline import ReferencePhrase


class ResultMergerService:
    """
    Merges lexical and vector dictionary matches into one ranked list.

    Responsibilities:
    1. Deduplicate matches by dictionary entry id.
    2. Keep the best lexical and the best vector score seen for each entry.
    3. Rank by the weighted combined score.
    """

    def merge(
        self,
        lexical_results: Sequence[ReferencePhrase],
        vector_results: Sequence[ReferencePhrase],
    ) -> List[ReferencePhrase]:
        """
        Args:
            lexical_results: Matches carrying ``trgm_similarity``
            vector_results: Matches carrying ``vector_similarity``

        Returns:
            Unique entries sorted by combined score, highest first.
        """
        merged: Dict[UUID, ReferencePhrase] = {}

        for result in [*lexical_results, *vector_results]:
            existing = merged.get(result.id)
            if existing is None:
                merged[result.id] = ReferencePhrase(
                    id=result.id,
                    phrase=result.phrase,
                    category=result.category,
                    trgm_similarity=result.trgm_similarity,
                    vector_similarity=result.vector_similarity,
                )
                continue
            existing.trgm_similarity = max(existing.trgm_similarity, result.trgm_similarity)
            existing.vector_similarity = max(existing.vector_similarity, result.vector_similarity)

        return sorted(merged.values(), key=lambda r: r.combined_score, reverse=True)

    @staticmethod
    def select_references(results: Sequence[ReferencePhrase], limit: int) -> List[ReferencePhrase]:
        """Top ``limit`` NG entries by combined score."""
        prohibited = [r for r in results if r.category == DictionaryCategory.NG.value]
        prohibited.sort(key=lambda r: r.combined_score, reverse=True)
        return prohibited[:limit]
