"""Value objects passed between pipeline stages."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from adlex.core.constants import TRGM_WEIGHT, VECTOR_WEIGHT


@dataclass
class ReferencePhrase:
    """A dictionary entry returned by hybrid similarity search."""
    id: UUID
    phrase: str
    category: str
    trgm_similarity: float = 0.0
    vector_similarity: float = 0.0

    @property
    def combined_score(self) -> float:
        return self.trgm_similarity * TRGM_WEIGHT + self.vector_similarity * VECTOR_WEIGHT


@dataclass
class ViolationData:
    """A violation span ready to be persisted."""
    start_pos: int
    end_pos: int
    reason: str
    dictionary_id: Optional[UUID] = None


@dataclass
class DetectionResult:
    """Normalized output of the violation detector."""
    modified_text: str
    violations: List[ViolationData] = field(default_factory=list)


class CompletionKind(str, Enum):
    STRUCTURED = "structured"  # function-calling arguments
    RAW = "raw"  # JSON in the message content


@dataclass
class CompletionResponse:
    """Tagged model response, normalized by the detector before use."""
    kind: CompletionKind
    payload: Dict[str, Any]
