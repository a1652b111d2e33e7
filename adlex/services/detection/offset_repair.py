from typing import Dict, List, Optional, Sequence, Set, Tuple
from uuid import UUID

from adlex.schemas.pipeline import ReferencePhrase, ViolationData
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _nearest_occurrence(text: str, phrase: str, hint: int) -> Optional[int]:
    best: Optional[int] = None
    idx = text.find(phrase)
    while idx != -1:
        if best is None or abs(idx - hint) < abs(best - hint):
            best = idx
        idx = text.find(phrase, idx + 1)
    return best


def repair_violation_offsets(
    text: str,
    violations: Sequence[ViolationData],
    references: Sequence[ReferencePhrase],
) -> List[ViolationData]:
    """Make model-reported spans safe to persist against ``text``.

    - Reversed offsets are swapped and offsets are clamped to ``[0, len(text)]``.
    - A dictionary id that is not among ``references`` is dropped.
    - When the span does not contain its referenced phrase, it is moved to the
      occurrence of the phrase nearest the reported start.
    - Spans that are still empty are discarded, as are exact duplicates.

    Args:
        text: The analyzed text (extracted text for image checks)
        violations: Spans as reported by the model
        references: Dictionary entries supplied to the model

    Returns:
        Valid violations ordered by start offset
    """
    phrases: Dict[UUID, str] = {ref.id: ref.phrase for ref in references}
    length = len(text)
    seen: Set[Tuple[int, int, Optional[UUID]]] = set()
    repaired: List[ViolationData] = []

    for violation in violations:
        start, end = violation.start_pos, violation.end_pos
        if start > end:
            start, end = end, start
        start = min(max(start, 0), length)
        end = min(max(end, 0), length)

        dictionary_id = violation.dictionary_id if violation.dictionary_id in phrases else None
        phrase = phrases.get(dictionary_id) if dictionary_id else None
        if phrase and phrase not in text[start:end]:
            located = _nearest_occurrence(text, phrase, violation.start_pos)
            if located is not None:
                start, end = located, located + len(phrase)

        if start == end:
            LOGGER.warning(
                "Dropping violation with empty span",
                extra={
                    "reported_start": violation.start_pos,
                    "reported_end": violation.end_pos,
                    "text_length": length,
                },
            )
            continue

        key = (start, end, dictionary_id)
        if key in seen:
            continue
        seen.add(key)
        repaired.append(
            ViolationData(
                start_pos=start,
                end_pos=end,
                reason=violation.reason,
                dictionary_id=dictionary_id,
            )
        )

    return sorted(repaired, key=lambda v: (v.start_pos, v.end_pos))
