import json
import re
from typing import Any, Dict, Optional

from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```) if present."""
    return _FENCE_PATTERN.sub("", text.strip()).strip()


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse the first JSON object found in model output.

    Handles:
    - Markdown code blocks (```json ... ```)
    - Prose before or after the object ("Here is the result: {...}")
    - Trailing data after a complete object

    Args:
        text: Raw model output

    Returns:
        The parsed object, or None when no JSON object can be recovered
    """
    if not text:
        return None

    cleaned = strip_code_fences(text)

    try:
        parsed = json.loads(cleaned)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError as e:
        LOGGER.debug(f"Direct JSON parse failed: {e}, scanning for an embedded object")

    decoder = json.JSONDecoder()
    idx = cleaned.find("{")
    while idx != -1:
        try:
            obj, _ = decoder.raw_decode(cleaned, idx)
            if isinstance(obj, dict):
                return obj
        except json.JSONDecodeError:
            pass
        idx = cleaned.find("{", idx + 1)

    LOGGER.warning("No JSON object found in model output", extra={"preview": cleaned[:200]})
    return None
