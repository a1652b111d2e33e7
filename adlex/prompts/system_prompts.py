"""Prompt templates and tool schemas for the detection and OCR stages."""

from typing import Any, Dict, List

from adlex.core.constants import DETECTION_TOOL_NAME

VIOLATION_DETECTION_SYSTEM_PROMPT = """You are a compliance reviewer for Japanese pharmaceutical advertising law (薬機法).
Analyze the advertisement text supplied by the user, identify every expression that may violate the law, and rewrite the text so that it complies.

Reference dictionary (prohibited expressions similar to the input):
{reference_block}

Rules:
- Report each violation as a span of the ORIGINAL text using 0-based character offsets, end exclusive.
- When a violation corresponds to a dictionary entry, set its dictionary id.
- Keep the rewritten text in the same language and tone as the input. Change only what is necessary.
- If nothing violates the law, return the text unchanged with an empty violation list.
{output_instructions}"""

STRUCTURED_OUTPUT_INSTRUCTIONS = f"- Return the result by calling the `{DETECTION_TOOL_NAME}` function."

RAW_OUTPUT_INSTRUCTIONS = """- Return ONLY a JSON object in this exact shape, without any other text:
{
  "modified": "rewritten text",
  "violations": [
    {"start_pos": 0, "end_pos": 0, "reason": "why this is a violation", "dictionary_id": "entry id or null"}
  ]
}"""

NO_REFERENCE_ENTRIES = "(no similar dictionary entries found; rely on your own knowledge of the law)"

DETECTION_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": DETECTION_TOOL_NAME,
        "description": "Apply pharmaceutical advertising rules to analyze and rewrite the text",
        "parameters": {
            "type": "object",
            "properties": {
                "modified": {
                    "type": "string",
                    "description": "Text rewritten to comply with the law",
                },
                "violations": {
                    "type": "array",
                    "description": "Detected violations",
                    "items": {
                        "type": "object",
                        "properties": {
                            "start": {"type": "integer", "description": "Start offset of the violating span"},
                            "end": {"type": "integer", "description": "End offset (exclusive) of the violating span"},
                            "reason": {"type": "string", "description": "Why the span violates the law"},
                            "dictionaryId": {"type": "string", "description": "Matching dictionary entry id"},
                        },
                        "required": ["start", "end", "reason"],
                    },
                },
            },
            "required": ["modified", "violations"],
        },
    },
}

DETECTION_TOOL_CHOICE: Dict[str, Any] = {"type": "function", "function": {"name": DETECTION_TOOL_NAME}}

OCR_SYSTEM_PROMPT = (
    "You are an OCR engine. Transcribe all text visible in the image exactly as written, "
    "in natural reading order. Preserve line breaks. Do not translate, summarize or add commentary. "
    "Output plain text only."
)

OCR_USER_PROMPT = "Extract all text from this advertisement image."


def format_reference_block(references: List[Any]) -> str:
    """Render reference phrases as prompt lines (id, phrase, similarity)."""
    if not references:
        return NO_REFERENCE_ENTRIES
    return "\n".join(
        f'- id={ref.id} "{ref.phrase}" (similarity: {ref.combined_score:.2f})' for ref in references
    )
