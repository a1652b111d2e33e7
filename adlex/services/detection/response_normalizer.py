"""Adapter from provider-specific completion bodies to ``DetectionResult``.

Function-calling providers return the analysis as tool arguments
(``start``/``end``/``dictionaryId``); raw-JSON providers put it in the
message content (``start_pos``/``end_pos``/``dictionary_id``). Both shapes are
accepted for either key style so the rest of the pipeline sees one format.
"""

import json
from typing import Any, Dict, List, Optional
from uuid import UUID

from adlex.core.constants import DETECTION_TOOL_NAME
from adlex.core.exceptions import ChatCompletionError
from adlex.schemas.pipeline import CompletionKind, CompletionResponse, DetectionResult, ViolationData
from adlex.utils.json_parser import parse_json_object
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _tool_arguments(message: Dict[str, Any]) -> Optional[Any]:
    function_call = message.get("function_call") or {}
    if function_call.get("arguments"):
        return function_call["arguments"]

    tool_calls = message.get("tool_calls") or []
    if not tool_calls:
        return None

    target = next(
        (
            call for call in tool_calls
            if call.get("type") == "function"
            and (call.get("function") or {}).get("name") == DETECTION_TOOL_NAME
        ),
        tool_calls[0],
    )
    return (target.get("function") or {}).get("arguments")


def classify_completion(response: Dict[str, Any]) -> CompletionResponse:
    """Tag a raw chat-completion body as structured or raw.

    Raises:
        ChatCompletionError: If neither tool arguments nor parseable JSON
            content is present
    """
    choices = response.get("choices") or []
    message = (choices[0].get("message") if choices else None) or {}

    arguments = _tool_arguments(message)
    if arguments:
        if isinstance(arguments, dict):
            return CompletionResponse(kind=CompletionKind.STRUCTURED, payload=arguments)
        try:
            payload = json.loads(arguments)
        except (TypeError, json.JSONDecodeError) as e:
            raise ChatCompletionError("Tool call arguments are not valid JSON", original_error=e) from e
        if not isinstance(payload, dict):
            raise ChatCompletionError("Tool call arguments are not a JSON object")
        return CompletionResponse(kind=CompletionKind.STRUCTURED, payload=payload)

    content = message.get("content")
    if content:
        payload = parse_json_object(content)
        if payload is None:
            raise ChatCompletionError("No JSON object found in model response")
        return CompletionResponse(kind=CompletionKind.RAW, payload=payload)

    raise ChatCompletionError("Model response contained neither a tool call nor content")


def _parse_dictionary_id(value: Any) -> Optional[UUID]:
    if value in (None, ""):
        return None
    try:
        return UUID(str(value))
    except ValueError:
        LOGGER.debug(f"Ignoring non-UUID dictionary id: {value!r}")
        return None


def _first_present(item: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if item.get(key) is not None:
            return item[key]
    return None


def _parse_violations(items: List[Any]) -> List[ViolationData]:
    violations: List[ViolationData] = []
    for item in items:
        if not isinstance(item, dict):
            LOGGER.warning("Skipping non-object violation entry", extra={"entry": repr(item)[:200]})
            continue
        try:
            start = int(_first_present(item, "start", "start_pos"))
            end = int(_first_present(item, "end", "end_pos"))
        except (TypeError, ValueError):
            LOGGER.warning("Skipping violation without numeric offsets", extra={"entry": repr(item)[:200]})
            continue
        violations.append(
            ViolationData(
                start_pos=start,
                end_pos=end,
                reason=str(item.get("reason") or ""),
                dictionary_id=_parse_dictionary_id(_first_present(item, "dictionaryId", "dictionary_id")),
            )
        )
    return violations


def normalize_completion(response: CompletionResponse, original_text: str) -> DetectionResult:
    """Convert a tagged completion into the pipeline's ``DetectionResult``.

    Structured payloads fall back to the original text when ``modified`` is
    missing. Raw payloads must carry a string ``modified`` and a list
    ``violations``.

    Raises:
        ChatCompletionError: If a raw payload is malformed
    """
    payload = response.payload

    if response.kind == CompletionKind.STRUCTURED:
        modified = payload.get("modified")
        items = payload.get("violations") or []
        if not isinstance(items, list):
            raise ChatCompletionError("Invalid violations field in tool call arguments")
        return DetectionResult(
            modified_text=modified if isinstance(modified, str) else original_text,
            violations=_parse_violations(items),
        )

    modified = payload.get("modified")
    if not isinstance(modified, str) or not modified:
        raise ChatCompletionError("Invalid modified field in model response")
    items = payload.get("violations")
    if not isinstance(items, list):
        raise ChatCompletionError("Invalid violations field in model response")
    return DetectionResult(modified_text=modified, violations=_parse_violations(items))
