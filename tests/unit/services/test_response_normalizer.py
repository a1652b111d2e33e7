"""Tests for classifying and normalizing chat-completion bodies."""

import json
from uuid import uuid4

import pytest

from adlex.core.exceptions import ChatCompletionError
from adlex.schemas.pipeline import CompletionKind, CompletionResponse
from adlex.services.detection.response_normalizer import classify_completion, normalize_completion

TEXT = "このサプリはがんが治る"


class TestClassifyCompletion:
    def test_tool_call_is_structured(self, tool_call_body):
        response = tool_call_body("修正文", [{"start": 6, "end": 11, "reason": "r"}])

        completion = classify_completion(response)

        assert completion.kind == CompletionKind.STRUCTURED
        assert completion.payload["modified"] == "修正文"

    def test_legacy_function_call_is_structured(self):
        response = {
            "choices": [
                {"message": {"function_call": {"name": "x", "arguments": json.dumps({"violations": []})}}}
            ]
        }

        assert classify_completion(response).kind == CompletionKind.STRUCTURED

    def test_dict_arguments_are_accepted(self):
        response = {
            "choices": [
                {"message": {"tool_calls": [{"type": "function", "function": {"arguments": {"violations": []}}}]}}
            ]
        }

        assert classify_completion(response).payload == {"violations": []}

    def test_fenced_json_content_is_raw(self, content_body):
        content = '```json\n{"modified": "修正文", "violations": []}\n```'

        completion = classify_completion(content_body(content))

        assert completion.kind == CompletionKind.RAW
        assert completion.payload["modified"] == "修正文"

    def test_json_embedded_in_prose_is_extracted(self, content_body):
        content = 'Here is the result: {"modified": "修正文", "violations": []} Thanks.'

        assert classify_completion(content_body(content)).payload["violations"] == []

    def test_invalid_tool_arguments_raise(self):
        response = {
            "choices": [
                {"message": {"tool_calls": [{"type": "function", "function": {"arguments": "{not json"}}]}}
            ]
        }

        with pytest.raises(ChatCompletionError):
            classify_completion(response)

    def test_content_without_json_raises(self, content_body):
        with pytest.raises(ChatCompletionError):
            classify_completion(content_body("I cannot help with that."))

    def test_empty_message_raises(self):
        with pytest.raises(ChatCompletionError):
            classify_completion({"choices": [{"message": {"content": ""}}]})


class TestNormalizeCompletion:
    def test_structured_keys_are_mapped(self):
        dictionary_id = uuid4()
        completion = CompletionResponse(
            kind=CompletionKind.STRUCTURED,
            payload={
                "modified": "このサプリは健康をサポートします",
                "violations": [
                    {"start": 6, "end": 11, "reason": "疾病の治癒効果", "dictionaryId": str(dictionary_id)}
                ],
            },
        )

        result = normalize_completion(completion, TEXT)

        assert result.modified_text == "このサプリは健康をサポートします"
        violation = result.violations[0]
        assert (violation.start_pos, violation.end_pos) == (6, 11)
        assert violation.dictionary_id == dictionary_id

    def test_structured_without_modified_keeps_original(self):
        completion = CompletionResponse(kind=CompletionKind.STRUCTURED, payload={"violations": []})

        result = normalize_completion(completion, TEXT)

        assert result.modified_text == TEXT
        assert result.violations == []

    def test_raw_keys_are_mapped(self):
        completion = CompletionResponse(
            kind=CompletionKind.RAW,
            payload={
                "modified": "修正文",
                "violations": [{"start_pos": "6", "end_pos": 11, "reason": "r", "dictionary_id": None}],
            },
        )

        violation = normalize_completion(completion, TEXT).violations[0]

        assert (violation.start_pos, violation.end_pos) == (6, 11)
        assert violation.dictionary_id is None

    def test_raw_without_modified_raises(self):
        completion = CompletionResponse(kind=CompletionKind.RAW, payload={"violations": []})

        with pytest.raises(ChatCompletionError):
            normalize_completion(completion, TEXT)

    def test_raw_with_non_list_violations_raises(self):
        completion = CompletionResponse(kind=CompletionKind.RAW, payload={"modified": "x", "violations": "none"})

        with pytest.raises(ChatCompletionError):
            normalize_completion(completion, TEXT)

    def test_malformed_items_are_skipped(self):
        completion = CompletionResponse(
            kind=CompletionKind.STRUCTURED,
            payload={
                "violations": [
                    "not an object",
                    {"start": "six", "end": 11, "reason": "bad"},
                    {"start": 0, "end": 5, "reason": "ok", "dictionaryId": "not-a-uuid"},
                ]
            },
        )

        violations = normalize_completion(completion, TEXT).violations

        assert len(violations) == 1
        assert violations[0].dictionary_id is None
