"""Tests for the single-check pipeline orchestrator."""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from adlex.core.cache import CacheService
from adlex.core.constants import CheckStatus, OcrStatus
from adlex.core.exceptions import ChatCompletionError, EmbeddingServiceError, OCRError, PipelineTimeoutError
from adlex.core.unified_llm import LLMProvider
from adlex.pipeline.check_processor import CheckProcessor
from adlex.pipeline.error_messages import CANCELLED_MESSAGE
from adlex.schemas.pipeline import DetectionResult, ReferencePhrase, ViolationData
from adlex.services.detection.violation_detector import ViolationDetector
from adlex.services.ocr.ocr_base import OCRResult
from adlex.services.retrieval.similarity_service import SimilarityService

TEXT = "このサプリはがんが治る"
MODIFIED = "このサプリは健康をサポートします"


@pytest.fixture
def similarity_service():
    service = MagicMock()
    service.find_reference_entries = AsyncMock(return_value=[])
    return service


@pytest.fixture
def violation_detector():
    detector = MagicMock()
    detector.detect = AsyncMock(return_value=DetectionResult(modified_text=TEXT, violations=[]))
    return detector


@pytest.fixture
def ocr_service():
    service = MagicMock()
    service.extract_text = AsyncMock(
        return_value=OCRResult(
            text=TEXT,
            metadata={"provider": "openai", "model": "gpt-4o", "processing_time_ms": 900},
        )
    )
    return service


@pytest.fixture
def processor(session_factory, similarity_service, violation_detector, ocr_service, pipeline_settings):
    return CheckProcessor(
        session_factory=session_factory,
        similarity_service=similarity_service,
        violation_detector=violation_detector,
        ocr_service=ocr_service,
        pipeline_settings=pipeline_settings,
    )


@pytest.mark.asyncio
async def test_end_to_end_text_check(
    check_store, session_factory, pipeline_settings, cache_settings, tool_call_body
):
    entry_id = uuid4()
    check = check_store.add_check(text=TEXT)

    embedding_service = MagicMock()
    embedding_service.model_name = "text-embedding-3-small"
    embedding_service.embed = AsyncMock(return_value=[0.1] * 8)
    dictionary = MagicMock()
    dictionary.find_lexical_matches = AsyncMock(
        return_value=[ReferencePhrase(id=entry_id, phrase="がんが治る", category="NG", trgm_similarity=0.9)]
    )
    dictionary.find_vector_matches = AsyncMock(return_value=[])

    client = MagicMock()
    client.provider = LLMProvider.OPENAI
    client.supports_function_calling = True
    client.chat_completion = AsyncMock(
        return_value=tool_call_body(
            MODIFIED,
            [{"start": 6, "end": 11, "reason": "疾病の治癒効果を標ぼう", "dictionaryId": str(entry_id)}],
        )
    )

    similarity = SimilarityService(
        embedding_service=embedding_service,
        cache=CacheService(),
        session_factory=session_factory,
        pipeline_settings=pipeline_settings,
        cache_settings=cache_settings,
    )
    detector = ViolationDetector(client, model="gpt-4o")
    processor = CheckProcessor(session_factory, similarity, detector, MagicMock(), pipeline_settings)

    with patch("adlex.services.retrieval.similarity_service.DictionaryRepository", return_value=dictionary):
        await processor.process_check(check.id)

    assert check.status == CheckStatus.COMPLETED.value
    assert check.modified_text == MODIFIED
    assert check.completed_at is not None
    assert check.error_message is None

    violations = check_store.violations[check.id]
    assert len(violations) == 1
    assert (violations[0].start_pos, violations[0].end_pos) == (6, 11)
    assert TEXT[violations[0].start_pos:violations[0].end_pos] == "がんが治る"
    assert violations[0].dictionary_id == entry_id

    assert check_store.status_history[check.id] == ["pending", "processing", "completed"]
    assert check_store.usage[check.organization_id] == 1
    assert not processor.is_running(check.id)


@pytest.mark.asyncio
async def test_check_without_matches_completes_clean(check_store, processor, violation_detector):
    check = check_store.add_check(text="毎日の健康維持に")
    violation_detector.detect.return_value = DetectionResult(modified_text="毎日の健康維持に", violations=[])

    await processor.process_check(check.id)

    assert check.status == CheckStatus.COMPLETED.value
    assert check.modified_text == check.original_text
    assert check_store.violations[check.id] == []


@pytest.mark.asyncio
async def test_invalid_offsets_are_repaired_before_saving(check_store, processor, violation_detector):
    check = check_store.add_check(text=TEXT)
    violation_detector.detect.return_value = DetectionResult(
        modified_text=MODIFIED,
        violations=[
            ViolationData(11, 6, "reversed"),
            ViolationData(3, 3, "empty"),
            ViolationData(8, 50, "too long"),
        ],
    )

    await processor.process_check(check.id)

    saved = [(v.start_pos, v.end_pos) for v in check_store.violations[check.id]]
    assert saved == [(6, 11), (8, 11)]


@pytest.mark.asyncio
async def test_image_check_runs_ocr_first(check_store, processor, ocr_service, similarity_service):
    check = check_store.add_check(input_type="image", image_url="https://cdn.example.com/ad.png")

    await processor.process_check(check.id)

    assert check.status == CheckStatus.COMPLETED.value
    assert check.extracted_text == TEXT
    assert check.ocr_status == OcrStatus.COMPLETED.value
    assert check.ocr_metadata["language"] == "ja"
    assert 0.0 <= check.ocr_metadata["confidence"] <= 1.0
    assert check.ocr_metadata["confidence_level"] in {"very-high", "high", "medium", "low", "very-low"}
    assert "japanese_text_quality" in check.ocr_metadata["confidence_factors"]
    assert similarity_service.find_reference_entries.await_args.args[1] == TEXT


@pytest.mark.asyncio
async def test_ocr_failure_short_circuits(
    check_store, processor, ocr_service, similarity_service, violation_detector
):
    check = check_store.add_check(input_type="image", image_url="https://cdn.example.com/ad.png")
    ocr_service.extract_text.side_effect = OCRError("OCR returned no text")

    await processor.process_check(check.id)

    assert check.status == CheckStatus.FAILED.value
    assert check.ocr_status == OcrStatus.FAILED.value
    assert check.error_message.startswith("Text extraction from the image failed")
    assert check.completed_at is None
    similarity_service.find_reference_entries.assert_not_awaited()
    violation_detector.detect.assert_not_awaited()
    assert check.organization_id not in check_store.usage


@pytest.mark.asyncio
async def test_embedding_outage_still_completes(
    check_store, session_factory, pipeline_settings, cache_settings, violation_detector
):
    check = check_store.add_check(text=TEXT)
    embedding_service = MagicMock()
    embedding_service.model_name = "m"
    embedding_service.embed = AsyncMock(side_effect=EmbeddingServiceError("provider down"))
    similarity = SimilarityService(
        embedding_service, CacheService(), session_factory, pipeline_settings, cache_settings
    )
    processor = CheckProcessor(session_factory, similarity, violation_detector, MagicMock(), pipeline_settings)

    await processor.process_check(check.id)

    assert check.status == CheckStatus.COMPLETED.value
    assert violation_detector.detect.await_args.args[1] == []


@pytest.mark.asyncio
async def test_detection_failure_marks_check_failed(check_store, processor, violation_detector):
    check = check_store.add_check(text=TEXT)
    violation_detector.detect.side_effect = ChatCompletionError("Chat completion failed after 3 attempts")

    await processor.process_check(check.id)

    assert check.status == CheckStatus.FAILED.value
    assert check.error_message.startswith("AI analysis failed")
    assert check.completed_at is None
    assert check_store.status_history[check.id] == ["pending", "processing", "failed"]


@pytest.mark.asyncio
async def test_timeout_fails_check_and_blocks_late_writes(check_store, processor, violation_detector):
    processor.pipeline_settings = processor.pipeline_settings.model_copy(
        update={"text_check_timeout_seconds": 0.05}
    )
    check = check_store.add_check(text=TEXT)

    async def slow_detect(*args, **kwargs):
        await asyncio.sleep(1)
        return DetectionResult(modified_text=MODIFIED, violations=[])

    violation_detector.detect.side_effect = slow_detect

    await processor.process_check(check.id)
    await asyncio.sleep(0.1)

    assert check.status == CheckStatus.FAILED.value
    assert check.error_message.startswith("Processing timed out")
    assert check_store.complete_calls == 0
    assert check.completed_at is None


@pytest.mark.asyncio
async def test_timeout_error_names_sub_second_budget(check_store, processor, violation_detector):
    processor.pipeline_settings = processor.pipeline_settings.model_copy(
        update={"text_check_timeout_seconds": 0.05}
    )
    check = check_store.add_check(text=TEXT)

    async def slow_detect(*args, **kwargs):
        await asyncio.sleep(1)

    violation_detector.detect.side_effect = slow_detect

    with pytest.raises(PipelineTimeoutError, match=r"exceeded its 0\.05s budget"):
        await processor._run_with_budget(check, asyncio.Event())


@pytest.mark.asyncio
async def test_check_stays_processing_until_deadline(check_store, processor, violation_detector):
    processor.pipeline_settings = processor.pipeline_settings.model_copy(
        update={"text_check_timeout_seconds": 0.3}
    )
    check = check_store.add_check(text=TEXT)

    async def slow_detect(*args, **kwargs):
        await asyncio.sleep(5)

    violation_detector.detect.side_effect = slow_detect

    task = asyncio.create_task(processor.process_check(check.id))
    await asyncio.sleep(0.1)

    assert check.status == CheckStatus.PROCESSING.value
    assert check.error_message is None
    assert processor.is_running(check.id)

    await asyncio.wait_for(task, timeout=2)

    assert check.status == CheckStatus.FAILED.value
    assert check.error_message.startswith("Processing timed out")
    assert check_store.status_history[check.id] == ["pending", "processing", "failed"]


@pytest.mark.asyncio
async def test_deadline_during_session_close_keeps_saved_check(check_store, processor):
    processor.pipeline_settings = processor.pipeline_settings.model_copy(
        update={"text_check_timeout_seconds": 0.1}
    )
    check = check_store.add_check(text=TEXT)
    opened = []

    @asynccontextmanager
    async def slow_closing_sessions():
        opened.append(None)
        stage_session = len(opened) == 2
        yield MagicMock()
        if stage_session:
            await asyncio.sleep(1)

    processor.session_factory = slow_closing_sessions

    await processor.process_check(check.id)

    assert check.status == CheckStatus.COMPLETED.value
    assert check.error_message is None
    assert check_store.status_history[check.id] == ["pending", "processing", "completed"]
    assert check_store.usage[check.organization_id] == 1


@pytest.mark.asyncio
async def test_commit_in_flight_at_deadline_finishes(check_store, processor):
    processor.pipeline_settings = processor.pipeline_settings.model_copy(
        update={"text_check_timeout_seconds": 0.1}
    )
    check = check_store.add_check(text=TEXT)
    check_store.complete_delay = 0.3

    await processor.process_check(check.id)

    assert check.status == CheckStatus.COMPLETED.value
    assert check.completed_at is not None
    assert check_store.usage[check.organization_id] == 1


@pytest.mark.asyncio
async def test_image_timeout_uses_image_message(check_store, processor, ocr_service):
    processor.pipeline_settings = processor.pipeline_settings.model_copy(
        update={"image_check_timeout_seconds": 0.05}
    )
    check = check_store.add_check(input_type="image", image_url="https://cdn.example.com/ad.png")

    async def slow_ocr(image_url):
        await asyncio.sleep(1)

    ocr_service.extract_text.side_effect = slow_ocr

    await processor.process_check(check.id)

    assert check.status == CheckStatus.FAILED.value
    assert check.error_message.startswith("Image processing timed out")
    assert check.ocr_status == OcrStatus.FAILED.value


@pytest.mark.asyncio
async def test_user_cancel_stops_running_check(check_store, processor, violation_detector):
    check = check_store.add_check(text=TEXT)
    started = asyncio.Event()

    async def blocking_detect(*args, **kwargs):
        started.set()
        await asyncio.sleep(5)

    violation_detector.detect.side_effect = blocking_detect

    task = asyncio.create_task(processor.process_check(check.id))
    await asyncio.wait_for(started.wait(), timeout=1)

    assert processor.cancel(check.id) is True
    await asyncio.wait_for(task, timeout=1)

    assert check.status == CheckStatus.FAILED.value
    assert check.error_message == CANCELLED_MESSAGE
    assert check_store.complete_calls == 0
    assert processor.cancel(check.id) is False


@pytest.mark.asyncio
async def test_persistence_failure_leaves_no_partial_results(check_store, processor, violation_detector):
    check = check_store.add_check(text=TEXT)
    check_store.fail_complete = True
    violation_detector.detect.return_value = DetectionResult(
        modified_text=MODIFIED, violations=[ViolationData(6, 11, "cure")]
    )

    await processor.process_check(check.id)

    assert check.status == CheckStatus.FAILED.value
    assert check.error_message.startswith("Saving the check results failed")
    assert check.id not in check_store.violations
    assert check.modified_text is None
    assert check.completed_at is None


@pytest.mark.asyncio
async def test_usage_increment_failure_keeps_check_completed(check_store, processor):
    check = check_store.add_check(text=TEXT)
    check_store.fail_usage_increment = True

    await processor.process_check(check.id)

    assert check.status == CheckStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_non_pending_check_is_skipped(check_store, processor, violation_detector):
    check = check_store.add_check(text=TEXT)
    check.status = CheckStatus.COMPLETED.value

    await processor.process_check(check.id)

    violation_detector.detect.assert_not_awaited()
    assert check.status == CheckStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_missing_check_is_ignored(check_store, processor, violation_detector):
    await processor.process_check(uuid4())

    violation_detector.detect.assert_not_awaited()


@pytest.mark.asyncio
async def test_fail_unstarted_goes_through_processing(check_store, processor):
    check = check_store.add_check(text=TEXT)

    assert await processor.fail_unstarted(check.id, "Could not queue the check") is True
    assert check_store.status_history[check.id] == ["pending", "processing", "failed"]
    assert check.error_message == "Could not queue the check"

    assert await processor.fail_unstarted(check.id, "again") is False
