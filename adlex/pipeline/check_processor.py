"""Runs one check through OCR, retrieval, detection and persistence."""

import asyncio
from typing import Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from adlex.config import PipelineSettings
from adlex.core.constants import InputType
from adlex.core.exceptions import (
    AppError,
    CheckCancelledError,
    CheckStateConflictError,
    OCRError,
    PipelineTimeoutError,
    RepositoryError,
)
from adlex.database.models import Check
from adlex.pipeline.error_messages import CANCELLED_MESSAGE, classify_error
from adlex.repositories.check_repository import CheckRepository
from adlex.repositories.organization_repository import OrganizationRepository
from adlex.services.detection.offset_repair import repair_violation_offsets
from adlex.services.detection.violation_detector import ViolationDetector
from adlex.services.ocr.confidence import ImageInfo, estimate_ocr_confidence
from adlex.services.ocr.ocr_base import BaseOCRService
from adlex.services.retrieval.similarity_service import SimilarityService
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class CheckProcessor:
    """Pipeline orchestrator for a single check.

    The stages run in their own task under a time budget. On timeout or
    cancellation that task is cancelled before the check is marked failed,
    so no stage can write after the failure. A results commit already in
    flight is allowed to finish, and the check then counts as completed.
    Status updates are conditional on the current status as a second guard.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        similarity_service: SimilarityService,
        violation_detector: ViolationDetector,
        ocr_service: BaseOCRService,
        pipeline_settings: PipelineSettings,
    ):
        """Initialize the processor.

        Args:
            session_factory: Produces a new AsyncSession per unit of work
            similarity_service: Embedding + dictionary retrieval stage
            violation_detector: Chat-model detection stage
            ocr_service: Text extraction for image checks
            pipeline_settings: Timeouts and limits
        """
        self.session_factory = session_factory
        self.similarity_service = similarity_service
        self.violation_detector = violation_detector
        self.ocr_service = ocr_service
        self.pipeline_settings = pipeline_settings
        self._cancel_events: Dict[UUID, asyncio.Event] = {}
        self._cancel_reasons: Dict[UUID, str] = {}

    def timeout_for(self, input_type: InputType) -> float:
        if input_type == InputType.IMAGE:
            return self.pipeline_settings.image_check_timeout_seconds
        return self.pipeline_settings.text_check_timeout_seconds

    def is_running(self, check_id: UUID) -> bool:
        return check_id in self._cancel_events

    def cancel(self, check_id: UUID, reason: str = CANCELLED_MESSAGE) -> bool:
        """Signal an in-flight check to stop.

        Returns:
            True if the check was running and has been signalled
        """
        event = self._cancel_events.get(check_id)
        if event is None:
            return False
        self._cancel_reasons[check_id] = reason
        event.set()
        LOGGER.info("Cancellation requested", extra={"check_id": str(check_id), "reason": reason})
        return True

    async def process_check(self, check_id: UUID) -> None:
        """Process a pending check to a terminal status.

        Never raises for pipeline failures; they are recorded on the check.
        """
        async with self.session_factory() as session:
            checks = CheckRepository(session)
            check = await checks.get_by_id(check_id)
            if check is None:
                LOGGER.warning("Check not found, skipping", extra={"check_id": str(check_id)})
                return
            try:
                await checks.mark_processing(check_id)
            except CheckStateConflictError:
                LOGGER.warning(
                    "Check is not pending, skipping",
                    extra={"check_id": str(check_id), "status": check.status},
                )
                return

        input_type = InputType(check.input_type)
        cancel_event = asyncio.Event()
        self._cancel_events[check_id] = cancel_event
        LOGGER.info(
            "Check processing started",
            extra={"check_id": str(check_id), "input_type": input_type.value},
        )

        try:
            await self._run_with_budget(check, cancel_event)
        except Exception as e:
            await self._record_failure(check_id, e, input_type)
            return
        finally:
            self._cancel_events.pop(check_id, None)
            self._cancel_reasons.pop(check_id, None)

        LOGGER.info("Check completed", extra={"check_id": str(check_id)})
        await self._increment_usage(check.organization_id)

    async def fail_unstarted(self, check_id: UUID, message: str) -> bool:
        """Fail a check that never entered the pipeline.

        The check still passes through ``processing`` so its status history
        stays monotonic.

        Returns:
            True if the check was pending and is now failed
        """
        async with self.session_factory() as session:
            checks = CheckRepository(session)
            try:
                await checks.mark_processing(check_id)
            except CheckStateConflictError:
                return False
            return await checks.mark_failed(check_id, message)

    async def _run_with_budget(self, check: Check, cancel_event: asyncio.Event) -> None:
        timeout = self.timeout_for(InputType(check.input_type))
        saved = asyncio.Event()
        stages = asyncio.create_task(self._run_stages(check, cancel_event, saved))
        cancel_wait = asyncio.create_task(cancel_event.wait())

        try:
            done, _ = await asyncio.wait(
                {stages, cancel_wait}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_wait.cancel()
            if not stages.done():
                stages.cancel()
                await asyncio.gather(stages, return_exceptions=True)

        if saved.is_set():
            # Results are committed; a late deadline only interrupted cleanup
            if stages.cancelled():
                LOGGER.warning(
                    "Check budget ran out after its results were saved",
                    extra={"check_id": str(check.id)},
                )
            return

        if stages in done:
            stages.result()
            return

        if cancel_event.is_set():
            raise CheckCancelledError(self._cancel_reasons.get(check.id, CANCELLED_MESSAGE))
        raise PipelineTimeoutError(f"Check {check.id} exceeded its {timeout:g}s budget")

    async def _run_stages(self, check: Check, cancel_event: asyncio.Event, saved: asyncio.Event) -> None:
        async with self.session_factory() as session:
            checks = CheckRepository(session)

            text = check.original_text
            if InputType(check.input_type) == InputType.IMAGE:
                text = await self._run_ocr(checks, check)

            references = await self.similarity_service.find_reference_entries(
                check.organization_id, text
            )
            detection = await self.violation_detector.detect(text, references, cancel_event=cancel_event)
            violations = repair_violation_offsets(text, detection.violations, references)

            persist = asyncio.ensure_future(
                checks.complete_check(check.id, detection.modified_text, violations)
            )
            try:
                await asyncio.shield(persist)
            except asyncio.CancelledError:
                # The commit may already be in flight; it settles before the session closes
                await persist
                saved.set()
                raise
            saved.set()
            LOGGER.info(
                "Check results saved",
                extra={
                    "check_id": str(check.id),
                    "reference_count": len(references),
                    "violation_count": len(violations),
                    "dropped_violations": len(detection.violations) - len(violations),
                },
            )

    async def _run_ocr(self, checks: CheckRepository, check: Check) -> str:
        await checks.set_ocr_processing(check.id)
        try:
            result = await self.ocr_service.extract_text(check.image_url or "")
        except AppError as e:
            LOGGER.error(f"OCR failed: {e}", extra={"check_id": str(check.id)})
            await checks.record_ocr_failure(check.id, str(e))
            if isinstance(e, OCRError):
                raise
            raise OCRError(f"OCR failed: {e}", original_error=e) from e

        confidence = estimate_ocr_confidence(
            result.text,
            ImageInfo(processing_time_ms=result.metadata.get("processing_time_ms")),
        )
        metadata = {
            **result.metadata,
            "language": "ja",
            "confidence": confidence.overall_score,
            "confidence_level": confidence.level,
            "confidence_factors": confidence.to_dict()["factors"],
        }
        await checks.record_ocr_success(check.id, result.text, metadata)
        return result.text

    async def _record_failure(self, check_id: UUID, error: Exception, input_type: InputType) -> None:
        message = classify_error(error, input_type)
        LOGGER.error(
            f"Check failed: {error}",
            exc_info=not isinstance(error, AppError),
            extra={"check_id": str(check_id), "error_type": error.__class__.__name__},
        )
        try:
            async with self.session_factory() as session:
                updated = await CheckRepository(session).mark_failed(check_id, message)
        except RepositoryError:
            LOGGER.error("Could not record check failure", extra={"check_id": str(check_id)})
            return
        if not updated:
            LOGGER.warning("Check was already finalized", extra={"check_id": str(check_id)})

    async def _increment_usage(self, organization_id: Optional[UUID]) -> None:
        try:
            async with self.session_factory() as session:
                await OrganizationRepository(session).increment_usage(organization_id)
        except RepositoryError:
            # Usage accounting never fails a completed check
            LOGGER.error(
                "Failed to increment organization usage",
                extra={"organization_id": str(organization_id)},
            )
