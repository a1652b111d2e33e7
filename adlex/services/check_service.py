from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from adlex.config import CacheSettings, PipelineSettings
from adlex.core.cache import CacheKeys, CacheService
from adlex.core.constants import CheckStatus, InputType
from adlex.core.exceptions import CheckStateConflictError, NotFoundError, PipelineError, ValidationError
from adlex.database.models import Check
from adlex.pipeline.check_processor import CheckProcessor
from adlex.pipeline.error_messages import CANCELLED_MESSAGE
from adlex.pipeline.queue_manager import CheckQueueManager
from adlex.repositories.check_repository import CheckRepository
from adlex.repositories.organization_repository import OrganizationRepository
from adlex.schemas.checks import OrganizationUsage, QueueInfo, QueueStatusResponse
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)

QUEUE_ERROR_MESSAGE = "The check could not be queued. Please try again."
INTERRUPTED_MESSAGE = "Processing was interrupted by a service restart. Please resubmit."


class CheckService:
    """Entry points used by the HTTP layer: create, inspect and cancel checks."""

    def __init__(
        self,
        session: AsyncSession,
        queue_manager: CheckQueueManager,
        processor: CheckProcessor,
        cache: CacheService,
        pipeline_settings: PipelineSettings,
        cache_settings: CacheSettings,
    ):
        self.session = session
        self.checks = CheckRepository(session)
        self.organizations = OrganizationRepository(session)
        self.queue_manager = queue_manager
        self.processor = processor
        self.cache = cache
        self.pipeline_settings = pipeline_settings
        self.cache_settings = cache_settings

    def validate_input(self, input_type: InputType, text: Optional[str], image_url: Optional[str]) -> None:
        """Reject input before anything is persisted.

        Raises:
            ValidationError: If the input is empty or too long
        """
        if input_type == InputType.TEXT:
            if not text or not text.strip():
                raise ValidationError("Text is required for text checks")
            if len(text) > self.pipeline_settings.max_text_length:
                raise ValidationError(
                    f"Text exceeds the {self.pipeline_settings.max_text_length} character limit"
                )
        elif not image_url or not image_url.strip():
            raise ValidationError("An image URL is required for image checks")

    async def create_check(
        self,
        organization_id: UUID,
        input_type: InputType,
        text: Optional[str] = None,
        image_url: Optional[str] = None,
        user_id: Optional[UUID] = None,
    ) -> Check:
        """Persist a pending check and hand it to the admission controller.

        Raises:
            ValidationError: Invalid input or exhausted quota
            NotFoundError: Unknown organization
            PipelineError: The check could not be queued (it is marked failed)
        """
        self.validate_input(input_type, text, image_url)

        organization = await self.organizations.get_by_id(organization_id)
        if organization is None:
            raise NotFoundError(f"Organization {organization_id} not found")
        if organization.used_checks >= organization.max_checks:
            raise ValidationError("The organization has reached its check limit")

        check = await self.checks.create(
            organization_id=organization_id,
            user_id=user_id,
            input_type=input_type.value,
            original_text=text or "",
            image_url=image_url if input_type == InputType.IMAGE else None,
            status=CheckStatus.PENDING.value,
        )
        LOGGER.info(
            "Check created",
            extra={"check_id": str(check.id), "organization_id": str(organization_id), "input_type": input_type.value},
        )

        try:
            admitted = self.queue_manager.submit(check.id)
        except Exception as e:
            LOGGER.error("Failed to queue check", exc_info=True, extra={"check_id": str(check.id)})
            await self.processor.fail_unstarted(check.id, QUEUE_ERROR_MESSAGE)
            raise PipelineError(QUEUE_ERROR_MESSAGE, original_error=e) from e
        if not admitted:
            await self.processor.fail_unstarted(check.id, QUEUE_ERROR_MESSAGE)
            raise PipelineError(QUEUE_ERROR_MESSAGE)

        self.cache.delete(CacheKeys.queue_status(organization_id))
        return check

    async def get_check(self, check_id: UUID) -> Check:
        check = await self.checks.get_with_violations(check_id)
        if check is None:
            raise NotFoundError(f"Check {check_id} not found")
        return check

    async def cancel_check(self, check_id: UUID) -> str:
        """Cancel a pending or processing check.

        Returns:
            ``failed`` if the check was failed immediately, ``cancelling`` if
            an in-flight pipeline was signalled and will fail it shortly

        Raises:
            NotFoundError: Unknown check
            CheckStateConflictError: The check already finished
        """
        check = await self.checks.get_by_id(check_id)
        if check is None:
            raise NotFoundError(f"Check {check_id} not found")
        if CheckStatus(check.status).is_terminal:
            raise CheckStateConflictError(f"Check {check_id} is already {check.status}")

        if self.processor.cancel(check_id):
            return "cancelling"

        # Queued, or pending/processing without a live pipeline in this process
        self.queue_manager.cancel(check_id)
        if check.status == CheckStatus.PENDING.value:
            cancelled = await self.processor.fail_unstarted(check_id, CANCELLED_MESSAGE)
        else:
            cancelled = await self.checks.mark_failed(check_id, CANCELLED_MESSAGE)
        if not cancelled:
            raise CheckStateConflictError(f"Check {check_id} finished before it could be cancelled")
        LOGGER.info("Check cancelled", extra={"check_id": str(check_id)})
        return CheckStatus.FAILED.value

    async def get_queue_status(self, organization_id: UUID) -> QueueStatusResponse:
        """Queue state plus quota, cached briefly per organization."""
        key = CacheKeys.queue_status(organization_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        state = self.queue_manager.get_status()
        usage = None
        organization = await self.organizations.get_by_id(organization_id)
        if organization is not None:
            remaining = max(0, organization.max_checks - organization.used_checks)
            usage = OrganizationUsage(
                monthly_limit=organization.max_checks,
                current_month_checks=organization.used_checks,
                remaining_checks=remaining,
                can_perform_check=remaining > 0,
            )

        status = QueueStatusResponse(
            queue=QueueInfo(
                queue_length=state.queue_length,
                processing_count=state.processing_count,
                max_concurrent=state.max_concurrent,
                available_slots=state.available_slots,
                can_start_new_check=state.available_slots > 0,
            ),
            organization=usage,
        )
        self.cache.set(key, status, ttl=self.cache_settings.queue_status_ttl)
        return status

    async def recover_checks(self) -> int:
        """Fail checks orphaned mid-pipeline and resubmit pending ones.

        Called once at startup, before new checks are accepted.

        Returns:
            Number of pending checks resubmitted
        """
        for check in await self.checks.list_by_status(CheckStatus.PROCESSING):
            await self.checks.mark_failed(check.id, INTERRUPTED_MESSAGE)
            LOGGER.warning("Failed interrupted check", extra={"check_id": str(check.id)})

        resubmitted = 0
        for check in await self.checks.list_by_status(CheckStatus.PENDING):
            if self.queue_manager.submit(check.id):
                resubmitted += 1
        if resubmitted:
            LOGGER.info(f"Resubmitted {resubmitted} pending checks")
        return resubmitted
