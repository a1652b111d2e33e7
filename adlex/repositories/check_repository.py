from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from adlex.core.constants import CheckStatus, OcrStatus
from adlex.core.exceptions import CheckStateConflictError, RepositoryError
from adlex.database.models import Check, Violation
from adlex.repositories.base_repository import BaseRepository
from adlex.schemas.pipeline import ViolationData


class CheckRepository(BaseRepository[Check]):
    """Persistence for checks and their status transitions.

    Every status change is a conditional UPDATE on the current status, so
    transitions stay monotonic (pending -> processing -> completed | failed)
    even when a timeout and a late stage race each other.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, Check)

    async def get_with_violations(self, check_id: UUID) -> Optional[Check]:
        try:
            query = (
                select(Check)
                .options(selectinload(Check.violations))
                .where(Check.id == check_id)
            )
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading check {check_id}: {e}", exc_info=True)
            raise RepositoryError(f"Failed to load check {check_id}", original_error=e) from e

    async def list_by_status(self, status: CheckStatus, limit: int = 500) -> List[Check]:
        try:
            query = (
                select(Check)
                .where(Check.status == status.value)
                .order_by(Check.created_at)
                .limit(limit)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing {status.value} checks: {e}", exc_info=True)
            raise RepositoryError(f"Failed to list {status.value} checks", original_error=e) from e

    async def mark_processing(self, check_id: UUID) -> None:
        """Move a pending check to processing.

        Raises:
            CheckStateConflictError: If the check is not pending
        """
        await self._transition(
            check_id,
            expected=CheckStatus.PENDING,
            values={"status": CheckStatus.PROCESSING.value},
        )

    async def set_ocr_processing(self, check_id: UUID) -> None:
        await self._transition(
            check_id,
            expected=CheckStatus.PROCESSING,
            values={"ocr_status": OcrStatus.PROCESSING.value},
        )

    async def record_ocr_success(
        self, check_id: UUID, extracted_text: str, metadata: Dict[str, Any]
    ) -> None:
        await self._transition(
            check_id,
            expected=CheckStatus.PROCESSING,
            values={
                "extracted_text": extracted_text,
                "ocr_status": OcrStatus.COMPLETED.value,
                "ocr_metadata": metadata,
            },
        )

    async def record_ocr_failure(self, check_id: UUID, error: str) -> None:
        await self._transition(
            check_id,
            expected=CheckStatus.PROCESSING,
            values={"ocr_status": OcrStatus.FAILED.value, "ocr_metadata": {"error": error}},
        )

    async def complete_check(
        self, check_id: UUID, modified_text: str, violations: List[ViolationData]
    ) -> None:
        """Insert violations and mark the check completed in one transaction.

        Args:
            check_id: Check being completed
            modified_text: Rewritten compliant text
            violations: Validated violation spans, possibly empty

        Raises:
            CheckStateConflictError: If the check is no longer processing
            RepositoryError: If any statement fails; nothing is committed
        """
        try:
            if violations:
                self.session.add_all(
                    [
                        Violation(
                            check_id=check_id,
                            start_pos=v.start_pos,
                            end_pos=v.end_pos,
                            reason=v.reason,
                            dictionary_id=v.dictionary_id,
                        )
                        for v in violations
                    ]
                )
                await self.session.flush()

            now = datetime.now(timezone.utc)
            result = await self.session.execute(
                update(Check)
                .where(Check.id == check_id, Check.status == CheckStatus.PROCESSING.value)
                .values(
                    status=CheckStatus.COMPLETED.value,
                    modified_text=modified_text,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.session.rollback()
                raise CheckStateConflictError(f"Check {check_id} is no longer processing")

            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(
                f"Failed to persist results for check {check_id}: {e}",
                exc_info=True,
                extra={"check_id": str(check_id), "violation_count": len(violations)},
            )
            raise RepositoryError(f"Failed to save results for check {check_id}", original_error=e) from e

    async def mark_failed(self, check_id: UUID, error_message: str) -> bool:
        """Mark a processing check failed.

        A check whose OCR stage is still in flight gets ``ocr_status=failed``
        too. ``completed_at`` is never touched.

        Returns:
            True if the check was updated, False if it was not processing
        """
        try:
            result = await self.session.execute(
                update(Check)
                .where(Check.id == check_id, Check.status == CheckStatus.PROCESSING.value)
                .values(
                    status=CheckStatus.FAILED.value,
                    error_message=error_message,
                    ocr_status=case(
                        (Check.ocr_status == OcrStatus.PROCESSING.value, OcrStatus.FAILED.value),
                        else_=Check.ocr_status,
                    ),
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Failed to mark check {check_id} failed: {e}", exc_info=True)
            raise RepositoryError(f"Failed to mark check {check_id} failed", original_error=e) from e

    async def _transition(
        self, check_id: UUID, expected: CheckStatus, values: Dict[str, Any]
    ) -> None:
        try:
            result = await self.session.execute(
                update(Check)
                .where(Check.id == check_id, Check.status == expected.value)
                .values(**values, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.session.rollback()
                raise CheckStateConflictError(
                    f"Check {check_id} is not {expected.value}"
                )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Failed to update check {check_id}: {e}", exc_info=True)
            raise RepositoryError(f"Failed to update check {check_id}", original_error=e) from e
