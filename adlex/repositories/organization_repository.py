from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adlex.core.exceptions import RepositoryError
from adlex.database.models import Organization
from adlex.repositories.base_repository import BaseRepository


class OrganizationRepository(BaseRepository[Organization]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, Organization)

    async def increment_usage(self, organization_id: UUID) -> bool:
        """Atomically add one completed check to the organization's usage.

        Runs as a single ``used_checks = used_checks + 1`` statement so
        concurrent completions never lose an update.

        Returns:
            True if the organization exists and was updated
        """
        try:
            result = await self.session.execute(
                update(Organization)
                .where(Organization.id == organization_id)
                .values(used_checks=Organization.used_checks + 1)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(
                f"Failed to increment usage for organization {organization_id}: {e}",
                exc_info=True,
            )
            raise RepositoryError("Failed to increment organization usage", original_error=e) from e
