"""UserAccount repository for PhotoForge backend.

Provides data access methods for UserAccount entities, including the atomic
usage counter increment.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from photoforge.models.user_account import UserAccount


class UserAccountRepository:
    """Repository for UserAccount entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, user_id: UUID) -> UserAccount | None:
        """Retrieve user account by UUID.

        Args:
            user_id: Auth provider user id

        Returns:
            UserAccount if found, None otherwise
        """
        result = await self.session.execute(
            select(UserAccount).where(UserAccount.id == user_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def increment_usage(self, user_id: UUID, delta: int) -> int:
        """Atomically add ``delta`` to the user's usage counter.

        Executes a single UPDATE ... SET usage_counter = usage_counter + :delta
        RETURNING usage_counter, so concurrent increments never overwrite
        each other.

        Args:
            user_id: Account to charge
            delta: Number of photos to add (must be positive)

        Returns:
            Counter value after the increment

        Raises:
            ValueError: If delta is not positive
            NoResultFound: If the account does not exist
        """
        if delta <= 0:
            raise ValueError(f"delta must be positive, got {delta}")

        result = await self.session.execute(
            update(UserAccount)
            .where(UserAccount.id == user_id)  # type: ignore[arg-type]
            .values(usage_counter=UserAccount.usage_counter + delta)
            .returning(UserAccount.usage_counter)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one()
