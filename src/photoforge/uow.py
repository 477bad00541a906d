"""Unit of Work pattern for PhotoForge backend.

Provides transaction management with automatic commit/rollback and access to all repositories.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from photoforge.repositories.prediction import PredictionRepository
from photoforge.repositories.user_account import UserAccountRepository

logger = structlog.get_logger(__name__)


class UnitOfWork:
    """Unit of Work pattern implementation.

    Manages database transactions and provides access to all repositories.
    Use as async context manager for automatic commit/rollback.

    Example:
        async with await uow_factory() as uow:
            await uow.predictions.upsert(handle)
            await uow.users.increment_usage(user_id, 1)
            # Commits on successful exit, rolls back on exception
    """

    def __init__(self, session: AsyncSession):
        """Initialize UnitOfWork with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

        self.users = UserAccountRepository(session)
        self.predictions = PredictionRepository(session)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit on clean exit, roll back otherwise, then close the session.

        Returns:
            False: exceptions are always re-raised after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Async callable that creates UnitOfWork instances from new sessions

    Example:
        uow_factory = create_uow_factory(setup_db_session(db_url))

        async with await uow_factory() as uow:
            user = await uow.users.get_by_id(user_id)
    """

    async def _create_uow() -> UnitOfWork:
        return UnitOfWork(session_factory())

    return _create_uow
