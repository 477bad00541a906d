"""Prediction repository for PhotoForge backend.

Provides data access methods for Prediction entities with a forward-only
status upsert.
"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from photoforge.models.prediction import STATUS_RANK, JobHandle, JobStatus, Prediction

_TERMINAL_STATUSES = [JobStatus.SUCCEEDED.value, JobStatus.FAILED.value]


def _status_rank(column):
    """SQL expression mapping a status column to its lifecycle rank."""
    return case(
        {status.value: rank for status, rank in STATUS_RANK.items()},
        value=column,
        else_=-1,
    )


class PredictionRepository:
    """Repository for Prediction entities.

    Methods:
    - upsert: Insert or advance a prediction record (never moves status backward)
    - get_by_id: Retrieve prediction by provider id
    - list_by_user: A user's predictions, newest first
    - list_pending: Non-terminal predictions, oldest first
    - mark_enhanced: Record where the restored image was stored
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def upsert(self, handle: JobHandle) -> bool:
        """Insert a prediction or advance its status (UPSERT keyed on id).

        Uses INSERT ... ON CONFLICT (id) DO UPDATE with a WHERE guard so that:
        - a lower or equal status rank never overwrites the stored one
        - the same status may only fill in a missing output_url

        Re-applying an identical handle is therefore a no-op. The statement runs
        inside a SAVEPOINT so a failure leaves the surrounding transaction usable
        for the caller's other writes.

        Args:
            handle: Job identity, owner and observed status

        Returns:
            True if a row was inserted or changed, False if the stored record
            was already at or past this state
        """
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        table = Prediction.__table__  # type: ignore[attr-defined]

        stmt = insert(table).values(
            id=handle.id,
            user_id=handle.owner_id,
            status=handle.status.value,
            output_url=handle.output_url,
            created_at=now,
            updated_at=now,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.id],
            set_={
                "status": excluded.status,
                "output_url": excluded.output_url,
                "updated_at": now,
            },
            where=or_(
                _status_rank(table.c.status) < _status_rank(excluded.status),
                and_(
                    table.c.status == excluded.status,
                    table.c.output_url.is_(None),
                    excluded.output_url.is_not(None),
                ),
            ),
        ).returning(table.c.id)

        async with self.session.begin_nested():
            result = await self.session.execute(stmt)
            changed = result.scalar_one_or_none() is not None

        return changed

    async def get_by_id(self, prediction_id: str) -> Prediction | None:
        """Retrieve prediction by provider id.

        Args:
            prediction_id: Replicate prediction id

        Returns:
            Prediction if found, None otherwise
        """
        result = await self.session.execute(
            select(Prediction)
            .where(Prediction.id == prediction_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_by_user(
        self, user_id: UUID, limit: int = 100, offset: int = 0
    ) -> list[Prediction]:
        """Retrieve a user's predictions ordered by creation time (newest first).

        Args:
            user_id: Owner's unique identifier
            limit: Maximum number of predictions to return (default: 100)
            offset: Number of predictions to skip (default: 0)
        """
        result = await self.session.execute(
            select(Prediction)
            .where(Prediction.user_id == user_id)  # type: ignore[arg-type]
            .order_by(Prediction.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def list_pending(
        self, limit: int | None = None, user_id: UUID | None = None
    ) -> list[Prediction]:
        """Retrieve non-terminal predictions, oldest first.

        Args:
            limit: Maximum number of predictions to return (default: unlimited)
            user_id: Optional owner filter
        """
        query = select(Prediction).where(
            Prediction.status.not_in(_TERMINAL_STATUSES)  # type: ignore[attr-defined]
        )
        if user_id is not None:
            query = query.where(Prediction.user_id == user_id)  # type: ignore[arg-type]
        query = query.order_by(Prediction.created_at.asc())  # type: ignore[attr-defined]
        if limit is not None:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def mark_enhanced(self, prediction_id: str, artifact_path: str) -> None:
        """Store the artifact path of the restored image.

        Args:
            prediction_id: Replicate prediction id
            artifact_path: Object path inside the artifact bucket

        Raises:
            ValueError: If artifact_path is empty
        """
        if not artifact_path:
            raise ValueError("artifact_path cannot be empty")

        await self.session.execute(
            update(Prediction)
            .where(Prediction.id == prediction_id)  # type: ignore[arg-type]
            .values(
                artifact_path=artifact_path,
                updated_at=datetime.now(timezone.utc).replace(tzinfo=None),
            )
        )
        await self.session.flush()
