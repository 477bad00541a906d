"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from photoforge.models.prediction import STATUS_RANK, JobHandle, JobStatus, Prediction
from photoforge.models.user_account import UserAccount

__all__ = [
    "UserAccount",
    "Prediction",
    "JobHandle",
    "JobStatus",
    "STATUS_RANK",
]
