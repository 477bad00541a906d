"""Prediction entity - one external image generation job per row."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlmodel import Field, SQLModel


class JobStatus(str, Enum):
    """Prediction lifecycle status.

    Status only moves forward: starting → processing → succeeded | failed.
    """

    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)

    @classmethod
    def from_provider(cls, raw: str | None) -> "JobStatus":
        """Map a provider status string onto the lifecycle.

        Replicate reports ``canceled`` for aborted predictions; it is treated
        as ``failed``. Unknown or missing values count as ``starting``.
        """
        if raw == "canceled":
            return cls.FAILED
        try:
            return cls(raw)
        except ValueError:
            return cls.STARTING


STATUS_RANK: dict[JobStatus, int] = {
    JobStatus.STARTING: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.SUCCEEDED: 2,
    JobStatus.FAILED: 2,
}


@dataclass(frozen=True)
class JobHandle:
    """Provider job identity plus the status observed for it."""

    id: str
    owner_id: UUID
    status: JobStatus
    output_url: Optional[str] = None


class Prediction(SQLModel, table=True):
    """Prediction tracks one Replicate job started on behalf of a user."""

    __tablename__ = "predictions"  # type: ignore[assignment]

    id: str = Field(primary_key=True, max_length=255)  # Replicate prediction id
    user_id: UUID = Field(foreign_key="user_info.id", index=True)
    status: str = Field(default=JobStatus.STARTING.value, max_length=20, index=True)
    output_url: Optional[str] = Field(default=None)
    artifact_path: Optional[str] = Field(default=None, max_length=512)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)
