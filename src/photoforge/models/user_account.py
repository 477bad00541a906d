"""UserAccount entity - paying customer with a personal fine-tuned model."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlmodel import Field, SQLModel


class UserAccount(SQLModel, table=True):
    """UserAccount holds payment, model training state and lifetime usage.

    The id is the auth provider's user id. ``usage_counter`` counts every photo
    charged to the account and is only changed through an atomic increment.
    """

    __tablename__ = "user_info"  # type: ignore[assignment]

    id: UUID = Field(primary_key=True)
    paid: bool = Field(default=False)
    in_training: bool = Field(default=False)
    trained: bool = Field(default=False)
    model_version_id: Optional[str] = Field(default=None, max_length=255)
    usage_counter: int = Field(default=0, ge=0)
    instance_class: str = Field(default="person", max_length=50)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def model_ready(self) -> bool:
        """True when the personal model finished training and has a version."""
        return not self.in_training and self.trained and bool(self.model_version_id)
