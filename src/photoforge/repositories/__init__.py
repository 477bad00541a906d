"""Repository layer for PhotoForge backend.

Provides data access abstractions for all domain entities.
Each repository is self-contained and receives its session from the UnitOfWork.
"""

from photoforge.repositories.prediction import PredictionRepository
from photoforge.repositories.user_account import UserAccountRepository

__all__ = [
    "PredictionRepository",
    "UserAccountRepository",
]
