"""Lifetime generation quota.

Pure helpers: no I/O, no side effects.
"""

from typing import Any

from photoforge.models.user_account import UserAccount
from photoforge.services.exceptions import (
    InvalidQuantity,
    ModelNotReady,
    PaymentRequired,
    QuotaExhausted,
)

DEFAULT_GENERATION_CAP = 100


def parse_quantity(requested: Any) -> int:
    """Coerce a requested quantity to a positive int.

    Accepts ints and numeric strings ("3", " 3 "). Booleans, fractional
    numbers, non-numeric strings and values below 1 are rejected.

    Raises:
        InvalidQuantity: If the value is not a positive integer
    """
    if isinstance(requested, bool):
        raise InvalidQuantity(cause=requested)

    if isinstance(requested, int):
        quantity = requested
    elif isinstance(requested, float) and requested.is_integer():
        quantity = int(requested)
    elif isinstance(requested, str):
        try:
            quantity = int(requested.strip())
        except ValueError as e:
            raise InvalidQuantity(cause=requested) from e
    else:
        raise InvalidQuantity(cause=requested)

    if quantity < 1:
        raise InvalidQuantity(f"Quantity must be at least 1, got {quantity}", cause=requested)
    return quantity


def compute_allowed_quantity(requested: Any, used: int, cap: int = DEFAULT_GENERATION_CAP) -> int:
    """Return how many jobs may be started now.

    Args:
        requested: Requested quantity (positive int or numeric string)
        used: Photos already charged to the user
        cap: Lifetime per-user limit

    Returns:
        min(requested, cap - used), always >= 1

    Raises:
        InvalidQuantity: If requested is not a positive integer
        QuotaExhausted: If no quota remains
    """
    quantity = parse_quantity(requested)

    remaining = cap - used
    if remaining <= 0:
        raise QuotaExhausted(f"You have already generated {cap} photos", used=used, cap=cap)

    return min(quantity, remaining)


def limit_batch_size(requested: Any, batch_limit: int) -> int:
    """Clamp one request to the per-request batch limit.

    Raises:
        InvalidQuantity: If requested is not a positive integer
    """
    return min(parse_quantity(requested), batch_limit)


def ensure_account_ready(user: UserAccount) -> None:
    """Check payment and personal model readiness.

    Raises:
        PaymentRequired: If the account has not paid
        ModelNotReady: If the personal model is training or has no version
    """
    if not user.paid:
        raise PaymentRequired(user_id=str(user.id))

    if not user.model_ready:
        raise ModelNotReady(
            user_id=str(user.id),
            in_training=user.in_training,
            trained=user.trained,
        )


def ensure_can_poll(user: UserAccount, cap: int = DEFAULT_GENERATION_CAP) -> None:
    """Read-only eligibility check used by status polling; nothing is charged.

    Polling requires remaining quota, the same as starting a generation.

    Raises:
        PaymentRequired: If the account has not paid
        ModelNotReady: If the personal model is training or has no version
        QuotaExhausted: If the usage counter has reached the cap
    """
    ensure_account_ready(user)

    if user.usage_counter >= cap:
        raise QuotaExhausted(
            f"You cannot generate more than {cap} photos", used=user.usage_counter, cap=cap
        )
