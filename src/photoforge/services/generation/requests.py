"""Typed generation request, validated before it reaches the orchestrator."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class GenerationRequest(BaseModel):
    """Request to start a batch of photo generations.

    ``theme`` selects a predefined prompt and takes precedence over ``prompt``.
    ``quantity`` is left untyped here and validated by the quota calculator,
    so any value that is not a positive integer surfaces as InvalidQuantity.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    theme: Optional[str] = Field(default=None, max_length=100)
    prompt: Optional[str] = Field(default=None)
    seed: Optional[int] = Field(default=None, ge=0, le=2**32 - 1)
    quantity: Any = Field(default=1)
