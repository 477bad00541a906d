"""Prediction API endpoints.

- POST /api/prediction - Start a batch of photo generations for the caller
- GET /api/prediction?id=... - Poll one prediction; restores and stores the image once ready
- GET /api/predictions - List the caller's predictions

All endpoints require a Supabase bearer token.
"""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from photoforge.api.dependencies import (
    get_current_user,
    get_orchestrator,
    get_reconciler,
    get_uow_factory,
)
from photoforge.models.user_account import UserAccount
from photoforge.services.exceptions import InvalidRequest, PersistenceError
from photoforge.services.generation.orchestrator import FanOutOrchestrator
from photoforge.services.generation.reconciler import StatusReconciler
from photoforge.services.generation.requests import GenerationRequest

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api", tags=["predictions"])


class DoneResponse(BaseModel):
    """Response model for generation and status calls."""

    done: bool = Field(..., description="True once the request completed")
    status: str | None = Field(
        default=None,
        description="Prediction status while it is still pending (omitted when done)",
    )


class PredictionDTO(BaseModel):
    """Data Transfer Object for prediction records."""

    id: str = Field(..., description="Replicate prediction id")
    status: str = Field(..., description="starting, processing, succeeded or failed")
    output_url: str | None = Field(default=None, description="Provider output URL")
    artifact_path: str | None = Field(
        default=None, description="Path of the restored image in the artifact bucket"
    )
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")


class PredictionsResponse(BaseModel):
    predictions: list[PredictionDTO]
    usage_counter: int = Field(..., description="Photos charged to the account so far")


@router.post("/prediction", response_model=DoneResponse, response_model_exclude_none=True)
async def start_generation(
    request: GenerationRequest,
    user: UserAccount = Depends(get_current_user),
    orchestrator: FanOutOrchestrator = Depends(get_orchestrator),
) -> DoneResponse:
    """Start up to ``quantity`` generations, bounded by the remaining quota."""
    handles = await orchestrator.generate(request, user)
    logger.info("api.prediction.started", user_id=str(user.id), launched=len(handles))
    return DoneResponse(done=True)


@router.get("/prediction", response_model=DoneResponse, response_model_exclude_none=True)
async def check_status(
    prediction_id: str | None = Query(default=None, alias="id"),
    wait: bool = Query(default=False, description="Fail with OUTPUT_NOT_READY while pending"),
    user: UserAccount = Depends(get_current_user),
    reconciler: StatusReconciler = Depends(get_reconciler),
) -> DoneResponse:
    """Reconcile one prediction with the provider."""
    if not prediction_id:
        raise InvalidRequest("Prediction ID not valid")

    result = await reconciler.reconcile(prediction_id, user, expect_completion=wait)
    if result.done:
        return DoneResponse(done=True)
    return DoneResponse(done=False, status=result.status.value)


@router.get("/predictions", response_model=PredictionsResponse)
async def list_predictions(
    limit: int = Query(default=100, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: UserAccount = Depends(get_current_user),
    uow_factory=Depends(get_uow_factory),
) -> PredictionsResponse:
    """List the caller's predictions, newest first."""
    try:
        async with await uow_factory() as uow:
            predictions = await uow.predictions.list_by_user(user.id, limit=limit, offset=offset)
    except SQLAlchemyError as e:
        raise PersistenceError("Error on prediction lookup", cause=e) from e

    return PredictionsResponse(
        predictions=[
            PredictionDTO(
                id=prediction.id,
                status=prediction.status,
                output_url=prediction.output_url,
                artifact_path=prediction.artifact_path,
                created_at=prediction.created_at,
            )
            for prediction in predictions
        ],
        usage_counter=user.usage_counter,
    )
