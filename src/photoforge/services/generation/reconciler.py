"""Poll-driven reconciliation of one prediction: generate → enhance → store.

Each reconcile call fetches the provider status, persists it with a
forward-only upsert, and, when this call is the one that recorded the
transition to ``succeeded`` with an output URL, runs face restoration and
stores the restored image at ``<owner_id>/<prediction_id>.jpg``.

Only predictions already recorded for the caller can be polled. Later polls of
a job that already succeeded do not run enhancement again, and a failed
enhancement is not retried.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from photoforge.models.prediction import JobHandle, JobStatus, Prediction
from photoforge.models.user_account import UserAccount
from photoforge.services.exceptions import (
    EnhancementFailed,
    InvalidRequest,
    OutputNotReady,
    PersistenceError,
    ProviderUnavailable,
    Unauthenticated,
)
from photoforge.services.generation.quota import DEFAULT_GENERATION_CAP, ensure_can_poll
from photoforge.services.image_generation.replicate_client import ReplicateClient
from photoforge.services.storage.supabase_storage import SupabaseArtifactStore
from photoforge.uow import UnitOfWork

logger = structlog.get_logger(__name__)


def artifact_path_for(owner_id: UUID, prediction_id: str) -> str:
    """Object path of a prediction's restored image inside the artifact bucket."""
    return f"{owner_id}/{prediction_id}.jpg"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconcile call."""

    done: bool
    status: JobStatus
    artifact_path: Optional[str] = None


class StatusReconciler:
    """Advances a single prediction through generate → enhance on each poll."""

    def __init__(
        self,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        provider: ReplicateClient,
        artifact_store: SupabaseArtifactStore,
        *,
        enhancer: Optional[ReplicateClient] = None,
        cap: int = DEFAULT_GENERATION_CAP,
    ):
        """Initialize reconciler.

        Args:
            uow_factory: Async factory producing UnitOfWork instances
            provider: Source of prediction status
            artifact_store: Downloads restored images and stores the result
            enhancer: Face restoration capability (defaults to ``provider``)
            cap: Lifetime photos per user, checked read-only
        """
        self.uow_factory = uow_factory
        self.provider = provider
        self.enhancer = enhancer or provider
        self.artifact_store = artifact_store
        self.cap = cap

    async def reconcile(
        self,
        job_id: str,
        user: Optional[UserAccount],
        expect_completion: bool = False,
    ) -> ReconcileResult:
        """Sync one prediction with the provider and run enhancement on completion.

        Args:
            job_id: Provider prediction id
            user: Requesting account (must own the prediction)
            expect_completion: Raise OutputNotReady instead of returning a
                pending result when no output is available yet

        Returns:
            ReconcileResult with ``done=True`` once output exists

        Raises:
            InvalidRequest: Missing or unknown job id, or the prediction belongs
                to another user
            Unauthenticated: No user
            PaymentRequired / ModelNotReady / QuotaExhausted: Account not eligible
            ProviderUnavailable: Status could not be fetched
            PersistenceError: Status could not be stored
            OutputNotReady: No output yet and ``expect_completion`` was set
            EnhancementFailed: Restoration, download, upload or the artifact path
                update failed
        """
        if not job_id or not job_id.strip():
            raise InvalidRequest("Prediction ID not valid")
        if user is None:
            raise Unauthenticated()

        job_id = job_id.strip()
        ensure_can_poll(user, self.cap)
        log = logger.bind(prediction_id=job_id, user_id=str(user.id))

        existing = await self._load(job_id)
        if existing is None:
            log.warning("prediction.unknown")
            raise InvalidRequest("Prediction ID not valid")
        if existing.user_id != user.id:
            log.warning("prediction.owner_mismatch")
            raise InvalidRequest("Prediction ID not valid")

        prediction = await self._fetch_status(job_id)
        status = JobStatus.from_provider(prediction.status)
        output_url = prediction.output_urls[0] if prediction.output_urls else None
        if status != JobStatus.SUCCEEDED:
            output_url = None

        handle = JobHandle(id=job_id, owner_id=user.id, status=status, output_url=output_url)
        advanced = await self._persist(handle)
        log.info(
            "prediction.status.persisted",
            status=status.value,
            advanced=advanced,
            has_output=output_url is not None,
        )

        if output_url is None:
            if expect_completion:
                raise OutputNotReady(
                    "Prediction failed" if status == JobStatus.FAILED else None,
                    prediction_id=job_id,
                    status=status.value,
                )
            return ReconcileResult(done=False, status=status)

        if not advanced:
            # An earlier poll recorded this transition and owns enhancement
            return ReconcileResult(
                done=True,
                status=status,
                artifact_path=existing.artifact_path,
            )

        artifact_path = await self._enhance_and_store(handle, output_url, log)
        return ReconcileResult(done=True, status=status, artifact_path=artifact_path)

    async def _load(self, job_id: str) -> Optional[Prediction]:
        try:
            async with await self.uow_factory() as uow:
                return await uow.predictions.get_by_id(job_id)
        except SQLAlchemyError as e:
            raise PersistenceError("Error on prediction lookup", cause=e) from e

    async def _fetch_status(self, job_id: str):
        try:
            return await self.provider.get_prediction(job_id)
        except ProviderUnavailable:
            raise
        except Exception as e:
            raise ProviderUnavailable(f"Unexpected error: {e}", cause=e) from e

    async def _persist(self, handle: JobHandle) -> bool:
        try:
            async with await self.uow_factory() as uow:
                return await uow.predictions.upsert(handle)
        except SQLAlchemyError as e:
            raise PersistenceError(cause=e, prediction_id=handle.id) from e

    async def _enhance_and_store(self, handle: JobHandle, output_url: str, log) -> str:
        path = artifact_path_for(handle.owner_id, handle.id)
        log.info("prediction.enhancement.started", output_url=output_url)

        try:
            enhanced_url = await self.enhancer.enhance(output_url)
            image = await self.artifact_store.fetch(enhanced_url)
            await self.artifact_store.put(path, image)
        except Exception as e:
            log.error(
                "prediction.enhancement.failed",
                error_type=type(e).__name__,
                error_message=str(e),
            )
            raise EnhancementFailed(cause=e, prediction_id=handle.id) from e

        try:
            async with await self.uow_factory() as uow:
                await uow.predictions.mark_enhanced(handle.id, path)
        except SQLAlchemyError as e:
            log.error("prediction.enhancement.record_failed", artifact_path=path, error=str(e))
            raise EnhancementFailed(
                "Error on artifact path update", cause=e, prediction_id=handle.id
            ) from e

        log.info("prediction.enhancement.succeeded", artifact_path=path)
        return path
