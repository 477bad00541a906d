"""Start a single generation job on the provider."""

import time
from typing import Optional
from uuid import UUID

import structlog

from photoforge.models.prediction import JobHandle, JobStatus
from photoforge.services.exceptions import ProviderUnavailable
from photoforge.services.image_generation.replicate_client import ReplicateClient

logger = structlog.get_logger(__name__)


class JobLauncher:
    """Creates exactly one provider job per ``launch`` call, with no retries."""

    def __init__(self, provider: ReplicateClient):
        self.provider = provider

    async def launch(
        self,
        model_version_id: str,
        rendered_prompt: str,
        negative_prompt: str,
        seed: Optional[int],
        owner_id: UUID,
    ) -> JobHandle:
        """Start one prediction and return its handle without waiting for output.

        Raises:
            ProviderUnavailable: The provider rejected the call or was unreachable;
                no job was created
        """
        start_time = time.time()

        try:
            prediction = await self.provider.start_prediction(
                model_version_id=model_version_id,
                prompt=rendered_prompt,
                negative_prompt=negative_prompt,
                seed=seed,
            )
        except Exception as e:
            error = (
                e
                if isinstance(e, ProviderUnavailable)
                else ProviderUnavailable(f"Unexpected error: {e}", cause=e)
            )
            logger.warning(
                "prediction.launch.failed",
                user_id=str(owner_id),
                error_type=type(e).__name__,
                error_message=str(e),
                retryable=error.retryable,
            )
            if error is e:
                raise
            raise error from e

        handle = JobHandle(
            id=prediction.id,
            owner_id=owner_id,
            status=JobStatus.from_provider(prediction.status),
        )
        logger.info(
            "prediction.launch.succeeded",
            prediction_id=handle.id,
            user_id=str(owner_id),
            status=handle.status.value,
            duration_seconds=time.time() - start_time,
        )
        return handle
