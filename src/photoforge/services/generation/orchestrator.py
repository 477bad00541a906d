"""Quota-bounded fan-out of generation jobs.

A generate call moves through four stages:

1. Validation: prompt, payment, model readiness, quota → ``allowed`` jobs
2. Launch: ``allowed`` provider jobs started concurrently (bounded), every
   outcome collected; one failure never cancels the others
3. Record: every launched job upserted in one transaction; any failure rolls
   the whole batch back and fails the call with PersistenceError
4. Charge: one atomic usage increment by the number of recorded jobs

Charging happens only after recording, so the usage counter reflects jobs
actually recorded, never the requested quantity. Provider jobs are not
cancelled when recording or charging fails; they are logged as
``prediction.orphaned`` for manual follow-up.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from photoforge.core.config import Settings
from photoforge.models.prediction import JobHandle
from photoforge.models.user_account import UserAccount
from photoforge.services.exceptions import PersistenceError, PromptMissing, ProviderUnavailable
from photoforge.services.generation.launcher import JobLauncher
from photoforge.services.generation.quota import (
    DEFAULT_GENERATION_CAP,
    compute_allowed_quantity,
    ensure_account_ready,
    limit_batch_size,
)
from photoforge.services.generation.requests import GenerationRequest
from photoforge.services.image_generation.prompts import (
    get_theme_prompt,
    render_prompt,
    validate_prompt,
)
from photoforge.uow import UnitOfWork

logger = structlog.get_logger(__name__)


class FanOutOrchestrator:
    """Launches a user's batch of generation jobs and keeps the quota in sync."""

    def __init__(
        self,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        launcher: JobLauncher,
        *,
        negative_prompt: str,
        instance_token: str,
        cap: int = DEFAULT_GENERATION_CAP,
        batch_limit: int = 10,
        concurrency: int = 5,
    ):
        """Initialize orchestrator.

        Args:
            uow_factory: Async factory producing UnitOfWork instances
            launcher: Starts one provider job per call
            negative_prompt: Negative prompt sent with every job
            instance_token: Token that identifies the user's subject in prompts
            cap: Lifetime photos per user
            batch_limit: Maximum jobs per request
            concurrency: Maximum provider calls in flight at once
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.uow_factory = uow_factory
        self.launcher = launcher
        self.negative_prompt = negative_prompt
        self.instance_token = instance_token
        self.cap = cap
        self.batch_limit = batch_limit
        self.concurrency = concurrency

    @classmethod
    def from_settings(
        cls,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        launcher: JobLauncher,
        settings: Settings,
    ) -> "FanOutOrchestrator":
        return cls(
            uow_factory,
            launcher,
            negative_prompt=settings.negative_prompt,
            instance_token=settings.instance_token,
            cap=settings.generation_cap,
            batch_limit=settings.max_quantity_per_request,
            concurrency=settings.launch_concurrency,
        )

    async def generate(self, request: GenerationRequest, user: UserAccount) -> list[JobHandle]:
        """Launch, record and charge a batch of generation jobs.

        Args:
            request: Validated generation request
            user: Account the jobs are started for

        Returns:
            Handles of the jobs that were launched, recorded and charged

        Raises:
            PromptMissing: No usable theme or prompt
            PaymentRequired: Account has not paid
            ModelNotReady: Personal model is not trained yet
            InvalidQuantity: Quantity is not a positive integer
            QuotaExhausted: No quota left
            ProviderUnavailable: No job could be launched, or some launches
                failed (raised after the successful ones were recorded and charged)
            PersistenceError: Recording or charging failed
        """
        prompt = self._resolve_prompt(request)
        ensure_account_ready(user)
        requested = limit_batch_size(request.quantity, self.batch_limit)
        allowed = compute_allowed_quantity(requested, user.usage_counter, self.cap)

        log = logger.bind(user_id=str(user.id))
        log.info(
            "generation.started",
            requested=requested,
            allowed=allowed,
            usage_counter=user.usage_counter,
            cap=self.cap,
        )

        rendered_prompt = render_prompt(prompt, self.instance_token, user.instance_class)
        handles, failures = await self._launch_batch(allowed, rendered_prompt, request.seed, user)

        if not handles:
            first = failures[0]
            log.error("generation.launch_failed", attempted=allowed, failed=len(failures))
            raise ProviderUnavailable(
                f"All {allowed} generation jobs failed to start",
                cause=first,
                retryable=all(getattr(f, "retryable", False) for f in failures),
                launched=0,
                failed=len(failures),
            ) from first

        await self._record(handles, log)
        usage_counter = await self._charge(user, len(handles), log)

        if failures:
            first = failures[0]
            log.warning(
                "generation.partially_launched",
                launched=len(handles),
                failed=len(failures),
                usage_counter=usage_counter,
            )
            raise ProviderUnavailable(
                f"Started {len(handles)} of {allowed} photos; {len(failures)} failed to start",
                cause=first,
                retryable=all(getattr(f, "retryable", False) for f in failures),
                launched=len(handles),
                failed=len(failures),
            ) from first

        log.info("generation.completed", launched=len(handles), usage_counter=usage_counter)
        return handles

    def _resolve_prompt(self, request: GenerationRequest) -> str:
        prompt = request.prompt
        if request.theme:
            prompt = get_theme_prompt(request.theme)
            if prompt is None:
                raise PromptMissing(f"Unknown theme: {request.theme}", theme=request.theme)

        if not prompt:
            raise PromptMissing()

        try:
            return validate_prompt(prompt)
        except ValueError as e:
            raise PromptMissing(str(e), cause=e) from e

    async def _launch_batch(
        self,
        count: int,
        rendered_prompt: str,
        seed: Optional[int],
        user: UserAccount,
    ) -> tuple[list[JobHandle], list[Exception]]:
        """Start ``count`` jobs with at most ``concurrency`` in flight; join every outcome."""
        semaphore = asyncio.Semaphore(self.concurrency)
        model_version_id = user.model_version_id or ""

        async def _launch_one() -> JobHandle:
            async with semaphore:
                return await self.launcher.launch(
                    model_version_id=model_version_id,
                    rendered_prompt=rendered_prompt,
                    negative_prompt=self.negative_prompt,
                    seed=seed,
                    owner_id=user.id,
                )

        results = await asyncio.gather(*(_launch_one() for _ in range(count)), return_exceptions=True)

        handles: list[JobHandle] = []
        failures: list[Exception] = []
        for result in results:
            if isinstance(result, JobHandle):
                handles.append(result)
            elif isinstance(result, Exception):
                failures.append(result)
            else:
                raise result  # KeyboardInterrupt, SystemExit, CancelledError
        return handles, failures

    async def _record(self, handles: list[JobHandle], log) -> None:
        """Upsert every handle in one transaction, collecting all failures first."""
        try:
            async with await self.uow_factory() as uow:
                failed: list[tuple[str, Exception]] = []
                for handle in handles:
                    try:
                        await uow.predictions.upsert(handle)
                    except SQLAlchemyError as e:
                        failed.append((handle.id, e))

                if failed:
                    first_error = failed[0][1]
                    raise PersistenceError(
                        cause=first_error,
                        failed_prediction_ids=[prediction_id for prediction_id, _ in failed],
                    ) from first_error
        except PersistenceError as e:
            self._log_orphaned(handles, log, "record_failed", e)
            raise
        except SQLAlchemyError as e:
            self._log_orphaned(handles, log, "record_failed", e)
            raise PersistenceError(cause=e) from e

        log.info("prediction.recorded", count=len(handles))

    async def _charge(self, user: UserAccount, count: int, log) -> int:
        """Atomically add ``count`` to the user's usage counter."""
        try:
            async with await self.uow_factory() as uow:
                usage_counter = await uow.users.increment_usage(user.id, count)
        except SQLAlchemyError as e:
            log.error(
                "usage.increment_failed",
                delta=count,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            raise PersistenceError("Error on usage counter update", cause=e, delta=count) from e

        log.info("usage.incremented", delta=count, usage_counter=usage_counter)
        if usage_counter > self.cap:
            # Concurrent requests for the same user both passed the quota check
            log.warning("usage.over_cap", usage_counter=usage_counter, cap=self.cap)
        return usage_counter

    @staticmethod
    def _log_orphaned(handles: list[JobHandle], log, reason: str, error: Exception) -> None:
        log.warning(
            "prediction.orphaned",
            reason=reason,
            prediction_ids=[handle.id for handle in handles],
            error_type=type(error).__name__,
            error_message=str(error),
        )
