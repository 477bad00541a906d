"""CLI command for reconciling pending predictions with Replicate.

Polls every prediction still in ``starting`` or ``processing`` through the
same reconciler the status endpoint uses, so jobs whose owners stopped
polling still get their final status and restored image.

Usage:
    python -m photoforge.cli.reconcile_predictions [OPTIONS]

Examples:
    # Reconcile all pending predictions
    python -m photoforge.cli.reconcile_predictions

    # Only the 50 oldest pending predictions
    python -m photoforge.cli.reconcile_predictions --limit 50

    # One user's predictions
    python -m photoforge.cli.reconcile_predictions --user 2b0f6c1e-8a3d-4c5e-9f71-0d2a6b4c8e19

    # Verbose logging
    python -m photoforge.cli.reconcile_predictions -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

import structlog

from photoforge.core.config import Settings, configure_logging
from photoforge.core.database import setup_db_session
from photoforge.services.exceptions import GenerationError
from photoforge.services.generation.reconciler import StatusReconciler
from photoforge.services.image_generation.replicate_client import ReplicateClient
from photoforge.services.storage.supabase_storage import SupabaseArtifactStore
from photoforge.uow import create_uow_factory

logger = structlog.get_logger()


@dataclass
class SweepResult:
    """Counters for one reconciliation sweep."""

    pending_count: int = 0
    completed_count: int = 0
    still_pending_count: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.errors)


def parse_args(argv: Optional[list[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Reconcile pending predictions with Replicate",
        epilog="Restored images are stored once a prediction succeeds",
    )

    parser.add_argument(
        "--limit",
        type=int,
        help="Maximum number of predictions to reconcile (default: unlimited)",
    )

    parser.add_argument(
        "--user",
        type=UUID,
        help="Only reconcile predictions owned by this user id",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def sweep(
    uow_factory,
    reconciler: StatusReconciler,
    limit: Optional[int] = None,
    user_id: Optional[UUID] = None,
) -> SweepResult:
    """Reconcile pending predictions one by one, oldest first.

    A failure on one prediction is recorded and the sweep moves on.
    """
    async with await uow_factory() as uow:
        pending = await uow.predictions.list_pending(limit=limit, user_id=user_id)

    result = SweepResult(pending_count=len(pending))
    owners = {}

    for prediction in pending:
        try:
            if prediction.user_id not in owners:
                async with await uow_factory() as uow:
                    owners[prediction.user_id] = await uow.users.get_by_id(prediction.user_id)

            outcome = await reconciler.reconcile(prediction.id, owners[prediction.user_id])
        except GenerationError as e:
            logger.warning(
                "cli.prediction_failed",
                prediction_id=prediction.id,
                **e.log_fields(),
            )
            result.errors.append(f"{prediction.id}: {e.error_code} {e.message}")
            continue

        if outcome.done:
            result.completed_count += 1
        else:
            result.still_pending_count += 1

    return result


async def async_main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (partial success)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]

    if args.verbose:
        settings.log_level = "DEBUG"

    configure_logging(settings)

    logger.info(
        "cli.started",
        limit=args.limit,
        user_id=str(args.user) if args.user else None,
    )

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    replicate_client = ReplicateClient(
        api_token=settings.replicate_api_token,
        enhancement_model=settings.enhancement_model,
        timeout_seconds=settings.provider_timeout_seconds,
    )
    reconciler = StatusReconciler(
        uow_factory,
        replicate_client,
        SupabaseArtifactStore(
            base_url=settings.supabase_url,
            service_key=settings.supabase_service_role_key,
            bucket=settings.artifact_bucket,
            timeout_seconds=settings.provider_timeout_seconds,
        ),
        cap=settings.generation_cap,
    )

    try:
        result = await sweep(uow_factory, reconciler, limit=args.limit, user_id=args.user)

        print("\n" + "=" * 60)
        print("Prediction Reconciliation Summary")
        print("=" * 60)
        print(f"Pending predictions: {result.pending_count}")
        print(f"Completed: {result.completed_count}")
        print(f"Still pending: {result.still_pending_count}")

        if result.errors:
            print(f"\nErrors encountered: {result.failed_count}")
            for error in result.errors[:5]:
                print(f"  - {error}")
            if len(result.errors) > 5:
                print(f"  ... and {len(result.errors) - 5} more errors")

        print("=" * 60 + "\n")

        if result.failed_count == 0:
            logger.info("cli.success", completed=result.completed_count)
            return 0
        elif result.failed_count < result.pending_count:
            logger.warning("cli.partial_success", failed=result.failed_count)
            return 2
        else:
            logger.error("cli.failure", failed=result.failed_count)
            return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nReconciliation interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    finally:
        await session_factory.kw["bind"].dispose()


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
