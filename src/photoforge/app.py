"""FastAPI application factory."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from photoforge.api.error_handlers import generation_error_handler, validation_error_handler
from photoforge.api.routes import predictions
from photoforge.core.config import Settings, configure_logging
from photoforge.core.database import setup_db_session
from photoforge.services.exceptions import GenerationError
from photoforge.services.generation.launcher import JobLauncher
from photoforge.services.generation.orchestrator import FanOutOrchestrator
from photoforge.services.generation.reconciler import StatusReconciler
from photoforge.services.image_generation.replicate_client import ReplicateClient
from photoforge.services.storage.supabase_storage import SupabaseArtifactStore
from photoforge.services.supabase_auth import SupabaseSessionVerifier
from photoforge.uow import create_uow_factory

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Startup: load settings, configure logging, create the database session
    factory and every external client, then wire the orchestrator and the
    reconciler into ``app.state``.
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    replicate_client = ReplicateClient(
        api_token=settings.replicate_api_token,
        enhancement_model=settings.enhancement_model,
        timeout_seconds=settings.provider_timeout_seconds,
    )
    artifact_store = SupabaseArtifactStore(
        base_url=settings.supabase_url,
        service_key=settings.supabase_service_role_key,
        bucket=settings.artifact_bucket,
        timeout_seconds=settings.provider_timeout_seconds,
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.session_verifier = SupabaseSessionVerifier(
        base_url=settings.supabase_url,
        api_key=settings.supabase_service_role_key,
    )
    app.state.orchestrator = FanOutOrchestrator.from_settings(
        uow_factory, JobLauncher(replicate_client), settings
    )
    app.state.reconciler = StatusReconciler(
        uow_factory,
        replicate_client,
        artifact_store,
        cap=settings.generation_cap,
    )

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown")
    await session_factory.kw["bind"].dispose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="PhotoForge Backend API",
        description="Quota-bounded AI photo generation",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(GenerationError, generation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]

    app.include_router(predictions.router)

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
