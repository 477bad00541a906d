"""pytest fixtures for PhotoForge backend tests.

Provides:
- postgres_container: Session-scoped testcontainer PostgreSQL instance (skipped without Docker)
- utc_timezone: Autouse fixture enforcing UTC timezone
- session: Function-scoped database session with table truncation
- uow_factory: Function-scoped UnitOfWork factory
- fake_db / fake_uow_factory: In-memory store for service-level tests
"""

import os
import subprocess
import sys
from pathlib import Path
from typing import AsyncGenerator
from uuid import uuid4

# Settings validation is skipped in test environments; set before photoforge imports
os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from photoforge.core.database import setup_db_session  # noqa: E402
from photoforge.models.user_account import UserAccount  # noqa: E402
from photoforge.uow import create_uow_factory  # noqa: E402
from tests.fakes import FakeDatabase, FakeUowFactory  # noqa: E402

PROJECT_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Container starts once per test session and is reused across all tests.
    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    Tests that need it are skipped when Docker is not available.
    """
    from testcontainers.postgres import PostgresContainer

    try:
        container = PostgresContainer(
            image="postgres:17",
            username="test",
            password="test",
            dbname="test_photoforge",
        ).with_bind_ports(5432, None)
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    try:
        db_url = container.get_connection_url(driver="psycopg")

        env = os.environ.copy()
        env["DATABASE_URL"] = db_url

        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session(postgres_container) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session with table truncation.

    Each test gets a fresh session with empty tables (truncated between tests).
    """
    db_url = postgres_container.get_connection_url(driver="psycopg")
    session_factory = setup_db_session(db_url, pool_size=5)

    async with session_factory() as session:
        yield session

        # Rollback first so truncation does not hit foreign key violations
        await session.rollback()

        # Dependent table first
        await session.execute(text("DELETE FROM predictions"))
        await session.execute(text("DELETE FROM user_info"))
        await session.commit()

    await session_factory.kw["bind"].dispose()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session: AsyncSession):
    """Provide function-scoped UnitOfWork factory bound to the test database."""
    session_factory = async_sessionmaker(
        bind=session.bind,
        expire_on_commit=False,
    )
    return create_uow_factory(session_factory)


@pytest_asyncio.fixture(scope="function")
async def db_user(session: AsyncSession) -> UserAccount:
    """Persist a paid account with a trained model."""
    user = UserAccount(
        id=uuid4(),
        paid=True,
        in_training=False,
        trained=True,
        model_version_id="5c7d5dc6dd8bf75c1acaa8565735e7986bc5b66206b55cca93cb72c9bf15ccaa",
        usage_counter=0,
    )
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
def ready_user() -> UserAccount:
    """Paid account with a trained model and no usage (not persisted)."""
    return UserAccount(
        id=uuid4(),
        paid=True,
        in_training=False,
        trained=True,
        model_version_id="5c7d5dc6dd8bf75c1acaa8565735e7986bc5b66206b55cca93cb72c9bf15ccaa",
        usage_counter=0,
    )


@pytest.fixture
def fake_db(ready_user: UserAccount) -> FakeDatabase:
    db = FakeDatabase()
    db.add_user(ready_user)
    return db


@pytest.fixture
def fake_uow_factory(fake_db: FakeDatabase) -> FakeUowFactory:
    return FakeUowFactory(fake_db)
