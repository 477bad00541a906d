"""Repository layer tests for PhotoForge backend.

Tests focus on the SQL that carries correctness guarantees:
- Forward-only, idempotent prediction UPSERT
- SAVEPOINT isolation of a failed UPSERT
- Atomic usage counter increment

Simple CRUD operations are not tested (trust SQLAlchemy/PostgreSQL).
"""

import asyncio
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError, NoResultFound

from photoforge.models.prediction import JobHandle, JobStatus
from photoforge.models.user_account import UserAccount
from photoforge.repositories.prediction import PredictionRepository
from photoforge.repositories.user_account import UserAccountRepository


def handle(owner_id, status=JobStatus.STARTING, output_url=None, prediction_id="pred-1"):
    return JobHandle(id=prediction_id, owner_id=owner_id, status=status, output_url=output_url)


@pytest.mark.asyncio
async def test_upsert_is_idempotent(session, db_user):
    """Applying the same handle twice leaves one unchanged row."""
    repo = PredictionRepository(session)

    assert await repo.upsert(handle(db_user.id)) is True
    assert await repo.upsert(handle(db_user.id)) is False
    await session.commit()

    predictions = await repo.list_by_user(db_user.id)
    assert len(predictions) == 1
    assert predictions[0].status == "starting"


@pytest.mark.asyncio
async def test_upsert_never_moves_status_backward(session, db_user):
    """Scenario: processing is stored, then a stale 'starting' read arrives.

    The stale read is ignored; a later 'succeeded' with output is applied.
    """
    repo = PredictionRepository(session)

    await repo.upsert(handle(db_user.id, JobStatus.PROCESSING))
    assert await repo.upsert(handle(db_user.id, JobStatus.STARTING)) is False

    stored = await repo.get_by_id("pred-1")
    assert stored.status == "processing"

    url = "https://replicate.delivery/out.png"
    assert await repo.upsert(handle(db_user.id, JobStatus.SUCCEEDED, url)) is True

    stored = await repo.get_by_id("pred-1")
    assert stored.status == "succeeded"
    assert stored.output_url == url


@pytest.mark.asyncio
async def test_upsert_terminal_status_is_final(session, db_user):
    repo = PredictionRepository(session)
    url = "https://replicate.delivery/out.png"

    await repo.upsert(handle(db_user.id, JobStatus.SUCCEEDED, url))
    assert await repo.upsert(handle(db_user.id, JobStatus.FAILED)) is False
    assert await repo.upsert(handle(db_user.id, JobStatus.SUCCEEDED, url)) is False

    stored = await repo.get_by_id("pred-1")
    assert stored.status == "succeeded"
    assert stored.output_url == url


@pytest.mark.asyncio
async def test_upsert_fills_missing_output_once(session, db_user):
    repo = PredictionRepository(session)

    await repo.upsert(handle(db_user.id, JobStatus.SUCCEEDED))
    assert await repo.upsert(handle(db_user.id, JobStatus.SUCCEEDED, "https://a/1.png")) is True
    assert await repo.upsert(handle(db_user.id, JobStatus.SUCCEEDED, "https://a/2.png")) is False

    stored = await repo.get_by_id("pred-1")
    assert stored.output_url == "https://a/1.png"


@pytest.mark.asyncio
async def test_failed_upsert_leaves_transaction_usable(session, db_user):
    """A foreign key violation rolls back only its own SAVEPOINT."""
    repo = PredictionRepository(session)

    await repo.upsert(handle(db_user.id, prediction_id="pred-ok"))
    with pytest.raises(IntegrityError):
        await repo.upsert(handle(uuid4(), prediction_id="pred-orphan"))
    await repo.upsert(handle(db_user.id, prediction_id="pred-after"))
    await session.commit()

    ids = {p.id for p in await repo.list_by_user(db_user.id)}
    assert ids == {"pred-ok", "pred-after"}


@pytest.mark.asyncio
async def test_list_pending_skips_terminal_predictions(session, db_user):
    repo = PredictionRepository(session)
    other = UserAccount(id=uuid4(), paid=True, trained=True, model_version_id="v")
    session.add(other)
    await session.commit()

    await repo.upsert(handle(db_user.id, JobStatus.STARTING, prediction_id="p-start"))
    await repo.upsert(handle(db_user.id, JobStatus.PROCESSING, prediction_id="p-proc"))
    await repo.upsert(handle(db_user.id, JobStatus.FAILED, prediction_id="p-failed"))
    await repo.upsert(handle(other.id, JobStatus.STARTING, prediction_id="p-other"))
    await session.commit()

    assert {p.id for p in await repo.list_pending()} == {"p-start", "p-proc", "p-other"}
    assert {p.id for p in await repo.list_pending(user_id=db_user.id)} == {"p-start", "p-proc"}
    assert len(await repo.list_pending(limit=1)) == 1


@pytest.mark.asyncio
async def test_mark_enhanced(session, db_user):
    repo = PredictionRepository(session)
    await repo.upsert(handle(db_user.id, JobStatus.SUCCEEDED, "https://a/1.png"))

    await repo.mark_enhanced("pred-1", f"{db_user.id}/pred-1.jpg")
    await session.commit()

    stored = await repo.get_by_id("pred-1")
    assert stored.artifact_path == f"{db_user.id}/pred-1.jpg"

    with pytest.raises(ValueError):
        await repo.mark_enhanced("pred-1", "")


@pytest.mark.asyncio
async def test_increment_usage_returns_new_value(session, db_user):
    repo = UserAccountRepository(session)

    assert await repo.increment_usage(db_user.id, 3) == 3
    assert await repo.increment_usage(db_user.id, 2) == 5


@pytest.mark.asyncio
async def test_increment_usage_rejects_non_positive_delta(session, db_user):
    repo = UserAccountRepository(session)

    with pytest.raises(ValueError):
        await repo.increment_usage(db_user.id, 0)


@pytest.mark.asyncio
async def test_increment_usage_unknown_user(session):
    repo = UserAccountRepository(session)

    with pytest.raises(NoResultFound):
        await repo.increment_usage(uuid4(), 1)


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(uow_factory, db_user):
    """Scenario: several requests for one user charge at the same time.

    Every increment lands; the final counter is the sum of all deltas.
    """

    async def charge(delta: int) -> None:
        async with await uow_factory() as uow:
            await uow.users.increment_usage(db_user.id, delta)

    await asyncio.gather(*(charge(delta) for delta in (1, 2, 3, 4)))

    async with await uow_factory() as uow:
        user = await uow.users.get_by_id(db_user.id)
    assert user.usage_counter == 10
