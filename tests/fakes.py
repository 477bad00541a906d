"""In-memory collaborators for service and API tests.

FakeDatabase keeps committed state; each FakeUnitOfWork works on a private
copy and publishes it only on a clean exit, so rollback behaves like the real
UnitOfWork. Repository methods mirror the SQL semantics of the real ones,
including the forward-only status guard in ``upsert``.
"""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import NoResultFound, OperationalError

from photoforge.models.prediction import JobHandle, JobStatus, Prediction
from photoforge.models.user_account import UserAccount
from photoforge.services.exceptions import ArtifactStoreError, ProviderUnavailable
from photoforge.services.image_generation.replicate_client import ProviderPrediction


def _db_error(message: str) -> OperationalError:
    return OperationalError(message, params=None, orig=Exception(message))


def _copy_prediction(prediction: Prediction, **changes) -> Prediction:
    values = {
        "id": prediction.id,
        "user_id": prediction.user_id,
        "status": prediction.status,
        "output_url": prediction.output_url,
        "artifact_path": prediction.artifact_path,
        "created_at": prediction.created_at,
        "updated_at": prediction.updated_at,
    }
    values.update(changes)
    return Prediction(**values)


class FakeDatabase:
    """Committed state shared by every unit of work."""

    def __init__(self):
        self.users: dict[UUID, UserAccount] = {}
        self.usage: dict[UUID, int] = {}
        self.predictions: dict[str, Prediction] = {}
        self.failing_upsert_ids: set[str] = set()
        self.fail_increment = False
        self.fail_mark_enhanced = False
        self.commits = 0
        self.rollbacks = 0

    def add_user(self, user: UserAccount) -> UserAccount:
        self.users[user.id] = user
        self.usage[user.id] = user.usage_counter
        return user

    def add_prediction(
        self,
        prediction_id: str,
        owner_id: UUID,
        status: JobStatus = JobStatus.STARTING,
        output_url: Optional[str] = None,
        artifact_path: Optional[str] = None,
    ) -> Prediction:
        prediction = Prediction(
            id=prediction_id,
            user_id=owner_id,
            status=status.value,
            output_url=output_url,
            artifact_path=artifact_path,
        )
        self.predictions[prediction_id] = prediction
        return prediction


class FakePredictionRepository:
    def __init__(self, db: FakeDatabase, rows: dict[str, Prediction]):
        self.db = db
        self.rows = rows

    async def upsert(self, handle: JobHandle) -> bool:
        if handle.id in self.db.failing_upsert_ids:
            raise _db_error(f"insert failed for {handle.id}")

        existing = self.rows.get(handle.id)
        if existing is None:
            self.rows[handle.id] = Prediction(
                id=handle.id,
                user_id=handle.owner_id,
                status=handle.status.value,
                output_url=handle.output_url,
            )
            return True

        current = existing.job_status
        fills_output = (
            current == handle.status
            and existing.output_url is None
            and handle.output_url is not None
        )
        if current.rank < handle.status.rank or fills_output:
            self.rows[handle.id] = _copy_prediction(
                existing,
                status=handle.status.value,
                output_url=handle.output_url,
                updated_at=datetime.utcnow(),
            )
            return True
        return False

    async def get_by_id(self, prediction_id: str) -> Optional[Prediction]:
        return self.rows.get(prediction_id)

    async def list_by_user(self, user_id: UUID, limit: int = 100, offset: int = 0):
        owned = [p for p in self.rows.values() if p.user_id == user_id]
        owned.sort(key=lambda p: p.created_at, reverse=True)
        return owned[offset : offset + limit]

    async def list_pending(self, limit: Optional[int] = None, user_id: Optional[UUID] = None):
        pending = [
            p
            for p in self.rows.values()
            if not p.job_status.is_terminal and (user_id is None or p.user_id == user_id)
        ]
        pending.sort(key=lambda p: p.created_at)
        return pending[:limit] if limit is not None else pending

    async def mark_enhanced(self, prediction_id: str, artifact_path: str) -> None:
        if not artifact_path:
            raise ValueError("artifact_path cannot be empty")
        if self.db.fail_mark_enhanced:
            raise _db_error(f"artifact path update failed for {prediction_id}")
        existing = self.rows.get(prediction_id)
        if existing is not None:
            self.rows[prediction_id] = _copy_prediction(existing, artifact_path=artifact_path)


class FakeUserAccountRepository:
    def __init__(self, db: FakeDatabase, usage: dict[UUID, int]):
        self.db = db
        self.usage = usage

    async def get_by_id(self, user_id: UUID) -> Optional[UserAccount]:
        return self.db.users.get(user_id)

    async def increment_usage(self, user_id: UUID, delta: int) -> int:
        if delta <= 0:
            raise ValueError(f"delta must be positive, got {delta}")
        if self.db.fail_increment:
            raise _db_error("usage update failed")
        if user_id not in self.usage:
            raise NoResultFound("No row was found when one was required")
        self.usage[user_id] += delta
        return self.usage[user_id]


class FakeUnitOfWork:
    def __init__(self, db: FakeDatabase):
        self.db = db
        self._rows = dict(db.predictions)
        self._usage = dict(db.usage)
        self.users = FakeUserAccountRepository(db, self._usage)
        self.predictions = FakePredictionRepository(db, self._rows)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.db.predictions = self._rows
            self.db.usage = self._usage
            for user_id, value in self._usage.items():
                self.db.users[user_id].usage_counter = value
            self.db.commits += 1
        else:
            self.db.rollbacks += 1
        return False


class FakeUowFactory:
    """Async callable matching ``create_uow_factory``'s product."""

    def __init__(self, db: FakeDatabase):
        self.db = db

    async def __call__(self) -> FakeUnitOfWork:
        return FakeUnitOfWork(self.db)


class FakeProvider:
    """Replicate stand-in: start, poll and restore.

    ``fail_calls`` holds 1-based indices of ``start_prediction`` calls that
    raise ProviderUnavailable.
    """

    def __init__(self, fail_calls: Optional[set[int]] = None, fail_enhance: bool = False):
        self.fail_calls = fail_calls or set()
        self.fail_enhance = fail_enhance
        self.fail_status = False
        self.started: list[dict] = []
        self.statuses: dict[str, ProviderPrediction] = {}
        self.enhanced: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._calls = 0

    async def start_prediction(
        self,
        model_version_id: str,
        prompt: str,
        negative_prompt: str,
        seed: Optional[int] = None,
    ) -> ProviderPrediction:
        self._calls += 1
        call = self._calls
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if call in self.fail_calls:
                raise ProviderUnavailable(
                    "Service unavailable: 503", retryable=True, category="service_unavailable"
                )
            self.started.append(
                {
                    "version": model_version_id,
                    "prompt": prompt,
                    "negative_prompt": negative_prompt,
                    "seed": seed,
                }
            )
            return ProviderPrediction(id=f"pred-{call}", status="starting")
        finally:
            self.in_flight -= 1

    def report(self, prediction_id: str, status: str, output_urls: Optional[list[str]] = None):
        self.statuses[prediction_id] = ProviderPrediction(
            id=prediction_id, status=status, output_urls=output_urls or []
        )

    async def get_prediction(self, prediction_id: str) -> ProviderPrediction:
        if self.fail_status:
            raise ProviderUnavailable("Network timeout", retryable=True, category="timeout")
        return self.statuses.get(
            prediction_id, ProviderPrediction(id=prediction_id, status="starting")
        )

    async def enhance(self, image_url: str) -> str:
        self.enhanced.append(image_url)
        if self.fail_enhance:
            raise ProviderUnavailable("Provider error: model crashed", category="provider_error")
        return f"{image_url}?restored=1"


class FakeArtifactStore:
    def __init__(self, fail_put: bool = False):
        self.fail_put = fail_put
        self.fetched: list[str] = []
        self.objects: dict[str, bytes] = {}

    async def fetch(self, url: str) -> bytes:
        self.fetched.append(url)
        return f"image:{url}".encode()

    async def put(self, path: str, data: bytes, content_type: str = "image/jpeg") -> str:
        if self.fail_put:
            raise ArtifactStoreError("Upload rejected (500): bucket unavailable", path=path)
        self.objects[path] = data
        return path


class FakeSessionVerifier:
    def __init__(self, tokens: Optional[dict[str, UUID]] = None):
        self.tokens = tokens or {}
        self.error: Optional[Exception] = None

    async def verify(self, access_token: str) -> Optional[UUID]:
        if self.error is not None:
            raise self.error
        return self.tokens.get(access_token)
