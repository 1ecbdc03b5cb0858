"""Shared test fixtures for the survey lifecycle backend.

Provides:
- A frozen clock and survey/actor factories
- An in-memory survey store with commit/rollback semantics, so the service
  and the HTTP layer can be exercised without PostgreSQL
- FastAPI test app + HTTP client wired to that store
- Async PostgreSQL test database (session-scoped engine, per-test rollback)
  for the store's own tests; skipped when no database is reachable
"""

from __future__ import annotations

import os
import uuid

# Set test environment BEFORE any app imports so Settings() picks them up.
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pytest-only")
os.environ.setdefault("ENVIRONMENT", "development")

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event as sa_event
from sqlalchemy.engine import URL
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

from survey_lifecycle.config import build_database_url
from survey_lifecycle.core.clock import FixedClock
from survey_lifecycle.core.permissions import Actor
from survey_lifecycle.core.security import create_access_token
from survey_lifecycle.models.base import Base
from survey_lifecycle.models.survey import Survey, SurveyAuditLog
from survey_lifecycle.services.state_management_service import StateManagementService

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_survey(**kwargs) -> Survey:
    """Build a transient survey; defaults to a pending survey with no deadline."""
    return Survey(
        id=kwargs.get("id", uuid.uuid4()),
        title=kwargs.get("title", "Course feedback"),
        description=kwargs.get("description"),
        created_by=kwargs.get("created_by"),
        status=kwargs.get("status", "pending"),
        start_at=kwargs.get("start_at"),
        end_at=kwargs.get("end_at"),
        time_limit=kwargs.get("time_limit"),
        allow_review=kwargs.get("allow_review", False),
        deleted_at=kwargs.get("deleted_at"),
    )


def make_actor(role="admin", actor_id=None) -> Actor:
    return Actor(id=actor_id or uuid.uuid4(), role=role)


def auth_headers(actor: Actor) -> dict[str, str]:
    """Generate Bearer token headers for a test actor."""
    token = create_access_token(actor.id, actor.role)
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

_TRACKED_FIELDS = (
    "title",
    "description",
    "created_by",
    "status",
    "start_at",
    "end_at",
    "time_limit",
    "allow_review",
    "deleted_at",
)


class InMemorySurveyStore:
    """Stand-in for ``SurveyStore`` that keeps committed state in snapshots.

    ``rollback`` restores every survey to its last committed field values and
    discards uncommitted audit rows, mirroring a database transaction.

    ``expired`` tracks the ids an ``AsyncSession`` would leave expired: every
    loaded survey after a rollback, and every inserted or updated survey
    after a commit (server-side ``updated_at``). Loading or refreshing a
    survey clears it. Reading an expired survey outside the session fails on
    PostgreSQL, so a survey handed back by the service must not be in it.
    """

    def __init__(self) -> None:
        self.surveys: dict[uuid.UUID, Survey] = {}
        self.audit_logs: list[SurveyAuditLog] = []
        self.locked: list[uuid.UUID] = []
        self.expired: set[uuid.UUID] = set()
        self.commits = 0
        self.rollbacks = 0
        self.fail_on_commit = False
        self._snapshots: dict[uuid.UUID, dict] = {}
        self._pending_audit: list[SurveyAuditLog] = []
        self._new: set[uuid.UUID] = set()
        self._seq = 0

    def seed(self, survey: Survey) -> Survey:
        self._register(survey)
        self._snapshots[survey.id] = self._snapshot(survey)
        return survey

    def _register(self, survey: Survey) -> None:
        if survey.id is None:
            survey.id = uuid.uuid4()
        self._seq += 1
        if survey.created_at is None:
            survey.created_at = T0 + timedelta(seconds=self._seq)
            survey.updated_at = survey.created_at
        if survey.version is None:
            survey.version = 1
        self.surveys[survey.id] = survey

    @staticmethod
    def _snapshot(survey: Survey) -> dict:
        return {field: getattr(survey, field) for field in _TRACKED_FIELDS}

    def committed(self, survey_id: uuid.UUID) -> dict:
        return dict(self._snapshots[survey_id])

    async def get(self, survey_id):
        survey = self.surveys.get(survey_id)
        if survey is None or survey.deleted_at is not None:
            return None
        self.expired.discard(survey_id)
        return survey

    async def get_for_update(self, survey_id):
        self.locked.append(survey_id)
        return await self.get(survey_id)

    async def list_surveys(self, owner_id=None):
        items = [s for s in self.surveys.values() if s.deleted_at is None]
        if owner_id is not None:
            items = [s for s in items if s.created_by == owner_id]
        for survey in items:
            self.expired.discard(survey.id)
        return sorted(items, key=lambda s: s.created_at, reverse=True)

    async def add(self, survey):
        self._register(survey)
        self._new.add(survey.id)
        return survey

    async def add_audit(self, survey_id, action, user_id=None, details=None):
        entry = SurveyAuditLog(
            id=uuid.uuid4(),
            survey_id=survey_id,
            user_id=user_id,
            action=action,
            details=details or {},
            created_at=datetime.now(timezone.utc),
        )
        self._pending_audit.append(entry)
        return entry

    async def list_audit_logs(self, survey_id, limit=100):
        entries = [e for e in self.audit_logs if e.survey_id == survey_id]
        return list(reversed(entries))[:limit]

    async def commit(self):
        if self.fail_on_commit:
            raise OperationalError("COMMIT", {}, Exception("connection reset by peer"))
        for survey_id, survey in self.surveys.items():
            snapshot = self._snapshot(survey)
            if survey_id in self._new:
                self.expired.add(survey_id)
            elif survey_id in self._snapshots and snapshot != self._snapshots[survey_id]:
                survey.version += 1
                self.expired.add(survey_id)
            self._snapshots[survey_id] = snapshot
        self.audit_logs.extend(self._pending_audit)
        self._pending_audit = []
        self._new.clear()
        self.commits += 1

    async def rollback(self):
        for survey_id in list(self._new):
            self.surveys.pop(survey_id, None)
        self._new.clear()
        for survey_id, snapshot in self._snapshots.items():
            survey = self.surveys.get(survey_id)
            if survey is not None:
                for field, value in snapshot.items():
                    setattr(survey, field, value)
        self.expired.update(self.surveys)
        self._pending_audit = []
        self.rollbacks += 1

    async def refresh(self, survey):
        self.expired.discard(survey.id)


# ---------------------------------------------------------------------------
# Service-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def store():
    return InMemorySurveyStore()


@pytest.fixture
def service(store, clock):
    return StateManagementService(store, clock)


@pytest.fixture
def admin():
    return make_actor("admin")


@pytest.fixture
def lecturer():
    return make_actor("lecturer")


@pytest.fixture
def student():
    return make_actor("student")


# ---------------------------------------------------------------------------
# FastAPI test app + HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
async def app(service):
    """Minimal FastAPI test app whose service runs on the in-memory store."""
    from fastapi import FastAPI

    from survey_lifecycle.api.deps import get_state_management_service
    from survey_lifecycle.api.v1.router import api_router
    from survey_lifecycle.config import settings

    test_app = FastAPI()
    test_app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    async def _override_service():
        return service

    test_app.dependency_overrides[get_state_management_service] = _override_service
    yield test_app
    test_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c


# ---------------------------------------------------------------------------
# PostgreSQL (store tests only)
# ---------------------------------------------------------------------------


def _test_db_url() -> URL:
    return build_database_url(
        os.getenv("POSTGRES_USER", "surveys"),
        os.getenv("POSTGRES_PASSWORD", "surveys"),
        os.getenv("POSTGRES_HOST", "localhost"),
        os.getenv("POSTGRES_PORT", "5432"),
        os.getenv("TEST_POSTGRES_DB", "surveys_test"),
    )


@pytest.fixture(scope="session")
def test_engine():
    """Create a test database engine and all tables. Drops tables at teardown.

    Sync fixture with NullPool so no connection is tied to a particular event
    loop; each test's ``db`` fixture opens a fresh connection on its own loop.
    """
    engine = create_async_engine(_test_db_url(), echo=False, poolclass=NullPool)

    async def _setup():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)

    async def _teardown():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    try:
        asyncio.run(_setup())
    except Exception as exc:
        asyncio.run(engine.dispose())
        pytest.skip(f"Test database not available ({exc})")

    yield engine

    asyncio.run(_teardown())


@pytest.fixture
async def db(test_engine):
    """Transactional session rolled back after each test (savepoint pattern)."""
    conn = await test_engine.connect()
    trans = await conn.begin()
    session = AsyncSession(bind=conn, expire_on_commit=False)

    await conn.begin_nested()

    @sa_event.listens_for(session.sync_session, "after_transaction_end")
    def _restart_savepoint(sess, transaction):
        if conn.closed or conn.invalidated:
            return
        if not conn.in_nested_transaction():
            conn.sync_connection.begin_nested()

    yield session

    await session.close()
    await trans.rollback()
    await conn.close()
