from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import get_db, init_models
from app.main import app
from app.schemas.task import TaskIn
from app.schemas.user import UserIn
from app.services.sync import RelationshipSynchronizer
from app.services.tasks import TaskService
from app.services.users import UserService
from app.stores.tasks import TaskStore
from app.stores.users import UserStore


# In-memory SQLite shared by every connection of one test
@pytest.fixture()
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture()
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def task_store(db) -> TaskStore:
    return TaskStore(db)


@pytest.fixture()
def user_store(db) -> UserStore:
    return UserStore(db)


@pytest.fixture()
def sync(task_store, user_store) -> RelationshipSynchronizer:
    return RelationshipSynchronizer(task_store, user_store)


@pytest.fixture()
def task_service(task_store, user_store) -> TaskService:
    return TaskService(task_store, user_store, default_limit=100)


@pytest.fixture()
def user_service(task_store, user_store) -> UserService:
    return UserService(task_store, user_store)


@pytest.fixture()
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def deadline(days: int = 7) -> datetime:
    return datetime(2030, 1, 1, tzinfo=timezone.utc) + timedelta(days=days)


@pytest.fixture()
def make_user(user_service):
    counter = iter(range(10_000))

    async def _make(name: str | None = None, pending=()):
        n = next(counter)
        return await user_service.create(
            UserIn(name=name or f"User {n}", email=f"user{n}@example.com", pendingTasks=list(pending))
        )

    return _make


@pytest.fixture()
def make_task(task_service):
    counter = iter(range(10_000))

    async def _make(name: str | None = None, assigned_user: str = "", completed: bool = False):
        n = next(counter)
        return await task_service.create(
            TaskIn(
                name=name or f"Task {n}",
                deadline=deadline(n),
                completed=completed,
                assignedUser=assigned_user,
            )
        )

    return _make
