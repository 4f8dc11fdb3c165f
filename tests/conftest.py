import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from typing import AsyncGenerator, Callable, Dict
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from datetime import datetime, UTC

from app.main import app
from app.models.base import Base
from app.db.database import get_db
from app.core.clock import FixedClock, get_clock
from app.core.config import settings
from app.core.logging import setup_test_logging
from app.models.user import User
from app.core.security import create_token_pair, get_password_hash, token_claims_for
from app.access.decision import check_access
from app.access.types import AccessGranted, AuthenticatedPrincipal
from app.crud import event as crud_event
from app.models.event import Event
from app.schemas.event import EventCreate

setup_test_logging()

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to NOW; tests move it forward explicitly."""
    return FixedClock(NOW)

@pytest_asyncio.fixture
async def engine(tmp_path):
    """A fresh SQLite file per test; NullPool gives every session its own connection."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 15}
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()

@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )

@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Get async database session for tests."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()

@pytest_asyncio.fixture
async def test_app(session_factory, clock) -> AsyncGenerator[FastAPI, None]:
    """The application wired to the test database and clock."""
    settings.TESTING = True

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    yield app
    app.dependency_overrides.clear()

@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
        follow_redirects=True
    ) as ac:
        yield ac

async def _create_user(db_session: AsyncSession, email: str, username: str) -> User:
    user = User(
        email=email,
        username=username,
        hashed_password=get_password_hash("testpass123"),
        is_active=True,
        updated_at=datetime.now(UTC)
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user

@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """The owner of most test events."""
    return await _create_user(db_session, "owner@example.com", "owner")

@pytest_asyncio.fixture
async def second_test_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "second@example.com", "seconduser")

@pytest_asyncio.fixture
async def third_test_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "third@example.com", "thirduser")

@pytest.fixture
def auth_headers() -> Callable[[User], Dict[str, str]]:
    """Bearer headers for a user."""
    def build(user: User) -> Dict[str, str]:
        access_token, _ = create_token_pair(token_claims_for(user))
        return {"Authorization": f"Bearer {access_token}"}
    return build

@pytest.fixture
def guest_headers() -> Callable[[str], Dict[str, str]]:
    """Headers identifying an anonymous device by its guest session id."""
    def build(session_id: str) -> Dict[str, str]:
        return {settings.GUEST_SESSION_HEADER: session_id}
    return build

@pytest_asyncio.fixture
async def create_event(client, auth_headers) -> Callable:
    """Create an event through the API as the given user."""
    async def create(owner: User, **overrides) -> Dict:
        event_data = {
            "title": "Test Event",
            "description": "Test Description",
            "visibility": "anyone_with_link",
        }
        event_data.update(overrides)
        response = await client.post("/api/v1/events/", json=event_data, headers=auth_headers(owner))
        assert response.status_code == 201, response.text
        return response.json()
    return create

@pytest_asyncio.fixture
async def test_event(create_event, test_user) -> Dict:
    """An anyone_with_link event owned by test_user."""
    return await create_event(test_user)

@pytest.fixture
def decide(clock) -> Callable:
    """Run the access decision for a user and insist it is granted."""
    async def run(db: AsyncSession, event_id: int, user: User, required: str | None = None) -> AccessGranted:
        principal = AuthenticatedPrincipal(user_id=user.id, email=user.email)
        decision = await check_access(db, event_id, principal, required, clock=clock)
        assert isinstance(decision, AccessGranted), decision
        return decision
    return run

@pytest_asyncio.fixture
async def make_event(db_session, clock) -> Callable:
    """Create an event directly through the crud layer."""
    async def create(owner: User, **overrides) -> Event:
        event_in = EventCreate(title=overrides.pop("title", "Direct Event"), **overrides)
        return await crud_event.create_event(db_session, event_in, owner, clock=clock)
    return create
