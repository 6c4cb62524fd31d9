import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.auth.models import User, UserRole
from src.core.auth.service import AuthService
from src.core.database.base import Base
from src.core.database import get_db
from src.main import app

# Test database URL (in-memory SQLite for speed, or use test PostgreSQL)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
test_async_session = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

TEST_PASSWORD = "Pass12345"


@pytest.fixture(scope="session")
def event_loop() -> Generator:
    """Create event loop for async tests."""
    loop = asyncio.get_event_loop_policy().new_event_loop()
    yield loop
    loop.close()


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    async with test_async_session() as session:
        yield session


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with overridden database dependency."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Factory creating a user with the given role."""

    async def _make_user(
        role: UserRole = UserRole.SUPER_ADMIN,
        email: str | None = None,
        parish_id: int | None = None,
    ) -> User:
        auth = AuthService(db_session)
        user = await auth.create_user(
            email=email or f"{role.value.lower()}@test.com",
            password=TEST_PASSWORD,
            full_name=f"Test {role.value}",
            role=role,
            parish_id=parish_id,
        )
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture
async def admin_user(make_user) -> User:
    return await make_user(UserRole.SUPER_ADMIN, email="admin@test.com")


@pytest.fixture
def auth_headers(db_session: AsyncSession) -> Callable[[User], Awaitable[dict[str, str]]]:
    """Factory returning Authorization headers for a user."""

    async def _auth_headers(user: User) -> dict[str, str]:
        auth = AuthService(db_session)
        _, token, _ = await auth.authenticate(user.email, TEST_PASSWORD)
        await db_session.commit()
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
