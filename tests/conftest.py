import os

os.environ.setdefault("FETCH_PAGE_TITLE", "false")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
import httpx
from fastapi_cache import FastAPICache
from fastapi_cache.backends.inmemory import InMemoryBackend
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from src.auth.services import create_access_token, get_password_hash
from src.database import enable_sqlite_foreign_keys, get_db
from src.models.models import AdminUser, Base
from main import app

DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "admin123"


@pytest.fixture(scope="function")
async def session_factory():
    engine = create_async_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function", autouse=True)
async def override_db(session_factory):
    async def override_get_db() -> AsyncSession:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture(scope="function", autouse=True)
async def setup_cache():
    FastAPICache.init(InMemoryBackend(), prefix="test-cache")
    yield
    await FastAPICache.clear()


@pytest.fixture(scope="function")
async def admin_user(db_session: AsyncSession) -> AdminUser:
    user = AdminUser(username=ADMIN_USERNAME, hashed_password=get_password_hash(ADMIN_PASSWORD))
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture(scope="function")
async def client() -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost:9999") as ac:
        yield ac


@pytest.fixture(scope="function")
async def admin_client(admin_user) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    headers = {"Authorization": f"Bearer {create_access_token(admin_user.username)}"}
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost:9999", headers=headers) as ac:
        yield ac
