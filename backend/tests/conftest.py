import os

# Must be set before app.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "")
os.environ.setdefault("TELEGRAM_CHAT_ID", "")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.database import Base, get_db
from app.models.user import Role, User
from app.schemas.segment import SegmentCreate
from app.services import address_pool
from app.services.auth import get_user_by_id, hash_password


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def _make_user(db, username: str, role_name: str, password: str = "s3cret-pass") -> User:
    from sqlalchemy import select
    role = (await db.execute(select(Role).where(Role.name == role_name))).scalar_one_or_none()
    if role is None:
        role = Role(name=role_name)
        db.add(role)
        await db.flush()
    user = User(username=username, password_hash=hash_password(password), role_id=role.id, is_active=True)
    db.add(user)
    await db.commit()
    return await get_user_by_id(db, user.id)


@pytest.fixture
async def admin_user(db):
    return await _make_user(db, "admin", "admin")


@pytest.fixture
async def readonly_user(db):
    return await _make_user(db, "viewer", "readonly")


@pytest.fixture
def make_user(db):
    async def _make(username: str, role_name: str, password: str = "s3cret-pass") -> User:
        return await _make_user(db, username, role_name, password)
    return _make


@pytest.fixture
async def segment(db):
    seg, _ = await address_pool.create_segment(
        db, SegmentCreate(name="Office LAN", cidr="192.168.10.0/28", gateway="192.168.10.1", vlan_id=10),
    )
    return seg


@pytest.fixture
def as_user(session_factory, monkeypatch):
    """Returns an async context factory: `async with as_user(user) as client: ...`"""
    from contextlib import asynccontextmanager
    from app.main import app
    from app.middleware.rbac import get_current_user
    from app.routers import system_events

    async def override_get_db():
        async with session_factory() as session:
            yield session

    monkeypatch.setattr(system_events, "AsyncSessionLocal", session_factory)

    @asynccontextmanager
    async def _client(user):
        app.dependency_overrides[get_db] = override_get_db
        if user is not None:
            app.dependency_overrides[get_current_user] = lambda: user
        try:
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
                yield client
        finally:
            app.dependency_overrides.clear()

    return _client


@pytest.fixture
async def client(as_user, admin_user):
    async with as_user(admin_user) as client:
        yield client
