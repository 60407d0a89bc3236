"""
Test infrastructure for the blog content core.

Strategy
--------
- SQLite in-memory via aiosqlite; StaticPool keeps every session (request
  sessions and background view increments alike) on the one connection
  that holds the in-memory database.
- ``get_db`` is overridden and ``blogcore.database.async_session`` is
  rebound to the test factory, so work that opens its own session uses
  the test database too.
- Tables are created before each test and dropped after; pending view
  increments are drained first so none outlives its test.
- Redis is disabled by setting ``cache._redis = None``; the object store is
  replaced by ``FakeS3``, an in-memory stand-in for the boto3 client.
- Callers authenticate with bearer tokens minted by ``create_access_token``.
"""
import base64

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from blogcore import database
from blogcore.cache import cache
from blogcore.database import Base, get_db
from blogcore.main import app
from blogcore.middleware import install_query_counter
from blogcore.models import User
from blogcore.security import create_access_token, hash_password
from blogcore.services import content_service
from blogcore.storage import media_storage, settle_media

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)

database.async_session = async_session_test


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            await settle_media(session, committed=False)
            raise
        await settle_media(session, committed=True)


app.dependency_overrides[get_db] = override_get_db

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)
PNG_DATA_URI = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


def block_body(*paragraphs: str) -> dict:
    """Build a block document with one paragraph block per argument."""
    return {"blocks": [{"type": "paragraph", "data": {"text": p}} for p in paragraphs]}


def auth_headers(user_id: int) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


# ---------------------------------------------------------------------------
# Object store stand-in
# ---------------------------------------------------------------------------

class FakeS3:
    """In-memory replacement for the three boto3 S3 calls MediaStorage uses."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail_deletes = False
        self.fail_puts = False

    def put_object(self, Bucket, Key, Body, ContentType):
        if self.fail_puts:
            raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, "PutObject")
        self.objects[Key] = Body

    def list_objects_v2(self, Bucket, Prefix):
        keys = [k for k in self.objects if k.startswith(Prefix)]
        return {"Contents": [{"Key": k} for k in keys]} if keys else {}

    def delete_object(self, Bucket, Key):
        if self.fail_deletes:
            raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, "DeleteObject")
        self.objects.pop(Key, None)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    cache._redis = None
    yield
    await content_service.wait_for_background_tasks()
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def fake_s3():
    s3 = FakeS3()
    media_storage._s3 = s3
    yield s3
    media_storage._s3 = None


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """A live session for tests that call services or assert ORM state."""
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession):
    """Factory fixture: ``await make_user("ana")`` persists and returns a User."""

    async def _make(name: str = "writer") -> User:
        user = User(
            email=f"{name}@example.com",
            display_name=name.title(),
            password_hash=hash_password("secret123"),
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """httpx client wired to the app through ASGITransport (no lifespan)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def api_user(async_client: AsyncClient):
    """Factory fixture registering a user over HTTP; returns ``(id, headers)``."""

    async def _register(name: str = "writer") -> tuple[int, dict]:
        resp = await async_client.post("/api/v1/users", json={
            "email": f"{name}@example.com",
            "display_name": name.title(),
            "password": "secret123",
        })
        assert resp.status_code == 201, resp.text
        user_id = resp.json()["data"]["id"]
        return user_id, auth_headers(user_id)

    return _register
