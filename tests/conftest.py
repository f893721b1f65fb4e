import hashlib
import io
import os
import threading
import time

# Must be set before buildhost.lib.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import buildhost.models  # noqa: F401
from buildhost.lib.database import Base, get_db
from buildhost.lib.errors import StorageError
from buildhost.services.storage_service import StorageService, get_storage
from buildhost.services.user_service import UserService

STORAGE_URL = "https://storage.test"


class BrokenStream:
    """Response body that fails after handing out its first chunk."""

    def __init__(self, data, error):
        self._data = data
        self._error = error
        self._served = False
        self.closed = False

    def read(self, size=-1):
        if self._served:
            raise self._error
        self._served = True
        return self._data[:max(1, len(self._data) // 2)]

    def close(self):
        self.closed = True


class InMemoryStorageAdapter:
    """Blob store double with the same call surface as S3StorageAdapter."""

    def __init__(self):
        self.objects = {}
        self.unreadable = set()
        self.fail_put = False
        self.delay = 0.0
        self.put_delay = 0.0
        self.put_started = threading.Event()
        # key -> exception raised by the body after its first chunk
        self.broken_streams = {}

    def presign_upload(self, key, content_type, expires_in):
        return f"{STORAGE_URL}/upload/{key}?expires={expires_in}"

    def presign_download(self, key, expires_in):
        return f"{STORAGE_URL}/download/{key}?expires={expires_in}"

    def stat(self, key):
        if self.delay:
            time.sleep(self.delay)
        data = self.objects.get(key)
        if data is None:
            return None
        return {"size": len(data), "etag": hashlib.md5(data).hexdigest()}

    def open(self, key):
        if key in self.unreadable:
            raise StorageError(f"failed to read {key}")
        if key not in self.objects:
            raise FileNotFoundError(key)
        if key in self.broken_streams:
            return BrokenStream(self.objects[key], self.broken_streams[key])
        return io.BytesIO(self.objects[key])

    def put(self, key, body, content_type):
        self.put_started.set()
        if self.put_delay:
            time.sleep(self.put_delay)
        if self.fail_put:
            raise StorageError(f"failed to upload {key}")
        self.objects[key] = body.read()

    # --- test helpers ---

    def upload_to(self, upload_url, data):
        """Play the client's PUT to a presigned URL."""
        key = upload_url[len(f"{STORAGE_URL}/upload/"):].split("?")[0]
        self.objects[key] = data
        return key


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'buildhost.db'}")
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


@pytest.fixture
def adapter():
    return InMemoryStorageAdapter()


@pytest.fixture
def storage(adapter):
    return StorageService(adapter=adapter, timeout=5.0)


@pytest.fixture
async def users(session_factory):
    """alice and bob are standard users, root is an admin. Maps name to (user, api_key)."""
    created = {}
    async with session_factory() as session:
        service = UserService(session)
        for username, role in (("alice", "user"), ("bob", "user"), ("root", "admin")):
            created[username] = await service.create_user(username, role=role)
    return created


@pytest.fixture
async def client(session_factory, storage):
    from buildhost.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_storage():
        return storage

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = override_get_storage

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def auth(users):
    """auth("alice") -> headers carrying alice's API key."""
    def headers(name):
        return {"Authorization": f"Bearer {users[name][1]}"}
    return headers
