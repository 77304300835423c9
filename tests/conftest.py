"""Shared pytest fixtures: in-memory store and cache fakes, SQLite sessions and the API client."""

import datetime
from collections import Counter
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import linker.models  # noqa: F401
from linker.access_counter import AccessCountFlusher
from linker.cache_layer import wait_for_background_tasks
from linker.config import Settings, get_settings
from linker.database import Base
from linker.dependencies import _service_manager, get_store
from linker.exceptions import DuplicateRecordError
from linker.main import app
from linker.models import ShortLink
from linker.service import ShortLinkService

_FIELDS = (
    "id",
    "target_address",
    "code",
    "is_custom_alias",
    "access_count",
    "created_at",
    "last_updated_at",
    "description",
)


class FakeShortLinkStore:
    """In-memory ShortLinkStore with transactions and unique-index checks.

    Writes are staged until commit(); rollback() restores the last committed
    state. Identifiers come from a sequence that rollback does not rewind.
    """

    def __init__(self) -> None:
        self.calls: Counter[str] = Counter()
        self.fail_next_update: BaseException | None = None
        self._rows: dict[int, ShortLink] = {}
        self._committed: dict[int, dict] = {}
        self._next_id = 1

    # Store protocol

    async def find_by_target(self, target: str) -> ShortLink | None:
        self.calls["find_by_target"] += 1
        matches = [row for row in self._rows.values() if row.target_address == target]
        return min(matches, key=lambda row: row.id) if matches else None

    async def find_by_code(self, code: str) -> ShortLink | None:
        self.calls["find_by_code"] += 1
        return self._by_code(code)

    async def exists_by_code(self, code: str) -> bool:
        self.calls["exists_by_code"] += 1
        return self._by_code(code) is not None

    async def insert(self, link: ShortLink) -> ShortLink:
        self.calls["insert"] += 1
        self._check_unique(link)
        now = datetime.datetime.now(datetime.timezone.utc)
        link.id = self._next_id
        self._next_id += 1
        if link.access_count is None:
            link.access_count = 0
        if link.is_custom_alias is None:
            link.is_custom_alias = False
        link.created_at = now
        link.last_updated_at = now
        self._rows[link.id] = link
        return link

    async def update(self, link: ShortLink) -> ShortLink:
        self.calls["update"] += 1
        if self.fail_next_update is not None:
            exc, self.fail_next_update = self.fail_next_update, None
            raise exc
        self._check_unique(link)
        link.last_updated_at = datetime.datetime.now(datetime.timezone.utc)
        self._rows[link.id] = link
        return link

    async def commit(self) -> None:
        self.calls["commit"] += 1
        self._committed = {row_id: self._snapshot(row) for row_id, row in self._rows.items()}

    async def rollback(self) -> None:
        self.calls["rollback"] += 1
        self._rows = {row_id: ShortLink(**values) for row_id, values in self._committed.items()}

    async def count(self) -> int:
        self.calls["count"] += 1
        return len(self._rows)

    async def sum_access_count(self) -> int:
        self.calls["sum_access_count"] += 1
        return sum(row.access_count for row in self._rows.values())

    async def count_custom_aliases(self) -> int:
        self.calls["count_custom_aliases"] += 1
        return sum(1 for row in self._rows.values() if row.is_custom_alias)

    async def increment_access_count(self, code: str, delta: int = 1) -> int | None:
        self.calls["increment_access_count"] += 1
        row = self._by_code(code)
        if row is None:
            return None
        row.access_count += delta
        return row.access_count

    async def ping(self) -> bool:
        return True

    # Test helpers

    @property
    def committed_rows(self) -> list[dict]:
        return [dict(values) for _, values in sorted(self._committed.items())]

    def _by_code(self, code: str) -> ShortLink | None:
        return next((row for row in self._rows.values() if row.code == code), None)

    def _check_unique(self, link: ShortLink) -> None:
        for row in self._rows.values():
            if row is link or row.id == link.id:
                continue
            if row.code == link.code:
                raise DuplicateRecordError(f"Unique constraint violated for code '{link.code}'")
            if not row.is_custom_alias and not link.is_custom_alias and row.target_address == link.target_address:
                raise DuplicateRecordError(f"Unique constraint violated for target '{link.target_address}'")

    @staticmethod
    def _snapshot(row: ShortLink) -> dict:
        return {name: getattr(row, name) for name in _FIELDS}


class FakeCache:
    """In-memory CacheAdapter that records TTLs instead of expiring keys."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.calls: Counter[str] = Counter()

    async def get(self, key: str) -> str | None:
        self.calls["get"] += 1
        return self.data.get(key)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self.calls["set_with_ttl"] += 1
        assert ttl_seconds > 0
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        self.calls["set_if_absent"] += 1
        if key in self.data:
            return False
        self.data[key] = value
        self.ttls[key] = ttl_seconds
        return True

    async def delete(self, *keys: str) -> int:
        self.calls["delete"] += 1
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def increment(self, key: str, amount: int = 1) -> int:
        self.calls["increment"] += 1
        value = int(self.data.get(key, "0")) + amount
        self.data[key] = str(value)
        return value

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        self.calls["expire"] += 1
        if key not in self.data:
            return False
        self.ttls[key] = ttl_seconds
        return True

    async def exists(self, key: str) -> bool:
        self.calls["exists"] += 1
        return key in self.data

    async def ping(self) -> bool:
        return True


def store_scope_for(store: FakeShortLinkStore):
    @asynccontextmanager
    async def scope() -> AsyncIterator[FakeShortLinkStore]:
        yield store

    return scope


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def store() -> FakeShortLinkStore:
    return FakeShortLinkStore()


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def flusher(store: FakeShortLinkStore, cache: FakeCache, settings: Settings) -> AccessCountFlusher:
    return AccessCountFlusher(store_scope_for(store), cache, settings)


@pytest_asyncio.fixture
async def service(
    store: FakeShortLinkStore,
    cache: FakeCache,
    settings: Settings,
    flusher: AccessCountFlusher,
) -> AsyncGenerator[ShortLinkService, None]:
    yield ShortLinkService(store, cache, settings, flusher=flusher)
    await wait_for_background_tasks()


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def client(store: FakeShortLinkStore, cache: FakeCache) -> AsyncGenerator[AsyncClient, None]:
    await _service_manager.initialize(cache=cache, store_scope=store_scope_for(store))
    app.dependency_overrides[get_store] = lambda: store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    await wait_for_background_tasks()
    await _service_manager.cleanup()
