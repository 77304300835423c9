"""Durable storage for short links.

The engine talks to storage through the ShortLinkStore protocol only. The
store is the single source of truth and the only component that enforces
uniqueness: a unique violation is reported as DuplicateRecordError, every
other adapter fault propagates unchanged.

Transaction Model
=================
::
    insert()  ── flush, id assigned ─┐
    update()  ── flush ──────────────┤  one unit of work
    increment_access_count() ────────┤
    commit() / rollback() ◄──────────┘

Reads see the caller's own uncommitted writes; other sessions see them only
after commit().

How to Use
===========
**Per request**::
    store = SQLAlchemyShortLinkStore(session)
    link = await store.find_by_code("abc")

**Background work**::
    async with sql_store_scope() as store:
        await store.increment_access_count("abc", 10)
        await store.commit()

Classes:
    ShortLinkStore:  Store adapter protocol consumed by the engine.
    SQLAlchemyShortLinkStore:  AsyncSession-backed implementation.

Functions:
    sql_store_scope():  Async context manager yielding a store on a fresh session.
"""

__all__ = ["ShortLinkStore", "SQLAlchemyShortLinkStore", "StoreScope", "sql_store_scope"]

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from linker.database import async_session
from linker.exceptions import DuplicateRecordError
from linker.models import ShortLink


class ShortLinkStore(Protocol):
    async def find_by_target(self, target: str) -> ShortLink | None: ...

    async def find_by_code(self, code: str) -> ShortLink | None: ...

    async def exists_by_code(self, code: str) -> bool: ...

    async def insert(self, link: ShortLink) -> ShortLink: ...

    async def update(self, link: ShortLink) -> ShortLink: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...

    async def count(self) -> int: ...

    async def sum_access_count(self) -> int: ...

    async def count_custom_aliases(self) -> int: ...

    async def increment_access_count(self, code: str, delta: int = 1) -> int | None: ...

    async def ping(self) -> bool: ...


StoreScope = Callable[[], AbstractAsyncContextManager[ShortLinkStore]]


class SQLAlchemyShortLinkStore:
    """Store adapter over a SQLAlchemy AsyncSession."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_by_target(self, target: str) -> ShortLink | None:
        # Oldest row wins when custom aliases share the target.
        result = await self._session.execute(
            select(ShortLink)
            .where(ShortLink.target_address == target)
            .order_by(ShortLink.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def find_by_code(self, code: str) -> ShortLink | None:
        result = await self._session.execute(
            select(ShortLink).where(ShortLink.code == code).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def exists_by_code(self, code: str) -> bool:
        result = await self._session.execute(select(ShortLink.id).where(ShortLink.code == code).limit(1))
        return result.scalar_one_or_none() is not None

    async def insert(self, link: ShortLink) -> ShortLink:
        self._session.add(link)
        await self._flush(link)
        assert link.id is not None, "link.id must be assigned after insert"
        return link

    async def update(self, link: ShortLink) -> ShortLink:
        await self._flush(link)
        return link

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    async def count(self) -> int:
        result = await self._session.execute(select(func.count(ShortLink.id)))
        return int(result.scalar_one())

    async def sum_access_count(self) -> int:
        result = await self._session.execute(select(func.coalesce(func.sum(ShortLink.access_count), 0)))
        return int(result.scalar_one())

    async def count_custom_aliases(self) -> int:
        result = await self._session.execute(
            select(func.count(ShortLink.id)).where(ShortLink.is_custom_alias.is_(True))
        )
        return int(result.scalar_one())

    async def increment_access_count(self, code: str, delta: int = 1) -> int | None:
        """Atomically add delta to a row's access_count.

        Returns:
            int | None: The new count, or None when no row has this code
        """
        assert delta > 0, f"delta must be positive, got {delta!r}"
        result = await self._session.execute(
            update(ShortLink)
            .where(ShortLink.code == code)
            .values(access_count=ShortLink.access_count + delta)
            .returning(ShortLink.access_count)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def ping(self) -> bool:
        await self._session.execute(text("SELECT 1"))
        return True

    async def _flush(self, link: ShortLink) -> None:
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise DuplicateRecordError(f"Unique constraint violated for code '{link.code}'") from exc


@asynccontextmanager
async def sql_store_scope() -> AsyncIterator[SQLAlchemyShortLinkStore]:
    async with async_session() as session:
        yield SQLAlchemyShortLinkStore(session)
