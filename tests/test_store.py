"""SQLAlchemy store adapter tests on in-memory SQLite."""

import pytest
from sqlalchemy import select

from linker.codec import encode
from linker.creation import CreationWorkflow
from linker.exceptions import ConflictError, DuplicateRecordError
from linker.models import ShortLink, placeholder_code
from linker.store import SQLAlchemyShortLinkStore


@pytest.fixture
def sql_store(db_session) -> SQLAlchemyShortLinkStore:
    return SQLAlchemyShortLinkStore(db_session)


@pytest.mark.asyncio
async def test_insert_assigns_id_and_defaults(sql_store) -> None:
    link = await sql_store.insert(ShortLink(target_address="https://example.com", code=placeholder_code()))
    await sql_store.commit()

    assert link.id is not None
    assert link.access_count == 0
    assert link.is_custom_alias is False
    assert link.created_at is not None


@pytest.mark.asyncio
async def test_duplicate_code_raises_duplicate_record(sql_store) -> None:
    await sql_store.insert(ShortLink(target_address="https://one.example.com", code="abc", is_custom_alias=True))
    await sql_store.commit()

    with pytest.raises(DuplicateRecordError):
        await sql_store.insert(ShortLink(target_address="https://two.example.com", code="abc", is_custom_alias=True))
    await sql_store.rollback()

    assert await sql_store.count() == 1


@pytest.mark.asyncio
async def test_system_target_is_unique_but_aliases_may_share_it(sql_store) -> None:
    target = "https://example.com/shared"
    await sql_store.insert(ShortLink(target_address=target, code="sys1"))
    await sql_store.insert(ShortLink(target_address=target, code="alias1", is_custom_alias=True))
    await sql_store.insert(ShortLink(target_address=target, code="alias2", is_custom_alias=True))
    await sql_store.commit()

    with pytest.raises(DuplicateRecordError):
        await sql_store.insert(ShortLink(target_address=target, code="sys2"))
    await sql_store.rollback()

    assert await sql_store.count() == 3


@pytest.mark.asyncio
async def test_find_by_target_returns_oldest(sql_store) -> None:
    target = "https://example.com/shared"
    first = await sql_store.insert(ShortLink(target_address=target, code="first", is_custom_alias=True))
    await sql_store.insert(ShortLink(target_address=target, code="second", is_custom_alias=True))
    await sql_store.commit()

    found = await sql_store.find_by_target(target)
    assert found.id == first.id
    assert await sql_store.find_by_target("https://missing.example.com") is None


@pytest.mark.asyncio
async def test_increment_access_count_is_atomic_update(sql_store) -> None:
    await sql_store.insert(ShortLink(target_address="https://example.com", code="abc", is_custom_alias=True))
    await sql_store.commit()

    assert await sql_store.increment_access_count("abc") == 1
    assert await sql_store.increment_access_count("abc", 9) == 10
    await sql_store.commit()

    assert await sql_store.increment_access_count("missing") is None
    assert (await sql_store.find_by_code("abc")).access_count == 10


@pytest.mark.asyncio
async def test_aggregates(sql_store) -> None:
    await sql_store.insert(ShortLink(target_address="https://a.example.com", code="a"))
    await sql_store.insert(ShortLink(target_address="https://b.example.com", code="b", is_custom_alias=True))
    await sql_store.commit()
    await sql_store.increment_access_count("a", 4)
    await sql_store.increment_access_count("b", 2)
    await sql_store.commit()

    assert await sql_store.count() == 2
    assert await sql_store.sum_access_count() == 6
    assert await sql_store.count_custom_aliases() == 1
    assert await sql_store.exists_by_code("a")
    assert not await sql_store.exists_by_code("zzz")
    assert await sql_store.ping()


@pytest.mark.asyncio
async def test_sum_access_count_of_empty_table_is_zero(sql_store) -> None:
    assert await sql_store.sum_access_count() == 0


@pytest.mark.asyncio
async def test_creation_workflow_against_sql_store(sql_store, db_session) -> None:
    workflow = CreationWorkflow(sql_store)

    link = await workflow.create_system_code("https://example.com/a")
    again = await workflow.create_system_code("https://example.com/a")

    assert link.code == encode(link.id)
    assert again.id == link.id
    rows = (await db_session.execute(select(ShortLink))).scalars().all()
    assert [row.code for row in rows] == [link.code]


@pytest.mark.asyncio
async def test_backfill_collision_leaves_no_placeholder_row(sql_store, db_session) -> None:
    workflow = CreationWorkflow(sql_store)
    # The alias takes id 1, so the system row gets id 2. SQLite hands the
    # rolled-back rowid out again, so every attempt collides.
    await workflow.create_custom_code("https://alias.example.com", "2")

    with pytest.raises(ConflictError):
        await workflow.create_system_code("https://example.com/a")

    codes = (await db_session.execute(select(ShortLink.code).order_by(ShortLink.id))).scalars().all()
    assert codes == ["2"]


@pytest.mark.asyncio
async def test_custom_alias_conflict_against_sql_store(sql_store) -> None:
    workflow = CreationWorkflow(sql_store)
    await workflow.create_custom_code("https://one.example.com", "x")

    with pytest.raises(ConflictError):
        await workflow.create_custom_code("https://two.example.com", "x")

    assert (await sql_store.find_by_code("x")).target_address == "https://one.example.com"
