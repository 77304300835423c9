"""Creation workflow tests: dedupe, backfill, alias conflicts and rollback."""

import asyncio

import pytest

from linker.codec import encode
from linker.config import Settings
from linker.creation import CreationWorkflow, normalize_description, normalize_target
from linker.exceptions import ConflictError, InvalidArgumentError
from linker.models import PLACEHOLDER_PREFIX

TARGET = "https://example.com/a"


@pytest.fixture
def workflow(store, settings) -> CreationWorkflow:
    return CreationWorkflow(store, settings=settings)


@pytest.mark.asyncio
async def test_system_code_is_encoded_id(workflow, store) -> None:
    link = await workflow.create_system_code(TARGET)

    assert link.is_custom_alias is False
    assert link.access_count == 0
    assert link.code == encode(link.id)
    assert store.committed_rows[0]["code"] == link.code


@pytest.mark.asyncio
async def test_system_code_dedupes_by_target(workflow, store) -> None:
    first = await workflow.create_system_code(TARGET)
    second = await workflow.create_system_code(TARGET)

    assert (second.id, second.code) == (first.id, first.code)
    assert [row["target_address"] for row in store.committed_rows] == [TARGET]
    assert store.calls["insert"] == 1


@pytest.mark.asyncio
async def test_system_code_trims_target(workflow) -> None:
    first = await workflow.create_system_code(f"  {TARGET}  ")
    second = await workflow.create_system_code(TARGET)

    assert first.target_address == TARGET
    assert second.id == first.id


@pytest.mark.asyncio
async def test_dedupe_returns_existing_custom_alias_row(workflow) -> None:
    custom = await workflow.create_custom_code(TARGET, "promo")
    system = await workflow.create_system_code(TARGET)

    assert system.id == custom.id
    assert system.code == "promo"


@pytest.mark.asyncio
@pytest.mark.parametrize("target", ["", "   ", None, "https://example.com/" + "a" * 2048])
async def test_invalid_target_rejected_before_store_access(workflow, store, target) -> None:
    with pytest.raises(InvalidArgumentError):
        await workflow.create_system_code(target)
    assert sum(store.calls.values()) == 0


@pytest.mark.asyncio
async def test_custom_alias_created(workflow, store) -> None:
    link = await workflow.create_custom_code(TARGET, " promo ", "spring campaign")

    assert link.code == "promo"
    assert link.is_custom_alias is True
    assert link.description == "spring campaign"
    assert store.committed_rows[0]["code"] == "promo"


@pytest.mark.asyncio
async def test_custom_alias_conflict_keeps_first_row(workflow, store) -> None:
    await workflow.create_custom_code("https://one.example.com", "x", "first")

    with pytest.raises(ConflictError):
        await workflow.create_custom_code("https://two.example.com", "x", "second")

    row = await store.find_by_code("x")
    assert row.target_address == "https://one.example.com"
    assert row.description == "first"


@pytest.mark.asyncio
async def test_custom_aliases_may_share_a_target_with_a_system_code(workflow, store) -> None:
    system = await workflow.create_system_code(TARGET)
    first = await workflow.create_custom_code(TARGET, "promo")
    second = await workflow.create_custom_code(TARGET, "promo2")

    assert len({system.id, first.id, second.id}) == 3
    assert len(store.committed_rows) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("alias", ["admin", "bad-alias", "a" * 21, "  "])
async def test_invalid_alias_rejected_before_store_access(workflow, store, alias) -> None:
    with pytest.raises(InvalidArgumentError):
        await workflow.create_custom_code(TARGET, alias)
    assert sum(store.calls.values()) == 0


@pytest.mark.asyncio
async def test_description_too_long_rejected(workflow) -> None:
    with pytest.raises(InvalidArgumentError):
        await workflow.create_custom_code(TARGET, "promo", "d" * 501)


@pytest.mark.asyncio
async def test_concurrent_alias_insert_surfaces_conflict(workflow, store) -> None:
    await workflow.create_custom_code("https://one.example.com", "race")

    # Lose the advisory check so only the unique index can catch it.
    async def not_found(code: str) -> bool:
        return False

    store.exists_by_code = not_found
    with pytest.raises(ConflictError):
        await workflow.create_custom_code("https://two.example.com", "race")

    assert store.calls["rollback"] == 1
    assert [row["target_address"] for row in store.committed_rows] == ["https://one.example.com"]


@pytest.mark.asyncio
async def test_concurrent_system_insert_returns_existing(workflow, store) -> None:
    existing = await workflow.create_system_code(TARGET)

    # Miss the first lookup as a concurrent creator would.
    original = store.find_by_target
    lookups = 0

    async def racing_find(target: str):
        nonlocal lookups
        lookups += 1
        return None if lookups == 1 else await original(target)

    store.find_by_target = racing_find
    link = await workflow.create_system_code(TARGET)

    assert link.id == existing.id
    assert len(store.committed_rows) == 1


@pytest.mark.asyncio
async def test_backfill_collision_with_custom_alias_retries(workflow, store) -> None:
    await workflow.create_custom_code("https://alias.example.com", "3")
    first = await workflow.create_system_code("https://one.example.com")
    second = await workflow.create_system_code("https://two.example.com")

    assert first.code == "2"
    # id 3 encodes to the alias "3", so the next identity is used.
    assert second.code == "4"
    assert second.code == encode(second.id)
    codes = [row["code"] for row in store.committed_rows]
    assert not any(code.startswith(PLACEHOLDER_PREFIX) for code in codes)


@pytest.mark.asyncio
async def test_backfill_collision_exhausts_attempts(store) -> None:
    workflow = CreationWorkflow(store, settings=Settings(CODE_ALLOCATION_ATTEMPTS=1))
    await workflow.create_custom_code("https://alias.example.com", "2")

    with pytest.raises(ConflictError):
        await workflow.create_system_code("https://one.example.com")

    assert [row["code"] for row in store.committed_rows] == ["2"]


@pytest.mark.asyncio
async def test_cancellation_between_insert_and_backfill_rolls_back(workflow, store) -> None:
    store.fail_next_update = asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await workflow.create_system_code(TARGET)

    assert store.committed_rows == []
    assert await store.find_by_target(TARGET) is None


def test_normalize_helpers() -> None:
    assert normalize_target("  https://example.com ") == "https://example.com"
    assert normalize_description("   ") is None
    assert normalize_description("note") == "note"
    with pytest.raises(InvalidArgumentError):
        normalize_target("https://example.com/abc", max_length=10)
