"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist changes
- Exceptions trigger rollback
- Multiple repository operations are atomic
"""

import pytest

from genqueue.models.reference_photo import ReferencePhoto

PROMPT = {"subject": {"type": "woman"}}


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory):
    """Changes made within the context persist after the context exits."""
    async with await uow_factory() as uow:
        generation = await uow.generations.create(PROMPT)
        generation_id = generation.id

    async with await uow_factory() as uow:
        found = await uow.generations.get(generation_id)
        assert found is not None
        assert found.prompt_json == PROMPT


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """An exception rolls the transaction back and still propagates."""
    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            generation = await uow.generations.create(PROMPT)
            item = await uow.queue.enqueue(PROMPT, generation.id)
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        assert await uow.generations.get(generation.id) is None
        assert await uow.queue.get_queue_item(item.id) is None


@pytest.mark.asyncio
async def test_uow_provides_all_repositories(uow_factory):
    async with await uow_factory() as uow:
        for name in ("queue", "locks", "generations", "references", "tags"):
            repository = getattr(uow, name)
            assert repository.session is uow.session


@pytest.mark.asyncio
async def test_uow_atomic_multi_repository_operation(uow_factory):
    """Generation, reference, queue item and lock commit together."""
    async with await uow_factory() as uow:
        reference = await uow.references.add(
            ReferencePhoto(name="face", image_path="/references/face.png")
        )
        generation = await uow.generations.create(PROMPT, reference_photo_ids=[reference.id])
        item = await uow.queue.enqueue(
            PROMPT, generation.id, reference_photo_ids=[reference.id]
        )
        lock = await uow.locks.acquire_lock(item.id)

    async with await uow_factory() as uow:
        assert [ref.id for ref in await uow.references.get_by_ids([reference.id])] == [
            reference.id
        ]
        stored_item = await uow.queue.get_queue_item(item.id)
        assert stored_item.generation_id == generation.id
        assert stored_item.reference_photo_ids == [reference.id]
        assert (await uow.locks.get_lock_for_item(item.id)).id == lock.id


@pytest.mark.asyncio
async def test_generation_update_applies_only_given_fields(uow_factory):
    async with await uow_factory() as uow:
        generation = await uow.generations.create(PROMPT)
        await uow.generations.update(generation.id, image_path="/images/a.png")
        updated = await uow.generations.update(generation.id, used_fallback=True, completed_at=True)

        assert updated.image_path == "/images/a.png"
        assert updated.used_fallback is True
        assert updated.face_swap_failed is False
        assert updated.completed_at is not None
        assert await uow.generations.update("missing", image_path="/x.png") is None


@pytest.mark.asyncio
async def test_reference_lookup_preserves_request_order(uow_factory):
    async with await uow_factory() as uow:
        first = await uow.references.add(ReferencePhoto(name="a", image_path="/references/a.png"))
        second = await uow.references.add(ReferencePhoto(name="b", image_path="/references/b.png"))

    async with await uow_factory() as uow:
        found = await uow.references.get_by_ids([second.id, "unknown", first.id])
        assert [ref.id for ref in found] == [second.id, first.id]
        assert await uow.references.get_by_ids([]) == []
