"""Queue worker scheduling tests.

Tests cover:
- Single-flight drains per worker instance
- Startup recovery (idempotent start, not repeated after a restart)
- Drain errors are logged and swallowed
- trigger() and stop()
"""

import asyncio
from datetime import timedelta

import pytest

from fakes import FakeImageClient, image_result
from genqueue.core.timezone import utcnow
from genqueue.models.generation import GenerationStatus
from genqueue.models.queue_item import QueueStatus
from genqueue.workers.queue_worker import QueueWorker

PROMPT = {"subject": {"type": "man"}}


async def enqueue(uow_factory):
    async with await uow_factory() as uow:
        generation = await uow.generations.create(PROMPT)
        item = await uow.queue.enqueue(PROMPT, generation.id)
    return item


def make_worker(uow_factory, storage, settings, client=None, poll_interval=3600):
    return QueueWorker(
        uow_factory,
        client or FakeImageClient([image_result()]),
        storage,
        settings,
        poll_interval=poll_interval,
    )


@pytest.mark.asyncio
async def test_second_cycle_is_skipped_while_draining(uow_factory, storage, settings):
    item = await enqueue(uow_factory)
    gate = asyncio.Event()
    client = FakeImageClient([image_result()], gate=gate)
    worker = make_worker(uow_factory, storage, settings, client)

    first = asyncio.create_task(worker.run_processing_cycle())
    await asyncio.wait_for(client.started.wait(), timeout=5)

    assert await worker.run_processing_cycle() is False

    gate.set()
    assert await asyncio.wait_for(first, timeout=5) is True
    assert len(client.generate_calls) == 1

    async with await uow_factory() as uow:
        assert (await uow.queue.get_queue_item(item.id)).status == QueueStatus.COMPLETED


@pytest.mark.asyncio
async def test_cycle_on_empty_queue(uow_factory, storage, settings):
    worker = make_worker(uow_factory, storage, settings)

    assert await worker.run_processing_cycle() is True
    assert await worker.run_processing_cycle() is True


@pytest.mark.asyncio
async def test_cycle_errors_are_swallowed(uow_factory, storage, settings, monkeypatch):
    async def broken_drain(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr("genqueue.workers.queue_worker.process_queue", broken_drain)
    worker = make_worker(uow_factory, storage, settings)

    assert await worker.run_processing_cycle() is True
    # The lock is free again for the next cycle
    assert await worker.run_processing_cycle() is True


@pytest.mark.asyncio
async def test_start_runs_recovery_once_and_polls(uow_factory, storage, settings):
    item = await enqueue(uow_factory)
    async with await uow_factory() as uow:
        await uow.queue.update_queue_status(item.id, QueueStatus.PROCESSING, started_at=True)
        await uow.generations.update(item.generation_id, status=GenerationStatus.GENERATING)
        await uow.locks.acquire_lock(item.id, now=utcnow() - timedelta(minutes=10))

    client = FakeImageClient([image_result()])
    worker = make_worker(uow_factory, storage, settings, client)

    await worker.start()
    await worker.start()
    assert worker.is_running

    # Recovered item is picked up by the first poll
    await asyncio.wait_for(client.started.wait(), timeout=5)
    await worker.stop()
    assert not worker.is_running

    assert len(client.generate_calls) == 1


@pytest.mark.asyncio
async def test_restart_after_stop_does_not_recover_again(uow_factory, storage, settings):
    worker = make_worker(uow_factory, storage, settings)
    await worker.start()
    await worker.stop()

    item = await enqueue(uow_factory)
    async with await uow_factory() as uow:
        await uow.queue.update_queue_status(item.id, QueueStatus.PROCESSING, started_at=True)
        await uow.locks.acquire_lock(item.id, now=utcnow() - timedelta(minutes=10))

    await worker.start()
    assert worker.is_running
    await worker.stop()

    async with await uow_factory() as uow:
        assert (await uow.queue.get_queue_item(item.id)).status == QueueStatus.PROCESSING
        assert await uow.locks.get_lock_for_item(item.id) is not None


@pytest.mark.asyncio
async def test_recovery_failure_does_not_prevent_start(storage, settings):
    async def failing_uow_factory():
        raise RuntimeError("database down")

    worker = QueueWorker(
        failing_uow_factory, FakeImageClient(), storage, settings, poll_interval=3600
    )

    await worker.start()
    assert worker.is_running
    await worker.stop()


@pytest.mark.asyncio
async def test_trigger_drains_in_background(uow_factory, storage, settings):
    item = await enqueue(uow_factory)
    client = FakeImageClient([image_result()])
    worker = make_worker(uow_factory, storage, settings, client)

    worker.trigger()
    for _ in range(200):
        async with await uow_factory() as uow:
            stored = await uow.queue.get_queue_item(item.id)
        if stored.status == QueueStatus.COMPLETED:
            break
        await asyncio.sleep(0.02)

    assert stored.status == QueueStatus.COMPLETED
    await worker.stop()


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_drain(uow_factory, storage, settings):
    await enqueue(uow_factory)
    client = FakeImageClient([image_result()], gate=asyncio.Event())
    worker = make_worker(uow_factory, storage, settings, client)

    worker.trigger()
    await asyncio.wait_for(client.started.wait(), timeout=5)

    await worker.stop()

    assert not worker.is_running
    assert client.swap_calls == []
