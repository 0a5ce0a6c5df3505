"""Recovery CLI tests against the test database."""

from datetime import timedelta

import pytest

from genqueue.cli.recover_queue import async_main, parse_args
from genqueue.core.timezone import utcnow
from genqueue.models.queue_item import QueueStatus

PROMPT = {"subject": {"type": "woman"}}


@pytest.fixture
def cli_env(monkeypatch, database_url):
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.setenv("APP_ENV", "test")
    # Keep the global structlog configuration untouched
    monkeypatch.setattr("genqueue.cli.recover_queue.configure_logging", lambda settings: None)


async def abandoned_item(uow_factory):
    async with await uow_factory() as uow:
        generation = await uow.generations.create(PROMPT)
        item = await uow.queue.enqueue(PROMPT, generation.id)
        await uow.queue.update_queue_status(item.id, QueueStatus.PROCESSING, started_at=True)
        await uow.locks.acquire_lock(item.id, now=utcnow() - timedelta(minutes=15))
    return item


def test_parse_args():
    args = parse_args(["--dry-run", "-v"])

    assert args.dry_run is True
    assert args.verbose is True
    assert args.cleanup_history is False


@pytest.mark.asyncio
async def test_dry_run_changes_nothing(cli_env, uow_factory, capsys):
    item = await abandoned_item(uow_factory)

    assert await async_main(["--dry-run"]) == 0

    output = capsys.readouterr().out
    assert "Items with stale locks: 1" in output
    assert item.id in output
    assert "[DRY RUN]" in output

    async with await uow_factory() as uow:
        assert (await uow.queue.get_queue_item(item.id)).status == QueueStatus.PROCESSING
        assert await uow.locks.get_lock_for_item(item.id) is not None


@pytest.mark.asyncio
async def test_recovery_resets_items(cli_env, uow_factory, capsys):
    item = await abandoned_item(uow_factory)

    assert await async_main([]) == 0

    assert "Items reset to queued: 1" in capsys.readouterr().out
    async with await uow_factory() as uow:
        assert (await uow.queue.get_queue_item(item.id)).status == QueueStatus.QUEUED
        assert await uow.locks.get_lock_for_item(item.id) is None
