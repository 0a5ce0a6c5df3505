"""Generation pipeline for queued items.

Drains the queue one item at a time:

1. Claim: oldest queued item under the concurrency cap that no other worker
   holds, then a heartbeat lease on it (QueueLockRepository.acquire_lock)
2. Start: queue item -> processing, linked generation -> generating
3. Load references (a reference that fails to load is skipped)
4. Run the attempt cascade (see services.image_generation.fallback)
5. Success: store image(s), complete generation and queue item, derive tags
6. Failure: fail generation with error details, fail queue item

An outcome is discarded if the row is no longer processing when it is
recorded (cancelled, or taken over after a lost lease).

Each step runs in its own short unit of work; no transaction stays open
across a generation call. The lease is renewed every HEARTBEAT_INTERVAL_SECONDS
while the item is in flight and released once it is done.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

import structlog

from genqueue.core.config import Settings
from genqueue.models.generation import GenerationStatus
from genqueue.models.queue_item import QueueItem, QueueStatus
from genqueue.repositories.queue_lock import HEARTBEAT_INTERVAL_SECONDS
from genqueue.services.exceptions import PipelineError, ReferenceLoadError
from genqueue.services.image_generation.fallback import (
    GenerationOutcome,
    ImageGenerationClient,
    run_generation_cascade,
)
from genqueue.services.image_generation.replicate_client import ReferenceImage
from genqueue.services.image_storage import ImageStorage

logger = structlog.get_logger(__name__)


@dataclass
class Claim:
    """A queue item together with the lease token held on it."""

    item: QueueItem
    lock_id: str


async def claim_next_item(uow_factory: Callable) -> Claim | None:
    """Select the oldest eligible item and take its lease.

    Items whose lease is held by another worker are passed over, so a head
    item leased by a crashed worker does not block the rest of the queue.

    Returns:
        Claim, or None if the queue is empty, the cap is reached, or every
        queued item is leased by another worker
    """
    contended: set[str] = set()
    async with await uow_factory() as uow:
        while True:
            item = await uow.queue.get_next_in_queue(exclude_ids=contended)
            if item is None:
                return None

            lock = await uow.locks.acquire_lock(item.id)
            if lock is not None:
                break

            logger.info("queue.lock.contended", queue_item_id=item.id)
            contended.add(item.id)

    logger.debug("queue.lock.acquired", queue_item_id=item.id, lock_id=lock.id)
    return Claim(item=item, lock_id=lock.id)


async def load_reference_images(
    item: QueueItem,
    uow_factory: Callable,
    storage: ImageStorage,
) -> list[ReferenceImage]:
    """Load reference photo bytes for an item, in the order requested.

    Unknown reference IDs and unreadable files are logged and skipped.
    """
    if not item.reference_photo_ids:
        return []

    async with await uow_factory() as uow:
        photos = await uow.references.get_by_ids(list(item.reference_photo_ids))

    found = {photo.id for photo in photos}
    for missing_id in item.reference_photo_ids:
        if missing_id not in found:
            logger.warning(
                "queue.reference.load_failed",
                kind=ReferenceLoadError.kind,
                queue_item_id=item.id,
                reference_id=missing_id,
                error="reference not found",
            )

    references = []
    for photo in photos:
        try:
            data = await storage.read(photo.image_path)
        except (OSError, ValueError) as e:
            logger.warning(
                "queue.reference.load_failed",
                kind=ReferenceLoadError.kind,
                queue_item_id=item.id,
                reference_id=photo.id,
                error=str(e),
            )
            continue
        references.append(ReferenceImage(data=data, mime_type=photo.mime_type, reference_id=photo.id))

    return references


async def process_queue_item(
    item: QueueItem,
    uow_factory: Callable,
    client: ImageGenerationClient,
    storage: ImageStorage,
    settings: Settings,
) -> None:
    """Run one claimed item to a terminal state.

    Any exception raised while loading references, generating or storing is
    converted into a failed outcome. Database errors while recording that
    outcome propagate to the caller.

    Args:
        item: Claimed queue item (detached from its session)
        uow_factory: Factory producing UnitOfWork instances
        client: Generation service
        storage: Image storage
        settings: Application settings (aspect ratio and size policy)
    """
    log = logger.bind(queue_item_id=item.id, generation_id=item.generation_id)
    start_time = time.time()

    async with await uow_factory() as uow:
        current = await uow.queue.get_queue_item(item.id)
        if current is None or current.status != QueueStatus.QUEUED:
            log.info(
                "queue.item.skipped",
                status=current.status.value if current else None,
            )
            return

        await uow.queue.update_queue_status(item.id, QueueStatus.PROCESSING, started_at=True)
        if item.generation_id:
            await uow.generations.update(item.generation_id, status=GenerationStatus.GENERATING)

    log.info("queue.item.started", reference_count=len(item.reference_photo_ids or []))

    try:
        references = await load_reference_images(item, uow_factory, storage)
        outcome = await run_generation_cascade(
            client,
            item.prompt_json,
            references,
            aspect_ratio=settings.generation_aspect_ratio,
            image_size=settings.generation_image_size,
        )
        await _record_success(item, outcome, uow_factory, storage, log)

    except PipelineError as e:
        await _record_failure(item, str(e), e.text_response, uow_factory, log, kind=e.kind)

    except Exception as e:
        log.error("queue.item.exception", error_type=type(e).__name__, exc_info=True)
        await _record_failure(
            item, str(e) or type(e).__name__, None, uow_factory, log, kind="transient_exception"
        )

    log.info("queue.item.finished", duration_seconds=round(time.time() - start_time, 3))


def _discard_reason(current: QueueItem | None) -> str | None:
    """Why a finished attempt must not be recorded, or None if it may be.

    The row may have been cancelled (deleted) while the generation call ran,
    or moved on by whoever took over a lost lease.
    """
    if current is None:
        return "cancelled"
    if current.status != QueueStatus.PROCESSING:
        return "not_processing"
    return None


async def _record_success(
    item: QueueItem,
    outcome: GenerationOutcome,
    uow_factory: Callable,
    storage: ImageStorage,
    log,
) -> None:
    async with await uow_factory() as uow:
        reason = _discard_reason(await uow.queue.get_queue_item(item.id))
        if reason:
            log.info("queue.item.discarded", reason=reason)
            return

    image_path = await storage.save(outcome.image, outcome.mime_type)
    pre_swap_path = None
    if outcome.pre_swap_image is not None:
        pre_swap_path = await storage.save(
            outcome.pre_swap_image, outcome.pre_swap_mime_type or outcome.mime_type
        )

    async with await uow_factory() as uow:
        reason = _discard_reason(await uow.queue.get_queue_item(item.id))
        if reason:
            log.info("queue.item.discarded", reason=reason, image_path=image_path)
            return

        await uow.queue.update_queue_status(item.id, QueueStatus.COMPLETED, completed_at=True)

        if item.generation_id:
            await uow.generations.update(
                item.generation_id,
                status=GenerationStatus.COMPLETED,
                image_path=image_path,
                pre_swap_image_path=pre_swap_path,
                api_response_text=outcome.text_response,
                used_fallback=outcome.used_fallback,
                face_swap_failed=outcome.face_swap_failed,
                completed_at=True,
            )

    log.info(
        "queue.item.completed",
        image_path=image_path,
        strategy=outcome.strategy.value,
        used_fallback=outcome.used_fallback,
        face_swap_failed=outcome.face_swap_failed,
    )

    if item.generation_id:
        await _tag_generation(item, uow_factory, log)


async def _tag_generation(item: QueueItem, uow_factory: Callable, log) -> None:
    """Derive and persist tags; failures are logged and ignored."""
    try:
        async with await uow_factory() as uow:
            generation = await uow.generations.get(item.generation_id)
            components = generation.components_used if generation else None
            tags = await uow.tags.create_tags_for_generation(
                item.generation_id, item.prompt_json, components
            )
        log.debug("generation.tags.created", tag_count=len(tags))
    except Exception as e:
        log.warning("generation.tags.failed", error_type=type(e).__name__, error=str(e))


async def _record_failure(
    item: QueueItem,
    error_message: str,
    text_response: str | None,
    uow_factory: Callable,
    log,
    *,
    kind: str,
) -> None:
    async with await uow_factory() as uow:
        reason = _discard_reason(await uow.queue.get_queue_item(item.id))
        if reason:
            log.info("queue.item.discarded", reason=reason, kind=kind)
            return

        await uow.queue.update_queue_status(item.id, QueueStatus.FAILED, completed_at=True)

        if item.generation_id:
            await uow.generations.update(
                item.generation_id,
                status=GenerationStatus.FAILED,
                error_message=error_message,
                api_response_text=text_response,
                completed_at=True,
            )

    log.error("queue.item.failed", kind=kind, error_message=error_message)


async def _keep_lease_alive(uow_factory: Callable, claim: Claim) -> None:
    """Renew the lease every HEARTBEAT_INTERVAL_SECONDS until cancelled or lost."""
    while True:
        await asyncio.sleep(HEARTBEAT_INTERVAL_SECONDS)
        try:
            async with await uow_factory() as uow:
                alive = await uow.locks.update_heartbeat(claim.lock_id)
        except Exception as e:
            logger.warning(
                "queue.lock.heartbeat_failed",
                queue_item_id=claim.item.id,
                error_type=type(e).__name__,
                error=str(e),
            )
            continue

        if not alive:
            logger.warning("queue.lock.lost", queue_item_id=claim.item.id, lock_id=claim.lock_id)
            return


async def _release_lease(uow_factory: Callable, claim: Claim) -> None:
    async with await uow_factory() as uow:
        await uow.locks.release_lock(claim.lock_id)
    logger.debug("queue.lock.released", queue_item_id=claim.item.id, lock_id=claim.lock_id)


async def process_queue(
    uow_factory: Callable,
    client: ImageGenerationClient,
    storage: ImageStorage,
    settings: Settings,
) -> int:
    """Drain the queue sequentially until nothing is eligible.

    Stops when the queue is empty, the concurrency cap is reached, or every
    remaining queued item is leased by another worker.

    Returns:
        Number of items claimed and processed
    """
    processed = 0
    while True:
        claim = await claim_next_item(uow_factory)
        if claim is None:
            break

        heartbeat = asyncio.create_task(_keep_lease_alive(uow_factory, claim))
        try:
            await process_queue_item(claim.item, uow_factory, client, storage, settings)
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
            await _release_lease(uow_factory, claim)

        processed += 1

    if processed:
        logger.info("queue.drain.finished", processed=processed)
    return processed
