"""Generation queue API endpoints.

- POST /api/generate - Create generation(s) and enqueue them
- GET /api/generate - Backlog counts
- GET /api/generate/{generation_id}/status - Poll one generation's outcome
- GET /api/queue - Active items plus metrics (dashboard)
- GET /api/queue/history - Paginated terminal items
- GET /api/queue/{item_id}/status - Backlog counts plus the item's position
- DELETE /api/queue/{item_id} - Cancel a queued or processing item
"""

from datetime import datetime
from math import ceil
from typing import Literal

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from genqueue.api.dependencies import get_queue_worker, get_uow_factory
from genqueue.models.generation import GenerationStatus
from genqueue.models.queue_item import QueueItem
from genqueue.services.exceptions import InvalidQueueStateError, QueueItemNotFoundError

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["queue"])

MAX_BATCH_COUNT = 4


# Request/Response Models


class GenerateOptions(BaseModel):
    """Per-request generation options."""

    count: int = Field(
        default=1,
        description=f"Number of generations to enqueue (clamped to 1-{MAX_BATCH_COUNT})",
    )
    reference_photo_ids: list[str] | None = Field(
        default=None,
        description="Reference photos used for identity preservation, in priority order",
    )
    inline_reference_paths: list[str] | None = Field(default=None)
    google_search: bool = Field(default=False)
    safety_override: bool = Field(default=False)
    components_used: list[dict] | None = Field(
        default=None,
        description="Prompt-builder components the prompt was assembled from (used for tags)",
    )

    @field_validator("count", mode="before")
    @classmethod
    def clamp_count(cls, v) -> int:
        try:
            count = int(v or 1)
        except (TypeError, ValueError):
            count = 1
        return min(max(count, 1), MAX_BATCH_COUNT)


class GenerateRequest(BaseModel):
    prompt_json: dict = Field(..., description="Structured prompt payload (not interpreted)")
    options: GenerateOptions = Field(default_factory=GenerateOptions)


class BatchEntry(BaseModel):
    queue_id: str
    generation_id: str
    status: str


class GenerateResponse(BaseModel):
    """Details of the first enqueued item plus the whole batch."""

    queue_id: str
    generation_id: str
    position: int
    status: str
    batch: list[BatchEntry]


class QueueStatusResponse(BaseModel):
    active: int = Field(..., description="Items currently processing")
    queued: int = Field(..., description="Items waiting")
    position: int | None = Field(
        default=None,
        description="1-based position if queued, 0 if processing, null otherwise",
    )


class QueueItemDTO(BaseModel):
    """Data Transfer Object for queue items in API responses."""

    id: str
    generation_id: str | None
    status: str
    prompt_json: dict
    reference_photo_ids: list[str] | None = None
    google_search: bool
    safety_override: bool
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    position: int | None = None

    @classmethod
    def from_item(cls, item: QueueItem, position: int | None = None) -> "QueueItemDTO":
        return cls(
            id=item.id,
            generation_id=item.generation_id,
            status=item.status.value,
            prompt_json=item.prompt_json,
            reference_photo_ids=item.reference_photo_ids,
            google_search=item.google_search,
            safety_override=item.safety_override,
            created_at=item.created_at,
            started_at=item.started_at,
            completed_at=item.completed_at,
            position=position,
        )


class QueueMetricsDTO(BaseModel):
    total_queued: int
    total_processing: int
    avg_wait_time_seconds: float | None
    success_rate_1h: float | None = Field(
        default=None, description="Percent of terminal items completed in the last hour"
    )
    completed_1h: int
    failed_1h: int


class QueueOverviewResponse(BaseModel):
    items: list[QueueItemDTO]
    metrics: QueueMetricsDTO


class QueueHistoryItemDTO(QueueItemDTO):
    duration_seconds: float | None = None
    image_path: str | None = None


class QueueHistoryResponse(BaseModel):
    items: list[QueueHistoryItemDTO]
    total: int
    page: int
    limit: int
    total_pages: int


class GenerationStatusResponse(BaseModel):
    status: str
    image_path: str | None = None
    error: str | None = None


class CancelResponse(BaseModel):
    success: bool


# API Endpoints


@router.post("/generate", response_model=GenerateResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_generation(
    request: GenerateRequest,
    uow_factory=Depends(get_uow_factory),
    worker=Depends(get_queue_worker),
) -> GenerateResponse:
    """Create `count` generations, enqueue one queue item per generation, and wake the worker.

    Example:
        POST /api/generate
        {"prompt_json": {"subject": {"type": "woman"}}, "options": {"count": 2}}

        Response 202:
        {
            "queue_id": "...",
            "generation_id": "...",
            "position": 1,
            "status": "queued",
            "batch": [{"queue_id": "...", "generation_id": "...", "status": "queued"}, ...]
        }
    """
    options = request.options
    batch: list[BatchEntry] = []

    async with await uow_factory() as uow:
        for _ in range(options.count):
            generation = await uow.generations.create(
                request.prompt_json,
                reference_photo_ids=options.reference_photo_ids,
                components_used=options.components_used,
            )
            item = await uow.queue.enqueue(
                request.prompt_json,
                generation.id,
                reference_photo_ids=options.reference_photo_ids,
                inline_reference_paths=options.inline_reference_paths,
                google_search=options.google_search,
                safety_override=options.safety_override,
            )
            batch.append(
                BatchEntry(queue_id=item.id, generation_id=generation.id, status=item.status.value)
            )

        queue_status = await uow.queue.get_queue_status(batch[0].queue_id)

    logger.info(
        "queue.enqueued",
        count=len(batch),
        queue_ids=[entry.queue_id for entry in batch],
        reference_count=len(options.reference_photo_ids or []),
    )

    if worker is not None:
        worker.trigger()

    first = batch[0]
    return GenerateResponse(
        queue_id=first.queue_id,
        generation_id=first.generation_id,
        position=queue_status.position or 1,
        status=first.status,
        batch=batch,
    )


@router.get("/generate", response_model=QueueStatusResponse)
async def get_backlog(uow_factory=Depends(get_uow_factory)) -> QueueStatusResponse:
    async with await uow_factory() as uow:
        queue_status = await uow.queue.get_queue_status()
    return QueueStatusResponse(active=queue_status.active, queued=queue_status.queued, position=None)


@router.get("/generate/{generation_id}/status", response_model=GenerationStatusResponse)
async def get_generation_status(
    generation_id: str,
    uow_factory=Depends(get_uow_factory),
) -> GenerationStatusResponse:
    """Poll a generation: image_path once completed, error once failed."""
    async with await uow_factory() as uow:
        generation = await uow.generations.get(generation_id)

    if generation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")

    response = GenerationStatusResponse(status=generation.status.value)
    if generation.status == GenerationStatus.COMPLETED:
        response.image_path = generation.image_path
    elif generation.status == GenerationStatus.FAILED:
        response.error = generation.error_message
    return response


@router.get("/queue", response_model=QueueOverviewResponse)
async def get_queue_overview(uow_factory=Depends(get_uow_factory)) -> QueueOverviewResponse:
    async with await uow_factory() as uow:
        active_items = await uow.queue.get_active_items()
        metrics = await uow.queue.get_metrics()

    return QueueOverviewResponse(
        items=[QueueItemDTO.from_item(entry.item, entry.position) for entry in active_items],
        metrics=QueueMetricsDTO(
            total_queued=metrics.total_queued,
            total_processing=metrics.total_processing,
            avg_wait_time_seconds=metrics.avg_wait_time_seconds,
            success_rate_1h=metrics.success_rate_1h,
            completed_1h=metrics.completed_1h,
            failed_1h=metrics.failed_1h,
        ),
    )


@router.get("/queue/history", response_model=QueueHistoryResponse)
async def get_queue_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status_filter: Literal["all", "completed", "failed"] = Query(default="all", alias="status"),
    uow_factory=Depends(get_uow_factory),
) -> QueueHistoryResponse:
    async with await uow_factory() as uow:
        history = await uow.queue.get_history(page=page, limit=limit, status_filter=status_filter)

    items = []
    for entry in history.items:
        dto = QueueItemDTO.from_item(entry.item)
        items.append(
            QueueHistoryItemDTO(
                **dto.model_dump(),
                duration_seconds=entry.duration_seconds,
                image_path=entry.image_path,
            )
        )

    return QueueHistoryResponse(
        items=items,
        total=history.total,
        page=history.page,
        limit=history.limit,
        total_pages=ceil(history.total / history.limit) if history.total else 0,
    )


@router.get("/queue/{item_id}/status", response_model=QueueStatusResponse)
async def get_item_status(
    item_id: str,
    uow_factory=Depends(get_uow_factory),
) -> QueueStatusResponse:
    async with await uow_factory() as uow:
        item = await uow.queue.get_queue_item(item_id)
        if item is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=f"Queue item {item_id} not found"
            )
        queue_status = await uow.queue.get_queue_status(item_id)

    return QueueStatusResponse(
        active=queue_status.active,
        queued=queue_status.queued,
        position=queue_status.position,
    )


@router.delete("/queue/{item_id}", response_model=CancelResponse)
async def cancel_queue_item(
    item_id: str,
    uow_factory=Depends(get_uow_factory),
) -> CancelResponse:
    """Cancel a queued or processing item.

    Returns:
        200 {"success": true}
        404 if the item does not exist
        409 if the item is already completed or failed
    """
    try:
        async with await uow_factory() as uow:
            await uow.queue.delete_queue_item(item_id)
    except QueueItemNotFoundError as e:
        logger.info("queue.cancel.rejected", queue_item_id=item_id, kind=e.kind)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidQueueStateError as e:
        logger.info("queue.cancel.rejected", queue_item_id=item_id, kind=e.kind)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info("queue.item.cancelled", queue_item_id=item_id)
    return CancelResponse(success=True)
