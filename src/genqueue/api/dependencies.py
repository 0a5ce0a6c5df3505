"""FastAPI dependencies shared by the API routes."""

from typing import Callable

from fastapi import Request

from genqueue.uow import UnitOfWork
from genqueue.workers.queue_worker import QueueWorker


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.queue.get_queue_status()
    """
    return request.app.state.uow_factory


def get_queue_worker(request: Request) -> QueueWorker | None:
    """Get the process-wide QueueWorker from app state (None if not started)."""
    return getattr(request.app.state, "queue_worker", None)
