"""Unit of Work for the generation queue.

One UnitOfWork is one short transaction over the queue, lock, generation,
reference and tag tables. The pipeline opens a fresh one per step so no
transaction stays open across a generation call.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from genqueue.repositories.generation import GenerationRepository
from genqueue.repositories.queue import QueueRepository
from genqueue.repositories.queue_lock import QueueLockRepository
from genqueue.repositories.reference import ReferenceRepository
from genqueue.repositories.tag import TagRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Transaction scope shared by the queue repositories.

    Cancellation (queue row, lock row and generation in one commit) and the
    recovery sweep rely on every repository using the same session.

    Example:
        async with await uow_factory() as uow:
            item = await uow.queue.get_next_in_queue()
            lock = await uow.locks.acquire_lock(item.id)
            # Automatically commits on successful exit
            # Automatically rolls back on exception
    """

    def __init__(self, session: AsyncSession):
        """Initialize UnitOfWork with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

        self.queue = QueueRepository(session)
        self.locks = QueueLockRepository(session)
        self.generations = GenerationRepository(session)
        self.references = ReferenceRepository(session)
        self.tags = TagRepository(session)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit on clean exit, roll back otherwise; the session is closed either way.

        Returns:
            False: Always re-raise exceptions after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.debug("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Callable that creates UnitOfWork instances from new sessions

    Example:
        session_factory = setup_db_session(db_url, pool_size=20)
        uow_factory = create_uow_factory(session_factory)

        async with await uow_factory() as uow:
            await uow.queue.enqueue(prompt_json, generation_id)
    """

    async def _create_uow():
        """Create a new UnitOfWork instance with a new session."""
        session = session_factory()
        return UnitOfWork(session)

    return _create_uow
