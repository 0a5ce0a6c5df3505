"""ReferencePhoto repository for the generation queue."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from genqueue.models.reference_photo import ReferencePhoto


class ReferenceRepository:
    """Repository for ReferencePhoto entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, reference: ReferencePhoto) -> ReferencePhoto:
        """Persist new reference photo to database."""
        self.session.add(reference)
        await self.session.flush()
        return reference

    async def get_by_ids(self, ids: list[str]) -> list[ReferencePhoto]:
        """Retrieve reference photos in the order requested.

        Unknown IDs are omitted from the result.

        Args:
            ids: Reference photo identifiers

        Returns:
            Matching reference photos, ordered as in `ids`
        """
        if not ids:
            return []

        result = await self.session.execute(
            select(ReferencePhoto).where(ReferencePhoto.id.in_(ids))  # type: ignore[attr-defined]
        )
        by_id = {ref.id: ref for ref in result.scalars().all()}
        return [by_id[ref_id] for ref_id in ids if ref_id in by_id]
