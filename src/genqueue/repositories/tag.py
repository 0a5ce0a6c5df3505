"""GenerationTag repository for the generation queue."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from genqueue.models.generation_tag import GenerationTag
from genqueue.services.tagging import extract_tags_from_components, extract_tags_from_prompt


class TagRepository:
    """Repository for GenerationTag entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_tags_for_generation(
        self,
        generation_id: str,
        prompt_json: dict,
        components_used: list[dict] | None = None,
    ) -> list[GenerationTag]:
        """Derive and persist tags for a generation.

        Component-based tags are preferred when the generation recorded which
        components it was built from; otherwise tags come from the prompt.

        Args:
            generation_id: Generation to tag
            prompt_json: Prompt payload
            components_used: Components the prompt was built from (optional)

        Returns:
            Persisted tags
        """
        if components_used:
            pairs = extract_tags_from_components(components_used)
        else:
            pairs = extract_tags_from_prompt(prompt_json)

        tags = [
            GenerationTag(generation_id=generation_id, tag=tag, category=category)
            for tag, category in pairs
        ]
        self.session.add_all(tags)
        await self.session.flush()
        return tags

    async def get_tags_for_generation(self, generation_id: str) -> list[GenerationTag]:
        result = await self.session.execute(
            select(GenerationTag).where(GenerationTag.generation_id == generation_id)  # type: ignore[arg-type]
        )
        return list(result.scalars().all())
