"""Identity-preservation fallback cascade.

Attempts are an ordered list of strategies evaluated in sequence:

1. with_reference: generate with whatever reference images loaded (possibly none)
2. without_reference_then_swap: only when the first attempt failed and at
   least one reference loaded; generate without references, then composite
   the first reference's face onto the result

Compositing failure is not fatal: the uncomposited base image is kept and the
outcome records `face_swap_failed`.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence

import structlog

from genqueue.services.exceptions import FallbackExhaustedError, GenerationFailedError
from genqueue.services.image_generation.replicate_client import (
    FaceSwapResult,
    GenerationResult,
    ReferenceImage,
)

logger = structlog.get_logger()

DEFAULT_MIME_TYPE = "image/png"


class AttemptStrategy(str, Enum):
    WITH_REFERENCE = "with_reference"
    WITHOUT_REFERENCE_THEN_SWAP = "without_reference_then_swap"


class ImageGenerationClient(Protocol):
    async def generate(
        self,
        prompt_json: dict,
        *,
        aspect_ratio: str,
        image_size: str,
        reference_images: Sequence[ReferenceImage] = (),
    ) -> GenerationResult: ...

    async def face_swap(
        self,
        base_image: bytes,
        base_mime: str,
        reference_image: bytes,
        reference_mime: str,
    ) -> FaceSwapResult: ...


@dataclass(frozen=True)
class GenerationOutcome:
    """Final image of a successful cascade plus its bookkeeping flags."""

    image: bytes
    mime_type: str
    strategy: AttemptStrategy
    used_fallback: bool = False
    face_swap_failed: bool = False
    pre_swap_image: bytes | None = None
    pre_swap_mime_type: str | None = None
    text_response: str | None = None


def plan_strategies(reference_count: int) -> list[AttemptStrategy]:
    """Return the attempts to make, in order, for a given number of loaded references."""
    if reference_count > 0:
        return [AttemptStrategy.WITH_REFERENCE, AttemptStrategy.WITHOUT_REFERENCE_THEN_SWAP]
    return [AttemptStrategy.WITH_REFERENCE]


def has_image(result: GenerationResult) -> bool:
    return result.success and bool(result.images)


def primary_outcome(result: GenerationResult) -> GenerationOutcome:
    return GenerationOutcome(
        image=result.images[0],
        mime_type=result.mime_type or DEFAULT_MIME_TYPE,
        strategy=AttemptStrategy.WITH_REFERENCE,
        text_response=result.text_response,
    )


def fallback_outcome(base_result: GenerationResult, swap_result: FaceSwapResult) -> GenerationOutcome:
    """Build the outcome of the reference-less retry.

    A successful swap becomes the final image and the base image is kept as
    the pre-swap image. A failed swap leaves the base image as the final
    image with face_swap_failed set.
    """
    base_image = base_result.images[0]
    base_mime = base_result.mime_type or DEFAULT_MIME_TYPE

    if swap_result.success and swap_result.image:
        return GenerationOutcome(
            image=swap_result.image,
            mime_type=swap_result.mime_type or base_mime,
            strategy=AttemptStrategy.WITHOUT_REFERENCE_THEN_SWAP,
            used_fallback=True,
            face_swap_failed=False,
            pre_swap_image=base_image,
            pre_swap_mime_type=base_mime,
            text_response=base_result.text_response,
        )

    return GenerationOutcome(
        image=base_image,
        mime_type=base_mime,
        strategy=AttemptStrategy.WITHOUT_REFERENCE_THEN_SWAP,
        used_fallback=True,
        face_swap_failed=True,
        text_response=base_result.text_response,
    )


async def run_generation_cascade(
    client: ImageGenerationClient,
    prompt_json: dict,
    references: Sequence[ReferenceImage],
    *,
    aspect_ratio: str,
    image_size: str,
) -> GenerationOutcome:
    """Run the attempt strategies in order until one yields an image.

    Raises:
        GenerationFailedError: Primary attempt failed and no fallback is eligible
        FallbackExhaustedError: Reference-less retry failed as well
    """
    log = logger.bind(reference_count=len(references))
    primary: GenerationResult | None = None

    for strategy in plan_strategies(len(references)):
        if strategy is AttemptStrategy.WITH_REFERENCE:
            primary = await client.generate(
                prompt_json,
                aspect_ratio=aspect_ratio,
                image_size=image_size,
                reference_images=references,
            )
            if has_image(primary):
                return primary_outcome(primary)
            log.warning("generation.primary.failed", error=primary.error)
            continue

        log.info("generation.fallback.started", strategy=strategy.value)
        base = await client.generate(
            prompt_json,
            aspect_ratio=aspect_ratio,
            image_size=image_size,
            reference_images=(),
        )
        if not has_image(base):
            log.warning("generation.fallback.failed", kind="fallback_exhausted", error=base.error)
            primary_error = primary.error if primary else None
            raise FallbackExhaustedError(
                f"Generation with references failed ({primary_error or 'no image'}); "
                f"retry without references failed ({base.error or 'no image'})",
                text_response=base.text_response or (primary.text_response if primary else None),
            )

        face = references[0]
        try:
            swap = await client.face_swap(
                base.images[0],
                base.mime_type or DEFAULT_MIME_TYPE,
                face.data,
                face.mime_type,
            )
        except Exception as e:
            # Compositing is non-fatal: the base image still stands
            swap = FaceSwapResult(success=False, error=str(e) or type(e).__name__)
        if not (swap.success and swap.image):
            log.warning("generation.fallback.compositing_failed", kind="compositing_failed", error=swap.error)
        else:
            log.info("generation.fallback.swapped")
        return fallback_outcome(base, swap)

    error = primary.error if primary and primary.error else "No images generated"
    raise GenerationFailedError(error, text_response=primary.text_response if primary else None)
