"""In-test stand-ins for the generation service."""

import asyncio

from genqueue.services.image_generation.replicate_client import FaceSwapResult, GenerationResult


def image_result(data: bytes = b"image-bytes", text_response: str | None = None) -> GenerationResult:
    return GenerationResult(
        success=True, images=[data], mime_type="image/png", text_response=text_response
    )


def failed_result(error: str = "No images generated", text_response: str | None = None):
    return GenerationResult(success=False, error=error, text_response=text_response)


def swapped_result(data: bytes = b"swapped-bytes") -> FaceSwapResult:
    return FaceSwapResult(success=True, image=data, mime_type="image/png")


class FakeImageClient:
    """Scripted generation service.

    `generate` returns the scripted results in order (a failure once they run
    out); `face_swap` returns `swap_result`. Every call is recorded. When
    `gate` is set, generate() waits on it first.
    """

    def __init__(
        self,
        generate_results: list[GenerationResult] | None = None,
        swap_result: FaceSwapResult | None = None,
        gate: asyncio.Event | None = None,
    ):
        self.generate_results = list(generate_results or [])
        self.swap_result = swap_result or FaceSwapResult(success=False, error="not scripted")
        self.gate = gate
        self.started = asyncio.Event()
        self.generate_calls: list[dict] = []
        self.swap_calls: list[dict] = []

    async def generate(self, prompt_json, *, aspect_ratio, image_size, reference_images=()):
        self.generate_calls.append(
            {
                "prompt_json": prompt_json,
                "aspect_ratio": aspect_ratio,
                "image_size": image_size,
                "reference_images": list(reference_images),
            }
        )
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if not self.generate_results:
            return GenerationResult(success=False, error="no scripted result")
        return self.generate_results.pop(0)

    async def face_swap(self, base_image, base_mime, reference_image, reference_mime):
        self.swap_calls.append(
            {
                "base_image": base_image,
                "base_mime": base_mime,
                "reference_image": reference_image,
                "reference_mime": reference_mime,
            }
        )
        return self.swap_result


class RaisingImageClient(FakeImageClient):
    """Generation service whose generate() raises."""

    def __init__(self, exc: Exception):
        super().__init__()
        self.exc = exc

    async def generate(self, prompt_json, *, aspect_ratio, image_size, reference_images=()):
        raise self.exc


class SwapRaisingImageClient(FakeImageClient):
    """Generation service whose face_swap() raises."""

    def __init__(self, generate_results: list[GenerationResult], exc: Exception):
        super().__init__(generate_results)
        self.exc = exc

    async def face_swap(self, base_image, base_mime, reference_image, reference_mime):
        await super().face_swap(base_image, base_mime, reference_image, reference_mime)
        raise self.exc
