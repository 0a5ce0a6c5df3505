"""Replicate API client for image generation with error classification."""

import asyncio
import io
import json
import mimetypes
from dataclasses import dataclass, field
from typing import Any, Sequence

import httpx
import replicate
import structlog

logger = structlog.get_logger()

DOWNLOAD_TIMEOUT_SECONDS = 120.0


class ReplicateError(Exception):
    """Base class for categorized Replicate API errors."""

    retryable: bool = False


class TransientError(ReplicateError):
    """Transient errors (network, rate limits, service unavailability)."""

    retryable = True


class ContentPolicyError(ReplicateError):
    """Content policy violation reported by the model."""

    retryable = True


class PermanentError(ReplicateError):
    """Permanent errors (auth, validation, unexpected output)."""

    retryable = False


def classify_error(exception: Exception) -> ReplicateError:
    """Classify exception into retry category.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        Classified ReplicateError subclass instance

    Classification rules:
        - Timeout errors → TransientError
        - 429 (rate limit) → TransientError
        - 503 (service unavailable) → TransientError
        - 401/403 (authentication) → PermanentError
        - Content policy violations → ContentPolicyError
        - Connection errors → TransientError
        - Anything else → PermanentError
    """
    if isinstance(exception, ReplicateError):
        return exception

    error_message = str(exception)
    error_message_lower = error_message.lower()

    if "timeout" in error_message_lower or isinstance(exception, (TimeoutError, httpx.TimeoutException)):
        return TransientError(f"Network timeout: {error_message}")

    if "429" in error_message or "rate limit" in error_message_lower:
        return TransientError(f"Rate limit exceeded: {error_message}")

    if "503" in error_message or "service unavailable" in error_message_lower:
        return TransientError(f"Service unavailable: {error_message}")

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return PermanentError(f"Authentication failed: {error_message}")

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
        or "inappropriate" in error_message_lower
    ):
        return ContentPolicyError(f"Content policy violation: {error_message}")

    if isinstance(exception, (ConnectionError, OSError, httpx.TransportError)):
        return TransientError(f"Connection error: {error_message}")

    return PermanentError(f"Permanent error: {error_message}")


@dataclass(frozen=True)
class ReferenceImage:
    """Reference photo bytes passed to the generation service."""

    data: bytes
    mime_type: str
    reference_id: str | None = None


@dataclass
class GenerationResult:
    success: bool
    images: list[bytes] = field(default_factory=list)
    mime_type: str | None = None
    text_response: str | None = None
    error: str | None = None


@dataclass
class FaceSwapResult:
    success: bool
    image: bytes | None = None
    mime_type: str | None = None
    error: str | None = None


class ReplicateImageClient:
    """Generation service backed by Replicate models.

    `generate` runs the text-to-image model (optionally conditioned on
    reference images); `face_swap` runs the identity compositing model.
    Neither method raises for service failures: errors are classified and
    returned on the result object.
    """

    def __init__(
        self,
        api_token: str | None,
        model_version: str,
        face_swap_model: str,
        output_format: str = "png",
    ):
        self.api_token = api_token
        self.model_version = model_version
        self.face_swap_model = face_swap_model
        self.output_format = output_format
        self._client = replicate.Client(api_token=api_token) if api_token else None

    async def generate(
        self,
        prompt_json: dict,
        *,
        aspect_ratio: str,
        image_size: str,
        reference_images: Sequence[ReferenceImage] = (),
    ) -> GenerationResult:
        """Generate one image from a structured prompt.

        The prompt is sent as pretty-printed JSON text.
        """
        model_input: dict[str, Any] = {
            "prompt": json.dumps(prompt_json, indent=2),
            "aspect_ratio": aspect_ratio,
            "resolution": image_size,
            "output_format": self.output_format,
        }
        if reference_images:
            model_input["image_input"] = [_as_file(ref.data, ref.mime_type) for ref in reference_images]

        try:
            output = await self._run(self.model_version, model_input)
            images = await _collect_images(output)
        except Exception as e:
            classified = classify_error(e)
            logger.warning(
                "replicate.generate.failed",
                model=self.model_version,
                error_type=type(classified).__name__,
                error=str(classified),
            )
            return GenerationResult(success=False, error=str(classified))

        if not images:
            return GenerationResult(
                success=False,
                text_response=_text_output(output),
                error="No images generated",
            )

        return GenerationResult(
            success=True,
            images=[data for data, _ in images],
            mime_type=images[0][1] or self._default_mime(),
            text_response=_text_output(output),
        )

    async def face_swap(
        self,
        base_image: bytes,
        base_mime: str,
        reference_image: bytes,
        reference_mime: str,
    ) -> FaceSwapResult:
        """Composite the reference face onto the base image."""
        model_input = {
            "input_image": _as_file(base_image, base_mime),
            "swap_image": _as_file(reference_image, reference_mime),
        }

        try:
            output = await self._run(self.face_swap_model, model_input)
            images = await _collect_images(output)
        except Exception as e:
            classified = classify_error(e)
            logger.warning(
                "replicate.face_swap.failed",
                model=self.face_swap_model,
                error_type=type(classified).__name__,
                error=str(classified),
            )
            return FaceSwapResult(success=False, error=str(classified))

        if not images:
            return FaceSwapResult(success=False, error="Face swap returned no image")

        data, mime_type = images[0]
        return FaceSwapResult(success=True, image=data, mime_type=mime_type or base_mime)

    async def _run(self, model: str, model_input: dict[str, Any]) -> Any:
        if self._client is None:
            raise PermanentError("REPLICATE_API_TOKEN not configured")
        client = self._client
        # SDK is synchronous
        return await asyncio.to_thread(client.run, model, input=model_input)

    def _default_mime(self) -> str:
        return f"image/{self.output_format}"


def _as_file(data: bytes, mime_type: str) -> io.BytesIO:
    buffer = io.BytesIO(data)
    buffer.name = f"image{mimetypes.guess_extension(mime_type) or '.png'}"
    return buffer


def _text_output(output: Any) -> str | None:
    if isinstance(output, str) and not output.startswith(("http://", "https://")):
        return output
    return None


async def _collect_images(output: Any) -> list[tuple[bytes, str | None]]:
    """Turn model output into (bytes, mime_type) pairs.

    Handles FileOutput objects (read directly), URL strings (downloaded),
    and lists of either.
    """
    items = output if isinstance(output, (list, tuple)) else [output]
    images = []
    async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True) as http:
        for item in items:
            if item is None:
                continue
            if hasattr(item, "read"):
                data = await asyncio.to_thread(item.read)
                url = str(getattr(item, "url", "") or "")
                images.append((data, mimetypes.guess_type(url)[0] if url else None))
            elif isinstance(item, str) and item.startswith(("http://", "https://")):
                response = await http.get(item)
                response.raise_for_status()
                content_type = response.headers.get("content-type", "").split(";")[0].strip()
                mime_type = content_type or mimetypes.guess_type(item)[0]
                images.append((response.content, mime_type))
    return images
