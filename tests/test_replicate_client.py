"""Replicate client tests with the SDK mocked out.

Tests cover:
- Error classification
- Model input construction for generation and face swap
- FileOutput handling and failure reporting (no exceptions escape)
"""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from genqueue.services.image_generation.replicate_client import (
    ContentPolicyError,
    PermanentError,
    ReferenceImage,
    ReplicateImageClient,
    TransientError,
    classify_error,
)

CLIENT_PATH = "genqueue.services.image_generation.replicate_client.replicate.Client"


class FakeFileOutput:
    """Mimics replicate.helpers.FileOutput."""

    def __init__(self, data: bytes, url: str = "https://replicate.delivery/abc/output.png"):
        self._data = data
        self.url = url

    def read(self) -> bytes:
        return self._data


def make_client(run_result=None, run_error=None):
    sdk = MagicMock()
    if run_error is not None:
        sdk.run.side_effect = run_error
    else:
        sdk.run.return_value = run_result
    with patch(CLIENT_PATH, return_value=sdk):
        client = ReplicateImageClient(
            api_token="r8_test",
            model_version="google/nano-banana-pro",
            face_swap_model="codeplugtech/face-swap",
        )
    return client, sdk


@pytest.mark.parametrize(
    "exception,expected",
    [
        (Exception("Request timeout after 30s"), TransientError),
        (httpx.ReadTimeout("read timed out"), TransientError),
        (Exception("HTTP 429: Too many requests"), TransientError),
        (Exception("503 Service Unavailable"), TransientError),
        (Exception("401 Unauthorized"), PermanentError),
        (Exception("Invalid API token"), PermanentError),
        (Exception("Output flagged as NSFW"), ContentPolicyError),
        (Exception("Content policy violation"), ContentPolicyError),
        (ConnectionError("connection refused"), TransientError),
        (Exception("Invalid input parameter"), PermanentError),
    ],
)
def test_classify_error(exception, expected):
    assert isinstance(classify_error(exception), expected)


def test_classify_error_passes_classified_errors_through():
    error = ContentPolicyError("blocked")

    assert classify_error(error) is error


def test_retryable_flags():
    assert TransientError.retryable is True
    assert ContentPolicyError.retryable is True
    assert PermanentError.retryable is False


@pytest.mark.asyncio
async def test_generate_builds_model_input():
    client, sdk = make_client(run_result=FakeFileOutput(b"png-bytes"))
    prompt = {"subject": {"type": "woman"}}

    result = await client.generate(
        prompt,
        aspect_ratio="3:4",
        image_size="2K",
        reference_images=[ReferenceImage(b"face", "image/jpeg", "ref-1")],
    )

    assert result.success is True
    assert result.images == [b"png-bytes"]
    assert result.mime_type == "image/png"

    assert sdk.run.call_args.args == ("google/nano-banana-pro",)
    model_input = sdk.run.call_args.kwargs["input"]
    assert json.loads(model_input["prompt"]) == prompt
    assert model_input["aspect_ratio"] == "3:4"
    assert model_input["resolution"] == "2K"
    assert model_input["output_format"] == "png"
    assert [f.read() for f in model_input["image_input"]] == [b"face"]


@pytest.mark.asyncio
async def test_generate_without_references_sends_no_image_input():
    client, sdk = make_client(run_result=[FakeFileOutput(b"one"), FakeFileOutput(b"two")])

    result = await client.generate({}, aspect_ratio="3:4", image_size="2K")

    assert result.images == [b"one", b"two"]
    assert "image_input" not in sdk.run.call_args.kwargs["input"]


@pytest.mark.asyncio
async def test_generate_text_only_output_is_a_failure():
    client, _ = make_client(run_result="I cannot create that image.")

    result = await client.generate({}, aspect_ratio="3:4", image_size="2K")

    assert result.success is False
    assert result.error == "No images generated"
    assert result.text_response == "I cannot create that image."


@pytest.mark.asyncio
async def test_generate_sdk_error_is_returned_not_raised():
    client, _ = make_client(run_error=Exception("429 rate limit"))

    result = await client.generate({}, aspect_ratio="3:4", image_size="2K")

    assert result.success is False
    assert "Rate limit exceeded" in result.error


@pytest.mark.asyncio
async def test_generate_without_token():
    client = ReplicateImageClient(
        api_token="", model_version="google/nano-banana-pro", face_swap_model="x/y"
    )

    result = await client.generate({}, aspect_ratio="3:4", image_size="2K")

    assert result.success is False
    assert "REPLICATE_API_TOKEN" in result.error


@pytest.mark.asyncio
async def test_face_swap():
    client, sdk = make_client(run_result=FakeFileOutput(b"swapped", url="https://x/out.jpg"))

    result = await client.face_swap(b"base", "image/png", b"face", "image/jpeg")

    assert result.success is True
    assert result.image == b"swapped"
    assert result.mime_type == "image/jpeg"

    assert sdk.run.call_args.args == ("codeplugtech/face-swap",)
    model_input = sdk.run.call_args.kwargs["input"]
    assert model_input["input_image"].read() == b"base"
    assert model_input["swap_image"].read() == b"face"


@pytest.mark.asyncio
async def test_face_swap_failures():
    empty, _ = make_client(run_result=None)
    broken, _ = make_client(run_error=Exception("no face detected"))

    no_output = await empty.face_swap(b"base", "image/png", b"face", "image/jpeg")
    raised = await broken.face_swap(b"base", "image/png", b"face", "image/jpeg")

    assert no_output.success is False
    assert no_output.error == "Face swap returned no image"
    assert raised.success is False
    assert "no face detected" in raised.error
