"""Service error hierarchy for the generation queue.

This module defines the exception hierarchy for queue and pipeline errors:
- QueueError: Errors returned to callers of the queue store (cancellation)
- PipelineError: Errors that end one queue item's processing as failed

Every error carries a stable `kind` string so callers and logs can tell
failure categories apart without matching on class names.
"""


class QueueError(Exception):
    """Base exception for queue store errors."""

    kind: str = "queue_error"


class QueueItemNotFoundError(QueueError):
    """Queue item does not exist (already cancelled or never enqueued)."""

    kind = "not_found"


class InvalidQueueStateError(QueueError):
    """Operation not allowed for the item's current status.

    Examples:
    - Cancelling a completed item
    - Cancelling a failed item
    """

    kind = "invalid_state"


class PipelineError(Exception):
    """Base exception for generation pipeline errors.

    Attributes:
        text_response: Text returned by the generation service alongside the
            failure, recorded on the generation as api_response_text
    """

    kind: str = "pipeline_error"

    def __init__(self, message: str, text_response: str | None = None):
        super().__init__(message)
        self.text_response = text_response


class GenerationFailedError(PipelineError):
    """Generation service returned no usable image and no fallback applies."""

    kind = "generation_failed"


class FallbackExhaustedError(PipelineError):
    """Primary attempt failed and the reference-less retry failed too."""

    kind = "fallback_exhausted"


class ReferenceLoadError(PipelineError):
    """A single reference photo could not be loaded (skipped, non-fatal)."""

    kind = "reference_load_failed"
