"""State transition tests for QueueItem model.

Tests focus on validating the queue item lifecycle state machine:
- Valid transitions: queued → processing → {completed, failed}
- Backward moves and moves out of terminal states are rejected
"""

import pytest

from genqueue.models.queue_item import InvalidStateTransition, QueueItem, QueueStatus


def make_item(status: QueueStatus = QueueStatus.QUEUED) -> QueueItem:
    return QueueItem(prompt_json={"subject": {"type": "woman"}}, status=status)


def test_valid_state_transitions():
    """Happy path: queued → processing → completed."""
    item = make_item()

    item.transition_to(QueueStatus.PROCESSING)
    assert item.status == QueueStatus.PROCESSING
    assert not item.is_terminal

    item.transition_to(QueueStatus.COMPLETED)
    assert item.status == QueueStatus.COMPLETED
    assert item.is_terminal


def test_processing_can_fail():
    item = make_item(QueueStatus.PROCESSING)

    item.transition_to(QueueStatus.FAILED)

    assert item.status == QueueStatus.FAILED
    assert item.is_terminal


@pytest.mark.parametrize(
    "current,target",
    [
        (QueueStatus.QUEUED, QueueStatus.COMPLETED),
        (QueueStatus.QUEUED, QueueStatus.FAILED),
        (QueueStatus.QUEUED, QueueStatus.QUEUED),
        (QueueStatus.PROCESSING, QueueStatus.QUEUED),
        (QueueStatus.PROCESSING, QueueStatus.PROCESSING),
        (QueueStatus.COMPLETED, QueueStatus.FAILED),
        (QueueStatus.COMPLETED, QueueStatus.PROCESSING),
        (QueueStatus.FAILED, QueueStatus.COMPLETED),
        (QueueStatus.FAILED, QueueStatus.QUEUED),
    ],
)
def test_invalid_state_transition_raises_exception(current, target):
    """Skipping steps, repeating a status, or leaving a terminal state is rejected."""
    item = make_item(current)

    with pytest.raises(InvalidStateTransition) as exc_info:
        item.transition_to(target)

    assert current.value in str(exc_info.value)
    assert item.status == current


def test_new_item_defaults():
    item = make_item()

    assert item.id
    assert item.created_at is not None
    assert item.started_at is None
    assert item.completed_at is None
    assert item.google_search is False
    assert item.safety_override is False
