"""Input adapters turning UI gestures into board transition requests.

Drag-and-drop, keyboard shortcuts and buttons all produce the same
``TransitionRequested`` message; the board never sees the modality.
"""

import logging
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from questboard.domain.task import Bucket, Task
from questboard.models.service_models import TransitionResult
from questboard.services.task_board import TaskBoard


logger = logging.getLogger(__name__)


class InputModality(StrEnum):
    """Gesture that produced a transition request."""

    DRAG = "drag"
    KEYBOARD = "keyboard"
    BUTTON = "button"


class TransitionRequested(BaseModel):
    """Request to move a task into a bucket."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    target: Bucket
    modality: InputModality = InputModality.BUTTON


def _bucket_for_container(container_id: str | None) -> Bucket | None:
    if container_id is None:
        return None
    try:
        return Bucket(container_id.strip().lower())
    except ValueError:
        return None


def from_drag_end(
    *, task_id: str, source_container: str | None, destination_container: str | None
) -> TransitionRequested | None:
    """Translate a drag-end event.

    Returns None when the task was dropped outside a column, onto an unknown
    container, or back onto the column it came from.
    """
    source = _bucket_for_container(source_container)
    destination = _bucket_for_container(destination_container)
    if destination is None:
        logger.debug("Drop of %s outside a bucket (%r) ignored", task_id, destination_container)
        return None
    if destination == source:
        return None
    return TransitionRequested(task_id=task_id, target=destination, modality=InputModality.DRAG)


def from_toggle(task: Task, *, modality: InputModality = InputModality.BUTTON) -> TransitionRequested:
    """Request the opposite bucket of ``task`` (checkbox, button or key press)."""
    target = Bucket.PENDING if task.bucket == Bucket.COMPLETED else Bucket.COMPLETED
    return TransitionRequested(task_id=task.id, target=target, modality=modality)


async def dispatch(board: TaskBoard, event: TransitionRequested) -> TransitionResult:
    """Apply a transition request to ``board``."""
    logger.debug("Dispatching %s request for %s -> %s", event.modality, event.task_id, event.target)
    return await board.apply_transition(event.task_id, event.target)
