"""Queue item state machine.

States:
    PENDING -> PROCESSING -> COMPLETED
                          -> FAILED -> PROCESSING (retry)
                                    -> ABANDONED -> PENDING (manual retry)
                          -> PENDING (released, requeued)
                          -> ABANDONED

All status writes in the queue store are validated against this table.
"""

from __future__ import annotations

from fieldsync.client.sync.types import QueueError
from fieldsync.core.types import QueueStatus

# Valid state transitions
VALID_TRANSITIONS: dict[QueueStatus, set[QueueStatus]] = {
    QueueStatus.PENDING: {QueueStatus.PROCESSING},
    QueueStatus.PROCESSING: {
        QueueStatus.COMPLETED,
        QueueStatus.FAILED,
        QueueStatus.ABANDONED,
        QueueStatus.PENDING,
        QueueStatus.PROCESSING,  # Stale claim taken over
    },
    QueueStatus.FAILED: {QueueStatus.PROCESSING, QueueStatus.ABANDONED},
    QueueStatus.ABANDONED: {QueueStatus.PENDING},
    QueueStatus.COMPLETED: set(),  # Terminal
}


class InvalidTransitionError(QueueError):
    """Raised when attempting invalid state transition."""


def check_transition(current: QueueStatus, new: QueueStatus) -> None:
    """Validate a status change.

    Raises:
        InvalidTransitionError: If the table does not allow the change.
    """
    if new not in VALID_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {new.name}")


def can_transition(current: QueueStatus, new: QueueStatus) -> bool:
    return new in VALID_TRANSITIONS[current]
