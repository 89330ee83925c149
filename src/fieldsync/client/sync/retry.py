"""Retry policy with linear backoff and failure classification.

This module provides:
- RetryPolicy: When to retry a failed item and when to give up
- classify_failure: Map any exception to an ErrorKind
- format_error: Render a failure for the queue's error_message column

Backoff is linear: the n-th failure (retry_count n-1 before the failure)
is retried ``n * base_interval`` seconds later. An item is abandoned once
its retry_count reaches max_retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fieldsync.client.api import (
    InvalidPayloadError,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
)
from fieldsync.client.sync.types import ErrorKind, UploadError
from fieldsync.core.config import MINUTE
from fieldsync.core.types import SyncOperation

if TYPE_CHECKING:
    from fieldsync.client.sync.types import QueueItem
    from fieldsync.core.config import SyncConfig

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_INTERVAL = MINUTE

# Network-related exceptions that indicate connectivity issues
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    NetworkError,
    ConnectionError,
    TimeoutError,
    OSError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """Linear backoff retry policy.

    Attributes:
        base_interval: Backoff step in seconds.
    """

    base_interval: float = DEFAULT_BASE_INTERVAL

    @classmethod
    def from_config(cls, config: SyncConfig) -> RetryPolicy:
        return cls(base_interval=config.retry_base_interval)

    def backoff(self, retry_count: int) -> float:
        """Delay before the next attempt, given retry_count before this failure."""
        return (retry_count + 1) * self.base_interval

    def next_attempt_at(self, retry_count: int, now: float) -> float:
        """Epoch time of the next attempt after a failure at ``now``."""
        return now + self.backoff(retry_count)

    def should_abandon(self, item: QueueItem) -> bool:
        """True once the item has used up its retry budget."""
        return item.retry_count >= item.max_retries

    @staticmethod
    def counts_as_success(operation: SyncOperation, kind: ErrorKind) -> bool:
        """A delete of something already gone remotely has reached its goal."""
        return operation == SyncOperation.DELETE and kind == ErrorKind.NOT_FOUND


def classify_failure(exc: BaseException) -> ErrorKind:
    """Map an exception raised while uploading to an ErrorKind."""
    if isinstance(exc, UploadError):
        return exc.kind
    if isinstance(exc, NETWORK_EXCEPTIONS):
        return ErrorKind.NETWORK
    if isinstance(exc, NotFoundError):
        return ErrorKind.NOT_FOUND
    # pydantic.ValidationError is a ValueError: a payload we could not build
    if isinstance(exc, (InvalidPayloadError, MalformedResponseError, ValueError)):
        return ErrorKind.VALIDATION
    return ErrorKind.REMOTE


def format_error(kind: ErrorKind, message: str) -> str:
    """Render a failure message, tagging every non-network kind."""
    if kind == ErrorKind.NETWORK:
        return message
    return f"[{kind.value}] {message}"
