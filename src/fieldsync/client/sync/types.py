"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, QueueError, UploadError: Exception classes
- ErrorKind: Failure taxonomy used by the retry policy
- QueueItem: One pending unit of work in the durable queue
- ItemOutcome, ItemResult: Result of processing one claimed item
- AggregateRunOutcome, RunResult: Result of one orchestrator run
"""

from __future__ import annotations

import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum, auto

from fieldsync.core.types import EntityType, QueueStatus, SyncOperation


class SyncError(Exception):
    """Base exception for sync errors."""


class QueueError(SyncError):
    """Queue store misuse (unknown item, closed store)."""


class ErrorKind(Enum):
    """Failure taxonomy.

    NETWORK is always retryable. Every other kind is retried within the
    budget. NOT_FOUND on a delete is a success. CONFLICT marks the owning
    record for manual resolution. DEPENDENCY means the session the item
    refers to was abandoned before reaching the server.
    """

    NETWORK = "network"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    REMOTE = "remote"
    MISSING_HANDLER = "missing_handler"
    DEPENDENCY = "dependency"
    CONFLICT = "conflict"


class UploadError(SyncError):
    """An uploader could not deliver an item.

    Attributes:
        kind: Failure category, decides how the error is reported.
    """

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.REMOTE) -> None:
        super().__init__(message)
        self.kind = kind


# =============================================================================
# Queue Item
# =============================================================================


@dataclass
class QueueItem:
    """A unit of pending work representing one local mutation.

    Attributes:
        id: Unique identifier, immutable.
        entity_type: Kind of the affected record.
        entity_id: Identifier of the affected record.
        operation: Mutation that produced this item.
        status: Lifecycle status.
        priority: Higher drains first within the same precedence class.
        retry_count: Failures so far.
        max_retries: Failures tolerated before abandonment.
        scheduled_at: Earliest epoch time the item may be (re)claimed.
        error_message: Last failure reason.
        created_at: When the item was enqueued.
        processed_at: When the item last reached COMPLETED or ABANDONED.
        claimed_at: When the item was last claimed (stale-claim detection).
        requeue_requested: A newer mutation arrived while PROCESSING; the
            item returns to PENDING instead of completing.
    """

    entity_type: EntityType
    entity_id: str
    operation: SyncOperation
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: QueueStatus = QueueStatus.PENDING
    priority: int = 0
    retry_count: int = 0
    max_retries: int = 3
    scheduled_at: float = field(default_factory=time.time)
    error_message: str | None = None
    created_at: float = field(default_factory=time.time)
    processed_at: float | None = None
    claimed_at: float | None = None
    requeue_requested: bool = False

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> QueueItem:
        """Create QueueItem from database row."""
        return cls(
            id=row["id"],
            entity_type=EntityType(row["entity_type"]),
            entity_id=row["entity_id"],
            operation=SyncOperation(row["operation"]),
            status=QueueStatus(row["status"]),
            priority=row["priority"],
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            scheduled_at=row["scheduled_at"],
            error_message=row["error_message"],
            created_at=row["created_at"],
            processed_at=row["processed_at"],
            claimed_at=row["claimed_at"],
            requeue_requested=bool(row["requeue_requested"]),
        )

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"QueueItem({self.entity_type.value}-{self.operation.value}, "
            f"entity={self.entity_id!r}, status={self.status.value}, "
            f"retries={self.retry_count}/{self.max_retries})"
        )


# =============================================================================
# Run Results
# =============================================================================


class ItemOutcome(Enum):
    """What happened to one claimed item."""

    COMPLETED = auto()
    RETRY_SCHEDULED = auto()
    ABANDONED = auto()
    REQUEUED = auto()  # Superseded while processing, back to PENDING
    CANCELLED = auto()  # Run stopped before this item was attempted
    DEFERRED = auto()  # Parent session not yet on the server


@dataclass
class ItemResult:
    """Result of processing one claimed item."""

    item: QueueItem
    outcome: ItemOutcome
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def failed(self) -> bool:
        return self.outcome in (ItemOutcome.RETRY_SCHEDULED, ItemOutcome.ABANDONED)


class AggregateRunOutcome(Enum):
    """Outcome of a whole orchestrator run."""

    NOTHING_TO_DO = auto()
    SUCCESS = auto()
    PARTIAL = auto()  # Reported as success, failures kept per item
    ALL_FAILED = auto()
    SKIPPED = auto()  # Another run was active, trigger coalesced
    DEFERRED = auto()  # Every claimed item waits on its session


@dataclass
class RunResult:
    """Result of one orchestrator run."""

    outcome: AggregateRunOutcome
    results: list[ItemResult] = field(default_factory=list)
    cancelled: bool = False
    error: str | None = None  # Run aborted by an unexpected error
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def succeeded(self) -> list[ItemResult]:
        return [
            r for r in self.results
            if r.outcome in (ItemOutcome.COMPLETED, ItemOutcome.REQUEUED)
        ]

    @property
    def failed(self) -> list[ItemResult]:
        return [r for r in self.results if r.failed]

    @property
    def attempted(self) -> list[ItemResult]:
        """Items the run actually tried to deliver."""
        return [
            r for r in self.results
            if r.outcome not in (ItemOutcome.DEFERRED, ItemOutcome.CANCELLED)
        ]

    @property
    def is_success(self) -> bool:
        """Aggregate success: progress happened or there was nothing to do."""
        return self.outcome in (
            AggregateRunOutcome.SUCCESS,
            AggregateRunOutcome.PARTIAL,
            AggregateRunOutcome.NOTHING_TO_DO,
        )

    @property
    def error_summary(self) -> str | None:
        """Message reported to the UI when every item failed."""
        if self.outcome != AggregateRunOutcome.ALL_FAILED:
            return None
        if self.error:
            return self.error
        return f"All {len(self.failed)} sync items failed"
