"""Base uploader class with cancellation support.

This module provides:
- UploadStatus: How a successful upload reached its goal
- UploadResult: Result of an uploader execution
- UploadContext: Context passed to an uploader
- BaseUploader: Abstract base class for per-entity-type uploaders
- CancelledException: Raised when a run is stopped mid-item
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, ClassVar

from fieldsync.client.sync.retry import RetryPolicy, classify_failure
from fieldsync.core.types import EntitySyncStatus, EntityType, SyncOperation

if TYPE_CHECKING:
    from collections.abc import Callable

    from fieldsync.client.sync.types import ErrorKind, QueueItem

logger = logging.getLogger(__name__)


class UploadStatus(Enum):
    """How a successful upload reached its goal."""

    UPLOADED = auto()  # Remote now matches local
    MERGED = auto()  # Merged with server data, then pushed
    SERVER_KEPT = auto()  # Server version adopted locally
    ALREADY_SATISFIED = auto()  # Delete of something already gone
    RECORD_MISSING = auto()  # Local record no longer exists, nothing to send


@dataclass
class UploadResult:
    """Result of an uploader execution.

    Attributes:
        success: Whether the item reached its goal.
        status: How it did, when successful.
        error: Error message if failed.
        error_kind: Failure category if failed.
        cancelled: Whether the run was stopped mid-item.
        elapsed_time: Time taken in seconds.
    """

    success: bool
    status: UploadStatus | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    cancelled: bool = False
    elapsed_time: float = 0.0


@dataclass
class UploadContext:
    """Context passed to uploader execution.

    Attributes:
        item: The claimed queue item.
        cancel_check: Function to check if cancellation was requested.
    """

    item: QueueItem
    cancel_check: Callable[[], bool] = field(default=lambda: False)


class CancelledException(Exception):
    """Raised when an upload is cancelled."""


class BaseUploader(ABC):
    """Abstract base class for uploaders.

    One uploader serves one entity type and the operations it lists.
    Subclasses must implement:
    - _do_work(): Send the item to the server, return an UploadStatus
    - entity_type / operations: Class attributes

    Optional hooks:
    - parent_session_id(): Session the item depends on
    - _write_status(): Write a sync status onto the local record

    Usage:
        class MyUploader(BaseUploader):
            entity_type = EntityType.PHASE
            operations = frozenset({SyncOperation.CREATE})

            def _do_work(self, ctx: UploadContext) -> UploadStatus:
                if ctx.cancel_check():
                    raise CancelledException()
                ...
                return UploadStatus.UPLOADED

        result = MyUploader().execute(UploadContext(item))
    """

    entity_type: ClassVar[EntityType]
    operations: ClassVar[frozenset[SyncOperation]]

    def handles(self, operation: SyncOperation) -> bool:
        return operation in self.operations

    def parent_session_id(self, item: QueueItem) -> str | None:
        """Session the item refers to.

        Consulted only for mutations that must wait for their session
        to exist remotely (see ``depends_on_session``).
        """
        return None

    def set_entity_status(self, item: QueueItem, status: EntitySyncStatus) -> None:
        """Write a sync status onto the record an item belongs to.

        Deleted records have nothing to write to.
        """
        if item.operation == SyncOperation.DELETE:
            return
        self._write_status(item.entity_id, status)

    def _write_status(self, entity_id: str, status: EntitySyncStatus) -> None:
        """Persist a sync status. Default: the record carries none."""

    def execute(self, ctx: UploadContext) -> UploadResult:
        """Execute the upload.

        Never raises: failures come back classified in the result.

        Args:
            ctx: Upload context with the claimed item and cancel check.

        Returns:
            UploadResult describing the outcome.
        """
        item = ctx.item
        start_time = time.time()
        try:
            status = self._do_work(ctx)
        except CancelledException:
            elapsed = time.time() - start_time
            logger.info("%s uploader: cancelled after %.2fs", item.entity_type.value, elapsed)
            return UploadResult(success=False, cancelled=True, elapsed_time=elapsed)
        except Exception as e:
            elapsed = time.time() - start_time
            kind = classify_failure(e)
            if RetryPolicy.counts_as_success(item.operation, kind):
                logger.debug("%r: already absent remotely", item)
                return UploadResult(
                    success=True, status=UploadStatus.ALREADY_SATISFIED, elapsed_time=elapsed
                )
            error_msg = str(e) or type(e).__name__
            logger.warning(
                "%s uploader failed on %r (%s): %s",
                item.entity_type.value,
                item,
                kind.value,
                error_msg,
            )
            return UploadResult(
                success=False, error=error_msg, error_kind=kind, elapsed_time=elapsed
            )

        elapsed = time.time() - start_time
        logger.debug("%r: %s in %.2fs", item, status.name, elapsed)
        return UploadResult(success=True, status=status, elapsed_time=elapsed)

    @abstractmethod
    def _do_work(self, ctx: UploadContext) -> UploadStatus:
        """Perform the actual upload.

        The implementation should check ctx.cancel_check() between remote
        calls and raise CancelledException if it returns True.

        Args:
            ctx: Upload context with the claimed item.

        Returns:
            How the item reached its goal.

        Raises:
            CancelledException: If cancellation was requested.
            Exception: Any other error, classified by the retry policy.
        """
        ...
