"""Sync orchestrator draining the durable queue.

This module provides:
- OrchestratorState: Whether a run is in progress
- SyncOrchestrator: Runs one bounded pass over the queue

One run:
1. Claims up to ``max_items_per_run`` items in precedence order
2. Holds back records whose session is not yet on the server
3. Dispatches each item to the uploader registered for its entity type
4. Marks each item completed, failed with backoff, or abandoned, and
   writes the matching sync status onto the local record
5. Publishes the aggregate outcome to the status hub

Outcome table:
    | Uploader result        | Queue transition      | Record status |
    |------------------------|-----------------------|---------------|
    | success                | COMPLETED             | SYNCED        |
    | success, requeued      | PENDING               | PENDING       |
    | failure, budget left   | FAILED (+backoff)     | PENDING       |
    | failure, budget spent  | FAILED -> ABANDONED   | ERROR         |
    | conflict (manual)      | FAILED / ABANDONED    | CONFLICT      |
    | cancelled              | PENDING (no attempt)  | unchanged     |
    | session still pending  | PENDING (no attempt)  | unchanged     |
    | session abandoned      | FAILED / ABANDONED    | PENDING/ERROR |

A run in which every item was held back reports DEFERRED, not success.
Only one run is active at a time: a concurrent call returns SKIPPED.
No exception raised by a collaborator escapes run_once().
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum, auto
from typing import TYPE_CHECKING

from fieldsync.client.sync.domain.precedence import depends_on_session
from fieldsync.client.sync.retry import RetryPolicy, format_error
from fieldsync.client.sync.types import (
    AggregateRunOutcome,
    ErrorKind,
    ItemOutcome,
    ItemResult,
    RunResult,
)
from fieldsync.client.sync.workers import (
    FramesUploader,
    PhaseUploader,
    SessionUploader,
    SetupConfigUploader,
    UploadContext,
    UploadStatus,
)
from fieldsync.core.config import SyncConfig
from fieldsync.core.types import EntitySyncStatus, EntityType, QueueStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from fieldsync.client.records import (
        FrameSource,
        PhaseRepository,
        RemoteApi,
        SessionRepository,
        SetupConfigRepository,
    )
    from fieldsync.client.sync.domain.conflicts import ConflictResolver
    from fieldsync.client.sync.queue import SyncQueue
    from fieldsync.client.sync.status import SyncStatusHub
    from fieldsync.client.sync.types import QueueItem
    from fieldsync.client.sync.workers import BaseUploader

logger = logging.getLogger(__name__)


class OrchestratorState(Enum):
    """Whether a run is in progress."""

    IDLE = auto()
    RUNNING = auto()


class SyncOrchestrator:
    """Drains the queue in bounded, mutually exclusive runs.

    Usage:
        orchestrator = SyncOrchestrator.create(
            queue, sessions=sessions, phases=phases, frames=frames, remote=api
        )
        result = orchestrator.run_once()
        if result.outcome == AggregateRunOutcome.ALL_FAILED:
            ...  # schedule a retry
    """

    def __init__(
        self,
        queue: SyncQueue,
        uploaders: Iterable[BaseUploader] = (),
        status_hub: SyncStatusHub | None = None,
        config: SyncConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            queue: Durable queue to drain.
            uploaders: One uploader per entity type.
            status_hub: Optional hub receiving aggregate state.
            config: Engine tunables (batch bound, backoff step).
            retry_policy: Backoff policy, derived from config by default.
            clock: Time source returning epoch seconds.
        """
        self._queue = queue
        self._config = config or SyncConfig()
        self._retry_policy = retry_policy or RetryPolicy.from_config(self._config)
        self._status_hub = status_hub
        self._clock = clock

        self._uploaders: dict[EntityType, BaseUploader] = {}
        for uploader in uploaders:
            self.register_uploader(uploader)

        self._state = OrchestratorState.IDLE
        self._run_lock = threading.Lock()
        self._cancel_event = threading.Event()

    @classmethod
    def create(
        cls,
        queue: SyncQueue,
        *,
        sessions: SessionRepository,
        phases: PhaseRepository,
        frames: FrameSource,
        remote: RemoteApi,
        setup_configs: SetupConfigRepository | None = None,
        resolver: ConflictResolver | None = None,
        status_hub: SyncStatusHub | None = None,
        config: SyncConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> SyncOrchestrator:
        """Build an orchestrator with the standard uploaders.

        Without a setup config repository, SETUP_CONFIG items have no
        uploader and fail until abandoned.
        """
        config = config or SyncConfig()
        uploaders: list[BaseUploader] = [
            SessionUploader(sessions, remote, resolver),
            FramesUploader(frames, remote, batch_size=config.frame_batch_size),
            PhaseUploader(phases, remote),
        ]
        if setup_configs is not None:
            uploaders.append(SetupConfigUploader(setup_configs, remote))
        return cls(queue, uploaders, status_hub=status_hub, config=config, clock=clock)

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == OrchestratorState.RUNNING

    def register_uploader(self, uploader: BaseUploader) -> None:
        """Register the uploader for its entity type, replacing any previous one."""
        self._uploaders[uploader.entity_type] = uploader
        logger.debug("Registered uploader for %s", uploader.entity_type.value)

    def cancel(self) -> None:
        """Stop the current run before its next item. Claimed items go back to PENDING."""
        if self.is_active:
            logger.info("Cancellation of the current sync run requested")
        self._cancel_event.set()

    # === Run ===

    def run_once(self) -> RunResult:
        """Process one bounded batch of queued work.

        Returns:
            The aggregate outcome with per-item results.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.debug("Sync run already active, skipping")
            return RunResult(outcome=AggregateRunOutcome.SKIPPED, started_at=self._clock())

        self._cancel_event.clear()
        self._state = OrchestratorState.RUNNING
        started_at = self._clock()
        if self._status_hub:
            self._status_hub.set_active(True)
        try:
            result = self._run(started_at)
        except Exception as e:
            logger.exception("Sync run aborted")
            result = RunResult(
                outcome=AggregateRunOutcome.ALL_FAILED,
                error=f"Sync run aborted: {e}",
                started_at=started_at,
            )
        finally:
            self._state = OrchestratorState.IDLE
            self._run_lock.release()

        result.finished_at = self._clock()
        self._publish(result)
        return result

    def _run(self, started_at: float) -> RunResult:
        batch = self._queue.claim_batch(self._config.max_items_per_run)
        if not batch:
            logger.debug("Nothing to sync")
            return RunResult(outcome=AggregateRunOutcome.NOTHING_TO_DO, started_at=started_at)

        logger.info("Sync run started with %d item(s)", len(batch))
        results: list[ItemResult] = []
        cancelled = False
        for index, item in enumerate(batch):
            if self._cancel_event.is_set():
                cancelled = True
                for remaining in batch[index:]:
                    self._queue.release(remaining.id)
                    results.append(ItemResult(remaining, ItemOutcome.CANCELLED))
                logger.info("Sync run cancelled, released %d item(s)", len(batch) - index)
                break
            try:
                results.append(self._process(item))
            except Exception as e:
                logger.exception("Unexpected failure processing %r", item)
                results.append(self._fail_unexpected(item, e))

        outcome = self._aggregate(results)
        logger.info(
            "Sync run finished: %s (%d succeeded, %d failed)",
            outcome.name,
            sum(1 for r in results if r.outcome in (ItemOutcome.COMPLETED, ItemOutcome.REQUEUED)),
            sum(1 for r in results if r.failed),
        )
        return RunResult(
            outcome=outcome, results=results, cancelled=cancelled, started_at=started_at
        )

    @staticmethod
    def _aggregate(results: list[ItemResult]) -> AggregateRunOutcome:
        progressed = any(
            r.outcome in (ItemOutcome.COMPLETED, ItemOutcome.REQUEUED) for r in results
        )
        failed = any(r.failed for r in results)
        if failed and not progressed:
            return AggregateRunOutcome.ALL_FAILED
        if failed:
            return AggregateRunOutcome.PARTIAL
        if not progressed and any(r.outcome == ItemOutcome.DEFERRED for r in results):
            return AggregateRunOutcome.DEFERRED
        return AggregateRunOutcome.SUCCESS

    # === Per item ===

    def _process(self, item: QueueItem) -> ItemResult:
        uploader = self._uploaders.get(item.entity_type)
        if uploader is None or not uploader.handles(item.operation):
            return self._fail(
                item,
                None,
                ErrorKind.MISSING_HANDLER,
                f"No uploader for {item.entity_type.value}-{item.operation.value}",
            )

        blocked = self._check_parent(uploader, item)
        if blocked is not None:
            return blocked

        self._set_entity_status(uploader, item, EntitySyncStatus.SYNCING)
        result = uploader.execute(UploadContext(item, cancel_check=self._cancel_event.is_set))

        if result.cancelled:
            self._queue.release(item.id)
            self._set_entity_status(uploader, item, EntitySyncStatus.PENDING)
            return ItemResult(item, ItemOutcome.CANCELLED)

        if not result.success:
            return self._fail(
                item,
                uploader,
                result.error_kind or ErrorKind.REMOTE,
                result.error or "Upload failed",
            )

        updated = self._queue.mark_completed(item.id)
        if updated.status == QueueStatus.PENDING:
            self._set_entity_status(uploader, item, EntitySyncStatus.PENDING)
            return ItemResult(updated, ItemOutcome.REQUEUED)
        if result.status != UploadStatus.RECORD_MISSING:
            self._set_entity_status(uploader, item, EntitySyncStatus.SYNCED)
        return ItemResult(updated, ItemOutcome.COMPLETED)

    def _check_parent(self, uploader: BaseUploader, item: QueueItem) -> ItemResult | None:
        """Hold back an item whose session is not on the server yet.

        While the session create is still live the item waits, without an
        attempt, until at least the create's next retry. Once the create is
        abandoned the item fails like any other attempt, so it reaches
        ABANDONED and is surfaced instead of waiting forever.
        """
        if not depends_on_session(item.entity_type, item.operation):
            return None
        parent_id = uploader.parent_session_id(item)
        if parent_id is None:
            return None
        blocking = self._queue.unsynced_session_create(parent_id)
        if blocking is None:
            return None

        if blocking.status == QueueStatus.ABANDONED:
            return self._fail(
                item,
                uploader,
                ErrorKind.DEPENDENCY,
                f"Session {parent_id} was abandoned before reaching the server",
            )

        not_before = max(
            blocking.scheduled_at, self._clock() + self._retry_policy.base_interval
        )
        self._queue.release(item.id, not_before=not_before)
        logger.debug("Deferred %r until session %s exists remotely", item, parent_id)
        return ItemResult(item, ItemOutcome.DEFERRED)

    def _fail(
        self,
        item: QueueItem,
        uploader: BaseUploader | None,
        kind: ErrorKind,
        message: str,
    ) -> ItemResult:
        """Record a failed attempt: backoff, or abandon once the budget is spent."""
        error_message = format_error(kind, message)
        next_attempt_at = self._retry_policy.next_attempt_at(item.retry_count, self._clock())
        updated = self._queue.mark_failed(item.id, error_message, next_attempt_at)

        if self._retry_policy.should_abandon(updated):
            updated = self._queue.mark_abandoned(item.id)
            outcome = ItemOutcome.ABANDONED
            entity_status = EntitySyncStatus.ERROR
            logger.error(
                "Abandoned %r after %d attempt(s): %s", updated, updated.retry_count, error_message
            )
        else:
            outcome = ItemOutcome.RETRY_SCHEDULED
            entity_status = EntitySyncStatus.PENDING
            logger.warning(
                "%r failed, retry in %.0fs: %s",
                updated,
                next_attempt_at - self._clock(),
                error_message,
            )

        if kind == ErrorKind.CONFLICT:
            entity_status = EntitySyncStatus.CONFLICT
        if uploader is not None:
            self._set_entity_status(uploader, item, entity_status)
        return ItemResult(updated, outcome, error=error_message, error_kind=kind)

    def _fail_unexpected(self, item: QueueItem, error: Exception) -> ItemResult:
        """Last-resort failure path when processing itself broke."""
        try:
            return self._fail(item, self._uploaders.get(item.entity_type), ErrorKind.REMOTE, str(error))
        except Exception:
            logger.exception("Could not record failure of %r, left for stale reclaim", item)
            return ItemResult(
                item,
                ItemOutcome.RETRY_SCHEDULED,
                error=str(error),
                error_kind=ErrorKind.REMOTE,
            )

    @staticmethod
    def _set_entity_status(
        uploader: BaseUploader, item: QueueItem, status: EntitySyncStatus
    ) -> None:
        try:
            uploader.set_entity_status(item, status)
        except Exception:
            logger.warning(
                "Could not write %s onto %s %s",
                status.value,
                item.entity_type.value,
                item.entity_id,
                exc_info=True,
            )

    # === Reporting ===

    def _publish(self, result: RunResult) -> None:
        if not self._status_hub:
            return
        try:
            pending = self._queue.pending_count()
            abandoned = self._queue.abandoned_count()
        except Exception:
            logger.warning("Could not read queue counts", exc_info=True)
            pending, abandoned = self._status_hub.state.pending_count, 0
        if result.outcome == AggregateRunOutcome.ALL_FAILED:
            self._status_hub.record_error(result.error_summary or "Sync failed", pending, abandoned)
        elif result.is_success:
            self._status_hub.record_success(pending, abandoned)
        else:
            self._status_hub.set_counts(pending, abandoned)
        self._status_hub.set_active(False)
