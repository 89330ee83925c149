"""Trigger gate deciding when the orchestrator runs.

This module provides:
- TriggerGate: Single-flight runner fed by connectivity, timer and manual triggers

Triggers:
- Connectivity: a transition to an allowed connected state runs a sync
  when work is waiting (Wi-Fi always, cellular only if enabled)
- Timer: APScheduler interval job, re-armed on every connectivity change
  (short interval on Wi-Fi, long interval on cellular, none offline)
- Manual: ``trigger_immediate_sync(force_sync=True)`` bypasses the
  cellular restriction. Requests made while offline run on reconnect.

All triggers set one flag read by a single runner thread. Triggers that
arrive before the run starts collapse into it, and triggers that arrive
while a run is active are dropped: that run is already draining the
queue. The gate never retries items itself: a run in which every item
failed only schedules one extra run after the base backoff interval.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from fieldsync.client.sync.status import SyncStatusHub
from fieldsync.client.sync.types import AggregateRunOutcome
from fieldsync.core.config import SyncConfig
from fieldsync.core.types import ConnectivityState

if TYPE_CHECKING:
    from collections.abc import Callable

    from apscheduler.schedulers.base import BaseScheduler

    from fieldsync.client.sync.orchestrator import SyncOrchestrator
    from fieldsync.client.sync.queue import SyncQueue
    from fieldsync.client.sync.status import AggregateSyncState
    from fieldsync.client.sync.types import QueueItem, RunResult
    from fieldsync.core.types import EntityType, SyncOperation

logger = logging.getLogger(__name__)

PERIODIC_JOB_ID = "periodic_sync"
RETRY_JOB_ID = "sync_retry"
MAINTENANCE_JOB_ID = "queue_maintenance"


class TriggerGate:
    """Decides when to sync and runs the orchestrator on one background thread.

    Usage:
        gate = TriggerGate(orchestrator, queue, status_hub, config)
        gate.start()
        gate.on_connectivity_changed(ConnectivityState.CONNECTED_WIFI)
        gate.enqueue(EntityType.PHASE, phase.id, SyncOperation.UPDATE)
        gate.trigger_immediate_sync(force_sync=True)
        gate.stop()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        queue: SyncQueue,
        status_hub: SyncStatusHub | None = None,
        config: SyncConfig | None = None,
        scheduler_factory: Callable[[], BaseScheduler] = BackgroundScheduler,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the gate.

        Args:
            orchestrator: Orchestrator to run.
            queue: Queue the orchestrator drains (enqueue, counts, maintenance).
            status_hub: Hub for aggregate state, created if omitted.
            config: Scheduling policy.
            scheduler_factory: Builds the APScheduler scheduler on start().
            clock: Time source returning epoch seconds.
        """
        self._orchestrator = orchestrator
        self._queue = queue
        self._status_hub = status_hub or SyncStatusHub(clock=clock)
        self._config = config or SyncConfig()
        self._scheduler_factory = scheduler_factory
        self._clock = clock

        self._lock = threading.RLock()
        self._wake = threading.Condition(self._lock)
        self._stop_event = threading.Event()
        self._connectivity = self._status_hub.state.connectivity
        self._run_requested = False
        self._force_requested = False
        self._deferred_request: bool | None = None  # Force flag of an offline request

        self._scheduler: BaseScheduler | None = None
        self._thread: threading.Thread | None = None

    @property
    def status_hub(self) -> SyncStatusHub:
        return self._status_hub

    @property
    def connectivity(self) -> ConnectivityState:
        return self._connectivity

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # === Lifecycle ===

    def start(self) -> None:
        """Start the runner thread and the scheduler."""
        with self._lock:
            if self._thread is not None:
                logger.warning("Trigger gate already running")
                return
            self._stop_event.clear()

            # Claims left by a previous process can never complete
            self._queue.reclaim_stale(timeout=0)

            self._scheduler = self._scheduler_factory()
            self._scheduler.add_job(
                self._maintenance_job,
                trigger=IntervalTrigger(seconds=self._config.cleanup_interval),
                id=MAINTENANCE_JOB_ID,
                name="Queue maintenance",
                replace_existing=True,
            )
            self._scheduler.start()
            self._arm_periodic()

            self._thread = threading.Thread(target=self._run, name="SyncTriggerGate", daemon=True)
            self._thread.start()
        self._refresh_counts()
        logger.info("Trigger gate started (%s)", self._connectivity.value)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the gate. An in-flight run is cancelled before its next item.

        Args:
            timeout: Maximum time to wait for the runner thread.
        """
        with self._lock:
            if self._thread is None:
                return
            self._stop_event.set()
            self._wake.notify_all()
            thread = self._thread

        self._orchestrator.cancel()
        if thread.is_alive():
            thread.join(timeout=timeout)

        with self._lock:
            if self._scheduler is not None:
                self._scheduler.shutdown(wait=False)
                self._scheduler = None
            self._thread = None
        logger.info("Trigger gate stopped")

    # === Collaborator entry points ===

    def enqueue(
        self,
        entity_type: EntityType,
        entity_id: str,
        operation: SyncOperation,
        priority: int = 0,
    ) -> QueueItem:
        """Record a local mutation for upload."""
        item = self._queue.enqueue(entity_type, entity_id, operation, priority=priority)
        self._refresh_counts()
        return item

    def pending_count(self) -> int:
        return self._queue.pending_count()

    def aggregate_sync_state(self) -> AggregateSyncState:
        return self._status_hub.state

    def on_connectivity_changed(self, state: ConnectivityState) -> None:
        """React to a network class change reported by the platform."""
        with self._lock:
            previous = self._connectivity
            self._connectivity = state
            deferred = self._deferred_request
            if state.is_connected:
                self._deferred_request = None
            self._arm_periodic()
        self._status_hub.set_connectivity(state)

        if state == previous:
            return
        logger.info("Connectivity changed: %s -> %s", previous.value, state.value)
        if not state.is_connected:
            return

        if deferred is not None:
            self._request_run(force=deferred, reason="deferred manual request")
        elif self._allowed(state, force=False) and self._queue.pending_count() > 0:
            self._request_run(force=False, reason="connectivity")

    def trigger_immediate_sync(self, force_sync: bool = False) -> bool:
        """Request a sync now.

        Args:
            force_sync: Bypass the cellular restriction.

        Returns:
            True if a run was requested, False if it was deferred, refused,
            or dropped because a run is already active.
        """
        with self._lock:
            connectivity = self._connectivity
            if not connectivity.is_connected:
                self._deferred_request = bool(self._deferred_request) or force_sync
                logger.info("Offline, sync request deferred until reconnect")
                return False
        if not self._allowed(connectivity, force=force_sync):
            logger.info("Sync on %s not allowed without force", connectivity.value)
            return False
        return self._request_run(force=force_sync, reason="manual")

    # === Internals ===

    def _allowed(self, state: ConnectivityState, force: bool) -> bool:
        if not state.is_connected:
            return False
        if force or state == ConnectivityState.CONNECTED_WIFI:
            return True
        return self._config.sync_on_cellular

    def _interval_for(self, state: ConnectivityState) -> float | None:
        if state == ConnectivityState.CONNECTED_WIFI:
            return self._config.wifi_sync_interval
        if state == ConnectivityState.CONNECTED_CELLULAR and self._config.sync_on_cellular:
            return self._config.cellular_sync_interval
        return None

    def _arm_periodic(self) -> None:
        """Re-arm the periodic job for the current connectivity."""
        if self._scheduler is None:
            return
        interval = self._interval_for(self._connectivity)
        if interval is None:
            if self._scheduler.get_job(PERIODIC_JOB_ID) is not None:
                self._scheduler.remove_job(PERIODIC_JOB_ID)
                logger.debug("Periodic sync paused (%s)", self._connectivity.value)
            return
        self._scheduler.add_job(
            self._periodic_job,
            trigger=IntervalTrigger(seconds=interval),
            id=PERIODIC_JOB_ID,
            name="Periodic sync",
            replace_existing=True,
        )
        logger.debug("Periodic sync every %.0fs (%s)", interval, self._connectivity.value)

    def _request_run(self, force: bool, reason: str) -> bool:
        if self._orchestrator.is_active:
            logger.debug("Sync run active, dropping %s trigger", reason)
            return False
        with self._wake:
            if self._run_requested:
                logger.debug("Sync already requested, coalescing %s trigger", reason)
            else:
                logger.debug("Sync requested (%s)", reason)
            self._run_requested = True
            self._force_requested = self._force_requested or force
            self._wake.notify()
        return True

    def _run(self) -> None:
        """Runner loop: one orchestrator run per (coalesced) request."""
        logger.debug("Trigger gate runner started")
        while True:
            with self._wake:
                self._wake.wait_for(lambda: self._run_requested or self._stop_event.is_set())
                if self._stop_event.is_set():
                    break
                force = self._force_requested
                self._run_requested = False
                self._force_requested = False

            if not self._allowed(self._connectivity, force):
                logger.debug("Dropping sync request, not allowed on %s", self._connectivity.value)
                continue

            try:
                result = self._orchestrator.run_once()
            except Exception:
                logger.exception("Sync run raised")
                continue
            self._after_run(result)
        logger.debug("Trigger gate runner ended")

    def _after_run(self, result: RunResult) -> None:
        if result.outcome == AggregateRunOutcome.ALL_FAILED:
            self._schedule_retry()
        elif (
            result.is_success
            and not result.cancelled
            and result.succeeded
            and len(result.results) >= self._config.max_items_per_run
        ):
            # Batch bound reached with progress, more work is likely waiting
            self._request_run(force=False, reason="follow-up")

    def _schedule_retry(self) -> None:
        with self._lock:
            if self._scheduler is None or self._stop_event.is_set():
                return
            run_at = self._clock() + self._config.retry_base_interval
            self._scheduler.add_job(
                self._retry_job,
                trigger=DateTrigger(run_date=datetime.fromtimestamp(run_at, tz=timezone.utc)),
                id=RETRY_JOB_ID,
                name="Sync retry",
                replace_existing=True,
            )
        logger.info("Every item failed, retrying in %.0fs", self._config.retry_base_interval)

    def _periodic_job(self) -> None:
        """Job function for the periodic sync."""
        if self._allowed(self._connectivity, force=False):
            self._request_run(force=False, reason="timer")

    def _retry_job(self) -> None:
        """Job function for the one-shot retry after a failed run."""
        if self._allowed(self._connectivity, force=False):
            self._request_run(force=False, reason="retry")

    def _maintenance_job(self) -> None:
        """Job function for queue maintenance."""
        try:
            self._queue.purge_completed()
            self._queue.abandon_exhausted()
            self._refresh_counts()
        except Exception:
            logger.exception("Error during queue maintenance")

    def _refresh_counts(self) -> None:
        self._status_hub.set_counts(self._queue.pending_count(), self._queue.abandoned_count())
