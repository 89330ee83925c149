"""Observable aggregate sync state.

This module provides:
- AggregateSyncState: Immutable snapshot of what the sync engine is doing
- SyncStatusHub: Holds the latest snapshot and notifies subscribers

Status indicators and dashboards subscribe to the hub instead of polling
the queue. Every change produces a new snapshot; subscribers are called
outside the hub lock, and a failing subscriber never affects sync.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from fieldsync.core.types import ConnectivityState, SyncState

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateSyncState:
    """Snapshot of the sync engine.

    Attributes:
        is_active: An orchestrator run is in progress.
        pending_count: Items waiting for an attempt.
        abandoned_count: Items that need manual action.
        last_sync_time: Epoch time of the last successful run.
        last_error: Message of the last run in which every item failed.
        connectivity: Current network class.
    """

    is_active: bool = False
    pending_count: int = 0
    abandoned_count: int = 0
    last_sync_time: float | None = None
    last_error: str | None = None
    connectivity: ConnectivityState = ConnectivityState.DISCONNECTED

    @property
    def indicator(self) -> SyncState:
        """Single state for a status icon."""
        if not self.connectivity.is_connected:
            return SyncState.OFFLINE
        if self.is_active:
            return SyncState.SYNCING
        if self.last_error:
            return SyncState.ERROR
        return SyncState.IDLE

    def to_message(self) -> dict[str, Any]:
        """Convert to a JSON-ready mapping."""
        return {
            "type": "status",
            "state": self.indicator.value,
            "is_active": self.is_active,
            "pending_count": self.pending_count,
            "abandoned_count": self.abandoned_count,
            "last_sync_time": self.last_sync_time,
            "last_error": self.last_error,
            "connectivity": self.connectivity.value,
        }


class SyncStatusHub:
    """Thread-safe holder of the latest AggregateSyncState."""

    def __init__(
        self,
        initial: AggregateSyncState | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._state = initial or AggregateSyncState()
        self._clock = clock
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[AggregateSyncState], None]] = []

    @property
    def state(self) -> AggregateSyncState:
        """Latest snapshot."""
        with self._lock:
            return self._state

    def subscribe(
        self, callback: Callable[[AggregateSyncState], None]
    ) -> Callable[[], None]:
        """Register a callback for new snapshots.

        Returns:
            A function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _update(self, **changes: Any) -> AggregateSyncState:
        with self._lock:
            new_state = replace(self._state, **changes)
            if new_state == self._state:
                return new_state
            self._state = new_state
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(new_state)
            except Exception:
                logger.exception("Sync status subscriber failed")
        return new_state

    def set_active(self, active: bool) -> AggregateSyncState:
        return self._update(is_active=active)

    def set_connectivity(self, connectivity: ConnectivityState) -> AggregateSyncState:
        return self._update(connectivity=connectivity)

    def set_counts(self, pending: int, abandoned: int) -> AggregateSyncState:
        return self._update(pending_count=pending, abandoned_count=abandoned)

    def record_success(self, pending: int, abandoned: int) -> AggregateSyncState:
        """A run succeeded: stamp the sync time and clear the error."""
        return self._update(
            last_sync_time=self._clock(),
            last_error=None,
            pending_count=pending,
            abandoned_count=abandoned,
        )

    def record_error(self, message: str, pending: int, abandoned: int) -> AggregateSyncState:
        return self._update(last_error=message, pending_count=pending, abandoned_count=abandoned)
