"""Offline sync engine for recording sessions and annotations.

Architecture:
    local mutation → SyncQueue → TriggerGate → SyncOrchestrator → Uploaders → RemoteApi

Components:
- **SyncQueue**: Durable SQLite queue of pending mutations
- **TriggerGate**: Decides when to sync (connectivity, timer, manual)
- **SyncOrchestrator**: Drains one bounded batch per run, applies retry policy
- **Uploaders**: One per entity type (sessions, frames, phases, setup configs)
- **ConflictResolver**: Pure policy deciding which version survives
- **SyncStatusHub**: Observable aggregate state for status indicators

All public symbols are re-exported here.
"""

from fieldsync.client.sync.domain import (
    ConflictDecision,
    ConflictInfo,
    ConflictResolution,
    ConflictResolver,
    InvalidTransitionError,
    describe_conflict,
    suggested_action_text,
)
from fieldsync.client.sync.gate import TriggerGate
from fieldsync.client.sync.orchestrator import OrchestratorState, SyncOrchestrator
from fieldsync.client.sync.queue import SyncQueue
from fieldsync.client.sync.retry import (
    DEFAULT_BASE_INTERVAL,
    DEFAULT_MAX_RETRIES,
    NETWORK_EXCEPTIONS,
    RetryPolicy,
    classify_failure,
    format_error,
)
from fieldsync.client.sync.status import AggregateSyncState, SyncStatusHub
from fieldsync.client.sync.types import (
    AggregateRunOutcome,
    ErrorKind,
    ItemOutcome,
    ItemResult,
    QueueError,
    QueueItem,
    RunResult,
    SyncError,
    UploadError,
)
from fieldsync.client.sync.workers import (
    BaseUploader,
    CancelledException,
    FramesUploader,
    PhaseUploader,
    SessionUploader,
    SetupConfigUploader,
    UploadContext,
    UploadResult,
    UploadStatus,
)

__all__ = [
    # Queue
    "SyncQueue",
    "QueueItem",
    # Orchestration
    "OrchestratorState",
    "SyncOrchestrator",
    "TriggerGate",
    "AggregateRunOutcome",
    "ItemOutcome",
    "ItemResult",
    "RunResult",
    # Status
    "AggregateSyncState",
    "SyncStatusHub",
    # Retry
    "DEFAULT_BASE_INTERVAL",
    "DEFAULT_MAX_RETRIES",
    "NETWORK_EXCEPTIONS",
    "RetryPolicy",
    "classify_failure",
    "format_error",
    # Conflicts
    "ConflictDecision",
    "ConflictInfo",
    "ConflictResolution",
    "ConflictResolver",
    "describe_conflict",
    "suggested_action_text",
    # Errors
    "ErrorKind",
    "InvalidTransitionError",
    "QueueError",
    "SyncError",
    "UploadError",
    # Uploaders
    "BaseUploader",
    "CancelledException",
    "FramesUploader",
    "PhaseUploader",
    "SessionUploader",
    "SetupConfigUploader",
    "UploadContext",
    "UploadResult",
    "UploadStatus",
]
