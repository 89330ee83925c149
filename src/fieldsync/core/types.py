"""Shared types for fieldsync.

This module defines the enums used across the queue, the uploaders and
the status layer. They are ``str`` enums so that values persist as
readable text in SQLite and JSON.
"""

from __future__ import annotations

from enum import Enum


class EntityType(str, Enum):
    """Kind of local record a queue item refers to."""

    SESSION = "SESSION"
    FRAMES = "FRAMES"
    PHASE = "PHASE"
    SETUP_CONFIG = "SETUP_CONFIG"


class SyncOperation(str, Enum):
    """Local mutation that produced a queue item."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class QueueStatus(str, Enum):
    """Lifecycle status of a queue item."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"

    @property
    def is_terminal(self) -> bool:
        """COMPLETED and ABANDONED items are never claimed again."""
        return self in (QueueStatus.COMPLETED, QueueStatus.ABANDONED)


class EntitySyncStatus(str, Enum):
    """Sync tag written back onto the owning local record."""

    LOCAL_ONLY = "LOCAL_ONLY"
    PENDING = "PENDING"
    SYNCING = "SYNCING"
    SYNCED = "SYNCED"
    CONFLICT = "CONFLICT"
    ERROR = "ERROR"


class ConnectivityState(str, Enum):
    """Network class reported by the host platform."""

    CONNECTED_WIFI = "wifi"
    CONNECTED_CELLULAR = "cellular"
    DISCONNECTED = "disconnected"

    @property
    def is_connected(self) -> bool:
        return self != ConnectivityState.DISCONNECTED


class SyncState(str, Enum):
    """Aggregate sync indicator shown to observers."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"
