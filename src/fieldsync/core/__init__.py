"""Core module - shared configuration and enums."""

from fieldsync.core.config import ServerConfig, SyncConfig
from fieldsync.core.types import (
    ConnectivityState,
    EntitySyncStatus,
    EntityType,
    QueueStatus,
    SyncOperation,
    SyncState,
)

__all__ = [
    # Config
    "ServerConfig",
    "SyncConfig",
    # Types
    "ConnectivityState",
    "EntitySyncStatus",
    "EntityType",
    "QueueStatus",
    "SyncOperation",
    "SyncState",
]
