"""Shared configuration classes for fieldsync.

This module defines the server connection settings and the tunables of
the sync engine (batch sizes, retry budget, scheduling intervals).
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

MINUTE = 60.0
HOUR = 60 * MINUTE
DAY = 24 * HOUR


@dataclass
class ServerConfig:
    """Configuration for connecting to the recording service.

    Attributes:
        server_url: Base URL of the server (e.g., "https://api.example.com").
        token: Bearer token for the expert account.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")


@dataclass
class SyncConfig:
    """Tunables for the offline sync engine.

    Attributes:
        max_items_per_run: Upper bound on items claimed by one orchestrator run.
        frame_batch_size: Pose frames per upload request.
        max_retries: Failures tolerated before an item is abandoned.
        retry_base_interval: Linear backoff step in seconds.
        completed_retention: Seconds a COMPLETED item is kept before purge.
        claim_timeout: Seconds after which a PROCESSING item is considered stale.
        wifi_sync_interval: Periodic sync interval on Wi-Fi.
        cellular_sync_interval: Periodic sync interval on cellular.
        sync_on_cellular: Whether automatic syncs may run on cellular.
        cleanup_interval: Seconds between queue maintenance passes.
    """

    max_items_per_run: int = 50
    frame_batch_size: int = 100
    max_retries: int = 3
    retry_base_interval: float = MINUTE
    completed_retention: float = 7 * DAY
    claim_timeout: float = 15 * MINUTE
    wifi_sync_interval: float = 15 * MINUTE
    cellular_sync_interval: float = HOUR
    sync_on_cellular: bool = False
    cleanup_interval: float = HOUR

    def __post_init__(self) -> None:
        """Validate values."""
        positive = (
            "max_items_per_run",
            "frame_batch_size",
            "retry_base_interval",
            "completed_retention",
            "claim_timeout",
            "wifi_sync_interval",
            "cellular_sync_interval",
            "cleanup_interval",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Create a SyncConfig from a JSON mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})
