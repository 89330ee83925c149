"""Uploaders for queued sync work.

This package provides one uploader per entity type:
- BaseUploader: Abstract base class with cancellation support
- SessionUploader: Session create and update (with conflict resolution)
- FramesUploader: Chunked pose frame upload
- PhaseUploader: Phase annotation create, update and delete
- SetupConfigUploader: Camera setup configuration

Usage:
    from fieldsync.client.sync.workers import PhaseUploader, UploadContext

    uploader = PhaseUploader(phases, remote)
    result = uploader.execute(UploadContext(item))
"""

from fieldsync.client.sync.workers.base import (
    BaseUploader,
    CancelledException,
    UploadContext,
    UploadResult,
    UploadStatus,
)
from fieldsync.client.sync.workers.frames import FramesUploader, chunk_frames
from fieldsync.client.sync.workers.phase import PhaseUploader
from fieldsync.client.sync.workers.session import SessionUploader
from fieldsync.client.sync.workers.setup_config import SetupConfigUploader

__all__ = [
    # Base
    "BaseUploader",
    "CancelledException",
    "UploadContext",
    "UploadResult",
    "UploadStatus",
    # Uploaders
    "FramesUploader",
    "PhaseUploader",
    "SessionUploader",
    "SetupConfigUploader",
    "chunk_frames",
]
