"""Pose frame uploader.

This module provides:
- FramesUploader: Uploads every stored frame of a session in chunks

Chunks are sent in order and the item only succeeds when every chunk is
accepted. The server upserts by frame index, so a failed item simply
re-sends all chunks on retry.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fieldsync.client.schemas import FrameBatchRequest, PoseFrameDto, parse_landmarks
from fieldsync.client.sync.retry import classify_failure
from fieldsync.client.sync.types import UploadError
from fieldsync.client.sync.workers.base import (
    BaseUploader,
    CancelledException,
    UploadContext,
    UploadStatus,
)
from fieldsync.core.types import EntityType, SyncOperation

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fieldsync.client.records import FrameSource, PoseFrame, RemoteApi
    from fieldsync.client.sync.types import QueueItem

logger = logging.getLogger(__name__)

DEFAULT_FRAME_BATCH_SIZE = 100


def chunk_frames(frames: Sequence[PoseFrameDto], size: int) -> list[list[PoseFrameDto]]:
    """Split frames into consecutive chunks of at most ``size``."""
    if size <= 0:
        raise ValueError("size must be positive")
    return [list(frames[start : start + size]) for start in range(0, len(frames), size)]


def to_dto(frame: PoseFrame) -> PoseFrameDto:
    """Convert a stored frame; unreadable landmarks are sent as an empty matrix."""
    try:
        landmarks = parse_landmarks(frame.landmarks_json)
    except ValueError:
        logger.warning("Frame %d has unreadable landmarks, sending none", frame.frame_index)
        landmarks = []
    return PoseFrameDto(
        frame_index=frame.frame_index,
        timestamp_ms=frame.timestamp_ms,
        landmarks=landmarks,
        overall_confidence=frame.overall_confidence,
    )


class FramesUploader(BaseUploader):
    """Uploader for the pose frames of a session.

    The item's entity id is the session id.
    """

    entity_type = EntityType.FRAMES
    operations = frozenset({SyncOperation.CREATE, SyncOperation.UPDATE})

    def __init__(
        self,
        frames: FrameSource,
        remote: RemoteApi,
        batch_size: int = DEFAULT_FRAME_BATCH_SIZE,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._frames = frames
        self._remote = remote
        self._batch_size = batch_size

    def parent_session_id(self, item: QueueItem) -> str | None:
        return item.entity_id

    def _do_work(self, ctx: UploadContext) -> UploadStatus:
        session_id = ctx.item.entity_id
        stored = self._frames.frames_for(session_id)
        if not stored:
            logger.info("No frames stored for session %s", session_id)
            return UploadStatus.RECORD_MISSING

        chunks = chunk_frames([to_dto(frame) for frame in stored], self._batch_size)
        for index, chunk in enumerate(chunks, start=1):
            if ctx.cancel_check():
                raise CancelledException()
            try:
                self._remote.submit_frame_batch(session_id, FrameBatchRequest(frames=chunk))
            except Exception as e:
                raise UploadError(
                    f"Frame chunk {index}/{len(chunks)} failed: {e}",
                    kind=classify_failure(e),
                ) from e
            logger.debug("Sent frame chunk %d/%d for session %s", index, len(chunks), session_id)

        logger.info("Uploaded %d frame(s) for session %s", len(stored), session_id)
        return UploadStatus.UPLOADED
