"""Session uploader.

This module provides:
- SessionUploader: Creates sessions remotely and pushes session updates

SESSION-UPDATE consults the conflict resolver when the server already
holds a snapshot that differs from the local record.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fieldsync.client.api import APIError, NetworkError
from fieldsync.client.sync.domain.conflicts import (
    ConflictResolution,
    ConflictResolver,
    describe_conflict,
)
from fieldsync.client.sync.types import ErrorKind, UploadError
from fieldsync.client.sync.workers.base import BaseUploader, UploadContext, UploadStatus
from fieldsync.core.types import EntitySyncStatus, EntityType, SyncOperation

if TYPE_CHECKING:
    from fieldsync.client.records import (
        LocalSession,
        RemoteApi,
        RemoteSession,
        SessionRepository,
    )
    from fieldsync.client.sync.types import QueueItem

logger = logging.getLogger(__name__)


class SessionUploader(BaseUploader):
    """Uploader for recording sessions.

    CREATE sends the session metadata. UPDATE fetches the server
    snapshot, resolves any conflict, then pushes the trim boundaries.
    """

    entity_type = EntityType.SESSION
    operations = frozenset({SyncOperation.CREATE, SyncOperation.UPDATE})

    def __init__(
        self,
        sessions: SessionRepository,
        remote: RemoteApi,
        resolver: ConflictResolver | None = None,
    ) -> None:
        self._sessions = sessions
        self._remote = remote
        self._resolver = resolver or ConflictResolver()

    def parent_session_id(self, item: QueueItem) -> str | None:
        return item.entity_id

    def _write_status(self, entity_id: str, status: EntitySyncStatus) -> None:
        self._sessions.update_sync_status(entity_id, status)

    def _do_work(self, ctx: UploadContext) -> UploadStatus:
        session = self._sessions.get(ctx.item.entity_id)
        if session is None:
            logger.info("Session %s no longer exists locally", ctx.item.entity_id)
            return UploadStatus.RECORD_MISSING

        if ctx.item.operation == SyncOperation.CREATE:
            self._remote.create_session(session.create_request())
            logger.info("Created session %s remotely", session.id)
            return UploadStatus.UPLOADED
        return self._update(session)

    def _fetch_remote(self, session_id: str) -> RemoteSession | None:
        """Server snapshot, or None when unavailable.

        A lookup rejected by the server does not block the push.
        """
        try:
            return self._remote.get_session(session_id)
        except NetworkError:
            raise
        except APIError as e:
            logger.warning("Could not fetch session %s for conflict check: %s", session_id, e)
            return None

    def _update(self, session: LocalSession) -> UploadStatus:
        status = UploadStatus.UPLOADED
        snapshot = self._fetch_remote(session.id)

        if snapshot is not None:
            info = self._resolver.detect_session_conflict(session, snapshot)
            if info is not None:
                decision = info.decision
                logger.info(
                    "%s: %s (%s)",
                    describe_conflict(info),
                    decision.resolution.name,
                    decision.reason,
                )
                if decision.resolution == ConflictResolution.MANUAL:
                    raise UploadError(describe_conflict(info), kind=ErrorKind.CONFLICT)
                if decision.resolution == ConflictResolution.USE_SERVER:
                    self._sessions.update_from_merge(
                        session.id, self._resolver.adopt_server(session, snapshot)
                    )
                    return UploadStatus.SERVER_KEPT
                if decision.resolution == ConflictResolution.MERGE:
                    session = self._resolver.merge_session(session, snapshot)
                    self._sessions.update_from_merge(session.id, session)
                    status = UploadStatus.MERGED

        trim = session.trim_request()
        if trim is not None:
            self._remote.set_trim(session.id, trim)
            logger.info(
                "Pushed trim %d-%d for session %s", trim.start_frame, trim.end_frame, session.id
            )
        return status
