"""Phase annotation uploader.

This module provides:
- PhaseUploader: Creates, replaces and deletes phase annotations remotely

Phase annotations are authored on the device, so the local version is
always pushed as-is. A delete of a phase the server no longer has
counts as success.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fieldsync.client.records import DeleteOutcome
from fieldsync.client.sync.workers.base import BaseUploader, UploadContext, UploadStatus
from fieldsync.core.types import EntitySyncStatus, EntityType, SyncOperation

if TYPE_CHECKING:
    from fieldsync.client.records import PhaseRepository, RemoteApi
    from fieldsync.client.sync.types import QueueItem

logger = logging.getLogger(__name__)


class PhaseUploader(BaseUploader):
    """Uploader for phase annotations."""

    entity_type = EntityType.PHASE
    operations = frozenset({SyncOperation.CREATE, SyncOperation.UPDATE, SyncOperation.DELETE})

    def __init__(self, phases: PhaseRepository, remote: RemoteApi) -> None:
        self._phases = phases
        self._remote = remote

    def parent_session_id(self, item: QueueItem) -> str | None:
        phase = self._phases.get(item.entity_id)
        return phase.session_id if phase is not None else None

    def _write_status(self, entity_id: str, status: EntitySyncStatus) -> None:
        self._phases.update_sync_status(entity_id, status)

    def _do_work(self, ctx: UploadContext) -> UploadStatus:
        phase_id = ctx.item.entity_id

        if ctx.item.operation == SyncOperation.DELETE:
            if self._remote.delete_phase(phase_id) == DeleteOutcome.NOT_FOUND:
                logger.info("Phase %s was already deleted remotely", phase_id)
                return UploadStatus.ALREADY_SATISFIED
            logger.info("Deleted phase %s remotely", phase_id)
            return UploadStatus.UPLOADED

        phase = self._phases.get(phase_id)
        if phase is None:
            logger.info("Phase %s no longer exists locally", phase_id)
            return UploadStatus.RECORD_MISSING

        payload = phase.to_payload()
        if ctx.item.operation == SyncOperation.CREATE:
            self._remote.create_phase(payload)
            logger.info("Created phase %s (%s) remotely", phase_id, phase.phase_name)
        else:
            self._remote.update_phase(phase_id, payload)
            logger.info("Replaced phase %s (%s) remotely", phase_id, phase.phase_name)
        return UploadStatus.UPLOADED
