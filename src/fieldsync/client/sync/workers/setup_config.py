"""Camera setup uploader.

This module provides:
- SetupConfigUploader: Stores the setup a session was recorded with
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fieldsync.client.sync.workers.base import BaseUploader, UploadContext, UploadStatus
from fieldsync.core.types import EntitySyncStatus, EntityType, SyncOperation

if TYPE_CHECKING:
    from fieldsync.client.records import RemoteApi, SetupConfigRepository
    from fieldsync.client.sync.types import QueueItem

logger = logging.getLogger(__name__)


class SetupConfigUploader(BaseUploader):
    """Uploader for camera setup configurations. Create and update both replace."""

    entity_type = EntityType.SETUP_CONFIG
    operations = frozenset({SyncOperation.CREATE, SyncOperation.UPDATE})

    def __init__(self, configs: SetupConfigRepository, remote: RemoteApi) -> None:
        self._configs = configs
        self._remote = remote

    def parent_session_id(self, item: QueueItem) -> str | None:
        config = self._configs.get(item.entity_id)
        return config.session_id if config is not None else None

    def _write_status(self, entity_id: str, status: EntitySyncStatus) -> None:
        self._configs.update_sync_status(entity_id, status)

    def _do_work(self, ctx: UploadContext) -> UploadStatus:
        config = self._configs.get(ctx.item.entity_id)
        if config is None:
            return UploadStatus.RECORD_MISSING
        self._remote.submit_setup_config(config.session_id, config.to_payload())
        logger.info("Stored setup %s for session %s", config.id, config.session_id)
        return UploadStatus.UPLOADED
