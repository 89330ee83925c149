"""Tests for the per-entity-type uploaders."""

from __future__ import annotations

import pytest

from fieldsync.client.api import APIError, NetworkError, NotFoundError
from fieldsync.client.records import LocalSession, RemoteSession
from fieldsync.client.sync.domain.conflicts import (
    ConflictDecision,
    ConflictResolution,
    ConflictResolver,
)
from fieldsync.client.sync.types import ErrorKind, QueueItem
from fieldsync.client.sync.workers import (
    FramesUploader,
    PhaseUploader,
    SessionUploader,
    SetupConfigUploader,
    UploadContext,
    UploadStatus,
)
from fieldsync.client.sync.workers.frames import chunk_frames
from fieldsync.core.types import EntitySyncStatus, EntityType, SyncOperation

from tests.client.conftest import (
    T0,
    FakeRemote,
    InMemoryFrames,
    InMemoryPhases,
    InMemorySessions,
    InMemorySetupConfigs,
    make_frames,
    make_phase,
    make_session,
    make_setup_config,
)


def ctx_for(entity_type: EntityType, entity_id: str, operation: SyncOperation) -> UploadContext:
    return UploadContext(item=QueueItem(entity_type, entity_id, operation))


class ManualResolver(ConflictResolver):
    """Resolver that leaves every session conflict to the user."""

    def resolve_session_conflict(self, local, remote, fields=()):  # type: ignore[no-untyped-def]
        return ConflictDecision(ConflictResolution.MANUAL, fields, auto_resolvable=False)


class TestSessionUploader:
    """Tests for SessionUploader."""

    @pytest.fixture
    def uploader(self, sessions: InMemorySessions, remote: FakeRemote) -> SessionUploader:
        return SessionUploader(sessions, remote)

    def remote_snapshot(self, **overrides: object) -> RemoteSession:
        values: dict[str, object] = {
            "id": "s1",
            "exercise_type": "SQUAT",
            "exercise_name": "Back squat",
            "status": "PROCESSING",
            "updated_at": T0,
        }
        values.update(overrides)
        return RemoteSession(**values)  # type: ignore[arg-type]

    def test_create(
        self, uploader: SessionUploader, sessions: InMemorySessions, remote: FakeRemote
    ) -> None:
        sessions.add(make_session(frame_rate=60))

        result = uploader.execute(ctx_for(EntityType.SESSION, "s1", SyncOperation.CREATE))

        assert result.success
        assert result.status == UploadStatus.UPLOADED
        assert remote.methods() == ["create_session"]
        assert remote.sessions["s1"].frame_rate == 60

    def test_missing_local_record(self, uploader: SessionUploader, remote: FakeRemote) -> None:
        """A session deleted locally has nothing left to send."""
        result = uploader.execute(ctx_for(EntityType.SESSION, "gone", SyncOperation.CREATE))

        assert result.success
        assert result.status == UploadStatus.RECORD_MISSING
        assert remote.calls == []

    def test_update_pushes_trim(
        self, uploader: SessionUploader, sessions: InMemorySessions, remote: FakeRemote
    ) -> None:
        sessions.add(make_session(trim_start_frame=12, trim_end_frame=180))

        result = uploader.execute(ctx_for(EntityType.SESSION, "s1", SyncOperation.UPDATE))

        assert result.status == UploadStatus.UPLOADED
        assert remote.methods() == ["get_session", "set_trim"]
        assert remote.trims["s1"].start_frame == 12
        assert remote.trims["s1"].end_frame == 180

    def test_update_without_trim_sends_nothing(
        self, uploader: SessionUploader, sessions: InMemorySessions, remote: FakeRemote
    ) -> None:
        sessions.add(make_session())

        result = uploader.execute(ctx_for(EntityType.SESSION, "s1", SyncOperation.UPDATE))

        assert result.status == UploadStatus.UPLOADED
        assert remote.methods() == ["get_session"]

    def test_newer_server_is_adopted(
        self, uploader: SessionUploader, sessions: InMemorySessions, remote: FakeRemote
    ) -> None:
        """USE_SERVER rewrites the local session and pushes nothing."""
        sessions.add(make_session(trim_start_frame=1, trim_end_frame=9, updated_at=T0 - 60))
        remote.sessions["s1"] = self.remote_snapshot(frame_count=400)

        result = uploader.execute(ctx_for(EntityType.SESSION, "s1", SyncOperation.UPDATE))

        assert result.status == UploadStatus.SERVER_KEPT
        assert "set_trim" not in remote.methods()
        adopted = sessions.get("s1")
        assert adopted.status == "PROCESSING"
        assert adopted.frame_count == 400
        assert adopted.trim_start_frame is None

    def test_server_scores_are_merged(
        self, uploader: SessionUploader, sessions: InMemorySessions, remote: FakeRemote
    ) -> None:
        """MERGE keeps the local record, fills in scores, then pushes the trim."""
        sessions.add(make_session(updated_at=T0 - 60, frame_count=300))
        remote.sessions["s1"] = self.remote_snapshot(
            quality_score=0.91, trim_start_frame=4, trim_end_frame=280
        )

        result = uploader.execute(ctx_for(EntityType.SESSION, "s1", SyncOperation.UPDATE))

        assert result.status == UploadStatus.MERGED
        merged = sessions.get("s1")
        assert merged.quality_score == 0.91
        assert merged.frame_count == 300
        assert len(sessions.merges) == 1
        assert remote.methods() == ["get_session", "set_trim"]
        assert remote.trims["s1"].end_frame == 280

    def test_newer_local_is_pushed(
        self, uploader: SessionUploader, sessions: InMemorySessions, remote: FakeRemote
    ) -> None:
        sessions.add(make_session(trim_start_frame=0, trim_end_frame=50, updated_at=T0 + 10))
        remote.sessions["s1"] = self.remote_snapshot()

        result = uploader.execute(ctx_for(EntityType.SESSION, "s1", SyncOperation.UPDATE))

        assert result.status == UploadStatus.UPLOADED
        assert sessions.merges == []
        assert remote.trims["s1"].end_frame == 50

    def test_manual_conflict_fails_with_conflict_kind(
        self, sessions: InMemorySessions, remote: FakeRemote
    ) -> None:
        uploader = SessionUploader(sessions, remote, resolver=ManualResolver())
        sessions.add(make_session())
        remote.sessions["s1"] = self.remote_snapshot()

        result = uploader.execute(ctx_for(EntityType.SESSION, "s1", SyncOperation.UPDATE))

        assert not result.success
        assert result.error_kind == ErrorKind.CONFLICT
        assert "modified on both" in result.error

    def test_snapshot_lookup_rejected_still_pushes(
        self, uploader: SessionUploader, sessions: InMemorySessions, remote: FakeRemote
    ) -> None:
        """A failed conflict check does not block the update."""
        sessions.add(make_session(trim_start_frame=2, trim_end_frame=20))
        remote.script("get_session", APIError("Internal error", 500))

        result = uploader.execute(ctx_for(EntityType.SESSION, "s1", SyncOperation.UPDATE))

        assert result.status == UploadStatus.UPLOADED
        assert "set_trim" in remote.methods()

    def test_network_failure_is_classified(
        self, uploader: SessionUploader, sessions: InMemorySessions, remote: FakeRemote
    ) -> None:
        sessions.add(make_session())
        remote.script("get_session", NetworkError("Connection refused"))

        result = uploader.execute(ctx_for(EntityType.SESSION, "s1", SyncOperation.UPDATE))

        assert not result.success
        assert result.error_kind == ErrorKind.NETWORK
        assert result.error == "Connection refused"

    def test_status_written_to_repository(
        self, uploader: SessionUploader, sessions: InMemorySessions
    ) -> None:
        item = QueueItem(EntityType.SESSION, "s1", SyncOperation.UPDATE)
        uploader.set_entity_status(item, EntitySyncStatus.SYNCING)
        assert sessions.status_history["s1"] == [EntitySyncStatus.SYNCING]

    def test_parent_is_the_session_itself(self, uploader: SessionUploader) -> None:
        item = QueueItem(EntityType.SESSION, "s1", SyncOperation.UPDATE)
        assert uploader.parent_session_id(item) == "s1"


class TestChunkFrames:
    """Tests for chunk_frames."""

    def test_chunks_keep_order(self) -> None:
        assert chunk_frames([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]  # type: ignore[list-item]

    def test_empty(self) -> None:
        assert chunk_frames([], 100) == []

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            chunk_frames([], 0)


class TestFramesUploader:
    """Tests for FramesUploader."""

    @pytest.fixture
    def uploader(self, frames: InMemoryFrames, remote: FakeRemote) -> FramesUploader:
        return FramesUploader(frames, remote, batch_size=100)

    def test_uploads_in_chunks(
        self, uploader: FramesUploader, frames: InMemoryFrames, remote: FakeRemote
    ) -> None:
        """250 frames go out as 100, 100 and 50, in order."""
        frames.by_session["s1"] = make_frames(250)

        result = uploader.execute(ctx_for(EntityType.FRAMES, "s1", SyncOperation.CREATE))

        assert result.status == UploadStatus.UPLOADED
        assert [len(indexes) for _, indexes in remote.frame_chunks] == [100, 100, 50]
        assert remote.frame_chunks[0][1][0] == 0
        assert remote.frame_chunks[2][1][-1] == 249

    def test_failed_chunk_fails_item(
        self, uploader: FramesUploader, frames: InMemoryFrames, remote: FakeRemote
    ) -> None:
        frames.by_session["s1"] = make_frames(250)
        remote.script("submit_frame_batch", None, NetworkError("Connection reset"))

        result = uploader.execute(ctx_for(EntityType.FRAMES, "s1", SyncOperation.CREATE))

        assert not result.success
        assert result.error_kind == ErrorKind.NETWORK
        assert result.error.startswith("Frame chunk 2/3 failed")
        assert len(remote.frame_chunks) == 1

    def test_cancel_between_chunks(
        self, uploader: FramesUploader, frames: InMemoryFrames, remote: FakeRemote
    ) -> None:
        frames.by_session["s1"] = make_frames(250)
        ctx = UploadContext(
            item=QueueItem(EntityType.FRAMES, "s1", SyncOperation.CREATE),
            cancel_check=lambda: len(remote.frame_chunks) >= 1,
        )

        result = uploader.execute(ctx)

        assert result.cancelled
        assert not result.success
        assert len(remote.frame_chunks) == 1

    def test_no_frames(self, uploader: FramesUploader, remote: FakeRemote) -> None:
        result = uploader.execute(ctx_for(EntityType.FRAMES, "s1", SyncOperation.CREATE))

        assert result.status == UploadStatus.RECORD_MISSING
        assert remote.calls == []

    def test_unreadable_landmarks_sent_empty(
        self, uploader: FramesUploader, frames: InMemoryFrames, remote: FakeRemote
    ) -> None:
        stored = make_frames(2)
        stored[1].landmarks_json = "{broken"
        frames.by_session["s1"] = stored

        result = uploader.execute(ctx_for(EntityType.FRAMES, "s1", SyncOperation.UPDATE))

        assert result.success
        assert remote.frame_chunks == [("s1", [0, 1])]

    def test_parent_is_the_session(self, uploader: FramesUploader) -> None:
        item = QueueItem(EntityType.FRAMES, "s1", SyncOperation.CREATE)
        assert uploader.parent_session_id(item) == "s1"

    def test_invalid_batch_size(self, frames: InMemoryFrames, remote: FakeRemote) -> None:
        with pytest.raises(ValueError):
            FramesUploader(frames, remote, batch_size=0)


class TestPhaseUploader:
    """Tests for PhaseUploader."""

    @pytest.fixture
    def uploader(self, phases: InMemoryPhases, remote: FakeRemote) -> PhaseUploader:
        return PhaseUploader(phases, remote)

    def test_create(
        self, uploader: PhaseUploader, phases: InMemoryPhases, remote: FakeRemote
    ) -> None:
        phases.add(make_phase())

        result = uploader.execute(ctx_for(EntityType.PHASE, "p1", SyncOperation.CREATE))

        assert result.status == UploadStatus.UPLOADED
        assert remote.calls == [("create_phase", "s1")]

    def test_update_sends_decoded_cues(
        self, uploader: PhaseUploader, phases: InMemoryPhases, remote: FakeRemote
    ) -> None:
        """Cues with escaped quotes and commas survive decoding."""
        phases.add(
            make_phase(active_cues_json='["Say \\"up\\", then drive", "Breathe"]')
        )

        result = uploader.execute(ctx_for(EntityType.PHASE, "p1", SyncOperation.UPDATE))

        assert result.status == UploadStatus.UPLOADED
        payload = remote.phases["p1"]
        assert payload.active_cues == ['Say "up", then drive', "Breathe"]
        assert payload.correction_cues == {"KNEE_VALGUS": "Push your knees out"}

    def test_malformed_cues_are_validation_failures(
        self, uploader: PhaseUploader, phases: InMemoryPhases, remote: FakeRemote
    ) -> None:
        phases.add(make_phase(correction_cues_json='["not", "a", "map"]'))

        result = uploader.execute(ctx_for(EntityType.PHASE, "p1", SyncOperation.UPDATE))

        assert not result.success
        assert result.error_kind == ErrorKind.VALIDATION
        assert remote.calls == []

    def test_delete(self, uploader: PhaseUploader, remote: FakeRemote) -> None:
        result = uploader.execute(ctx_for(EntityType.PHASE, "p1", SyncOperation.DELETE))

        assert result.status == UploadStatus.UPLOADED
        assert remote.calls == [("delete_phase", "p1")]

    def test_delete_of_missing_phase_succeeds(
        self, uploader: PhaseUploader, remote: FakeRemote
    ) -> None:
        remote.missing_phases.add("p1")

        result = uploader.execute(ctx_for(EntityType.PHASE, "p1", SyncOperation.DELETE))

        assert result.success
        assert result.status == UploadStatus.ALREADY_SATISFIED

    def test_delete_not_found_error_succeeds(
        self, uploader: PhaseUploader, remote: FakeRemote
    ) -> None:
        remote.script("delete_phase", NotFoundError("Phase not found", 404))

        result = uploader.execute(ctx_for(EntityType.PHASE, "p1", SyncOperation.DELETE))

        assert result.success
        assert result.status == UploadStatus.ALREADY_SATISFIED

    def test_update_not_found_fails(
        self, uploader: PhaseUploader, phases: InMemoryPhases, remote: FakeRemote
    ) -> None:
        """NOT_FOUND only counts as success for deletes."""
        phases.add(make_phase())
        remote.script("update_phase", NotFoundError("Phase not found", 404))

        result = uploader.execute(ctx_for(EntityType.PHASE, "p1", SyncOperation.UPDATE))

        assert not result.success
        assert result.error_kind == ErrorKind.NOT_FOUND

    def test_parent_session(self, uploader: PhaseUploader, phases: InMemoryPhases) -> None:
        phases.add(make_phase(session_id="s9"))

        assert uploader.parent_session_id(QueueItem(EntityType.PHASE, "p1", SyncOperation.UPDATE)) == "s9"

    def test_delete_writes_no_status(self, uploader: PhaseUploader, phases: InMemoryPhases) -> None:
        phases.add(make_phase())

        uploader.set_entity_status(
            QueueItem(EntityType.PHASE, "p1", SyncOperation.DELETE), EntitySyncStatus.SYNCED
        )
        uploader.set_entity_status(
            QueueItem(EntityType.PHASE, "p1", SyncOperation.UPDATE), EntitySyncStatus.SYNCED
        )

        assert phases.status_history["p1"] == [EntitySyncStatus.SYNCED]


class TestSetupConfigUploader:
    """Tests for SetupConfigUploader."""

    def test_submit(self, setup_configs: InMemorySetupConfigs, remote: FakeRemote) -> None:
        setup_configs.add(make_setup_config(session_id="s2"))
        uploader = SetupConfigUploader(setup_configs, remote)

        result = uploader.execute(ctx_for(EntityType.SETUP_CONFIG, "c1", SyncOperation.CREATE))

        assert result.status == UploadStatus.UPLOADED
        assert remote.setup_configs["s2"].camera_view == "SIDE"
        assert uploader.parent_session_id(QueueItem(EntityType.SETUP_CONFIG, "c1", SyncOperation.CREATE)) == "s2"

    def test_missing_config(self, setup_configs: InMemorySetupConfigs, remote: FakeRemote) -> None:
        uploader = SetupConfigUploader(setup_configs, remote)

        result = uploader.execute(ctx_for(EntityType.SETUP_CONFIG, "c1", SyncOperation.UPDATE))

        assert result.status == UploadStatus.RECORD_MISSING
        assert uploader.parent_session_id(QueueItem(EntityType.SETUP_CONFIG, "c1", SyncOperation.UPDATE)) is None


class TestUploaderContract:
    """Tests for BaseUploader behavior shared by every uploader."""

    def test_handles(self, sessions: InMemorySessions, remote: FakeRemote) -> None:
        uploader = SessionUploader(sessions, remote)
        assert uploader.handles(SyncOperation.CREATE)
        assert not uploader.handles(SyncOperation.DELETE)

    def test_elapsed_time_recorded(self, sessions: InMemorySessions, remote: FakeRemote) -> None:
        sessions.add(LocalSession(id="s1", exercise_type="LUNGE", exercise_name="Lunge"))

        result = SessionUploader(sessions, remote).execute(
            ctx_for(EntityType.SESSION, "s1", SyncOperation.CREATE)
        )

        assert result.success
        assert result.elapsed_time >= 0
