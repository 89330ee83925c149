"""Records and contracts shared with the collaborators of the sync engine.

This module provides:
- LocalSession, LocalPhase, PoseFrame, LocalSetupConfig: locally-authored records
- RemoteSession, RemotePhase: snapshots returned by the recording service
- SessionRepository, PhaseRepository, FrameSource, SetupConfigRepository,
  RemoteApi: the narrow interfaces the engine reads from and writes to

The engine never owns these records. It reads their sync-relevant fields
and writes back a sync status tag through the repositories.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Protocol

from fieldsync.client.schemas import (
    FrameBatchRequest,
    PhasePayload,
    RemotePhaseModel,
    RemoteSessionModel,
    SessionCreateRequest,
    SetupConfigPayload,
    TrimRequest,
    parse_active_cues,
    parse_correction_cues,
)
from fieldsync.core.types import EntitySyncStatus


def parse_timestamp(value: str | None) -> float | None:
    """Parse an ISO-8601 timestamp into epoch seconds.

    Naive timestamps are taken as UTC. Returns None when the value is
    missing or unparseable.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


# === Local records ===


@dataclass
class LocalSession:
    """A recording session as stored on the device.

    Attributes:
        id: Client-generated session id.
        video_file_path: Local path of the captured video, if any.
        trim_start_frame: Locally chosen trim start, if set.
        trim_end_frame: Locally chosen trim end, if set.
        quality_score: Derived score, normally computed by the server.
        updated_at: Epoch seconds of the last local change.
    """

    id: str
    exercise_type: str
    exercise_name: str
    frame_rate: int = 30
    status: str = "INITIATED"
    frame_count: int = 0
    duration_seconds: float | None = None
    video_file_path: str | None = None
    trim_start_frame: int | None = None
    trim_end_frame: int | None = None
    quality_score: float | None = None
    consistency_score: float | None = None
    coverage_score: float | None = None
    sync_status: EntitySyncStatus = EntitySyncStatus.LOCAL_ONLY
    local_version: int = 1
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def has_captured_media(self) -> bool:
        """True when the device holds raw media the server cannot rebuild."""
        return bool(self.video_file_path and self.video_file_path.strip())

    @property
    def has_trim(self) -> bool:
        return self.trim_start_frame is not None and self.trim_end_frame is not None

    def create_request(self) -> SessionCreateRequest:
        return SessionCreateRequest(
            id=self.id,
            exercise_type=self.exercise_type,
            exercise_name=self.exercise_name,
            frame_rate=self.frame_rate,
        )

    def trim_request(self) -> TrimRequest | None:
        """Build the trim payload, or None when no trim is set."""
        if not self.has_trim:
            return None
        return TrimRequest(start_frame=self.trim_start_frame, end_frame=self.trim_end_frame)


@dataclass
class LocalPhase:
    """An expert-authored phase annotation.

    Cue fields hold the JSON text persisted by the annotation screen.
    """

    id: str
    session_id: str
    phase_name: str
    phase_index: int
    start_frame: int
    end_frame: int
    source: str = "MANUAL"
    confidence: float | None = None
    compliance_threshold: float | None = None
    entry_cue: str | None = None
    active_cues_json: str | None = None
    exit_cue: str | None = None
    correction_cues_json: str | None = None
    sync_status: EntitySyncStatus = EntitySyncStatus.LOCAL_ONLY
    local_version: int = 1
    updated_at: float = field(default_factory=time.time)

    def to_payload(self) -> PhasePayload:
        """Build the wire payload.

        Raises:
            ValueError: If stored cues are malformed or the phase is invalid.
        """
        return PhasePayload(
            session_id=self.session_id,
            phase_name=self.phase_name,
            phase_index=self.phase_index,
            start_frame=self.start_frame,
            end_frame=self.end_frame,
            source=self.source,
            confidence=self.confidence,
            compliance_threshold=self.compliance_threshold,
            entry_cue=self.entry_cue,
            active_cues=parse_active_cues(self.active_cues_json),
            exit_cue=self.exit_cue,
            correction_cues=parse_correction_cues(self.correction_cues_json),
        )


@dataclass
class PoseFrame:
    """A single stored pose frame."""

    frame_index: int
    timestamp_ms: int
    landmarks_json: str
    overall_confidence: float


@dataclass
class LocalSetupConfig:
    """Camera setup recorded for a session."""

    id: str
    session_id: str
    activity_id: str
    activity_name: str
    movement_plane: str
    camera_view: str
    estimated_distance_meters: float
    camera_height_ratio: float
    setup_score: float | None = None
    device_model: str | None = None
    captured_at: float | None = None
    sync_status: EntitySyncStatus = EntitySyncStatus.LOCAL_ONLY

    def to_payload(self) -> SetupConfigPayload:
        return SetupConfigPayload(
            session_id=self.session_id,
            activity_id=self.activity_id,
            activity_name=self.activity_name,
            movement_plane=self.movement_plane,
            camera_view=self.camera_view,
            estimated_distance_meters=self.estimated_distance_meters,
            camera_height_ratio=self.camera_height_ratio,
            setup_score=self.setup_score,
            device_model=self.device_model,
            captured_at=self.captured_at,
        )


# === Remote snapshots ===


@dataclass
class RemoteSession:
    """Session snapshot from the server."""

    id: str
    exercise_type: str
    exercise_name: str
    status: str
    frame_count: int = 0
    frame_rate: int = 30
    duration_seconds: float | None = None
    trim_start_frame: int | None = None
    trim_end_frame: int | None = None
    quality_score: float | None = None
    consistency_score: float | None = None
    coverage_score: float | None = None
    updated_at: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteSession:
        """Create from API response dictionary.

        Raises:
            pydantic.ValidationError: If a required field is missing or mistyped.
        """
        model = RemoteSessionModel.model_validate(data)
        return cls(
            id=model.id,
            exercise_type=model.exercise_type,
            exercise_name=model.exercise_name,
            status=model.status,
            frame_count=model.frame_count or 0,
            frame_rate=model.frame_rate or 30,
            duration_seconds=model.duration_seconds,
            trim_start_frame=model.trim_start_frame,
            trim_end_frame=model.trim_end_frame,
            quality_score=model.quality_score,
            consistency_score=model.consistency_score,
            coverage_score=model.coverage_score,
            updated_at=parse_timestamp(model.updated_at),
        )


@dataclass
class RemotePhase:
    """Phase annotation snapshot from the server."""

    id: str
    session_id: str
    phase_name: str
    phase_index: int
    start_frame: int
    end_frame: int
    source: str = "MANUAL"
    entry_cue: str | None = None
    active_cues: list[str] | None = None
    exit_cue: str | None = None
    correction_cues: dict[str, str] | None = None
    updated_at: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemotePhase:
        """Create from API response dictionary.

        ``updatedAt`` is epoch milliseconds on the wire.

        Raises:
            pydantic.ValidationError: If a required field is missing or mistyped.
            ValueError: If cue JSON text does not decode.
        """
        model = RemotePhaseModel.model_validate(data)
        active_cues = model.active_cues
        if active_cues is None:
            active_cues = parse_active_cues(model.active_cues_json)
        correction_cues = model.correction_cues
        if correction_cues is None:
            correction_cues = parse_correction_cues(model.correction_cues_json)
        return cls(
            id=model.id,
            session_id=model.session_id,
            phase_name=model.phase_name,
            phase_index=model.phase_index,
            start_frame=model.start_frame,
            end_frame=model.end_frame,
            source=model.source or "MANUAL",
            entry_cue=model.entry_cue,
            active_cues=active_cues,
            exit_cue=model.exit_cue,
            correction_cues=correction_cues,
            updated_at=model.updated_at / 1000 if model.updated_at is not None else None,
        )


class DeleteOutcome(Enum):
    """Result of a remote delete. NOT_FOUND counts as success."""

    DELETED = auto()
    NOT_FOUND = auto()


# === Collaborator contracts ===


class SessionRepository(Protocol):
    """Local store of recording sessions."""

    def get(self, session_id: str) -> LocalSession | None: ...

    def update_sync_status(self, session_id: str, status: EntitySyncStatus) -> None: ...

    def update_from_merge(self, session_id: str, merged: LocalSession) -> None: ...


class PhaseRepository(Protocol):
    """Local store of phase annotations."""

    def get(self, phase_id: str) -> LocalPhase | None: ...

    def update_sync_status(self, phase_id: str, status: EntitySyncStatus) -> None: ...


class SetupConfigRepository(Protocol):
    """Local store of camera setup configurations."""

    def get(self, config_id: str) -> LocalSetupConfig | None: ...

    def update_sync_status(self, config_id: str, status: EntitySyncStatus) -> None: ...


class FrameSource(Protocol):
    """Read access to the pose frames of a session."""

    def frames_for(self, session_id: str) -> Sequence[PoseFrame]: ...


class RemoteApi(Protocol):
    """Remote recording service.

    Failures are raised as exceptions (see ``fieldsync.client.api``).
    ``get_session`` returns None when the session does not exist
    remotely, and ``delete_phase`` reports NOT_FOUND instead of raising.
    """

    def create_session(self, payload: SessionCreateRequest) -> RemoteSession: ...

    def get_session(self, session_id: str) -> RemoteSession | None: ...

    def set_trim(self, session_id: str, payload: TrimRequest) -> None: ...

    def submit_frame_batch(self, session_id: str, batch: FrameBatchRequest) -> None: ...

    def create_phase(self, payload: PhasePayload) -> RemotePhase | None: ...

    def update_phase(self, phase_id: str, payload: PhasePayload) -> None: ...

    def delete_phase(self, phase_id: str) -> DeleteOutcome: ...

    def submit_setup_config(self, session_id: str, payload: SetupConfigPayload) -> None: ...
