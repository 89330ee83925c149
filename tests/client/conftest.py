"""Shared fixtures and in-memory collaborators for sync engine tests."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from pathlib import Path

import pytest

from fieldsync.client.records import (
    DeleteOutcome,
    LocalPhase,
    LocalSession,
    LocalSetupConfig,
    PoseFrame,
    RemotePhase,
    RemoteSession,
)
from fieldsync.client.schemas import (
    FrameBatchRequest,
    PhasePayload,
    SessionCreateRequest,
    SetupConfigPayload,
    TrimRequest,
)
from fieldsync.client.sync.orchestrator import SyncOrchestrator
from fieldsync.client.sync.queue import SyncQueue
from fieldsync.client.sync.status import SyncStatusHub
from fieldsync.core.config import SyncConfig
from fieldsync.core.types import EntitySyncStatus

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemorySessions:
    """SessionRepository keeping every status write."""

    def __init__(self, *sessions: LocalSession) -> None:
        self.records = {s.id: s for s in sessions}
        self.status_history: dict[str, list[EntitySyncStatus]] = defaultdict(list)
        self.merges: list[LocalSession] = []

    def add(self, session: LocalSession) -> LocalSession:
        self.records[session.id] = session
        return session

    def get(self, session_id: str) -> LocalSession | None:
        return self.records.get(session_id)

    def update_sync_status(self, session_id: str, status: EntitySyncStatus) -> None:
        self.status_history[session_id].append(status)
        if session_id in self.records:
            self.records[session_id].sync_status = status

    def update_from_merge(self, session_id: str, merged: LocalSession) -> None:
        self.merges.append(merged)
        self.records[session_id] = merged


class InMemoryPhases:
    """PhaseRepository keeping every status write."""

    def __init__(self, *phases: LocalPhase) -> None:
        self.records = {p.id: p for p in phases}
        self.status_history: dict[str, list[EntitySyncStatus]] = defaultdict(list)

    def add(self, phase: LocalPhase) -> LocalPhase:
        self.records[phase.id] = phase
        return phase

    def get(self, phase_id: str) -> LocalPhase | None:
        return self.records.get(phase_id)

    def update_sync_status(self, phase_id: str, status: EntitySyncStatus) -> None:
        self.status_history[phase_id].append(status)
        if phase_id in self.records:
            self.records[phase_id].sync_status = status


class InMemorySetupConfigs:
    """SetupConfigRepository keeping every status write."""

    def __init__(self, *configs: LocalSetupConfig) -> None:
        self.records = {c.id: c for c in configs}
        self.status_history: dict[str, list[EntitySyncStatus]] = defaultdict(list)

    def add(self, config: LocalSetupConfig) -> LocalSetupConfig:
        self.records[config.id] = config
        return config

    def get(self, config_id: str) -> LocalSetupConfig | None:
        return self.records.get(config_id)

    def update_sync_status(self, config_id: str, status: EntitySyncStatus) -> None:
        self.status_history[config_id].append(status)


class InMemoryFrames:
    """FrameSource over a dict of session id -> frames."""

    def __init__(self) -> None:
        self.by_session: dict[str, list[PoseFrame]] = {}

    def frames_for(self, session_id: str) -> Sequence[PoseFrame]:
        return self.by_session.get(session_id, [])


class FakeRemote:
    """RemoteApi double recording calls.

    ``script(method, *outcomes)`` queues per-call outcomes for a method:
    an exception is raised, None lets the call succeed.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.sessions: dict[str, RemoteSession] = {}
        self.phases: dict[str, PhasePayload] = {}
        self.missing_phases: set[str] = set()
        self.frame_chunks: list[tuple[str, list[int]]] = []
        self.trims: dict[str, TrimRequest] = {}
        self.setup_configs: dict[str, SetupConfigPayload] = {}
        self._scripts: dict[str, list[Exception | None]] = defaultdict(list)

    def script(self, method: str, *outcomes: Exception | None) -> None:
        self._scripts[method].extend(outcomes)

    def _call(self, method: str, target: str) -> None:
        self.calls.append((method, target))
        pending = self._scripts.get(method)
        if pending:
            outcome = pending.pop(0)
            if outcome is not None:
                raise outcome

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    def create_session(self, payload: SessionCreateRequest) -> RemoteSession:
        self._call("create_session", payload.id)
        remote = RemoteSession(
            id=payload.id,
            exercise_type=payload.exercise_type,
            exercise_name=payload.exercise_name,
            status="INITIATED",
            frame_rate=payload.frame_rate,
        )
        self.sessions[payload.id] = remote
        return remote

    def get_session(self, session_id: str) -> RemoteSession | None:
        self._call("get_session", session_id)
        return self.sessions.get(session_id)

    def set_trim(self, session_id: str, payload: TrimRequest) -> None:
        self._call("set_trim", session_id)
        self.trims[session_id] = payload

    def submit_frame_batch(self, session_id: str, batch: FrameBatchRequest) -> None:
        self._call("submit_frame_batch", session_id)
        self.frame_chunks.append((session_id, [f.frame_index for f in batch.frames]))

    def create_phase(self, payload: PhasePayload) -> RemotePhase | None:
        self._call("create_phase", payload.session_id)
        return None

    def update_phase(self, phase_id: str, payload: PhasePayload) -> None:
        self._call("update_phase", phase_id)
        self.phases[phase_id] = payload

    def delete_phase(self, phase_id: str) -> DeleteOutcome:
        self._call("delete_phase", phase_id)
        if phase_id in self.missing_phases:
            return DeleteOutcome.NOT_FOUND
        return DeleteOutcome.DELETED

    def submit_setup_config(self, session_id: str, payload: SetupConfigPayload) -> None:
        self._call("submit_setup_config", session_id)
        self.setup_configs[session_id] = payload


# === Record builders ===


def make_session(session_id: str = "s1", **overrides: object) -> LocalSession:
    values: dict[str, object] = {
        "id": session_id,
        "exercise_type": "SQUAT",
        "exercise_name": "Back squat",
        "created_at": T0 - 600,
        "updated_at": T0 - 60,
    }
    values.update(overrides)
    return LocalSession(**values)  # type: ignore[arg-type]


def make_phase(phase_id: str = "p1", session_id: str = "s1", **overrides: object) -> LocalPhase:
    values: dict[str, object] = {
        "id": phase_id,
        "session_id": session_id,
        "phase_name": "Descent",
        "phase_index": 0,
        "start_frame": 10,
        "end_frame": 40,
        "entry_cue": "Brace your core",
        "active_cues_json": '["Knees track over toes", "Chest up"]',
        "correction_cues_json": '{"KNEE_VALGUS": "Push your knees out"}',
        "updated_at": T0 - 30,
    }
    values.update(overrides)
    return LocalPhase(**values)  # type: ignore[arg-type]


def make_setup_config(config_id: str = "c1", session_id: str = "s1") -> LocalSetupConfig:
    return LocalSetupConfig(
        id=config_id,
        session_id=session_id,
        activity_id="squat",
        activity_name="Back squat",
        movement_plane="SAGITTAL",
        camera_view="SIDE",
        estimated_distance_meters=2.5,
        camera_height_ratio=0.5,
    )


def make_frames(count: int) -> list[PoseFrame]:
    return [
        PoseFrame(
            frame_index=i,
            timestamp_ms=i * 33,
            landmarks_json="[[0.1, 0.2, 0.3, 0.9, 1.0]]",
            overall_confidence=0.9,
        )
        for i in range(count)
    ]


# === Fixtures ===


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(tmp_path: Path, clock: FakeClock) -> SyncQueue:
    """Durable queue on a temporary database."""
    q = SyncQueue(tmp_path / "queue.db", clock=clock)
    yield q
    q.close()


@pytest.fixture
def sessions() -> InMemorySessions:
    return InMemorySessions()


@pytest.fixture
def phases() -> InMemoryPhases:
    return InMemoryPhases()


@pytest.fixture
def setup_configs() -> InMemorySetupConfigs:
    return InMemorySetupConfigs()


@pytest.fixture
def frames() -> InMemoryFrames:
    return InMemoryFrames()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def hub(clock: FakeClock) -> SyncStatusHub:
    return SyncStatusHub(clock=clock)


@pytest.fixture
def orchestrator(
    queue: SyncQueue,
    sessions: InMemorySessions,
    phases: InMemoryPhases,
    frames: InMemoryFrames,
    setup_configs: InMemorySetupConfigs,
    remote: FakeRemote,
    hub: SyncStatusHub,
    clock: FakeClock,
) -> SyncOrchestrator:
    return SyncOrchestrator.create(
        queue,
        sessions=sessions,
        phases=phases,
        frames=frames,
        remote=remote,
        setup_configs=setup_configs,
        status_hub=hub,
        config=SyncConfig(),
        clock=clock,
    )
