"""Conflict detection and resolution.

Implements "Local Authority" strategy:
1. Captured media and expert annotations only exist on the device,
   so the local version wins whenever it holds them
2. The newer edit wins otherwise
3. Server-derived scores are merged into the local record instead of
   being overwritten

Detection is separate from resolution: a conflict only exists when a
compared field differs, and only then is a decision taken.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

from fieldsync.client.schemas import parse_active_cues, parse_correction_cues
from fieldsync.core.types import EntityType

if TYPE_CHECKING:
    from fieldsync.client.records import LocalPhase, LocalSession, RemotePhase, RemoteSession

SESSION_CONFLICT_FIELDS = ("status", "trim_start_frame", "trim_end_frame")
PHASE_CONFLICT_FIELDS = (
    "phase_name",
    "start_frame",
    "end_frame",
    "entry_cue",
    "exit_cue",
    "active_cues",
    "correction_cues",
)
DERIVED_SESSION_FIELDS = ("quality_score", "consistency_score", "coverage_score")


class ConflictResolution(Enum):
    """Which version survives a conflict."""

    USE_LOCAL = auto()  # Push local, ignore server
    USE_SERVER = auto()  # Pull server state into local storage
    MERGE = auto()  # Combine, then push
    MANUAL = auto()  # Surface to the user


@dataclass(frozen=True)
class ConflictDecision:
    """Result of conflict resolution.

    Attributes:
        resolution: Which version survives.
        fields: Field names that differed.
        auto_resolvable: False only for MANUAL decisions.
        reason: Human-readable explanation.
    """

    resolution: ConflictResolution
    fields: tuple[str, ...] = ()
    auto_resolvable: bool = True
    reason: str = ""


@dataclass(frozen=True)
class ConflictInfo:
    """A detected conflict between a local record and its server snapshot."""

    entity_type: EntityType
    entity_id: str
    local_version: int
    server_version: float | None  # Server updated_at, epoch seconds
    conflict_fields: tuple[str, ...]
    decision: ConflictDecision


def _decision(resolution: ConflictResolution, fields: tuple[str, ...], reason: str) -> ConflictDecision:
    return ConflictDecision(
        resolution=resolution,
        fields=fields,
        auto_resolvable=resolution != ConflictResolution.MANUAL,
        reason=reason,
    )


def _lenient_cues(raw: str | None, parser: Any) -> Any:
    """Parse stored cue JSON for comparison; malformed text compares as-is."""
    try:
        return parser(raw)
    except ValueError:
        return raw


def _session_differences(local: LocalSession, remote: RemoteSession) -> tuple[str, ...]:
    return tuple(
        name for name in SESSION_CONFLICT_FIELDS if getattr(local, name) != getattr(remote, name)
    )


def _phase_differences(local: LocalPhase, remote: RemotePhase) -> tuple[str, ...]:
    local_values = {
        "phase_name": local.phase_name,
        "start_frame": local.start_frame,
        "end_frame": local.end_frame,
        "entry_cue": local.entry_cue,
        "exit_cue": local.exit_cue,
        "active_cues": _lenient_cues(local.active_cues_json, parse_active_cues),
        "correction_cues": _lenient_cues(local.correction_cues_json, parse_correction_cues),
    }
    return tuple(
        name for name in PHASE_CONFLICT_FIELDS if local_values[name] != getattr(remote, name)
    )


class ConflictResolver:
    """Pure conflict policy for sessions and phase annotations.

    Holds no state: every decision depends only on its arguments.
    """

    def resolve_session_conflict(
        self,
        local: LocalSession,
        remote: RemoteSession,
        fields: tuple[str, ...] = (),
    ) -> ConflictDecision:
        """Decide which session version survives.

        Rules, first match wins:
        1. Local holds captured media -> USE_LOCAL
        2. Local edit is newer -> USE_LOCAL
        3. Server has derived scores the local copy lacks -> MERGE
        4. Timestamps tie -> USE_LOCAL
        5. Otherwise -> USE_SERVER

        A missing server timestamp counts as the epoch.
        """
        remote_updated = remote.updated_at or 0.0

        if local.has_captured_media:
            return _decision(
                ConflictResolution.USE_LOCAL, fields, "Local session holds captured media"
            )
        if local.updated_at > remote_updated:
            return _decision(ConflictResolution.USE_LOCAL, fields, "Local edit is newer")
        if any(
            getattr(remote, name) is not None and getattr(local, name) is None
            for name in DERIVED_SESSION_FIELDS
        ):
            return _decision(
                ConflictResolution.MERGE, fields, "Server holds derived scores missing locally"
            )
        if local.updated_at >= remote_updated:
            return _decision(ConflictResolution.USE_LOCAL, fields, "Local edit is as recent")
        return _decision(ConflictResolution.USE_SERVER, fields, "Server edit is newer")

    def resolve_phase_conflict(
        self,
        local: LocalPhase,
        remote: RemotePhase,
        fields: tuple[str, ...] = (),
    ) -> ConflictDecision:
        """Phase annotations are expert-authored on the device: local always wins."""
        return _decision(
            ConflictResolution.USE_LOCAL, fields, "Expert annotations are authoritative locally"
        )

    def merge_session(self, local: LocalSession, remote: RemoteSession) -> LocalSession:
        """Combine a local session with its server snapshot.

        Raw captured data (media path, frame count, trim) stays local, with
        the server trim used only when none is set locally. Derived scores
        are taken from the server when the local copy has none.
        """
        has_local_trim = local.has_trim
        return replace(
            local,
            frame_count=local.frame_count or remote.frame_count,
            trim_start_frame=local.trim_start_frame if has_local_trim else remote.trim_start_frame,
            trim_end_frame=local.trim_end_frame if has_local_trim else remote.trim_end_frame,
            quality_score=_prefer(local.quality_score, remote.quality_score),
            consistency_score=_prefer(local.consistency_score, remote.consistency_score),
            coverage_score=_prefer(local.coverage_score, remote.coverage_score),
            updated_at=max(local.updated_at, remote.updated_at or 0.0),
        )

    def adopt_server(self, local: LocalSession, remote: RemoteSession) -> LocalSession:
        """Local session rewritten with the server state (USE_SERVER)."""
        return replace(
            local,
            status=remote.status,
            frame_count=remote.frame_count,
            duration_seconds=remote.duration_seconds,
            trim_start_frame=remote.trim_start_frame,
            trim_end_frame=remote.trim_end_frame,
            quality_score=remote.quality_score,
            consistency_score=remote.consistency_score,
            coverage_score=remote.coverage_score,
            updated_at=remote.updated_at if remote.updated_at is not None else local.updated_at,
        )

    def detect_session_conflict(
        self, local: LocalSession, remote: RemoteSession
    ) -> ConflictInfo | None:
        """Compare a session with its snapshot. None when nothing differs."""
        fields = _session_differences(local, remote)
        if not fields:
            return None
        return ConflictInfo(
            entity_type=EntityType.SESSION,
            entity_id=local.id,
            local_version=local.local_version,
            server_version=remote.updated_at,
            conflict_fields=fields,
            decision=self.resolve_session_conflict(local, remote, fields),
        )

    def detect_phase_conflict(self, local: LocalPhase, remote: RemotePhase) -> ConflictInfo | None:
        """Compare a phase with its snapshot. None when nothing differs."""
        fields = _phase_differences(local, remote)
        if not fields:
            return None
        return ConflictInfo(
            entity_type=EntityType.PHASE,
            entity_id=local.id,
            local_version=local.local_version,
            server_version=remote.updated_at,
            conflict_fields=fields,
            decision=self.resolve_phase_conflict(local, remote, fields),
        )


def _prefer(local_value: float | None, remote_value: float | None) -> float | None:
    return local_value if local_value is not None else remote_value


def describe_conflict(info: ConflictInfo) -> str:
    """One-line description for logs and the status surface."""
    kind = info.entity_type.value.lower().replace("_", " ")
    return f"The {kind} was modified on both device and server ({', '.join(info.conflict_fields)})"


def suggested_action_text(resolution: ConflictResolution) -> str:
    """User-facing hint for a resolution."""
    return {
        ConflictResolution.USE_LOCAL: "Your local changes will be kept",
        ConflictResolution.USE_SERVER: "Server version will be used",
        ConflictResolution.MERGE: "Changes will be merged",
        ConflictResolution.MANUAL: "Please review and choose which version to keep",
    }[resolution]
