"""Pydantic schemas for payloads exchanged with the recording service.

Payloads use camelCase on the wire and snake_case in Python. Coaching
cues travel as real JSON (a list of strings and a string-to-string map)
and are decoded with a validating parser, so escaped quotes and nested
delimiters inside a cue survive the round trip.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

_ACTIVE_CUES = TypeAdapter(list[str])
_CORRECTION_CUES = TypeAdapter(dict[str, str])


class WireModel(BaseModel):
    """Base for all payloads: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize to a JSON-ready dict with camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# === Session schemas ===


class SessionCreateRequest(WireModel):
    """Request body for creating a recording session remotely.

    ``id`` is the client-generated session id, so later lookups and
    retries address the same remote record.
    """

    id: str
    exercise_type: str
    exercise_name: str
    frame_rate: int = Field(default=30, gt=0)


class TrimRequest(WireModel):
    """Request body for setting trim boundaries."""

    start_frame: int = Field(ge=0)
    end_frame: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> TrimRequest:
        if self.end_frame < self.start_frame:
            raise ValueError("end_frame must not precede start_frame")
        return self


# === Frame schemas ===


class PoseFrameDto(WireModel):
    """One pose frame: landmarks are [x, y, z, confidence, visibility] rows."""

    frame_index: int = Field(ge=0)
    timestamp_ms: int
    landmarks: list[list[float]]
    overall_confidence: float


class FrameBatchRequest(WireModel):
    """One chunk of pose frames. The server upserts by frame index."""

    frames: list[PoseFrameDto]


# === Phase schemas ===


class PhasePayload(WireModel):
    """Full phase annotation, used for both create and update."""

    session_id: str
    phase_name: str = Field(min_length=1)
    phase_index: int = Field(ge=0)
    start_frame: int = Field(ge=0)
    end_frame: int = Field(ge=0)
    source: str = "MANUAL"
    confidence: float | None = None
    compliance_threshold: float | None = None
    entry_cue: str | None = None
    active_cues: list[str] | None = None
    exit_cue: str | None = None
    correction_cues: dict[str, str] | None = None

    @model_validator(mode="after")
    def _check_frames(self) -> PhasePayload:
        if self.end_frame < self.start_frame:
            raise ValueError("end_frame must not precede start_frame")
        return self


# === Setup schemas ===


class SetupConfigPayload(WireModel):
    """Camera setup captured before recording a session."""

    session_id: str
    activity_id: str
    activity_name: str
    movement_plane: str
    camera_view: str
    estimated_distance_meters: float = Field(gt=0)
    camera_height_ratio: float = Field(ge=0, le=1)
    setup_score: float | None = None
    device_model: str | None = None
    captured_at: float | None = None


# === Response schemas ===


class RemoteSessionModel(WireModel):
    """Session snapshot as returned by the service."""

    id: str
    exercise_type: str
    exercise_name: str
    status: str
    frame_count: int | None = None
    frame_rate: int | None = None
    duration_seconds: float | None = None
    trim_start_frame: int | None = None
    trim_end_frame: int | None = None
    quality_score: float | None = None
    consistency_score: float | None = None
    coverage_score: float | None = None
    updated_at: str | None = None  # ISO-8601


class RemotePhaseModel(WireModel):
    """Phase snapshot as returned by the service.

    Cues arrive either as JSON values or, from older servers, as JSON
    text in the ``*Json`` fields.
    """

    id: str
    session_id: str
    phase_name: str
    phase_index: int
    start_frame: int
    end_frame: int
    source: str | None = None
    entry_cue: str | None = None
    active_cues: list[str] | None = None
    active_cues_json: str | None = None
    exit_cue: str | None = None
    correction_cues: dict[str, str] | None = None
    correction_cues_json: str | None = None
    updated_at: int | None = None  # Epoch milliseconds


# === Response envelope ===


class ApiEnvelope(WireModel):
    """Wrapper every service response is delivered in."""

    success: bool
    data: Any = None
    message: str | None = None
    errors: list[str] | None = None


# === Cue decoding ===


def parse_active_cues(raw: str | None) -> list[str] | None:
    """Decode a JSON array of active cues.

    Args:
        raw: JSON text such as ``["Keep your back straight"]``.

    Returns:
        The cue list, or None when no cues are stored.

    Raises:
        ValueError: If the text is not a JSON array of strings.
    """
    if raw is None or not raw.strip():
        return None
    return _ACTIVE_CUES.validate_json(raw)


def parse_correction_cues(raw: str | None) -> dict[str, str] | None:
    """Decode a JSON object mapping fault codes to correction cues.

    Args:
        raw: JSON text such as ``{"KNEE_VALGUS": "Push your knees out"}``.

    Returns:
        The cue map, or None when no cues are stored.

    Raises:
        ValueError: If the text is not a JSON object of strings.
    """
    if raw is None or not raw.strip():
        return None
    return _CORRECTION_CUES.validate_json(raw)


def parse_landmarks(raw: str) -> list[list[float]]:
    """Decode the stored landmark matrix of a pose frame.

    Raises:
        ValueError: If the text is not a list of numeric rows.
    """
    return TypeAdapter(list[list[float]]).validate_json(raw)
