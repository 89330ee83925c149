"""HTTP client for the recording service API.

This module provides:
- HTTPClient: RemoteApi implementation on top of httpx
- APIError hierarchy mapping HTTP failures to typed exceptions

Every response arrives in a ``{success, data, message, errors}`` envelope.
A transport failure is raised as NetworkError, an HTTP error status as the
matching APIError subclass, and ``success: false`` as a plain APIError.
A body that does not fit the response schema raises MalformedResponseError.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx

from fieldsync.client.records import DeleteOutcome, RemotePhase, RemoteSession
from fieldsync.client.schemas import (
    ApiEnvelope,
    FrameBatchRequest,
    PhasePayload,
    SessionCreateRequest,
    SetupConfigPayload,
    TrimRequest,
)
from fieldsync.core.config import ServerConfig

logger = logging.getLogger(__name__)

API_PREFIX = "/v1/expert-recordings"

_R = TypeVar("_R", RemoteSession, RemotePhase)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(APIError):
    """The request never produced a response (timeout, connection loss)."""


class AuthenticationError(APIError):
    """Authentication failed."""


class NotFoundError(APIError):
    """Resource not found."""


class ConflictError(APIError):
    """Version conflict detected."""


class InvalidPayloadError(APIError):
    """Server rejected the payload shape."""


class MalformedResponseError(APIError):
    """Server answered with a body that does not match the expected shape."""


def _is_not_found_message(message: str | None) -> bool:
    return bool(message) and "not found" in message.lower()


class HTTPClient:
    """HTTP client for the recording service API."""

    def __init__(self, config: ServerConfig) -> None:
        """Initialize the client.

        Args:
            config: Server configuration with URL, token, and settings.
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers={"Authorization": f"Bearer {config.token}"},
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, turning transport failures into NetworkError."""
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

    def _handle_response(self, response: httpx.Response) -> ApiEnvelope:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code == 404:
            raise NotFoundError(self._detail(response, "Resource not found"), 404)
        if response.status_code == 409:
            raise ConflictError(self._detail(response, "Conflict"), 409)
        if response.status_code in (400, 422):
            raise InvalidPayloadError(self._detail(response, "Invalid payload"), response.status_code)
        if response.status_code >= 400:
            raise APIError(self._detail(response, "Unknown error"), response.status_code)

        try:
            envelope = ApiEnvelope.model_validate(response.json())
        except ValueError as e:
            raise MalformedResponseError(f"Malformed response: {e}", response.status_code) from e

        if not envelope.success:
            raise APIError(envelope.message or "Request was not accepted", response.status_code)
        return envelope

    @staticmethod
    def _parse(record_cls: type[_R], data: dict[str, Any]) -> _R:
        """Build a snapshot record from response data.

        Raises:
            MalformedResponseError: If the data does not match the response schema.
        """
        try:
            return record_cls.from_dict(data)
        except ValueError as e:
            raise MalformedResponseError(f"Malformed response: {e}") from e

    @staticmethod
    def _detail(response: httpx.Response, default: str) -> str:
        try:
            body = response.json()
        except ValueError:
            return default
        if isinstance(body, dict):
            return str(body.get("message") or body.get("detail") or default)
        return default

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is reachable.

        Returns:
            True if server is healthy.
        """
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Session operations ===

    def create_session(self, payload: SessionCreateRequest) -> RemoteSession:
        """Create a recording session on the server.

        Args:
            payload: Session metadata.

        Returns:
            The created session snapshot.
        """
        envelope = self._handle_response(
            self._request("POST", f"{API_PREFIX}/sessions", json=payload.to_wire())
        )
        if not isinstance(envelope.data, dict):
            raise MalformedResponseError("Malformed response: session creation returned no session")
        return self._parse(RemoteSession, envelope.data)

    def get_session(self, session_id: str) -> RemoteSession | None:
        """Fetch a session snapshot.

        Returns:
            The snapshot, or None if the server does not know the session.
        """
        try:
            envelope = self._handle_response(
                self._request("GET", f"{API_PREFIX}/sessions/{session_id}")
            )
        except NotFoundError:
            return None
        if not isinstance(envelope.data, dict):
            return None
        return self._parse(RemoteSession, envelope.data)

    def set_trim(self, session_id: str, payload: TrimRequest) -> None:
        """Push trim boundaries for a session."""
        self._handle_response(
            self._request(
                "PUT",
                f"{API_PREFIX}/sessions/{session_id}/trim",
                json=payload.to_wire(),
            )
        )

    # === Frame operations ===

    def submit_frame_batch(self, session_id: str, batch: FrameBatchRequest) -> None:
        """Upload one chunk of pose frames (upsert by frame index)."""
        self._handle_response(
            self._request(
                "POST",
                f"{API_PREFIX}/sessions/{session_id}/frames",
                json=batch.to_wire(),
            )
        )

    # === Phase operations ===

    def create_phase(self, payload: PhasePayload) -> RemotePhase | None:
        """Create a single phase annotation.

        Returns:
            The stored phase if the server echoes it back.
        """
        envelope = self._handle_response(
            self._request(
                "POST",
                f"{API_PREFIX}/sessions/{payload.session_id}/phases/single",
                json=payload.to_wire(),
            )
        )
        if isinstance(envelope.data, dict):
            return self._parse(RemotePhase, envelope.data)
        return None

    def update_phase(self, phase_id: str, payload: PhasePayload) -> None:
        """Replace a phase annotation with the local version."""
        self._handle_response(
            self._request(
                "PUT",
                f"{API_PREFIX}/phases/{phase_id}",
                json=payload.to_wire(),
            )
        )

    def delete_phase(self, phase_id: str) -> DeleteOutcome:
        """Delete a phase annotation.

        Returns:
            DELETED, or NOT_FOUND if the phase is already gone remotely.
        """
        try:
            self._handle_response(self._request("DELETE", f"{API_PREFIX}/phases/{phase_id}"))
        except NotFoundError:
            logger.debug("Phase %s already absent on server", phase_id)
            return DeleteOutcome.NOT_FOUND
        except APIError as e:
            if isinstance(e, NetworkError) or not _is_not_found_message(str(e)):
                raise
            logger.debug("Phase %s already absent on server: %s", phase_id, e)
            return DeleteOutcome.NOT_FOUND
        return DeleteOutcome.DELETED

    # === Setup operations ===

    def submit_setup_config(self, session_id: str, payload: SetupConfigPayload) -> None:
        """Store the camera setup used for a session."""
        self._handle_response(
            self._request(
                "PUT",
                f"{API_PREFIX}/sessions/{session_id}/setup-config",
                json=payload.to_wire(),
            )
        )
