"""Tests for the retry policy and failure classification."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from fieldsync.client.api import (
    APIError,
    ConflictError,
    InvalidPayloadError,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
)
from fieldsync.client.records import RemoteSession
from fieldsync.client.schemas import TrimRequest
from fieldsync.client.sync.retry import (
    DEFAULT_BASE_INTERVAL,
    RetryPolicy,
    classify_failure,
    format_error,
)
from fieldsync.client.sync.types import ErrorKind, QueueItem, UploadError
from fieldsync.core.config import SyncConfig
from fieldsync.core.types import EntityType, SyncOperation


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_linear_backoff(self) -> None:
        """The n-th failure waits n base intervals."""
        policy = RetryPolicy()

        delays = [policy.backoff(count) for count in range(3)]

        assert delays == [60.0, 120.0, 180.0]
        assert policy.base_interval == DEFAULT_BASE_INTERVAL

    def test_backoff_is_monotonic(self) -> None:
        policy = RetryPolicy(base_interval=5)
        delays = [policy.backoff(count) for count in range(10)]
        assert delays == sorted(delays)
        assert len(set(delays)) == len(delays)

    def test_next_attempt_at(self) -> None:
        policy = RetryPolicy(base_interval=30)
        assert policy.next_attempt_at(retry_count=1, now=1000.0) == 1060.0

    def test_from_config(self) -> None:
        policy = RetryPolicy.from_config(SyncConfig(retry_base_interval=15))
        assert policy.backoff(0) == 15

    def test_should_abandon(self) -> None:
        policy = RetryPolicy()
        item = QueueItem(EntityType.PHASE, "p1", SyncOperation.UPDATE, max_retries=3)

        item.retry_count = 2
        assert not policy.should_abandon(item)
        item.retry_count = 3
        assert policy.should_abandon(item)

    def test_zero_budget_abandons_on_first_failure(self) -> None:
        item = QueueItem(EntityType.PHASE, "p1", SyncOperation.UPDATE, max_retries=0)
        assert RetryPolicy().should_abandon(item)

    def test_counts_as_success(self) -> None:
        """Only a delete of something already gone is a success."""
        assert RetryPolicy.counts_as_success(SyncOperation.DELETE, ErrorKind.NOT_FOUND)
        assert not RetryPolicy.counts_as_success(SyncOperation.UPDATE, ErrorKind.NOT_FOUND)
        assert not RetryPolicy.counts_as_success(SyncOperation.DELETE, ErrorKind.NETWORK)


class TestClassifyFailure:
    """Tests for classify_failure."""

    @pytest.mark.parametrize(
        ("exc", "kind"),
        [
            (NetworkError("timed out"), ErrorKind.NETWORK),
            (ConnectionError("reset"), ErrorKind.NETWORK),
            (TimeoutError(), ErrorKind.NETWORK),
            (NotFoundError("gone", 404), ErrorKind.NOT_FOUND),
            (InvalidPayloadError("bad", 422), ErrorKind.VALIDATION),
            (ValueError("bad cue json"), ErrorKind.VALIDATION),
            (MalformedResponseError("Malformed response: id missing"), ErrorKind.VALIDATION),
            (ConflictError("stale", 409), ErrorKind.REMOTE),
            (APIError("boom", 500), ErrorKind.REMOTE),
            (RuntimeError("unexpected"), ErrorKind.REMOTE),
            (UploadError("clash", kind=ErrorKind.CONFLICT), ErrorKind.CONFLICT),
        ],
    )
    def test_classification(self, exc: Exception, kind: ErrorKind) -> None:
        assert classify_failure(exc) == kind

    def test_pydantic_validation_error(self) -> None:
        """A payload that fails model validation is a validation failure."""
        with pytest.raises(ValidationError) as info:
            TrimRequest(start_frame=10, end_frame=2)
        assert classify_failure(info.value) == ErrorKind.VALIDATION

    def test_malformed_snapshot_is_validation(self) -> None:
        """A server snapshot missing a required field is not a remote outage."""
        with pytest.raises(ValidationError) as info:
            RemoteSession.from_dict({"id": "s1", "status": "INITIATED"})
        assert classify_failure(info.value) == ErrorKind.VALIDATION


class TestFormatError:
    """Tests for format_error."""

    def test_network_errors_untagged(self) -> None:
        assert format_error(ErrorKind.NETWORK, "Connection refused") == "Connection refused"

    def test_other_kinds_tagged(self) -> None:
        assert format_error(ErrorKind.VALIDATION, "bad json") == "[validation] bad json"
        assert format_error(ErrorKind.MISSING_HANDLER, "none") == "[missing_handler] none"
