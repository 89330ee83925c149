"""Domain modules for sync business rules.

This package centralizes business logic for the sync engine:
- precedence: claim ordering between entity types
- lifecycle: queue item state machine
- coalescing: rules applied when a mutation is enqueued
- conflicts: conflict detection and resolution policy

Architecture:
    domain/ contains pure business logic without external dependencies.
    Implementation details (SQL, API calls) stay in queue.py and workers/.
"""

from fieldsync.client.sync.domain.coalescing import (
    COALESCE_RULES,
    CoalesceRule,
    CoalescingMatrix,
    EnqueueAction,
    EnqueuePlan,
)
from fieldsync.client.sync.domain.conflicts import (
    ConflictDecision,
    ConflictInfo,
    ConflictResolution,
    ConflictResolver,
    describe_conflict,
    suggested_action_text,
)
from fieldsync.client.sync.domain.lifecycle import (
    VALID_TRANSITIONS,
    InvalidTransitionError,
    can_transition,
    check_transition,
)
from fieldsync.client.sync.domain.precedence import (
    PRECEDENCE,
    depends_on_session,
    is_supported,
    precedence_of,
)

__all__ = [
    # precedence
    "PRECEDENCE",
    "depends_on_session",
    "is_supported",
    "precedence_of",
    # lifecycle
    "VALID_TRANSITIONS",
    "InvalidTransitionError",
    "can_transition",
    "check_transition",
    # coalescing
    "COALESCE_RULES",
    "CoalesceRule",
    "CoalescingMatrix",
    "EnqueueAction",
    "EnqueuePlan",
    # conflicts
    "ConflictDecision",
    "ConflictInfo",
    "ConflictResolution",
    "ConflictResolver",
    "describe_conflict",
    "suggested_action_text",
]
