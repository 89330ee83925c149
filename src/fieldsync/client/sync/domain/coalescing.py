"""Coalescing rules applied when a mutation is enqueued.

When a new mutation arrives while other items for the same entity are
still live in the queue, this module decides what to do.

Matrix:
| New        | Existing (live)      | Action                         |
|------------|----------------------|--------------------------------|
| same op    | any status           | Merge into existing            |
| DELETE     | CREATE/UPDATE, idle  | Supersede existing, insert     |
| UPDATE     | PHASE CREATE, idle   | Absorb (create sends it all)   |
| UPDATE     | FRAMES/SETUP CREATE  | Absorb (create sends it all)   |
| *          | claimed (PROCESSING) | Insert, never touch in-flight  |

Same-operation merges are allowed on claimed items: the queue store flags
them so that completing the claim requeues the item.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING

from fieldsync.core.types import EntityType, QueueStatus, SyncOperation

if TYPE_CHECKING:
    from collections.abc import Iterable

    from fieldsync.client.sync.types import QueueItem


class EnqueueAction(Enum):
    """Action to take on an incoming mutation."""

    INSERT = auto()  # New row
    MERGE = auto()  # Same mutation already live, fold into it
    ABSORB = auto()  # Another live item already covers this mutation
    SUPERSEDE = auto()  # Drop the existing unclaimed item


@dataclass(frozen=True)
class CoalesceRule:
    """A rule in the coalescing matrix."""

    entity_type: EntityType | None  # Specific type or None for any
    new_operation: SyncOperation
    existing_operation: SyncOperation
    action: EnqueueAction
    reason: str


COALESCE_RULES: list[CoalesceRule] = [
    CoalesceRule(
        entity_type=None,
        new_operation=SyncOperation.DELETE,
        existing_operation=SyncOperation.CREATE,
        action=EnqueueAction.SUPERSEDE,
        reason="Record is deleted before it was ever sent",
    ),
    CoalesceRule(
        entity_type=None,
        new_operation=SyncOperation.DELETE,
        existing_operation=SyncOperation.UPDATE,
        action=EnqueueAction.SUPERSEDE,
        reason="Pending update is moot once the record is deleted",
    ),
    CoalesceRule(
        entity_type=EntityType.PHASE,
        new_operation=SyncOperation.UPDATE,
        existing_operation=SyncOperation.CREATE,
        action=EnqueueAction.ABSORB,
        reason="Phase create pushes the full annotation",
    ),
    CoalesceRule(
        entity_type=EntityType.FRAMES,
        new_operation=SyncOperation.UPDATE,
        existing_operation=SyncOperation.CREATE,
        action=EnqueueAction.ABSORB,
        reason="Frame upload re-reads every stored frame",
    ),
    CoalesceRule(
        entity_type=EntityType.SETUP_CONFIG,
        new_operation=SyncOperation.UPDATE,
        existing_operation=SyncOperation.CREATE,
        action=EnqueueAction.ABSORB,
        reason="Setup create pushes the full configuration",
    ),
]


@dataclass
class EnqueuePlan:
    """What the queue store must do for one incoming mutation."""

    action: EnqueueAction
    reason: str
    target: QueueItem | None = None
    superseded: list[QueueItem] = field(default_factory=list)


class CoalescingMatrix:
    """Evaluates coalescing rules against the live items of one entity."""

    def __init__(self, rules: list[CoalesceRule] | None = None) -> None:
        self._rules = rules or COALESCE_RULES

    def plan(
        self,
        entity_type: EntityType,
        operation: SyncOperation,
        live_items: Iterable[QueueItem],
    ) -> EnqueuePlan:
        """Decide how to apply a new mutation.

        Args:
            entity_type: Entity type of the new mutation.
            operation: Operation of the new mutation.
            live_items: Non-terminal items for the same entity.

        Returns:
            The plan. MERGE and ABSORB carry a target item, INSERT may carry
            items to supersede first.
        """
        items = list(live_items)

        for item in items:
            if item.operation == operation:
                return EnqueuePlan(
                    EnqueueAction.MERGE, "Same mutation already queued", target=item
                )

        superseded: list[QueueItem] = []
        reasons: list[str] = []
        for item in items:
            if item.status == QueueStatus.PROCESSING:
                continue
            rule = self._match(entity_type, operation, item.operation)
            if rule is None:
                continue
            if rule.action == EnqueueAction.ABSORB:
                return EnqueuePlan(EnqueueAction.ABSORB, rule.reason, target=item)
            if rule.action == EnqueueAction.SUPERSEDE:
                superseded.append(item)
                reasons.append(rule.reason)

        if superseded:
            return EnqueuePlan(EnqueueAction.INSERT, reasons[0], superseded=superseded)
        return EnqueuePlan(EnqueueAction.INSERT, "No live item for this mutation")

    def _match(
        self,
        entity_type: EntityType,
        new_operation: SyncOperation,
        existing_operation: SyncOperation,
    ) -> CoalesceRule | None:
        for rule in self._rules:
            if rule.entity_type is not None and rule.entity_type != entity_type:
                continue
            if rule.new_operation == new_operation and rule.existing_operation == existing_operation:
                return rule
        return None
