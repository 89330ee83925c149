"""Claim ordering between entity types.

A parent record must exist remotely before anything that refers to it is
sent, so items drain in precedence classes:

    SESSION-CREATE (10) -> SESSION-UPDATE (20) -> FRAMES (30)
        -> PHASE (40) -> SETUP_CONFIG (50)

Within a class, higher priority drains first, then older items.
The table also lists which (entity type, operation) pairs are supported.
"""

from __future__ import annotations

from fieldsync.core.types import EntityType, SyncOperation

PRECEDENCE: dict[tuple[EntityType, SyncOperation], int] = {
    (EntityType.SESSION, SyncOperation.CREATE): 10,
    (EntityType.SESSION, SyncOperation.UPDATE): 20,
    (EntityType.FRAMES, SyncOperation.CREATE): 30,
    (EntityType.FRAMES, SyncOperation.UPDATE): 30,
    (EntityType.PHASE, SyncOperation.CREATE): 40,
    (EntityType.PHASE, SyncOperation.UPDATE): 40,
    (EntityType.PHASE, SyncOperation.DELETE): 40,
    (EntityType.SETUP_CONFIG, SyncOperation.CREATE): 50,
    (EntityType.SETUP_CONFIG, SyncOperation.UPDATE): 50,
}


def is_supported(entity_type: EntityType, operation: SyncOperation) -> bool:
    return (entity_type, operation) in PRECEDENCE


def precedence_of(entity_type: EntityType, operation: SyncOperation) -> int:
    """Return the precedence class of a mutation.

    Raises:
        ValueError: If the mutation cannot be synced.
    """
    try:
        return PRECEDENCE[(entity_type, operation)]
    except KeyError:
        raise ValueError(
            f"Unsupported sync mutation: {entity_type.value}-{operation.value}"
        ) from None


def depends_on_session(entity_type: EntityType, operation: SyncOperation) -> bool:
    """True for mutations that cannot be sent before their session exists remotely.

    Everything but the session create itself waits, except phase deletes:
    a phase that never reached the server is already absent there.
    """
    if entity_type == EntityType.SESSION:
        return operation == SyncOperation.UPDATE
    if entity_type == EntityType.PHASE:
        return operation != SyncOperation.DELETE
    return True
