"""Durable work queue for offline sync.

This module provides:
- SyncQueue: SQLite-backed store of pending mutations

Every local mutation (create/update/delete of a session, a frame batch,
a phase annotation or a setup config) becomes a QueueItem. The
orchestrator claims bounded batches, and the queue records each outcome:

    PENDING -> PROCESSING -> COMPLETED | FAILED | ABANDONED

Claims are ordered by precedence class (sessions before the records that
refer to them), then priority, then age. See domain/precedence.py.

Persistence (SQLite):
    Every write runs in its own ``BEGIN IMMEDIATE`` transaction, so a claim
    is atomic: an item is never handed to two runs, and a crash between
    claim and completion leaves a PROCESSING row that becomes claimable
    again after ``claim_timeout``. WAL mode keeps writes durable.

Enqueue is idempotent per (entity type, entity id, operation): see
domain/coalescing.py for the merge, absorb and supersede rules.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path

from fieldsync.client.sync.domain.coalescing import CoalescingMatrix, EnqueueAction
from fieldsync.client.sync.domain.lifecycle import check_transition
from fieldsync.client.sync.domain.precedence import precedence_of
from fieldsync.client.sync.types import QueueError, QueueItem
from fieldsync.core.config import DAY, MINUTE, SyncConfig
from fieldsync.core.types import EntityType, QueueStatus, SyncOperation

logger = logging.getLogger(__name__)

_LIVE = (QueueStatus.PENDING.value, QueueStatus.PROCESSING.value, QueueStatus.FAILED.value)
_ORDER = "ORDER BY precedence ASC, priority DESC, created_at ASC, rowid ASC"


class SyncQueue:
    """Thread-safe durable queue of sync work.

    Attributes:
        max_retries: Retry budget given to new items.
        claim_timeout: Seconds after which a PROCESSING claim is stale.
        completed_retention: Seconds COMPLETED items are kept before purge.
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        *,
        max_retries: int = 3,
        claim_timeout: float = 15 * MINUTE,
        completed_retention: float = 7 * DAY,
        clock: Callable[[], float] = time.time,
        matrix: CoalescingMatrix | None = None,
    ) -> None:
        """Open (or create) the queue database.

        Args:
            db_path: SQLite file, or None for an in-memory queue.
            max_retries: Retry budget given to new items.
            claim_timeout: Seconds after which a PROCESSING claim is stale.
            completed_retention: Default window for purge_completed().
            clock: Time source returning epoch seconds.
            matrix: Coalescing rules (defaults to the standard table).
        """
        self.max_retries = max_retries
        self.claim_timeout = claim_timeout
        self.completed_retention = completed_retention
        self._clock = clock
        self._matrix = matrix or CoalescingMatrix()
        self._closed = False

        if db_path is None or str(db_path) == ":memory:":
            target = ":memory:"
        else:
            path = Path(db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            target = str(path)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            target,
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode, explicit transactions
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    @classmethod
    def from_config(
        cls,
        db_path: Path | str | None,
        config: SyncConfig,
        clock: Callable[[], float] = time.time,
    ) -> SyncQueue:
        """Create a queue using the retry and retention settings of a SyncConfig."""
        return cls(
            db_path,
            max_retries=config.max_retries,
            claim_timeout=config.claim_timeout,
            completed_retention=config.completed_retention,
            clock=clock,
        )

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS sync_queue (
                id TEXT PRIMARY KEY,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                operation TEXT NOT NULL,
                precedence INTEGER NOT NULL,
                status TEXT NOT NULL,
                priority INTEGER NOT NULL DEFAULT 0,
                retry_count INTEGER NOT NULL DEFAULT 0,
                max_retries INTEGER NOT NULL DEFAULT 3,
                scheduled_at REAL NOT NULL,
                error_message TEXT,
                created_at REAL NOT NULL,
                processed_at REAL,
                claimed_at REAL,
                requeue_requested INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_sync_queue_claim
                ON sync_queue (status, scheduled_at);
            CREATE INDEX IF NOT EXISTS idx_sync_queue_entity
                ON sync_queue (entity_type, entity_id);
        """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if not self._closed:
                self._conn.close()
                self._closed = True

    def __enter__(self) -> SyncQueue:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __len__(self) -> int:
        """Number of items not yet in a terminal status."""
        return self._count(_LIVE)

    # === Internals ===

    def _ensure_open(self) -> None:
        if self._closed:
            raise QueueError("Queue is closed")

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside one IMMEDIATE transaction."""
        with self._lock:
            self._ensure_open()
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _query(self, sql: str, params: tuple[object, ...] = ()) -> list[QueueItem]:
        with self._lock:
            self._ensure_open()
            rows = self._conn.execute(sql, params).fetchall()
        return [QueueItem.from_row(row) for row in rows]

    def _count(self, statuses: tuple[str, ...]) -> int:
        placeholders = ", ".join("?" for _ in statuses)
        with self._lock:
            self._ensure_open()
            row = self._conn.execute(
                f"SELECT COUNT(*) FROM sync_queue WHERE status IN ({placeholders})",
                statuses,
            ).fetchone()
        return int(row[0])

    @staticmethod
    def _fetch(conn: sqlite3.Connection, item_id: str) -> QueueItem | None:
        row = conn.execute("SELECT * FROM sync_queue WHERE id = ?", (item_id,)).fetchone()
        return QueueItem.from_row(row) if row is not None else None

    def _require(self, conn: sqlite3.Connection, item_id: str) -> QueueItem:
        item = self._fetch(conn, item_id)
        if item is None:
            raise QueueError(f"Unknown queue item: {item_id}")
        return item

    def _transition(
        self,
        item_id: str,
        new_status: QueueStatus,
        assignments: str,
        params: tuple[object, ...],
    ) -> QueueItem:
        """Validate and apply a status change, returning the updated item."""
        with self._transaction() as conn:
            item = self._require(conn, item_id)
            check_transition(item.status, new_status)
            conn.execute(
                f"UPDATE sync_queue SET status = ?, {assignments} WHERE id = ?",
                (new_status.value, *params, item_id),
            )
            updated = self._require(conn, item_id)
        logger.debug("%s: %s -> %s", updated, item.status.name, new_status.name)
        return updated

    # === Enqueue ===

    def enqueue(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        operation: SyncOperation | str,
        priority: int = 0,
    ) -> QueueItem:
        """Record a local mutation.

        Enqueueing the same (entity type, entity id, operation) while an item
        for it is still live returns that item instead of adding a row.

        Args:
            entity_type: Kind of the mutated record.
            entity_id: Identifier of the mutated record.
            operation: CREATE, UPDATE or DELETE.
            priority: Higher drains first within a precedence class.

        Returns:
            The item now carrying the mutation.

        Raises:
            ValueError: If the mutation cannot be synced (e.g. FRAMES-DELETE).
            QueueError: If the queue is closed.
        """
        entity_type = EntityType(entity_type)
        operation = SyncOperation(operation)
        precedence = precedence_of(entity_type, operation)
        now = self._clock()

        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_queue WHERE entity_type = ? AND entity_id = ? "
                "AND status IN (?, ?, ?) ORDER BY created_at ASC",
                (entity_type.value, entity_id, *_LIVE),
            ).fetchall()
            plan = self._matrix.plan(entity_type, operation, [QueueItem.from_row(r) for r in rows])

            if plan.action in (EnqueueAction.MERGE, EnqueueAction.ABSORB) and plan.target:
                requeue = (
                    plan.action == EnqueueAction.MERGE
                    and plan.target.status == QueueStatus.PROCESSING
                )
                conn.execute(
                    "UPDATE sync_queue SET priority = MAX(priority, ?), "
                    "requeue_requested = MAX(requeue_requested, ?) WHERE id = ?",
                    (priority, int(requeue), plan.target.id),
                )
                item = self._require(conn, plan.target.id)
                logger.debug("Coalesced %s-%s for %s into %r: %s",
                             entity_type.value, operation.value, entity_id, item, plan.reason)
                return item

            for old in plan.superseded:
                conn.execute("DELETE FROM sync_queue WHERE id = ?", (old.id,))
                logger.info("Superseded %r: %s", old, plan.reason)

            item = QueueItem(
                entity_type=entity_type,
                entity_id=entity_id,
                operation=operation,
                priority=priority,
                max_retries=self.max_retries,
                scheduled_at=now,
                created_at=now,
            )
            conn.execute(
                """
                INSERT INTO sync_queue
                (id, entity_type, entity_id, operation, precedence, status, priority,
                 retry_count, max_retries, scheduled_at, error_message, created_at,
                 processed_at, claimed_at, requeue_requested)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?, NULL, NULL, 0)
                """,
                (
                    item.id,
                    entity_type.value,
                    entity_id,
                    operation.value,
                    precedence,
                    item.status.value,
                    priority,
                    item.retry_count,
                    item.max_retries,
                    item.scheduled_at,
                    item.created_at,
                ),
            )
        logger.debug("Queued %r", item)
        return item

    # === Claiming ===

    def claim_batch(self, limit: int) -> list[QueueItem]:
        """Atomically claim up to ``limit`` eligible items.

        Eligible: PENDING items whose time has come, FAILED items whose
        backoff elapsed and budget remains, and stale PROCESSING claims.
        Claimed items are returned in processing order.
        """
        if limit <= 0:
            return []
        now = self._clock()
        stale_before = now - self.claim_timeout

        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM sync_queue
                WHERE (status = ? AND scheduled_at <= ?)
                   OR (status = ? AND scheduled_at <= ? AND retry_count < max_retries)
                   OR (status = ? AND claimed_at <= ?)
                {_ORDER}
                LIMIT ?
                """,
                (
                    QueueStatus.PENDING.value,
                    now,
                    QueueStatus.FAILED.value,
                    now,
                    QueueStatus.PROCESSING.value,
                    stale_before,
                    limit,
                ),
            ).fetchall()
            items = [QueueItem.from_row(row) for row in rows]
            for item in items:
                check_transition(item.status, QueueStatus.PROCESSING)
                if item.status == QueueStatus.PROCESSING:
                    logger.warning("Reclaiming stale claim %r", item)
            conn.executemany(
                "UPDATE sync_queue SET status = ?, claimed_at = ? WHERE id = ?",
                [(QueueStatus.PROCESSING.value, now, item.id) for item in items],
            )

        for item in items:
            item.status = QueueStatus.PROCESSING
            item.claimed_at = now
        if items:
            logger.debug("Claimed %d item(s)", len(items))
        return items

    # === Outcomes ===

    def mark_completed(self, item_id: str) -> QueueItem:
        """Record a successful upload.

        If a newer identical mutation arrived while the item was being
        processed, the item goes back to PENDING instead.

        Returns:
            The updated item (COMPLETED, or PENDING when requeued).
        """
        now = self._clock()
        with self._lock:
            item = self.get_item(item_id)
            if item is None:
                raise QueueError(f"Unknown queue item: {item_id}")
            if item.requeue_requested:
                logger.info("Requeueing %r: superseded while processing", item)
                return self._transition(
                    item_id,
                    QueueStatus.PENDING,
                    "requeue_requested = 0, retry_count = 0, error_message = NULL, "
                    "scheduled_at = ?, claimed_at = NULL",
                    (now,),
                )
            return self._transition(
                item_id,
                QueueStatus.COMPLETED,
                "processed_at = ?, error_message = NULL, claimed_at = NULL",
                (now,),
            )

    def mark_failed(self, item_id: str, error_message: str, next_attempt_at: float) -> QueueItem:
        """Record a failed attempt and schedule the next one.

        Increments retry_count. The caller decides whether the item is
        abandoned afterwards.

        Returns:
            The updated FAILED item.
        """
        return self._transition(
            item_id,
            QueueStatus.FAILED,
            "retry_count = retry_count + 1, error_message = ?, scheduled_at = ?, "
            "claimed_at = NULL, requeue_requested = 0",
            (error_message, next_attempt_at),
        )

    def mark_abandoned(self, item_id: str, error_message: str | None = None) -> QueueItem:
        """Stop retrying an item. It stays visible until retried or removed."""
        now = self._clock()
        if error_message is None:
            return self._transition(
                item_id,
                QueueStatus.ABANDONED,
                "processed_at = ?, claimed_at = NULL",
                (now,),
            )
        return self._transition(
            item_id,
            QueueStatus.ABANDONED,
            "processed_at = ?, claimed_at = NULL, error_message = ?",
            (now, error_message),
        )

    def release(self, item_id: str, not_before: float | None = None) -> QueueItem:
        """Hand a claimed item back without counting an attempt."""
        now = self._clock()
        scheduled = max(now, not_before) if not_before is not None else now
        return self._transition(
            item_id,
            QueueStatus.PENDING,
            "scheduled_at = ?, claimed_at = NULL",
            (scheduled,),
        )

    def retry_abandoned(self, item_id: str) -> QueueItem:
        """User-initiated retry: an ABANDONED item gets a fresh budget.

        Raises:
            QueueError: If the item is unknown or not ABANDONED.
        """
        now = self._clock()
        item = self._transition(
            item_id,
            QueueStatus.PENDING,
            "retry_count = 0, error_message = NULL, scheduled_at = ?, "
            "processed_at = NULL, claimed_at = NULL",
            (now,),
        )
        logger.info("Manual retry of %r", item)
        return item

    # === Maintenance ===

    def purge_completed(self, older_than: float | None = None) -> int:
        """Delete COMPLETED items processed more than ``older_than`` seconds ago.

        Returns:
            Number of items deleted.
        """
        window = self.completed_retention if older_than is None else older_than
        cutoff = self._clock() - window
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM sync_queue WHERE status = ? AND processed_at < ?",
                (QueueStatus.COMPLETED.value, cutoff),
            )
            count = cursor.rowcount
        if count:
            logger.info("Purged %d completed item(s)", count)
        return count

    def abandon_exhausted(self) -> int:
        """Abandon FAILED items whose retry budget is spent.

        Returns:
            Number of items abandoned.
        """
        now = self._clock()
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE sync_queue SET status = ?, processed_at = ? "
                "WHERE status = ? AND retry_count >= max_retries",
                (QueueStatus.ABANDONED.value, now, QueueStatus.FAILED.value),
            )
            count = cursor.rowcount
        if count:
            logger.warning("Abandoned %d item(s) with no retries left", count)
        return count

    def reclaim_stale(self, timeout: float | None = None) -> int:
        """Return stale PROCESSING items to PENDING.

        Returns:
            Number of items reclaimed.
        """
        window = self.claim_timeout if timeout is None else timeout
        now = self._clock()
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE sync_queue SET status = ?, claimed_at = NULL, scheduled_at = ? "
                "WHERE status = ? AND claimed_at <= ?",
                (QueueStatus.PENDING.value, now, QueueStatus.PROCESSING.value, now - window),
            )
            count = cursor.rowcount
        if count:
            logger.warning("Reclaimed %d stale claim(s)", count)
        return count

    def remove(self, item_id: str) -> bool:
        """Delete an item regardless of status. Returns False if unknown."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM sync_queue WHERE id = ?", (item_id,))
            return cursor.rowcount > 0

    def clear_status(self, status: QueueStatus) -> int:
        """Delete every item in a status. Returns the number deleted."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM sync_queue WHERE status = ?", (status.value,))
            return cursor.rowcount

    # === Queries ===

    def get_item(self, item_id: str) -> QueueItem | None:
        with self._lock:
            self._ensure_open()
            return self._fetch(self._conn, item_id)

    def items_by_status(self, status: QueueStatus) -> list[QueueItem]:
        """Items in a status, in claim order."""
        return self._query(f"SELECT * FROM sync_queue WHERE status = ? {_ORDER}", (status.value,))

    def abandoned_items(self) -> list[QueueItem]:
        """Items that need manual action."""
        return self.items_by_status(QueueStatus.ABANDONED)

    def items_for_entity(self, entity_type: EntityType, entity_id: str) -> list[QueueItem]:
        """Every item of one entity, oldest first."""
        return self._query(
            "SELECT * FROM sync_queue WHERE entity_type = ? AND entity_id = ? "
            "ORDER BY created_at ASC, rowid ASC",
            (entity_type.value, entity_id),
        )

    def all_items(self) -> list[QueueItem]:
        return self._query(f"SELECT * FROM sync_queue {_ORDER}")

    def unsynced_session_create(self, session_id: str) -> QueueItem | None:
        """The not-yet-completed SESSION-CREATE for a session, if any.

        Records that refer to the session wait while this exists.
        """
        items = self._query(
            "SELECT * FROM sync_queue WHERE entity_type = ? AND entity_id = ? "
            "AND operation = ? AND status != ? LIMIT 1",
            (
                EntityType.SESSION.value,
                session_id,
                SyncOperation.CREATE.value,
                QueueStatus.COMPLETED.value,
            ),
        )
        return items[0] if items else None

    def pending_count(self) -> int:
        """Items waiting for an attempt (PENDING, or FAILED awaiting retry)."""
        return self._count((QueueStatus.PENDING.value, QueueStatus.FAILED.value))

    def active_count(self) -> int:
        """Items waiting or in flight."""
        return self._count(_LIVE)

    def abandoned_count(self) -> int:
        return self._count((QueueStatus.ABANDONED.value,))

    def stats(self) -> dict[QueueStatus, int]:
        """Item counts for every status."""
        counts = dict.fromkeys(QueueStatus, 0)
        with self._lock:
            self._ensure_open()
            rows = self._conn.execute(
                "SELECT status, COUNT(*) AS n FROM sync_queue GROUP BY status"
            ).fetchall()
        for row in rows:
            counts[QueueStatus(row["status"])] = row["n"]
        return counts

    def next_scheduled_at(self) -> float | None:
        """Earliest time a waiting item becomes eligible, or None if nothing waits."""
        with self._lock:
            self._ensure_open()
            row = self._conn.execute(
                "SELECT MIN(scheduled_at) FROM sync_queue "
                "WHERE status = ? OR (status = ? AND retry_count < max_retries)",
                (QueueStatus.PENDING.value, QueueStatus.FAILED.value),
            ).fetchone()
        return row[0]
