"""SQLite persistence gateway with WAL mode.

One connection is shared between the analysis loop and the API server
thread, guarded by a re-entrant lock. Every write runs inside a single
transaction; ``sqlite3`` failures surface as ``StorageError``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Sequence

from daytrace.domain.models import (
    Batch,
    BatchStatus,
    LLMCall,
    Observation,
    Screenshot,
    TimelineCard,
)
from daytrace.errors import (
    BatchBusyError,
    BatchNotFoundError,
    InvalidStatusTransitionError,
    StorageError,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS batches (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    start_ts INTEGER NOT NULL,
    end_ts INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    failure_reason TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS screenshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_path TEXT NOT NULL UNIQUE,
    captured_at INTEGER NOT NULL,
    batch_id INTEGER REFERENCES batches(id)
);

CREATE TABLE IF NOT EXISTS observations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    batch_id INTEGER NOT NULL REFERENCES batches(id) ON DELETE CASCADE,
    start_ts INTEGER NOT NULL,
    end_ts INTEGER NOT NULL,
    text TEXT NOT NULL,
    metadata TEXT,
    model TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS timeline_cards (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    batch_id INTEGER REFERENCES batches(id),
    start_ts INTEGER NOT NULL,
    end_ts INTEGER NOT NULL,
    category TEXT NOT NULL,
    subcategory TEXT NOT NULL DEFAULT '',
    title TEXT NOT NULL,
    summary TEXT NOT NULL DEFAULT '',
    detailed_summary TEXT NOT NULL DEFAULT '',
    distractions TEXT,
    app_sites TEXT,
    video_artifact_path TEXT
);

CREATE TABLE IF NOT EXISTS llm_calls (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    batch_id INTEGER,
    timestamp TEXT NOT NULL,
    latency REAL NOT NULL DEFAULT 0.0,
    operation TEXT NOT NULL DEFAULT '',
    provider TEXT NOT NULL DEFAULT '',
    model TEXT NOT NULL DEFAULT '',
    input TEXT,
    output TEXT,
    error TEXT
);

CREATE INDEX IF NOT EXISTS idx_batches_status ON batches(status);
CREATE INDEX IF NOT EXISTS idx_screenshots_batch ON screenshots(batch_id);
CREATE INDEX IF NOT EXISTS idx_screenshots_captured ON screenshots(captured_at);
CREATE INDEX IF NOT EXISTS idx_observations_batch ON observations(batch_id);
CREATE INDEX IF NOT EXISTS idx_observations_range ON observations(start_ts, end_ts);
CREATE INDEX IF NOT EXISTS idx_cards_range ON timeline_cards(start_ts, end_ts);
"""

CHECKPOINT_MODES = ("PASSIVE", "FULL", "RESTART", "TRUNCATE")

# Claims and reprocessing go through claim_batch and reset_batch_for_reprocess.
ALLOWED_TRANSITIONS: dict[BatchStatus, set[BatchStatus]] = {
    BatchStatus.PENDING: {BatchStatus.PROCESSING, BatchStatus.FAILED},
    BatchStatus.PROCESSING: {BatchStatus.ANALYZED, BatchStatus.FAILED},
    BatchStatus.ANALYZED: set(),
    BatchStatus.FAILED: set(),
}


class TimelineStore:
    """Batches, screenshots, observations, cards and the LLM call log."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.RLock()
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = sqlite3.connect(
            str(db_path), check_same_thread=False
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()
        logger.info("Opened timeline store at %s", self.db_path)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Timeline store is closed")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block in one transaction, committing on success."""
        with self._lock:
            conn = self.conn
            try:
                with conn:
                    yield conn
            except sqlite3.Error as e:
                raise StorageError(f"Database operation failed: {e}") from e

    def _query(self, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Database query failed: {e}") from e

    # -- Batches --

    def create_batch(
        self, start_ts: int, end_ts: int, screenshot_ids: Sequence[int] = ()
    ) -> int:
        """Close a batch over ``[start_ts, end_ts]`` and claim its screenshots.

        Raises:
            ValueError: If the range is empty.
        """
        if end_ts <= start_ts:
            raise ValueError(f"Batch range [{start_ts}, {end_ts}] is empty")
        with self._transaction() as conn:
            cur = conn.execute(
                "INSERT INTO batches (start_ts, end_ts, status) VALUES (?, ?, ?)",
                (start_ts, end_ts, BatchStatus.PENDING.value),
            )
            batch_id = cur.lastrowid
            conn.executemany(
                "UPDATE screenshots SET batch_id = ? WHERE id = ?",
                [(batch_id, sid) for sid in screenshot_ids],
            )
        logger.debug("Created batch %d [%d, %d] with %d screenshots",
                     batch_id, start_ts, end_ts, len(screenshot_ids))
        return batch_id

    def get_batch(self, batch_id: int) -> Batch:
        rows = self._query("SELECT * FROM batches WHERE id = ?", (batch_id,))
        if not rows:
            raise BatchNotFoundError(f"Batch {batch_id} not found")
        return self._row_to_batch(rows[0])

    def list_batches(self, status: BatchStatus | None = None, limit: int | None = None) -> list[Batch]:
        sql = "SELECT * FROM batches"
        params: list[object] = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(BatchStatus(status).value)
        sql += " ORDER BY start_ts, id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._row_to_batch(r) for r in self._query(sql, params)]

    def update_batch_status(
        self, batch_id: int, status: BatchStatus, reason: str | None = None
    ) -> Batch:
        """Move a batch forward along its lifecycle.

        Raises:
            BatchNotFoundError: If the batch does not exist.
            InvalidStatusTransitionError: If the move is not allowed.
        """
        status = BatchStatus(status)
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM batches WHERE id = ?", (batch_id,)).fetchone()
            if row is None:
                raise BatchNotFoundError(f"Batch {batch_id} not found")
            current = BatchStatus(row["status"])
            if status not in ALLOWED_TRANSITIONS[current]:
                raise InvalidStatusTransitionError(
                    f"Batch {batch_id} cannot move from {current.value} to {status.value}"
                )
            conn.execute(
                "UPDATE batches SET status = ?, failure_reason = ? WHERE id = ?",
                (status.value, reason, batch_id),
            )
        return self.get_batch(batch_id)

    def claim_batch(self, batch_id: int) -> bool:
        """Move a batch from ``pending`` to ``processing`` in one statement.

        Returns False when the batch is not pending, which includes a
        batch another process claimed first.

        Raises:
            BatchNotFoundError: If the batch does not exist.
        """
        with self._transaction() as conn:
            claimed = conn.execute(
                "UPDATE batches SET status = ?, failure_reason = NULL WHERE id = ? AND status = ?",
                (BatchStatus.PROCESSING.value, batch_id, BatchStatus.PENDING.value),
            ).rowcount
            if not claimed and conn.execute(
                "SELECT 1 FROM batches WHERE id = ?", (batch_id,)
            ).fetchone() is None:
                raise BatchNotFoundError(f"Batch {batch_id} not found")
        return bool(claimed)

    def reset_batch_for_reprocess(self, batch_id: int) -> Batch:
        """Drop a batch's observations and rewind it to pending.

        Screenshots are kept so the batch can be analyzed again. A batch
        in ``processing`` belongs to a running worker and is left alone;
        ``recover_stuck_batches`` handles the ones a crash left behind.

        Raises:
            BatchNotFoundError: If the batch does not exist.
            BatchBusyError: If the batch is being processed.
        """
        with self._transaction() as conn:
            reset = conn.execute(
                "UPDATE batches SET status = ?, failure_reason = NULL WHERE id = ? AND status != ?",
                (BatchStatus.PENDING.value, batch_id, BatchStatus.PROCESSING.value),
            ).rowcount
            if not reset:
                if conn.execute("SELECT 1 FROM batches WHERE id = ?", (batch_id,)).fetchone() is None:
                    raise BatchNotFoundError(f"Batch {batch_id} not found")
                raise BatchBusyError(f"Batch {batch_id} is already being processed")
            deleted = conn.execute(
                "DELETE FROM observations WHERE batch_id = ?", (batch_id,)
            ).rowcount
        logger.info("Batch %d reset for reprocessing (%d observations dropped)", batch_id, deleted)
        return self.get_batch(batch_id)

    def recover_stuck_batches(self) -> list[int]:
        """Return batches left in ``processing`` by a crash to ``pending``."""
        with self._transaction() as conn:
            ids = [
                r["id"]
                for r in conn.execute(
                    "SELECT id FROM batches WHERE status = ?", (BatchStatus.PROCESSING.value,)
                ).fetchall()
            ]
            conn.execute(
                "UPDATE batches SET status = ? WHERE status = ?",
                (BatchStatus.PENDING.value, BatchStatus.PROCESSING.value),
            )
        if ids:
            logger.warning("Recovered %d stuck batches: %s", len(ids), ids)
        return ids

    # -- Screenshots --

    def add_screenshot(self, file_path: str, captured_at: int) -> int:
        with self._transaction() as conn:
            cur = conn.execute(
                "INSERT INTO screenshots (file_path, captured_at) VALUES (?, ?)",
                (file_path, captured_at),
            )
            return cur.lastrowid

    def has_screenshot(self, file_path: str) -> bool:
        return bool(self._query("SELECT 1 FROM screenshots WHERE file_path = ?", (file_path,)))

    def unbatched_screenshots(self) -> list[Screenshot]:
        rows = self._query(
            "SELECT * FROM screenshots WHERE batch_id IS NULL ORDER BY captured_at, id"
        )
        return [self._row_to_screenshot(r) for r in rows]

    def screenshots_for_batch(self, batch_id: int) -> list[Screenshot]:
        rows = self._query(
            "SELECT * FROM screenshots WHERE batch_id = ? ORDER BY captured_at, id", (batch_id,)
        )
        return [self._row_to_screenshot(r) for r in rows]

    # -- Observations --

    def save_observations(self, batch_id: int, observations: Sequence[Observation]) -> list[int]:
        ids = []
        with self._transaction() as conn:
            for obs in observations:
                cur = conn.execute(
                    """INSERT INTO observations
                       (batch_id, start_ts, end_ts, text, metadata, model, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        batch_id,
                        obs.start_ts,
                        obs.end_ts,
                        obs.text,
                        obs.metadata,
                        obs.model,
                        obs.created_at.isoformat(),
                    ),
                )
                ids.append(cur.lastrowid)
        return ids

    def observations_in_range(self, start_ts: int, end_ts: int) -> list[Observation]:
        """All observations, from any batch, intersecting ``[start_ts, end_ts]``."""
        rows = self._query(
            """SELECT * FROM observations WHERE start_ts < ? AND end_ts > ?
               ORDER BY start_ts, id""",
            (end_ts, start_ts),
        )
        return [Observation(**dict(r)) for r in rows]

    def observations_for_batch(self, batch_id: int) -> list[Observation]:
        rows = self._query(
            "SELECT * FROM observations WHERE batch_id = ? ORDER BY start_ts, id", (batch_id,)
        )
        return [Observation(**dict(r)) for r in rows]

    # -- Timeline cards --

    def cards_in_range(self, start_ts: int, end_ts: int) -> list[TimelineCard]:
        rows = self._query(
            """SELECT * FROM timeline_cards WHERE start_ts < ? AND end_ts > ?
               ORDER BY start_ts, id""",
            (end_ts, start_ts),
        )
        return [self._row_to_card(r) for r in rows]

    def replace_cards_in_range(
        self,
        start_ts: int,
        end_ts: int,
        cards: Sequence[TimelineCard],
        batch_id: int | None,
    ) -> tuple[list[int], list[str]]:
        """Atomically swap every card overlapping the range for ``cards``.

        Returns the inserted card ids and the video artifact paths of the
        deleted cards. The caller removes those files after this returns;
        nothing on the filesystem is touched inside the transaction.
        """
        with self._transaction() as conn:
            doomed = conn.execute(
                """SELECT id, video_artifact_path FROM timeline_cards
                   WHERE start_ts < ? AND end_ts > ?""",
                (end_ts, start_ts),
            ).fetchall()
            orphans = [r["video_artifact_path"] for r in doomed if r["video_artifact_path"]]
            conn.executemany(
                "DELETE FROM timeline_cards WHERE id = ?", [(r["id"],) for r in doomed]
            )
            inserted = []
            for card in cards:
                cur = conn.execute(
                    """INSERT INTO timeline_cards
                       (batch_id, start_ts, end_ts, category, subcategory, title, summary,
                        detailed_summary, distractions, app_sites, video_artifact_path)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        batch_id,
                        card.start_ts,
                        card.end_ts,
                        card.category,
                        card.subcategory,
                        card.title,
                        card.summary,
                        card.detailed_summary,
                        _dump_distractions(card),
                        card.app_sites.model_dump_json() if card.app_sites else None,
                        card.video_artifact_path,
                    ),
                )
                inserted.append(cur.lastrowid)
        logger.info(
            "Replaced %d cards with %d in [%d, %d] (batch %s, %d orphaned artifacts)",
            len(doomed), len(inserted), start_ts, end_ts, batch_id, len(orphans),
        )
        return inserted, orphans

    # -- LLM call log --

    def record_llm_call(self, call: LLMCall, batch_id: int | None = None) -> int:
        with self._transaction() as conn:
            cur = conn.execute(
                """INSERT INTO llm_calls
                   (batch_id, timestamp, latency, operation, provider, model, input, output, error)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    batch_id,
                    call.timestamp.isoformat(),
                    call.latency,
                    call.operation,
                    call.provider,
                    call.model,
                    call.input,
                    call.output,
                    call.error,
                ),
            )
            return cur.lastrowid

    def llm_calls(self, batch_id: int | None = None) -> list[LLMCall]:
        if batch_id is None:
            rows = self._query("SELECT * FROM llm_calls ORDER BY id")
        else:
            rows = self._query("SELECT * FROM llm_calls WHERE batch_id = ? ORDER BY id", (batch_id,))
        return [
            LLMCall(**{k: r[k] for k in r.keys() if k not in ("id", "batch_id")}) for r in rows
        ]

    # -- Maintenance --

    def checkpoint(self, mode: str = "PASSIVE") -> tuple[int, int, int]:
        """Run a WAL checkpoint; returns ``(busy, log_frames, checkpointed)``."""
        mode = mode.upper()
        if mode not in CHECKPOINT_MODES:
            raise ValueError(f"Unknown checkpoint mode: {mode}")
        rows = self._query(f"PRAGMA wal_checkpoint({mode})")
        busy, log_frames, checkpointed = tuple(rows[0])
        logger.debug("WAL checkpoint %s: busy=%d log=%d checkpointed=%d",
                     mode, busy, log_frames, checkpointed)
        return busy, log_frames, checkpointed

    def close(self) -> None:
        """Flush the WAL into the main file and close the connection."""
        with self._lock:
            if self._conn is None:
                return
            try:
                self.checkpoint("TRUNCATE")
            except StorageError as e:
                logger.warning("Final checkpoint failed: %s", e)
            self._conn.close()
            self._conn = None
        logger.info("Closed timeline store at %s", self.db_path)

    # -- Row mapping --

    @staticmethod
    def _row_to_batch(row: sqlite3.Row) -> Batch:
        return Batch(
            id=row["id"],
            start_ts=row["start_ts"],
            end_ts=row["end_ts"],
            status=BatchStatus(row["status"]),
            failure_reason=row["failure_reason"],
        )

    @staticmethod
    def _row_to_screenshot(row: sqlite3.Row) -> Screenshot:
        return Screenshot(
            id=row["id"],
            file_path=row["file_path"],
            captured_at=row["captured_at"],
            batch_id=row["batch_id"],
        )

    @staticmethod
    def _row_to_card(row: sqlite3.Row) -> TimelineCard:
        return TimelineCard(
            id=row["id"],
            batch_id=row["batch_id"],
            start_ts=row["start_ts"],
            end_ts=row["end_ts"],
            category=row["category"],
            subcategory=row["subcategory"],
            title=row["title"],
            summary=row["summary"],
            detailed_summary=row["detailed_summary"],
            distractions=json.loads(row["distractions"]) if row["distractions"] else None,
            app_sites=json.loads(row["app_sites"]) if row["app_sites"] else None,
            video_artifact_path=row["video_artifact_path"],
        )


def _dump_distractions(card: TimelineCard) -> str | None:
    if not card.distractions:
        return None
    return json.dumps([d.model_dump() for d in card.distractions])
