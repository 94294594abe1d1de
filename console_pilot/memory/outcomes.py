"""Per-game action outcome history using SQLite.

This module persists every executed action with its before/after frames
and pixel delta, keyed by game identity, plus a small per-game aggregate
(success counts, strategy notes, last played time).

Features:
- Append-only record log, ordered by insertion
- Per-action success digests for prompt context
- Lazy, batched iteration over a game's history
- JSON export for offline review
- Automatic database initialization and schema versioning

Example:
    >>> from console_pilot.memory.outcomes import SQLiteOutcomeStore
    >>>
    >>> store = SQLiteOutcomeStore("data/outcomes.db")
    >>> store.append(record)
    >>> store.summarize(record.game_id)
    'START: 0/1'
"""

from __future__ import annotations

import base64
import contextlib
import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

from console_pilot.interfaces.memory import OutcomeStore
from console_pilot.models.records import ActionRecord, ActionStats

logger = logging.getLogger(__name__)

# Default database path
DEFAULT_DB_PATH = Path("data/outcomes.db")

# Schema version for migrations
SCHEMA_VERSION = 1

_RECORD_COLUMNS = (
    "id, game_id, timestamp, action_id, before_frame, after_frame, "
    "pixel_delta, success, observation, reasoning, raw_output"
)


class OutcomeStoreError(Exception):
    """Error raised when outcome store operations fail."""

    pass


class SQLiteOutcomeStore(OutcomeStore):
    """SQLite-backed outcome store.

    The class is thread-safe: every thread gets its own connection and
    writes are serialized by a lock. The decision loop writes from its own
    thread while the CLI or a status display reads from another.

    Attributes:
        db_path: Path to the SQLite database file.
        batch_size: Rows fetched per query by ``all_for``.
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        *,
        batch_size: int = 100,
        auto_init: bool = True,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file.
                    Uses DEFAULT_DB_PATH if not specified.
            batch_size: Rows fetched per query when iterating history.
            auto_init: Whether to automatically initialize the database.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        self._db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._batch_size = batch_size
        self._lock = threading.Lock()
        self._local = threading.local()
        self._connections: set[sqlite3.Connection] = set()
        self._connections_lock = threading.Lock()

        if auto_init:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_schema()

        logger.debug(f"SQLiteOutcomeStore initialized: {self._db_path}")

    @property
    def db_path(self) -> Path:
        """Get the database path."""
        return self._db_path

    @property
    def batch_size(self) -> int:
        """Get the iteration batch size."""
        return self._batch_size

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection.

        Connections are tracked so ``close()`` can release the ones opened
        by other threads, such as the decision loop thread.
        """
        conn: sqlite3.Connection | None = getattr(self._local, "connection", None)
        if conn is None or conn not in self._connections:
            conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode = WAL")
            self._local.connection = conn
            with self._connections_lock:
                self._connections.add(conn)
        return conn

    def _init_schema(self) -> None:
        """Initialize the database schema."""
        try:
            conn = self._get_connection()
            with conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INTEGER PRIMARY KEY
                    )
                """)
                row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
                current_version = row[0] if row else 0

                if current_version < SCHEMA_VERSION:
                    self._migrate_schema(conn, current_version)
        except sqlite3.Error as e:
            raise OutcomeStoreError(f"Failed to initialize database: {e}") from e

    def _migrate_schema(self, conn: sqlite3.Connection, from_version: int) -> None:
        """Migrate database schema to current version.

        Args:
            conn: Database connection.
            from_version: Current schema version in database.
        """
        if from_version < 1:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS action_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    game_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    action_id TEXT NOT NULL,
                    before_frame BLOB NOT NULL,
                    after_frame BLOB NOT NULL,
                    pixel_delta INTEGER NOT NULL CHECK (pixel_delta >= 0),
                    success INTEGER NOT NULL,
                    observation TEXT,
                    reasoning TEXT,
                    raw_output TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_action_records_game
                ON action_records(game_id, id)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS game_memory (
                    game_id TEXT PRIMARY KEY,
                    success_counts_json TEXT NOT NULL DEFAULT '{}',
                    strategy_notes TEXT,
                    last_played TEXT
                )
            """)

            conn.execute("DELETE FROM schema_version")
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )

            logger.info(f"Database schema migrated to version {SCHEMA_VERSION}")

    @staticmethod
    def _row_to_record(row: tuple[Any, ...]) -> ActionRecord:
        (
            _id,
            game_id,
            timestamp,
            action_id,
            before_frame,
            after_frame,
            pixel_delta,
            success,
            observation,
            reasoning,
            raw_output,
        ) = row
        return ActionRecord(
            game_id=game_id,
            timestamp=datetime.fromisoformat(timestamp),
            action_id=action_id,
            before_frame=bytes(before_frame),
            after_frame=bytes(after_frame),
            pixel_delta=pixel_delta,
            success=bool(success),
            observation=observation,
            reasoning=reasoning,
            raw_output=raw_output,
        )

    def append(self, record: ActionRecord) -> int:
        """Persist a record and update the game's success counts.

        Args:
            record: The executed action.

        Returns:
            Row id of the stored record.

        Raises:
            OutcomeStoreError: If the write fails.
        """
        with self._lock:
            try:
                conn = self._get_connection()
                with conn:
                    cursor = conn.execute(
                        """
                        INSERT INTO action_records (
                            game_id, timestamp, action_id, before_frame, after_frame,
                            pixel_delta, success, observation, reasoning, raw_output
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            record.game_id,
                            record.timestamp.isoformat(),
                            record.action_id,
                            record.before_frame,
                            record.after_frame,
                            record.pixel_delta,
                            int(record.success),
                            record.observation,
                            record.reasoning,
                            record.raw_output,
                        ),
                    )
                    record_id = cursor.lastrowid or 0

                    counts = self._load_success_counts(conn, record.game_id)
                    if record.success:
                        counts[record.action_id] = counts.get(record.action_id, 0) + 1
                    conn.execute(
                        """
                        INSERT INTO game_memory (game_id, success_counts_json, last_played)
                        VALUES (?, ?, ?)
                        ON CONFLICT(game_id) DO UPDATE SET
                            success_counts_json = excluded.success_counts_json,
                            last_played = excluded.last_played
                        """,
                        (record.game_id, json.dumps(counts), record.timestamp.isoformat()),
                    )

                logger.debug(
                    f"Stored record #{record_id}: {record.action_id} "
                    f"delta={record.pixel_delta} game={record.game_id[:8]}"
                )
                return record_id

            except sqlite3.Error as e:
                raise OutcomeStoreError(f"Failed to store record: {e}") from e

    @staticmethod
    def _load_success_counts(conn: sqlite3.Connection, game_id: str) -> dict[str, int]:
        row = conn.execute(
            "SELECT success_counts_json FROM game_memory WHERE game_id = ?",
            (game_id,),
        ).fetchone()
        if row is None:
            return {}
        try:
            counts: dict[str, int] = json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning(f"Discarding corrupted success counts for {game_id[:8]}")
            return {}
        return counts

    def stats(self, game_id: str) -> dict[str, ActionStats]:
        """Per-action attempt and success counts.

        Args:
            game_id: Game to aggregate.

        Returns:
            Stats keyed by action, ordered by each action's first attempt.

        Raises:
            OutcomeStoreError: If the query fails.
        """
        try:
            conn = self._get_connection()
            rows = conn.execute(
                """
                SELECT action_id, COUNT(*), SUM(success), MIN(id) AS first_id
                FROM action_records
                WHERE game_id = ?
                GROUP BY action_id
                ORDER BY first_id
                """,
                (game_id,),
            ).fetchall()
        except sqlite3.Error as e:
            raise OutcomeStoreError(f"Failed to compute stats: {e}") from e

        return {
            action_id: ActionStats(attempts=attempts, successes=successes or 0)
            for action_id, attempts, successes, _first_id in rows
        }

    def count(self, game_id: str) -> int:
        """Number of records stored for a game."""
        try:
            conn = self._get_connection()
            row = conn.execute(
                "SELECT COUNT(*) FROM action_records WHERE game_id = ?",
                (game_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise OutcomeStoreError(f"Failed to count records: {e}") from e
        return int(row[0])

    def all_for(self, game_id: str) -> Iterator[ActionRecord]:
        """Iterate a game's records in insertion order.

        Rows are fetched in batches of ``batch_size`` so long histories with
        frame payloads are never loaded at once.

        Args:
            game_id: Game whose history to read.

        Yields:
            ActionRecords, oldest first.

        Raises:
            OutcomeStoreError: If a query fails.
        """
        last_id = 0
        while True:
            try:
                conn = self._get_connection()
                rows = conn.execute(
                    f"""
                    SELECT {_RECORD_COLUMNS} FROM action_records
                    WHERE game_id = ? AND id > ?
                    ORDER BY id
                    LIMIT ?
                    """,
                    (game_id, last_id, self._batch_size),
                ).fetchall()
            except sqlite3.Error as e:
                raise OutcomeStoreError(f"Failed to read history: {e}") from e

            for row in rows:
                yield self._row_to_record(row)

            if len(rows) < self._batch_size:
                return
            last_id = rows[-1][0]

    def clear(self, game_id: str) -> int:
        """Delete all records and the aggregate memory for a game.

        Args:
            game_id: Game to clear.

        Returns:
            Number of action records deleted.

        Raises:
            OutcomeStoreError: If the delete fails.
        """
        with self._lock:
            try:
                conn = self._get_connection()
                with conn:
                    cursor = conn.execute("DELETE FROM action_records WHERE game_id = ?", (game_id,))
                    deleted = cursor.rowcount
                    conn.execute("DELETE FROM game_memory WHERE game_id = ?", (game_id,))
            except sqlite3.Error as e:
                raise OutcomeStoreError(f"Failed to clear history: {e}") from e

        logger.info(f"Cleared {deleted} records for game {game_id[:8]}")
        return deleted

    def success_counts(self, game_id: str) -> dict[str, int]:
        """Aggregate success count per action for a game."""
        try:
            return self._load_success_counts(self._get_connection(), game_id)
        except sqlite3.Error as e:
            raise OutcomeStoreError(f"Failed to read success counts: {e}") from e

    def last_played(self, game_id: str) -> datetime | None:
        """When an action was last recorded for a game."""
        try:
            row = self._get_connection().execute(
                "SELECT last_played FROM game_memory WHERE game_id = ?",
                (game_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise OutcomeStoreError(f"Failed to read last played time: {e}") from e
        if row is None or row[0] is None:
            return None
        return datetime.fromisoformat(row[0])

    def get_strategy_notes(self, game_id: str) -> str | None:
        """Free-form notes kept for a game."""
        try:
            row = self._get_connection().execute(
                "SELECT strategy_notes FROM game_memory WHERE game_id = ?",
                (game_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise OutcomeStoreError(f"Failed to read strategy notes: {e}") from e
        return row[0] if row else None

    def set_strategy_notes(self, game_id: str, notes: str | None) -> None:
        """Replace the notes kept for a game."""
        with self._lock:
            try:
                conn = self._get_connection()
                with conn:
                    conn.execute(
                        """
                        INSERT INTO game_memory (game_id, strategy_notes)
                        VALUES (?, ?)
                        ON CONFLICT(game_id) DO UPDATE SET strategy_notes = excluded.strategy_notes
                        """,
                        (game_id, notes),
                    )
            except sqlite3.Error as e:
                raise OutcomeStoreError(f"Failed to store strategy notes: {e}") from e

    def game_ids(self) -> list[str]:
        """All games with stored history or memory, sorted."""
        try:
            rows = self._get_connection().execute(
                """
                SELECT game_id FROM action_records
                UNION
                SELECT game_id FROM game_memory
                ORDER BY game_id
                """
            ).fetchall()
        except sqlite3.Error as e:
            raise OutcomeStoreError(f"Failed to list games: {e}") from e
        return [row[0] for row in rows]

    def export_to_json(self, game_id: str, path: str | Path) -> int:
        """Export a game's history to a JSON file.

        Frames are written as base64 PNG strings.

        Args:
            game_id: Game to export.
            path: Destination file.

        Returns:
            Number of records exported.

        Raises:
            OutcomeStoreError: If reading or writing fails.
        """
        records = []
        for record in self.all_for(game_id):
            entry = record.model_dump(mode="json", exclude={"before_frame", "after_frame"})
            entry["before_frame"] = base64.b64encode(record.before_frame).decode("ascii")
            entry["after_frame"] = base64.b64encode(record.after_frame).decode("ascii")
            records.append(entry)

        payload = {
            "game_id": game_id,
            "exported_at": datetime.now().isoformat(),
            "summary": self.summarize(game_id),
            "success_counts": self.success_counts(game_id),
            "strategy_notes": self.get_strategy_notes(game_id),
            "records": records,
        }

        destination = Path(path)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            raise OutcomeStoreError(f"Failed to write export: {e}") from e

        logger.info(f"Exported {len(records)} records for game {game_id[:8]} to {destination}")
        return len(records)

    def close(self) -> None:
        """Close every connection this store opened, on any thread.

        The store stays usable; the next query opens a fresh connection.
        """
        with self._connections_lock:
            connections, self._connections = self._connections, set()
        for conn in connections:
            conn.close()
        self._local.connection = None
        if connections:
            logger.debug(f"Closed {len(connections)} database connection(s)")

    def __enter__(self) -> SQLiteOutcomeStore:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def __del__(self) -> None:
        """Destructor - close connection."""
        with contextlib.suppress(Exception):
            self.close()
