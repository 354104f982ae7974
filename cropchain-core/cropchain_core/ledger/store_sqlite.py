"""SQLite-backed append-only ledger store.

Fork guard: partial UNIQUE indexes allow at most one genesis block per stream
and at most one child per ``(stream_id, previous_hash)``.  A second sibling
block can never reach durable storage; the losing insert raises
:class:`ChainConflictError`.

``insert`` also accepts an optimistic precondition (the previous hash the
writer read); it is checked inside a ``BEGIN IMMEDIATE`` transaction.

WAL journal mode is enabled so verification readers do not block the writer.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterator

from cropchain_core.errors import ChainConflictError, StoreUnavailableError
from cropchain_core.ledger.block import Block

logger = logging.getLogger(__name__)

#: Sentinel for "no precondition" (``None`` means "expect an empty stream").
ANY_PREVIOUS = object()


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_BLOCKS = """
CREATE TABLE IF NOT EXISTS ledger_blocks (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    stream_id               TEXT NOT NULL,
    event_name              TEXT NOT NULL,
    actor_role              TEXT NOT NULL,
    actor_id                TEXT NOT NULL,
    event_data_json         TEXT NOT NULL,
    content_refs_json       TEXT NOT NULL,
    timestamp_utc           TEXT NOT NULL,
    previous_hash           TEXT,
    current_hash            TEXT NOT NULL,
    external_anchor_ref     TEXT
);
"""

_CREATE_STREAM_IDX = """
CREATE INDEX IF NOT EXISTS idx_stream_order
    ON ledger_blocks (stream_id, id);
"""

_CREATE_DUPLICATE_IDX = """
CREATE INDEX IF NOT EXISTS idx_stream_event_actor_ts
    ON ledger_blocks (stream_id, event_name, actor_role, actor_id, timestamp_utc);
"""

# One child per parent hash within a stream.
_CREATE_CHILD_IDX = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_stream_previous_hash
    ON ledger_blocks (stream_id, previous_hash)
    WHERE previous_hash IS NOT NULL;
"""

# One genesis per stream.
_CREATE_GENESIS_IDX = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_stream_genesis
    ON ledger_blocks (stream_id)
    WHERE previous_hash IS NULL;
"""

_CREATE_HASH_IDX = """
CREATE INDEX IF NOT EXISTS idx_current_hash
    ON ledger_blocks (current_hash);
"""

_COLUMNS = (
    "id, stream_id, event_name, actor_role, actor_id, event_data_json, "
    "content_refs_json, timestamp_utc, previous_hash, current_hash, external_anchor_ref"
)


def _row_to_block(row: tuple) -> Block:
    (
        row_id, stream_id, event_name, actor_role, actor_id, event_data_json,
        content_refs_json, timestamp_utc, previous_hash, current_hash, anchor_ref,
    ) = row
    return Block(
        stream_id=stream_id,
        event_name=event_name,
        actor_role=actor_role,
        actor_id=actor_id,
        event_data=json.loads(event_data_json),
        content_references=tuple(json.loads(content_refs_json)),
        timestamp=timestamp_utc,
        previous_hash=previous_hash,
        current_hash=current_hash,
        external_anchor_ref=anchor_ref,
        sequence=row_id,
    )


# ---------------------------------------------------------------------------
# LedgerStore
# ---------------------------------------------------------------------------


class LedgerStore:
    """Append-only SQLite ledger.

    Each call opens, uses, and closes a connection, which is safe for
    multi-threaded and multi-process use.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    timeout_seconds:
        How long a write waits for the database lock before the operation
        fails with :class:`StoreUnavailableError`.
    """

    def __init__(self, db_path: Path, timeout_seconds: float = 5.0) -> None:
        self._db_path = Path(db_path)
        self._timeout = timeout_seconds
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailableError(f"Cannot create ledger directory: {exc}") from exc
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._db_path),
            timeout=self._timeout,
            check_same_thread=False,
            isolation_level=None,  # explicit BEGIN/COMMIT below
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.OperationalError as exc:
            raise StoreUnavailableError(f"Ledger store unavailable: {exc}") from exc
        try:
            yield conn
        except sqlite3.OperationalError as exc:
            raise StoreUnavailableError(f"Ledger store unavailable: {exc}") from exc
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._connection() as conn:
            conn.execute(_CREATE_BLOCKS)
            conn.execute(_CREATE_STREAM_IDX)
            conn.execute(_CREATE_DUPLICATE_IDX)
            conn.execute(_CREATE_CHILD_IDX)
            conn.execute(_CREATE_GENESIS_IDX)
            conn.execute(_CREATE_HASH_IDX)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, block: Block, expected_previous_hash: Any = ANY_PREVIOUS) -> Block:
        """Durably append *block* and return it with its ``sequence`` set.

        Parameters
        ----------
        block:
            Fully built block (``current_hash`` already computed).
        expected_previous_hash:
            Optimistic precondition.  When given, the insert only succeeds if
            the stream's stored latest hash still equals it (``None`` means
            the stream must be empty).

        Raises
        ------
        ChainConflictError
            If the precondition fails or the insert would fork the stream.
        StoreUnavailableError
            If the database cannot be reached within the timeout.
        """
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if expected_previous_hash is not ANY_PREVIOUS:
                    row = conn.execute(
                        "SELECT current_hash FROM ledger_blocks WHERE stream_id = ? "
                        "ORDER BY id DESC LIMIT 1",
                        (block.stream_id,),
                    ).fetchone()
                    stored = row[0] if row else None
                    if stored != expected_previous_hash:
                        raise ChainConflictError(
                            f"Stream {block.stream_id!r} moved: expected tip "
                            f"{expected_previous_hash!r}, stored tip {stored!r}"
                        )
                cur = conn.execute(
                    """
                    INSERT INTO ledger_blocks
                        (stream_id, event_name, actor_role, actor_id, event_data_json,
                         content_refs_json, timestamp_utc, previous_hash, current_hash,
                         external_anchor_ref)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        block.stream_id,
                        block.event_name,
                        block.actor_role,
                        block.actor_id,
                        json.dumps(block.event_data, sort_keys=True),
                        json.dumps(list(block.content_references)),
                        block.timestamp,
                        block.previous_hash,
                        block.current_hash,
                        block.external_anchor_ref,
                    ),
                )
                conn.execute("COMMIT")
            except sqlite3.IntegrityError as exc:
                conn.execute("ROLLBACK")
                raise ChainConflictError(
                    f"Insert would fork stream {block.stream_id!r} at "
                    f"previous_hash {block.previous_hash!r}"
                ) from exc
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        logger.debug("Inserted block %s for stream %s", block.current_hash, block.stream_id)
        return replace(block, sequence=cur.lastrowid)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_latest(self, stream_id: str) -> Block | None:
        """Return the most recently appended block of *stream_id*, if any."""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM ledger_blocks WHERE stream_id = ? "
                "ORDER BY id DESC LIMIT 1",
                (stream_id,),
            ).fetchone()
        return _row_to_block(row) if row else None

    def find_duplicate(
        self,
        stream_id: str,
        event_name: str,
        actor_role: str,
        actor_id: str,
        since_timestamp: str,
    ) -> Block | None:
        """Return the newest matching block with ``timestamp >= since_timestamp``."""
        with self._connection() as conn:
            row = conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM ledger_blocks
                WHERE stream_id = ?
                  AND event_name = ?
                  AND actor_role = ?
                  AND actor_id = ?
                  AND timestamp_utc >= ?
                ORDER BY id DESC
                LIMIT 1
                """,
                (stream_id, event_name, actor_role, actor_id, since_timestamp),
            ).fetchone()
        return _row_to_block(row) if row else None

    def find_all(self, stream_id: str, ascending: bool = True) -> list[Block]:
        """Return every block of *stream_id* in append order."""
        order = "ASC" if ascending else "DESC"
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM ledger_blocks WHERE stream_id = ? ORDER BY id {order}",
                (stream_id,),
            ).fetchall()
        return [_row_to_block(r) for r in rows]

    def find_by_hash(self, current_hash: str) -> Block | None:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM ledger_blocks WHERE current_hash = ? LIMIT 1",
                (current_hash,),
            ).fetchone()
        return _row_to_block(row) if row else None

    def count(self, stream_id: str) -> int:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM ledger_blocks WHERE stream_id = ?",
                (stream_id,),
            ).fetchone()
        return row[0] if row else 0

    def list_streams(self) -> list[dict[str, Any]]:
        """Return ``{"stream_id", "blocks", "latest_timestamp"}`` per stream."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT stream_id, COUNT(*), MAX(timestamp_utc)
                FROM ledger_blocks
                GROUP BY stream_id
                ORDER BY stream_id
                """
            ).fetchall()
        return [
            {"stream_id": sid, "blocks": n, "latest_timestamp": ts} for sid, n, ts in rows
        ]
