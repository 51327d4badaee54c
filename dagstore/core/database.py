"""
dagstore.core.database — SQLite persistence for the channel message DAG.

Backend:       one aiosqlite connection, versioned schema, trace hook.
Message Store: channel-partitioned messages keyed by hash.
Leaf Index:    parent references; a leaf is a message nobody cites.
Entity Store:  namespaced ``(prefix, id) -> blob`` records.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable, Iterable

import aiosqlite

from dagstore.core.codec import decode_hash_list, encode_hash_list
from dagstore.core.errors import (
    HashListDecodeError,
    MessageDecodeError,
    SchemaVersionError,
    StoreAlreadyOpenError,
    StoreNotOpenError,
)
from dagstore.core.models import Message, StoreConfig, StoredMessage, TraceEvent

logger = logging.getLogger("dagstore.database")
trace_logger = logging.getLogger("dagstore.trace")

TraceHook = Callable[[TraceEvent], None]

# ---------------------------------------------------------------------------
# SQL DDL
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 2

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS messages (
    channel_id      BLOB    NOT NULL,
    hash            BLOB    NOT NULL,
    height          INTEGER NOT NULL,
    parent_hashes   BLOB    NOT NULL DEFAULT x'',   -- hash-list codec
    content         BLOB    NOT NULL,
    PRIMARY KEY (hash)
);

CREATE TABLE IF NOT EXISTS parent_references (
    channel_id      BLOB    NOT NULL,
    hash            BLOB    NOT NULL,           -- cited parent
    child_hash      BLOB    NOT NULL,           -- citing message
    PRIMARY KEY (channel_id, hash, child_hash)
);

CREATE TABLE IF NOT EXISTS entities (
    prefix          TEXT    NOT NULL,
    id              TEXT    NOT NULL,
    blob            BLOB    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_order   ON messages(channel_id, height ASC, hash ASC);
CREATE INDEX IF NOT EXISTS idx_parents_channel  ON parent_references(channel_id);
CREATE INDEX IF NOT EXISTS idx_parents_child    ON parent_references(child_hash);
CREATE UNIQUE INDEX IF NOT EXISTS idx_entity_id ON entities(prefix, id);
"""

_LOOKUP_SQL = """
CREATE TEMP TABLE IF NOT EXISTS lookup_hashes (
    hash            BLOB PRIMARY KEY
);
"""


def _log_trace(event: TraceEvent) -> None:
    trace_logger.debug("%s", event.statement)


# ---------------------------------------------------------------------------
# Backend — connection, schema and serialisation
# ---------------------------------------------------------------------------

class SQLiteBackend:
    """
    Owns the single aiosqlite connection shared by the stores.

    Every statement group runs under one ``asyncio.Lock``: writers finish
    (commit or roll back) before anything else touches the connection, and
    readers always see the last completed write.
    """

    def __init__(self, config: StoreConfig, tracer: TraceHook | None = None) -> None:
        self.config = config
        self._tracer = tracer
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._tmp_dir: Path | None = None
        self._db_path: Path | None = None

    @property
    def db_path(self) -> Path | None:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        if self._conn is not None:
            raise StoreAlreadyOpenError()

        if self.config.file is not None:
            path = Path(self.config.file).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
        else:
            self._tmp_dir = Path(tempfile.mkdtemp(prefix="dagstore-"))
            path = self._tmp_dir / "tmp.db"

        try:
            conn = await aiosqlite.connect(
                str(path),
                timeout=self.config.timeout,
                isolation_level=None,
            )
        except aiosqlite.Error:
            self._remove_tmp_dir()
            raise

        try:
            conn.row_factory = aiosqlite.Row
            if self.config.trace:
                hook = self._tracer or _log_trace
                await conn.set_trace_callback(
                    lambda statement: hook(TraceEvent(statement=statement))
                )
            if self.config.exclusive:
                await conn.execute("PRAGMA locking_mode=EXCLUSIVE")
            await self._apply_schema(conn)
        except BaseException:
            await conn.close()
            self._remove_tmp_dir()
            raise

        self._conn = conn
        self._db_path = path
        logger.info(
            "Opened store at %s%s",
            path,
            " (ephemeral)" if self._tmp_dir else "",
        )

    async def close(self) -> None:
        if self._conn is None:
            return
        conn = self._conn
        self._conn = None
        async with self._lock:
            await conn.close()
        logger.info("Closed store at %s", self._db_path)
        self._remove_tmp_dir()

    @staticmethod
    async def _apply_schema(conn: aiosqlite.Connection) -> None:
        async with conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        found = row[0] if row else 0
        if found > SCHEMA_VERSION:
            raise SchemaVersionError(found, SCHEMA_VERSION)

        if found == 1:
            await SQLiteBackend._migrate_v1(conn)
        await conn.executescript(_SCHEMA_SQL)
        await conn.executescript(_LOOKUP_SQL)
        if found < SCHEMA_VERSION:
            await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION:d}")
            logger.debug("Schema set to version %d (was %d)", SCHEMA_VERSION, found)

    @staticmethod
    async def _migrate_v1(conn: aiosqlite.Connection) -> None:
        """Rebuild parent references keyed by the citing message.

        Version 1 stored only ``(channel_id, hash)``, which cannot tell which
        message a reference belongs to, so the table is regenerated from the
        stored parent lists.
        """
        await conn.execute("BEGIN IMMEDIATE")
        try:
            await conn.execute("DROP INDEX IF EXISTS idx_parents_channel")
            await conn.execute("DROP TABLE IF EXISTS parent_references")
            await conn.execute(
                """CREATE TABLE parent_references (
                       channel_id BLOB NOT NULL,
                       hash       BLOB NOT NULL,
                       child_hash BLOB NOT NULL,
                       PRIMARY KEY (channel_id, hash, child_hash)
                   )"""
            )
            async with conn.execute(
                "SELECT channel_id, hash, parent_hashes FROM messages"
            ) as cursor:
                rows = await cursor.fetchall()
            references = []
            for row in rows:
                try:
                    parents = decode_hash_list(row["parent_hashes"])
                except HashListDecodeError as exc:
                    raise MessageDecodeError(row["hash"], exc) from exc
                references.extend((row["channel_id"], p, row["hash"]) for p in parents)
            await conn.executemany(
                """INSERT OR IGNORE INTO parent_references (channel_id, hash, child_hash)
                   VALUES (?, ?, ?)""",
                references,
            )
            await conn.execute("COMMIT")
        except BaseException:
            await conn.rollback()
            raise
        logger.info("Migrated parent references from schema version 1 (%d rows)", len(references))

    def _remove_tmp_dir(self) -> None:
        if self._tmp_dir is not None:
            shutil.rmtree(self._tmp_dir, ignore_errors=True)
            self._tmp_dir = None

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreNotOpenError()
        return self._conn

    # -- Access ------------------------------------------------------------

    @staticmethod
    async def _settle(conn: aiosqlite.Connection) -> None:
        """Roll back a transaction left open by an abandoned operation."""
        if conn.in_transaction:
            logger.warning("Rolling back a transaction left open by a cancelled operation")
            await conn.rollback()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[aiosqlite.Connection]:
        """Exclusive, non-transactional access for reads."""
        conn = self._conn_or_raise()
        async with self._lock:
            await self._settle(conn)
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Exclusive access wrapped in ``BEGIN IMMEDIATE`` / ``COMMIT``.

        Any exception, cancellation included, rolls the whole unit back.
        ``rollback()`` is queued behind whatever the worker thread is still
        running, so a cancelled ``BEGIN`` is undone as well.
        """
        conn = self._conn_or_raise()
        async with self._lock:
            await self._settle(conn)
            try:
                await conn.execute("BEGIN IMMEDIATE")
                yield conn
                await conn.execute("COMMIT")
            except BaseException:
                await conn.rollback()
                raise

    async def clear(self) -> None:
        async with self.transaction() as conn:
            await conn.execute("DELETE FROM messages")
            await conn.execute("DELETE FROM parent_references")
            await conn.execute("DELETE FROM entities")
        logger.info("Cleared store at %s", self._db_path)


# ---------------------------------------------------------------------------
# Leaf Index
# ---------------------------------------------------------------------------

class LeafIndex:
    """
    Tracks which hashes each channel's messages cite as parents.

    A hash is a leaf of its channel iff its message exists and no parent
    reference names it.  References are recorded in the same transaction as
    the message row, so the leaf set is never recomputed or repaired.
    """

    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    @staticmethod
    async def record(conn: aiosqlite.Connection, message: Message) -> None:
        """Replace the references cited by *message*. Caller owns the transaction.

        A re-inserted hash drops whatever its previous row cited, in any
        channel, before its current parents are recorded.
        """
        await conn.execute(
            "DELETE FROM parent_references WHERE child_hash = ?",
            (message.hash,),
        )
        if not message.parents:
            return
        await conn.executemany(
            """INSERT OR IGNORE INTO parent_references (channel_id, hash, child_hash)
               VALUES (?, ?, ?)""",
            [(message.channel_id, parent, message.hash) for parent in message.parents],
        )

    async def get_leaves(self, channel_id: bytes) -> list[bytes]:
        """Return the content of every leaf in *channel_id*, in canonical order."""
        rows = await self._leaf_rows(channel_id)
        return [row["content"] for row in rows]

    async def get_leaf_hashes(self, channel_id: bytes) -> list[bytes]:
        """Return the hash of every leaf in *channel_id*, in canonical order."""
        rows = await self._leaf_rows(channel_id)
        return [row["hash"] for row in rows]

    async def is_leaf(self, channel_id: bytes, message_hash: bytes) -> bool:
        async with self._backend.session() as conn:
            async with conn.execute(
                """SELECT COUNT(*) AS count FROM messages AS m
                   WHERE m.channel_id = ? AND m.hash = ?
                     AND NOT EXISTS (
                         SELECT 1 FROM parent_references AS p
                         WHERE p.channel_id = m.channel_id AND p.hash = m.hash
                     )""",
                (channel_id, message_hash),
            ) as cursor:
                row = await cursor.fetchone()
        return bool(row and row["count"])

    async def _leaf_rows(self, channel_id: bytes) -> list[aiosqlite.Row]:
        async with self._backend.session() as conn:
            rows = await conn.execute_fetchall(
                """SELECT m.hash, m.content FROM messages AS m
                   WHERE m.channel_id = ?
                     AND NOT EXISTS (
                         SELECT 1 FROM parent_references AS p
                         WHERE p.channel_id = m.channel_id AND p.hash = m.hash
                     )
                   ORDER BY m.height ASC, m.hash ASC""",
                (channel_id,),
            )
        return list(rows)


# ---------------------------------------------------------------------------
# Message Store
# ---------------------------------------------------------------------------

class MessageStore:
    """Channel-partitioned message rows, ordered by ``(height, hash)``."""

    def __init__(self, backend: SQLiteBackend, leaves: LeafIndex) -> None:
        self._backend = backend
        self._leaves = leaves

    async def add_message(self, message: Message) -> None:
        """
        Insert *message*, replacing any row with the same hash.

        The parent list is encoded before the transaction opens, so an
        oversized hash aborts the insert without touching the database.
        """
        encoded_parents = encode_hash_list(message.parents)
        async with self._backend.transaction() as conn:
            await conn.execute(
                """INSERT OR REPLACE INTO messages
                   (channel_id, hash, height, parent_hashes, content)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    message.channel_id,
                    message.hash,
                    message.height,
                    encoded_parents,
                    message.content,
                ),
            )
            await self._leaves.record(conn, message)
        logger.debug(
            "Stored message %s at height %d (%d parents)",
            message.hash.hex()[:16],
            message.height,
            len(message.parents),
        )

    async def get_message_count(self, channel_id: bytes) -> int:
        async with self._backend.session() as conn:
            async with conn.execute(
                "SELECT COUNT(*) AS count FROM messages WHERE channel_id = ?",
                (channel_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return row["count"] if row else 0

    async def has_message(self, channel_id: bytes, message_hash: bytes) -> bool:
        async with self._backend.session() as conn:
            async with conn.execute(
                "SELECT 1 FROM messages WHERE channel_id = ? AND hash = ?",
                (channel_id, message_hash),
            ) as cursor:
                row = await cursor.fetchone()
        return row is not None

    async def get_message(self, channel_id: bytes, message_hash: bytes) -> bytes | None:
        async with self._backend.session() as conn:
            async with conn.execute(
                "SELECT content FROM messages WHERE channel_id = ? AND hash = ?",
                (channel_id, message_hash),
            ) as cursor:
                row = await cursor.fetchone()
        return row["content"] if row else None

    async def get_messages(self, channel_id: bytes, hashes: Iterable[bytes]) -> list[bytes]:
        """
        Batch fetch by hash.

        Hashes are bound into a temporary lookup table and joined, so the
        batch size has no bearing on the SQL text.  Result order is not
        aligned with *hashes*; missing hashes are simply absent.
        """
        wanted = [(h,) for h in dict.fromkeys(hashes)]
        if not wanted:
            return []
        async with self._backend.session() as conn:
            await conn.execute("DELETE FROM temp.lookup_hashes")
            try:
                await conn.executemany(
                    "INSERT OR IGNORE INTO temp.lookup_hashes (hash) VALUES (?)",
                    wanted,
                )
                rows = await conn.execute_fetchall(
                    """SELECT m.content FROM messages AS m
                       JOIN temp.lookup_hashes AS l ON l.hash = m.hash
                       WHERE m.channel_id = ?""",
                    (channel_id,),
                )
            finally:
                await conn.execute("DELETE FROM temp.lookup_hashes")
        return [row["content"] for row in rows]

    async def get_messages_at_offset(
        self,
        channel_id: bytes,
        offset: int,
        limit: int,
    ) -> list[bytes]:
        """Slice ``[offset, offset + limit)`` of the channel's canonical order."""
        offset = max(0, offset)
        limit = max(0, limit)
        if limit == 0:
            return []
        async with self._backend.session() as conn:
            rows = await conn.execute_fetchall(
                """SELECT content FROM messages
                   WHERE channel_id = ?
                   ORDER BY height ASC, hash ASC
                   LIMIT ? OFFSET ?""",
                (channel_id, limit, offset),
            )
        return [row["content"] for row in rows]

    async def get_message_at_offset(self, channel_id: bytes, offset: int) -> bytes | None:
        """The single message at *offset*, or ``None`` past the end."""
        found = await self.get_messages_at_offset(channel_id, offset, 1)
        return found[0] if found else None

    async def get_message_record(
        self,
        channel_id: bytes,
        message_hash: bytes,
    ) -> StoredMessage | None:
        """Fetch the whole row for a message, parents decoded."""
        async with self._backend.session() as conn:
            async with conn.execute(
                """SELECT channel_id, hash, height, parent_hashes, content
                   FROM messages WHERE channel_id = ? AND hash = ?""",
                (channel_id, message_hash),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        try:
            parents = decode_hash_list(row["parent_hashes"])
        except HashListDecodeError as exc:
            logger.error("Corrupt parent list for message %s: %s", message_hash.hex(), exc)
            raise MessageDecodeError(message_hash, exc) from exc
        return StoredMessage(
            channel_id=row["channel_id"],
            hash=row["hash"],
            height=row["height"],
            parents=parents,
            content=row["content"],
        )


# ---------------------------------------------------------------------------
# Entity Store
# ---------------------------------------------------------------------------

class EntityStore:
    """Opaque blobs under ``(prefix, id)``. Last write wins."""

    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    async def store_entity(self, prefix: str, entity_id: str, blob: bytes) -> None:
        async with self._backend.transaction() as conn:
            await conn.execute(
                "INSERT OR REPLACE INTO entities (prefix, id, blob) VALUES (?, ?, ?)",
                (prefix, entity_id, blob),
            )

    async def retrieve_entity(self, prefix: str, entity_id: str) -> bytes | None:
        async with self._backend.session() as conn:
            async with conn.execute(
                "SELECT blob FROM entities WHERE prefix = ? AND id = ?",
                (prefix, entity_id),
            ) as cursor:
                row = await cursor.fetchone()
        return row["blob"] if row else None

    async def remove_entity(self, prefix: str, entity_id: str) -> None:
        async with self._backend.transaction() as conn:
            await conn.execute(
                "DELETE FROM entities WHERE prefix = ? AND id = ?",
                (prefix, entity_id),
            )

    async def get_entity_keys(self, prefix: str) -> list[str]:
        async with self._backend.session() as conn:
            rows = await conn.execute_fetchall(
                "SELECT id FROM entities WHERE prefix = ? ORDER BY id",
                (prefix,),
            )
        return [row["id"] for row in rows]
