"""
dagstore.operations.pagination — Cursor-based range scans over a channel.

Messages are ordered by the canonical key ``(height ASC, hash ASC)``.  Height
alone is not a total order because siblings share a height, so every
comparison against a hash cursor uses the full key of the anchor message.

Each call fetches one row more than it returns.  The extra row tells the
caller whether more data lies in the direction of travel and supplies the
cursor to resume from:

* forward, hash or height cursor — rows with key ≥ the anchor's key;
  ``forward_hash`` is the first row *not* returned (inclusive resume);
* backward, hash cursor only — rows with key < the anchor's key;
  ``backward_hash`` is the first row returned (exclusive resume).

The cursor for the opposite direction always lets the caller turn around
from the current window.
"""

from __future__ import annotations

import logging

import aiosqlite

from dagstore.core.database import SQLiteBackend
from dagstore.core.errors import UnsupportedQueryError
from dagstore.core.models import Cursor, Direction, QueryResult

logger = logging.getLogger("dagstore.pagination")

_FORWARD_FROM_HASH = """
SELECT hash, content FROM messages
WHERE channel_id = ?
  AND (height, hash) >= (
      SELECT height, hash FROM messages WHERE channel_id = ? AND hash = ?
  )
ORDER BY height ASC, hash ASC
LIMIT ?
"""

_BACKWARD_FROM_HASH = """
SELECT hash, content FROM messages
WHERE channel_id = ?
  AND (height, hash) < (
      SELECT height, hash FROM messages WHERE channel_id = ? AND hash = ?
  )
ORDER BY height DESC, hash DESC
LIMIT ?
"""

_FORWARD_FROM_HEIGHT = """
SELECT hash, content FROM messages
WHERE channel_id = ? AND height >= ?
ORDER BY height ASC, hash ASC
LIMIT ?
"""


class PaginationEngine:
    """Bidirectional, resumable windows over one channel's messages."""

    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    async def query(
        self,
        channel_id: bytes,
        cursor: Cursor,
        direction: Direction | str = Direction.FORWARD,
        limit: int = 50,
    ) -> QueryResult:
        direction = Direction(direction)
        limit = max(0, limit)

        if direction is Direction.BACKWARD and cursor.hash is None:
            raise UnsupportedQueryError(
                "Backward queries need a hash cursor; height cursors are forward-only"
            )

        rows = await self._fetch(channel_id, cursor, direction, limit + 1)

        if direction is Direction.BACKWARD:
            rows.reverse()
            return self._backward_window(rows, cursor, limit)
        return self._forward_window(rows, limit)

    async def _fetch(
        self,
        channel_id: bytes,
        cursor: Cursor,
        direction: Direction,
        fetch: int,
    ) -> list[aiosqlite.Row]:
        if cursor.hash is not None:
            sql = _FORWARD_FROM_HASH if direction is Direction.FORWARD else _BACKWARD_FROM_HASH
            params: tuple = (channel_id, channel_id, cursor.hash, fetch)
        else:
            sql = _FORWARD_FROM_HEIGHT
            params = (channel_id, cursor.height, fetch)

        async with self._backend.session() as conn:
            rows = list(await conn.execute_fetchall(sql, params))
        logger.debug(
            "Query %s %s limit=%d fetched %d rows",
            direction.value,
            cursor.hash.hex()[:16] if cursor.hash is not None else f"height>={cursor.height}",
            fetch - 1,
            len(rows),
        )
        return rows

    @staticmethod
    def _forward_window(rows: list[aiosqlite.Row], limit: int) -> QueryResult:
        backward_hash = rows[0]["hash"] if rows else None
        forward_hash = None
        if len(rows) > limit:
            forward_hash = rows[limit]["hash"]
            rows = rows[:limit]
        return QueryResult(
            messages=[row["content"] for row in rows],
            backward_hash=backward_hash,
            forward_hash=forward_hash,
        )

    @staticmethod
    def _backward_window(
        rows: list[aiosqlite.Row],
        cursor: Cursor,
        limit: int,
    ) -> QueryResult:
        backward_hash = None
        if len(rows) > limit:
            rows = rows[len(rows) - limit:] if limit else []
            backward_hash = rows[0]["hash"] if rows else cursor.hash
        return QueryResult(
            messages=[row["content"] for row in rows],
            backward_hash=backward_hash,
            forward_hash=cursor.hash,
        )
