"""
dagstore.storage — Unified façade over the message, leaf, entity and
pagination components.

Usage::

    async with ChannelStorage(StoreConfig(file=Path("node.db"))) as store:
        await store.add_message(message)
        leaves = await store.get_leaf_hashes(message.channel_id)
"""

from __future__ import annotations

from typing import Iterable

from dagstore.core.database import (
    EntityStore,
    LeafIndex,
    MessageStore,
    SQLiteBackend,
    TraceHook,
)
from dagstore.core.models import (
    Cursor,
    Direction,
    Message,
    QueryResult,
    StoreConfig,
    StoredMessage,
)
from dagstore.operations.pagination import PaginationEngine


class ChannelStorage:
    """
    Persistence for channel-partitioned message DAGs.

    Every operation is a coroutine.  Mutations are serialised internally and
    ``add_message`` updates the message row and the leaf index atomically.
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        tracer: TraceHook | None = None,
    ) -> None:
        self.config = config or StoreConfig()
        self.backend = SQLiteBackend(self.config, tracer=tracer)
        self.leaves = LeafIndex(self.backend)
        self.messages = MessageStore(self.backend, self.leaves)
        self.entities = EntityStore(self.backend)
        self.pagination = PaginationEngine(self.backend)

    # -- Lifecycle ---------------------------------------------------------

    async def open(self) -> None:
        await self.backend.open()

    async def close(self) -> None:
        await self.backend.close()

    async def clear(self) -> None:
        """Empty messages, the leaf index and entities in one transaction."""
        await self.backend.clear()

    async def __aenter__(self) -> "ChannelStorage":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -- Messages ----------------------------------------------------------

    async def add_message(self, message: Message) -> None:
        await self.messages.add_message(message)

    async def get_message_count(self, channel_id: bytes) -> int:
        return await self.messages.get_message_count(channel_id)

    async def has_message(self, channel_id: bytes, message_hash: bytes) -> bool:
        return await self.messages.has_message(channel_id, message_hash)

    async def get_message(self, channel_id: bytes, message_hash: bytes) -> bytes | None:
        return await self.messages.get_message(channel_id, message_hash)

    async def get_messages(self, channel_id: bytes, hashes: Iterable[bytes]) -> list[bytes]:
        return await self.messages.get_messages(channel_id, hashes)

    async def get_messages_at_offset(
        self,
        channel_id: bytes,
        offset: int,
        limit: int,
    ) -> list[bytes]:
        return await self.messages.get_messages_at_offset(channel_id, offset, limit)

    async def get_message_at_offset(self, channel_id: bytes, offset: int) -> bytes | None:
        return await self.messages.get_message_at_offset(channel_id, offset)

    async def get_message_record(
        self,
        channel_id: bytes,
        message_hash: bytes,
    ) -> StoredMessage | None:
        return await self.messages.get_message_record(channel_id, message_hash)

    # -- Leaves ------------------------------------------------------------

    async def get_leaves(self, channel_id: bytes) -> list[bytes]:
        return await self.leaves.get_leaves(channel_id)

    async def get_leaf_hashes(self, channel_id: bytes) -> list[bytes]:
        return await self.leaves.get_leaf_hashes(channel_id)

    async def is_leaf(self, channel_id: bytes, message_hash: bytes) -> bool:
        return await self.leaves.is_leaf(channel_id, message_hash)

    # -- Pagination --------------------------------------------------------

    async def query(
        self,
        channel_id: bytes,
        cursor: Cursor,
        direction: Direction | str = Direction.FORWARD,
        limit: int = 50,
    ) -> QueryResult:
        return await self.pagination.query(channel_id, cursor, direction, limit)

    # -- Entities (identities, channel lists, ...) -------------------------

    async def store_entity(self, prefix: str, entity_id: str, blob: bytes) -> None:
        await self.entities.store_entity(prefix, entity_id, blob)

    async def retrieve_entity(self, prefix: str, entity_id: str) -> bytes | None:
        return await self.entities.retrieve_entity(prefix, entity_id)

    async def remove_entity(self, prefix: str, entity_id: str) -> None:
        await self.entities.remove_entity(prefix, entity_id)

    async def get_entity_keys(self, prefix: str) -> list[str]:
        return await self.entities.get_entity_keys(prefix)
