"""
dagstore test fixtures
"""

import os

import pytest
import pytest_asyncio

from dagstore import ChannelStorage, Message, StoreConfig


def gen_hash() -> bytes:
    return os.urandom(32)


@pytest.fixture
def channel_id() -> bytes:
    return os.urandom(32)


@pytest.fixture
def make_message(channel_id):
    """Build a message whose content is ``b"<height>: <label>"``."""

    def _make(height: int, hash_: bytes, parents: list[bytes], label: str = "empty", channel: bytes | None = None) -> Message:
        return Message(
            channel_id=channel if channel is not None else channel_id,
            hash=hash_,
            height=height,
            parents=parents,
            content=f"{height}: {label}".encode(),
        )

    return _make


@pytest_asyncio.fixture
async def store():
    s = ChannelStorage(StoreConfig())
    await s.open()
    try:
        yield s
    finally:
        await s.close()
