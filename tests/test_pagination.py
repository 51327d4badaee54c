"""
Pagination engine tests
"""

import pytest
from pydantic import ValidationError

from dagstore import ChannelStorage, Cursor, Direction, UnsupportedQueryError

from conftest import gen_hash


async def _populate(store, make_message, layers=(1, 3, 2, 3, 1)) -> list[tuple[int, bytes, bytes]]:
    """Insert a DAG with the given layer widths; return (height, hash, content) in canonical order."""
    rows = []
    parents: list[bytes] = []
    for height, width in enumerate(layers):
        layer = [gen_hash() for _ in range(width)]
        for h in layer:
            message = make_message(height, h, parents, h.hex()[:8])
            await store.add_message(message)
            rows.append((height, h, message.content))
        parents = layer
    rows.sort(key=lambda r: (r[0], r[1]))
    return rows


class TestCursor:
    """Cursor validation."""

    def test_needs_exactly_one_field(self):
        with pytest.raises(ValidationError):
            Cursor()
        with pytest.raises(ValidationError):
            Cursor(hash=b"h", height=1)

    def test_constructors(self):
        assert Cursor.at_hash(b"h").hash == b"h"
        assert Cursor.at_height(3).height == 3


class TestForward:
    """Forward windows."""

    async def test_full_scan_in_canonical_order(self, store, channel_id, make_message):
        rows = await _populate(store, make_message)
        result = await store.query(channel_id, Cursor.at_height(0), Direction.FORWARD, 100)
        assert result.messages == [r[2] for r in rows]
        assert result.forward_hash is None
        assert result.backward_hash == rows[0][1]

    async def test_pages_without_gaps_or_duplicates(self, store, channel_id, make_message):
        rows = await _populate(store, make_message)
        seen: list[bytes] = []
        cursor = Cursor.at_height(0)
        while True:
            result = await store.query(channel_id, cursor, "forward", 3)
            assert len(result.messages) <= 3
            seen.extend(result.messages)
            if result.forward_hash is None:
                break
            cursor = Cursor.at_hash(result.forward_hash)
        assert seen == [r[2] for r in rows]

    async def test_hash_cursor_is_inclusive(self, store, channel_id, make_message):
        rows = await _populate(store, make_message)
        anchor = rows[4]
        result = await store.query(channel_id, Cursor.at_hash(anchor[1]), Direction.FORWARD, 2)
        assert result.messages == [rows[4][2], rows[5][2]]
        assert result.backward_hash == anchor[1]
        assert result.forward_hash == rows[6][1]

    async def test_ties_broken_by_hash(self, store, channel_id, make_message):
        layer = sorted(gen_hash() for _ in range(4))
        for h in layer:
            await store.add_message(make_message(5, h, []))
        result = await store.query(channel_id, Cursor.at_hash(layer[2]), Direction.FORWARD, 10)
        assert len(result.messages) == 2
        assert result.backward_hash == layer[2]

    async def test_height_cursor(self, store, channel_id, make_message):
        rows = await _populate(store, make_message)
        result = await store.query(channel_id, Cursor.at_height(2), Direction.FORWARD, 100)
        assert result.messages == [r[2] for r in rows if r[0] >= 2]

    async def test_height_past_end(self, store, channel_id, make_message):
        await _populate(store, make_message)
        result = await store.query(channel_id, Cursor.at_height(99), Direction.FORWARD, 10)
        assert result.messages == []
        assert result.backward_hash is None
        assert result.forward_hash is None

    async def test_zero_and_negative_limit(self, store, channel_id, make_message):
        rows = await _populate(store, make_message)
        for limit in (0, -5):
            result = await store.query(channel_id, Cursor.at_height(0), Direction.FORWARD, limit)
            assert result.messages == []
            assert result.forward_hash == rows[0][1]
            assert result.backward_hash == rows[0][1]

    async def test_unknown_anchor(self, store, channel_id, make_message):
        await _populate(store, make_message)
        result = await store.query(channel_id, Cursor.at_hash(gen_hash()), Direction.FORWARD, 10)
        assert result.messages == []
        assert result.forward_hash is None
        assert result.backward_hash is None

    async def test_anchor_from_other_channel(self, store, channel_id, make_message):
        rows = await _populate(store, make_message)
        result = await store.query(gen_hash(), Cursor.at_hash(rows[0][1]), Direction.FORWARD, 10)
        assert result.messages == []


class TestBackward:
    """Backward windows."""

    async def test_window_is_exclusive_and_ascending(self, store, channel_id, make_message):
        rows = await _populate(store, make_message)
        anchor = rows[6]
        result = await store.query(channel_id, Cursor.at_hash(anchor[1]), Direction.BACKWARD, 3)
        assert result.messages == [rows[3][2], rows[4][2], rows[5][2]]
        assert result.forward_hash == anchor[1]
        assert result.backward_hash == rows[3][1]

    async def test_reaches_start(self, store, channel_id, make_message):
        rows = await _populate(store, make_message)
        result = await store.query(channel_id, Cursor.at_hash(rows[2][1]), Direction.BACKWARD, 10)
        assert result.messages == [rows[0][2], rows[1][2]]
        assert result.backward_hash is None
        assert result.forward_hash == rows[2][1]

    async def test_zero_limit_keeps_anchor(self, store, channel_id, make_message):
        rows = await _populate(store, make_message)
        anchor = rows[5][1]
        result = await store.query(channel_id, Cursor.at_hash(anchor), Direction.BACKWARD, 0)
        assert result.messages == []
        assert result.backward_hash == anchor
        assert result.forward_hash == anchor

    async def test_height_cursor_rejected(self, store, channel_id):
        with pytest.raises(UnsupportedQueryError):
            await store.query(channel_id, Cursor.at_height(0), Direction.BACKWARD, 10)

    async def test_height_cursor_rejected_before_storage(self, channel_id):
        closed = ChannelStorage()
        with pytest.raises(UnsupportedQueryError):
            await closed.query(channel_id, Cursor.at_height(0), "backward", 10)


class TestSymmetry:
    """Forward and backward traversals agree."""

    @pytest.mark.parametrize("limit", [1, 2, 3, 4, 10])
    async def test_backward_reconstructs_forward(self, store, channel_id, make_message, limit):
        rows = await _populate(store, make_message)
        expected = [r[2] for r in rows]

        pages = []
        cursor = Cursor.at_height(0)
        while True:
            result = await store.query(channel_id, cursor, Direction.FORWARD, limit)
            pages.append(result)
            if result.forward_hash is None:
                break
            cursor = Cursor.at_hash(result.forward_hash)
        forward = [m for p in pages for m in p.messages]
        assert forward == expected

        last = pages[-1]
        backward = list(last.messages)
        anchor = last.backward_hash
        while anchor is not None:
            result = await store.query(channel_id, Cursor.at_hash(anchor), Direction.BACKWARD, limit)
            assert len(result.messages) <= limit
            backward = result.messages + backward
            anchor = result.backward_hash
        assert backward == expected

    async def test_turn_around(self, store, channel_id, make_message):
        rows = await _populate(store, make_message)
        first = await store.query(channel_id, Cursor.at_height(0), Direction.FORWARD, 4)
        second = await store.query(channel_id, Cursor.at_hash(first.forward_hash), Direction.FORWARD, 4)
        back = await store.query(channel_id, Cursor.at_hash(second.backward_hash), Direction.BACKWARD, 4)
        assert back.messages == first.messages
        assert back.forward_hash == rows[4][1]
