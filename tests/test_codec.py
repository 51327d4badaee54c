"""
Hash-list codec tests
"""

import pytest

from dagstore import HashListDecodeError, HashListEncodeError, decode_hash_list, encode_hash_list


class TestEncode:
    """Tests for encode_hash_list."""

    def test_layout(self):
        """Each record is a length byte followed by the raw hash."""
        assert encode_hash_list([b"ab", b"", b"xyz"]) == b"\x02ab\x00\x03xyz"

    def test_empty_list(self):
        assert encode_hash_list([]) == b""

    def test_max_length_hash(self):
        h = bytes(range(255))
        encoded = encode_hash_list([h])
        assert encoded[0] == 255
        assert encoded[1:] == h

    def test_oversized_hash_rejected(self):
        with pytest.raises(HashListEncodeError) as info:
            encode_hash_list([b"ok", b"x" * 256])
        assert info.value.index == 1
        assert info.value.length == 256

    def test_encode_error_is_value_error(self):
        with pytest.raises(ValueError):
            encode_hash_list([b"x" * 300])


class TestDecode:
    """Tests for decode_hash_list."""

    def test_round_trip(self):
        hashes = [b"hello", b"world", b"what's", b"up"]
        assert decode_hash_list(encode_hash_list(hashes)) == hashes

    def test_round_trip_binary_hashes(self):
        hashes = [bytes([i % 256]) * (i % 256) for i in range(0, 512, 37)]
        assert decode_hash_list(encode_hash_list(hashes)) == hashes

    def test_empty_blob(self):
        assert decode_hash_list(b"") == []

    def test_zero_length_record(self):
        assert decode_hash_list(b"\x00\x01a") == [b"", b"a"]

    def test_truncated_payload(self):
        with pytest.raises(HashListDecodeError) as info:
            decode_hash_list(b"\x02ab\x05abc")
        assert info.value.offset == 3
        assert info.value.declared == 5
        assert info.value.remaining == 3

    def test_dangling_length_byte(self):
        with pytest.raises(HashListDecodeError):
            decode_hash_list(b"\x01a\x01")
