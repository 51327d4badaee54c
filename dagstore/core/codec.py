"""
dagstore.core.codec — Hash-list binary codec.

A parent list is persisted as one column: a concatenation of
``(1-byte length, raw bytes)`` records in list order, with no count prefix
and no terminator.  The end of the blob is the end of the list.
"""

from __future__ import annotations

from typing import Iterable

from dagstore.core.errors import HashListDecodeError, HashListEncodeError

MAX_HASH_LENGTH = 0xFF


def encode_hash_list(hashes: Iterable[bytes]) -> bytes:
    """Encode *hashes* into a single blob.

    Raises :class:`HashListEncodeError` if any hash is longer than 255 bytes.
    Nothing is returned in that case, so callers can encode before writing.
    """
    out = bytearray()
    for i, h in enumerate(hashes):
        n = len(h)
        if n > MAX_HASH_LENGTH:
            raise HashListEncodeError(i, n)
        out.append(n)
        out += h
    return bytes(out)


def decode_hash_list(blob: bytes) -> list[bytes]:
    """Decode a blob produced by :func:`encode_hash_list`."""
    view = memoryview(blob)
    hashes: list[bytes] = []
    offset = 0
    total = len(view)
    while offset < total:
        n = view[offset]
        start = offset + 1
        end = start + n
        if end > total:
            raise HashListDecodeError(offset, n, total - start)
        hashes.append(bytes(view[start:end]))
        offset = end
    return hashes
