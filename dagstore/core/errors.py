"""
dagstore.core.errors — Exception hierarchy for the storage layer.

Not-found is never an error here: single-key lookups return ``None``.
Storage and I/O failures surface unchanged as ``aiosqlite.Error`` subclasses.
"""

from __future__ import annotations


class DagStoreError(Exception):
    """Base class for dagstore errors."""


class HashListEncodeError(DagStoreError, ValueError):
    """Raised when a hash does not fit the codec's one-byte length prefix."""

    def __init__(self, index: int, length: int) -> None:
        super().__init__(
            f"Hash at position {index} is {length} bytes; the limit is 255"
        )
        self.index = index
        self.length = length


class HashListDecodeError(DagStoreError, ValueError):
    """Raised when an encoded hash list is truncated or corrupt."""

    def __init__(self, offset: int, declared: int, remaining: int) -> None:
        super().__init__(
            f"Record at offset {offset} declares {declared} bytes "
            f"but only {remaining} remain"
        )
        self.offset = offset
        self.declared = declared
        self.remaining = remaining


class MessageDecodeError(DagStoreError):
    """Raised when a stored message row cannot be decoded."""

    def __init__(self, message_hash: bytes, cause: HashListDecodeError) -> None:
        super().__init__(f"Stored parents of message {message_hash.hex()} are corrupt: {cause}")
        self.message_hash = message_hash


class UnsupportedQueryError(DagStoreError):
    """Raised for query shapes the pagination engine does not serve."""


class StoreNotOpenError(DagStoreError):
    """Raised when an operation is issued before ``open()`` or after ``close()``."""

    def __init__(self) -> None:
        super().__init__("Store is not open. Call open() first.")


class StoreAlreadyOpenError(DagStoreError):
    """Raised when ``open()`` is called on a store that is already open."""

    def __init__(self) -> None:
        super().__init__("Store is already open")


class SchemaVersionError(DagStoreError):
    """Raised when the database was written by a newer schema version."""

    def __init__(self, found: int, supported: int) -> None:
        super().__init__(
            f"Database schema version {found} is newer than supported version {supported}"
        )
        self.found = found
        self.supported = supported
