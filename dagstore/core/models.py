"""
dagstore.core.models — Pydantic schemas for the channel message DAG.

A message is a node in one channel's DAG.  Its ``hash`` is computed upstream
and treated as an opaque, globally unique key; ``height`` is one more than
the greatest parent height.  Neither is verified here.
"""

from __future__ import annotations

import os
import time
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Direction(StrEnum):
    """Traversal direction along the canonical ``(height, hash)`` order."""
    FORWARD = "forward"
    BACKWARD = "backward"


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class Message(BaseModel):
    """A fully-formed DAG message, as produced by the merge layer."""
    channel_id: bytes
    hash: bytes
    height: int = Field(ge=0)
    parents: list[bytes] = Field(default_factory=list)
    content: bytes = b""

    model_config = {"frozen": True}


class StoredMessage(BaseModel):
    """A message row read back from the store, parents decoded."""
    channel_id: bytes
    hash: bytes
    height: int
    parents: list[bytes]
    content: bytes


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

class Cursor(BaseModel):
    """
    A resume point in the canonical order.

    Exactly one of ``hash`` or ``height`` is set.  A hash cursor anchors on a
    specific message; a height cursor starts at the first message whose
    height is at least ``height`` and is only valid going forward.
    """
    hash: bytes | None = None
    height: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_exactly_one(self) -> "Cursor":
        if (self.hash is None) == (self.height is None):
            raise ValueError("Cursor needs exactly one of 'hash' or 'height'")
        return self

    @classmethod
    def at_hash(cls, value: bytes) -> "Cursor":
        return cls(hash=value)

    @classmethod
    def at_height(cls, value: int) -> "Cursor":
        return cls(height=value)


class QueryResult(BaseModel):
    """One pagination window plus the cursors to continue from it."""
    messages: list[bytes] = Field(default_factory=list)
    backward_hash: bytes | None = None
    forward_hash: bytes | None = None


# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------

class TraceEvent(BaseModel):
    """A single executed SQL statement, delivered to the trace hook."""
    statement: str
    timestamp: float = Field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class StoreConfig(BaseModel):
    """Runtime configuration for a :class:`~dagstore.storage.ChannelStorage`."""
    file: Path | None = None                # None → ephemeral private temp dir
    trace: bool = False                     # Emit a TraceEvent per statement
    exclusive: bool = True                  # PRAGMA locking_mode=EXCLUSIVE
    timeout: float = Field(default=5.0, gt=0)

    @classmethod
    def from_env(cls, **overrides: Any) -> "StoreConfig":
        """
        Build a config from the environment.

        Resolution order (highest priority first):
          1. Explicit ``overrides`` keyword arguments
          2. Environment variables (DAGSTORE_FILE, DAGSTORE_TRACE, …)
          3. Built-in defaults
        """
        values: dict[str, Any] = {}
        env_file = os.getenv("DAGSTORE_FILE")
        if env_file:
            values["file"] = Path(env_file)
        values["trace"] = _env_flag("DAGSTORE_TRACE", False)
        values["exclusive"] = _env_flag("DAGSTORE_EXCLUSIVE", True)
        env_timeout = os.getenv("DAGSTORE_TIMEOUT")
        if env_timeout:
            values["timeout"] = float(env_timeout)
        values.update(overrides)
        return cls(**values)
