"""
dagstore — persistence and indexing for channel-partitioned message DAGs.

Each channel is an independent DAG of content-addressed messages.  The store
keeps the per-channel leaf set current as a side effect of insertion and
serves resumable range queries ordered by ``(height, hash)``.
"""

from pathlib import Path
import tomllib
from importlib.metadata import version, PackageNotFoundError

from dagstore.core.codec import decode_hash_list, encode_hash_list
from dagstore.core.errors import (
    DagStoreError,
    HashListDecodeError,
    HashListEncodeError,
    MessageDecodeError,
    SchemaVersionError,
    StoreAlreadyOpenError,
    StoreNotOpenError,
    UnsupportedQueryError,
)
from dagstore.core.models import (
    Cursor,
    Direction,
    Message,
    QueryResult,
    StoreConfig,
    StoredMessage,
    TraceEvent,
)
from dagstore.storage import ChannelStorage


def _resolve_version() -> str:
    """Resolve the dagstore version.

    Priority:
    1) Local source checkout version from pyproject.toml (if present)
    2) Installed package metadata
    3) Safe fallback
    """
    try:
        root = Path(__file__).resolve().parent.parent
        pyproject = root / "pyproject.toml"
        if pyproject.exists():
            data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
            proj = data.get("project", {})
            ver = proj.get("version")
            if isinstance(ver, str) and ver.strip():
                return ver.strip()
    except (OSError, tomllib.TOMLDecodeError):
        pass

    try:
        return version("dagstore")
    except PackageNotFoundError:
        return "0.0.0"


__version__ = _resolve_version()

__all__ = [
    "ChannelStorage",
    "Cursor",
    "DagStoreError",
    "Direction",
    "HashListDecodeError",
    "HashListEncodeError",
    "Message",
    "MessageDecodeError",
    "QueryResult",
    "SchemaVersionError",
    "StoreAlreadyOpenError",
    "StoreConfig",
    "StoreNotOpenError",
    "StoredMessage",
    "TraceEvent",
    "UnsupportedQueryError",
    "decode_hash_list",
    "encode_hash_list",
    "__version__",
]
