"""
Persistent bucketed key-value storage for the proxy.

Records are grouped in named buckets (``APIS`` holds endpoint records,
``Sessions`` is reserved). Two backends are provided: an embedded SQLite
file and Redis hashes.
"""

from .kv_store import (
    APIS_BUCKET,
    SESSIONS_BUCKET,
    KeyValueStore,
    RedisKeyValueStore,
    SQLiteKeyValueStore,
    open_store,
)

__all__ = [
    "APIS_BUCKET",
    "SESSIONS_BUCKET",
    "KeyValueStore",
    "RedisKeyValueStore",
    "SQLiteKeyValueStore",
    "open_store",
]
