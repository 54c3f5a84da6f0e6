"""Session pooling: cache, per-key locking and idle eviction."""

from switchpool.pool.manager import SessionManager
from switchpool.pool.store import KeyLocks, SessionStore

__all__ = [
    "SessionManager",
    "SessionStore",
    "KeyLocks",
]
