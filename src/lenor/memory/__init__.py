"""Lenor message memory - client-side conversation store.

This package keeps the active conversation consistent across three layers:

1. **ConversationStore:** In-memory, paginated, observable cache of the current conversation
2. **LocalCache:** SQLite key-value durable cache surviving restarts
3. **RemoteMemoryClient:** Long-term memory service holding full transcripts

with a **ConnectivityMonitor** replaying writes deferred while offline and a
**ConversationDirectory** enumerating a user's conversations.

Example:
    >>> from lenor.config import LenorConfig
    >>> from lenor.factory import create_runtime
    >>>
    >>> runtime = await create_runtime(LenorConfig.load())
    >>> await runtime.store.set_current_user("user-1")
    >>> runtime.store.add_message({"text": "Hola", "is_user": True})
    >>> await runtime.directory.list("user-1")
"""

from __future__ import annotations

from lenor.memory.connectivity import ConnectivityMonitor
from lenor.memory.directory import ConversationDirectory, reconcile_summary
from lenor.memory.local_cache import CacheError, LocalCache
from lenor.memory.models import (
    ConversationMetadata,
    ConversationSummary,
    Message,
    PaginationInfo,
    PendingWrite,
    StoreEvent,
)
from lenor.memory.pending import PendingWriteQueue
from lenor.memory.remote import RemoteMemoryClient, RemoteMemoryError
from lenor.memory.store import ConversationStore

__all__ = [
    "CacheError",
    "ConnectivityMonitor",
    "ConversationDirectory",
    "ConversationMetadata",
    "ConversationStore",
    "ConversationSummary",
    "LocalCache",
    "Message",
    "PaginationInfo",
    "PendingWrite",
    "PendingWriteQueue",
    "RemoteMemoryClient",
    "RemoteMemoryError",
    "StoreEvent",
    "reconcile_summary",
]
