"""Durable local cache backed by a SQLite key-value table.

Stores each conversation under a small key namespace:

- ``user:{uid}:conversation:{cid}``: root record
- ``user:{uid}:conversation:{cid}:messages``: chronological message list
- ``user:{uid}:conversation:{cid}:metadata``: derived summary
- ``user:{uid}:current_conversation``: current conversation pointer

Values are JSON documents.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from lenor.memory.models import ConversationMetadata, ConversationRecord, Message

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ":metadata"
MESSAGES_SUFFIX = ":messages"


class CacheError(Exception):
    """Raised when the durable cache cannot be read or written."""


def user_prefix(user_id: str) -> str:
    """Key prefix shared by every conversation of a user."""
    return f"user:{user_id}:conversation:"


def conversation_key(user_id: str, conversation_id: str) -> str:
    """Root key of a conversation."""
    return f"{user_prefix(user_id)}{conversation_id}"


def messages_key(user_id: str, conversation_id: str) -> str:
    """Key of a conversation's message list."""
    return conversation_key(user_id, conversation_id) + MESSAGES_SUFFIX


def metadata_key(user_id: str, conversation_id: str) -> str:
    """Key of a conversation's metadata."""
    return conversation_key(user_id, conversation_id) + METADATA_SUFFIX


def current_conversation_key(user_id: str) -> str:
    """Key of the user's current conversation pointer."""
    return f"user:{user_id}:current_conversation"


class LocalCache:
    """Persistent key-value cache for conversations.

    Example:
        >>> cache = LocalCache("data/cache.db")
        >>> await cache.initialize()
        >>> await cache.save("u1", "c1", [Message(id="m1", text="Hola")])
        >>> await cache.load("u1", "c1", limit=10, offset=0)
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the cache.

        Args:
            db_path: Path to SQLite database (created if needed), or ":memory:"
        """
        self._db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None

    async def initialize(self) -> None:
        """Open the database and create the schema.

        Must be called before other methods. Idempotent.

        Raises:
            CacheError: If the database cannot be opened
        """
        if self._conn is not None:
            return

        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(self._db_path)
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
            """
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise CacheError(f"Failed to open cache at {self._db_path}: {e}") from e

        logger.debug(f"Local cache ready at {self._db_path}")

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Cache not initialized. Call initialize() first.")
        return self._conn

    # ===== Raw key-value access =====

    async def get_item(self, key: str) -> Any:
        """Read a JSON value.

        Args:
            key: Cache key

        Returns:
            Decoded value, or None if the key is absent

        Raises:
            CacheError: If the read fails or the stored value is corrupt
        """
        conn = self._require_conn()
        try:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise CacheError(f"Failed to read {key}: {e}") from e

        if row is None:
            return None

        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            raise CacheError(f"Corrupt value under {key}: {e}") from e

    async def set_item(self, key: str, value: Any) -> None:
        """Write a JSON value, replacing any previous one.

        Raises:
            CacheError: If the write fails
        """
        conn = self._require_conn()
        try:
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = excluded.updated_at
            """,
                (key, json.dumps(value), time.time()),
            )
            conn.commit()
        except (sqlite3.Error, TypeError) as e:
            raise CacheError(f"Failed to write {key}: {e}") from e

    async def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored.

        Raises:
            CacheError: If the delete fails
        """
        conn = self._require_conn()
        try:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            raise CacheError(f"Failed to delete {key}: {e}") from e

    async def list_keys(self, prefix: str = "") -> list[str]:
        """List keys starting with prefix, in key order.

        Raises:
            CacheError: If the scan fails
        """
        conn = self._require_conn()
        try:
            rows = conn.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        except sqlite3.Error as e:
            raise CacheError(f"Failed to list keys under {prefix!r}: {e}") from e
        return [row[0] for row in rows]

    # ===== Conversations =====

    async def load_all(self, user_id: str, conversation_id: str) -> list[Message]:
        """Load the full stored history of a conversation, oldest first.

        Raises:
            CacheError: If the stored list cannot be read
        """
        raw = await self.get_item(messages_key(user_id, conversation_id))
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise CacheError(f"Expected a message list for conversation {conversation_id}")
        return [Message.from_dict(item) for item in raw if isinstance(item, dict)]

    async def load(
        self,
        user_id: str,
        conversation_id: str,
        limit: int,
        offset: int,
    ) -> list[Message]:
        """Load one page of a conversation.

        Pages count back from the newest message: offset 0 returns the
        most recent ``limit`` messages. The page is returned oldest first.

        Args:
            user_id: Owner of the conversation
            conversation_id: Conversation to read
            limit: Maximum number of messages
            offset: Number of newer messages to skip

        Returns:
            Messages of the page in chronological order

        Raises:
            CacheError: If the stored list cannot be read
        """
        messages = await self.load_all(user_id, conversation_id)
        end = max(0, len(messages) - offset)
        start = max(0, end - limit)
        return messages[start:end]

    async def save(self, user_id: str, conversation_id: str, messages: list[Message]) -> None:
        """Replace the stored history of a conversation.

        Also writes the root record (once) and refreshes the metadata.

        Raises:
            CacheError: If any write fails
        """
        root = conversation_key(user_id, conversation_id)
        if await self.get_item(root) is None:
            record = ConversationRecord(id=conversation_id, user_id=user_id)
            await self.set_item(root, record.to_dict())

        await self.set_item(
            messages_key(user_id, conversation_id),
            [message.to_dict() for message in messages],
        )

        metadata = ConversationMetadata(
            last_message=messages[-1].text if messages else None,
            message_count=len(messages),
            timestamp=time.time(),
        )
        await self.set_item(metadata_key(user_id, conversation_id), metadata.to_dict())

        logger.debug(f"Saved {len(messages)} messages for conversation {conversation_id}")

    async def get_metadata(self, user_id: str, conversation_id: str) -> ConversationMetadata | None:
        """Read the metadata of a conversation, or None if absent."""
        raw = await self.get_item(metadata_key(user_id, conversation_id))
        if not isinstance(raw, dict):
            return None
        return ConversationMetadata.from_dict(raw)

    async def get_current_conversation(self, user_id: str) -> str | None:
        """Get the id of the user's current conversation."""
        value = await self.get_item(current_conversation_key(user_id))
        return str(value) if value else None

    async def set_current_conversation(self, user_id: str, conversation_id: str) -> None:
        """Record the id of the user's current conversation."""
        await self.set_item(current_conversation_key(user_id), conversation_id)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def __aenter__(self) -> LocalCache:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
