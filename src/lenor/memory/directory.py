"""Directory of a user's conversations.

Rebuilt on demand by scanning the durable cache's key namespace. Stored
metadata is a cache of derived data; wherever it disagrees with the
stored message list, the message list wins.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

from lenor.memory.local_cache import (
    MESSAGES_SUFFIX,
    METADATA_SUFFIX,
    conversation_key,
    messages_key,
    metadata_key,
    user_prefix,
)
from lenor.memory.models import (
    ConversationMetadata,
    ConversationSummary,
    Message,
    generate_conversation_id,
    message_id_time,
)
from lenor.memory.protocols import LocalCacheProtocol
from lenor.memory.store import ConversationStore

logger = logging.getLogger(__name__)

NO_MESSAGES = "No messages"


def _parse_message_time(message: Message) -> float | None:
    """Epoch seconds a message was created, if it can be told.

    A full ISO timestamp is used when present. Messages stamped with the
    HH:MM display format fall back to the clock encoded in a generated id.
    """
    if message.timestamp:
        try:
            return datetime.fromisoformat(message.timestamp).timestamp()
        except ValueError:
            pass
    return message_id_time(message.id)


def reconcile_summary(
    conversation_id: str,
    metadata: ConversationMetadata | None,
    messages: list[Message],
    now: float | None = None,
) -> ConversationSummary:
    """Build a directory entry from stored metadata and the real message list.

    Precedence rules:

    1. ``message_count``: always the length of the stored message list.
       A metadata count is only a cached figure and may be stale.
    2. ``last_message``: the metadata preview is kept unless it is
       missing or the placeholder; then the text of the newest stored
       message is used.
    3. ``timestamp``: the later of the metadata timestamp and the newest
       message's creation time. With neither, ``now``.

    Args:
        conversation_id: Conversation being summarised.
        metadata: Stored metadata, or None when absent.
        messages: Stored messages, oldest first.
        now: Fallback timestamp (defaults to the current time).

    Returns:
        The reconciled summary.
    """
    real_count = len(messages)
    derived_last = NO_MESSAGES
    derived_time: float | None = None
    if messages:
        newest = messages[-1]
        if newest.text:
            derived_last = newest.text
        derived_time = _parse_message_time(newest)

    if metadata is None:
        return ConversationSummary(
            id=conversation_id,
            timestamp=derived_time if derived_time is not None else (now or time.time()),
            last_message=derived_last,
            message_count=real_count,
        )

    if metadata.message_count is not None and metadata.message_count != real_count:
        logger.debug(
            f"Conversation {conversation_id} metadata count {metadata.message_count} "
            f"corrected to {real_count}"
        )

    last_message = metadata.last_message
    if (not last_message or last_message == NO_MESSAGES) and derived_last != NO_MESSAGES:
        last_message = derived_last

    timestamp = metadata.timestamp
    if derived_time is not None and derived_time > (timestamp or 0.0):
        timestamp = derived_time
    if timestamp is None:
        timestamp = now or time.time()

    return ConversationSummary(
        id=conversation_id,
        timestamp=timestamp,
        last_message=last_message or NO_MESSAGES,
        message_count=real_count,
    )


class ConversationDirectory:
    """Enumerates, creates, switches and deletes a user's conversations.

    Example:
        >>> directory = ConversationDirectory(cache, store)
        >>> summaries = await directory.list("user-1")
        >>> new_id = await directory.create("user-1")
        >>> await directory.delete("user-1", summaries[0].id)
    """

    def __init__(
        self,
        cache: LocalCacheProtocol,
        store: ConversationStore,
        id_factory: Callable[[], str] = generate_conversation_id,
    ) -> None:
        """Initialize the directory.

        Args:
            cache: Durable local cache to scan.
            store: Store whose current conversation this directory drives.
            id_factory: Allocates new conversation ids.
        """
        self._cache = cache
        self._store = store
        self._id_factory = id_factory

    async def list(self, user_id: str) -> list[ConversationSummary]:
        """List the user's non-empty conversations, most recent first.

        Raises:
            ValueError: If user_id is empty.
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required to list conversations")

        prefix = user_prefix(user_id)
        try:
            keys = await self._cache.list_keys(prefix)
        except Exception as e:
            logger.error(f"Failed to scan conversations of user {user_id}: {e}")
            return []

        candidate_ids: list[str] = []
        for key in keys:
            if key.endswith(METADATA_SUFFIX) or key.endswith(MESSAGES_SUFFIX):
                continue
            conversation_id = key[len(prefix):]
            if conversation_id and ":" not in conversation_id:
                candidate_ids.append(conversation_id)

        summaries: dict[str, ConversationSummary] = {}
        for conversation_id in candidate_ids:
            if conversation_id in summaries:
                continue
            try:
                metadata = await self._cache.get_metadata(user_id, conversation_id)
                messages = await self._cache.load_all(user_id, conversation_id)
            except Exception as e:
                logger.error(f"Failed to read conversation {conversation_id}: {e}")
                continue

            if not messages:
                continue
            summaries[conversation_id] = reconcile_summary(conversation_id, metadata, messages)

        result = sorted(summaries.values(), key=lambda s: s.timestamp, reverse=True)
        logger.debug(f"Listed {len(result)} conversations for user {user_id}")
        return result

    async def create(self, user_id: str) -> str:
        """Allocate a new conversation and make it current.

        Returns:
            The new conversation id.
        """
        conversation_id = self._id_factory()
        await self._cache.set_current_conversation(user_id, conversation_id)
        if self._store.current_user_id == user_id:
            await self._store.set_current_conversation(conversation_id)
        logger.info(f"Started new conversation {conversation_id} for user {user_id}")
        return conversation_id

    async def switch_to(self, conversation_id: str) -> None:
        """Make a conversation current for the store's user."""
        user_id = self._store.current_user_id
        if user_id:
            await self._cache.set_current_conversation(user_id, conversation_id)
        await self._store.set_current_conversation(conversation_id)

    async def delete(self, user_id: str, conversation_id: str) -> str | None:
        """Delete a conversation from the durable cache.

        If it was the current conversation a replacement is created at
        once, so the user is never left without one.

        Returns:
            The replacement conversation id, or None if none was needed.
        """
        await self._cache.delete(messages_key(user_id, conversation_id))
        await self._cache.delete(metadata_key(user_id, conversation_id))
        await self._cache.delete(conversation_key(user_id, conversation_id))
        logger.info(f"Deleted conversation {conversation_id} of user {user_id}")

        current = await self._cache.get_current_conversation(user_id)
        store_current = (
            self._store.current_user_id == user_id
            and self._store.current_conversation_id == conversation_id
        )
        if current == conversation_id or store_current:
            return await self.create(user_id)
        return None
