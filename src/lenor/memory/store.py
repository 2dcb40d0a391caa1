"""In-memory store of the active conversation's messages.

The store is the single source of truth the chat views render from. It
owns pagination state, notifies subscribers with a fresh newest-first
snapshot on every change, persists to the durable local cache in the
background, forwards new messages to the long-term memory service, and
queues writes that fail while offline.

Mutations are applied synchronously and notify before returning;
I/O runs in detached tasks on the running event loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Coroutine, Iterable, Mapping

from lenor.memory.models import (
    Message,
    PaginationInfo,
    PendingWrite,
    StoreEvent,
    display_timestamp,
    generate_message_id,
)
from lenor.memory.pending import PendingWriteQueue
from lenor.memory.protocols import ConnectivityProtocol, LocalCacheProtocol, RemoteMemoryProtocol

logger = logging.getLogger(__name__)

Snapshot = list[Message]
StoreCallback = Callable[[Snapshot], None]

ASSISTANT_SENDER = "ai"


class ConversationStore:
    """Paginated, observable cache of the current conversation.

    Example:
        >>> store = ConversationStore(cache=cache, page_size=10)
        >>> unsubscribe = store.subscribe(StoreEvent.UPDATE, render)
        >>> await store.set_current_user("user-1")
        >>> store.add_message({"text": "Hola", "is_user": True})
        >>> store.get_messages()[0].text
        'Hola'
    """

    def __init__(
        self,
        cache: LocalCacheProtocol,
        remote: RemoteMemoryProtocol | None = None,
        connectivity: ConnectivityProtocol | None = None,
        pending: PendingWriteQueue | None = None,
        page_size: int = 10,
        default_conversation_id: str = "default",
    ) -> None:
        """Initialize the store.

        Args:
            cache: Durable local cache.
            remote: Long-term memory service. None disables forwarding.
            connectivity: Network monitor. None means always online.
            pending: Queue for writes deferred while offline.
            page_size: Messages per page.
            default_conversation_id: Key used when persisting with no current conversation.
        """
        if page_size <= 0:
            raise ValueError("page_size must be positive")

        self._cache = cache
        self._remote = remote
        self._connectivity = connectivity
        self._pending = pending if pending is not None else PendingWriteQueue()
        self._default_conversation_id = default_conversation_id

        # Chronological, oldest first; always replaced, never mutated in place
        self._messages: tuple[Message, ...] = ()
        self._listeners: dict[StoreEvent, list[StoreCallback]] = {event: [] for event in StoreEvent}
        self._pagination = PaginationInfo(page_size=page_size)
        self._current_user_id = ""
        self._current_conversation_id: str | None = None
        self._last_update_time = 0.0
        self._last_error: BaseException | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

        if connectivity is not None:
            connectivity.attach_pending(self._pending, self.replay_pending_write)

    # ===== Subscriptions =====

    def subscribe(self, event: StoreEvent | str, callback: StoreCallback) -> Callable[[], None]:
        """Register a listener for an event category.

        Args:
            event: One of StoreEvent (or its string value).
            callback: Called with a fresh newest-first snapshot.

        Returns:
            Function removing this registration. Safe to call more than once.

        Raises:
            ValueError: If event is not a known category.
        """
        try:
            category = StoreEvent(event)
        except ValueError:
            raise ValueError(
                f"Unknown store event {event!r}. Expected one of {[e.value for e in StoreEvent]}"
            ) from None

        # Wrapping gives each registration its own identity
        def registration(messages: Snapshot) -> None:
            callback(messages)

        self._listeners[category].append(registration)
        logger.debug(f"New subscriber for {category.value}. Total: {len(self._listeners[category])}")

        removed = False

        def unsubscribe() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            self._listeners[category].remove(registration)
            logger.debug(f"Removed subscriber for {category.value}")

        return unsubscribe

    def _notify(self, event: StoreEvent) -> None:
        """Deliver a fresh snapshot to every listener of event, in registration order."""
        listeners = list(self._listeners[event])
        for callback in listeners:
            try:
                callback(self.get_messages())
            except Exception:
                logger.exception(f"Listener for {event.value} failed")

    def _report_error(self, error: BaseException, context: str) -> None:
        self._last_error = error
        logger.error(f"{context}: {error}")
        self._notify(StoreEvent.ERROR)

    # ===== Getters =====

    def get_messages(self) -> Snapshot:
        """Snapshot of the messages, newest first.

        A new list on every call; later mutations of the store never
        affect a snapshot already handed out.
        """
        return list(reversed(self._messages))

    def get_pagination_info(self) -> PaginationInfo:
        """Current pagination state."""
        return self._pagination

    @property
    def current_user_id(self) -> str:
        """Id of the active user, empty when none is set."""
        return self._current_user_id

    @property
    def current_conversation_id(self) -> str | None:
        """Id of the active conversation."""
        return self._current_conversation_id

    @property
    def last_error(self) -> BaseException | None:
        """The most recent failure reported through the error event."""
        return self._last_error

    @property
    def pending_count(self) -> int:
        """Number of writes waiting for reconnection."""
        return len(self._pending)

    def get_debug_info(self) -> dict[str, Any]:
        """Diagnostic snapshot of the store."""
        return {
            "message_count": len(self._messages),
            "listener_counts": {event.value: len(cbs) for event, cbs in self._listeners.items()},
            "current_user_id": self._current_user_id,
            "current_conversation_id": self._current_conversation_id,
            "pagination": self._pagination.to_dict(),
            "pending_writes": len(self._pending),
            "is_online": self._is_online(),
            "last_update_time": (
                datetime.fromtimestamp(self._last_update_time).isoformat()
                if self._last_update_time
                else None
            ),
            "background_tasks": len(self._tasks),
        }

    def _is_online(self) -> bool:
        return self._connectivity.get_current_status() if self._connectivity is not None else True

    # ===== User and conversation context =====

    async def set_current_user(self, user_id: str) -> None:
        """Switch the active user and load their current conversation.

        No-op if user_id is unchanged.
        """
        if user_id == self._current_user_id:
            return

        self._current_user_id = user_id
        self._current_conversation_id = None
        self._messages = ()
        self._pagination = replace(self._pagination, current_page=0, has_more=False, total_loaded=0)
        logger.info(f"Current user changed to: {user_id}")

        await self.load_page(0)

    async def set_current_conversation(self, conversation_id: str | None) -> None:
        """Switch the active conversation and reload from page 0.

        No-op if conversation_id is unchanged.
        """
        if conversation_id == self._current_conversation_id:
            return

        self._current_conversation_id = conversation_id
        self._pagination = replace(self._pagination, current_page=0, has_more=False)
        logger.info(f"Current conversation changed to: {conversation_id}")

        await self.load_page(0)

    # ===== Pagination =====

    async def load_page(self, page_index: int = 0) -> None:
        """Load one page of history from the durable cache.

        Page 0 replaces the in-memory messages; later pages hold older
        history and are prepended. Failures notify ``error`` and leave
        the in-memory state untouched.
        """
        if page_index < 0:
            raise ValueError("page_index must not be negative")

        user_id = self._current_user_id
        if not user_id:
            logger.warning("No current user set, nothing to load")
            return

        try:
            if self._current_conversation_id is None:
                resolved = await self._cache.get_current_conversation(user_id)
                if user_id != self._current_user_id or self._current_conversation_id is not None:
                    logger.debug("Context changed while resolving current conversation, dropping result")
                    return
                if not resolved:
                    logger.warning(f"No current conversation for user {user_id}")
                    self._messages = ()
                    self._pagination = replace(
                        self._pagination, current_page=0, has_more=False, total_loaded=0
                    )
                    self._touch()
                    self._notify(StoreEvent.UPDATE)
                    self._notify(StoreEvent.PAGINATION)
                    return
                self._current_conversation_id = resolved

            conversation_id = self._current_conversation_id
            limit = self._pagination.page_size
            offset = page_index * limit
            logger.debug(f"Loading page {page_index} (limit={limit}, offset={offset})")

            loaded = await self._cache.load(user_id, conversation_id, limit, offset)
        except Exception as e:
            self._report_error(e, f"Failed to load page {page_index}")
            return

        if user_id != self._current_user_id or conversation_id != self._current_conversation_id:
            logger.debug(f"Context changed while loading page {page_index}, dropping result")
            return

        valid = [message for message in loaded if message.is_valid]
        if len(valid) != len(loaded):
            logger.warning(f"Dropped {len(loaded) - len(valid)} invalid messages from storage")

        if page_index == 0:
            self._messages = tuple(valid)
        else:
            self._messages = tuple(valid) + self._messages

        self._pagination = replace(
            self._pagination,
            current_page=page_index,
            has_more=len(loaded) == limit and len(loaded) > 0,
            total_loaded=len(self._messages),
        )
        self._touch()
        logger.debug(
            f"Messages loaded. Total: {len(self._messages)}. HasMore: {self._pagination.has_more}"
        )
        self._notify(StoreEvent.UPDATE)
        self._notify(StoreEvent.PAGINATION)

    async def load_next_page(self) -> bool:
        """Load the next page of older history.

        Returns:
            False without any I/O when there is nothing more to load.
        """
        if not self._pagination.has_more:
            logger.debug("No more messages to load")
            return False

        await self.load_page(self._pagination.current_page + 1)
        return True

    # ===== Mutations =====

    def add_message(self, message: Message | Mapping[str, Any]) -> Message | None:
        """Append a message, notify, then persist and forward in the background.

        A missing id is generated. A message without text is rejected.

        Returns:
            The stored message, or None if it was rejected.
        """
        candidate = Message.coerce(message)
        if candidate is None or not candidate.text:
            self._report_error(ValueError("Attempted to add an invalid message"), "Rejected message")
            return None

        if not candidate.id:
            sender = self._current_user_id if candidate.is_user else ASSISTANT_SENDER
            candidate = replace(candidate, id=generate_message_id(sender or "anonymous"))
        if not candidate.timestamp:
            candidate = replace(candidate, timestamp=display_timestamp())

        self._messages = self._messages + (candidate,)
        self._touch()
        logger.debug(f"Message added. ID: {candidate.id}. Total: {len(self._messages)}")

        self._schedule_persist(trigger=candidate, forward=True)

        self._notify(StoreEvent.UPDATE)
        return candidate

    def set_messages(self, messages: Iterable[Message | Mapping[str, Any]]) -> None:
        """Replace all messages, dropping invalid entries, then persist."""
        coerced = [Message.coerce(item) for item in messages]
        valid = [message for message in coerced if message is not None and message.is_valid]
        if len(valid) != len(coerced):
            logger.warning(f"Filtered out {len(coerced) - len(valid)} invalid messages")

        self._messages = tuple(valid)
        self._touch()
        logger.debug(f"Messages set. Total: {len(self._messages)}")

        self._schedule_persist()

        self._notify(StoreEvent.UPDATE)

    def clear_messages(self) -> None:
        """Empty the in-memory list. The durable cache is not touched."""
        self._messages = ()
        self._touch()
        logger.debug("All messages cleared")
        self._notify(StoreEvent.UPDATE)

    def mark_as_animated(self, message_id: str) -> None:
        """Record that a message's typing animation has finished."""
        index = self._index_of(message_id)
        if index is None:
            logger.warning(f"mark_as_animated: message {message_id} not found")
            return

        self._replace_at(index, self._messages[index].as_animated())
        logger.debug(f"Message {message_id} marked as animated")
        self._notify(StoreEvent.UPDATE)

    # ===== Streaming replies =====

    def start_stream_message(self, message_id: str) -> None:
        """Add an empty assistant message that stream tokens will fill."""
        if self._index_of(message_id) is not None:
            return

        placeholder = Message(
            id=message_id,
            text="",
            is_user=False,
            timestamp=display_timestamp(),
            animate_typing=True,
            has_been_animated=False,
        )
        self._messages = self._messages + (placeholder,)
        self._touch()
        self._notify(StoreEvent.UPDATE)

    def append_stream_token(self, message_id: str, token: str) -> None:
        """Append a token to a streaming message."""
        index = self._index_of(message_id)
        if index is None:
            logger.warning(f"append_stream_token: message {message_id} not found")
            return

        current = self._messages[index]
        self._replace_at(index, replace(current, text=current.text + token))
        self._notify(StoreEvent.UPDATE)

    def finalize_stream(self, message_id: str) -> None:
        """Mark a streamed message complete, persist it and forward it."""
        index = self._index_of(message_id)
        if index is None:
            logger.warning(f"finalize_stream: message {message_id} not found")
            return

        finished = self._messages[index].as_animated()
        if not finished.text:
            # Nothing was streamed; an empty message must not reach the display
            self._messages = self._messages[:index] + self._messages[index + 1 :]
            self._touch()
            logger.warning(f"Stream {message_id} finished without text, discarded")
            self._notify(StoreEvent.UPDATE)
            return

        self._replace_at(index, finished)
        logger.info(f"Stream finalized for message {message_id}")
        self._schedule_persist(trigger=finished, forward=True)
        self._notify(StoreEvent.UPDATE)

    # ===== Remote history =====

    async def restore_from_remote(self) -> int:
        """Replace the messages with the long-term memory transcript.

        Returns:
            Number of messages restored (0 on failure).
        """
        if self._remote is None or not self._current_conversation_id:
            logger.debug("Nothing to restore: no memory service or no conversation")
            return 0

        try:
            transcript = await self._remote.fetch_all(self._current_conversation_id)
        except Exception as e:
            self._report_error(e, "Failed to restore history from memory service")
            return 0

        stamp = display_timestamp()
        restored = [
            Message(
                id=entry.get("message_id") or generate_message_id(entry.get("role", "ai")),
                text=entry.get("content", ""),
                is_user=entry.get("role") == "user",
                timestamp=stamp,
                animate_typing=False,
                has_been_animated=True,
            )
            for entry in transcript
        ]
        self.set_messages(restored)
        return len(self._messages)

    # ===== Background work =====

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, skipping background persistence")
            coro.close()
            return

        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _schedule_persist(self, trigger: Message | None = None, forward: bool = False) -> None:
        """Start saving the conversation as it is at this instant.

        The target user, conversation and message list are taken here,
        before returning to the caller, so a later switch cannot redirect
        or empty the write.
        """
        user_id = self._current_user_id
        if not user_id:
            return

        conversation_id = self._current_conversation_id or self._default_conversation_id
        # Persisted copies never replay the typing animation
        to_save = [replace(message, animate_typing=False) for message in self._messages]
        keep_older = self._pagination.has_more
        self._spawn(self._persist_all(user_id, conversation_id, to_save, trigger, keep_older))

        if forward and trigger is not None and self._current_conversation_id:
            self._spawn(self._forward_to_remote(self._current_conversation_id, trigger))

    async def _persist_all(
        self,
        user_id: str,
        conversation_id: str,
        to_save: list[Message],
        trigger: Message | None = None,
        keep_older: bool = False,
    ) -> None:
        try:
            if keep_older and to_save:
                to_save = await self._with_unloaded_history(user_id, conversation_id, to_save)
            await self._cache.save(user_id, conversation_id, to_save)
        except Exception as e:
            self._report_error(e, "Failed to persist messages")
            if trigger is not None and not self._is_online():
                self._pending.enqueue(
                    PendingWrite(message=trigger, user_id=user_id, conversation_id=conversation_id)
                )

    async def _with_unloaded_history(
        self, user_id: str, conversation_id: str, to_save: list[Message]
    ) -> list[Message]:
        """Prefix the stored messages older than the loaded window."""
        stored = await self._cache.load_all(user_id, conversation_id)
        first_id = to_save[0].id
        for index, message in enumerate(stored):
            if message.id == first_id:
                return stored[:index] + to_save
        return to_save

    async def _forward_to_remote(self, session_id: str, message: Message) -> None:
        if self._remote is None:
            return

        try:
            await self._remote.append(
                session_id,
                {"message_id": message.id, "role": message.role, "content": message.text},
            )
        except Exception as e:
            # Long-term memory is best effort; the local chat keeps working
            logger.error(f"Failed to forward message {message.id} to memory service: {e}")

    async def replay_pending_write(self, write: PendingWrite) -> None:
        """Persist a deferred message into its conversation.

        Raises on failure so the queue keeps the write for the next cycle.
        """
        stored = await self._cache.load_all(write.user_id, write.conversation_id)
        if any(message.id == write.message.id for message in stored):
            logger.debug(f"Message {write.message.id} already persisted")
            return

        stored.append(replace(write.message, animate_typing=False))
        await self._cache.save(write.user_id, write.conversation_id, stored)
        logger.info(f"Pending message {write.message.id} persisted")

    async def flush(self) -> None:
        """Wait until all background persistence and forwarding has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Flush background work and drop all subscribers."""
        await self.flush()
        for listeners in self._listeners.values():
            listeners.clear()

    # ===== Helpers =====

    def _touch(self) -> None:
        self._last_update_time = time.time()

    def _index_of(self, message_id: str) -> int | None:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return index
        return None

    def _replace_at(self, index: int, message: Message) -> None:
        self._messages = self._messages[:index] + (message,) + self._messages[index + 1 :]
        self._touch()
