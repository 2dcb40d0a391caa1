"""Protocol definitions for the collaborators of the conversation store.

These protocols define the interfaces that can be injected into the
ConversationStore and ConversationDirectory, enabling loose coupling and
easier testing.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol

from .models import ConversationMetadata, Message, PendingWrite


class LocalCacheProtocol(Protocol):
    """
    Protocol for durable local cache implementations.

    A local cache persists message history and per-conversation metadata
    keyed by (user, conversation) and survives process restarts.
    """

    async def load(
        self,
        user_id: str,
        conversation_id: str,
        limit: int,
        offset: int,
    ) -> list[Message]:
        """Load one page of messages, counted from the newest end, in chronological order."""
        ...

    async def load_all(self, user_id: str, conversation_id: str) -> list[Message]:
        """Load the full stored history of a conversation."""
        ...

    async def save(self, user_id: str, conversation_id: str, messages: list[Message]) -> None:
        """Replace the stored history of a conversation."""
        ...

    async def list_keys(self, prefix: str) -> list[str]:
        """List every key starting with prefix."""
        ...

    async def get_metadata(self, user_id: str, conversation_id: str) -> ConversationMetadata | None:
        """Read the advisory metadata of a conversation."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""
        ...

    async def get_current_conversation(self, user_id: str) -> str | None:
        """Get the id of the user's current conversation."""
        ...

    async def set_current_conversation(self, user_id: str, conversation_id: str) -> None:
        """Record the id of the user's current conversation."""
        ...


class RemoteMemoryProtocol(Protocol):
    """
    Protocol for remote long-term memory clients.

    Stores full transcripts keyed by a session id.
    """

    async def append(self, session_id: str, message: dict[str, str]) -> None:
        """Append {message_id, role, content} to a session."""
        ...

    async def fetch_all(self, session_id: str) -> list[dict[str, str]]:
        """Fetch the ordered {message_id, role, content} entries of a session."""
        ...


class ConnectivityProtocol(Protocol):
    """
    Protocol for connectivity monitors as seen by the store.
    """

    def get_current_status(self) -> bool:
        """Whether the network is currently reachable."""
        ...

    def attach_pending(
        self,
        queue: Any,
        replay: Callable[[PendingWrite], Any],
    ) -> None:
        """Hand over the pending-write queue drained on reconnect."""
        ...
