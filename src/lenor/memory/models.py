"""Data model shared by the conversation store, directory and caches.

Messages are immutable; every change to one produces a new instance via
``dataclasses.replace`` so snapshots handed to subscribers stay valid.
"""

from __future__ import annotations

import itertools
import re
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Self


class StoreEvent(str, Enum):
    """Event categories a subscriber can register for."""

    UPDATE = "update"
    ERROR = "error"
    PAGINATION = "pagination"


_id_counter = itertools.count()


def generate_message_id(sender: str) -> str:
    """Generate a unique message id for ``sender``.

    Ids from the same sender sort lexicographically in creation order:
    a zero-padded nanosecond clock, then a zero-padded process-wide
    counter, then a random suffix for global uniqueness.
    """
    return f"{sender}_{time.time_ns():020d}_{next(_id_counter):08d}_{uuid.uuid4().hex[:8]}"


_GENERATED_ID = re.compile(r"_(\d{20})_\d{8}_[0-9a-f]{8}$")


def message_id_time(message_id: str) -> float | None:
    """Creation time in epoch seconds encoded in a generated message id."""
    match = _GENERATED_ID.search(message_id)
    if match is None:
        return None
    return int(match.group(1)) / 1e9


def generate_conversation_id() -> str:
    """Generate a new conversation id (never contains ':')."""
    return uuid.uuid4().hex


def display_timestamp(moment: datetime | None = None) -> str:
    """Format a timestamp the way the chat view shows it (HH:MM)."""
    return (moment or datetime.now()).strftime("%H:%M")


@dataclass(frozen=True)
class Message:
    """A single chat message.

    Attributes:
        id: Opaque, globally unique id
        text: The message text
        is_user: True when the user sent it, False for the assistant
        timestamp: Display-formatted time
        local_image_uri: Optional attached image on the device
        animate_typing: Whether the typing animation should run for it
        has_been_animated: Set once the typing animation has completed
    """

    id: str = ""
    text: str = ""
    is_user: bool = False
    timestamp: str = ""
    local_image_uri: str | None = None
    animate_typing: bool | None = None
    has_been_animated: bool | None = None

    @property
    def is_valid(self) -> bool:
        """A message is displayable only with both an id and text."""
        return bool(self.id) and bool(self.text)

    @property
    def role(self) -> str:
        """Role name used by the long-term memory service."""
        return "user" if self.is_user else "assistant"

    def as_animated(self) -> Message:
        """Copy with the typing animation marked as finished."""
        return replace(self, animate_typing=False, has_been_animated=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation, omitting unset optionals."""
        data: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "is_user": self.is_user,
            "timestamp": self.timestamp,
        }
        if self.local_image_uri is not None:
            data["local_image_uri"] = self.local_image_uri
        if self.animate_typing is not None:
            data["animate_typing"] = self.animate_typing
        if self.has_been_animated is not None:
            data["has_been_animated"] = self.has_been_animated
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        """Create Message from dictionary.

        Missing fields fall back to empty values; callers check
        ``is_valid`` before letting the message near the display.
        """
        return cls(
            id=str(data.get("id") or ""),
            text=str(data.get("text") or ""),
            is_user=bool(data.get("is_user", False)),
            timestamp=str(data.get("timestamp") or ""),
            local_image_uri=data.get("local_image_uri"),
            animate_typing=data.get("animate_typing"),
            has_been_animated=data.get("has_been_animated"),
        )

    @classmethod
    def coerce(cls, value: Message | Mapping[str, Any] | None) -> Message | None:
        """Accept a Message or a mapping; anything else yields None."""
        if isinstance(value, Message):
            return value
        if isinstance(value, Mapping):
            return cls.from_dict(value)
        return None


@dataclass
class PendingWrite:
    """A message whose durable persistence failed while offline.

    Lives only in memory; it is lost if the process exits before the
    next successful drain.
    """

    message: Message
    user_id: str
    conversation_id: str
    retry_count: int = 0


@dataclass(frozen=True)
class PaginationInfo:
    """Pagination state of the store.

    ``has_more`` is True only when the last loaded page was full and
    non-empty.
    """

    current_page: int = 0
    page_size: int = 10
    has_more: bool = False
    total_loaded: int = 0

    def to_dict(self) -> dict[str, int | bool]:
        """Convert to dictionary representation."""
        return {
            "current_page": self.current_page,
            "page_size": self.page_size,
            "has_more": self.has_more,
            "total_loaded": self.total_loaded,
        }


@dataclass
class ConversationMetadata:
    """Cached, derived facts about a stored conversation.

    Advisory only: the stored message list is the source of truth.
    """

    last_message: str | None = None
    message_count: int | None = None
    timestamp: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "last_message": self.last_message,
            "message_count": self.message_count,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConversationMetadata:
        """Create from dictionary, tolerating missing or mistyped fields."""
        count = data.get("message_count")
        stamp = data.get("timestamp")
        return cls(
            last_message=data.get("last_message"),
            message_count=int(count) if isinstance(count, (int, float)) else None,
            timestamp=float(stamp) if isinstance(stamp, (int, float)) else None,
        )


@dataclass(frozen=True)
class ConversationSummary:
    """One row of the conversation directory."""

    id: str
    timestamp: float
    last_message: str
    message_count: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "last_message": self.last_message,
            "message_count": self.message_count,
        }


@dataclass
class ConversationRecord:
    """Root record of a conversation in the durable cache."""

    id: str
    user_id: str
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"id": self.id, "user_id": self.user_id, "created_at": self.created_at}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConversationRecord:
        """Create from dictionary."""
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            created_at=float(data.get("created_at", 0.0)),
        )
