"""Tests for the message data model."""

from __future__ import annotations

import time
from dataclasses import FrozenInstanceError
from datetime import datetime

import pytest

from lenor.memory.models import (
    ConversationMetadata,
    ConversationRecord,
    Message,
    PaginationInfo,
    StoreEvent,
    display_timestamp,
    generate_conversation_id,
    generate_message_id,
    message_id_time,
)


class TestMessage:
    """Tests for Message."""

    def test_is_valid_requires_id_and_text(self) -> None:
        """Test a message needs both an id and text."""
        assert Message(id="m1", text="hi").is_valid
        assert not Message(id="", text="hi").is_valid
        assert not Message(id="m1", text="").is_valid

    def test_role(self) -> None:
        """Test role names for the memory service."""
        assert Message(id="m1", text="hi", is_user=True).role == "user"
        assert Message(id="m2", text="hi", is_user=False).role == "assistant"

    def test_immutable(self) -> None:
        """Test messages cannot be changed in place."""
        message = Message(id="m1", text="hi")
        with pytest.raises(FrozenInstanceError):
            message.text = "changed"  # type: ignore[misc]

    def test_as_animated(self) -> None:
        """Test as_animated returns a marked copy."""
        message = Message(id="m1", text="hi", animate_typing=True)
        animated = message.as_animated()

        assert animated.has_been_animated is True
        assert animated.animate_typing is False
        assert message.has_been_animated is None

    def test_to_dict_omits_unset_optionals(self) -> None:
        """Test optional fields appear only when set."""
        data = Message(id="m1", text="hi", is_user=True, timestamp="10:00").to_dict()
        assert data == {"id": "m1", "text": "hi", "is_user": True, "timestamp": "10:00"}

        data = Message(id="m1", text="hi", local_image_uri="file:///a.png").to_dict()
        assert data["local_image_uri"] == "file:///a.png"

    def test_from_dict_tolerates_missing_fields(self) -> None:
        """Test partial dicts produce invalid but usable messages."""
        message = Message.from_dict({"text": "orphan"})
        assert message.id == ""
        assert message.text == "orphan"
        assert not message.is_valid

    def test_coerce(self) -> None:
        """Test coerce accepts messages and mappings only."""
        message = Message(id="m1", text="hi")
        assert Message.coerce(message) is message
        assert Message.coerce({"id": "m2", "text": "yo"}) == Message(id="m2", text="yo")
        assert Message.coerce(None) is None
        assert Message.coerce("not a message") is None  # type: ignore[arg-type]


class TestIds:
    """Tests for id generation."""

    def test_message_ids_unique(self) -> None:
        """Test ids never repeat, even in a tight loop."""
        ids = {generate_message_id("u1") for _ in range(1000)}
        assert len(ids) == 1000

    def test_message_ids_sort_in_creation_order(self) -> None:
        """Test ids from one sender sort by creation."""
        ids = [generate_message_id("ai") for _ in range(50)]
        assert ids == sorted(ids)

    def test_message_id_carries_sender(self) -> None:
        """Test the sender prefixes the id."""
        assert generate_message_id("user-7").startswith("user-7_")

    def test_message_id_time(self) -> None:
        """Test the creation clock can be read back from a generated id."""
        before = time.time()
        message_id = generate_message_id("ai")
        after = time.time()

        assert before - 1 <= message_id_time(message_id) <= after + 1
        assert message_id_time("m1") is None
        assert message_id_time("") is None

    def test_conversation_id_has_no_separator(self) -> None:
        """Test conversation ids never contain the key separator."""
        assert ":" not in generate_conversation_id()
        assert generate_conversation_id() != generate_conversation_id()


class TestMisc:
    """Tests for the smaller value types."""

    def test_display_timestamp(self) -> None:
        """Test HH:MM formatting."""
        assert display_timestamp(datetime(2024, 5, 1, 9, 7)) == "09:07"

    def test_store_event_values(self) -> None:
        """Test event categories resolve from their names."""
        assert StoreEvent("update") is StoreEvent.UPDATE
        assert StoreEvent("pagination") is StoreEvent.PAGINATION
        with pytest.raises(ValueError):
            StoreEvent("typo")

    def test_pagination_defaults(self) -> None:
        """Test the initial pagination state."""
        info = PaginationInfo()
        assert info.to_dict() == {
            "current_page": 0,
            "page_size": 10,
            "has_more": False,
            "total_loaded": 0,
        }

    def test_metadata_from_dict_tolerant(self) -> None:
        """Test mistyped metadata fields become None."""
        metadata = ConversationMetadata.from_dict(
            {"last_message": "hi", "message_count": "many", "timestamp": None}
        )
        assert metadata.last_message == "hi"
        assert metadata.message_count is None
        assert metadata.timestamp is None

    def test_record_from_dict(self) -> None:
        """Test conversation root records read back."""
        record = ConversationRecord.from_dict({"id": "c1", "user_id": "u1", "created_at": 5})
        assert record == ConversationRecord(id="c1", user_id="u1", created_at=5.0)
