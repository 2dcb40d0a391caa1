"""Shared pytest fixtures for Lenor tests."""

from __future__ import annotations

from pathlib import Path
from typing import AsyncGenerator, Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from lenor.config import CacheConfig, LenorConfig, RemoteMemoryConfig, StoreConfig
from lenor.memory.connectivity import ConnectivityMonitor
from lenor.memory.local_cache import CacheError, LocalCache
from lenor.memory.models import Message
from lenor.memory.store import ConversationStore


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for test data."""
    return tmp_path


@pytest.fixture
def mock_config(temp_dir: Path) -> LenorConfig:
    """Return test configuration with temporary data directory."""
    config = LenorConfig(
        name="TestLenor",
        data_dir=str(temp_dir / "data"),
        log_level="DEBUG",
        store=StoreConfig(page_size=3),
        cache=CacheConfig(db_path=":memory:"),
        remote_memory=RemoteMemoryConfig(enabled=False),
    )

    # Ensure data directory exists
    Path(config.data_dir).mkdir(parents=True, exist_ok=True)

    return config


@pytest.fixture
async def cache() -> AsyncGenerator[LocalCache, None]:
    """In-memory SQLite cache, initialized and closed around each test."""
    local_cache = LocalCache(":memory:")
    await local_cache.initialize()
    yield local_cache
    await local_cache.close()


@pytest.fixture
def monitor() -> ConnectivityMonitor:
    """Push-only connectivity monitor that starts online."""
    return ConnectivityMonitor(initial_status=True)


@pytest.fixture
def mock_remote() -> MagicMock:
    """Mock long-term memory client."""
    remote = MagicMock()
    remote.append = AsyncMock()
    remote.fetch_all = AsyncMock(return_value=[])
    return remote


@pytest.fixture
def mock_httpx_client() -> MagicMock:
    """Return a mock httpx.AsyncClient."""
    mock_client = MagicMock(spec=httpx.AsyncClient)
    mock_client.aclose = AsyncMock()
    return mock_client


@pytest.fixture
async def store(
    cache: LocalCache,
    monitor: ConnectivityMonitor,
    mock_remote: MagicMock,
) -> AsyncGenerator[ConversationStore, None]:
    """Store wired to the in-memory cache, a push-only monitor and a mock remote."""
    conversation_store = ConversationStore(
        cache=cache,
        remote=mock_remote,
        connectivity=monitor,
        page_size=3,
    )
    yield conversation_store
    await conversation_store.close()


def build_messages(count: int, prefix: str = "m") -> list[Message]:
    """Build count alternating user/assistant messages, oldest first."""
    return [
        Message(
            id=f"{prefix}{i:03d}",
            text=f"message {i}",
            is_user=i % 2 == 0,
            timestamp="10:00",
        )
        for i in range(count)
    ]


@pytest.fixture
def make_messages() -> Callable[..., list[Message]]:
    """Factory building chronological test messages."""
    return build_messages


@pytest.fixture
def sample_messages() -> list[Message]:
    """Seven chronological messages."""
    return build_messages(7)


class FlakyCache(LocalCache):
    """In-memory cache whose saves can be made to fail on demand."""

    def __init__(self) -> None:
        super().__init__(":memory:")
        self.fail_saves = False
        self.save_attempts = 0

    async def save(self, user_id: str, conversation_id: str, messages: list[Message]) -> None:
        self.save_attempts += 1
        if self.fail_saves:
            raise CacheError("simulated storage failure")
        await super().save(user_id, conversation_id, messages)


@pytest.fixture
async def flaky_cache() -> AsyncGenerator[FlakyCache, None]:
    """FlakyCache, initialized and closed around each test."""
    local_cache = FlakyCache()
    await local_cache.initialize()
    yield local_cache
    await local_cache.close()
