"""Factories for building Lenor's message memory with dependency injection.

Every call builds a fresh, isolated set of components; there is no
module-level singleton. The application root owns the returned runtime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import LenorConfig
from .memory.connectivity import ConnectivityMonitor
from .memory.directory import ConversationDirectory
from .memory.local_cache import LocalCache
from .memory.pending import PendingWriteQueue
from .memory.protocols import LocalCacheProtocol, RemoteMemoryProtocol
from .memory.remote import RemoteMemoryClient
from .memory.store import ConversationStore
from .presentation.typewriter import TypingSequencer

logger = logging.getLogger(__name__)


@dataclass
class LenorRuntime:
    """The composed message memory components."""

    config: LenorConfig
    cache: LocalCacheProtocol
    remote: RemoteMemoryProtocol | None
    connectivity: ConnectivityMonitor
    store: ConversationStore
    directory: ConversationDirectory
    typing: TypingSequencer

    async def close(self) -> None:
        """Flush background work and release every resource."""
        self.typing.cancel_all()
        await self.store.close()
        await self.connectivity.stop()
        close_remote = getattr(self.remote, "close", None)
        if close_remote is not None:
            await close_remote()
        close_cache = getattr(self.cache, "close", None)
        if close_cache is not None:
            await close_cache()
        logger.info("Lenor runtime closed")


def create_store(
    config: LenorConfig,
    cache: LocalCacheProtocol,
    remote: RemoteMemoryProtocol | None = None,
    connectivity: ConnectivityMonitor | None = None,
) -> ConversationStore:
    """
    Create a ConversationStore from config and injected collaborators.

    Args:
        config: Lenor configuration.
        cache: Durable local cache (already initialized).
        remote: Long-term memory client, or None to disable forwarding.
        connectivity: Network monitor, or None to assume always online.

    Returns:
        A new, empty ConversationStore.

    Example:
        >>> store = create_store(config, cache)
        >>> await store.set_current_user("user-1")
    """
    return ConversationStore(
        cache=cache,
        remote=remote,
        connectivity=connectivity,
        pending=PendingWriteQueue(max_retries=config.store.max_pending_retries),
        page_size=config.store.page_size,
        default_conversation_id=config.store.default_conversation_id,
    )


async def create_runtime(
    config: LenorConfig,
    cache: LocalCacheProtocol | None = None,
    remote: RemoteMemoryProtocol | None = None,
    start_polling: bool = True,
) -> LenorRuntime:
    """
    Create a fully wired LenorRuntime.

    Builds the cache, memory client, connectivity monitor, store,
    directory and typing sequencer from config; any collaborator passed
    in is used instead.

    Args:
        config: Lenor configuration.
        cache: Optional durable cache. A SQLite LocalCache is created if None.
        remote: Optional memory client. Created from config if None and enabled.
        start_polling: Start the connectivity probe if one is configured.

    Returns:
        Initialized LenorRuntime.

    Example:
        >>> runtime = await create_runtime(LenorConfig.load())
        >>> await runtime.store.set_current_user("user-1")
    """
    if cache is None:
        local_cache = LocalCache(config.cache_path)
        await local_cache.initialize()
        cache = local_cache
        logger.debug(f"Created local cache at {config.cache_path}")

    if remote is None and config.remote_memory.enabled:
        remote = RemoteMemoryClient(
            base_url=config.remote_memory.base_url,
            api_key=config.remote_memory.api_key,
            timeout=config.remote_memory.timeout,
        )
        logger.debug(f"Created memory service client for {config.remote_memory.base_url}")

    connectivity = ConnectivityMonitor(
        probe_url=config.connectivity.probe_url,
        poll_interval=config.connectivity.poll_interval,
        probe_timeout=config.connectivity.probe_timeout,
    )

    store = create_store(config, cache, remote=remote, connectivity=connectivity)
    directory = ConversationDirectory(cache, store)
    typing = TypingSequencer(
        interval=config.typewriter.interval,
        step=config.typewriter.step,
        unit=config.typewriter.unit,
    )

    if start_polling:
        connectivity.start()

    logger.info("Created Lenor runtime with dependency injection")
    return LenorRuntime(
        config=config,
        cache=cache,
        remote=remote,
        connectivity=connectivity,
        store=store,
        directory=directory,
        typing=typing,
    )
