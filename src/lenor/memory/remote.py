"""Client for the remote long-term memory service.

Stores full conversation transcripts keyed by a session id (Lenor uses
the conversation id). Speaks the Zep sessions/memory HTTP API.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Local role name -> service role type
ROLE_TO_REMOTE = {"user": "user", "assistant": "ai"}
REMOTE_TO_ROLE = {"user": "user", "ai": "assistant"}


class RemoteMemoryError(Exception):
    """Raised when the long-term memory service call fails."""


def _to_remote_role(role: str) -> str:
    remote = ROLE_TO_REMOTE.get(role.lower())
    if remote is None:
        logger.warning(f"Unrecognised role {role!r} for memory service, sending as 'ai'")
        return "ai"
    return remote


class RemoteMemoryClient:
    """Long-term memory service client.

    Example:
        >>> client = RemoteMemoryClient("https://api.getzep.com", api_key="...")
        >>> await client.append("conv-1", {"message_id": "m1", "role": "user", "content": "Hola"})
        >>> await client.fetch_all("conv-1")
        [{'message_id': 'm1', 'role': 'user', 'content': 'Hola'}]
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Service root URL.
            api_key: Bearer token. Empty disables the Authorization header.
            timeout: Request timeout in seconds.
            http_client: Preconfigured client (tests inject a mock transport).
        """
        self.base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        else:
            logger.warning("Memory service API key is not set")

        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
        )

    @staticmethod
    def _check_session(session_id: str) -> None:
        if not session_id or not session_id.strip():
            raise RemoteMemoryError(f"Invalid session id: {session_id!r}")

    async def append(self, session_id: str, message: dict[str, str]) -> None:
        """Append a message to a session transcript.

        Args:
            session_id: Transcript key.
            message: Dict with message_id, role ('user' | 'assistant') and content.

        Raises:
            RemoteMemoryError: If the session id is invalid or the request fails.
        """
        self._check_session(session_id)

        payload = {
            "messages": [
                {
                    "message_id": message["message_id"],
                    "role_type": _to_remote_role(message["role"]),
                    "content": message["content"],
                }
            ]
        }

        try:
            response = await self._http_client.post(
                f"/api/v2/sessions/{session_id}/memory", json=payload
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise RemoteMemoryError(f"Failed to append to session {session_id[:8]}: {e}") from e

        logger.debug(f"Appended message {message['message_id']} to session {session_id[:8]}")

    async def fetch_all(self, session_id: str) -> list[dict[str, str]]:
        """Fetch a session transcript in order.

        A session unknown to the service is created and yields an empty
        transcript.

        Args:
            session_id: Transcript key.

        Returns:
            List of {message_id, role, content} dicts, oldest first.

        Raises:
            RemoteMemoryError: If the request fails or the payload is malformed.
        """
        self._check_session(session_id)

        try:
            response = await self._http_client.get(f"/api/v2/sessions/{session_id}/memory")
            if response.status_code == 404:
                logger.info(f"Session {session_id[:8]} not found in memory service, creating it")
                await self._create_session(session_id)
                return []
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise RemoteMemoryError(f"Failed to fetch session {session_id[:8]}: {e}") from e
        except ValueError as e:
            raise RemoteMemoryError(f"Unexpected memory service response: {e}") from e

        raw_messages = data.get("messages") if isinstance(data, dict) else None
        if not isinstance(raw_messages, list):
            raise RemoteMemoryError(f"Unexpected memory service response: {data}")

        messages = []
        for item in raw_messages:
            if not isinstance(item, dict):
                continue
            messages.append(
                {
                    "message_id": str(item.get("message_id") or item.get("uuid") or ""),
                    "role": REMOTE_TO_ROLE.get(str(item.get("role_type", "")), "assistant"),
                    "content": str(item.get("content") or ""),
                }
            )

        logger.debug(f"Fetched {len(messages)} messages from session {session_id[:8]}")
        return messages

    async def _create_session(self, session_id: str) -> None:
        """Create a session on the service."""
        response = await self._http_client.post(
            "/api/v2/sessions",
            json={"session_id": session_id, "metadata": {"app": "lenor"}},
        )
        response.raise_for_status()

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> RemoteMemoryClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
