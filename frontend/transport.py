from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from frontend.history import Conversation


logger = logging.getLogger("geminichat.frontend")

NETWORK_ERROR = "Network error"
SERVER_ERROR = "Failed to get response from server."
NO_RESPONSE = "Sorry, no response received."


class Transport:
    """Posts a conversation to the relay and appends the model's reply.

    ``send`` never raises: every failure comes back as a display string and
    leaves the conversation untouched.
    """

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        # None disables the timeout entirely, like a browser fetch
        self._timeout = httpx.Timeout(timeout)
        self._http_transport = http_transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self._timeout, transport=self._http_transport)

    async def send(self, conversation: Conversation) -> str:
        try:
            async with self._client() as client:
                response = await client.post("/api/chat", json=conversation.to_payload())
        except httpx.HTTPError as exc:
            logger.error("Chat request failed: %s", exc)
            return NETWORK_ERROR

        try:
            data = response.json()
        except ValueError:
            logger.error("Chat request failed: invalid JSON response (HTTP %s)", response.status_code)
            return SERVER_ERROR
        if not isinstance(data, dict):
            data = {}

        if not response.is_success:
            error = data.get("error")
            if isinstance(error, str) and error:
                return error
            return f"HTTP {response.status_code}"

        result = data.get("result")
        text = result.strip() if isinstance(result, str) else ""
        if not text:
            return NO_RESPONSE
        conversation.append_model(text)
        return text

    async def health(self) -> Dict[str, Any]:
        async with self._client() as client:
            response = await client.get("/api/health")
            response.raise_for_status()
            return response.json()
