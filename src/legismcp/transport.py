"""
HTTP request channel.

Requests are individual POSTs to the server URL carrying one JSON-RPC
envelope each. The push channel is a long-lived GET on the same URL that
accepts ``text/event-stream``. Both carry the bearer credential and, once
known, the session id header.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
from urllib.parse import urlparse

import httpx

from .envelope import dumps
from .errors import DecodeError, TransportError

logger = logging.getLogger('legismcp')

SESSION_HEADER = "Mcp-Session-Id"


class HTTPTransport:
    """httpx-backed request channel and stream opener for one server URL."""

    def __init__(
        self,
        server_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        session_header: str = SESSION_HEADER,
        client: Optional[httpx.AsyncClient] = None
    ) -> None:
        """
        Args:
            server_url: The MCP endpoint (e.g., "https://api.example.com/mcp").
            api_key: Bearer credential. Can be replaced later via the api_key attribute.
            timeout: Connect/write timeout in seconds for HTTP operations.
            session_header: Header carrying the session id in both directions.
            client: Optional preconfigured httpx.AsyncClient (tests pass one
                    built on httpx.MockTransport).
        """
        parsed = urlparse(server_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(
                f"Invalid URL scheme '{parsed.scheme or '(empty)'}': "
                f"expected 'http' or 'https'. Example: https://api.example.com/mcp"
            )
        if not parsed.hostname:
            raise ValueError(f"Invalid URL '{server_url}': missing hostname.")

        self.server_url = server_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.session_header = session_header
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    def headers(self, session_id: Optional[str] = None, accept: str = "application/json") -> dict[str, str]:
        headers = {"Accept": accept}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if session_id:
            headers[self.session_header] = session_id
        return headers

    async def post(self, message: dict[str, Any], session_id: Optional[str] = None) -> tuple[Any, Optional[str]]:
        """
        Dispatch one envelope.

        Returns:
            (payload, session_id) where payload is the decoded JSON body, or
            None when the server answered with an empty body (the reply will
            arrive on the push channel), and session_id is the value of the
            session header on the response, if any.

        Raises:
            TransportError: On connection errors or a non-2xx status.
            DecodeError: If the body is not valid JSON.
        """
        headers = self.headers(session_id)
        headers["Content-Type"] = "application/json"
        body = dumps(message)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"POST {self.server_url} {body}")
        try:
            response = await self.client.post(self.server_url, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to POST message: {e}") from e

        if not response.is_success:
            raise TransportError(f"HTTP {response.status_code}: {response.reason_phrase}")

        new_session_id = response.headers.get(self.session_header)
        if not response.content.strip():
            return None, new_session_id
        try:
            return response.json(), new_session_id
        except ValueError as e:
            raise DecodeError(f"Invalid JSON in response body: {e}", response.text[:200]) from e

    @asynccontextmanager
    async def stream(self, session_id: Optional[str] = None) -> AsyncIterator[AsyncIterator[str]]:
        """
        Open the push stream and yield an async iterator over its lines.

        Errors while opening or reading the stream surface as TransportError.
        """
        headers = self.headers(session_id, accept="text/event-stream")
        headers["Cache-Control"] = "no-cache"
        timeout = httpx.Timeout(self.timeout, read=None)
        try:
            async with self.client.stream("GET", self.server_url, headers=headers, timeout=timeout) as response:
                if response.status_code != 200:
                    raise TransportError(f"HTTP {response.status_code}: {response.reason_phrase}")
                content_type = response.headers.get("content-type", "")
                if "text/event-stream" not in content_type:
                    raise TransportError(f"Expected text/event-stream, got {content_type or '(none)'}")
                yield response.aiter_lines()
        except httpx.HTTPError as e:
            raise TransportError(f"Push channel error: {e}") from e

    async def delete_session(self, session_id: str) -> None:
        """Ask the server to tear down a session. Raises TransportError on failure."""
        headers = self.headers()
        headers["Content-Type"] = "application/json"
        try:
            response = await self.client.delete(f"{self.server_url}/session/{session_id}", headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to delete session: {e}") from e
        if not response.is_success:
            raise TransportError(f"HTTP {response.status_code}: {response.reason_phrase}")

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
