"""HTTP client for the external maritime data tools.

Each tool is exposed by the tool service as ``POST <base_url>/<tool_id>``
taking the tool arguments as a JSON body and returning JSON. Failures are
raised, never converted into empty results.
"""

from typing import (
    Any,
    Dict,
    Optional,
)

import httpx

from voyageflow.core.config import settings
from voyageflow.core.logging import logger


class HttpToolClient:
    """Thin async client for the tool service."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Initialize the client.

        Args:
            base_url: Tool service base URL.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, used by tests.
        """
        self.base_url = (base_url or settings.TOOL_SERVICE_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.TOOL_SERVICE_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def invoke(self, tool_id: str, args: Dict[str, Any]) -> Any:
        """Call one tool.

        Args:
            tool_id: Tool identifier, used as the URL path.
            args: JSON-serializable arguments.

        Returns:
            Any: The decoded JSON response.

        Raises:
            httpx.HTTPStatusError: On a non-2xx response.
            httpx.TransportError: On connection problems.
        """
        response = await self._get_client().post(f"/{tool_id}", json=args)
        response.raise_for_status()
        logger.debug("tool_http_call_completed", tool=tool_id, status_code=response.status_code)
        return response.json()

    def bind(self, tool_id: str):
        """Return a single-argument coroutine function calling ``tool_id``."""

        async def _call(args: Dict[str, Any]) -> Any:
            return await self.invoke(tool_id, args)

        _call.__name__ = tool_id
        return _call

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
