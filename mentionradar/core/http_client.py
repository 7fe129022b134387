"""
Centralized HTTP Client Configuration

Async HTTP client shared by connectors and the webhook delivery engine.
Requests are bounded by a timeout and are never retried in-process: a
failed call is retried by the next scheduled cycle or by the webhook
retry ladder.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx

from mentionradar.core.config import get_settings

logger = logging.getLogger(__name__)


class HTTPClientConfig:
    """Configuration for HTTP client."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_connections: int = 100,
        max_keepalive_connections: int = 20,
        user_agent: str = "MentionRadar/1.0 (+webhooks)"
    ):
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.connector_timeout_seconds
        self.max_connections = max_connections
        self.max_keepalive_connections = max_keepalive_connections
        self.user_agent = user_agent

    def to_limits(self):
        """Convert to httpx.Limits object."""
        return httpx.Limits(
            max_connections=self.max_connections,
            max_keepalive_connections=self.max_keepalive_connections
        )

    def to_timeout(self):
        """Convert to httpx.Timeout object."""
        return httpx.Timeout(self.timeout)


class HTTPClient:
    """Async HTTP client with standard configuration."""

    def __init__(self, config: Optional[HTTPClientConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or HTTPClientConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _ensure_client(self):
        """Ensure HTTP client is initialized."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                limits=self.config.to_limits(),
                timeout=self.config.to_timeout(),
                headers={'User-Agent': self.config.user_agent},
                follow_redirects=True,
                transport=self._transport
            )

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Make a single HTTP request.

        Raises:
            httpx.HTTPError: For transport errors and timeouts
        """
        await self._ensure_client()
        return await self._client.request(method, url, **kwargs)

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """Make GET request."""
        return await self.request('GET', url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        """Make POST request."""
        return await self.request('POST', url, **kwargs)


@asynccontextmanager
async def http_client_context(timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
    """Context manager for HTTP client lifecycle."""
    client = HTTPClient(HTTPClientConfig(timeout=timeout), transport=transport)
    try:
        yield client
    finally:
        await client.close()
