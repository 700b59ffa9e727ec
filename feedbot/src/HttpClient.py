"""Shared HTTP client for the verifier, the DA layer and the feed store.

One ``httpx.AsyncClient`` is shared by every service object to reuse
connections; ``main`` closes it on shutdown.
"""

import logging
from typing import Any, ClassVar

import httpx

from .errors import HttpError, TransientError

logger = logging.getLogger(__name__)


class HttpClient:
    """Base class for services reached over HTTP.

    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar timeout: Request timeout in seconds.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    DEFAULT_TIMEOUT = 30.0

    def __init__(self, timeout: float | None = None, client: httpx.AsyncClient | None = None):
        """Initialize the service.

        :param timeout: Request timeout in seconds (default: 30).
        :param client: Optional client to use instead of the shared one.
        """
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._client = client

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        :returns: Shared httpx.AsyncClient instance.
        """
        if HttpClient._shared_client is None or HttpClient._shared_client.is_closed:
            HttpClient._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                follow_redirects=True,
            )
        return HttpClient._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        if HttpClient._shared_client is not None and not HttpClient._shared_client.is_closed:
            await HttpClient._shared_client.aclose()
            HttpClient._shared_client = None

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or self.get_shared_client()

    async def _get(self, url: str, *, headers: dict | None = None) -> httpx.Response:
        """Make an HTTP GET request.

        :param url: Request URL.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises HttpError: On non-2xx response.
        :raises TransientError: On network/timeout errors.
        """
        return await self._request("GET", url, headers=headers)

    async def _post(
        self, url: str, *, json: Any = None, headers: dict | None = None
    ) -> httpx.Response:
        """Make an HTTP POST request.

        :param url: Request URL.
        :param json: Optional JSON body.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises HttpError: On non-2xx response.
        :raises TransientError: On network/timeout errors.
        """
        return await self._request("POST", url, json=json, headers=headers)

    async def _request(
        self, method: str, url: str, *, json: Any = None, headers: dict | None = None
    ) -> httpx.Response:
        try:
            response = await self.client.request(
                method,
                url,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise TransientError(f"Request failed: {e}") from e

        if not response.is_success:
            logger.debug(
                "HTTP %s %s failed with status %s: %s",
                method,
                url,
                response.status_code,
                response.text[:200],
            )
            raise HttpError(response.status_code, response.text[:200])
        return response
