"""Network transport used by the cache manager on cache misses and revalidation."""

import logging
from typing import Protocol
from urllib.parse import urlparse

import requests

from .config import NetworkConfig
from .models import Request, Response

logger = logging.getLogger(__name__)


class NetworkError(Exception):
    """Raised when a request produced no usable response."""

    pass


class Fetcher(Protocol):
    """Anything that turns a Request into a Response.

    HTTP error statuses are returned as responses; only transport failures
    raise NetworkError.
    """

    def fetch(self, request: Request) -> Response: ...


def origin_of(url: str) -> str:
    """Return scheme://host[:port] for an absolute URL."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


class HttpFetcher:
    """Fetches requests over HTTP with a shared requests session."""

    def __init__(self, origin: str, config: NetworkConfig | None = None) -> None:
        """Initialize the fetcher.

        Args:
            origin: Origin of the web app; responses from other origins are typed "cors".
            config: Timeout and User-Agent settings.
        """
        self._origin = origin_of(origin)
        self._config = config or NetworkConfig()
        self._session = requests.Session()
        self._session.headers["User-Agent"] = self._config.user_agent

    def fetch(self, request: Request) -> Response:
        try:
            resp = self._session.request(
                request.method,
                request.url,
                timeout=self._config.timeout,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            logger.debug("Fetch failed for %s: %s", request.url, e)
            raise NetworkError(f"Failed to fetch {request.url}: {e}") from e

        response_type = "basic" if origin_of(resp.url or request.url) == self._origin else "cors"
        return Response(
            url=resp.url or request.url,
            status=resp.status_code,
            status_text=resp.reason or "",
            headers=dict(resp.headers),
            body=resp.content,
            type=response_type,
        )

    def close(self) -> None:
        self._session.close()
