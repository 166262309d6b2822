"""Data models for cached requests, responses and cache manager state."""

from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urldefrag

# Only these response types can be inspected; opaque responses are never stored.
CACHEABLE_RESPONSE_TYPES = ("basic", "cors")


class Strategy(Enum):
    """Retrieval strategy applied to an intercepted request."""

    CACHE_FIRST = "cache-first"
    STALE_WHILE_REVALIDATE = "stale-while-revalidate"
    NETWORK_FIRST_WITH_DOCUMENT_FALLBACK = "network-first"


class WorkerState(Enum):
    """Lifecycle state of a cache manager instance."""

    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"  # waiting
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


@dataclass(frozen=True)
class Request:
    """A resource request issued by a page.

    Attributes:
        url: Absolute URL of the resource.
        method: HTTP method.
        destination: Request purpose ("document", "script", "style", "" ...).
        mode: Request mode ("navigate", "cors", "no-cors", "same-origin").
    """

    url: str
    method: str = "GET"
    destination: str = ""
    mode: str = "cors"

    @property
    def is_navigation(self) -> bool:
        """Whether the request loads a full page."""
        return self.mode == "navigate" or self.destination == "document"

    @property
    def cache_key(self) -> str:
        """URL used to key the entry in a cache store."""
        return urldefrag(self.url)[0]


@dataclass(frozen=True)
class Response:
    """A response as seen by the cache manager.

    Attributes:
        url: URL the response was produced for.
        status: HTTP status code.
        status_text: HTTP reason phrase.
        headers: Response headers.
        body: Raw response body.
        type: "basic" (same-origin), "cors", "opaque" or "error".
    """

    url: str
    status: int
    body: bytes = b""
    status_text: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    type: str = "basic"

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_cacheable(self) -> bool:
        """Whether this response may be written to a cache store."""
        return self.status == 200 and self.type in CACHEABLE_RESPONSE_TYPES


@dataclass(frozen=True)
class RouteRule:
    """Maps a URL path pattern to a retrieval strategy.

    Patterns are globs where ``*`` also spans ``/``, so ``/bibles/**``
    matches every path below ``/bibles/``.
    """

    pattern: str
    strategy: Strategy

    @property
    def specificity(self) -> int:
        """Length of the literal text before the first wildcard."""
        for index, char in enumerate(self.pattern):
            if char in "*?[":
                return index
        return len(self.pattern)
