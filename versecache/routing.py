"""Selects the retrieval strategy for an intercepted request."""

import logging
from collections.abc import Iterable
from fnmatch import fnmatchcase
from urllib.parse import urljoin, urlparse

from .models import Request, RouteRule, Strategy
from .network import origin_of

logger = logging.getLogger(__name__)


def resolve_url(origin: str, path_or_url: str) -> str:
    """Resolve a precache entry ("/index.html" or an absolute URL) against the app origin."""
    return urljoin(origin + "/", path_or_url)


class Router:
    """Evaluates route rules, most specific pattern first.

    Only same-origin GET requests are matched against the rule table.
    Cross-origin requests are served cache-first when they appear in the
    precache manifest and are not intercepted otherwise.
    """

    def __init__(
        self,
        rules: Iterable[RouteRule],
        origin: str,
        precache_urls: Iterable[str] = (),
        default: Strategy = Strategy.CACHE_FIRST,
    ) -> None:
        # sorted() is stable, so equally specific rules keep declaration order
        self._rules = sorted(rules, key=lambda rule: rule.specificity, reverse=True)
        self._origin = origin_of(origin)
        self._precache_urls = {resolve_url(self._origin, url) for url in precache_urls}
        self._default = default

    @property
    def rules(self) -> list[RouteRule]:
        return list(self._rules)

    def is_same_origin(self, request: Request) -> bool:
        return origin_of(request.url) == self._origin

    def is_precached(self, request: Request) -> bool:
        return request.cache_key in self._precache_urls

    def route(self, request: Request) -> Strategy | None:
        """Return the strategy for a request, or None to let it go straight to the network."""
        if request.method != "GET":
            return None

        if not self.is_same_origin(request):
            if self.is_precached(request):
                return Strategy.CACHE_FIRST
            return None

        path = urlparse(request.url).path or "/"
        for rule in self._rules:
            if fnmatchcase(path, rule.pattern):
                logger.debug("%s matched %s -> %s", path, rule.pattern, rule.strategy.value)
                return rule.strategy
        return self._default
