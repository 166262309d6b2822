"""Retrieval strategies run by the cache manager for intercepted requests.

- Cache-first: serve the stored copy, fall back to the network and store the
  result in the background. Navigations fall back to the offline document.
- Stale-while-revalidate: serve the stored copy immediately while a
  concurrent network fetch refreshes it for next time. A cold cache waits
  for the network.
- Network-first: try the network, fall back to the stored copy, then the
  offline document for navigations.

Only status-200 inspectable responses are stored. A failed refetch never
evicts an existing entry.
"""

import logging
import threading
from concurrent.futures import Executor, Future, wait

from .models import Request, Response, Strategy
from .network import Fetcher, NetworkError
from .routing import Router
from .storage import Cache

logger = logging.getLogger(__name__)


class FetchEvent:
    """One intercepted request and the background work started on its behalf.

    The host keeps the cache manager alive until settle() returns, so
    write-backs are not cut off mid-operation.
    """

    def __init__(self, request: Request) -> None:
        self.request = request
        self.response: Response | None = None
        self.error: Exception | None = None
        self._pending: list[Future] = []
        self._lock = threading.Lock()

    def wait_until(self, future: Future) -> None:
        """Extend the event's lifetime until the future resolves."""
        with self._lock:
            self._pending.append(future)

    def settle(self, timeout: float | None = None) -> bool:
        """Block until all background work has finished.

        Returns:
            True if everything finished, False if the timeout expired first.
        """
        while True:
            with self._lock:
                pending = [future for future in self._pending if not future.done()]
            if not pending:
                return True
            _, not_done = wait(pending, timeout=timeout)
            if not_done:
                return False


def _log_background_failure(future: Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.warning("Background cache task failed: %s", error)


class StrategyRunner:
    """Runs strategies against one cache store and one network fetcher."""

    def __init__(
        self,
        cache: Cache,
        fetcher: Fetcher,
        executor: Executor,
        router: Router,
        offline_document_url: str,
        cache_cross_origin: bool = False,
    ) -> None:
        self._cache = cache
        self._fetcher = fetcher
        self._executor = executor
        self._router = router
        self._offline_request = Request(offline_document_url, destination="document", mode="navigate")
        self._cache_cross_origin = cache_cross_origin

    def run(self, strategy: Strategy, event: FetchEvent) -> Response:
        if strategy is Strategy.STALE_WHILE_REVALIDATE:
            return self.stale_while_revalidate(event)
        if strategy is Strategy.NETWORK_FIRST_WITH_DOCUMENT_FALLBACK:
            return self.network_first(event)
        return self.cache_first(event)

    def cache_first(self, event: FetchEvent) -> Response:
        request = event.request
        cached = self._cache.match(request)
        if cached is not None:
            return cached

        try:
            response = self._fetcher.fetch(request)
        except NetworkError as e:
            logger.info("Network failed, no cache for: %s", request.url)
            return self._offline_fallback(request, e)

        self._store_in_background(event, response)
        return response

    def stale_while_revalidate(self, event: FetchEvent) -> Response:
        request = event.request
        network_result: Future = Future()

        def revalidate() -> None:
            try:
                response = self._fetcher.fetch(request)
            except Exception as e:
                network_result.set_exception(e)
                raise
            # Hand the response to a waiting caller before touching the store
            network_result.set_result(response)
            if response.is_cacheable:
                self._cache.put(request, response)
                logger.debug("Revalidated %s", request.url)

        cached = self._cache.match(request)
        self._detach(event, revalidate)

        if cached is not None:
            return cached
        return network_result.result()

    def network_first(self, event: FetchEvent) -> Response:
        request = event.request
        try:
            response = self._fetcher.fetch(request)
        except NetworkError as e:
            cached = self._cache.match(request)
            if cached is not None:
                return cached
            return self._offline_fallback(request, e)

        self._store_in_background(event, response)
        return response

    def _may_store(self, request: Request) -> bool:
        return (
            self._cache_cross_origin
            or self._router.is_same_origin(request)
            or self._router.is_precached(request)
        )

    def _store_in_background(self, event: FetchEvent, response: Response) -> None:
        if response.is_cacheable and self._may_store(event.request):
            self._detach(event, self._cache.put, event.request, response)

    def _offline_fallback(self, request: Request, error: NetworkError) -> Response:
        if request.is_navigation:
            document = self._cache.match(self._offline_request)
            if document is not None:
                logger.info("Serving offline document for %s", request.url)
                return document
        raise error

    def _detach(self, event: FetchEvent, fn, *args) -> Future:
        """Run fn in the background; its outcome is only logged, never returned to the caller."""
        future = self._executor.submit(fn, *args)
        future.add_done_callback(_log_background_failure)
        event.wait_until(future)
        return future
