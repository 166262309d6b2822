"""Cache manager instance: precache, activate and fetch lifecycle.

Each deployed version of the cache manager is one CacheWorker. It owns the
cache store named prefix + version and moves through:

    PARSED -> INSTALLING -> INSTALLED (waiting) -> ACTIVATING -> ACTIVATED

A failed install or a newer instance winning the race ends in REDUNDANT.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .config import DEFAULT_ROUTES, Config
from .events import EventTarget
from .models import Request, Response, RouteRule, WorkerState
from .network import Fetcher, NetworkError
from .routing import Router, resolve_url
from .storage import CacheStorage, StorageError
from .strategies import FetchEvent, StrategyRunner

if TYPE_CHECKING:
    from .registration import ServiceWorkerRegistration

logger = logging.getLogger(__name__)

# Control message sent by the page to a waiting instance.
SKIP_WAITING = "SKIP_WAITING"

# Background fetches and cache writes run on a small pool per instance.
MAX_BACKGROUND_WORKERS = 4

_TRANSITIONS: dict[WorkerState, tuple[WorkerState, ...]] = {
    WorkerState.PARSED: (WorkerState.INSTALLING, WorkerState.REDUNDANT),
    WorkerState.INSTALLING: (WorkerState.INSTALLED, WorkerState.REDUNDANT),
    WorkerState.INSTALLED: (WorkerState.ACTIVATING, WorkerState.REDUNDANT),
    WorkerState.ACTIVATING: (WorkerState.ACTIVATED, WorkerState.REDUNDANT),
    WorkerState.ACTIVATED: (WorkerState.REDUNDANT,),
    WorkerState.REDUNDANT: (),
}


class PrecacheError(Exception):
    """Raised when an install could not store every precache entry."""

    pass


class WorkerStateError(Exception):
    """Raised when an operation is not allowed in the instance's current state."""

    pass


@dataclass(frozen=True)
class WorkerScript:
    """Everything a deployed cache manager version is built from."""

    version: str
    origin: str
    prefix: str = "bible-study-"
    precache: tuple[str, ...] = ()
    routes: tuple[RouteRule, ...] = field(default_factory=lambda: tuple(DEFAULT_ROUTES))
    offline_document: str = "/index.html"
    cache_cross_origin: bool = False

    @property
    def cache_name(self) -> str:
        return f"{self.prefix}{self.version}"

    @classmethod
    def from_config(cls, config: Config) -> "WorkerScript":
        return cls(
            version=config.cache.version,
            origin=config.app.origin,
            prefix=config.cache.prefix,
            precache=tuple(config.precache),
            routes=tuple(config.routes),
            offline_document=config.cache.offline_document,
            cache_cross_origin=config.cache.cache_cross_origin,
        )


class CacheWorker(EventTarget):
    """One installed version of the cache manager.

    Events:
        statechange(worker): after every state transition.
    """

    def __init__(
        self,
        script: WorkerScript,
        storage: CacheStorage,
        fetcher: Fetcher,
        registration: "ServiceWorkerRegistration | None" = None,
    ) -> None:
        super().__init__()
        self.script = script
        self._storage = storage
        self._fetcher = fetcher
        self._registration = registration
        self._state = WorkerState.PARSED
        self._skip_waiting = False
        self._executor = ThreadPoolExecutor(
            max_workers=MAX_BACKGROUND_WORKERS,
            thread_name_prefix=f"cache-{script.version}",
        )
        self._router = Router(script.routes, script.origin, script.precache)
        self._runner: StrategyRunner | None = None

    def __repr__(self) -> str:
        return f"CacheWorker(version={self.script.version!r}, state={self._state.value})"

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def version(self) -> str:
        return self.script.version

    @property
    def cache_name(self) -> str:
        return self.script.cache_name

    @property
    def skip_waiting_requested(self) -> bool:
        return self._skip_waiting

    def _transition(self, new_state: WorkerState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise WorkerStateError(
                f"Cannot move version {self.version} from {self._state.value} to {new_state.value}"
            )
        self._state = new_state
        if new_state is WorkerState.REDUNDANT:
            # Already-submitted background writes still run to completion
            self._executor.shutdown(wait=False)
        self.dispatch("statechange", self)

    def discard(self) -> None:
        """Mark the instance redundant (superseded or failed)."""
        if self._state is not WorkerState.REDUNDANT:
            logger.info("Discarding cache manager version %s", self.version)
            self._transition(WorkerState.REDUNDANT)

    # -------------------------------------------------------------------------
    # Install
    # -------------------------------------------------------------------------

    def install(self) -> None:
        """Fetch and store every precache entry.

        The batch is all-or-nothing: the store is only written once every
        entry has been fetched with status 200.

        Raises:
            PrecacheError: If any entry failed; the instance ends REDUNDANT.
        """
        self._transition(WorkerState.INSTALLING)
        logger.info("Installing cache manager version %s", self.version)

        try:
            entries = self._fetch_precache()
            self._storage.open(self.cache_name).put_all(entries)
        except (PrecacheError, StorageError) as e:
            logger.error("Precaching failed for version %s: %s", self.version, e)
            self._transition(WorkerState.REDUNDANT)
            if isinstance(e, PrecacheError):
                raise
            raise PrecacheError(f"Failed to store precache for version {self.version}: {e}") from e

        logger.info("Precached %d resources into %s", len(entries), self.cache_name)
        self._transition(WorkerState.INSTALLED)

    def _fetch_precache(self) -> list[tuple[Request, Response]]:
        precache_requests = [Request(resolve_url(self.script.origin, url)) for url in self.script.precache]
        futures = [self._executor.submit(self._fetcher.fetch, request) for request in precache_requests]

        entries: list[tuple[Request, Response]] = []
        for request, future in zip(precache_requests, futures):
            try:
                response = future.result()
            except NetworkError as e:
                raise PrecacheError(f"Failed to fetch {request.url}: {e}") from e
            if response.status != 200:
                raise PrecacheError(f"Failed to fetch {request.url}: HTTP {response.status}")
            if not response.is_cacheable:
                raise PrecacheError(f"Cannot store {request.url}: {response.type} response")
            entries.append((request, response))
        return entries

    # -------------------------------------------------------------------------
    # Activate
    # -------------------------------------------------------------------------

    def activate(self) -> list[str]:
        """Delete stale stores carrying this prefix, then claim open pages.

        Returns:
            Names of the stores that were deleted.
        """
        self._transition(WorkerState.ACTIVATING)
        logger.info("Activating cache manager version %s", self.version)

        deleted = self._delete_stale_caches()
        self._runner = StrategyRunner(
            cache=self._storage.open(self.cache_name),
            fetcher=self._fetcher,
            executor=self._executor,
            router=self._router,
            offline_document_url=resolve_url(self.script.origin, self.script.offline_document),
            cache_cross_origin=self.script.cache_cross_origin,
        )
        self.claim()

        self._transition(WorkerState.ACTIVATED)
        return deleted

    def _delete_stale_caches(self) -> list[str]:
        try:
            names = self._storage.keys()
        except StorageError as e:
            logger.error("Could not list caches for cleanup: %s", e)
            return []

        deleted: list[str] = []
        for name in names:
            if not name.startswith(self.script.prefix) or name == self.cache_name:
                continue
            try:
                if self._storage.delete(name):
                    logger.info("Deleted old cache: %s", name)
                    deleted.append(name)
            except StorageError as e:
                logger.error("Failed to delete old cache %s: %s", name, e)
        return deleted

    def claim(self) -> None:
        """Become the controller of every open page."""
        if self._registration is not None:
            self._registration.claim(self)

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def skip_waiting(self) -> None:
        """Activate as soon as installation has finished, without waiting for pages to close."""
        self._skip_waiting = True
        if self._state is WorkerState.INSTALLED and self._registration is not None:
            self._registration.activate_waiting(self)

    def post_message(self, data: Any) -> None:
        """Receive a control message from a page."""
        if isinstance(data, dict) and data.get("type") == SKIP_WAITING:
            logger.info("Skip-waiting requested for version %s", self.version)
            self.skip_waiting()
            return
        logger.debug("Ignoring message for version %s: %r", self.version, data)

    # -------------------------------------------------------------------------
    # Fetch
    # -------------------------------------------------------------------------

    def handle_fetch(self, request: Request) -> FetchEvent:
        """Answer an intercepted request.

        The returned event carries either the response or the error, plus
        any background work still in flight.
        """
        if self._runner is None or self._state not in (WorkerState.ACTIVATING, WorkerState.ACTIVATED):
            raise WorkerStateError(f"Version {self.version} cannot handle fetches while {self._state.value}")

        event = FetchEvent(request)
        strategy = self._router.route(request)
        try:
            if strategy is None:
                event.response = self._fetcher.fetch(request)
            else:
                event.response = self._runner.run(strategy, event)
        except NetworkError as e:
            event.error = e
        except StorageError as e:
            logger.error("Cache storage failed for %s: %s", request.url, e)
            event.error = e
        return event

    def fetch(self, request: Request) -> Response:
        """Answer a request, raising the failure if no response could be produced."""
        event = self.handle_fetch(request)
        if event.error is not None:
            raise event.error
        if event.response is None:
            raise NetworkError(f"No response for {request.url}")
        return event.response
