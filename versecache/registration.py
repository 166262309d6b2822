"""Host-side registration of the cache manager and the pages it controls.

The registration holds up to three instances at once:

- installing: currently running its precache
- waiting: installed, held back because an older instance controls open pages
- active: the controller of open pages

A waiting instance activates when it receives the skip-waiting message or
when no page is left under the old controller.
"""

import logging
import threading
from collections.abc import Callable

from .events import EventTarget
from .models import Request, Response, WorkerState
from .network import Fetcher
from .storage import CacheStorage
from .worker import CacheWorker, PrecacheError, WorkerScript

logger = logging.getLogger(__name__)

ScriptSource = Callable[[], WorkerScript]


class Client(EventTarget):
    """An open page.

    Events:
        controllerchange(client): the controlling instance was replaced.
    """

    def __init__(self, registration: "ServiceWorkerRegistration", client_id: int) -> None:
        super().__init__()
        self.id = client_id
        self.controller: CacheWorker | None = None
        self._registration = registration

    def __repr__(self) -> str:
        controller = self.controller.version if self.controller else None
        return f"Client(id={self.id}, controller={controller!r})"

    def fetch(self, request: Request) -> Response:
        """Issue a request, through the controller when the page has one."""
        if self.controller is None:
            return self._registration.fetcher.fetch(request)
        return self.controller.fetch(request)

    def close(self) -> None:
        self._registration.close_client(self)

    def _set_controller(self, worker: CacheWorker) -> None:
        if worker is self.controller:
            return
        self.controller = worker
        self.dispatch("controllerchange", self)


class ServiceWorkerRegistration(EventTarget):
    """Tracks installing, waiting and active instances for one scope.

    Events:
        updatefound(registration): a new instance started installing.
    """

    def __init__(self, script_source: ScriptSource, storage: CacheStorage, fetcher: Fetcher) -> None:
        super().__init__()
        self._script_source = script_source
        self._storage = storage
        self._fetcher = fetcher
        self._lock = threading.RLock()
        self._clients: list[Client] = []
        self._next_client_id = 1
        self.installing: CacheWorker | None = None
        self.waiting: CacheWorker | None = None
        self.active: CacheWorker | None = None

    @property
    def fetcher(self) -> Fetcher:
        return self._fetcher

    @property
    def storage(self) -> CacheStorage:
        return self._storage

    @property
    def clients(self) -> list[Client]:
        with self._lock:
            return list(self._clients)

    def _is_known_version(self, version: str) -> bool:
        return any(
            worker is not None and worker.version == version
            for worker in (self.installing, self.waiting, self.active)
        )

    def update(self) -> CacheWorker | None:
        """Check for a newer cache manager and install it.

        Returns:
            The new instance, or None if the deployed version is already known.

        Raises:
            PrecacheError: If the new version failed to install. The previous
                instances are left untouched.
        """
        with self._lock:
            script = self._script_source()
            if self._is_known_version(script.version):
                logger.debug("Cache manager version %s is current", script.version)
                return None

            worker = CacheWorker(script, self._storage, self._fetcher, registration=self)
            worker.add_listener("statechange", self._on_worker_state)
            self.installing = worker
            logger.info("Update found: version %s", script.version)
            self.dispatch("updatefound", self)

            try:
                worker.install()
            except PrecacheError:
                if self.installing is worker:
                    self.installing = None
                logger.warning("Version %s discarded, keeping %s", script.version, self._active_version())
                raise

            if worker.state is not WorkerState.INSTALLED:
                return worker
            if self.active is None or worker.skip_waiting_requested or not self._has_controlled_clients():
                self.activate_waiting(worker)
            else:
                logger.info("Version %s installed, waiting for %s to release its pages", worker.version, self.active)
            return worker

    def _has_controlled_clients(self) -> bool:
        """Whether any open page is still controlled by the active instance."""
        with self._lock:
            return any(
                client.controller is not None and client.controller is self.active for client in self._clients
            )

    def _active_version(self) -> str | None:
        return self.active.version if self.active is not None else None

    def _on_worker_state(self, worker: CacheWorker) -> None:
        # Runs before any page listener, so pages observe the waiting slot already filled
        if worker.state is not WorkerState.INSTALLED:
            return
        with self._lock:
            if self.installing is worker:
                self.installing = None
            if self.waiting is not None and self.waiting is not worker:
                self.waiting.discard()
            self.waiting = worker

    def activate_waiting(self, worker: CacheWorker) -> None:
        """Promote an installed instance to active and hand it every open page."""
        with self._lock:
            if worker.state is not WorkerState.INSTALLED:
                return
            if self.waiting is worker:
                self.waiting = None
            previous = self.active
            self.active = worker
            # The old version keeps serving its pages until the new one has claimed them
            worker.activate()
            if previous is not None:
                previous.discard()
            logger.info("Version %s is now active", worker.version)

    def claim(self, worker: CacheWorker) -> None:
        """Make the worker the controller of every open page."""
        with self._lock:
            clients = list(self._clients)
        for client in clients:
            client._set_controller(worker)

    def open_client(self) -> Client:
        """Open a page; it is controlled by the active instance if there is one."""
        with self._lock:
            client = Client(self, self._next_client_id)
            self._next_client_id += 1
            client.controller = self.active
            self._clients.append(client)
            return client

    def close_client(self, client: Client) -> None:
        """Close a page; the waiting instance activates once the old controller has no pages."""
        with self._lock:
            if client in self._clients:
                self._clients.remove(client)
            if self.waiting is not None and not self._has_controlled_clients():
                logger.info("No pages left under %s, activating %s", self.active, self.waiting)
                self.activate_waiting(self.waiting)


def register(script_source: ScriptSource, storage: CacheStorage, fetcher: Fetcher) -> ServiceWorkerRegistration:
    """Register the cache manager and run its first install.

    A failed first install is logged; the registration is still returned so
    the page can retry on its next update check.
    """
    registration = ServiceWorkerRegistration(script_source, storage, fetcher)
    try:
        registration.update()
    except PrecacheError as e:
        logger.error("Cache manager registration failed: %s", e)
    return registration
