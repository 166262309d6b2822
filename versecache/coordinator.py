"""Page-side half of the update handshake.

Polls the registration for newer cache manager versions, prompts the user
when one is installed and waiting, sends the skip-waiting message on
acceptance and reloads the page exactly once when the new version takes
control.
"""

import logging
import threading
from collections.abc import Callable

from .config import DEFAULT_UPDATE_INTERVAL
from .models import WorkerState
from .registration import Client, ServiceWorkerRegistration
from .worker import SKIP_WAITING, CacheWorker, PrecacheError

logger = logging.getLogger(__name__)

Prompt = Callable[[CacheWorker], bool]


class UpdateCoordinator:
    """Detects waiting updates for one page and performs the controlled hand-off."""

    def __init__(
        self,
        registration: ServiceWorkerRegistration,
        client: Client,
        reload: Callable[[], None],
        prompt: Prompt | None = None,
        check_interval: int = DEFAULT_UPDATE_INTERVAL,
    ) -> None:
        """Initialize the coordinator.

        Args:
            registration: Registration of the cache manager.
            client: The page this coordinator runs in.
            reload: Reloads the page; called at most once.
            prompt: Shows the update toast. Returning True applies the update
                now; otherwise it stays pending until apply_update().
            check_interval: Seconds between update checks.
        """
        self._registration = registration
        self._client = client
        self._reload = reload
        self._prompt = prompt
        self._check_interval = check_interval
        self._had_controller = client.controller is not None
        self._refreshing = False
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def update_available(self) -> bool:
        """Whether an installed version is waiting for the user's go-ahead."""
        return self._registration.waiting is not None

    @property
    def reloaded(self) -> bool:
        return self._refreshing

    def start(self) -> None:
        """Subscribe to lifecycle events and start polling for updates."""
        if self._thread and self._thread.is_alive():
            logger.warning("Update coordinator already running")
            return

        self._client.add_listener("controllerchange", self._on_controller_change)
        self._registration.add_listener("updatefound", self._on_update_found)

        # An update may have arrived while this page was not looking
        waiting = self._registration.waiting
        if waiting is not None and self._client.controller is not None:
            self._notify(waiting)

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="update-check", daemon=True)
        self._thread.start()
        logger.info("Update checks started (interval: %ds)", self._check_interval)

    def stop(self) -> None:
        """Stop polling and unsubscribe."""
        self._client.remove_listener("controllerchange", self._on_controller_change)
        self._registration.remove_listener("updatefound", self._on_update_found)

        if not self._thread or not self._thread.is_alive():
            return

        self._stop_event.set()
        self._thread.join(timeout=5)

        if self._thread.is_alive():
            logger.warning("Update check thread did not stop gracefully")
        else:
            logger.info("Update checks stopped")

    def _run(self) -> None:
        """Polling loop - runs in background thread."""
        while not self._stop_event.wait(self._check_interval):
            self.check_for_update()

    def check_for_update(self) -> bool:
        """Ask the registration for a newer version.

        Failures only mean no prompt this cycle; the next interval retries.

        Returns:
            True if the check completed, False if it failed.
        """
        try:
            self._registration.update()
            return True
        except PrecacheError as e:
            logger.warning("Update check failed: %s", e)
        except Exception as e:
            logger.error("Update check unexpected error: %s", e)
        return False

    def apply_update(self) -> bool:
        """Tell the waiting version to take over now.

        Returns:
            True if a skip-waiting message was sent.
        """
        waiting = self._registration.waiting
        if waiting is None:
            return False
        logger.info("Applying update to version %s", waiting.version)
        waiting.post_message({"type": SKIP_WAITING})
        return True

    def _on_update_found(self, registration: ServiceWorkerRegistration) -> None:
        worker = registration.installing
        if worker is not None:
            worker.add_listener("statechange", self._on_state_change)

    def _on_state_change(self, worker: CacheWorker) -> None:
        if worker.state is WorkerState.INSTALLED and self._client.controller is not None:
            self._notify(worker)

    def _notify(self, worker: CacheWorker) -> None:
        logger.info("New version %s installed and waiting", worker.version)
        if self._prompt is not None and self._prompt(worker):
            self.apply_update()

    def _on_controller_change(self, client: Client) -> None:
        # controllerchange can legitimately fire more than once
        with self._lock:
            if self._refreshing:
                return
            if not self._had_controller:
                # First install claiming the page, not a hand-off
                self._had_controller = True
                return
            self._refreshing = True

        logger.info("New version activated, reloading...")
        self._reload()
