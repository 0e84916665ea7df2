"""
Background sync service.

Runs the synchronizer on its own thread whenever connectivity comes back,
on request, and every ``sync_interval`` seconds, reporting status through a
callback for the UI layer.
"""

import threading
import logging
from enum import Enum
from typing import Callable, Optional
from dataclasses import dataclass, field
from datetime import datetime

from rentcache.sync import ConnectivityMonitor, ConnectivityState, SyncOutcome, SyncStatus, Synchronizer

MAX_RECORDED_ERRORS = 10


class ServiceStatus(Enum):
    """What the sync service is doing right now."""
    STARTING = "starting"
    IDLE = "idle"
    SYNCING = "syncing"
    OFFLINE = "offline"
    ERROR = "error"
    STOPPED = "stopped"


@dataclass
class ServiceState:
    """Snapshot reported to the UI after every status change."""
    status: ServiceStatus = ServiceStatus.STOPPED
    message: str = ""
    last_sync: Optional[datetime] = None
    checkpoint: Optional[int] = None
    pending_mutations: int = 0
    error_count: int = 0
    errors: list = field(default_factory=list)


class SyncService:
    """
    Runs sync cycles on a daemon thread.

    The thread sleeps on a wake event: a connectivity transition to
    CONNECTED, :meth:`request_sync` and the interval timeout all wake it.
    """

    def __init__(
        self,
        synchronizer: Synchronizer,
        monitor: ConnectivityMonitor,
        sync_interval: float = 60.0,
        on_status_change: Optional[Callable[[ServiceState], None]] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Args:
            synchronizer: Synchronizer running the cycles
            monitor: Connectivity monitor whose transitions trigger a sync
            sync_interval: Seconds between periodic cycles
            on_status_change: Called with the ServiceState after each change
            logger: Logger to use instead of the module logger
        """
        self.synchronizer = synchronizer
        self.monitor = monitor
        self.sync_interval = sync_interval
        self.on_status_change = on_status_change
        self.logger = logger or logging.getLogger(__name__)

        self._state = ServiceState()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._lock = threading.Lock()
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def state(self) -> ServiceState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _set_status(
        self,
        status: ServiceStatus,
        message: str = "",
        error: Optional[Exception] = None
    ) -> None:
        with self._lock:
            self._state.status = status
            self._state.message = message
            if error:
                self._state.error_count += 1
                self._state.errors.append({'at': datetime.now(), 'error': str(error)})
                del self._state.errors[:-MAX_RECORDED_ERRORS]

        self.logger.info(f"Sync service {status.value}: {message}")

        if self.on_status_change:
            try:
                self.on_status_change(self._state)
            except Exception as e:
                self.logger.error(f"Status callback failed: {e}")

    def _on_connectivity_change(self, previous: ConnectivityState, current: ConnectivityState) -> None:
        if current is ConnectivityState.CONNECTED:
            self.request_sync()
        elif current is ConnectivityState.DISCONNECTED:
            self._set_status(ServiceStatus.OFFLINE, "Serving cached data")

    def request_sync(self) -> None:
        """Wake the service thread to run a cycle as soon as possible."""
        self._wake_event.set()

    def _record_outcome(self, outcome: SyncOutcome) -> None:
        with self._lock:
            if outcome.succeeded:
                self._state.last_sync = outcome.finished_at
                self._state.checkpoint = outcome.checkpoint
            try:
                self._state.pending_mutations = self.synchronizer.store.mutations.count_pending()
            except Exception as e:
                self.logger.debug(f"Could not count pending mutations: {e}")

        if outcome.status is SyncStatus.COMMITTED:
            message = f"Synced to version {outcome.checkpoint}"
            if outcome.push_error:
                message += f"; push deferred ({outcome.push_error})"
            self._set_status(ServiceStatus.IDLE, message)
        elif outcome.status is SyncStatus.SKIPPED_OFFLINE:
            self._set_status(ServiceStatus.OFFLINE, "Serving cached data")
        elif outcome.status is SyncStatus.FAILED:
            self._set_status(
                ServiceStatus.ERROR,
                f"Sync failed while {outcome.state.value}",
                error=outcome.error
            )

    def run_once(self) -> SyncOutcome:
        """Run one cycle on the calling thread and record its outcome."""
        if self.monitor.is_connected:
            self._set_status(ServiceStatus.SYNCING, "Synchronizing...")
        outcome = self.synchronizer.synchronize()
        self._record_outcome(outcome)
        return outcome

    def _service_loop(self) -> None:
        self._set_status(ServiceStatus.STARTING, "Sync service running")
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                self.logger.exception(f"Unexpected error in sync cycle: {e}")
                self._set_status(ServiceStatus.ERROR, str(e), error=e)

            self._wake_event.wait(timeout=self.sync_interval)
            self._wake_event.clear()

    def start(self) -> bool:
        """
        Subscribe to connectivity changes and start the service thread.

        Returns:
            False if the service was already running
        """
        if self.is_running:
            self.logger.warning("Sync service already started")
            return False

        self._stop_event.clear()
        self._wake_event.clear()
        self._unsubscribe = self.monitor.subscribe(self._on_connectivity_change)
        self._thread = threading.Thread(
            target=self._service_loop,
            name="SyncService",
            daemon=True
        )
        self._thread.start()
        return True

    def stop(self, timeout: float = 10.0) -> bool:
        """
        Unsubscribe and wait for the service thread to finish its cycle.

        Returns:
            False if the thread was still alive after ``timeout`` seconds
        """
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

        if not self.is_running:
            return True

        self.logger.info("Stopping sync service...")
        self._stop_event.set()
        self._wake_event.set()

        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            self.logger.warning(f"Sync service still running after {timeout}s")
            return False

        self._set_status(ServiceStatus.STOPPED, "Service stopped")
        return True

    def get_status_summary(self) -> dict:
        """Status, connectivity and sync progress as a plain dict."""
        snapshot = self.state
        return {
            'status': snapshot.status.value,
            'message': snapshot.message,
            'running': self.is_running,
            'connectivity': self.monitor.state.value,
            'last_sync': snapshot.last_sync.isoformat() if snapshot.last_sync else None,
            'checkpoint': snapshot.checkpoint,
            'pending_mutations': snapshot.pending_mutations,
            'error_count': snapshot.error_count,
            'recent_errors': snapshot.errors[-3:],
        }
