"""
Main application class for the rental cache client.
"""
import logging
import signal
import threading
from typing import Callable, Optional

from rentcache.config.app_config import AppConfig
from rentcache.store import Database, LocalStore
from rentcache.sync import ConnectivityMonitor, ConnectivityState, RemoteGateway, Synchronizer

from .catalog import Catalog
from .sync_service import ServiceState, SyncService

logger = logging.getLogger(__name__)


class RentCacheApplication:
    """
    Main application class that wires the offline cache together.

    This class manages the lifecycle of:
    - The local store and its persisted checkpoint
    - Connectivity monitoring
    - The remote gateway and synchronizer
    - The background sync service
    - Graceful shutdown handling
    """

    def __init__(
        self,
        config: AppConfig,
        on_status_change: Optional[Callable[[ServiceState], None]] = None
    ):
        """
        Initialize the application.

        Args:
            config: Application configuration
            on_status_change: Callback forwarded to the sync service
        """
        self.config = config
        self.on_status_change = on_status_change
        self.store: Optional[LocalStore] = None
        self.monitor: Optional[ConnectivityMonitor] = None
        self.gateway: Optional[RemoteGateway] = None
        self.synchronizer: Optional[Synchronizer] = None
        self.service: Optional[SyncService] = None
        self.catalog: Optional[Catalog] = None
        self._shutdown_requested = False
        self._stop_event = threading.Event()

    def setup_store(self) -> None:
        """Open the local store, creating the schema on first run."""
        logger.info(f"Opening local store: {self.config.store.path}")
        self.store = LocalStore(Database(self.config.store.path))
        logger.info(f"Local store ready at checkpoint {self.store.read_checkpoint()}")

    def reset_store(self) -> None:
        """Wipe cached records, pending mutations and the checkpoint."""
        logger.info("Resetting local store...")
        self.store.reset()

    def setup_remote(self, monitor: Optional[ConnectivityMonitor] = None) -> None:
        """Create the connectivity monitor, gateway, synchronizer and read facade."""
        remote = self.config.remote
        self.monitor = monitor or ConnectivityMonitor()
        self.gateway = RemoteGateway(
            base_url=remote.base_url,
            api_key=remote.api_key,
            timeout=remote.timeout,
            max_retries=remote.max_retries,
            base_retry_delay=remote.base_retry_delay,
            max_retry_delay=remote.max_retry_delay
        )
        self.synchronizer = Synchronizer(
            self.store,
            self.gateway,
            self.monitor,
            push_collections=self.config.sync.push_collections,
            push_batch_size=self.config.sync.push_batch_size
        )
        self.service = SyncService(
            self.synchronizer,
            self.monitor,
            sync_interval=self.config.sync.sync_interval,
            on_status_change=self.on_status_change
        )
        self.catalog = Catalog(
            self.store,
            self.gateway,
            self.monitor,
            on_refresh_requested=self.service.request_sync
        )

    def setup(self, monitor: Optional[ConnectivityMonitor] = None, reset: bool = False) -> None:
        self.setup_store()
        if reset:
            self.reset_store()
        self.setup_remote(monitor)

    def check_connectivity(self) -> ConnectivityState:
        """Take one reachability reading from the API health endpoint."""
        state = ConnectivityState.from_reading(self.gateway.ping())
        self.monitor.update(state)
        return state

    def start_connectivity_watch(self) -> None:
        self.monitor.watch(self.gateway.ping, self.config.sync.connectivity_poll_interval)

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        signal.signal(signal.SIGINT, self._signal_handler)
        logger.debug("Signal handlers configured")

    def _signal_handler(self, sig: int, frame) -> None:
        logger.info("Shutdown signal received. Exiting gracefully...")
        self._shutdown_requested = True
        self._stop_event.set()

    def run(self, watch_connectivity: bool = True) -> None:
        """
        Run the background sync until interrupted.

        Connectivity is polled from the API health endpoint; each transition
        to connected triggers a cycle.
        """
        try:
            self.setup_signal_handlers()
            if watch_connectivity:
                self.start_connectivity_watch()
            self.service.start()
            logger.info("Sync service is running. Press Ctrl+C to stop.")
            while not self._stop_event.wait(timeout=1.0):
                pass
        except Exception as e:
            logger.error(f"Application error: {e}")
            raise
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        """
        Gracefully shutdown the application.

        This method ensures all resources are properly cleaned up.
        """
        logger.info("Shutting down application...")

        try:
            if self.service is not None:
                self.service.stop()

            if self.monitor is not None:
                self.monitor.stop()

            if self.gateway is not None:
                self.gateway.close()

            if self.store is not None:
                self.store.close()

            logger.info("Application shutdown completed")

        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
