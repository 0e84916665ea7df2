"""
Process-wide network reachability state.

The monitor does not detect reachability itself. The host feeds it through
:meth:`ConnectivityMonitor.update`, or hands :meth:`ConnectivityMonitor.watch`
a platform reachability check to poll.
"""

import logging
import threading
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class ConnectivityState(Enum):
    """Reachability reading. UNKNOWN is never treated as connected."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    UNKNOWN = "unknown"

    @classmethod
    def from_reading(cls, reading: Optional[bool]) -> 'ConnectivityState':
        if reading is None:
            return cls.UNKNOWN
        return cls.CONNECTED if reading else cls.DISCONNECTED


Listener = Callable[[ConnectivityState, ConnectivityState], None]


class ConnectivityMonitor:
    """Tri-state connectivity signal with transition listeners."""

    def __init__(self, initial: ConnectivityState = ConnectivityState.UNKNOWN):
        self._state = initial
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._stop_event = threading.Event()
        self._watch_thread: Optional[threading.Thread] = None

    @property
    def state(self) -> ConnectivityState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectivityState.CONNECTED

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called as ``listener(previous, current)`` on transitions.

        Returns:
            A callable that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def update(self, state: ConnectivityState) -> bool:
        """
        Record a new reading and notify listeners if the state changed.

        Returns:
            True if this reading was a transition
        """
        with self._lock:
            previous = self._state
            if previous is state:
                return False
            self._state = state
            listeners = list(self._listeners)

        logger.info(f"Connectivity: {previous.value} -> {state.value}")
        for listener in listeners:
            try:
                listener(previous, state)
            except Exception as e:
                logger.error(f"Error in connectivity listener: {e}")
        return True

    def watch(self, check: Callable[[], Optional[bool]], interval: float = 5.0) -> None:
        """
        Poll a platform reachability check on a background thread.

        Args:
            check: Returns True when reachable, False when not, None if unsure
            interval: Seconds between checks
        """
        if self._watch_thread and self._watch_thread.is_alive():
            logger.warning("Connectivity watch already running")
            return

        self._stop_event.clear()
        self._watch_thread = threading.Thread(
            target=self._watch_loop,
            args=(check, interval),
            name="ConnectivityWatch",
            daemon=True
        )
        self._watch_thread.start()

    def _watch_loop(self, check: Callable[[], Optional[bool]], interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                reading = check()
            except Exception as e:
                logger.debug(f"Reachability check failed: {e}")
                reading = False
            self.update(ConnectivityState.from_reading(reading))
            self._stop_event.wait(interval)

    def stop(self) -> None:
        """Stop polling, if a watch is running."""
        self._stop_event.set()
        if self._watch_thread and self._watch_thread.is_alive():
            self._watch_thread.join(timeout=5)
        self._watch_thread = None
