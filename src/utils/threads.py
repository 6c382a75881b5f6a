"""Managed long-running threads with cooperative stop events"""

import threading
import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)


class ThreadManager:
    """Starts named worker threads and stops them together on shutdown.

    Each target is called as target(stop_event, *args) and is expected to
    return soon after stop_event is set.

    Usage:
        manager = ThreadManager()
        manager.start_thread("listener", listener.run)

        # On shutdown
        manager.shutdown(timeout=5)
    """

    def __init__(self):
        self._threads: Dict[str, threading.Thread] = {}
        self._stop_events: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def start_thread(self, name: str, target: Callable, args: tuple = ()) -> threading.Thread:
        """Start a managed thread.

        Raises:
            RuntimeError: If a live thread already uses this name
        """
        with self._lock:
            existing = self._threads.get(name)
            if existing and existing.is_alive():
                raise RuntimeError(f"Thread {name} is already running")

            stop_event = threading.Event()
            thread = threading.Thread(
                target=target, args=(stop_event,) + tuple(args), name=name, daemon=True
            )
            self._threads[name] = thread
            self._stop_events[name] = stop_event

        thread.start()
        logger.debug(f"Started managed thread: {name}")
        return thread

    def stop_thread(self, name: str, timeout: float = 5.0) -> bool:
        """Signal one thread and wait for it.

        Returns:
            True if the thread stopped (or was unknown), False if still running
        """
        with self._lock:
            thread = self._threads.get(name)
            stop_event = self._stop_events.get(name)

        if thread is None:
            return True

        stop_event.set()
        thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning(f"Thread {name} did not stop within {timeout}s")
            return False

        with self._lock:
            self._threads.pop(name, None)
            self._stop_events.pop(name, None)
        logger.debug(f"Thread {name} stopped")
        return True

    def shutdown(self, timeout: float = 5.0) -> int:
        """Stop all managed threads.

        Returns:
            Number of threads that didn't stop in time
        """
        with self._lock:
            names = list(self._threads)
            for event in self._stop_events.values():
                event.set()

        still_running = sum(1 for name in names if not self.stop_thread(name, timeout))
        if still_running:
            logger.warning(f"{still_running} threads still running after shutdown")
        return still_running

    @property
    def running_threads(self) -> List[str]:
        with self._lock:
            return [name for name, t in self._threads.items() if t.is_alive()]
