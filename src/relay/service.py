"""
RelayService - owns one complete discovery-and-relay engine

Builds the data store, broadcaster, discovery sources and connection
manager from a RelayConfig, and starts/stops their threads together.
Consumers read snapshots and subscribe to events through this object.
"""

import logging
from typing import Optional, Tuple, Dict, Any

from discovery.active_scanner import ActiveScanner
from discovery.passive_listener import PassiveListener
from relay.broadcaster import Broadcaster, Subscription, Sink
from relay.config import RelayConfig
from relay.connection_manager import ConnectionManager
from relay.data_store import DataStore
from relay.models import SensorSample
from utils.threads import ThreadManager

logger = logging.getLogger(__name__)

LISTENER_THREAD = "relay-listener"
MANAGER_THREAD = "relay-manager"


class RelayService:
    """
    Example:
        service = RelayService(RelayConfig.load())
        service.start()
        sub = service.subscribe(print)
        ...
        service.stop()
    """

    def __init__(self, config: Optional[RelayConfig] = None):
        self.config = config or RelayConfig()
        self.store = DataStore(history_size=self.config.history_size)
        self.broadcaster = Broadcaster(self.store)
        self.scanner = ActiveScanner(
            port=self.config.sensor_port,
            timeout=self.config.probe_timeout,
            batch_size=self.config.scan_batch_size,
            subnet=self.config.scan_subnet or None,
        )
        self.manager = ConnectionManager.from_config(
            self.config, self.store, self.broadcaster, self.scanner
        )
        self.listener = PassiveListener(
            on_discovered=self.manager.propose,
            port=self.config.discovery_port,
            prefix=self.config.discovery_prefix,
        )
        self._threads = ThreadManager()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start listening, discovery and the connection manager."""
        if self._running:
            logger.warning("Relay already running")
            return

        if self.listener.bind():
            self._threads.start_thread(LISTENER_THREAD, self.listener.run)
        else:
            logger.info("Passive discovery unavailable, relying on network scan")

        self._threads.start_thread(MANAGER_THREAD, self.manager.run)
        self._running = True
        logger.info("Sensor relay started")

    def stop(self, timeout: float = 5.0):
        """Stop all engine threads and drop subscribers."""
        if not self._running:
            return
        logger.info("Stopping sensor relay...")

        self.manager.stop()
        self.scanner.stop()
        self.listener.close()
        self._threads.shutdown(timeout=timeout)
        self.broadcaster.close()
        self._running = False
        logger.info("Sensor relay stopped")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    # Read-only snapshot accessors

    def current(self) -> Optional[SensorSample]:
        return self.store.latest()

    def history(self) -> Tuple[SensorSample, ...]:
        return self.store.history_snapshot()

    def status(self) -> Dict[str, Any]:
        status = self.manager.status()
        status['listener'] = self.listener.available
        status['scanning'] = self.scanner.is_scanning
        return status

    # Event feed

    def subscribe(self, sink: Sink, name: str = None) -> Subscription:
        return self.broadcaster.subscribe(sink, name=name)

    def unsubscribe(self, subscription: Subscription):
        self.broadcaster.unsubscribe(subscription)
